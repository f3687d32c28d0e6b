"""
Generic helpers that are reused across sub‑modules.
"""
from __future__ import annotations

import sqlparse


def split_sql(sql: str) -> list[str]:
    """
    Split a string containing one or many SQL statements into individual
    statements **safely** (aware of literals, comments, delimiters, etc.).
    """
    return [s.strip() for s in sqlparse.split(sql) if s.strip()]


def escape_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"
