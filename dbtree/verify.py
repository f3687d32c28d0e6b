"""
Round-trip check of generated ALTER TABLE statements.

Each table with a runnable ALTER is created on a scratch schema as it
exists on the instance, altered, and compared with the same table created
straight from its ``*.sql`` file.
"""
from __future__ import annotations

import dataclasses

import structlog

from dbtree.driver import Instance
from dbtree.errors import VerifyError
from dbtree.schema.diff import SchemaDiff, StatementModifiers
from dbtree.schema.model import normalize
from dbtree.utils import escape_identifier

logger = structlog.get_logger()

TEMP_SCHEMA = "_dbtree_tmp"


def _bare(stmt: str) -> str:
    return stmt.strip().rstrip(";")


def _show_create(cur, table: str) -> str:
    cur.execute(f"SHOW CREATE TABLE {escape_identifier(table)}")
    return cur.fetchone()[1]


def verify_diff(instance: Instance, diff: SchemaDiff, mods: StatementModifiers) -> None:
    """
    Raise :class:`VerifyError` for the first ALTER of *diff* that does not
    turn the instance's table into the declared one.  Destructive clauses
    are always included so the comparison sees the complete change.
    """
    mods = dataclasses.replace(mods, allow_drop_column=True)
    alters = diff.alters(mods)
    if not alters:
        return

    with instance.scratch_schema(TEMP_SCHEMA) as cur:
        for table_diff in alters:
            name = table_diff.table_name
            drop = f"DROP TABLE {escape_identifier(name)}"

            cur.execute(_bare(table_diff.from_table.create_statement))
            cur.execute(_bare(table_diff.alter_statement(mods)))
            actual = _show_create(cur, name)
            cur.execute(drop)

            cur.execute(_bare(table_diff.to_table.create_statement))
            expected = _show_create(cur, name)
            cur.execute(drop)

            if normalize(actual) != normalize(expected):
                raise VerifyError(name, expected, actual)
            logger.debug("alter_verified", instance=str(instance), table=name)
