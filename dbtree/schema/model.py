from __future__ import annotations

import dataclasses
import re
import typing as t

from dbtree.errors import SQLFileError
from dbtree.utils import escape_identifier

if t.TYPE_CHECKING:
    from dbtree.sqlfile import SQLFile

_AUTO_INC_RE = re.compile(r"\bAUTO_INCREMENT\s*=\s*(\d+)\s*", re.I)

# Leading words of a table definition line that is not a column.
_NON_COLUMN_WORDS = {
    "primary", "key", "index", "unique", "constraint", "foreign",
    "fulltext", "spatial", "check",
}


def normalize(stmt: str) -> str:
    """Canonical text used to compare two CREATE TABLE statements."""
    stmt = re.sub(r"\bIF\s+NOT\s+EXISTS\b", "", stmt, flags=re.I)
    # the next auto-increment value only ever moves forward on its own
    stmt = _AUTO_INC_RE.sub("", stmt)
    stmt = re.sub(r"\s+", " ", stmt)
    stmt = re.sub(r"\s*([(),])\s*", r"\1", stmt)
    return stmt.strip().rstrip(";").strip().lower()


def split_definitions(stmt: str) -> tuple[list[str], str]:
    """
    Split a CREATE TABLE statement into its column / index definitions and
    the trailing table options.  Commas inside parentheses or quotes do not
    separate definitions.
    """
    start = stmt.find("(")
    if start < 0:
        return [], ""
    parts: list[str] = []
    depth = 0
    quote = ""
    current = start + 1
    for i in range(start, len(stmt)):
        ch = stmt[i]
        if quote:
            if ch == quote:
                quote = ""
            continue
        if ch in "`'\"":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                parts.append(stmt[current:i])
                options = stmt[i + 1:].strip().rstrip(";").strip()
                return [p.strip() for p in parts if p.strip()], options
        elif ch == "," and depth == 1:
            parts.append(stmt[current:i])
            current = i + 1
    return [p.strip() for p in parts if p.strip()], ""


def _column_name(definition: str) -> str | None:
    if definition.startswith("`"):
        end = definition.find("`", 1)
        return definition[1:end] if end > 0 else None
    first = definition.split(None, 1)[0]
    if first.lower() in _NON_COLUMN_WORDS:
        return None
    return first


@dataclasses.dataclass(frozen=True)
class Table:
    name: str
    create_statement: str

    def normalized(self) -> str:
        return normalize(self.create_statement)

    def columns(self) -> dict[str, str]:
        """Column name → definition, in table order."""
        definitions, _ = split_definitions(self.create_statement)
        columns = {}
        for definition in definitions:
            name = _column_name(definition)
            if name is not None:
                columns[name] = definition
        return columns

    def keys(self) -> list[str]:
        """Normalized index and constraint definitions."""
        definitions, _ = split_definitions(self.create_statement)
        return [normalize(d) for d in definitions if _column_name(d) is None]

    def options(self) -> str:
        """Normalized table options, without AUTO_INCREMENT."""
        _, options = split_definitions(self.create_statement)
        return normalize(options)

    def auto_increment(self) -> int | None:
        _, options = split_definitions(self.create_statement)
        m = _AUTO_INC_RE.search(options)
        return int(m.group(1)) if m else None


@dataclasses.dataclass
class Schema:
    name: str
    tables: dict[str, Table] = dataclasses.field(default_factory=dict)
    character_set: str = ""
    collation: str = ""

    @classmethod
    def from_sql_files(cls, name: str, files: t.Iterable["SQLFile"]) -> "Schema":
        """Build the declared schema; the first file carrying an error is raised."""
        schema = cls(name)
        for sf in files:
            if sf.error is not None:
                raise sf.error
            if sf.table_name in schema.tables:
                raise SQLFileError(str(sf.path), f"duplicate definition of table {sf.table_name!r}")
            schema.tables[sf.table_name] = Table(sf.table_name, sf.contents)
        return schema

    def create_statement(self) -> str:
        stmt = f"CREATE DATABASE {escape_identifier(self.name)}"
        if self.character_set:
            stmt += f" CHARACTER SET {self.character_set}"
        if self.collation:
            stmt += f" COLLATE {self.collation}"
        return stmt

    def table_names(self) -> list[str]:
        return sorted(self.tables)
