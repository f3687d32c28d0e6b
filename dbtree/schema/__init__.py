from dbtree.schema.diff import (
    NEXT_AUTO_INC_ALWAYS,
    NEXT_AUTO_INC_IF_INCREASED,
    NEXT_AUTO_INC_IGNORE,
    SchemaDiff,
    StatementModifiers,
    TableDiff,
)
from dbtree.schema.model import Schema, Table

__all__ = [
    "NEXT_AUTO_INC_ALWAYS",
    "NEXT_AUTO_INC_IF_INCREASED",
    "NEXT_AUTO_INC_IGNORE",
    "Schema",
    "SchemaDiff",
    "StatementModifiers",
    "Table",
    "TableDiff",
]
