from __future__ import annotations

import dataclasses
import difflib

from dbtree.schema.model import Schema, Table, normalize
from dbtree.utils import escape_identifier

CREATE = "create"
DROP = "drop"
ALTER = "alter"

# How a changed AUTO_INCREMENT table option is rendered.
NEXT_AUTO_INC_IGNORE = "ignore"
NEXT_AUTO_INC_IF_INCREASED = "if-increased"
NEXT_AUTO_INC_ALWAYS = "always"


@dataclasses.dataclass(frozen=True)
class StatementModifiers:
    """Behaviour switches applied when rendering a :class:`TableDiff`."""

    allow_drop_table: bool = False
    allow_drop_column: bool = False
    next_auto_inc: str = NEXT_AUTO_INC_IGNORE


@dataclasses.dataclass(frozen=True)
class TableDiff:
    kind: str
    from_table: Table | None
    to_table: Table | None

    @property
    def table_name(self) -> str:
        table = self.to_table if self.to_table is not None else self.from_table
        return table.name if table is not None else ""

    # ------------------------------------------------------------------ #
    # ALTER TABLE
    # ------------------------------------------------------------------ #
    def dropped_columns(self) -> list[str]:
        if self.kind != ALTER:
            return []
        to_columns = self.to_table.columns()
        return [name for name in self.from_table.columns() if name not in to_columns]

    def alter_clauses(self, mods: StatementModifiers) -> list[str] | None:
        """
        Clauses of the ALTER TABLE turning the instance's table into the
        declared one, or ``None`` when the change has to be written by hand
        (index, constraint or table option changes, reordered columns).
        DROP COLUMN clauses are left out unless *mods* allows them.
        """
        if self.kind != ALTER:
            return None
        old, new = self.from_table, self.to_table
        if old.keys() != new.keys() or old.options() != new.options():
            return None

        old_columns = old.columns()
        new_columns = new.columns()
        kept_old_order = [c for c in old_columns if c in new_columns]
        kept_new_order = [c for c in new_columns if c in old_columns]
        if kept_old_order != kept_new_order:
            return None

        clauses = []
        if mods.allow_drop_column:
            for name in self.dropped_columns():
                clauses.append(f"DROP COLUMN {escape_identifier(name)}")

        previous = None
        for name, definition in new_columns.items():
            if name not in old_columns:
                position = f"AFTER {escape_identifier(previous)}" if previous else "FIRST"
                clauses.append(f"ADD COLUMN {definition} {position}")
            elif normalize(old_columns[name]) != normalize(definition):
                clauses.append(f"MODIFY COLUMN {definition}")
            previous = name

        auto_inc = self._auto_inc_clause(mods)
        if auto_inc:
            clauses.append(auto_inc)
        return clauses

    def _auto_inc_clause(self, mods: StatementModifiers) -> str:
        wanted = self.to_table.auto_increment()
        current = self.from_table.auto_increment()
        if wanted is None or mods.next_auto_inc == NEXT_AUTO_INC_IGNORE:
            return ""
        if mods.next_auto_inc == NEXT_AUTO_INC_IF_INCREASED and wanted <= (current or 1):
            return ""
        if wanted == current:
            return ""
        return f"AUTO_INCREMENT = {wanted}"

    def alter_statement(self, mods: StatementModifiers) -> str:
        """The bare ALTER TABLE, or ``""`` if there is nothing to run."""
        clauses = self.alter_clauses(mods)
        if not clauses:
            return ""
        return f"ALTER TABLE {escape_identifier(self.table_name)} {', '.join(clauses)};"

    def _manual_alter(self) -> str:
        lines = [f"-- diff for table {escape_identifier(self.table_name)}"]
        for line in difflib.unified_diff(
            self.from_table.create_statement.splitlines(),
            self.to_table.create_statement.splitlines(),
            fromfile="instance",
            tofile="filesystem",
            lineterm="",
        ):
            lines.append(f"-- {line}")
        lines.append(f"-- manual ALTER required for {escape_identifier(self.table_name)}")
        return "\n".join(lines)

    # ------------------------------------------------------------------ #
    def statement(self, mods: StatementModifiers) -> str:
        """
        Render this difference; destructive or manual steps come out
        commented.  Returns ``""`` when *mods* leave nothing to do.
        """
        if self.kind == CREATE:
            return self.to_table.create_statement.rstrip().rstrip(";") + ";"

        if self.kind == DROP:
            drop_stmt = f"DROP TABLE {escape_identifier(self.table_name)};"
            if mods.allow_drop_table:
                return drop_stmt
            return f"-- !!! would execute `{drop_stmt}` (destructive); use --allow-drop-table"

        if self.alter_clauses(mods) is None:
            return self._manual_alter()

        lines = []
        if not mods.allow_drop_column:
            for name in self.dropped_columns():
                lines.append(
                    f"-- !!! skipping DROP COLUMN {escape_identifier(name)} on "
                    f"{escape_identifier(self.table_name)} (destructive); use --allow-drop-column"
                )
        alter = self.alter_statement(mods)
        if alter:
            lines.append(alter)
        return "\n".join(lines)


class SchemaDiff:
    """
    Differences that transform *from_schema* (observed on an instance, or
    ``None`` if the schema does not exist there) into *to_schema* (declared
    on disk).
    """

    def __init__(self, from_schema: Schema | None, to_schema: Schema) -> None:
        self.from_schema = from_schema
        self.to_schema = to_schema
        self.table_diffs: list[TableDiff] = self._compute()

    def _compute(self) -> list[TableDiff]:
        current = self.from_schema.tables if self.from_schema else {}
        desired = self.to_schema.tables
        diffs: list[TableDiff] = []

        for name in sorted(desired.keys() - current.keys()):
            diffs.append(TableDiff(CREATE, None, desired[name]))

        for name in sorted(current.keys() - desired.keys()):
            diffs.append(TableDiff(DROP, current[name], None))

        for name in sorted(desired.keys() & current.keys()):
            old, new = current[name], desired[name]
            if old.normalized() != new.normalized() or (
                new.auto_increment() is not None and new.auto_increment() != old.auto_increment()
            ):
                diffs.append(TableDiff(ALTER, old, new))

        return diffs

    def alters(self, mods: StatementModifiers) -> list[TableDiff]:
        """ALTER diffs that render to a runnable ALTER TABLE under *mods*."""
        return [d for d in self.table_diffs if d.alter_statement(mods)]

    def __bool__(self) -> bool:
        return bool(self.table_diffs)
