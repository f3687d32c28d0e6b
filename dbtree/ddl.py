"""
Rendering of one table difference for output, optionally wrapped in a
shell command.

With ``alter-wrapper`` set, every runnable ALTER TABLE is printed as the
wrapper template instead of raw DDL.  ``{NAME}`` placeholders are replaced
by shell-quoted values:

    HOST PORT SOCKET USER PASSWORD SCHEMA TABLE DDL CLAUSES TYPE DIRNAME DIRPATH
"""
from __future__ import annotations

import re
import shlex
import typing as t

from dbtree.schema.diff import ALTER, StatementModifiers, TableDiff

if t.TYPE_CHECKING:
    from dbtree.target import Target

_VARIABLE_RE = re.compile(r"\{([A-Z]+)\}")


class DDLStatement:
    """The text printed for one :class:`TableDiff` of *target*."""

    def __init__(
        self,
        table_diff: TableDiff,
        mods: StatementModifiers,
        target: "Target",
        wrapper: str = "",
    ) -> None:
        self.table_diff = table_diff
        self.error: Exception | None = None
        self.text = table_diff.statement(mods)

        alter = table_diff.alter_statement(mods) if table_diff.kind == ALTER else ""
        if wrapper and alter:
            variables = self._variables(target, mods, alter)
            try:
                command = _VARIABLE_RE.sub(lambda m: shlex.quote(variables[m.group(1)]), wrapper)
            except KeyError as exc:
                self.error = ValueError(f"Unknown variable {{{exc.args[0]}}} in alter-wrapper {wrapper!r}")
                self.text = f"-- {self.error}"
            else:
                self.text = self.text.replace(alter, command)

    def _variables(self, target: "Target", mods: StatementModifiers, alter: str) -> dict[str, str]:
        cfg = target.dir.config
        instance = target.instance
        clauses = self.table_diff.alter_clauses(mods) or []
        return {
            "HOST": instance.host if instance else cfg.get("host"),
            "PORT": str(instance.port) if instance else cfg.get("port"),
            "SOCKET": cfg.get("socket"),
            "USER": cfg.get("user"),
            "PASSWORD": cfg.get("password") if cfg.changed("password") else "",
            "SCHEMA": target.schema_from_dir.name if target.schema_from_dir else cfg.get("schema"),
            "TABLE": self.table_diff.table_name,
            "DDL": alter,
            "CLAUSES": ", ".join(clauses),
            "TYPE": self.table_diff.kind.upper(),
            "DIRNAME": target.dir.path.name,
            "DIRPATH": str(target.dir.path),
        }

    def __bool__(self) -> bool:
        return bool(self.text)

    def __str__(self) -> str:
        return self.text
