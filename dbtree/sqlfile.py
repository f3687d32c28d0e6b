"""
One ``*.sql`` file per table: ``<dir>/<table>.sql`` holding a single
``CREATE TABLE`` statement.
"""
from __future__ import annotations

import pathlib
import re
import typing as t

import sqlparse

from dbtree.constants import MAX_SQL_FILE_SIZE
from dbtree.errors import SQLFileError
from dbtree.utils import split_sql

if t.TYPE_CHECKING:
    from dbtree.dir import Dir

_CREATE_RE = re.compile(r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?`?(\w+)`?", re.I)


class SQLFile:
    """
    Representation of one table definition file.  Read problems are kept on
    :attr:`error` so a directory listing never fails because of one bad file.
    """

    def __init__(self, dir: "Dir", file_name: str, contents: str = "") -> None:
        self.dir = dir
        self.file_name = file_name
        self.contents: str = contents
        self.error: SQLFileError | None = None

    def __str__(self) -> str:
        return str(self.path)

    @property
    def path(self) -> pathlib.Path:
        return pathlib.Path(self.dir.path) / self.file_name

    @property
    def table_name(self) -> str:
        return self.file_name[: -len(".sql")]

    def validate_path(self, must_exist: bool) -> None:
        """Raise ``ValueError`` unless this is a usable ``*.sql`` path."""
        if not self.file_name.endswith(".sql") or self.file_name == ".sql":
            raise ValueError(f"{self.path}: not a .sql file")
        if self.file_name.startswith("."):
            raise ValueError(f"{self.path}: hidden files are ignored")
        if not must_exist:
            return
        if not self.path.is_file():
            raise ValueError(f"{self.path}: not a regular file")
        if self.path.stat().st_size > MAX_SQL_FILE_SIZE:
            raise ValueError(f"{self.path}: file too large; size limit is {MAX_SQL_FILE_SIZE} bytes")

    def read(self) -> str:
        """
        Load the file and reduce it to its CREATE TABLE statement.  On any
        problem :attr:`error` is set and an empty string returned.
        """
        self.error = None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            self.error = SQLFileError(str(self.path), f"unable to read: {exc}")
            self.contents = ""
            return ""

        creates = []
        for stmt in split_sql(text):
            parsed = sqlparse.parse(stmt)
            if parsed and parsed[0].get_type() == "CREATE" and _CREATE_RE.search(stmt):
                creates.append(stmt.rstrip(";").strip())

        if len(creates) != 1:
            self.error = SQLFileError(
                str(self.path), f"expected exactly one CREATE TABLE statement, found {len(creates)}"
            )
        else:
            found = t.cast(re.Match, _CREATE_RE.search(creates[0])).group(1)
            if found != self.table_name:
                self.error = SQLFileError(
                    str(self.path), f"table name {found!r} does not match file name"
                )
        self.contents = creates[0] if len(creates) == 1 else ""
        return self.contents

    def write(self) -> None:
        self.path.write_text(self.contents.rstrip().rstrip(";") + ";\n", encoding="utf-8")

    def delete(self) -> None:
        self.path.unlink()
