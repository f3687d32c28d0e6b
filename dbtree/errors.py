"""
Exception types shared across dbtree.

Configuration problems are always fatal to the invocation that triggered
them; connection problems are attached to the affected target instead of
being raised to the caller.
"""
from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised for any user‑visible configuration problem."""


class OptionError(ConfigError):
    """Base for problems with a single option, optionally tied to a source."""

    def __init__(self, name: str, source: str = "") -> None:
        self.name = name
        self.source = source
        super().__init__(self._render())

    def _prefix(self) -> str:
        return f"{self.source}: " if self.source else ""

    def _render(self) -> str:  # pragma: no cover - overridden
        return f"{self._prefix()}Problem with option {self.name}"


class UnknownOptionError(OptionError):
    def _render(self) -> str:
        return f'{self._prefix()}Unknown option "{self.name}"'


class MissingValueError(OptionError):
    def _render(self) -> str:
        return f"{self._prefix()}Missing required value for option {self.name}"


class DuplicateOptionError(OptionError):
    """Two descriptors registered under the same normalized name in one scope."""

    def _render(self) -> str:
        return f"Option {self.name!r} is registered more than once"


class OptionFileError(ConfigError):
    def __init__(self, path: str, line: int, msg: str) -> None:
        self.path = path
        self.line = line
        super().__init__(f"{path} line {line}: {msg}")


class DirectoryError(RuntimeError):
    """Raised when a directory cannot be listed, created or used."""


class InstanceConnectionError(RuntimeError):
    """Invalid connection information or an unreachable instance."""


class SQLFileError(RuntimeError):
    """A ``*.sql`` file that cannot be read or does not hold one CREATE TABLE."""

    def __init__(self, path: str, msg: str) -> None:
        self.path = path
        super().__init__(f"{path}: {msg}")


class VerifyError(RuntimeError):
    """A generated ALTER TABLE did not reproduce the declared table."""

    def __init__(self, table: str, expected: str, actual: str) -> None:
        self.table = table
        self.expected = expected
        self.actual = actual
        super().__init__(f"Generated ALTER for table {table!r} does not match its *.sql file")
