"""Pytest configuration and fixtures."""

import re
import types
from contextlib import contextmanager

import mysql.connector
import pytest

from dbtree.config import ArgSource, Config
from dbtree.driver import Instance
from dbtree.logging_utils import configure_logging
from dbtree.options import build_registry

_TABLE_STMT_RE = re.compile(r"\s*(CREATE|ALTER|DROP|SHOW CREATE) TABLE `([^`]+)`", re.I)


class FakeCursor:
    """
    Cursor of a scratch schema.  CREATE TABLE stores the statement as the
    table's definition; ALTER TABLE replaces it with ``alter_results[table]``
    when one is given and leaves it unchanged otherwise.
    """

    def __init__(self, alter_results, log):
        self.alter_results = alter_results
        self.log = log
        self.tables = {}
        self._row = None

    def execute(self, stmt, params=None):
        self.log.append(stmt)
        m = _TABLE_STMT_RE.match(stmt)
        if not m:
            return
        verb, name = m.group(1).upper(), m.group(2)
        if verb == "CREATE":
            self.tables[name] = stmt
        elif verb == "ALTER":
            self.tables[name] = self.alter_results.get(name, self.tables[name])
        elif verb == "DROP":
            del self.tables[name]
        else:
            self._row = (name, self.tables[name])

    def fetchone(self):
        return self._row


class FakeInstance(Instance):
    """An :class:`Instance` answering from an in‑memory map instead of a server."""

    servers: dict = {}
    scratch = types.SimpleNamespace(alter_results={}, log=[])

    def check_connection(self):
        if str(self) not in self.servers:
            raise mysql.connector.errors.InterfaceError(msg=f"Can't connect to MySQL server on '{self}'")

    def schema_names(self):
        return sorted(self.servers[str(self)])

    def schema(self, name):
        return self.servers[str(self)].get(name)

    @contextmanager
    def scratch_schema(self, name):
        self.scratch.log.append(f"CREATE DATABASE `{name}`")
        yield FakeCursor(self.scratch.alter_results, self.scratch.log)


@pytest.fixture(autouse=True)
def quiet_logging():
    configure_logging(0)


@pytest.fixture(autouse=True)
def no_global_option_files(monkeypatch):
    monkeypatch.setattr("dbtree.optionfile.GLOBAL_OPTION_FILES", ())


@pytest.fixture
def servers(monkeypatch):
    """Map of ``host:port`` → {schema name: Schema} served by FakeInstance."""
    known = {}
    monkeypatch.setattr(FakeInstance, "servers", known)
    monkeypatch.setattr("dbtree.dir.Instance", FakeInstance)
    monkeypatch.setattr("dbtree.target.Instance", FakeInstance)
    return known


@pytest.fixture
def scratch(monkeypatch):
    """
    Scratch-schema state of FakeInstance: ``alter_results`` maps a table
    name to what SHOW CREATE TABLE reports after it is altered, ``log``
    collects every statement run.
    """
    state = types.SimpleNamespace(alter_results={}, log=[])
    monkeypatch.setattr(FakeInstance, "scratch", state)
    return state


@pytest.fixture
def registry():
    return build_registry()


@pytest.fixture
def make_config(registry):
    def _make(*args):
        return Config(registry, ArgSource([(a, None) if "=" not in a else tuple(a.split("=", 1)) for a in args]))

    return _make


@pytest.fixture
def tree(tmp_path, monkeypatch):
    """
    Write ``{relative path: contents}`` under a project root that holds a
    ``.git`` directory; returns the root.  ``None`` contents create a dir.
    """
    root = tmp_path / "proj"
    (root / ".git").mkdir(parents=True)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))

    def _write(files):
        for rel, contents in files.items():
            path = root / rel
            if contents is None:
                path.mkdir(parents=True, exist_ok=True)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(contents)
        return root

    return _write
