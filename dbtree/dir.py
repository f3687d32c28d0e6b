"""
A directory of the schema tree together with its effective configuration.

Configuration cascades: every ``.dbtree`` file from the top of the project
(the first directory containing ``.git``, the user's home directory or the
filesystem root) down to the directory itself is layered in that order, so
the closest file wins.  Command‑line options still outrank every file.
"""
from __future__ import annotations

import os
import pathlib
import re
import shutil
import urllib.parse

import mysql.connector
import structlog

from dbtree.config import Config
from dbtree.constants import DSN_PARAMS, MASKED_PASSWORD, OPTION_FILE_NAME
from dbtree.driver import Instance
from dbtree.errors import DirectoryError, InstanceConnectionError
from dbtree.optionfile import OptionFile
from dbtree.sqlfile import SQLFile
from dbtree.target import TargetStream

logger = structlog.get_logger()

# Characters that would move the host into another part of the DSN URL.
_HOST_RESERVED_RE = re.compile(r"[@/?#\s]")


class Dir:
    def __init__(self, path: pathlib.Path | str, config: Config, section: str) -> None:
        self.path = pathlib.Path(path)
        self.config = config
        self.section = section

    @classmethod
    def load(cls, path: pathlib.Path | str, base_config: Config) -> "Dir":
        """
        Return the directory at *path* with every option file from its
        ancestors and itself applied on top of *base_config*.

        *base_config* should only hold global configuration; it is cloned and
        never modified.
        """
        try:
            clean = pathlib.Path(os.path.abspath(os.path.normpath(path)))
        except OSError:
            clean = pathlib.Path(path)

        dir = cls(clean, base_config.clone(), base_config.get("environment"))
        for option_file in dir._cascading_option_files():
            option_file.parse(dir.config)
            option_file.use_section(dir.section)  # a missing section is fine
            dir.config.add_source(option_file)
            logger.debug("option_file_applied", path=str(option_file.path), section=dir.section)
        return dir

    def __str__(self) -> str:
        return str(self.path)

    def __repr__(self) -> str:
        return f"<Dir {self.path}>"

    # --------------------------------------------------------------------- #
    # Option files
    # --------------------------------------------------------------------- #
    def _cascading_option_files(self) -> list[OptionFile]:
        """
        Option files of this dir and its parents, closest‑to‑root first.

        Ancestors that cannot be listed are skipped, since some may not exist
        yet (e.g. when initialising a new tree).  An option file that exists
        but cannot be read is fatal.
        """
        home = pathlib.Path(os.path.normpath(os.path.expanduser("~")))
        files: list[OptionFile] = []

        for cur in (self.path, *self.path.parents):
            stop = cur == home
            try:
                names = set(os.listdir(cur))
            except OSError:
                names = set()
            if ".git" in names:
                stop = True
            if OPTION_FILE_NAME in names and (cur / OPTION_FILE_NAME).is_file():
                option_file = OptionFile(cur, OPTION_FILE_NAME)
                try:
                    option_file.read()
                except OSError as exc:
                    raise DirectoryError(f"Unable to read {option_file.path}: {exc}") from exc
                files.append(option_file)
            if stop:
                break

        files.reverse()
        return files

    def has_file(self, name: str) -> bool:
        return (self.path / name).exists()

    def has_option_file(self) -> bool:
        return self.has_file(OPTION_FILE_NAME)

    def option_file(self) -> OptionFile:
        """This dir's ``.dbtree`` file, read but not parsed."""
        option_file = OptionFile(self.path, OPTION_FILE_NAME)
        try:
            option_file.read()
        except OSError as exc:
            raise DirectoryError(f"Unable to read {option_file.path}: {exc}") from exc
        return option_file

    def _apply_own_option_file(self) -> None:
        if not self.has_option_file():
            return
        option_file = self.option_file()
        option_file.parse(self.config)
        option_file.use_section(self.section)
        self.config.add_source(option_file)

    def create_option_file(self, option_file: OptionFile) -> None:
        """Write *option_file* into this dir and layer it immediately."""
        option_file.dir = self.path
        option_file.name = str(option_file.path)
        try:
            option_file.write(overwrite=False)
        except OSError as exc:
            raise DirectoryError(f"Unable to write to {option_file.path}: {exc}") from exc
        option_file.use_section(self.section)
        self.config.add_source(option_file)

    # --------------------------------------------------------------------- #
    # Filesystem
    # --------------------------------------------------------------------- #
    def create_if_missing(self) -> bool:
        """Create the directory (and parents); ``True`` if it was created."""
        if self.path.exists():
            if not self.path.is_dir():
                raise DirectoryError(f"Path {self.path} already exists but is not a directory")
            return False
        try:
            self.path.mkdir(parents=True)
        except OSError as exc:
            raise DirectoryError(f"Unable to create directory {self.path}: {exc}") from exc
        return True

    def delete(self) -> None:
        shutil.rmtree(self.path)

    def child_paths(self) -> list[pathlib.Path]:
        try:
            return sorted(p for p in self.path.iterdir() if p.is_dir())
        except OSError as exc:
            raise DirectoryError(f"Unable to list directory {self.path}: {exc}") from exc

    def child(self, path: pathlib.Path) -> "Dir":
        """Subdirectory at *path* with its own option file layered on a clone of ours."""
        subdir = Dir(path, self.config.clone(), self.section)
        subdir._apply_own_option_file()
        return subdir

    def subdirs(self) -> list["Dir"]:
        """
        Immediate subdirectories.  Failing to list this dir, or to read or
        parse any subdir's option file, raises.
        """
        return [self.child(path) for path in self.child_paths()]

    def create_subdir(self, name: str, option_file: OptionFile | None = None) -> "Dir":
        subdir = Dir(self.path / name, self.config.clone(), self.section)
        if not subdir.create_if_missing():
            raise DirectoryError(f"Directory {subdir} already exists")
        if option_file is not None:
            subdir.create_option_file(option_file)
        return subdir

    def sql_files(self) -> list[SQLFile]:
        """
        Valid ``*.sql`` files directly in this dir, already read.  Per‑file
        problems are recorded on each :class:`SQLFile`; only failing to list
        the directory raises.
        """
        try:
            names = sorted(p.name for p in self.path.iterdir())
        except OSError as exc:
            raise DirectoryError(f"Unable to list directory {self.path}: {exc}") from exc

        result = []
        for name in names:
            sf = SQLFile(self, name)
            try:
                sf.validate_path(must_exist=True)
            except ValueError:
                continue
            sf.read()
            result.append(sf)
        return result

    # --------------------------------------------------------------------- #
    # Instances
    # --------------------------------------------------------------------- #
    def has_host(self) -> bool:
        return self.config.changed("host")

    def has_schema(self) -> bool:
        return self.config.changed("schema")

    def _uses_socket(self) -> bool:
        return self.config.get("host") == "localhost" and (
            self.config.changed("socket") or not self.config.changed("port")
        )

    def instance_key(self) -> str:
        """
        String identifying the server this dir targets, without connecting.
        Empty when no host is configured.
        """
        if not self.has_host():
            return ""
        host = self.config.get("host")
        if self._uses_socket():
            return f"{host}:{self.config.get('socket')}"
        return f"{host}:{self.config.get_int_or_default('port')}"

    def _dsn(self, mask_password: bool = False) -> str:
        user = urllib.parse.quote(self.config.get("user"), safe="")
        if not self.config.changed("password"):
            credentials = user
        elif mask_password:
            credentials = f"{user}:{MASKED_PASSWORD}"
        else:
            credentials = f"{user}:{urllib.parse.quote(self.config.get('password'), safe='')}"

        params = dict(DSN_PARAMS)
        if self._uses_socket():
            address = "localhost"
            params = {"unix_socket": self.config.get("socket"), **params}
        else:
            address = f"{self.config.get('host')}:{self.config.get_int_or_default('port')}"
        return f"mysql://{credentials}@{address}/?{urllib.parse.urlencode(params)}"

    def first_instance(self) -> Instance | None:
        """
        The instance this dir's configuration points at, or ``None`` when no
        host is configured.  Raises :class:`InstanceConnectionError` (with the
        password masked) if the DSN is invalid or the instance unreachable.
        """
        if not self.has_host():
            return None

        safe_dsn = self._dsn(mask_password=True)
        host = self.config.get("host")
        if _HOST_RESERVED_RE.search(host):
            raise InstanceConnectionError(
                f"Invalid connection information for {self} (DSN={safe_dsn}): "
                f"host {host!r} contains a reserved character"
            )
        try:
            instance = Instance(self._dsn())
        except ValueError as exc:
            raise InstanceConnectionError(
                f"Invalid connection information for {self} (DSN={safe_dsn}): {exc}"
            ) from exc
        try:
            instance.check_connection()
        except mysql.connector.Error as exc:
            raise InstanceConnectionError(
                f"Unable to connect to {instance} for {self} (DSN={safe_dsn}): {exc}"
            ) from exc
        return instance

    def targets(self, expand_instances: bool = False, expand_schemas: bool = False) -> TargetStream:
        """Resolve this dir and its subtree in a background worker; see :mod:`dbtree.target`."""
        return TargetStream(self, expand_instances, expand_schemas)
