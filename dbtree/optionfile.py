"""
MySQL‑style option files (``.dbtree``, ``~/.my.cnf``).

    # sectionless directives apply to every environment
    host=db.example.com
    schema=product

    [staging]
    host=staging-db.example.com
    allow-drop-table
"""
from __future__ import annotations

import pathlib
import re
import typing as t

import structlog

from dbtree.config import FILE, Config, RawEntry, Source
from dbtree.constants import GLOBAL_OPTION_FILES, OPTION_FILE_NAME
from dbtree.errors import OptionFileError

logger = structlog.get_logger()

_SECTION_RE = re.compile(r"^\[\s*([^\]]*?)\s*\]$")


class OptionFile(Source):
    """One option file on disk; acts as a :class:`Source` once a section is chosen."""

    priority = FILE

    def __init__(
        self,
        directory: pathlib.Path | str,
        file_name: str = OPTION_FILE_NAME,
        *,
        ignore_unknown: bool = False,
    ) -> None:
        self.dir = pathlib.Path(directory)
        self.file_name = file_name
        super().__init__(str(self.path), ignore_unknown=ignore_unknown)
        self.contents: str | None = None
        self.selected: str = ""
        self.exclusive = False
        self._sections: dict[str, list[RawEntry]] = {"": []}
        self._lines: dict[tuple[str, str], int] = {}
        self._structured = False

    @property
    def path(self) -> pathlib.Path:
        return self.dir / self.file_name

    def exists(self) -> bool:
        return self.path.is_file()

    # --------------------------------------------------------------------- #
    # Reading / parsing
    # --------------------------------------------------------------------- #
    def read(self) -> None:
        """
        Load the file's text.  ``OSError`` propagates to the caller; text that
        is not UTF-8 raises :class:`OptionFileError`.
        """
        try:
            self.contents = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise OptionFileError(str(self.path), 0, f"not valid UTF-8 text ({exc.reason} at byte {exc.start})") from exc
        self._structured = False

    def _structure(self) -> None:
        if self._structured:
            return
        if self.contents is None:
            self.read()
        sections: dict[str, list[RawEntry]] = {"": []}
        current = ""
        for lineno, raw in enumerate(t.cast(str, self.contents).splitlines(), start=1):
            line = raw.strip()
            if not line or line[0] in "#;":
                continue
            if line.startswith("["):
                m = _SECTION_RE.match(line)
                if not m or not m.group(1):
                    raise OptionFileError(str(self.path), lineno, f"malformed section header {line!r}")
                current = m.group(1)
                sections.setdefault(current, [])
                continue
            key, has_value, value = line.partition("=")
            key = key.strip()
            if not key:
                raise OptionFileError(str(self.path), lineno, "missing option name")
            sections[current].append((key, _unquote(value.strip()) if has_value else None))
            self._lines[(current, key)] = lineno
        self._sections = sections
        self._structured = True

    def parse(self, cfg: Config) -> None:
        """
        Split the file into sections and validate *every* section against
        ``cfg.registry``, so a typo in an inactive environment still fails.
        """
        self._structure()
        for entries in self._sections.values():
            for raw_key, raw_value in entries:
                cfg.normalize_entry(raw_key, raw_value, self)

    def sections(self) -> list[str]:
        self._structure()
        return [name for name in self._sections if name]

    def use_section(self, name: str, *, exclusive: bool = False) -> bool:
        """
        Select *name* as the active section.  Returns ``False`` (and leaves only
        sectionless directives active) when the file has no such section.
        With *exclusive*, sectionless directives are ignored as well.
        """
        self._structure()
        self.exclusive = exclusive
        if name in self._sections:
            self.selected = name
            return True
        self.selected = ""
        return False

    def entries(self) -> list[RawEntry]:
        self._structure()
        active = [] if self.exclusive else list(self._sections[""])
        if self.selected:
            active.extend(self._sections[self.selected])
        return active

    # --------------------------------------------------------------------- #
    # Writing
    # --------------------------------------------------------------------- #
    def set(self, key: str, value: str | None, section: str = "") -> None:
        if self.contents is not None:
            self._structure()
        self._structured = True
        entries = self._sections.setdefault(section, [])
        entries[:] = [(k, v) for k, v in entries if k != key]
        entries.append((key, value))

    def render(self) -> str:
        out: list[str] = []
        for name, entries in self._sections.items():
            if name:
                if out:
                    out.append("")
                out.append(f"[{name}]")
            for key, value in entries:
                out.append(key if value is None else f"{key}={value}")
        return "\n".join(out) + "\n"

    def write(self, overwrite: bool = False) -> None:
        """Write the file; refuses to clobber an existing one unless *overwrite*."""
        mode = "w" if overwrite else "x"
        with self.path.open(mode, encoding="utf-8") as fh:
            fh.write(self.render())
        self.contents = self.render()
        logger.debug("option_file_written", path=str(self.path))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def add_global_option_files(cfg: Config) -> None:
    """
    Layer system‑ and user‑wide option files beneath any directory's own
    ``.dbtree`` files.  Missing files are skipped; parse errors are fatal.
    """
    for dirname, file_name, is_my_cnf in GLOBAL_OPTION_FILES:
        option_file = OptionFile(
            pathlib.Path(dirname).expanduser(), file_name, ignore_unknown=is_my_cnf
        )
        try:
            option_file.read()
        except OSError:
            continue
        if is_my_cnf:
            # server sections of my.cnf are none of our business
            if not option_file.use_section("client", exclusive=True):
                continue
        else:
            option_file.parse(cfg)
            option_file.use_section(cfg.get("environment"))
        cfg.add_source(option_file)
        logger.debug("global_option_file_applied", path=str(option_file.path))
