"""
Layered configuration.

A :class:`Config` is a stack of named *sources* (built‑in defaults, option
files, the command line, in‑memory overrides).  Each source is validated
against the :class:`~dbtree.options.OptionRegistry` once, when it is added,
and stored as a frozen layer; lookups scan the layers from the highest
precedence down.
"""
from __future__ import annotations

import types
import typing as t

import structlog

from dbtree.errors import MissingValueError, UnknownOptionError
from dbtree.options import BOOL, FALSEY_VALUES, Option, OptionRegistry, normalize_token

logger = structlog.get_logger()

# Source priorities.  Sources of equal priority stack in the order added.
DEFAULTS = 0
FILE = 1
CLI = 2
OVERRIDE = 3

RawEntry = t.Tuple[str, t.Optional[str]]


class Source:
    """
    A named, ordered set of raw ``key[=value]`` entries.

    ``None`` as a value means the key was given without ``=value``.
    """

    priority: int = OVERRIDE

    def __init__(
        self,
        name: str,
        entries: t.Iterable[RawEntry] | t.Mapping[str, t.Optional[str]] = (),
        *,
        ignore_unknown: bool = False,
    ) -> None:
        self.name = name
        self.ignore_unknown = ignore_unknown
        if isinstance(entries, t.Mapping):
            entries = entries.items()
        self._entries: list[RawEntry] = list(entries)

    def entries(self) -> list[RawEntry]:
        return list(self._entries)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class ArgSource(Source):
    """Options supplied on the command line; outranks every file."""

    priority = CLI

    def __init__(self, entries: t.Iterable[RawEntry] = ()) -> None:
        super().__init__("command line", entries)


class _Layer(t.NamedTuple):
    name: str
    priority: int
    values: t.Mapping[str, str]


class Config:
    """
    Effective configuration for one directory.

    ``changed(key)`` distinguishes "the user set this somewhere" from "this is
    the built‑in default", even when both hold the same value.
    """

    def __init__(self, registry: OptionRegistry, *sources: Source) -> None:
        self.registry = registry
        defaults = {opt.name: opt.default for opt in registry}
        self._layers: list[_Layer] = [
            _Layer("defaults", DEFAULTS, types.MappingProxyType(defaults))
        ]
        for source in sources:
            self.add_source(source)

    # --------------------------------------------------------------------- #
    # Building
    # --------------------------------------------------------------------- #
    def normalize_entry(
        self, raw_key: str, raw_value: str | None, source: Source
    ) -> tuple[Option, str] | None:
        """
        Validate one raw entry.  Returns ``None`` for entries that are skipped
        (blank keys, ``loose-`` unknowns, unknowns in lenient sources).
        """
        token = normalize_token(raw_key if raw_value is None else f"{raw_key}={raw_value}")
        if not token.key:
            return None
        opt = self.registry.get(token.key)
        if opt is None:
            if token.loose or source.ignore_unknown:
                logger.debug("unknown_option_ignored", option=token.key, source=source.name)
                return None
            raise UnknownOptionError(token.key, source.name)

        value = token.value
        if raw_value is None and value == "":
            if opt.value_required:
                raise MissingValueError(opt.name, source.name)
            value = opt.value_for_flag()
        return opt, value

    def add_source(self, source: Source) -> None:
        """Validate *source* and layer it above every source of its priority."""
        values: dict[str, str] = {}
        for raw_key, raw_value in source.entries():
            normalized = self.normalize_entry(raw_key, raw_value, source)
            if normalized is not None:
                opt, value = normalized
                values[opt.name] = value

        for name in list(values):
            opt = self.registry.get(name)
            if opt is not None and opt.after_parse is not None:
                opt.after_parse(self, values)

        layer = _Layer(source.name, source.priority, types.MappingProxyType(values))
        self._layers.append(layer)
        self._layers.sort(key=lambda lyr: lyr.priority)  # stable
        logger.debug("config_source_added", source=source.name, keys=sorted(values))

    def clone(self) -> "Config":
        dup = Config.__new__(Config)
        dup.registry = self.registry
        dup._layers = [
            _Layer(lyr.name, lyr.priority, types.MappingProxyType(dict(lyr.values)))
            for lyr in self._layers
        ]
        return dup

    # --------------------------------------------------------------------- #
    # Lookups
    # --------------------------------------------------------------------- #
    def _option(self, key: str) -> Option:
        opt = self.registry.get(key)
        if opt is None:
            raise UnknownOptionError(key)
        return opt

    def get(self, key: str) -> str:
        opt = self._option(key)
        for layer in reversed(self._layers):
            if opt.name in layer.values:
                return layer.values[opt.name]
        return opt.default

    def get_bool(self, key: str) -> bool:
        return self.get(key).lower() not in FALSEY_VALUES

    def get_int_or_default(self, key: str) -> int:
        opt = self._option(key)
        for candidate in (self.get(key), opt.default):
            try:
                return int(candidate)
            except ValueError:
                continue
        return 0

    def changed(self, key: str) -> bool:
        opt = self._option(key)
        return any(
            opt.name in layer.values
            for layer in self._layers
            if layer.priority != DEFAULTS
        )

    def sources(self) -> list[str]:
        return [layer.name for layer in self._layers]


# --------------------------------------------------------------------------- #
# Command line
# --------------------------------------------------------------------------- #
def parse_cli(registry: OptionRegistry, tokens: t.Sequence[str]) -> tuple[ArgSource, list[str]]:
    """
    Split *tokens* into an :class:`ArgSource` and the positional arguments.

    Accepts ``--key``, ``--key=value``, ``--key value`` (for options that
    require a value), ``-x value``, ``-xvalue``, repeated boolean flags
    (``-vv`` counts as ``verbose=2``) and ``--`` to end options.
    """
    entries: list[RawEntry] = []
    positional: list[str] = []
    source_name = "command line"
    args = list(tokens)
    i = 0
    while i < len(args):
        arg = args[i]
        i += 1
        if arg == "--":
            positional.extend(args[i:])
            break

        if arg.startswith("--") and len(arg) > 2:
            body = arg[2:]
            raw_key, has_value, raw_value = body.partition("=")
            if has_value:
                entries.append((raw_key, raw_value))
                continue
            token = normalize_token(raw_key)
            opt = registry.get(token.key)
            negated = token.value != ""
            if opt is not None and opt.value_required and not negated:
                if i >= len(args):
                    raise MissingValueError(opt.name, source_name)
                entries.append((raw_key, args[i]))
                i += 1
            else:
                entries.append((raw_key, None))
            continue

        if arg.startswith("-") and len(arg) > 1:
            opt = registry.by_shorthand(arg[1])
            if opt is None:
                raise UnknownOptionError(arg[1:2], source_name)
            rest = arg[2:]
            if rest and opt.type == BOOL and rest == arg[1] * len(rest):
                # -vv counts the repeats
                entries.append((opt.name, str(len(rest) + 1)))
            elif rest:
                entries.append((opt.name, rest))
            elif opt.value_required:
                if i >= len(args):
                    raise MissingValueError(opt.name, source_name)
                entries.append((opt.name, args[i]))
                i += 1
            else:
                entries.append((opt.name, None))
            continue

        positional.append(arg)
    return ArgSource(entries), positional
