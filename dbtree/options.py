"""
Option descriptors, the option registry and the token normalizer.

Option names follow MySQL conventions: ``my_option`` and ``my-option`` are the
same key, ``skip-foo`` / ``disable-foo`` negate ``foo`` and ``loose-foo``
means "ignore silently if ``foo`` is not a known option".
"""
from __future__ import annotations

import dataclasses
import getpass
import typing as t

import structlog

from dbtree.constants import DEFAULT_ENVIRONMENT
from dbtree.errors import DuplicateOptionError

if t.TYPE_CHECKING:
    from dbtree.config import Config

logger = structlog.get_logger()

STRING = "string"
BOOL = "bool"

FALSEY_VALUES = frozenset({"", "0", "off", "false"})

AfterParse = t.Callable[["Config", t.Dict[str, str]], None]


# --------------------------------------------------------------------------- #
# Token normalizer
# --------------------------------------------------------------------------- #
class OptionToken(t.NamedTuple):
    key: str
    value: str
    loose: bool


LOOSE_PREFIX = "loose-"

# (prefix, negates).  Only the first matching rule is applied.
PREFIX_RULES: tuple[tuple[str, bool], ...] = (
    ("skip-", True),
    ("disable-", True),
    ("enable-", False),
)


def normalize_token(token: str) -> OptionToken:
    """
    Turn a raw ``key[=value]`` token into its canonical form.

    ``skip-foo=0`` is a double negative and yields ``("foo", "1", False)``.
    A bare, non-negated key yields an empty value; what that means depends
    on the option type (see :meth:`Option.value_for_flag`).
    """
    raw_key, has_value, raw_value = token.partition("=")
    key = raw_key.strip()
    if not key:
        return OptionToken("", "", False)
    key = key.lower().replace("_", "-")

    loose = key.startswith(LOOSE_PREFIX)
    if loose:
        key = key[len(LOOSE_PREFIX):]

    negated = False
    for prefix, negates in PREFIX_RULES:
        if key.startswith(prefix):
            key = key[len(prefix):]
            negated = negates
            break

    value = raw_value.strip() if has_value else ""
    if negated:
        if has_value and value.lower() in ("off", "false", "0"):
            value = "1"
        else:
            value = "0"
    return OptionToken(key, value, loose)


def normalize_name(name: str) -> str:
    return normalize_token(name).key


# --------------------------------------------------------------------------- #
# Descriptors
# --------------------------------------------------------------------------- #
@dataclasses.dataclass(frozen=True)
class Option:
    name: str
    shorthand: str = ""
    type: str = STRING
    default: str = ""
    description: str = ""
    value_required: bool = False
    hidden_from_help: bool = False
    after_parse: t.Optional[AfterParse] = None

    def hidden(self) -> "Option":
        return dataclasses.replace(self, hidden_from_help=True)

    def required_value(self) -> "Option":
        return dataclasses.replace(self, value_required=True)

    def optional_value(self) -> "Option":
        return dataclasses.replace(self, value_required=False)

    def callback(self, fn: AfterParse) -> "Option":
        return dataclasses.replace(self, after_parse=fn)

    def has_nonzero_default(self) -> bool:
        if self.type == BOOL:
            return self.default.lower() not in FALSEY_VALUES
        return self.default != ""

    def printable_default(self) -> str:
        if self.type == BOOL:
            return "true" if self.has_nonzero_default() else "false"
        return f'"{self.default}"'

    def value_for_flag(self) -> str:
        """Value implied by supplying the option with no ``=value``."""
        return "1" if self.type == BOOL else ""

    def usage(self, max_name_length: int) -> str:
        """Return one help line, or an empty string for hidden options."""
        if self.hidden_from_help:
            return ""
        shorthand = f"-{self.shorthand}," if self.shorthand else "   "

        if self.value_required:
            value = f" {self.type}"
        elif self.type != BOOL or self.has_nonzero_default():
            # a bare boolean flag with a truthy default still needs a warning
            value = f"[={self.type}]"
        else:
            value = ""
        long = f"{self.name}{value}"

        default = ""
        if self.has_nonzero_default():
            default = f" (default {self.printable_default()})"

        width = max_name_length + 9  # worst case "[=string]" suffix
        return f"  {shorthand} --{long:<{width}}  {self.description}{default}\n"


def string_option(name: str, shorthand: str, default: str, description: str) -> Option:
    return Option(
        name=name,
        shorthand=shorthand,
        type=STRING,
        default=default,
        description=description,
        value_required=True,
    )


def bool_option(name: str, shorthand: str, default: bool, description: str) -> Option:
    return Option(
        name=name,
        shorthand=shorthand,
        type=BOOL,
        default="1" if default else "0",
        description=description,
        value_required=False,
    )


# --------------------------------------------------------------------------- #
# Registry
# --------------------------------------------------------------------------- #
class OptionRegistry:
    """
    Mapping of normalized option name → :class:`Option`.

    Built once at startup and passed explicitly to every :class:`Config`;
    it is never mutated after configuration starts.
    """

    def __init__(self, options: t.Iterable[Option] = ()) -> None:
        self._options: dict[str, Option] = {}
        for opt in options:
            self.add(opt)

    def add(self, opt: Option) -> None:
        name = normalize_name(opt.name)
        if name in self._options:
            raise DuplicateOptionError(name)
        if name != opt.name:
            opt = dataclasses.replace(opt, name=name)
        self._options[name] = opt

    def scoped(self, command_options: t.Iterable[Option]) -> "OptionRegistry":
        """Return a new registry where *command_options* shadow these ones."""
        command = OptionRegistry(command_options)
        merged = OptionRegistry()
        merged._options = {**self._options, **command._options}
        return merged

    def get(self, name: str) -> Option | None:
        return self._options.get(normalize_name(name))

    def by_shorthand(self, shorthand: str) -> Option | None:
        for opt in self._options.values():
            if opt.shorthand and opt.shorthand == shorthand:
                return opt
        return None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._options

    def __iter__(self) -> t.Iterator[Option]:
        return iter(sorted(self._options.values(), key=lambda o: o.name))

    def __len__(self) -> int:
        return len(self._options)

    def usage(self) -> str:
        visible = [o for o in self if not o.hidden_from_help]
        width = max((len(o.name) for o in visible), default=0)
        return "".join(o.usage(width) for o in visible)


# --------------------------------------------------------------------------- #
# After‑parse callbacks
# --------------------------------------------------------------------------- #
def split_host_port(_cfg: "Config", values: dict[str, str]) -> None:
    """``host=db1:3307`` sets the port too, unless the same source sets one."""
    host, sep, port = values.get("host", "").partition(":")
    if not sep:
        return
    values["host"] = host
    try:
        port_num = int(port)
    except ValueError:
        port_num = 0
    if port_num and not values.get("port"):
        values["port"] = str(port_num)


def prompt_password_if_needed(_cfg: "Config", values: dict[str, str]) -> None:
    """A ``password`` supplied without a value means "ask me"."""
    if values.get("password", "") != "":
        return
    try:
        values["password"] = getpass.getpass("Enter password: ")
    except EOFError:
        logger.warning("password_prompt_unavailable")


def global_options() -> list[Option]:
    """
    Options permitted regardless of which command runs.  A command option with
    the same name overrides the global one (see :meth:`OptionRegistry.scoped`).
    """
    return [
        string_option("help", "?", "", "Display help for the specified command").optional_value(),
        string_option("host", "", "127.0.0.1", "Database hostname or IP address")
        .hidden()
        .callback(split_host_port),
        string_option("port", "", "3306", "Port to use for database host").hidden(),
        string_option("socket", "S", "/tmp/mysql.sock", "Absolute path to Unix socket file used if host is localhost"),
        string_option("user", "u", "root", "Username to connect to database host"),
        string_option("password", "p", "<no password>", "Password for database user. Supply with no value to prompt.")
        .optional_value()
        .callback(prompt_password_if_needed),
        string_option("schema", "", "", "Database schema name").hidden(),
        string_option("environment", "", DEFAULT_ENVIRONMENT, "Section of option files to apply").hidden(),
        bool_option("verbose", "v", False, "Log resolution progress to stderr; repeat (-vv) for debug output"),
    ]


def build_registry(command_options: t.Iterable[Option] = ()) -> OptionRegistry:
    return OptionRegistry(global_options()).scoped(command_options)
