"""
Target resolution.

:meth:`Dir.targets` walks a directory subtree in one background thread and
hands resolved :class:`Target` values to the caller through a bounded queue.
A directory that fails to resolve yields a Target carrying the error; its
siblings are still resolved.

Walk rules (depth‑first):

* hidden subdirectories (``.git``, …) are never walked, and a subdir whose
  option file is broken yields an error Target without stopping its siblings;
* a dir with both ``host`` and ``schema`` yields one Target and is a leaf;
* a dir with ``host`` but no ``schema`` yields one Target per schema on its
  instance when *expand_schemas* is set, then its remaining subdirs are walked;
* any other dir is organisational and only its subdirs are walked.
"""
from __future__ import annotations

import dataclasses
import pathlib
import queue
import threading
import typing as t
import weakref

import mysql.connector
import structlog

from dbtree.driver import Instance
from dbtree.errors import ConfigError, DirectoryError, InstanceConnectionError, SQLFileError
from dbtree.schema.model import Schema

if t.TYPE_CHECKING:
    from dbtree.dir import Dir

logger = structlog.get_logger()

# Errors that belong to one target rather than to the whole walk.
TARGET_ERRORS = (
    ConfigError,
    DirectoryError,
    InstanceConnectionError,
    SQLFileError,
    mysql.connector.Error,
)

_POLL_SECONDS = 0.05


@dataclasses.dataclass
class Target:
    """One (directory, instance, declared schema, observed schema) unit."""

    dir: "Dir"
    instance: Instance | None = None
    schema_from_dir: Schema | None = None
    schema_from_instance: Schema | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __str__(self) -> str:
        schema = self.schema_from_dir.name if self.schema_from_dir else "?"
        return f"{self.instance or '-'} {schema} ({self.dir})"


class _Cancelled(Exception):
    pass


class _WorkerFailure(t.NamedTuple):
    exc: BaseException


_DONE = object()


class TargetStream:
    """
    Blocking iterator over the Targets of one subtree.

    Exactly one worker thread produces Targets; iteration ends once the whole
    subtree has been visited.  Call :meth:`close` (or use the stream as a
    context manager) to stop early; the worker gives up at its next handoff.
    A stream that is garbage collected without being closed is closed then.
    An unexpected exception in the worker is re‑raised by ``next()``.
    """

    def __init__(
        self,
        root: "Dir",
        expand_instances: bool = False,
        expand_schemas: bool = False,
        *,
        buffer_size: int = 1,
    ) -> None:
        self.root = root
        self._queue: queue.Queue = queue.Queue(maxsize=buffer_size)
        self._cancel = threading.Event()
        self._finished = False
        # the worker must not reference self, or the finalizer never runs
        self._thread = threading.Thread(
            target=_produce,
            args=(root, self._queue, self._cancel, expand_instances, expand_schemas),
            name=f"dbtree-targets:{root}",
            daemon=True,
        )
        self._finalizer = weakref.finalize(self, self._cancel.set)
        self._thread.start()

    def __iter__(self) -> "TargetStream":
        return self

    def __next__(self) -> Target:
        if self._finished:
            raise StopIteration
        item = self._queue.get()
        if item is _DONE:
            self._finished = True
            raise StopIteration
        if isinstance(item, _WorkerFailure):
            self._finished = True
            raise item.exc
        return t.cast(Target, item)

    def close(self) -> None:
        self._finished = True
        self._finalizer()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker to exit; ``True`` if it has."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def __enter__(self) -> "TargetStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


# --------------------------------------------------------------------------- #
# Worker
# --------------------------------------------------------------------------- #
def _produce(
    root: "Dir",
    out: queue.Queue,
    cancel: threading.Event,
    expand_instances: bool,
    expand_schemas: bool,
) -> None:
    def put(item: object) -> bool:
        while not cancel.is_set():
            try:
                out.put(item, timeout=_POLL_SECONDS)
                return True
            except queue.Full:
                continue
        return False

    def emit(target: Target) -> None:
        if not put(target):
            raise _Cancelled()

    try:
        generate_targets(root, emit, expand_instances, expand_schemas)
    except _Cancelled:
        logger.debug("target_walk_cancelled", root=str(root))
        return
    except Exception as exc:
        put(_WorkerFailure(exc))
        return
    put(_DONE)


# --------------------------------------------------------------------------- #
# Walk
# --------------------------------------------------------------------------- #
def generate_targets(
    dir: "Dir",
    emit: t.Callable[[Target], None],
    expand_instances: bool = False,
    expand_schemas: bool = False,
) -> None:
    """
    Depth‑first walk of *dir*, passing every resolved Target to *emit*.

    Each directory resolves to at most one instance, so *expand_instances*
    does not change the result; it is carried through the walk for callers
    that pass it.
    """
    if dir.has_host() and dir.has_schema():
        emit(resolve_target(dir))
        return

    try:
        paths = dir.child_paths()
    except DirectoryError as exc:
        logger.warning("subdir_listing_failed", dir=str(dir), error=str(exc))
        emit(Target(dir=dir, error=exc))
        return

    subdirs: list["Dir"] = []
    for path in paths:
        if path.name.startswith("."):
            continue
        try:
            subdirs.append(dir.child(path))
        except (ConfigError, DirectoryError) as exc:
            logger.warning("subdir_config_failed", dir=str(path), error=str(exc))
            emit(Target(dir=type(dir)(path, dir.config.clone(), dir.section), error=exc))

    claimed: set[pathlib.Path] = set()
    if dir.has_host() and expand_schemas:
        for target in expand_schema_targets(dir, subdirs):
            claimed.add(target.dir.path)
            emit(target)

    for subdir in subdirs:
        if subdir.path in claimed:
            continue
        generate_targets(subdir, emit, expand_instances, expand_schemas)


def _schema_from_dir(dir: "Dir", name: str) -> Schema:
    return Schema.from_sql_files(name, dir.sql_files())


def resolve_target(dir: "Dir") -> Target:
    """Resolve a dir that names both a host and a schema."""
    target = Target(dir=dir)
    name = dir.config.get("schema")
    try:
        target.instance = dir.first_instance()
        target.schema_from_dir = _schema_from_dir(dir, name)
        if target.instance is not None:
            target.schema_from_instance = target.instance.schema(name)
    except TARGET_ERRORS as exc:
        logger.warning("target_resolution_failed", dir=str(dir), error=str(exc))
        return Target(dir=dir, instance=target.instance, error=exc)
    logger.info("target_resolved", dir=str(dir), instance=str(target.instance), schema=name)
    return target


def expand_schema_targets(dir: "Dir", subdirs: t.Sequence["Dir"]) -> t.Iterator[Target]:
    """
    One Target per schema on *dir*'s instance.  A subdir on the same instance
    whose configuration names the schema supplies the declared side; a schema
    with no such subdir is declared empty.
    """
    try:
        instance = dir.first_instance()
        if instance is None:
            return
        names = instance.schema_names()
    except TARGET_ERRORS as exc:
        logger.warning("schema_expansion_failed", dir=str(dir), error=str(exc))
        yield Target(dir=dir, error=exc)
        return

    key = dir.instance_key()
    by_schema = {
        sub.config.get("schema"): sub
        for sub in subdirs
        if sub.has_schema() and sub.instance_key() == key
    }
    for name in names:
        subdir = by_schema.get(name)
        target = Target(dir=subdir or dir, instance=Instance(instance.dsn))
        try:
            target.schema_from_dir = _schema_from_dir(subdir, name) if subdir else Schema(name)
            target.schema_from_instance = target.instance.schema(name)
        except TARGET_ERRORS as exc:
            logger.warning("target_resolution_failed", dir=str(target.dir), error=str(exc))
            target = Target(dir=target.dir, instance=target.instance, error=exc)
        yield target
