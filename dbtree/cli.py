#!/usr/bin/env python3
"""
dbtree – declarative schema CLI.

• One directory per schema, one ``<table>.sql`` file per table
• ``.dbtree`` option files cascade from the project root down to each dir
• ``[environment]`` sections select per‑environment settings

Exit codes: 0 = no differences, 1 = differences found, 2 = error.
"""
from __future__ import annotations

import typing as t

import click
import mysql.connector
import structlog

from dbtree import __version__
from dbtree.config import ArgSource, Config, parse_cli
from dbtree.ddl import DDLStatement
from dbtree.dir import Dir
from dbtree.errors import ConfigError, DirectoryError, VerifyError
from dbtree.logging_utils import configure_logging
from dbtree.optionfile import add_global_option_files
from dbtree.options import Option, bool_option, build_registry, string_option
from dbtree.schema import NEXT_AUTO_INC_IF_INCREASED, SchemaDiff, StatementModifiers
from dbtree.utils import escape_identifier
from dbtree.verify import verify_diff

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_DIFFERENCES = 1
EXIT_ERROR = 2

DIFF_OPTIONS = [
    bool_option(
        "verify", "", True,
        "Test all generated ALTER statements on temporary schema to verify correctness",
    ),
    bool_option(
        "allow-drop-table", "", False,
        "In output, include a DROP TABLE for any table without a corresponding *.sql file",
    ),
    bool_option(
        "allow-drop-column", "", False,
        "In output, include DROP COLUMN clauses where appropriate",
    ),
    string_option(
        "alter-wrapper", "x", "",
        "Output ALTER TABLEs as shell commands rather than just raw DDL; see dbtree.ddl for template vars",
    ),
]

# command name → (command options, positional argument names)
COMMANDS: dict[str, tuple[list[Option], list[str]]] = {
    "diff": (DIFF_OPTIONS, ["environment"]),
}

_PASSTHROUGH = {
    "ignore_unknown_options": True,
    "allow_extra_args": True,
    "help_option_names": [],
}


def _command_config(command: str, args: t.Sequence[str]) -> Config:
    """Build the command‑line layer of *command*'s configuration."""
    options, arg_names = COMMANDS[command]
    registry = build_registry(options)
    source, positional = parse_cli(registry, args)
    if len(positional) > len(arg_names):
        raise click.UsageError(f"Too many arguments: {' '.join(positional[len(arg_names):])}")
    entries = source.entries() + list(zip(arg_names, positional))
    return Config(registry, ArgSource(entries))


def _fail(ctx: click.Context, exc: Exception) -> t.NoReturn:
    click.echo(f"Config error: {exc}" if isinstance(exc, ConfigError) else str(exc), err=True)
    ctx.exit(EXIT_ERROR)


@click.group()
def main():
    """Declarative schema management for MySQL and MariaDB."""


@main.command()
def version():
    click.echo(__version__)


@main.command("options")
@click.argument("command", required=False, type=click.Choice(sorted(COMMANDS)))
def options_cmd(command):
    """List the options accepted on the command line and in .dbtree files."""
    command_options = COMMANDS[command][0] if command else []
    click.echo(build_registry(command_options).usage(), nl=False)


@main.command("diff", context_settings=_PASSTHROUGH)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def diff_cmd(ctx, args):
    """
    Compare the schemas on database instance(s) to the *.sql files of the
    current directory tree and print the DDL that would reconcile them.

    An optional ENVIRONMENT (default "production") selects which section of
    .dbtree files applies, in addition to their sectionless directives.
    """
    try:
        cfg = _command_config("diff", args)
    except ConfigError as exc:
        _fail(ctx, exc)

    if cfg.changed("help"):
        click.echo(ctx.get_help())
        click.echo("\nOptions:")
        click.echo(cfg.registry.usage(), nl=False)
        return

    configure_logging(cfg.get_int_or_default("verbose"))
    try:
        add_global_option_files(cfg)
        root = Dir.load(".", cfg)
        code = run_diff(root)
    except (ConfigError, DirectoryError) as exc:
        _fail(ctx, exc)
    ctx.exit(code)


def run_diff(root: Dir) -> int:
    """Print the diff of every target under *root*; returns the exit code."""
    err_count = 0
    diff_count = 0

    with root.targets(expand_instances=False, expand_schemas=False) as targets:
        for target in targets:
            declared = target.schema_from_dir
            if target.error is not None or declared is None:
                click.echo(f"-- Skipping {target.dir}:\n--    {target.error}\n")
                err_count += 1
                continue

            click.echo(f"-- Diff of {target.instance} {declared.name} vs {target.dir}/*.sql")
            diff = SchemaDiff(target.schema_from_instance, declared)
            if target.schema_from_instance is None:
                click.echo(f"{declared.create_statement()};")
                diff_count += 1

            cfg = target.dir.config
            mods = StatementModifiers(
                allow_drop_table=cfg.get_bool("allow-drop-table"),
                allow_drop_column=cfg.get_bool("allow-drop-column"),
                next_auto_inc=NEXT_AUTO_INC_IF_INCREASED,
            )
            if cfg.get_bool("verify") and diff.alters(mods) and target.instance is not None:
                try:
                    verify_diff(target.instance, diff, mods)
                except (VerifyError, mysql.connector.Error) as exc:
                    logger.warning("verify_failed", dir=str(target.dir), error=str(exc))
                    click.echo(f"-- Skipping {target.dir}:\n--    {exc}\n")
                    err_count += 1
                    continue

            statement_counter = 0
            for table_diff in diff.table_diffs:
                ddl = DDLStatement(table_diff, mods, target, cfg.get("alter-wrapper"))
                if not ddl:
                    continue
                diff_count += 1
                if ddl.error is not None:
                    err_count += 1
                statement_counter += 1
                if statement_counter == 1:
                    click.echo(f"USE {escape_identifier(declared.name)};")
                click.echo(str(ddl))
            click.echo()

    logger.info("diff_complete", differences=diff_count, errors=err_count)
    if err_count:
        plural = "s" if err_count > 1 else ""
        click.echo(f"Skipped {err_count} operation{plural} due to error{plural}", err=True)
        return EXIT_ERROR
    if diff_count:
        return EXIT_DIFFERENCES
    return EXIT_OK


if __name__ == "__main__":
    main()
