"""CLI module for spreadsheet <-> database synchronization.

Provides commands to synchronize a source into a target, preview the
structural differences between two stores, export a store to a workbook
file, and list configured profiles.

Usage:
    sheetbridge sync catalog.xlsx                       # -> catalog.sqlite
    sheetbridge sync catalog.xlsx profile:warehouse --tables party,invoice
    sheetbridge sync catalog.xlsx shop.sqlite --policy replace --confirm
    sheetbridge sync catalog.xlsx shop.sqlite --dry-run
    sheetbridge diff catalog.xlsx shop.sqlite
    sheetbridge export shop.sqlite snapshot.xlsx
    sheetbridge --config ops/sheetbridge.toml profiles

Commands:
    sync      - Synchronize structure and rows from SOURCE into TARGET
    diff      - Show the structural changes a merge would apply
    export    - Write a store's schema and rows to a workbook file
    profiles  - List profiles from sheetbridge.toml
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from sheetbridge.adapters.base import StorageAdapter, SyncPolicy
from sheetbridge.adapters.sql import SqlDatabase
from sheetbridge.config.loader import CONFIG_FILE, load_config
from sheetbridge.config.models import BridgeConfig
from sheetbridge.errors import SheetBridgeError
from sheetbridge.factory import connect
from sheetbridge.pipeline import Pipeline
from sheetbridge.schema.comparator import diff_schemas

console = Console()

# Failures reported as a one-line error instead of a traceback
CLI_ERRORS = (SheetBridgeError, OSError, SQLAlchemyError, ValueError)


# ============================================================================
# Helpers
# ============================================================================


def _parse_tables(value: str | None) -> list[str] | None:
    if not value:
        return None
    tables = [t.strip() for t in value.split(",") if t.strip()]
    return tables or None


def _load_config(args: argparse.Namespace) -> BridgeConfig | None:
    """Load --config, or ./sheetbridge.toml when present."""
    if args.config:
        return load_config(args.config)
    default = Path.cwd() / CONFIG_FILE
    if default.exists():
        return load_config(default)
    return None


def default_target(source: str) -> str:
    """Target used when none is given: the source file's stem + ``.sqlite``.

    Example:
        >>> default_target("data/catalog.xlsx")
        'data/catalog.sqlite'
    """
    if "://" in source or source.startswith("profile:"):
        raise ValueError("A TARGET is required when SOURCE is not a file")
    return str(Path(source).with_suffix(".sqlite"))


def _preview(
    source: StorageAdapter,
    target: StorageAdapter,
    policy: SyncPolicy,
    tables: list[str] | None,
) -> list[str]:
    """Changes the target would apply, without applying them."""
    schema = source.structure(tables)
    if isinstance(target, SqlDatabase):
        return target.plan_structure(schema, policy, tables).statements

    diff = diff_schemas(schema, target.structure(), tables=tables)
    return [line for line in diff.format_report().splitlines() if line.strip()]


def _print_config_table(rows: list[tuple[str, Any]], title: str) -> None:
    table = Table(title=title, show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    for key, value in rows:
        table.add_row(key, str(value))
    console.print(table)


# ============================================================================
# Command implementations
# ============================================================================


def cmd_sync(args: argparse.Namespace) -> int:
    """Synchronize SOURCE into TARGET.

    REPLACE and STRUCTURE_ONLY discard target data and need ``--confirm``.

    Args:
        args: Parsed arguments with source, target, policy, tables, dry_run
            and confirm.

    Returns:
        0 on success, 1 on failure.
    """
    config = _load_config(args)
    policy = SyncPolicy(args.policy) if args.policy else (
        config.sync.policy if config else SyncPolicy.MERGE
    )
    tables = _parse_tables(args.tables)
    if tables is None and config is not None:
        tables = config.sync.tables
    target_name = args.target or default_target(args.source)

    _print_config_table(
        [
            ("Source", args.source),
            ("Target", target_name),
            ("Policy", policy.value),
            ("Tables", ", ".join(tables) if tables else "(all)"),
        ],
        title="Sync",
    )

    source = connect(args.source, read_only=True, config=config)
    try:
        target = connect(target_name, create_if_missing=True, config=config)
        try:
            if args.dry_run:
                changes = _preview(source, target, policy, tables)
                console.print()
                for change in changes:
                    console.print(f"  {change}", highlight=False)
                console.print(
                    f"\n[bold yellow]DRY RUN[/bold yellow] - {len(changes)} change(s), "
                    f"no changes made."
                )
                return 0

            if policy is not SyncPolicy.MERGE and not args.confirm:
                console.print(
                    f"\n[yellow]Policy '{policy.value}' discards target data.[/yellow] "
                    "[dim]To proceed, add[/dim] [cyan]--confirm[/cyan][dim].[/dim]"
                )
                return 0

            result = (
                Pipeline()
                .extract(source)
                .transform()
                .load(target)
                .execute(policy, tables)
            )
        finally:
            target.close()
    finally:
        source.close()

    console.print(
        f"\n[bold green]v[/bold green] Sync complete: "
        f"{len(result.statements)} structural change(s), {result.rows_loaded} row(s) loaded."
    )
    for warning in result.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    """Show the structural changes merging SOURCE into TARGET would apply.

    Returns:
        0 when the schemas match or changes were listed, 1 on failure.
    """
    config = _load_config(args)
    tables = _parse_tables(args.tables)
    source = connect(args.source, read_only=True, config=config)
    try:
        target = connect(args.target, read_only=True, config=config)
        try:
            dialect = target.dialect if isinstance(target, SqlDatabase) else None
            diff = diff_schemas(source.structure(), target.structure(), dialect, tables)
            console.print(diff.format_report(), highlight=False)
            if not diff.is_empty and isinstance(target, SqlDatabase):
                console.print("\n[bold]Statements:[/bold]")
                for statement in target.plan_structure(
                    source.structure(), SyncPolicy.MERGE, tables
                ).statements:
                    console.print(f"{statement};", highlight=False)
        finally:
            target.close()
    finally:
        source.close()
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Write SOURCE's schema sheet and table sheets to a workbook file."""
    config = _load_config(args)
    output = Path(args.output)
    if output.exists() and not args.force:
        console.print(
            f"[red]Error: {output} exists.[/red] [dim]Use[/dim] [cyan]--force[/cyan] "
            "[dim]to overwrite.[/dim]"
        )
        return 1

    source = connect(args.source, read_only=True, config=config)
    try:
        output.unlink(missing_ok=True)
        result = (
            Pipeline()
            .extract(source)
            .transform()
            .load(output, create_if_missing=True)
            .execute(SyncPolicy.REPLACE, _parse_tables(args.tables))
        )
    finally:
        source.close()

    console.print(
        f"[bold green]v[/bold green] Exported {result.rows_loaded} row(s) to "
        f"[bold cyan]{output}[/bold cyan]"
    )
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List profiles from sheetbridge.toml.

    Returns:
        0 on success, 1 if the config file is not found.
    """
    try:
        config = load_config(args.config) if args.config else load_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(title="Profiles", show_header=True, header_style="bold")
    table.add_column("Profile", style="bold cyan")
    table.add_column("Kind")
    table.add_column("Location")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        if profile.url is not None:
            kind, location = "database", profile.url.split("@")[-1]
        else:
            kind = "file (read-only)" if profile.read_only else "file"
            location = profile.file or ""
        table.add_row(name, kind, location, profile.description)

    console.print(table)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sheetbridge",
        description="Synchronize spreadsheet workbooks and SQL databases",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to the config file (default: ./{CONFIG_FILE} when present)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log pipeline phases and SQL statements",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # sync command
    p_sync = subparsers.add_parser(
        "sync",
        help="Synchronize structure and rows from SOURCE into TARGET",
    )
    p_sync.add_argument("source", help="Source file, database URL or profile:<name>")
    p_sync.add_argument(
        "target",
        nargs="?",
        default=None,
        help="Target (default: SOURCE stem with .sqlite)",
    )
    p_sync.add_argument(
        "--policy",
        choices=[p.value for p in SyncPolicy],
        default=None,
        help="How the target is reconciled (default: merge)",
    )
    p_sync.add_argument(
        "--tables",
        default=None,
        help="Comma-separated list of tables to sync (e.g., party,invoice)",
    )
    p_sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the structural changes without making them",
    )
    p_sync.add_argument(
        "--confirm",
        action="store_true",
        help="Required for policies that discard target data",
    )
    p_sync.set_defaults(func=cmd_sync)

    # diff command
    p_diff = subparsers.add_parser(
        "diff",
        help="Show the structural changes a merge would apply",
    )
    p_diff.add_argument("source")
    p_diff.add_argument("target")
    p_diff.add_argument("--tables", default=None, help="Comma-separated list of tables")
    p_diff.set_defaults(func=cmd_diff)

    # export command
    p_export = subparsers.add_parser(
        "export",
        help="Write a store's schema and rows to a workbook file",
    )
    p_export.add_argument("source")
    p_export.add_argument("output", help="Workbook file (.xlsx or .json)")
    p_export.add_argument("--tables", default=None, help="Comma-separated list of tables")
    p_export.add_argument("--force", action="store_true", help="Overwrite OUTPUT")
    p_export.set_defaults(func=cmd_export)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )

    try:
        return args.func(args)
    except CLI_ERRORS as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}", highlight=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
