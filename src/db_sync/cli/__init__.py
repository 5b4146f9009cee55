"""CLI for schema validation, migration generation and data sync.

Connection references are profile names from ``db-sync.toml`` or full
PostgreSQL URLs.

Usage:
    db-sync profiles
    db-sync inspect prod
    db-sync validate --source prod --target staging --tables users,orders
    db-sync migrate --source prod --target staging --output migration.sql
    db-sync migrate --source prod --target staging --apply --confirm
    db-sync sync --source prod --target staging --tables users,orders
    db-sync sync --source staging --target prod --tables users --confirm
    db-sync sync --source prod --target staging --tables users --state-dir .db-sync
    db-sync sync --source prod --target staging --tables users --state-dir .db-sync --job-id <id>
    db-sync cron "*/15 9-17 * * 1-5" --count 5 --timezone Europe/Berlin

Commands:
    profiles  - List configured profiles
    inspect   - Show tables, row estimates and sync readiness of a database
    validate  - Compare two schemas for sync compatibility
    migrate   - Generate (and optionally apply) a migration plan
    sync      - Sync rows between two databases
    cron      - Validate a cron expression and show its next runs
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_sync.config.loader import load_db_config
from db_sync.config.models import DatabaseConfig, SyncSettings
from db_sync.errors import CronParseError, DbSyncError
from db_sync.factory import DEFAULT_ENVIRONMENT, make_connector, resolve_connection
from db_sync.scheduler.cron import describe_cron, next_run
from db_sync.schema.introspector import check_sync_requirements, inspect_database
from db_sync.schema.comparator import PRODUCTION_ENVIRONMENTS, validate_schemas
from db_sync.schema.migration import apply_migration, generate_migration_plan
from db_sync.schema.models import DatabaseSchema, Severity, ValidationResult
from db_sync.sync.jobs import SyncJobRunner
from db_sync.sync.models import ConflictStrategy, Direction, JobStatus, TableConfig
from db_sync.sync.store import InMemoryJobStore, JsonFileJobStore

console = Console()

_SEVERITY_STYLES = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.INFO: "dim",
}


# ============================================================================
# Helpers
# ============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )


def _load_config(args: argparse.Namespace) -> DatabaseConfig | None:
    """Load the config file if present.  URLs work without one."""
    path = Path(args.config) if args.config else None
    try:
        return load_db_config(path)
    except FileNotFoundError:
        if path is not None:
            raise
        return None


def _parse_tables(value: str | None) -> list[str]:
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


def _mask_url(url: str) -> str:
    """Hide the password part of a connection URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


async def _inspect_pair(
    source_ref: str,
    target_ref: str,
    config: DatabaseConfig | None,
) -> tuple[DatabaseSchema, DatabaseSchema, str]:
    source_url, _ = resolve_connection(source_ref, config)
    target_url, target_env = resolve_connection(target_ref, config)
    source, target = await asyncio.gather(
        inspect_database(source_url),
        inspect_database(target_url),
    )
    return source, target, target_env


def _print_validation(result: ValidationResult) -> None:
    if not result.issues and not result.warnings:
        console.print("[bold green]v[/bold green] Schemas compatible")
        return

    if result.issues:
        issue_table = Table(title="Validation Issues", show_header=True, header_style="bold")
        issue_table.add_column("Severity")
        issue_table.add_column("Table", style="dim")
        issue_table.add_column("Column")
        issue_table.add_column("Message")
        for issue in result.issues:
            style = _SEVERITY_STYLES[issue.severity]
            issue_table.add_row(
                f"[{style}]{issue.severity.value.upper()}[/{style}]",
                issue.table or "",
                issue.column or "",
                issue.message,
            )
        console.print(issue_table)

    for warning in result.warnings:
        console.print(f"[yellow]![/yellow] {warning}")

    summary = result.summary
    console.print(
        f"\n[bold]{summary.total}[/bold] issues: "
        f"{summary.critical} critical, {summary.high} high, {summary.medium} medium, "
        f"{summary.low} low, {summary.info} info"
    )
    if result.syncable_tables:
        console.print(f"Syncable tables: [cyan]{', '.join(result.syncable_tables)}[/cyan]")
    if result.requires_confirmation:
        console.print("[yellow]Sync into this target requires confirmation.[/yellow]")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_inspect(args: argparse.Namespace) -> int:
    """Async implementation for inspect command."""
    config = _load_config(args)
    url, environment = resolve_connection(args.database, config)
    console.print(f"Inspecting [bold cyan]{args.database}[/bold cyan] ({environment})...", style="dim")

    schema = await inspect_database(url, schema_name=args.schema)

    console.print(f"[dim]{schema.version}[/dim]")
    table = Table(title="Tables", show_header=True, header_style="bold")
    table.add_column("Table", style="cyan")
    table.add_column("Columns", justify="right")
    table.add_column("Rows (est.)", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Sync ready")

    for name in schema.table_names:
        t = schema.tables[name]
        problems = check_sync_requirements(t)
        ready = "[green]yes[/green]" if not problems else f"[yellow]{'; '.join(problems)}[/yellow]"
        table.add_row(
            name,
            str(len(t.columns)),
            f"{t.row_estimate:,}",
            t.estimated_size,
            ready,
        )
    console.print(table)

    if schema.enums:
        console.print(f"Enums: [cyan]{', '.join(sorted(schema.enums))}[/cyan]")
    return 0


async def _async_validate(args: argparse.Namespace) -> int:
    """Async implementation for validate command.

    Returns:
        0 if no critical or high issues were found, 1 otherwise.
    """
    config = _load_config(args)
    console.print(
        f"Validating [bold cyan]{args.source}[/bold cyan] -> "
        f"[bold cyan]{args.target}[/bold cyan]"
    )
    source, target, target_env = await _inspect_pair(args.source, args.target, config)

    result = validate_schemas(
        source,
        target,
        table_names=_parse_tables(args.tables),
        target_environment=args.environment or target_env,
    )
    console.print()
    _print_validation(result)
    return 0 if result.is_valid else 1


async def _async_migrate(args: argparse.Namespace) -> int:
    """Async implementation for migrate command."""
    config = _load_config(args)
    source, target, _ = await _inspect_pair(args.source, args.target, config)

    plan = generate_migration_plan(
        source,
        target,
        direction=args.direction,
        table_names=_parse_tables(args.tables) or None,
        include_drops=args.include_drops,
    )

    if not plan.has_changes:
        console.print("[bold green]v[/bold green] Schemas already match - no migration needed")
        return 0

    plan_table = Table(title="Migration Plan", show_header=True, header_style="bold")
    plan_table.add_column("#", justify="right", style="dim")
    plan_table.add_column("Table", style="cyan")
    plan_table.add_column("Operation")
    plan_table.add_column("Risk")
    plan_table.add_column("Bucket")
    for i, script in enumerate(plan.scripts, 1):
        bucket = "[yellow]manual review[/yellow]" if script.is_breaking else "auto"
        plan_table.add_row(
            str(i), script.table, script.description, script.risk.value, bucket
        )
    console.print(plan_table)

    for warning in plan.warnings:
        console.print(f"[yellow]![/yellow] {warning.message}")

    if args.output:
        output = Path(args.output)
        output.write_text(plan.forward_script)
        written = [str(output)]
        if plan.manual_review_scripts:
            manual = output.with_name(f"{output.stem}.manual{output.suffix}")
            manual.write_text(plan.manual_review_script)
            written.append(str(manual))
        rollback = output.with_name(f"{output.stem}.rollback{output.suffix}")
        rollback.write_text(plan.rollback_script)
        written.append(str(rollback))
        console.print(f"\nWrote [cyan]{', '.join(written)}[/cyan]")

    if not args.apply:
        return 0

    if not args.confirm:
        console.print()
        console.print(
            "[dim]To apply the auto-runnable scripts, add[/dim] [cyan]--confirm[/cyan] "
            "[dim]flag.[/dim]"
        )
        return 0

    target_url, _ = resolve_connection(args.target, config)
    adapter = await make_connector(config)(target_url)
    try:
        result = await apply_migration(adapter, plan, dry_run=False, confirm=True)
    finally:
        await adapter.close()

    if not result.success:
        console.print(f"\n[bold red]x[/bold red] Migration failed: {result.error}")
        console.print(f"  Statements applied before failure: {result.statements_executed}")
        return 1

    console.print(
        f"\n[bold green]v[/bold green] Applied {result.statements_executed} statement(s)"
    )
    if result.manual_review_skipped:
        console.print(
            f"  [yellow]{result.manual_review_skipped} script(s) held for manual review[/yellow]"
        )
    return 0


def _target_environment(reference: str, config: DatabaseConfig | None) -> str:
    """Environment of a configured profile; URLs and unknown names are development."""
    if config is not None and reference in config.profiles:
        return config.profiles[reference].environment
    return DEFAULT_ENVIRONMENT


async def _async_sync(args: argparse.Namespace) -> int:
    """Async implementation for sync command.

    With ``--state-dir`` the job is persisted after every batch, and
    ``--job-id`` resumes a paused or failed job from its checkpoint.
    Writing into a production target requires ``--confirm``.
    """
    config = _load_config(args)
    settings = config.sync if config else SyncSettings()

    store = JsonFileJobStore(args.state_dir) if args.state_dir else InMemoryJobStore()
    runner = SyncJobRunner.from_config(
        store, make_connector(config), settings, batch_size=args.batch_size
    )

    target = (await store.get(args.job_id)).target if args.job_id else args.target
    environment = _target_environment(target, config)
    if environment.lower() in PRODUCTION_ENVIRONMENTS and not args.confirm:
        console.print(
            f"[bold red]x[/bold red] Target [bold]{target}[/bold] is a {environment} database."
        )
        console.print("[dim]Re-run with[/dim] [cyan]--confirm[/cyan] [dim]to write to it.[/dim]")
        return 1

    if args.job_id:
        job_id = args.job_id
        console.print(f"Resuming job [bold cyan]{job_id}[/bold cyan]")
    else:
        strategy = ConflictStrategy(args.strategy)
        tables = [
            TableConfig(table_name=name, conflict_strategy=strategy)
            for name in _parse_tables(args.tables)
        ]
        direction = Direction.TWO_WAY if args.two_way else Direction.ONE_WAY
        job = await runner.create_job(args.source, args.target, tables, direction)
        job_id = job.id
        console.print(
            f"Syncing [bold cyan]{args.source}[/bold cyan] -> "
            f"[bold cyan]{args.target}[/bold cyan] (job {job_id})"
        )

    job = await runner.run(job_id)

    console.print()
    console.print(
        f"  Rows processed: {job.progress.processed_rows:,}  "
        f"Tables: {job.progress.completed_tables}/{job.progress.total_tables}  "
        f"Errors: {job.progress.errors}"
    )
    if job.status == JobStatus.COMPLETED:
        console.print("[bold green]v[/bold green] Sync completed")
        return 0

    console.print(f"[bold red]x[/bold red] Sync {job.status.value}: {job.error or ''}")
    if args.state_dir and job.checkpoint:
        console.print(
            f"[dim]Resume with[/dim] [cyan]--state-dir {args.state_dir} --job-id {job.id}[/cyan]"
        )
    return 1


# ============================================================================
# Command wrappers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List configured profiles."""
    try:
        config = load_db_config(Path(args.config) if args.config else None)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        return 1

    if not config.profiles:
        console.print("[yellow]No profiles configured.[/yellow]")
        return 0

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Profile", style="cyan")
    table.add_column("Environment")
    table.add_column("Description")
    table.add_column("URL", style="dim")
    for name, profile in config.profiles.items():
        table.add_row(name, profile.environment, profile.description, _mask_url(profile.url))
    console.print(table)
    return 0


def cmd_cron(args: argparse.Namespace) -> int:
    """Validate a cron expression and list its next run times."""
    try:
        when = datetime.now(timezone.utc)
        runs = []
        for _ in range(args.count):
            when = next_run(args.expression, when, args.timezone)
            if when is None:
                break
            runs.append(when)
    except CronParseError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    console.print(f"[bold]{describe_cron(args.expression)}[/bold] ({args.timezone})")
    if not runs:
        console.print("[yellow]No run within the next year.[/yellow]")
    for run_at in runs:
        console.print(f"  {run_at.isoformat()}")
    return 0


def _run_async(coro_fn):
    """Wrap an async command with ``asyncio.run()`` and uniform error output."""

    def command(args: argparse.Namespace) -> int:
        try:
            return asyncio.run(coro_fn(args))
        except (DbSyncError, FileNotFoundError, ValueError) as e:
            console.print(f"\n[bold red]Error:[/bold red] {e}")
            return 1

    command.__doc__ = coro_fn.__doc__
    return command


cmd_inspect = _run_async(_async_inspect)
cmd_validate = _run_async(_async_validate)
cmd_migrate = _run_async(_async_migrate)
cmd_sync = _run_async(_async_sync)


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-sync",
        description="PostgreSQL schema validation, migration and data sync",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config file (default: ./db-sync.toml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List configured profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # inspect command
    p_inspect = subparsers.add_parser(
        "inspect",
        help="Show tables, row estimates and sync readiness",
    )
    p_inspect.add_argument("database", help="Profile name or connection URL")
    p_inspect.add_argument("--schema", default="public", help="Schema to inspect")
    p_inspect.set_defaults(func=cmd_inspect)

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Compare two schemas for sync compatibility",
    )
    p_validate.add_argument("--source", "-s", required=True, help="Source profile or URL")
    p_validate.add_argument("--target", "-t", required=True, help="Target profile or URL")
    p_validate.add_argument(
        "--tables",
        help="Comma-separated tables to compare (default: all tables)",
    )
    p_validate.add_argument(
        "--environment",
        help="Target environment (default: the target profile's environment)",
    )
    p_validate.set_defaults(func=cmd_validate)

    # migrate command
    p_migrate = subparsers.add_parser(
        "migrate",
        help="Generate a migration plan bringing one schema in line with the other",
    )
    p_migrate.add_argument("--source", "-s", required=True, help="Source profile or URL")
    p_migrate.add_argument("--target", "-t", required=True, help="Target profile or URL")
    p_migrate.add_argument("--tables", help="Comma-separated tables to include")
    p_migrate.add_argument(
        "--direction",
        choices=["source_to_target", "target_to_source"],
        default="source_to_target",
    )
    p_migrate.add_argument(
        "--include-drops",
        action="store_true",
        help="Also drop tables and columns absent from the reference side",
    )
    p_migrate.add_argument(
        "--output",
        "-o",
        help="Write forward, manual-review and rollback scripts next to this path",
    )
    p_migrate.add_argument(
        "--apply",
        action="store_true",
        help="Apply the auto-runnable scripts to the target",
    )
    p_migrate.add_argument(
        "--confirm",
        action="store_true",
        help="Actually apply (required with --apply)",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # sync command
    p_sync = subparsers.add_parser("sync", help="Sync rows between two databases")
    p_sync.add_argument("--source", "-s", help="Source profile or URL")
    p_sync.add_argument("--target", "-t", help="Target profile or URL")
    p_sync.add_argument(
        "--tables",
        help="Comma-separated list of tables to sync, in order (e.g., users,orders)",
    )
    p_sync.add_argument(
        "--two-way",
        action="store_true",
        help="Resolve rows whose target copy is newer with --strategy",
    )
    p_sync.add_argument(
        "--strategy",
        choices=[s.value for s in ConflictStrategy],
        default=ConflictStrategy.LAST_WRITE_WINS.value,
        help="Conflict strategy for two-way sync",
    )
    p_sync.add_argument("--batch-size", type=int, help="Rows per batch")
    p_sync.add_argument(
        "--state-dir",
        help="Directory to persist the job in, so it can be resumed",
    )
    p_sync.add_argument(
        "--job-id",
        help="Resume a paused or failed job from --state-dir",
    )
    p_sync.add_argument(
        "--confirm",
        action="store_true",
        help="Required when the target is a production profile",
    )
    p_sync.set_defaults(func=cmd_sync)

    # cron command
    p_cron = subparsers.add_parser("cron", help="Show the next runs of a cron expression")
    p_cron.add_argument("expression", help='Five-field expression, e.g. "0 2 * * *"')
    p_cron.add_argument("--count", type=int, default=5, help="Number of runs to show")
    p_cron.add_argument("--timezone", default="UTC", help="IANA timezone")
    p_cron.set_defaults(func=cmd_cron)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "sync":
        if args.job_id and not args.state_dir:
            parser.error("--job-id requires --state-dir")
        if not args.job_id and not (args.source and args.target and args.tables):
            parser.error("--source, --target and --tables are required for a new sync")

    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
