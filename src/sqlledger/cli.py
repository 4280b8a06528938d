"""Command-line interface for sqlledger."""

import json
from pathlib import Path

import click
import yaml
from pydantic import ValidationError

from sqlledger import __version__
from sqlledger.config import Config
from sqlledger.errors import ConfigurationError, SqlLedgerError
from sqlledger.logging import get_logger, setup_logging
from sqlledger.migrations.runner import RunReport
from sqlledger.verifier import VerificationReport

log = get_logger("cli")


@click.group()
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to configuration file.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config).",
)
@click.option(
    "--log-json/--no-log-json",
    default=None,
    help="Output logs as JSON or human-readable format (overrides config).",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Append-only log file (overrides config).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config_file: Path | None,
    log_level: str | None,
    log_json: bool | None,
    log_file: Path | None,
) -> None:
    """sqlledger - apply SQL migrations exactly once, in order.

    Tracks applied scripts in a ledger table and verifies the resulting
    schema.
    """
    ctx.ensure_object(dict)

    try:
        config = Config.load_or_default(config_file)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)

    ctx.obj["config"] = config
    ctx.obj["config_file"] = config_file

    # CLI overrides config
    effective_log_level = log_level or config.log_level
    effective_log_json = log_json if log_json is not None else config.log_json
    effective_log_file = log_file if log_file is not None else config.log_path

    setup_logging(
        json_output=effective_log_json,
        level=effective_log_level,
        log_file=effective_log_file,
    )


@cli.command()
def version() -> None:
    """Print version information."""
    click.echo(f"sqlledger {__version__}")


# =============================================================================
# Output helpers
# =============================================================================


def _mark(present: bool) -> str:
    return "ok" if present else "MISSING"


def _echo_verification(verification: VerificationReport) -> None:
    if verification.tables:
        click.echo("Critical tables:")
        for status in verification.tables:
            click.echo(f"  [{_mark(status.present)}] {status.name}")
    if verification.views:
        click.echo("Views:")
        for status in verification.views:
            click.echo(f"  [{_mark(status.present)}] {status.name}")
    if verification.functions:
        click.echo("Functions:")
        for status in verification.functions:
            click.echo(f"  [{_mark(status.present)}] {status.name}")
    if verification.missing_columns:
        click.echo("Missing columns:")
        for table, columns in verification.missing_columns.items():
            click.echo(f"  {table}: {', '.join(columns)}")


def _echo_report(report: RunReport) -> None:
    click.echo("Migration summary:")
    click.echo(f"  Applied: {report.applied_count}")
    click.echo(f"  Skipped (already applied): {report.skipped_count}")
    click.echo(f"  Missing sources: {len(report.missing)}")
    for filename in report.missing:
        click.echo(f"    - {filename}")
    if report.benign:
        click.echo(f"  Already existed: {', '.join(report.benign)}")
    if report.failed_unit:
        click.echo(f"  Failed: {report.failed_unit}")
    if report.error:
        click.echo(f"  Error: {report.error}")

    if report.verification is not None:
        _echo_verification(report.verification)

    if report.status == "success":
        click.echo("All migrations completed successfully.")
    elif report.status == "completed_with_warnings":
        click.echo("Migration completed with warnings. Please review the output above.")
    else:
        click.echo("Migration failed.")


# =============================================================================
# Commands
# =============================================================================


@cli.command(name="migrate")
@click.option(
    "--verify/--no-verify",
    default=True,
    help="Verify expected schema objects after migrating.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def migrate_command(ctx: click.Context, verify: bool, as_json: bool) -> None:
    """Apply pending migrations and verify the schema."""
    from sqlledger.migrations import migrate

    config = ctx.obj["config"]

    try:
        report = migrate(config, verify=verify)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        report = RunReport(error=str(e))
    except Exception as e:
        log.error("migrate_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        report = RunReport(error=str(e))

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _echo_report(report)

    if not report.success:
        raise SystemExit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show which catalog units are applied, pending or missing."""
    from sqlledger.database import engine_scope, mask_url
    from sqlledger.migrations import Catalog, Ledger

    config = ctx.obj["config"]

    try:
        catalog = Catalog.from_config(config.migrations, base_dir=config.base_dir)
        with engine_scope(config) as engine:
            ledger = Ledger(engine)
            entries = {e.filename: e for e in ledger.applied()} if ledger.exists() else {}
            url = mask_url(engine.url)
    except SqlLedgerError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        log.error("status_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Database: {url}")
    click.echo(f"Catalog units: {len(catalog)}")

    pending = 0
    for unit in catalog:
        entry = entries.get(unit.filename)
        if entry is not None:
            state = f"applied {entry.applied_at.isoformat(sep=' ', timespec='seconds')}"
        elif not unit.path.exists():
            state = "missing"
        else:
            state = "pending"
            pending += 1
        click.echo(f"  {unit.filename}: {state}")

    unknown = sorted(set(entries) - set(catalog.filenames))
    for filename in unknown:
        click.echo(f"  {filename}: applied (not in catalog)")

    if pending:
        click.echo(f"Pending migrations: {pending}")
    else:
        click.echo("No pending migrations")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.pass_context
def verify(ctx: click.Context, as_json: bool) -> None:
    """Check that expected tables, views and functions exist."""
    from sqlledger.database import engine_scope, wait_for_connection
    from sqlledger.verifier import verify_schema

    config = ctx.obj["config"]

    try:
        with engine_scope(config) as engine:
            wait_for_connection(
                engine,
                attempts=config.database.connect_attempts,
                delay=config.database.retry_delay_seconds,
            )
            report = verify_schema(
                engine,
                tables=config.verify.tables,
                views=config.verify.views,
                functions=config.verify.functions,
                columns=config.verify.columns,
                schema=config.verify.schema_name,
            )
    except SqlLedgerError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        log.error("verify_failed", error=str(e))
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _echo_verification(report)
        click.echo("Schema verified." if report.all_present else "Schema has missing objects.")

    if not report.critical_ok:
        raise SystemExit(1)


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command(name="check")
@click.option(
    "-c",
    "--config-file",
    type=click.Path(exists=True, path_type=Path),
    default="sqlledger.yaml",
    help="Path to configuration file.",
)
def config_check(config_file: Path) -> None:
    """Validate configuration file."""
    from sqlledger.database import build_url, mask_url
    from sqlledger.migrations import Catalog

    try:
        cfg = Config.load(config_file)
        catalog = Catalog.from_config(cfg.migrations, base_dir=cfg.base_dir)

        click.echo(f"Configuration valid: {config_file}")
        if cfg.database.is_configured:
            click.echo(f"  Database: {mask_url(build_url(cfg.database))}")
        else:
            click.echo("  Database: not configured")
        click.echo(f"  Migrations directory: {cfg.migrations_dir}")
        click.echo(f"  Migration units: {len(catalog)}")

        missing = [unit.filename for unit in catalog if not unit.path.exists()]
        if missing:
            click.echo(f"  Missing sources: {', '.join(missing)}")

        click.echo(f"  Log level: {cfg.log_level}")
        click.echo(f"  Log file: {cfg.log_path or 'disabled'}")
        click.echo(
            f"  Expected objects: {len(cfg.verify.tables)} tables, "
            f"{len(cfg.verify.views)} views, {len(cfg.verify.functions)} functions"
        )

    except FileNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except Exception as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)
