"""CLI for tasksync: run one spreadsheet-to-calendar sync."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from tasksync.app import run_sync
from tasksync.config import ConfigError, load_config
from tasksync.core.logging import configure_logging
from tasksync.core.telemetry import init_telemetry
from tasksync.errors import SyncErrorKind
from tasksync.sync.orchestrator import SyncOutcome

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(".")

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_CODES: dict[SyncErrorKind, int] = {
    SyncErrorKind.CONCURRENT_MODIFICATION: 3,
    SyncErrorKind.DATE_PARSE: 4,
    SyncErrorKind.RETRY_EXHAUSTED: 5,
    SyncErrorKind.RATE_LIMITED: 5,
    SyncErrorKind.TRANSPORT: 6,
    SyncErrorKind.AUTHORIZATION: 7,
    SyncErrorKind.DUPLICATE_IDENTITY: 8,
}


def exit_code_for(outcome: SyncOutcome) -> int:
    if outcome.success:
        return EXIT_OK
    if outcome.error_kind is None:
        return EXIT_UNEXPECTED
    return EXIT_CODES.get(outcome.error_kind, EXIT_UNEXPECTED)


def _config_dir_option(func):  # noqa: ANN001, ANN202
    return click.option(
        "--config",
        "config_dir",
        type=click.Path(exists=True, file_okay=False, path_type=Path),
        default=DEFAULT_CONFIG_DIR,
        show_default=True,
        help="Directory containing tasksync.toml",
    )(func)


@click.group()
@click.version_option(version="0.1.0")
def cli() -> None:
    """tasksync: mirror a task spreadsheet into a Google Calendar."""


@cli.command()
@_config_dir_option
@click.option("--dry-run", is_flag=True, help="Log calendar changes instead of applying them")
def run(config_dir: Path, dry_run: bool) -> None:
    """Run one sync and exit with a status code describing the outcome."""
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")
        logger.error("Configuration error: %s", exc)
        sys.exit(EXIT_CONFIG)

    configure_logging(config.logging.level, config.logging.format, config.logging.log_root)
    init_telemetry("tasksync")

    outcome = asyncio.run(run_sync(config, dry_run=dry_run))
    if outcome.success and outcome.result is not None:
        click.echo(
            f"Synced: {len(outcome.result.created)} created, "
            f"{len(outcome.result.updated)} updated, "
            f"{len(outcome.result.deleted)} deleted, "
            f"{len(outcome.result.unchanged)} unchanged"
        )
    elif not outcome.success:
        click.echo(f"Sync failed during {outcome.phase}: {outcome.error}", err=True)
    sys.exit(exit_code_for(outcome))


@cli.command("check-config")
@_config_dir_option
def check_config(config_dir: Path) -> None:
    """Validate tasksync.toml and print the resolved settings."""
    try:
        config = load_config(config_dir)
    except ConfigError as exc:
        click.echo(f"Invalid config: {exc}", err=True)
        sys.exit(EXIT_CONFIG)

    click.echo(f"spreadsheet:  {config.sheet.spreadsheet_id} ({config.sheet.range})")
    click.echo(f"calendar:     {config.calendar.calendar_id} ({config.calendar.timezone})")
    click.echo(f"credentials:  {config.credentials_path}")
    click.echo(
        f"retry:        {config.retry.max_attempts} attempts, "
        f"base {config.retry.base_delay_s}s, jitter {config.retry.max_jitter_s}s"
    )
    click.echo(f"last sync:    {config.sheet.last_sync_cell or '(not written)'}")
    click.echo(f"run log:      {config.sheet.log_range or '(not persisted)'}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
