"""
Kizeo Sync - Command Line

    kizeo-sync fetch [--agency S40] [--limit 10] [--dry-run] [--skip-mark-read]
    kizeo-sync sync-list [--agency S40] [--dry-run]
    kizeo-sync reset-stuck [--minutes 60]
    kizeo-sync purge-jobs [--days 14] [--failed-days 30] [--include-failed] [--dry-run]
    kizeo-sync status [--agency S40] [--failures 10]
    kizeo-sync retry-failed [--type photo|report]
    kizeo-sync mark-unread --agency S40 ID [ID ...]
    kizeo-sync mark-read --agency S40 ID [ID ...]
    kizeo-sync init-db
    kizeo-sync schedule

EXIT CODES:
    0 = Success
    1 = Failure, or errors counted during the run
    2 = Configuration error
    4 = Database unreachable
"""

from __future__ import annotations

import sys
from typing import Optional

import click
import psycopg
from loguru import logger

from .agencies import AgencyRegistry
from .backups import BackupStore
from .client import KizeoClient
from .config import SyncConfig, load_config
from .db import get_connection, ping
from .errors import ConfigError, KizeoSyncError
from .jobs import JobRepository
from .list_sync import EquipmentListSync, ListBuilder
from .logging import configure_logging
from .models import JobType
from .processor import SubmissionProcessor
from .repository import EquipmentStores
from .schema import ensure_schema

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_DB_UNREACHABLE = 4


def _config(ctx: click.Context) -> SyncConfig:
    return ctx.obj["config"]


def _connect(config: SyncConfig) -> psycopg.Connection:
    try:
        return get_connection(config.database_url)
    except psycopg.OperationalError as e:
        logger.critical(f"Database unreachable: {e}")
        sys.exit(EXIT_DB_UNREACHABLE)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Kizeo Forms ingestion and equipment list sync."""
    try:
        config = load_config()
    except ConfigError as e:
        logger.critical(f"Configuration error: {e.message}")
        sys.exit(EXIT_CONFIG_ERROR)

    configure_logging("DEBUG" if verbose else config.log_level, json_output=config.log_json)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


# =============================================================================
# Ingestion
# =============================================================================


@cli.command()
@click.option("--agency", help="Single agency code (default: all active agencies)")
@click.option("--limit", type=click.IntRange(1, 50), default=None, help="Unread submissions per agency")
@click.option("--dry-run", is_flag=True, help="Extract and count only, no database writes")
@click.option("--skip-mark-read", is_flag=True, help="Leave submissions unread upstream")
@click.pass_context
def fetch(
    ctx: click.Context,
    agency: Optional[str],
    limit: Optional[int],
    dry_run: bool,
    skip_mark_read: bool,
) -> None:
    """Ingest unread submissions."""
    config = _config(ctx)
    limit = limit or config.fetch_limit

    with _connect(config) as conn, KizeoClient.from_config(config) as client:
        processor = SubmissionProcessor(conn, client)
        if agency:
            summaries = [processor.process_agency(agency, limit, dry_run, skip_mark_read)]
        else:
            summaries = processor.process_all(limit, dry_run, skip_mark_read).agencies

    errors = 0
    for summary in summaries:
        errors += summary.errors
        click.echo(
            f"{summary.agency}: {summary.processed} processed, {summary.invalid} invalid, "
            f"{summary.equipment_created} equipment created, {summary.equipment_skipped} skipped, "
            f"{summary.jobs_created} jobs, {summary.errors} errors"
        )
        if summary.invalid:
            ids = ", ".join(str(i) for i in summary.invalid_ids)
            click.echo(
                f"{summary.agency}: WARNING {summary.invalid} invalid submission(s) left unread ({ids})"
                + ("; they fill the whole batch, nothing else is ingested" if summary.queue_blocked else "")
                + ". Fix them in Kizeo or run mark-read."
            )
    if dry_run:
        click.echo("Dry run: nothing was written")

    sys.exit(EXIT_FAILURE if errors else EXIT_SUCCESS)


@cli.command("mark-unread")
@click.option("--agency", required=True, help="Agency code")
@click.argument("data_ids", nargs=-1, required=True)
@click.pass_context
def mark_unread(ctx: click.Context, agency: str, data_ids: tuple[str, ...]) -> None:
    """Put submissions back in the unread queue."""
    config = _config(ctx)

    with _connect(config) as conn, KizeoClient.from_config(config) as client:
        try:
            count = SubmissionProcessor(conn, client).mark_unread(agency, data_ids)
        except KizeoSyncError as e:
            click.echo(f"Error: {e.message}", err=True)
            sys.exit(EXIT_FAILURE)

    click.echo(f"{count} submission(s) marked unread for {agency.upper()}")


@cli.command("mark-read")
@click.option("--agency", required=True, help="Agency code")
@click.argument("data_ids", nargs=-1, required=True)
@click.pass_context
def mark_read(ctx: click.Context, agency: str, data_ids: tuple[str, ...]) -> None:
    """Drop submissions from the unread queue without ingesting them."""
    config = _config(ctx)

    with _connect(config) as conn, KizeoClient.from_config(config) as client:
        try:
            count = SubmissionProcessor(conn, client).mark_read(agency, data_ids)
        except KizeoSyncError as e:
            click.echo(f"Error: {e.message}", err=True)
            sys.exit(EXIT_FAILURE)

    click.echo(f"{count} submission(s) marked read for {agency.upper()}")


# =============================================================================
# List Sync
# =============================================================================


@cli.command("sync-list")
@click.option("--agency", help="Single agency code (default: all active agencies)")
@click.option("--dry-run", is_flag=True, help="Merge and back up, but do not push")
@click.pass_context
def sync_list(ctx: click.Context, agency: Optional[str], dry_run: bool) -> None:
    """Merge local equipment into the Kizeo external lists."""
    config = _config(ctx)

    with _connect(config) as conn, KizeoClient.from_config(config) as client:
        sync = EquipmentListSync(
            client,
            AgencyRegistry(conn),
            ListBuilder(EquipmentStores(conn)),
            BackupStore(
                config.backup_dir,
                max_age_days=config.backup_max_age_days,
                max_per_agency=config.backup_max_per_agency,
            ),
        )
        results = [sync.sync_agency(agency, dry_run)] if agency else sync.sync_all(dry_run)

    for result in results:
        if result.success:
            click.echo(
                f"{result.agency}: {result.final_count} items "
                f"(+{result.added} added, {result.updated} updated, "
                f"{result.kept} kept, -{result.removed} removed)"
            )
        else:
            click.echo(f"{result.agency}: FAILED - {result.error}", err=True)

    sys.exit(EXIT_SUCCESS if all(r.success for r in results) else EXIT_FAILURE)


# =============================================================================
# Job Queue
# =============================================================================


@cli.command("reset-stuck")
@click.option("--minutes", type=click.IntRange(min=1), default=None, help="Processing age threshold")
@click.pass_context
def reset_stuck(ctx: click.Context, minutes: Optional[int]) -> None:
    """Return jobs stuck in processing to pending."""
    config = _config(ctx)

    with _connect(config) as conn:
        count = JobRepository(conn).reset_stuck(minutes or config.stuck_job_minutes)

    click.echo(f"{count} stuck job(s) reset")


@cli.command("purge-jobs")
@click.option("--days", type=click.IntRange(min=1), default=None, help="Retention for done jobs")
@click.option("--failed-days", type=click.IntRange(min=1), default=None, help="Retention for failed jobs")
@click.option("--include-failed", is_flag=True, help="Also purge failed jobs")
@click.option("--dry-run", is_flag=True, help="Count only")
@click.pass_context
def purge_jobs(
    ctx: click.Context,
    days: Optional[int],
    failed_days: Optional[int],
    include_failed: bool,
    dry_run: bool,
) -> None:
    """Delete finished jobs past their retention."""
    config = _config(ctx)

    with _connect(config) as conn:
        result = JobRepository(conn).purge(
            done_days=days or config.purge_done_days,
            failed_days=failed_days or config.purge_failed_days,
            include_failed=include_failed,
            dry_run=dry_run,
        )

    verb = "would be deleted" if dry_run else "deleted"
    click.echo(f"{result.done} done and {result.failed} failed job(s) {verb}")


@cli.command("retry-failed")
@click.option("--type", "job_type", type=click.Choice([t.value for t in JobType]), default=None)
@click.pass_context
def retry_failed(ctx: click.Context, job_type: Optional[str]) -> None:
    """Requeue failed jobs with a fresh attempt budget."""
    config = _config(ctx)

    with _connect(config) as conn:
        count = JobRepository(conn).retry_failed(job_type)

    click.echo(f"{count} failed job(s) requeued")


@cli.command()
@click.option("--agency", help="Only show this agency")
@click.option("--failures", type=click.IntRange(min=0), default=5, help="Recent failures to list")
@click.pass_context
def status(ctx: click.Context, agency: Optional[str], failures: int) -> None:
    """Show job queue counts and recent failures."""
    config = _config(ctx)

    with _connect(config) as conn:
        database_ok = ping(conn)
        jobs = JobRepository(conn)
        stats = jobs.stats()
        by_agency = jobs.stats_by_agency()
        recent = jobs.recent_failures(failures) if failures else []

    click.echo(f"Database: {'ok' if database_ok else 'UNREACHABLE'}")
    click.echo(f"{'type':<8} {'pending':>8} {'process':>8} {'done':>8} {'failed':>8} {'total':>8}")
    for name, row in stats.to_dict().items():
        click.echo(
            f"{name:<8} {row['pending']:>8} {row['processing']:>8} {row['done']:>8} "
            f"{row['failed']:>8} {row['total']:>8}"
        )

    click.echo("")
    for code, counts in sorted(by_agency.items()):
        if agency and code != agency.upper():
            continue
        click.echo(
            f"{code:<8} pending={counts.pending} processing={counts.processing} "
            f"done={counts.done} failed={counts.failed}"
        )

    if recent:
        click.echo("")
        click.echo("Recent failures:")
        for job in recent:
            if agency and job.agency_code != agency.upper():
                continue
            click.echo(
                f"  #{job.id} {job.job_type.value} {job.agency_code} "
                f"{job.submission_id}/{job.media_name or 'pdf'}: {job.last_error}"
            )


# =============================================================================
# Operations
# =============================================================================


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create missing tables and indexes."""
    config = _config(ctx)

    with _connect(config) as conn:
        count = ensure_schema(conn)

    click.echo(f"Schema ready for {count} agencies")


@cli.command()
@click.pass_context
def schedule(ctx: click.Context) -> None:
    """Run the periodic jobs until interrupted."""
    from .scheduler import run_scheduler

    run_scheduler(_config(ctx))
