"""
Kizeo Sync - Job Scheduler

APScheduler BlockingScheduler running the periodic batches:

    fetch_submissions   every FETCH_INTERVAL_MINUTES
    sync_lists          daily at LIST_SYNC_CRON_HOUR
    reset_stuck_jobs    every 10 minutes
    purge_jobs          daily at 03:00

Each job opens its own connection and client and closes them when done.
A failing job logs and returns; the scheduler keeps running.
"""

from __future__ import annotations

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from .agencies import AgencyRegistry
from .backups import BackupStore
from .client import KizeoClient
from .config import SyncConfig
from .db import get_connection
from .jobs import JobRepository
from .list_sync import EquipmentListSync, ListBuilder
from .processor import SubmissionProcessor
from .repository import EquipmentStores

TIMEZONE = "Europe/Paris"
STUCK_SWEEP_INTERVAL_MINUTES = 10
PURGE_CRON_HOUR = 3


# =============================================================================
# Jobs
# =============================================================================


def fetch_submissions_job(config: SyncConfig) -> None:
    """Ingest unread submissions for every active agency."""
    logger.info("Running submission fetch...")

    try:
        with get_connection(config.database_url) as conn, KizeoClient.from_config(config) as client:
            summary = SubmissionProcessor(conn, client).process_all(limit=config.fetch_limit)

        logger.info(
            f"Fetch complete: {summary.processed} processed, {summary.invalid} invalid, "
            f"{summary.jobs_created} jobs, {summary.errors} errors"
        )

    except Exception as e:
        logger.exception(f"Submission fetch job failed: {e}")
        # Don't re-raise - we don't want to crash the scheduler


def sync_lists_job(config: SyncConfig) -> None:
    """Push the equipment list of every active agency."""
    logger.info("Running equipment list sync...")

    try:
        with get_connection(config.database_url) as conn, KizeoClient.from_config(config) as client:
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
            results = sync.sync_all()

        failed = [r.agency for r in results if not r.success]
        if failed:
            logger.warning(f"List sync finished with failures: {', '.join(failed)}")
        else:
            logger.info(f"List sync complete: {len(results)} agencies")

    except Exception as e:
        logger.exception(f"List sync job failed: {e}")
        # Don't re-raise - we don't want to crash the scheduler


def reset_stuck_jobs_job(config: SyncConfig) -> None:
    """Return crashed workers' jobs to the queue."""
    logger.debug("Running stuck job sweep...")

    try:
        with get_connection(config.database_url) as conn:
            count = JobRepository(conn).reset_stuck(config.stuck_job_minutes)

        if count:
            logger.warning(f"Stuck job sweep: reset {count} job(s)")

    except Exception as e:
        logger.exception(f"Stuck job sweep failed: {e}")
        # Don't re-raise - we don't want to crash the scheduler


def purge_jobs_job(config: SyncConfig) -> None:
    logger.info("Running job purge...")

    try:
        with get_connection(config.database_url) as conn:
            result = JobRepository(conn).purge(
                done_days=config.purge_done_days,
                failed_days=config.purge_failed_days,
            )

        logger.info(f"Job purge complete: {result.total} deleted")

    except Exception as e:
        logger.exception(f"Job purge failed: {e}")
        # Don't re-raise - we don't want to crash the scheduler


# =============================================================================
# Setup
# =============================================================================


def build_scheduler(config: SyncConfig) -> BlockingScheduler:
    scheduler = BlockingScheduler(
        timezone=TIMEZONE,
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # A slow fetch never overlaps the next one
            "misfire_grace_time": 300,
        },
    )
    _register_jobs(scheduler, config)
    return scheduler


def _register_jobs(scheduler: BlockingScheduler, config: SyncConfig) -> None:
    scheduler.add_job(
        fetch_submissions_job,
        trigger=IntervalTrigger(minutes=config.fetch_interval_minutes),
        args=[config],
        id="fetch_submissions",
        name="Fetch Kizeo Submissions",
        replace_existing=True,
    )

    scheduler.add_job(
        sync_lists_job,
        trigger=CronTrigger(hour=config.list_sync_cron_hour, minute=0),
        args=[config],
        id="sync_lists",
        name="Sync Equipment Lists",
        replace_existing=True,
    )

    scheduler.add_job(
        reset_stuck_jobs_job,
        trigger=IntervalTrigger(minutes=STUCK_SWEEP_INTERVAL_MINUTES),
        args=[config],
        id="reset_stuck_jobs",
        name="Reset Stuck Jobs",
        replace_existing=True,
    )

    scheduler.add_job(
        purge_jobs_job,
        trigger=CronTrigger(hour=PURGE_CRON_HOUR, minute=0),
        args=[config],
        id="purge_jobs",
        name="Purge Finished Jobs",
        replace_existing=True,
    )


def run_scheduler(config: SyncConfig) -> None:
    """Start the scheduler and block until interrupted."""
    scheduler = build_scheduler(config)

    logger.info(f"Starting scheduler with {len(scheduler.get_jobs())} jobs")
    for job in scheduler.get_jobs():
        logger.info(f"  - {job.id}: {job.trigger}")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
