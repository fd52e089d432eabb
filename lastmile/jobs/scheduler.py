"""
APScheduler Configuration

Background job scheduler for the shipment consistency jobs.

Architecture:
- Jobs are registered with the @scheduled_job decorator
- Scheduler triggers jobs at configured intervals
- JobRunner opens one session per run and commits or rolls back as a unit
- A failing run is logged and does not stop later runs
"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from lastmile.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_registered_job(job_name: str):
    """
    Wrapper to run a registered job from the scheduler.

    Called by APScheduler; delegates to the JobRunner.
    """
    from lastmile.jobs.job_runner import run_job

    try:
        result = await run_job(job_name)
        logger.info(f"Job '{job_name}' finished with status {result.get('status')}")
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def start_scheduler():
    """Start the background job scheduler."""
    if not scheduler.running:
        # Importing the job modules runs their @scheduled_job decorators
        from lastmile.jobs import shipment_jobs, tier_jobs  # noqa: F401

        now = datetime.now(timezone.utc)

        # Overdue detector every few hours, plus once at startup
        scheduler.add_job(
            run_registered_job,
            'interval',
            hours=settings.OVERDUE_CHECK_INTERVAL_HOURS,
            args=['detect_overdue_shipments'],
            id='detect_overdue_shipments',
            name='Detect Overdue Shipments',
            next_run_time=now,
            replace_existing=True,
        )

        # Evidence cleanup hourly, plus once at startup
        scheduler.add_job(
            run_registered_job,
            'interval',
            hours=1,
            args=['cleanup_expired_evidence'],
            id='cleanup_expired_evidence',
            name='Cleanup Expired Evidence',
            next_run_time=now,
            replace_existing=True,
        )

        # Partner tiers daily
        scheduler.add_job(
            run_registered_job,
            'cron',
            hour=1,
            minute=0,
            args=['recompute_partner_tiers'],
            id='recompute_partner_tiers',
            name='Recompute Partner Tiers',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
