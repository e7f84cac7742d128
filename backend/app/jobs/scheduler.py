"""
APScheduler configuration.

Daily settlement jobs run in-process on the API's event loop:
- SDR payout batch (salary + commission transfers)
- overdue commission sweep (auto-charge, lock)

Disabled unless SCHEDULER_ENABLED; multi-replica deployments should enable it
on one instance only, or drive the cron endpoints externally instead.
"""
from __future__ import annotations

import logging

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.config import settings

logger = logging.getLogger(__name__)

jobstores = {
    "default": MemoryJobStore(),
}

executors = {
    "default": AsyncIOExecutor(),
}

job_defaults = {
    "coalesce": True,  # Combine multiple pending executions into one
    "max_instances": 1,  # Never overlap two batch runs
    "misfire_grace_time": 3600,
}

scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_scheduled_job(job_name: str) -> None:
    """Called by APScheduler; failures are logged, never raised into the scheduler."""
    from app.jobs.settlement_jobs import run_overdue_sweep, run_payout_batch

    jobs = {
        "process_payouts": run_payout_batch,
        "process_overdue_commissions": run_overdue_sweep,
    }
    try:
        result = await jobs[job_name]()
        logger.info("Job '%s' completed: %s", job_name, {k: v for k, v in result.items() if k != "details"})
    except Exception:
        logger.exception("Job '%s' failed", job_name)


def start_scheduler() -> bool:
    """Start the scheduler with the settlement jobs. Returns False when disabled."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Background scheduler disabled (SCHEDULER_ENABLED=false)")
        return False

    if not scheduler.running:
        scheduler.add_job(
            run_scheduled_job,
            "cron",
            hour=settings.PAYOUT_CRON_HOUR,
            minute=0,
            args=["process_payouts"],
            id="process_payouts",
            name="Process due SDR payouts",
            replace_existing=True,
        )
        scheduler.add_job(
            run_scheduled_job,
            "cron",
            hour=settings.PAYOUT_CRON_HOUR,
            minute=30,
            args=["process_overdue_commissions"],
            id="process_overdue_commissions",
            name="Process overdue commissions",
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info("Scheduled job: %s - Next run: %s", job.name, job.next_run_time)
    return True


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")


def get_job_status() -> list[dict[str, str | None]]:
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
