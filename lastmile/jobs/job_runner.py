"""
Background Job Runner

Jobs register themselves with ``@scheduled_job(name)`` and receive an
``AsyncSession``. Each run gets its own session from ``get_db_session()``,
so a job's writes commit together or not at all, and a failure in one run
never affects the next.

Jobs are not mutually exclusive with request handling. Each job guards its
own inserts with existence checks rather than locks.

Usage:
    @scheduled_job("detect_overdue_shipments")
    async def detect_overdue_shipments(session):
        ...
        return {"flagged": 3}
"""

import logging
from typing import Any, Callable, Dict
from datetime import datetime, timezone
from functools import wraps

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Registry of scheduled jobs
_jobs: Dict[str, Callable] = {}


def scheduled_job(name: str):
    """
    Decorator to register a background job under ``name``.

    The decorated coroutine receives the session and returns a summary dict.
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(session: AsyncSession) -> Dict[str, Any]:
            return await func(session)

        _jobs[name] = wrapper
        logger.debug(f"Registered job: {name}")
        return wrapper
    return decorator


def registered_jobs() -> Dict[str, Callable]:
    return dict(_jobs)


class JobRunner:
    """Runs a registered job inside its own transaction and reports the outcome."""

    async def run_job(self, job_name: str) -> Dict[str, Any]:
        """
        Run a job once.

        Args:
            job_name: Name of the registered job

        Returns:
            Summary with status, timing and the job's own result or error
        """
        from lastmile.database import get_db_session

        if job_name not in _jobs:
            raise ValueError(f"Unknown job: {job_name}. Registered: {list(_jobs.keys())}")

        job_func = _jobs[job_name]
        start_time = datetime.now(timezone.utc)
        summary: Dict[str, Any] = {
            "job": job_name,
            "status": "pending",
            "started_at": start_time.isoformat(),
            "result": None,
            "error": None,
        }

        logger.info(f"Starting job: {job_name}")
        try:
            async with get_db_session() as session:
                summary["result"] = await job_func(session)
            summary["status"] = "success"
        except Exception as e:
            summary["status"] = "failed"
            summary["error"] = str(e)
            logger.error(f"Job '{job_name}' failed: {e}")

        end_time = datetime.now(timezone.utc)
        summary["completed_at"] = end_time.isoformat()
        summary["duration_ms"] = int((end_time - start_time).total_seconds() * 1000)

        logger.info(f"Job '{job_name}' {summary['status']} in {summary['duration_ms']}ms: {summary['result']}")
        return summary


# Global runner instance
job_runner = JobRunner()


async def run_job(job_name: str) -> Dict[str, Any]:
    """Run a registered job once with the global runner."""
    return await job_runner.run_job(job_name)
