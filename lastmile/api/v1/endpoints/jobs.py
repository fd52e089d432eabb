"""Administrative access to the background jobs."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from lastmile.api.deps import require_permissions
from lastmile.core.permissions import Permission
from lastmile.jobs import get_job_status, run_job
from lastmile.jobs.job_runner import registered_jobs

router = APIRouter(dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))])


@router.get("")
async def list_jobs() -> Dict[str, Any]:
    """Registered jobs and, when the scheduler runs, their next run times."""
    return {
        "registered": sorted(registered_jobs()),
        "scheduled": get_job_status(),
    }


@router.post("/{job_name}/run")
async def trigger_job(job_name: str) -> Dict[str, Any]:
    """Run a job now in its own transaction."""
    if job_name not in registered_jobs():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown job: {job_name}",
        )
    return await run_job(job_name)
