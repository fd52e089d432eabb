"""
Background Jobs Module

Handles scheduled tasks for:
- Overdue shipment detection
- Expired evidence and failure photo cleanup
- Partner tier recompute
"""

from lastmile.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from lastmile.jobs.job_runner import run_job, scheduled_job
from lastmile.jobs.shipment_jobs import detect_overdue_shipments, cleanup_expired_evidence
from lastmile.jobs.tier_jobs import recompute_partner_tiers

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_job",
    "scheduled_job",
    "detect_overdue_shipments",
    "cleanup_expired_evidence",
    "recompute_partner_tiers",
]
