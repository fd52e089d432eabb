"""Partner tier recompute job."""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.jobs.job_runner import scheduled_job
from lastmile.services.partner_tier_service import PartnerTierService

logger = logging.getLogger(__name__)


@scheduled_job("recompute_partner_tiers")
async def recompute_partner_tiers(session: AsyncSession) -> Dict[str, Any]:
    """Daily recompute of automatically-tiered clients."""
    summary = await PartnerTierService(session).recompute_tiers()
    summary.pop("changes", None)
    return summary
