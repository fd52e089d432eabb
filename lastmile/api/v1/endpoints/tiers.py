"""API endpoints for partner tier settings."""
from typing import List

from fastapi import APIRouter, Depends

from lastmile.api.deps import DB, require_permissions
from lastmile.core.permissions import Permission
from lastmile.schemas.tier import TierSettingSchema, TierSettingsUpdate, TierRecomputeResponse
from lastmile.services.partner_tier_service import PartnerTierService

router = APIRouter(dependencies=[Depends(require_permissions(Permission.MANAGE_PARTNER_TIERS))])


@router.get("", response_model=List[TierSettingSchema])
async def get_tier_settings(db: DB):
    """Tier table, highest threshold first."""
    return await PartnerTierService(db).get_settings()


@router.put("", response_model=List[TierSettingSchema])
async def update_tier_settings(data: TierSettingsUpdate, db: DB):
    """Replace the tier table."""
    return await PartnerTierService(db).update_settings(
        [t.model_dump() for t in data.tiers]
    )


@router.post("/recompute", response_model=TierRecomputeResponse)
async def recompute_tiers(db: DB):
    """Re-evaluate every automatically tiered client now."""
    result = await PartnerTierService(db).recompute_tiers()
    return TierRecomputeResponse(
        clients_evaluated=result["clients_evaluated"],
        clients_changed=result["clients_changed"],
    )
