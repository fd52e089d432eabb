"""Pydantic schemas for partner tiers."""
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field

from lastmile.schemas.base import BaseResponseSchema


class TierSettingSchema(BaseResponseSchema):
    tier_name: str = Field(..., min_length=1, max_length=50)
    shipment_threshold: int = Field(..., ge=0)
    discount_percentage: Decimal = Field(Decimal("0"), ge=0, le=100)


class TierSettingsUpdate(BaseModel):
    tiers: List[TierSettingSchema]


class TierRecomputeResponse(BaseModel):
    clients_evaluated: int
    clients_changed: int
