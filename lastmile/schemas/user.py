"""Pydantic schemas for users, client pricing and courier settings."""
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from lastmile.models.courier import CommissionType
from lastmile.schemas.base import BaseCreateSchema, BaseResponseSchema


class UserCreate(BaseCreateSchema):
    """User creation schema. Client and courier fields apply only to those roles."""
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6)
    roles: List[str] = Field(..., min_length=1)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[dict] = None

    # Client
    flat_rate_fee: Optional[Decimal] = Field(None, ge=0)
    priority_multipliers: Optional[Dict[str, float]] = None
    tax_card_number: Optional[str] = None

    # Courier
    zones: Optional[List[str]] = None
    referrer_id: Optional[uuid.UUID] = None
    referral_commission: Optional[Decimal] = Field(None, ge=0)


class UserUpdate(BaseModel):
    """Partial user update. Passwords are not changed through this schema."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[str] = Field(None, min_length=3, max_length=255)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[dict] = None
    roles: Optional[List[str]] = Field(None, min_length=1)
    zones: Optional[List[str]] = None
    is_active: Optional[bool] = None


class UserResponse(BaseResponseSchema):
    id: uuid.UUID
    public_id: Optional[str] = None
    name: str
    email: str
    phone: Optional[str] = None
    roles: List[str]
    address: Optional[dict] = None
    is_active: bool

    flat_rate_fee: Optional[Decimal] = None
    priority_multipliers: Optional[Dict[str, float]] = None
    tax_card_number: Optional[str] = None
    partner_tier: Optional[str] = None
    manual_tier_assignment: bool = False

    zones: Optional[List[str]] = None
    referrer_id: Optional[uuid.UUID] = None
    referral_commission: Optional[Decimal] = None

    created_at: datetime


class UserBrief(BaseResponseSchema):
    id: uuid.UUID
    public_id: Optional[str] = None
    name: str
    email: str
    roles: List[str]


class FlatRateUpdate(BaseModel):
    flat_rate_fee: Decimal = Field(..., ge=0)


class PriorityMultipliersUpdate(BaseModel):
    priority_multipliers: Dict[str, float]


class TaxCardUpdate(BaseModel):
    tax_card_number: Optional[str] = None


class ManualTierUpdate(BaseModel):
    """Pin a client to a tier. ``null`` pins the client to no tier."""
    tier_name: Optional[str] = None


class CourierSettingsUpdate(BaseModel):
    commission_type: Optional[CommissionType] = None
    commission_value: Optional[Decimal] = Field(None, ge=0)
    clear_restriction: bool = False
    referral_commission: Optional[Decimal] = Field(None, ge=0)
    zones: Optional[List[str]] = None


class CourierStatsResponse(BaseResponseSchema):
    courier_id: uuid.UUID
    commission_type: str
    commission_value: Decimal
    consecutive_failures: int
    is_restricted: bool
    restriction_reason: Optional[str] = None
    performance_rating: float
    deliveries_completed: int
    deliveries_failed: int


class CourierPerformanceResponse(CourierStatsResponse):
    name: str
    zones: List[str] = []
    active_shipments: int = 0
