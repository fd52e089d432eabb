"""Pydantic schemas for packaging inventory and the audit log."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, Field

from lastmile.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== INVENTORY ====================

class InventoryItemCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=0)
    unit: str = Field(..., min_length=1, max_length=50)
    min_stock: int = Field(10, ge=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class InventoryItemUpdate(BaseModel):
    """Partial update; omitted fields are left alone."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    quantity: Optional[int] = Field(None, ge=0)
    unit: Optional[str] = Field(None, min_length=1, max_length=50)
    min_stock: Optional[int] = Field(None, ge=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)


class InventoryItemResponse(BaseResponseSchema):
    id: uuid.UUID
    name: str
    quantity: int
    unit: str
    min_stock: int
    unit_price: Decimal
    is_low_stock: bool
    updated_at: datetime


# ==================== AUDIT ====================

class AuditLogResponse(BaseResponseSchema):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
