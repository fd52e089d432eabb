"""Pydantic schemas for Shipment models."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
import uuid

from lastmile.models.shipment import PaymentMethod, ShipmentPriority
from lastmile.schemas.base import BaseCreateSchema, BaseResponseSchema


# ==================== ADDRESS ====================

class Address(BaseModel):
    """Structured address with a zone classifier."""
    model_config = ConfigDict(extra='allow')

    street: Optional[str] = None
    details: Optional[str] = None
    city: str
    zone: Optional[str] = None


# ==================== SHIPMENT SCHEMAS ====================

class ShipmentCreate(BaseCreateSchema):
    """
    Shipment creation schema.

    ``client_id`` is only honoured for callers allowed to create shipments
    on behalf of other clients.
    """
    client_id: Optional[uuid.UUID] = None
    recipient_name: str = Field(..., min_length=1, max_length=200)
    recipient_phone: Optional[str] = Field(None, max_length=20)
    from_address: Optional[Address] = None
    to_address: Address
    package_description: Optional[str] = None
    is_large_order: bool = False
    package_value: Decimal = Field(Decimal("0"), ge=0)
    price: Optional[Decimal] = Field(None, ge=0)
    amount_to_collect: Optional[Decimal] = Field(None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.COD
    priority: ShipmentPriority = ShipmentPriority.STANDARD


class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: datetime


class ShipmentResponse(BaseResponseSchema):
    """Shipment response schema."""
    id: str
    client_id: Optional[uuid.UUID] = None
    client_name: str
    courier_id: Optional[uuid.UUID] = None
    recipient_name: str
    recipient_phone: Optional[str] = None
    from_address: Dict[str, Any]
    to_address: Dict[str, Any]
    destination_zone: Optional[str] = None
    package_description: Optional[str] = None
    is_large_order: bool
    package_value: Decimal
    price: Optional[Decimal] = None
    amount_to_collect: Optional[Decimal] = None
    amount_received: Optional[Decimal] = None
    payment_method: str
    priority: str
    status: str
    status_history: List[StatusHistoryEntry]
    client_flat_rate_fee: Optional[Decimal] = None
    courier_commission: Optional[Decimal] = None
    packaging_notes: Optional[str] = None
    packaging_log: Optional[List[Dict[str, Any]]] = None
    failure_reason: Optional[str] = None
    failure_photo_path: Optional[str] = None
    created_at: datetime
    delivered_at: Optional[datetime] = None


class ShipmentListResponse(BaseModel):
    items: List[ShipmentResponse]
    total: int


class TrackingResponse(BaseResponseSchema):
    """Public tracking view; no financial fields."""
    id: str
    recipient_name: str
    to_address: Dict[str, Any]
    status: str
    status_history: List[StatusHistoryEntry]
    created_at: datetime
    delivered_at: Optional[datetime] = None


# ==================== TRANSITIONS ====================

class PackagingLogEntry(BaseModel):
    """
    One line of the packaging log. Lines naming an inventory item draw
    ``quantity_used`` from its stock; anything else is kept as a note.
    """
    model_config = ConfigDict(extra='allow')

    inventory_item_id: Optional[uuid.UUID] = None
    quantity_used: int = Field(1, ge=1)


class PackagingUpdate(BaseModel):
    packaging_log: List[PackagingLogEntry] = []
    packaging_notes: Optional[str] = None


class FeeOverride(BaseModel):
    """Administrative change to the fee and commission frozen at assignment."""
    client_flat_rate_fee: Optional[Decimal] = Field(None, ge=0)
    courier_commission: Optional[Decimal] = Field(None, ge=0)


class StatusUpdate(BaseModel):
    """Status change. ``status`` is checked against the shipment status set by the service."""
    status: str
    failure_reason: Optional[str] = None
    failure_photo: Optional[str] = Field(None, description="base64 data: URL")


class AssignRequest(BaseModel):
    courier_id: uuid.UUID


class BulkAssignRequest(BaseModel):
    shipment_ids: List[str] = Field(..., min_length=1)
    courier_id: uuid.UUID


class BulkAssignResponse(BaseModel):
    assigned: int
    shipment_ids: List[str]


class AutoAssignResponse(BaseModel):
    assigned: int


class DeliveryCodeResponse(BaseModel):
    shipment_id: str
    expires_at: datetime
    sms_sent: bool
    message: str = "Delivery verification code sent to recipient."


class VerifyDeliveryRequest(BaseModel):
    code: str = Field(..., min_length=1)


class TrackRequest(BaseModel):
    tracking_id: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
