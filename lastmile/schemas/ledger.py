"""Pydantic schemas for ledger entries, payouts and financial views."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field

from lastmile.schemas.base import BaseResponseSchema


class LedgerEntryResponse(BaseResponseSchema):
    id: uuid.UUID
    type: str
    amount: Decimal
    description: Optional[str] = None
    status: str
    shipment_id: Optional[str] = None
    payment_method: Optional[str] = None
    transfer_evidence_path: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None


class CourierTransactionResponse(LedgerEntryResponse):
    courier_id: uuid.UUID


class ClientTransactionResponse(LedgerEntryResponse):
    user_id: uuid.UUID


# ==================== Requests ====================

class PenaltyCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None
    shipment_id: Optional[str] = None


class FailedDeliveryPenaltyCreate(BaseModel):
    shipment_id: str
    description: Optional[str] = None


class PayoutRequestCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    owner_id: Optional[uuid.UUID] = Field(
        None,
        description="Request on behalf of another user; requires payout management permission",
    )


class PayoutProcess(BaseModel):
    payment_method: Optional[str] = None
    transfer_evidence: Optional[str] = Field(None, description="base64 data: URL or a reference")


class PayoutDecline(BaseModel):
    reason: Optional[str] = None


# ==================== Views ====================

class CourierFinancials(BaseModel):
    courier_id: uuid.UUID
    total_earnings: Decimal
    total_penalties: Decimal
    total_withdrawn: Decimal
    pending_payouts: Decimal
    current_balance: Decimal


class ClientFinancials(BaseModel):
    client_id: uuid.UUID
    client_name: str
    flat_rate_fee: Decimal
    partner_tier: Optional[str] = None
    delivered_orders: int
    orders_value: Decimal
    total_fees: Decimal
    wallet_balance: Decimal


class WalletResponse(BaseModel):
    client_id: uuid.UUID
    balance: Decimal
    transactions: List[ClientTransactionResponse]


class AdminFinancials(BaseModel):
    collected_cod: Decimal
    undelivered_value: Decimal
    failed_value: Decimal
    total_fees: Decimal
    total_commission: Decimal
    net_revenue: Decimal
    generated_at: datetime
