"""
Client wallet and courier earnings ledgers.

Entries are append-only. Balances are sums over entries and are never
stored. The only permitted mutation is a withdrawal request moving from
PENDING to PROCESSED or FAILED, once.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, ForeignKey, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import UUIDType, UTCDateTime


class LedgerEntryType(str, Enum):
    """Ledger entry type tag."""
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    WITHDRAWAL_REQUEST = "WITHDRAWAL_REQUEST"
    WITHDRAWAL_PROCESSED = "WITHDRAWAL_PROCESSED"
    COMMISSION = "COMMISSION"
    PENALTY = "PENALTY"
    BONUS = "BONUS"
    REFERRAL_BONUS = "REFERRAL_BONUS"


class LedgerEntryStatus(str, Enum):
    """Ledger entry status."""
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


EARNING_TYPES = (
    LedgerEntryType.COMMISSION.value,
    LedgerEntryType.REFERRAL_BONUS.value,
    LedgerEntryType.BONUS.value,
)
WITHDRAWAL_TYPES = (
    LedgerEntryType.WITHDRAWAL_REQUEST.value,
    LedgerEntryType.WITHDRAWAL_PROCESSED.value,
)


class LedgerEntryMixin:
    """Columns shared by both ledgers."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Signed; credits positive, debits negative"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LedgerEntryStatus.PROCESSED.value,
        index=True
    )

    # Payout processing
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transfer_evidence_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False,
        index=True
    )

    @property
    def is_pending(self) -> bool:
        return self.status == LedgerEntryStatus.PENDING.value


class ClientTransaction(LedgerEntryMixin, Base):
    """Client wallet ledger entry."""
    __tablename__ = "client_transactions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    shipment_id: Mapped[Optional[str]] = mapped_column(
        String(40),
        ForeignKey("shipments.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    @property
    def owner_id(self) -> uuid.UUID:
        return self.user_id

    def __repr__(self) -> str:
        return f"<ClientTransaction({self.type} {self.amount} user={self.user_id})>"


class CourierTransaction(LedgerEntryMixin, Base):
    """Courier earnings ledger entry."""
    __tablename__ = "courier_transactions"

    courier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    shipment_id: Mapped[Optional[str]] = mapped_column(
        String(40),
        ForeignKey("shipments.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    @property
    def owner_id(self) -> uuid.UUID:
        return self.courier_id

    def __repr__(self) -> str:
        return f"<CourierTransaction({self.type} {self.amount} courier={self.courier_id})>"
