"""Shipment models for last-mile delivery tracking."""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, ForeignKey, Integer, Text, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import JSONType, UUIDType, UTCDateTime

if TYPE_CHECKING:
    from lastmile.models.user import User


class ShipmentStatus(str, Enum):
    """Shipment status enumeration."""
    WAITING_FOR_PACKAGING = "WAITING_FOR_PACKAGING"
    PACKAGED_AWAITING_ASSIGNMENT = "PACKAGED_AWAITING_ASSIGNMENT"
    ASSIGNED_TO_COURIER = "ASSIGNED_TO_COURIER"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"                # Terminal; reached only through code verification
    DELIVERY_FAILED = "DELIVERY_FAILED"    # Terminal for normal flow


ACTIVE_STATUSES = (ShipmentStatus.ASSIGNED_TO_COURIER, ShipmentStatus.OUT_FOR_DELIVERY)


class PaymentMethod(str, Enum):
    """Payment method enumeration."""
    COD = "COD"
    WALLET = "WALLET"
    BANK_TRANSFER = "BANK_TRANSFER"


class ShipmentPriority(str, Enum):
    """Shipment priority enumeration."""
    STANDARD = "STANDARD"
    URGENT = "URGENT"
    EXPRESS = "EXPRESS"


class Shipment(Base):
    """
    A parcel moving from a client's address to a recipient.

    ``status`` always equals the status of the last ``status_history`` entry.
    ``client_flat_rate_fee`` and ``courier_commission`` are frozen when the
    shipment is assigned and never recomputed afterwards.
    """
    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(
        String(40),
        primary_key=True,
        comment="Tracking code e.g., CAI-261019-0042"
    )

    # Parties
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    client_name: Mapped[str] = mapped_column(String(200), nullable=False)
    courier_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Recipient
    recipient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Addresses: {"street", "details", "city", "zone"}
    from_address: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    to_address: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    destination_zone: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Zone classifier of to_address, used for courier matching"
    )

    # Package
    package_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_large_order: Mapped[bool] = mapped_column(Boolean, default=False)
    package_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    amount_to_collect: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    amount_received: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    payment_method: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=PaymentMethod.COD.value,
        comment="COD, WALLET, BANK_TRANSFER"
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ShipmentPriority.STANDARD.value,
        comment="STANDARD, URGENT, EXPRESS"
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=ShipmentStatus.WAITING_FOR_PACKAGING.value,
        index=True
    )
    status_history: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Append-only [{status, timestamp}]"
    )

    # Frozen at assignment
    client_flat_rate_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    courier_commission: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Packaging
    packaging_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    packaging_log: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)

    # Failure evidence
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    failure_photo_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False,
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        onupdate=lambda: clock.utcnow(),
        nullable=False
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # Relationships
    client: Mapped[Optional["User"]] = relationship("User", foreign_keys=[client_id])
    courier: Mapped[Optional["User"]] = relationship("User", foreign_keys=[courier_id])

    @property
    def last_history_status(self) -> Optional[str]:
        if not self.status_history:
            return None
        return self.status_history[-1]["status"]

    def last_history_time(self, status: ShipmentStatus) -> Optional[datetime]:
        """Timestamp of the most recent history entry with the given status."""
        for entry in reversed(self.status_history or []):
            if entry["status"] == status.value:
                return datetime.fromisoformat(entry["timestamp"])
        return None

    @property
    def is_delivered(self) -> bool:
        return self.status == ShipmentStatus.DELIVERED.value

    def __repr__(self) -> str:
        return f"<Shipment(id='{self.id}', status='{self.status}')>"


class ShipmentCounter(Base):
    """
    Global sequence for tracking codes. Incremented under a row lock, never
    decremented, so a sequence number is never handed out twice.
    """
    __tablename__ = "shipment_counters"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="global")
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ShipmentCounter({self.id}: {self.count})>"
