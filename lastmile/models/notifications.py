"""
Notification records.

``Notification`` is the outbound message log (SMS, email, and SYSTEM alerts
raised by scheduled jobs). ``InAppNotification`` is a user-facing notice
shown in the portal.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Boolean, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import UUIDType, UTCDateTime


class NotificationChannel(str, Enum):
    """Delivery channel."""
    SMS = "SMS"
    EMAIL = "EMAIL"
    SYSTEM = "SYSTEM"


class InAppNotificationType(str, Enum):
    """Types of in-app notice."""
    ASSIGNMENT = "ASSIGNMENT"
    DELIVERY = "DELIVERY"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    RESTRICTION = "RESTRICTION"
    OVERDUE = "OVERDUE"
    TIER_PROMOTION = "TIER_PROMOTION"
    TIER_UPDATE = "TIER_UPDATE"
    PAYOUT = "PAYOUT"
    SYSTEM = "SYSTEM"


OVERDUE_MARKER = "OVERDUE"


class Notification(Base):
    """Outbound notification log."""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    shipment_id: Mapped[Optional[str]] = mapped_column(
        String(40),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    channel: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="SMS, EMAIL, SYSTEM"
    )
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        index=True,
        comment="Shipment status the message is about, or OVERDUE"
    )
    sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Notification({self.channel} -> {self.recipient}, sent={self.sent})>"


class InAppNotification(Base):
    """Portal notice for a single user."""
    __tablename__ = "in_app_notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    notification_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=InAppNotificationType.SYSTEM.value
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InAppNotification(user_id={self.user_id}, type='{self.notification_type}')>"
