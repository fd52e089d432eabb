import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, Boolean, ForeignKey, Integer, Numeric, Float, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import UUIDType, UTCDateTime

if TYPE_CHECKING:
    from lastmile.models.user import User


class CommissionType(str, Enum):
    """How a courier is paid per delivery."""
    FLAT = "FLAT"
    PERCENTAGE = "PERCENTAGE"


DEFAULT_RATING = 5.0


class CourierStats(Base):
    """
    Courier performance record. One row per courier, created on courier
    creation or lazily on first assignment, never deleted while the courier
    exists.
    """
    __tablename__ = "courier_stats"

    courier_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    # Commission config
    commission_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionType.FLAT.value,
        comment="FLAT, PERCENTAGE"
    )
    commission_value: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("30")
    )

    # Failure streak
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_restricted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    restriction_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Rating
    performance_rating: Mapped[float] = mapped_column(Float, default=DEFAULT_RATING, nullable=False)
    deliveries_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deliveries_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_delivery_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        onupdate=lambda: clock.utcnow(),
        nullable=False
    )

    courier: Mapped["User"] = relationship("User", back_populates="courier_stats")

    def __repr__(self) -> str:
        return (
            f"<CourierStats(courier_id={self.courier_id}, "
            f"failures={self.consecutive_failures}, restricted={self.is_restricted})>"
        )
