from datetime import datetime

from sqlalchemy import String, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import UTCDateTime


class DeliveryVerification(Base):
    """
    One-time delivery confirmation code.

    Keyed by shipment, so there is at most one live code per shipment;
    re-issuing overwrites the previous code. Deleted once consumed.
    """
    __tablename__ = "delivery_verifications"

    shipment_id: Mapped[str] = mapped_column(
        String(40),
        ForeignKey("shipments.id", ondelete="CASCADE"),
        primary_key=True
    )
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False
    )

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"<DeliveryVerification(shipment_id='{self.shipment_id}', expires_at={self.expires_at})>"
