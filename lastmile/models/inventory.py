import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import UUIDType, UTCDateTime


class InventoryItem(Base):
    """Packaging material consumed when shipments are packed."""
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unit: Mapped[str] = mapped_column(String(50), nullable=False, comment="e.g., boxes, rolls")
    min_stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10,
        comment="Reorder threshold"
    )
    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0")
    )

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

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock

    def __repr__(self) -> str:
        return f"<InventoryItem('{self.name}', {self.quantity} {self.unit})>"
