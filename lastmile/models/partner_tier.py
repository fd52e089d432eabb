from decimal import Decimal

from sqlalchemy import String, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.database import Base


# Seeded when the table is empty
DEFAULT_TIERS = (
    ("Bronze", 50, Decimal("2")),
    ("Silver", 150, Decimal("10")),
    ("Gold", 300, Decimal("15")),
)


class TierSetting(Base):
    """Partner tier: clients meeting the threshold get the discount."""
    __tablename__ = "tier_settings"

    tier_name: Mapped[str] = mapped_column(String(50), primary_key=True)
    shipment_threshold: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Shipments in the trailing window needed to qualify"
    )
    discount_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0")
    )

    def __repr__(self) -> str:
        return f"<TierSetting('{self.tier_name}' >= {self.shipment_threshold}, {self.discount_percentage}%)>"
