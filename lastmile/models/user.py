import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, ForeignKey, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import JSONType, UUIDType, UTCDateTime

if TYPE_CHECKING:
    from lastmile.models.courier import CourierStats


class UserRoleName(str, Enum):
    """System roles. A user may hold several."""
    ADMIN = "Administrator"
    SUPER_USER = "Super User"
    CLIENT = "Client"
    COURIER = "Courier"
    ASSIGNING_USER = "Assigning User"


# Prefix of the human-facing public id, chosen from the first role
ROLE_PREFIXES = {
    UserRoleName.CLIENT.value: "CL",
    UserRoleName.ADMIN.value: "AD",
    UserRoleName.COURIER.value: "CO",
    UserRoleName.SUPER_USER.value: "SA",
    UserRoleName.ASSIGNING_USER.value: "AS",
}

DEFAULT_PRIORITY_MULTIPLIERS = {"STANDARD": 1.0, "URGENT": 1.5, "EXPRESS": 2.0}


class User(Base):
    """
    User model. Client and courier attributes live on the same row and are
    only meaningful when the user holds the matching role.
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    public_id: Mapped[Optional[str]] = mapped_column(
        String(30),
        unique=True,
        nullable=True,
        comment="Role-prefixed id e.g., CL-12"
    )

    # Basic info
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    roles: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="List of role names"
    )
    address: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Client attributes
    flat_rate_fee: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    tax_card_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    priority_multipliers: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    partner_tier: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    manual_tier_assignment: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        comment="Tier set by an administrator; skipped by the daily recompute"
    )

    # Courier attributes
    zones: Mapped[Optional[list]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Serviceable zones"
    )
    referrer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    referral_commission: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Bonus paid to this user for each delivery by a courier they referred"
    )

    # Timestamps
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

    # Relationships
    referrer: Mapped[Optional["User"]] = relationship(
        "User",
        remote_side=[id],
        foreign_keys=[referrer_id]
    )
    courier_stats: Mapped[Optional["CourierStats"]] = relationship(
        "CourierStats",
        back_populates="courier",
        uselist=False
    )

    def has_role(self, role: UserRoleName) -> bool:
        return role.value in (self.roles or [])

    @property
    def is_client(self) -> bool:
        return self.has_role(UserRoleName.CLIENT)

    @property
    def is_courier(self) -> bool:
        return self.has_role(UserRoleName.COURIER)

    def serves_zone(self, zone: Optional[str]) -> bool:
        return zone is not None and zone in (self.zones or [])

    def __repr__(self) -> str:
        return f"<User(email='{self.email}', roles={self.roles})>"
