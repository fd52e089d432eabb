import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from lastmile.core import clock
from lastmile.database import Base
from lastmile.db_types import JSONType, UUIDType, UTCDateTime


class AuditLog(Base):
    """
    Administrative edits outside the normal lifecycle.
    Records: fee overrides, user updates and removals, stock changes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Who performed the action
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )

    # Actions: CREATE, UPDATE, DELETE, DEACTIVATE, OVERRIDE_FEES
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Entity types: SHIPMENT, USER, INVENTORY_ITEM
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="Tracking code or UUID of the affected record"
    )

    old_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: clock.utcnow(),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
