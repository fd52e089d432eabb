from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for administrative edits: fee overrides, user changes
    and stock changes.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (CREATE, UPDATE, DELETE, etc.)
            entity_type: Type of entity (SHIPMENT, USER, INVENTORY_ITEM)
            entity_id: Tracking code or UUID of the affected record
            user_id: ID of the user performing the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)
            description: Human-readable description

        Returns:
            The created AuditLog entry
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def list_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Newest first, optionally narrowed by entity or action."""
        query = select(AuditLog)
        if action:
            query = query.where(AuditLog.action == action.upper())
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type.upper())
        if entity_id is not None:
            query = query.where(AuditLog.entity_id == str(entity_id))
        result = await self.db.execute(
            query.order_by(AuditLog.created_at.desc(), AuditLog.id).limit(limit)
        )
        return list(result.scalars().all())
