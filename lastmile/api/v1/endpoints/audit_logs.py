"""Audit Logs API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from lastmile.api.deps import DB, require_permissions
from lastmile.core.permissions import Permission
from lastmile.schemas.inventory import AuditLogResponse, AuditLogListResponse
from lastmile.services.audit_service import AuditService

router = APIRouter()


@router.get(
    "",
    response_model=AuditLogListResponse,
    dependencies=[Depends(require_permissions(Permission.VIEW_AUDIT_LOG))],
)
async def list_audit_logs(
    db: DB,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
):
    """
    List administrative edits, newest first.

    Filters:
    - entity_type: SHIPMENT, USER or INVENTORY_ITEM
    - entity_id: tracking code or UUID of one record
    - action: CREATE, UPDATE, DELETE, DEACTIVATE, OVERRIDE_FEES
    """
    logs = await AuditService(db).list_logs(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs),
    )
