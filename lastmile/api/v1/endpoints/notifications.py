"""API endpoints for the notification log and in-app notifications."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from lastmile.api.deps import DB, CurrentUser, require_permissions
from lastmile.core.permissions import Permission
from lastmile.schemas.notification import NotificationResponse, InAppNotificationResponse
from lastmile.services.notification_service import NotificationService

router = APIRouter()


@router.get("/me", response_model=List[InAppNotificationResponse])
async def my_notifications(
    db: DB,
    current_user: CurrentUser,
    unread_only: bool = Query(False),
):
    """In-app notifications for the current user."""
    return await NotificationService(db).list_in_app(current_user.id, unread_only=unread_only)


@router.get(
    "",
    response_model=List[NotificationResponse],
    dependencies=[Depends(require_permissions(Permission.VIEW_NOTIFICATIONS_LOG))],
)
async def list_notifications(
    db: DB,
    shipment_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
):
    """Notification log, newest first."""
    return await NotificationService(db).list_notifications(shipment_id=shipment_id, limit=limit)


@router.post(
    "/{notification_id}/resend",
    response_model=NotificationResponse,
    dependencies=[Depends(require_permissions(Permission.VIEW_NOTIFICATIONS_LOG))],
)
async def resend_notification(notification_id: UUID, db: DB):
    """Dispatch a logged notification again."""
    return await NotificationService(db).resend(notification_id)
