"""Pydantic schemas for notifications."""
from datetime import datetime
from typing import Optional
import uuid

from lastmile.schemas.base import BaseResponseSchema


class NotificationResponse(BaseResponseSchema):
    id: uuid.UUID
    shipment_id: Optional[str] = None
    channel: str
    recipient: str
    subject: Optional[str] = None
    message: str
    status: Optional[str] = None
    sent: bool
    created_at: datetime


class InAppNotificationResponse(BaseResponseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    notification_type: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime
