"""
Notification Service

Decides what to record when something happens to a shipment and hands the
message to a dispatcher. Dispatch is best-effort: a transport failure marks
the record as not sent and never propagates into the caller's transaction.
"""
import asyncio
import logging
from typing import List, Optional
from uuid import UUID

import httpx
from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core.exceptions import NotFoundError
from lastmile.models.notifications import (
    Notification,
    InAppNotification,
    NotificationChannel,
    InAppNotificationType,
)
from lastmile.models.shipment import Shipment, ShipmentStatus
from lastmile.models.user import User
from lastmile.services.email_service import get_email_service

logger = logging.getLogger(__name__)


def mask_phone(phone: str) -> str:
    return phone[-4:].rjust(10, '*')


def status_label(status: str) -> str:
    """WAITING_FOR_PACKAGING -> Waiting For Packaging"""
    return status.replace("_", " ").title()


async def send_sms(phone: str, message: str) -> bool:
    """
    Send an SMS through the Twilio REST API.

    Returns:
        True if the gateway accepted the message, False otherwise
    """
    if not settings.sms_configured:
        logger.warning(f"SMS gateway not configured, message to {mask_phone(phone)} not sent")
        return False

    url = f"{settings.TWILIO_API_URL}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
    payload = {
        "To": phone,
        "From": settings.TWILIO_PHONE_NUMBER,
        "Body": message,
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                url,
                data=payload,
                auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
                timeout=10,
            )
            response.raise_for_status()

        logger.info(f"SMS sent to {mask_phone(phone)}")
        return True

    except httpx.HTTPError as e:
        logger.error(f"Failed to send SMS to {mask_phone(phone)}: {e}")
        return False


class NotificationDispatcher:
    """Delivers one message over one channel and reports whether it went out."""

    async def dispatch(
        self,
        channel: str,
        recipient: str,
        message: str,
        subject: Optional[str] = None,
    ) -> bool:
        if channel == NotificationChannel.SMS.value:
            return await send_sms(recipient, message)
        if channel == NotificationChannel.EMAIL.value:
            subject = subject or message.split("\n\n")[0]
            # smtplib blocks; keep it off the event loop
            return await asyncio.to_thread(
                get_email_service().send_notification_email, recipient, subject, message
            )
        return False


_dispatcher: NotificationDispatcher = NotificationDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher) -> NotificationDispatcher:
    """Swap the process-wide dispatcher. Returns the previous one."""
    global _dispatcher
    previous = _dispatcher
    _dispatcher = dispatcher
    return previous


class NotificationService:
    """Records and dispatches shipment notifications."""

    def __init__(self, db: AsyncSession, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db
        self.dispatcher = dispatcher or get_dispatcher()

    async def _deliver(self, notification: Notification) -> bool:
        try:
            sent = await self.dispatcher.dispatch(
                notification.channel,
                notification.recipient,
                notification.message,
                subject=notification.subject,
            )
        except Exception as e:
            logger.error(f"Dispatch of notification {notification.id} failed: {e}")
            sent = False
        notification.sent = bool(sent)
        return notification.sent

    async def record(
        self,
        channel: NotificationChannel,
        recipient: str,
        message: str,
        shipment_id: Optional[str] = None,
        status: Optional[str] = None,
        subject: Optional[str] = None,
        dispatch: bool = True,
    ) -> Notification:
        """Store a notification record and, unless told otherwise, dispatch it."""
        notification = Notification(
            shipment_id=shipment_id,
            channel=channel.value,
            recipient=recipient,
            subject=subject,
            message=message,
            status=status,
            sent=False,
        )
        self.db.add(notification)
        await self.db.flush()

        if dispatch:
            await self._deliver(notification)
        return notification

    async def notify_status_change(self, shipment: Shipment) -> Optional[Notification]:
        """Email the client about the shipment's current status."""
        client = await self.db.get(User, shipment.client_id) if shipment.client_id else None
        if client is None or not client.email:
            logger.warning(f"No client email for shipment {shipment.id}, status notice skipped")
            return None

        label = status_label(shipment.status)
        subject = f"Shipment {shipment.id}: {label}"
        message = (
            f"{subject}\n\n"
            f"Hello {client.name}, your shipment to {shipment.recipient_name} "
            f"is now '{label}'."
        )
        if shipment.failure_reason and shipment.status == ShipmentStatus.DELIVERY_FAILED.value:
            message += f"\n\nReason: {shipment.failure_reason}"

        return await self.record(
            NotificationChannel.EMAIL,
            client.email,
            message,
            shipment_id=shipment.id,
            status=shipment.status,
            subject=subject,
        )

    async def send_sms(
        self,
        phone: str,
        message: str,
        shipment_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Notification:
        return await self.record(
            NotificationChannel.SMS,
            phone,
            message,
            shipment_id=shipment_id,
            status=status,
        )

    async def notify_user(
        self,
        user_id: UUID,
        message: str,
        notification_type: InAppNotificationType = InAppNotificationType.SYSTEM,
        link: Optional[str] = None,
    ) -> InAppNotification:
        """Create an in-app notice for a user."""
        notice = InAppNotification(
            user_id=user_id,
            message=message,
            notification_type=notification_type.value,
            link=link,
        )
        self.db.add(notice)
        return notice

    async def raise_system_alert(self, shipment_id: str, message: str, marker: str) -> Notification:
        """Store an internal alert. SYSTEM alerts are not dispatched."""
        return await self.record(
            NotificationChannel.SYSTEM,
            "system",
            message,
            shipment_id=shipment_id,
            status=marker,
            dispatch=False,
        )

    async def has_system_alert(self, shipment_id: str, marker: str) -> bool:
        result = await self.db.execute(
            select(Notification.id).where(
                and_(
                    Notification.shipment_id == shipment_id,
                    Notification.channel == NotificationChannel.SYSTEM.value,
                    Notification.status == marker,
                )
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def resend(self, notification_id: UUID) -> Notification:
        """Dispatch a stored notification again and update its sent flag."""
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError("Notification not found", {"notification_id": str(notification_id)})

        await self._deliver(notification)
        logger.info(f"Resent notification {notification.id}: sent={notification.sent}")
        return notification

    async def list_notifications(
        self,
        shipment_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Notification]:
        query = select(Notification).order_by(desc(Notification.created_at)).limit(limit)
        if shipment_id:
            query = query.where(Notification.shipment_id == shipment_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_in_app(self, user_id: UUID, unread_only: bool = False) -> List[InAppNotification]:
        query = select(InAppNotification).where(InAppNotification.user_id == user_id)
        if unread_only:
            query = query.where(InAppNotification.is_read == False)  # noqa: E712
        result = await self.db.execute(query.order_by(desc(InAppNotification.created_at)))
        return list(result.scalars().all())
