"""
Delivery Verification Service

A 6-digit one-time code, sent to the recipient by SMS, gates the DELIVERED
transition. There is at most one live code per shipment; issuing again
replaces it. A matching code completes the delivery and is deleted in the
same transaction, so it can never be consumed twice.
"""
import logging
from datetime import timedelta
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core import clock
from lastmile.core.exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    MissingContactError,
)
from lastmile.models.delivery_verification import DeliveryVerification
from lastmile.models.shipment import Shipment
from lastmile.services.notification_service import NotificationService, mask_phone
from lastmile.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


class DeliveryVerificationService:
    """Issues and checks delivery confirmation codes."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.shipments = ShipmentService(db, self.notifier)

    async def issue_code(self, shipment_id: str) -> Tuple[DeliveryVerification, bool]:
        """
        Generate a code for the shipment's recipient and text it to them.

        Returns:
            The stored verification and whether the SMS went out. A failed
            SMS does not fail the call.
        """
        shipment = await self.shipments.get_shipment(shipment_id, lock=True)
        if not shipment.recipient_phone:
            raise MissingContactError(
                "Recipient phone number not available for this shipment",
                {"shipment_id": shipment_id},
            )

        code = clock.generate_numeric_code(CODE_LENGTH)
        expires_at = clock.utcnow() + timedelta(minutes=settings.DELIVERY_CODE_EXPIRY_MINUTES)

        verification = await self.db.get(DeliveryVerification, shipment_id)
        if verification is None:
            verification = DeliveryVerification(shipment_id=shipment_id, code=code, expires_at=expires_at)
            self.db.add(verification)
        else:
            verification.code = code
            verification.expires_at = expires_at
            verification.created_at = clock.utcnow()

        notification = await self.notifier.send_sms(
            shipment.recipient_phone,
            f"Your delivery code for shipment {shipment_id} is: {code}",
            shipment_id=shipment_id,
            status=shipment.status,
        )
        logger.info(
            f"Delivery code issued for {shipment_id} to {mask_phone(shipment.recipient_phone)} "
            f"(sms sent={notification.sent})"
        )
        return verification, notification.sent

    async def verify(self, shipment_id: str, submitted_code: str) -> Shipment:
        """
        Check a submitted code and, on a match, deliver the shipment.

        Raises:
            CodeExpiredError: no code on file, or it is past its expiry
            CodeMismatchError: the code differs (exact comparison)
        """
        result = await self.db.execute(
            select(DeliveryVerification)
            .where(DeliveryVerification.shipment_id == shipment_id)
            .with_for_update()
        )
        verification = result.scalar_one_or_none()

        if verification is None or verification.is_expired(clock.utcnow()):
            raise CodeExpiredError(
                "Verification code expired or invalid",
                {"shipment_id": shipment_id},
            )

        if submitted_code != verification.code:
            logger.warning(f"Incorrect delivery code submitted for {shipment_id}")
            raise CodeMismatchError("Incorrect verification code", {"shipment_id": shipment_id})

        shipment = await self.shipments.complete_delivery(shipment_id)
        await self.db.delete(verification)
        return shipment
