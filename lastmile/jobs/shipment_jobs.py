"""
Shipment consistency jobs.

- Overdue detector: raises one OVERDUE alert per active shipment that has
  been out longer than the threshold
- Evidence cleanup: removes payout transfer proofs and failure photos once
  their retention period has passed
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core import clock
from lastmile.core.storage import StorageClient
from lastmile.jobs.job_runner import scheduled_job
from lastmile.models.ledger import ClientTransaction, CourierTransaction
from lastmile.models.notifications import InAppNotificationType, OVERDUE_MARKER
from lastmile.models.shipment import Shipment, ShipmentStatus, ACTIVE_STATUSES
from lastmile.models.user import User, UserRoleName
from lastmile.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


async def _admin_ids(session: AsyncSession) -> List:
    result = await session.execute(select(User).where(User.is_active == True))  # noqa: E712
    return [
        u.id for u in result.scalars().all()
        if u.has_role(UserRoleName.ADMIN) or u.has_role(UserRoleName.SUPER_USER)
    ]


@scheduled_job("detect_overdue_shipments")
async def detect_overdue_shipments(session: AsyncSession) -> Dict[str, Any]:
    """
    Flag shipments still assigned or out for delivery more than
    ``OVERDUE_THRESHOLD_HOURS`` after creation.

    A shipment that already has an OVERDUE alert is skipped, so repeated
    runs never alert twice.
    """
    notifier = NotificationService(session)
    cutoff = clock.utcnow() - timedelta(hours=settings.OVERDUE_THRESHOLD_HOURS)

    result = await session.execute(
        select(Shipment).where(
            and_(
                Shipment.status.in_([s.value for s in ACTIVE_STATUSES]),
                Shipment.created_at < cutoff,
            )
        ).order_by(Shipment.created_at)
    )
    candidates = list(result.scalars().all())

    admins = await _admin_ids(session)
    flagged = []
    for shipment in candidates:
        if await notifier.has_system_alert(shipment.id, OVERDUE_MARKER):
            continue

        message = (
            f"Shipment {shipment.id} is overdue: created {shipment.created_at:%Y-%m-%d %H:%M} UTC "
            f"and still {shipment.status}."
        )
        await notifier.raise_system_alert(shipment.id, message, OVERDUE_MARKER)
        for admin_id in admins:
            await notifier.notify_user(
                admin_id, message, InAppNotificationType.OVERDUE, link=f"/shipments/{shipment.id}"
            )
        if shipment.courier_id:
            await notifier.notify_user(
                shipment.courier_id, message, InAppNotificationType.OVERDUE, link=f"/shipments/{shipment.id}"
            )
        flagged.append(shipment.id)
        logger.warning(message)

    return {
        "checked": len(candidates),
        "flagged": len(flagged),
        "shipment_ids": flagged,
    }


@scheduled_job("cleanup_expired_evidence")
async def cleanup_expired_evidence(session: AsyncSession) -> Dict[str, Any]:
    """
    Delete stored evidence older than ``EVIDENCE_RETENTION_DAYS``.

    Payout proofs age from when the payout was processed; failure photos age
    from the latest DELIVERY_FAILED history entry. The stored reference is
    cleared either way, including when the file is already gone.
    """
    cutoff = clock.utcnow() - timedelta(days=settings.EVIDENCE_RETENTION_DAYS)
    evidence_removed = 0
    photos_removed = 0

    for model in (CourierTransaction, ClientTransaction):
        result = await session.execute(
            select(model).where(
                and_(
                    model.transfer_evidence_path.is_not(None),
                    model.processed_at.is_not(None),
                    model.processed_at < cutoff,
                )
            )
        )
        for entry in result.scalars().all():
            StorageClient.delete(entry.transfer_evidence_path)
            entry.transfer_evidence_path = None
            evidence_removed += 1

    result = await session.execute(
        select(Shipment).where(Shipment.failure_photo_path.is_not(None))
    )
    for shipment in result.scalars().all():
        failed_at = shipment.last_history_time(ShipmentStatus.DELIVERY_FAILED)
        if failed_at is None or failed_at >= cutoff:
            continue
        StorageClient.delete(shipment.failure_photo_path)
        shipment.failure_photo_path = None
        photos_removed += 1

    if evidence_removed or photos_removed:
        logger.info(f"Evidence cleanup removed {evidence_removed} payout proofs, {photos_removed} failure photos")

    return {
        "payout_evidence_removed": evidence_removed,
        "failure_photos_removed": photos_removed,
    }
