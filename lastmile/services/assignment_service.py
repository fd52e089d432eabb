"""
Courier Assignment Service

Attaches couriers to packaged shipments:
- Manual: one shipment to a chosen courier
- Bulk: many shipments to one courier, skipping any not ready for assignment
- Automatic: greedy load balancing by serviceable zone

Assignment freezes the courier's commission and the client's current flat
fee onto the shipment. Later changes to either rate do not touch it.

Restricted couriers are refused by every path; only an administrator lifting
the restriction makes them assignable again.
"""
import logging
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.core.exceptions import (
    CourierRestrictedError,
    NotFoundError,
    InvalidStatusError,
    ValidationFailedError,
)
from lastmile.models.courier import CourierStats
from lastmile.models.notifications import InAppNotificationType
from lastmile.models.shipment import Shipment, ShipmentStatus, ACTIVE_STATUSES
from lastmile.models.user import User, UserRoleName
from lastmile.services.commission import calculate_commission, config_from_stats
from lastmile.services.notification_service import NotificationService
from lastmile.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)


class AssignmentService:
    """Manual, bulk and automatic courier assignment."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.shipments = ShipmentService(db, self.notifier)

    async def _get_courier(self, courier_id: UUID) -> User:
        courier = await self.db.get(User, courier_id)
        if courier is None or not courier.is_courier:
            raise NotFoundError("Courier not found", {"courier_id": str(courier_id)})
        return courier

    async def _get_available_courier(self, courier_id: UUID) -> User:
        """A courier who may take new shipments: active and not restricted."""
        courier = await self._get_courier(courier_id)
        if not courier.is_active:
            raise ValidationFailedError("Courier account is deactivated", {"courier_id": str(courier_id)})
        stats = await self.db.get(CourierStats, courier.id)
        if stats is not None and stats.is_restricted:
            raise CourierRestrictedError(
                "Courier is restricted and cannot take new shipments",
                {"courier_id": str(courier_id), "reason": stats.restriction_reason},
            )
        return courier

    async def _assign_locked(self, shipment: Shipment, courier: User) -> Shipment:
        client = await self.db.get(User, shipment.client_id) if shipment.client_id else None
        if client is None:
            raise NotFoundError("Client not found for shipment", {"shipment_id": shipment.id})

        stats = await self.shipments.performance.get_or_create_stats(courier.id)
        commission = calculate_commission(shipment.price, config_from_stats(stats))

        shipment.courier_id = courier.id
        shipment.courier_commission = commission
        shipment.client_flat_rate_fee = client.flat_rate_fee
        self.shipments.append_history(shipment, ShipmentStatus.ASSIGNED_TO_COURIER)

        await self.notifier.notify_user(
            courier.id,
            f"New shipment {shipment.id} assigned to you. Commission: {commission}",
            InAppNotificationType.ASSIGNMENT,
            link=f"/shipments/{shipment.id}",
        )
        await self.notifier.notify_status_change(shipment)

        logger.info(f"Shipment {shipment.id} assigned to courier {courier.id} (commission {commission})")
        return shipment

    async def assign(self, shipment_id: str, courier_id: UUID) -> Shipment:
        """Assign one shipment to a courier."""
        shipment = await self.shipments.get_shipment(shipment_id, lock=True)
        if shipment.status == ShipmentStatus.DELIVERED.value:
            raise InvalidStatusError(
                "Delivered shipments cannot be reassigned",
                {"shipment_id": shipment_id},
            )
        courier = await self._get_available_courier(courier_id)
        return await self._assign_locked(shipment, courier)

    async def bulk_assign(self, shipment_ids: List[str], courier_id: UUID) -> List[Shipment]:
        """
        Assign several shipments to one courier in one transaction.

        Shipments that are missing or not awaiting assignment are skipped.
        """
        courier = await self._get_available_courier(courier_id)
        assigned = []
        for shipment_id in shipment_ids:
            result = await self.db.execute(
                select(Shipment).where(Shipment.id == shipment_id).with_for_update()
            )
            shipment = result.scalar_one_or_none()
            if shipment is None or shipment.status != ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value:
                continue
            assigned.append(await self._assign_locked(shipment, courier))

        logger.info(f"Bulk assigned {len(assigned)}/{len(shipment_ids)} shipments to {courier_id}")
        return assigned

    async def _current_workloads(self) -> Dict[UUID, int]:
        result = await self.db.execute(
            select(Shipment.courier_id, func.count(Shipment.id))
            .where(
                and_(
                    Shipment.courier_id.is_not(None),
                    Shipment.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
            .group_by(Shipment.courier_id)
        )
        return {row[0]: row[1] for row in result.all()}

    async def _candidate_couriers(self) -> List[User]:
        """Active, unrestricted couriers, in creation order."""
        result = await self.db.execute(select(User).order_by(User.created_at, User.id))
        couriers = [u for u in result.scalars().all() if u.is_active and u.has_role(UserRoleName.COURIER)]

        restricted_rows = await self.db.execute(
            select(CourierStats.courier_id).where(CourierStats.is_restricted == True)  # noqa: E712
        )
        restricted = set(restricted_rows.scalars().all())
        return [c for c in couriers if c.id not in restricted]

    async def auto_assign(self) -> int:
        """
        Assign every shipment awaiting assignment to the least-loaded
        unrestricted courier serving its destination zone.

        Shipments are processed in creation order. Ties go to the courier
        earlier in the pool. Each assignment bumps that courier's load for
        the rest of the run. Shipments with no matching courier are left
        alone.

        Returns:
            Number of shipments assigned
        """
        await self.db.flush()
        result = await self.db.execute(
            select(Shipment)
            .where(Shipment.status == ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value)
            .order_by(Shipment.created_at, Shipment.id)
            .with_for_update()
        )
        pending = list(result.scalars().all())
        if not pending:
            return 0

        pool = await self._candidate_couriers()
        baseline = await self._current_workloads()
        workload = {c.id: baseline.get(c.id, 0) for c in pool}

        assigned = 0
        for shipment in pending:
            matches = [c for c in pool if c.serves_zone(shipment.destination_zone)]
            if not matches:
                continue
            # sorted() is stable, so pool order breaks ties
            courier = sorted(matches, key=lambda c: workload[c.id])[0]
            await self._assign_locked(shipment, courier)
            workload[courier.id] += 1
            assigned += 1

        logger.info(f"Auto-assigned {assigned} of {len(pending)} shipments")
        return assigned
