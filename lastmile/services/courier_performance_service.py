"""
Courier Performance Service

Tracks each courier's failure streak, restriction flag and rating.

Restriction is a consequence of the consecutive-failure counter reaching the
limit. A successful delivery resets the counter but leaves an existing
restriction in place; only an administrative settings update clears it.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core import clock
from lastmile.core.exceptions import NotFoundError, ValidationFailedError
from lastmile.models.courier import CourierStats, CommissionType, DEFAULT_RATING
from lastmile.models.shipment import Shipment, ACTIVE_STATUSES
from lastmile.models.user import User, UserRoleName

logger = logging.getLogger(__name__)

MIN_RATING = 1.0
MAX_RATING = 5.0


def compute_rating(completed: int, failed: int, consecutive_failures: int) -> float:
    """
    Rating on a 1-5 scale from delivery outcomes.

    Base is the success rate scaled to 5. A current failure streak costs 1.0
    at three or more, 0.5 at two. Couriers with at least 10 finished
    deliveries and a 95% success rate get a 0.2 bonus.
    """
    total = completed + failed
    if total == 0:
        return DEFAULT_RATING

    success_rate = completed / total
    rating = success_rate * 5.0

    if consecutive_failures >= 3:
        rating -= 1.0
    elif consecutive_failures == 2:
        rating -= 0.5

    if success_rate >= 0.95 and total >= 10:
        rating += 0.2

    return round(max(MIN_RATING, min(MAX_RATING, rating)), 1)


class CourierPerformanceService:
    """Courier performance records and settings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_stats(self, courier_id: UUID) -> Optional[CourierStats]:
        result = await self.db.execute(
            select(CourierStats).where(CourierStats.courier_id == courier_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_or_create_stats(self, courier_id: UUID) -> CourierStats:
        """Return the courier's record, creating the default one if missing."""
        stats = await self.get_stats(courier_id)
        if stats is None:
            stats = CourierStats(
                courier_id=courier_id,
                commission_type=CommissionType.FLAT.value,
                commission_value=Decimal(str(settings.DEFAULT_COURIER_COMMISSION)),
                consecutive_failures=0,
                is_restricted=False,
                performance_rating=DEFAULT_RATING,
                deliveries_completed=0,
                deliveries_failed=0,
            )
            self.db.add(stats)
            await self.db.flush()
            logger.info(f"Created default performance record for courier {courier_id}")
        return stats

    async def record_failure(self, courier_id: UUID) -> CourierStats:
        """Count a failed delivery; restrict the courier when the streak hits the limit."""
        stats = await self.get_or_create_stats(courier_id)
        stats.consecutive_failures += 1
        stats.deliveries_failed += 1

        if stats.consecutive_failures >= settings.COURIER_FAILURE_LIMIT and not stats.is_restricted:
            stats.is_restricted = True
            stats.restriction_reason = (
                f"Automatically restricted after {stats.consecutive_failures} consecutive failed deliveries"
            )
            logger.warning(f"Courier {courier_id} restricted after {stats.consecutive_failures} failures")

        stats.performance_rating = compute_rating(
            stats.deliveries_completed, stats.deliveries_failed, stats.consecutive_failures
        )
        return stats

    async def record_success(self, courier_id: UUID) -> CourierStats:
        """Count a completed delivery and reset the failure streak."""
        stats = await self.get_or_create_stats(courier_id)
        stats.consecutive_failures = 0
        stats.deliveries_completed += 1
        stats.last_delivery_at = clock.utcnow()
        stats.performance_rating = compute_rating(
            stats.deliveries_completed, stats.deliveries_failed, stats.consecutive_failures
        )
        return stats

    async def update_settings(
        self,
        courier_id: UUID,
        commission_type: Optional[CommissionType] = None,
        commission_value: Optional[Decimal] = None,
        clear_restriction: bool = False,
        referral_commission: Optional[Decimal] = None,
        zones: Optional[List[str]] = None,
    ) -> CourierStats:
        """
        Administrative update of a courier's commission and restriction.

        Clearing the restriction also resets the failure streak.
        """
        courier = await self.db.get(User, courier_id)
        if courier is None or not courier.is_courier:
            raise NotFoundError("Courier not found", {"courier_id": str(courier_id)})

        stats = await self.get_or_create_stats(courier_id)

        if commission_type is not None:
            stats.commission_type = CommissionType(commission_type).value
        if commission_value is not None:
            if Decimal(str(commission_value)) < 0:
                raise ValidationFailedError("Commission value cannot be negative")
            stats.commission_value = Decimal(str(commission_value))
        if clear_restriction:
            stats.is_restricted = False
            stats.restriction_reason = None
            stats.consecutive_failures = 0
            logger.info(f"Restriction cleared for courier {courier_id}")
        if referral_commission is not None:
            courier.referral_commission = Decimal(str(referral_commission))
        if zones is not None:
            courier.zones = list(zones)

        return stats

    async def list_performance(self) -> List[Dict[str, Any]]:
        """Performance record plus current workload for every courier."""
        await self.db.flush()
        users = (await self.db.execute(select(User).order_by(User.name))).scalars().all()
        couriers = [u for u in users if u.has_role(UserRoleName.COURIER)]

        workload_rows = await self.db.execute(
            select(Shipment.courier_id, func.count(Shipment.id))
            .where(
                and_(
                    Shipment.courier_id.is_not(None),
                    Shipment.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
            .group_by(Shipment.courier_id)
        )
        workloads = {row[0]: row[1] for row in workload_rows.all()}

        summaries = []
        for courier in couriers:
            stats = await self.get_or_create_stats(courier.id)
            summaries.append({
                "courier_id": courier.id,
                "name": courier.name,
                "zones": courier.zones or [],
                "commission_type": stats.commission_type,
                "commission_value": stats.commission_value,
                "consecutive_failures": stats.consecutive_failures,
                "is_restricted": stats.is_restricted,
                "restriction_reason": stats.restriction_reason,
                "performance_rating": stats.performance_rating,
                "deliveries_completed": stats.deliveries_completed,
                "deliveries_failed": stats.deliveries_failed,
                "active_shipments": workloads.get(courier.id, 0),
            })
        return summaries
