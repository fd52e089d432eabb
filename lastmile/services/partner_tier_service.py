"""
Partner Tier Service

Clients earn a discount tier from their shipment volume over a trailing
window. Tiers are evaluated highest threshold first; the first one met
wins. Clients whose tier was set by an administrator are left alone until
the override is cleared.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core import clock
from lastmile.core.exceptions import NotFoundError, ValidationFailedError
from lastmile.models.notifications import InAppNotificationType
from lastmile.models.partner_tier import TierSetting, DEFAULT_TIERS
from lastmile.models.shipment import Shipment
from lastmile.models.user import User
from lastmile.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def pick_tier(shipment_count: int, tiers: Sequence[TierSetting]) -> Optional[str]:
    """Name of the highest tier whose threshold the count meets, or None."""
    for tier in sorted(tiers, key=lambda t: t.shipment_threshold, reverse=True):
        if shipment_count >= tier.shipment_threshold:
            return tier.tier_name
    return None


class PartnerTierService:
    """Tier settings, manual overrides and the periodic recompute."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)

    async def get_settings(self) -> List[TierSetting]:
        """Tier settings, seeding the defaults when none exist."""
        result = await self.db.execute(
            select(TierSetting).order_by(TierSetting.shipment_threshold.desc())
        )
        tiers = list(result.scalars().all())
        if tiers:
            return tiers

        tiers = [
            TierSetting(tier_name=name, shipment_threshold=threshold, discount_percentage=discount)
            for name, threshold, discount in reversed(DEFAULT_TIERS)
        ]
        self.db.add_all(tiers)
        await self.db.flush()
        return tiers

    async def update_settings(self, tiers: List[Dict[str, Any]]) -> List[TierSetting]:
        """Replace the tier table."""
        names = set()
        for tier in tiers:
            name = (tier.get("tier_name") or "").strip()
            if not name or tier.get("shipment_threshold") is None:
                raise ValidationFailedError("Each tier needs a name and a threshold", {"tier": tier})
            if name in names:
                raise ValidationFailedError(f"Duplicate tier name: {name}")
            if int(tier["shipment_threshold"]) < 0:
                raise ValidationFailedError(f"Threshold for {name} cannot be negative")
            names.add(name)

        result = await self.db.execute(select(TierSetting))
        existing = {t.tier_name: t for t in result.scalars().all()}
        for name, stale in existing.items():
            if name not in names:
                await self.db.delete(stale)

        new_tiers = []
        for tier in tiers:
            name = tier["tier_name"].strip()
            setting = existing.get(name)
            if setting is None:
                setting = TierSetting(tier_name=name)
                self.db.add(setting)
            setting.shipment_threshold = int(tier["shipment_threshold"])
            setting.discount_percentage = Decimal(str(tier.get("discount_percentage") or 0))
            new_tiers.append(setting)
        await self.db.flush()
        logger.info(f"Tier settings updated: {sorted(names)}")
        return sorted(new_tiers, key=lambda t: t.shipment_threshold, reverse=True)

    async def _get_client(self, client_id: UUID) -> User:
        client = await self.db.get(User, client_id)
        if client is None or not client.is_client:
            raise NotFoundError("Client not found", {"client_id": str(client_id)})
        return client

    async def set_manual_tier(self, client_id: UUID, tier_name: Optional[str]) -> User:
        """Pin a client's tier. ``None`` pins the client to no tier."""
        client = await self._get_client(client_id)
        if tier_name is not None and await self.db.get(TierSetting, tier_name) is None:
            raise NotFoundError("Tier not found", {"tier_name": tier_name})

        client.partner_tier = tier_name
        client.manual_tier_assignment = True
        logger.info(f"Client {client_id} manually set to tier {tier_name}")
        return client

    async def clear_manual_tier(self, client_id: UUID) -> User:
        """Return a client to automatic tiering. Takes effect at the next recompute."""
        client = await self._get_client(client_id)
        client.manual_tier_assignment = False
        return client

    async def count_recent_shipments(self, client_id: UUID) -> int:
        since = clock.utcnow() - timedelta(days=settings.TIER_WINDOW_DAYS)
        result = await self.db.execute(
            select(func.count(Shipment.id)).where(
                and_(Shipment.client_id == client_id, Shipment.created_at >= since)
            )
        )
        return result.scalar() or 0

    async def recompute_tiers(self) -> Dict[str, Any]:
        """
        Recompute every automatically-tiered client.

        Returns:
            Summary with counts of clients evaluated and changed
        """
        await self.db.flush()
        tiers = await self.get_settings()
        result = await self.db.execute(
            select(User).where(User.manual_tier_assignment == False)  # noqa: E712
        )
        clients = [u for u in result.scalars().all() if u.is_client]

        tier_rank = {t.tier_name: t.shipment_threshold for t in tiers}
        changes = []
        for client in clients:
            count = await self.count_recent_shipments(client.id)
            new_tier = pick_tier(count, tiers)
            if new_tier == client.partner_tier:
                continue

            old_tier = client.partner_tier
            client.partner_tier = new_tier
            promoted = new_tier is not None and (
                old_tier is None or tier_rank.get(new_tier, 0) > tier_rank.get(old_tier, -1)
            )
            if promoted:
                message = (
                    f"Congratulations! You've been promoted to the {new_tier} partner tier "
                    f"with {count} shipments in the last {settings.TIER_WINDOW_DAYS} days."
                )
                kind = InAppNotificationType.TIER_PROMOTION
            else:
                message = f"Your partner tier has been updated to {new_tier or 'None'}."
                kind = InAppNotificationType.TIER_UPDATE
            await self.notifier.notify_user(client.id, message, kind)

            changes.append({"client_id": str(client.id), "from": old_tier, "to": new_tier})
            logger.info(f"Client {client.id} tier {old_tier} -> {new_tier} ({count} shipments)")

        return {
            "clients_evaluated": len(clients),
            "clients_changed": len(changes),
            "changes": changes,
        }
