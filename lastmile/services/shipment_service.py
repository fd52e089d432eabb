"""
Shipment Service

Owns the shipment status and its history. Every transition appends one
``{status, timestamp}`` entry and sets ``status`` to match it; ``revert`` is
the only operation that removes an entry, and only for two backward moves.

Services never commit. The caller's session is the atomic scope, so an
error anywhere in a transition leaves nothing behind.
"""
import logging
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.core import clock
from lastmile.core.exceptions import (
    NotFoundError,
    InvalidStatusError,
    UnsupportedRevertError,
    InvalidRevertError,
    ValidationFailedError,
)
from lastmile.core.storage import StorageClient, is_data_url
from lastmile.models.ledger import LedgerEntryType
from lastmile.models.notifications import InAppNotificationType
from lastmile.models.partner_tier import TierSetting
from lastmile.models.shipment import (
    Shipment,
    ShipmentCounter,
    ShipmentStatus,
    ShipmentPriority,
    PaymentMethod,
)
from lastmile.models.user import User, DEFAULT_PRIORITY_MULTIPLIERS
from lastmile.services.audit_service import AuditService
from lastmile.services.commission import money
from lastmile.services.courier_performance_service import CourierPerformanceService
from lastmile.services.inventory_service import InventoryService
from lastmile.services.ledger_service import LedgerService
from lastmile.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# (current, previous) pairs revert is allowed to undo
REVERTIBLE = {
    (ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value, ShipmentStatus.WAITING_FOR_PACKAGING.value),
    (ShipmentStatus.ASSIGNED_TO_COURIER.value, ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value),
}


def parse_status(value: Any) -> ShipmentStatus:
    """Reject status strings outside the closed set."""
    try:
        return ShipmentStatus(value)
    except ValueError:
        raise InvalidStatusError(
            f"Unknown shipment status: {value}",
            {"allowed": [s.value for s in ShipmentStatus]},
        )


def history_entry(status: ShipmentStatus, at: datetime) -> Dict[str, str]:
    return {"status": status.value, "timestamp": at.isoformat()}


def _text(value: Optional[Decimal]) -> Optional[str]:
    return str(money(value)) if value is not None else None


def city_code(city: Optional[str]) -> str:
    letters = re.sub(r"[^A-Za-z]", "", city or "")
    return (letters[:3] or "UNK").upper().ljust(3, "X")


class ShipmentService:
    """Shipment lifecycle: creation, transitions, revert and delivery settlement."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService(db)
        self.ledger = LedgerService(db)
        self.performance = CourierPerformanceService(db)
        self.audit = AuditService(db)
        self.inventory = InventoryService(db, self.audit)

    # ==================== Lookups ====================

    async def get_shipment(self, shipment_id: str, lock: bool = False) -> Shipment:
        query = select(Shipment).where(Shipment.id == shipment_id)
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        shipment = result.scalar_one_or_none()
        if shipment is None:
            raise NotFoundError("Shipment not found", {"shipment_id": shipment_id})
        return shipment

    async def list_shipments(
        self,
        client_id: Optional[UUID] = None,
        courier_id: Optional[UUID] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Shipment]:
        query = select(Shipment)
        conditions = []
        if client_id:
            conditions.append(Shipment.client_id == client_id)
        if courier_id:
            conditions.append(Shipment.courier_id == courier_id)
        if status:
            conditions.append(Shipment.status == parse_status(status).value)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(desc(Shipment.created_at)).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def track(self, tracking_id: str, phone: str) -> Shipment:
        """
        Public tracking lookup. The phone must match the recipient's or the
        client's; any mismatch looks the same as an unknown id.
        """
        result = await self.db.execute(
            select(Shipment).where(func.upper(Shipment.id) == tracking_id.strip().upper())
        )
        shipment = result.scalar_one_or_none()
        if shipment is not None:
            client = await self.db.get(User, shipment.client_id) if shipment.client_id else None
            if phone and (phone == shipment.recipient_phone or (client and phone == client.phone)):
                return shipment
        raise NotFoundError("Wrong shipment ID or phone number")

    # ==================== History ====================

    def append_history(self, shipment: Shipment, status: ShipmentStatus) -> None:
        # Reassign so the JSON column is flagged dirty
        shipment.status_history = list(shipment.status_history or []) + [
            history_entry(status, clock.utcnow())
        ]
        shipment.status = status.value

    # ==================== Creation ====================

    async def _next_sequence(self) -> int:
        result = await self.db.execute(
            select(ShipmentCounter).where(ShipmentCounter.id == "global").with_for_update()
        )
        counter = result.scalar_one_or_none()
        if counter is None:
            counter = ShipmentCounter(id="global", count=0)
            self.db.add(counter)
        counter.count += 1
        await self.db.flush()
        return counter.count

    async def _quote_price(self, client: User, priority: ShipmentPriority) -> Decimal:
        """Flat rate times the priority multiplier, less the client's tier discount."""
        flat_rate = Decimal(str(client.flat_rate_fee or 0))
        multipliers = client.priority_multipliers or DEFAULT_PRIORITY_MULTIPLIERS
        multiplier = Decimal(str(multipliers.get(priority.value, 1.0)))
        price = flat_rate * multiplier

        if client.partner_tier:
            tier = await self.db.get(TierSetting, client.partner_tier)
            if tier is not None and tier.discount_percentage:
                price -= price * Decimal(str(tier.discount_percentage)) / Decimal("100")
        return money(price)

    async def create_shipment(self, client_id: UUID, data: Dict[str, Any]) -> Shipment:
        """
        Create a shipment for a client.

        The tracking code is ``{CITY}-{YYMMDD}-{SEQ}`` where SEQ comes from the
        locked global counter, so two shipments never share a code.
        """
        client = await self.db.get(User, client_id)
        if client is None or not client.is_client:
            raise NotFoundError("Client not found", {"client_id": str(client_id)})

        missing = [
            field for field in ("recipient_name", "to_address")
            if not data.get(field)
        ]
        to_address = data.get("to_address") or {}
        if to_address and not to_address.get("city"):
            missing.append("to_address.city")
        if missing:
            raise ValidationFailedError("Missing required fields", {"missing": missing})

        try:
            priority = ShipmentPriority(data.get("priority") or ShipmentPriority.STANDARD.value)
            payment_method = PaymentMethod(data.get("payment_method") or PaymentMethod.COD.value)
        except ValueError as e:
            raise ValidationFailedError(str(e))

        now = clock.utcnow()
        sequence = await self._next_sequence()
        tracking_code = f"{city_code(to_address.get('city'))}-{now:%y%m%d}-{sequence:04d}"

        price = data.get("price")
        price = money(price) if price is not None else await self._quote_price(client, priority)

        shipment = Shipment(
            id=tracking_code,
            client_id=client.id,
            client_name=client.name,
            recipient_name=data["recipient_name"],
            recipient_phone=data.get("recipient_phone"),
            from_address=data.get("from_address") or client.address or {},
            to_address=to_address,
            destination_zone=to_address.get("zone"),
            package_description=data.get("package_description"),
            is_large_order=bool(data.get("is_large_order", False)),
            package_value=money(data.get("package_value") or 0),
            price=price,
            amount_to_collect=money(data["amount_to_collect"]) if data.get("amount_to_collect") is not None else None,
            payment_method=payment_method.value,
            priority=priority.value,
            status=ShipmentStatus.WAITING_FOR_PACKAGING.value,
            status_history=[history_entry(ShipmentStatus.WAITING_FOR_PACKAGING, now)],
            created_at=now,
        )
        self.db.add(shipment)
        await self.db.flush()

        await self.notifier.notify_status_change(shipment)
        logger.info(f"Created shipment {shipment.id} for client {client.id}")
        return shipment

    async def record_packaging(
        self,
        shipment_id: str,
        packaging_log: Optional[List[Dict[str, Any]]] = None,
        notes: Optional[str] = None,
    ) -> Shipment:
        """
        Store packaging details, draw the materials used from inventory and
        move the shipment on to await assignment.

        Log entries naming an ``inventory_item_id`` decrement that item by
        ``quantity_used``; a shortage refuses the whole packaging.
        """
        shipment = await self.get_shipment(shipment_id, lock=True)
        if shipment.status != ShipmentStatus.WAITING_FOR_PACKAGING.value:
            raise InvalidStatusError(
                "Only shipments waiting for packaging can be packaged",
                {"shipment_id": shipment_id, "status": shipment.status},
            )

        packaging_log = list(packaging_log or [])
        await self.inventory.consume(packaging_log)

        shipment.packaging_log = packaging_log
        shipment.packaging_notes = notes
        self.append_history(shipment, ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT)

        await self.notifier.notify_status_change(shipment)
        logger.info(f"Shipment {shipment_id} packaged")
        return shipment

    # ==================== Transitions ====================

    async def advance(
        self,
        shipment_id: str,
        target: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> Shipment:
        """
        Move a shipment to ``target``.

        ``Delivered`` is refused as a target here, since delivery goes through code
        verification, and a delivered shipment cannot move at all.
        Repeating the current status is a no-op. On ``DELIVERY_FAILED`` the
        courier's failure streak grows, the client is charged the frozen fee,
        and both parties are notified.

        Args:
            shipment_id: Tracking code
            target: Target status value
            details: Optional ``failure_reason`` and ``failure_photo`` (data: URL)
        """
        status = parse_status(target)
        if status == ShipmentStatus.DELIVERED:
            raise InvalidStatusError(
                "Deliveries must be confirmed with the recipient's verification code",
                {"shipment_id": shipment_id},
            )

        shipment = await self.get_shipment(shipment_id, lock=True)
        if shipment.status == ShipmentStatus.DELIVERED.value:
            raise InvalidStatusError(
                "Delivered shipments are final",
                {"shipment_id": shipment_id, "status": shipment.status},
            )
        if shipment.last_history_status == status.value:
            return shipment

        details = details or {}
        if "failure_reason" in details:
            shipment.failure_reason = details.get("failure_reason") or None

        if status == ShipmentStatus.DELIVERY_FAILED and is_data_url(details.get("failure_photo")):
            shipment.failure_photo_path = StorageClient.upload_data_url(
                details["failure_photo"], f"failures/{shipment.id}"
            )

        self.append_history(shipment, status)
        logger.info(f"Shipment {shipment_id} -> {status.value}")

        if status == ShipmentStatus.DELIVERY_FAILED:
            await self._on_delivery_failed(shipment)

        await self.notifier.notify_status_change(shipment)
        return shipment

    async def _on_delivery_failed(self, shipment: Shipment) -> None:
        if shipment.courier_id:
            stats = await self.performance.record_failure(shipment.courier_id)
            await self.notifier.notify_user(
                shipment.courier_id,
                f"Delivery of shipment {shipment.id} was marked as failed.",
                InAppNotificationType.DELIVERY_FAILED,
                link=f"/shipments/{shipment.id}",
            )
            if stats.is_restricted:
                await self.notifier.notify_user(
                    shipment.courier_id,
                    f"Your account has been restricted: {stats.restriction_reason}",
                    InAppNotificationType.RESTRICTION,
                )

        fee = Decimal(str(shipment.client_flat_rate_fee or 0))
        if shipment.client_id and fee > ZERO:
            self.ledger.add_client_entry(
                shipment.client_id,
                LedgerEntryType.PENALTY,
                -fee,
                f"Failed delivery fee for shipment {shipment.id}",
                shipment_id=shipment.id,
            )

    async def revert(self, shipment_id: str) -> Shipment:
        """
        Undo the last transition.

        Only ``PACKAGED_AWAITING_ASSIGNMENT -> WAITING_FOR_PACKAGING`` (drops
        the packaging log; stock is not restored) and
        ``ASSIGNED_TO_COURIER -> PACKAGED_AWAITING_ASSIGNMENT`` (detaches the
        courier and the frozen commission) are allowed.
        """
        shipment = await self.get_shipment(shipment_id, lock=True)
        history = list(shipment.status_history or [])
        if len(history) < 2:
            raise InvalidRevertError(
                "Cannot revert the initial status",
                {"shipment_id": shipment_id},
            )

        current, previous = history[-1]["status"], history[-2]["status"]
        if (current, previous) not in REVERTIBLE:
            raise UnsupportedRevertError(
                f"Reverting from {current} to {previous} is not supported",
                {"shipment_id": shipment_id, "from": current, "to": previous},
            )

        if current == ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value:
            shipment.packaging_log = None
            shipment.packaging_notes = None
        elif current == ShipmentStatus.ASSIGNED_TO_COURIER.value:
            shipment.courier_id = None
            shipment.courier_commission = None

        shipment.status_history = history[:-1]
        shipment.status = previous

        await self.notifier.notify_status_change(shipment)
        logger.info(f"Shipment {shipment_id} reverted {current} -> {previous}")
        return shipment

    # ==================== Fees ====================

    async def override_fees(
        self,
        shipment_id: str,
        client_flat_rate_fee: Optional[Decimal] = None,
        courier_commission: Optional[Decimal] = None,
        actor_id: Optional[UUID] = None,
    ) -> Shipment:
        """
        Administrative edit of the frozen fee and commission.

        Only settlement still to come sees the new values; entries already
        written are not touched, and delivered shipments are refused.
        Every override is recorded in the audit log.
        """
        if client_flat_rate_fee is None and courier_commission is None:
            raise ValidationFailedError("Nothing to override")
        for field, value in (("client_flat_rate_fee", client_flat_rate_fee), ("courier_commission", courier_commission)):
            if value is not None and Decimal(str(value)) < 0:
                raise ValidationFailedError(f"{field} cannot be negative", {field: str(value)})

        shipment = await self.get_shipment(shipment_id, lock=True)
        if shipment.status == ShipmentStatus.DELIVERED.value:
            raise InvalidStatusError(
                "Delivered shipments are already settled",
                {"shipment_id": shipment_id, "status": shipment.status},
            )

        before = {
            "client_flat_rate_fee": _text(shipment.client_flat_rate_fee),
            "courier_commission": _text(shipment.courier_commission),
        }
        if client_flat_rate_fee is not None:
            shipment.client_flat_rate_fee = money(client_flat_rate_fee)
        if courier_commission is not None:
            shipment.courier_commission = money(courier_commission)
        after = {
            "client_flat_rate_fee": _text(shipment.client_flat_rate_fee),
            "courier_commission": _text(shipment.courier_commission),
        }

        await self.audit.log(
            "OVERRIDE_FEES", "SHIPMENT", shipment.id, actor_id,
            old_values=before,
            new_values=after,
            description=f"Fees overridden on shipment {shipment.id}",
        )
        logger.info(f"Fees on {shipment_id} overridden by {actor_id}: {before} -> {after}")
        return shipment

    # ==================== Delivery ====================

    async def complete_delivery(self, shipment_id: str) -> Shipment:
        """
        Mark a shipment delivered and settle it.

        Only the delivery verification flow calls this. Settlement:
        commission and referral bonus on the courier ledger, then the client
        wallet entries for the payment method.
        """
        shipment = await self.get_shipment(shipment_id, lock=True)
        if shipment.status == ShipmentStatus.DELIVERED.value:
            raise InvalidStatusError("Shipment already delivered", {"shipment_id": shipment_id})

        now = clock.utcnow()
        shipment.delivered_at = now
        self.append_history(shipment, ShipmentStatus.DELIVERED)
        await self.notifier.notify_status_change(shipment)

        if shipment.courier_id:
            await self._settle_courier(shipment)
        if shipment.client_id:
            self._settle_client(shipment)

        logger.info(f"Shipment {shipment_id} delivered and settled")
        return shipment

    async def _settle_courier(self, shipment: Shipment) -> None:
        commission = Decimal(str(shipment.courier_commission or 0))
        if commission > ZERO:
            self.ledger.add_courier_entry(
                shipment.courier_id,
                LedgerEntryType.COMMISSION,
                commission,
                f"Commission for shipment {shipment.id}",
                shipment_id=shipment.id,
            )
        await self.notifier.notify_user(
            shipment.courier_id,
            f"Shipment {shipment.id} delivered. Commission: {money(commission)}",
            InAppNotificationType.DELIVERY,
            link=f"/shipments/{shipment.id}",
        )
        await self.performance.record_success(shipment.courier_id)

        courier = await self.db.get(User, shipment.courier_id)
        if courier is None or not courier.referrer_id:
            return
        referrer = await self.db.get(User, courier.referrer_id)
        rate = Decimal(str(referrer.referral_commission or 0)) if referrer is not None else ZERO
        if rate > ZERO:
            self.ledger.add_courier_entry(
                referrer.id,
                LedgerEntryType.REFERRAL_BONUS,
                rate,
                f"Referral bonus for {courier.name}'s delivery of {shipment.id}",
                shipment_id=shipment.id,
            )

    def _settle_client(self, shipment: Shipment) -> None:
        fee = Decimal(str(shipment.client_flat_rate_fee or 0))
        package_value = Decimal(str(shipment.package_value or 0))
        method = shipment.payment_method

        if method == PaymentMethod.COD.value:
            if package_value > ZERO:
                self._client_entry(shipment, LedgerEntryType.DEPOSIT, package_value, "Cash collected")
            if fee > ZERO:
                self._client_entry(shipment, LedgerEntryType.PAYMENT, -fee, "Delivery fee")

        elif method == PaymentMethod.BANK_TRANSFER.value:
            collected = Decimal(str(shipment.amount_to_collect or 0))
            if collected > ZERO:
                self._client_entry(shipment, LedgerEntryType.DEPOSIT, collected, "Bank transfer collected")

        elif method == PaymentMethod.WALLET.value:
            paid = shipment.price
            paid = Decimal(str(paid)) if paid is not None else package_value + fee
            if paid > ZERO:
                self._client_entry(shipment, LedgerEntryType.DEPOSIT, paid, "Wallet payment received")
            if fee > ZERO:
                self._client_entry(shipment, LedgerEntryType.PAYMENT, -fee, "Delivery fee")

    def _client_entry(self, shipment: Shipment, entry_type: LedgerEntryType, amount: Decimal, label: str) -> None:
        self.ledger.add_client_entry(
            shipment.client_id,
            entry_type,
            amount,
            f"{label} for shipment {shipment.id}",
            shipment_id=shipment.id,
        )
