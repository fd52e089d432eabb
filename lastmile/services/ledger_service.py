"""
Ledger Service

Appends entries to the client wallet and courier earnings ledgers, runs the
withdrawal lifecycle, and derives balances and financial summaries. Balances
are always computed from entries; nothing here stores a running total.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Type, Union
from uuid import UUID

from sqlalchemy import select, func, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.core import clock
from lastmile.core.exceptions import (
    NotFoundError,
    ValidationFailedError,
    InvalidPayoutStateError,
)
from lastmile.core.storage import StorageClient, is_data_url
from lastmile.models.ledger import (
    ClientTransaction,
    CourierTransaction,
    LedgerEntryType,
    LedgerEntryStatus,
    EARNING_TYPES,
    WITHDRAWAL_TYPES,
)
from lastmile.models.shipment import Shipment, ShipmentStatus, PaymentMethod
from lastmile.models.user import User, UserRoleName
from lastmile.services.commission import money

logger = logging.getLogger(__name__)

LedgerEntry = Union[ClientTransaction, CourierTransaction]

ZERO = Decimal("0")
BALANCE_STATUSES = (LedgerEntryStatus.PROCESSED.value, LedgerEntryStatus.PENDING.value)


class LedgerService:
    """Client wallet and courier earnings bookkeeping."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Entries ====================

    def add_client_entry(
        self,
        user_id: UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        description: str,
        shipment_id: Optional[str] = None,
        status: LedgerEntryStatus = LedgerEntryStatus.PROCESSED,
    ) -> ClientTransaction:
        entry = ClientTransaction(
            user_id=user_id,
            type=entry_type.value,
            amount=money(amount),
            description=description,
            shipment_id=shipment_id,
            status=status.value,
        )
        self.db.add(entry)
        logger.info(f"Client ledger {user_id}: {entry_type.value} {entry.amount} ({shipment_id or '-'})")
        return entry

    def add_courier_entry(
        self,
        courier_id: UUID,
        entry_type: LedgerEntryType,
        amount: Decimal,
        description: str,
        shipment_id: Optional[str] = None,
        status: LedgerEntryStatus = LedgerEntryStatus.PROCESSED,
    ) -> CourierTransaction:
        entry = CourierTransaction(
            courier_id=courier_id,
            type=entry_type.value,
            amount=money(amount),
            description=description,
            shipment_id=shipment_id,
            status=status.value,
        )
        self.db.add(entry)
        logger.info(f"Courier ledger {courier_id}: {entry_type.value} {entry.amount} ({shipment_id or '-'})")
        return entry

    async def _get_user(self, user_id: UUID, role: UserRoleName) -> User:
        user = await self.db.get(User, user_id)
        if user is None or not user.has_role(role):
            raise NotFoundError(f"{role.value} not found", {"user_id": str(user_id)})
        return user

    # ==================== Penalties ====================

    async def apply_penalty(
        self,
        courier_id: UUID,
        amount: Decimal,
        description: Optional[str] = None,
        shipment_id: Optional[str] = None,
    ) -> CourierTransaction:
        """Record a penalty against a courier. The stored amount is always negative."""
        await self._get_user(courier_id, UserRoleName.COURIER)
        amount = Decimal(str(amount or 0))
        if amount == ZERO:
            raise ValidationFailedError("Penalty amount is required")

        entry = self.add_courier_entry(
            courier_id,
            LedgerEntryType.PENALTY,
            -abs(amount),
            description or "Manual penalty",
            shipment_id=shipment_id,
        )
        await self.db.flush()
        return entry

    async def apply_failed_delivery_penalty(
        self,
        courier_id: UUID,
        shipment_id: str,
        description: Optional[str] = None,
    ) -> CourierTransaction:
        """Charge the courier the declared package value of a failed shipment."""
        shipment = await self.db.get(Shipment, shipment_id)
        if shipment is None:
            raise NotFoundError("Shipment not found", {"shipment_id": shipment_id})
        if shipment.status != ShipmentStatus.DELIVERY_FAILED.value:
            raise ValidationFailedError(
                "Shipment has not failed delivery",
                {"shipment_id": shipment_id, "status": shipment.status},
            )

        value = Decimal(str(shipment.package_value or 0))
        return await self.apply_penalty(
            courier_id,
            value,
            description or f"Penalty for failed delivery of {shipment_id} - Package value: {money(value)}",
            shipment_id=shipment_id,
        )

    # ==================== Withdrawals ====================

    async def request_payout(self, courier_id: UUID, amount: Decimal) -> CourierTransaction:
        """Courier asks to withdraw earnings. Recorded as a pending negative entry."""
        await self._get_user(courier_id, UserRoleName.COURIER)
        amount = Decimal(str(amount or 0))
        if amount <= ZERO:
            raise ValidationFailedError("Payout amount must be positive", {"amount": str(amount)})

        entry = self.add_courier_entry(
            courier_id,
            LedgerEntryType.WITHDRAWAL_REQUEST,
            -abs(amount),
            "Payout request from courier",
            status=LedgerEntryStatus.PENDING,
        )
        await self.db.flush()
        return entry

    async def request_client_payout(self, user_id: UUID, amount: Decimal) -> ClientTransaction:
        """Client asks to withdraw wallet funds."""
        await self._get_user(user_id, UserRoleName.CLIENT)
        amount = Decimal(str(amount or 0))
        if amount <= ZERO:
            raise ValidationFailedError("Payout amount must be positive", {"amount": str(amount)})

        entry = self.add_client_entry(
            user_id,
            LedgerEntryType.WITHDRAWAL_REQUEST,
            -abs(amount),
            "Payout request from client",
            status=LedgerEntryStatus.PENDING,
        )
        await self.db.flush()
        return entry

    async def _get_pending_request(self, model: Type[LedgerEntry], entry_id: UUID) -> LedgerEntry:
        result = await self.db.execute(
            select(model).where(model.id == entry_id).with_for_update()
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError("Payout request not found", {"entry_id": str(entry_id)})
        if entry.type != LedgerEntryType.WITHDRAWAL_REQUEST.value or not entry.is_pending:
            raise InvalidPayoutStateError(
                "Only pending payout requests can be processed or declined",
                {"entry_id": str(entry_id), "type": entry.type, "status": entry.status},
            )
        return entry

    async def _process(
        self,
        model: Type[LedgerEntry],
        entry_id: UUID,
        payment_method: Optional[str],
        transfer_evidence: Optional[str],
    ) -> LedgerEntry:
        entry = await self._get_pending_request(model, entry_id)

        entry.type = LedgerEntryType.WITHDRAWAL_PROCESSED.value
        entry.status = LedgerEntryStatus.PROCESSED.value
        entry.description = "Payout processed by admin"
        entry.payment_method = payment_method
        entry.processed_at = clock.utcnow()
        if transfer_evidence:
            if is_data_url(transfer_evidence):
                entry.transfer_evidence_path = StorageClient.upload_data_url(transfer_evidence, "payouts")
            else:
                entry.transfer_evidence_path = transfer_evidence

        logger.info(f"Payout {entry_id} processed ({payment_method or 'unspecified method'})")
        return entry

    async def _decline(self, model: Type[LedgerEntry], entry_id: UUID, reason: Optional[str]) -> LedgerEntry:
        entry = await self._get_pending_request(model, entry_id)
        entry.status = LedgerEntryStatus.FAILED.value
        entry.processed_at = clock.utcnow()
        entry.description = f"Payout declined: {reason}" if reason else "Payout declined by admin"
        logger.warning(f"Payout {entry_id} declined")
        return entry

    async def process_payout(
        self,
        entry_id: UUID,
        payment_method: Optional[str] = None,
        transfer_evidence: Optional[str] = None,
    ) -> CourierTransaction:
        return await self._process(CourierTransaction, entry_id, payment_method, transfer_evidence)

    async def decline_payout(self, entry_id: UUID, reason: Optional[str] = None) -> CourierTransaction:
        return await self._decline(CourierTransaction, entry_id, reason)

    async def process_client_payout(
        self,
        entry_id: UUID,
        payment_method: Optional[str] = None,
        transfer_evidence: Optional[str] = None,
    ) -> ClientTransaction:
        return await self._process(ClientTransaction, entry_id, payment_method, transfer_evidence)

    async def decline_client_payout(self, entry_id: UUID, reason: Optional[str] = None) -> ClientTransaction:
        return await self._decline(ClientTransaction, entry_id, reason)

    # ==================== Views ====================

    async def list_courier_entries(self, courier_id: UUID) -> List[CourierTransaction]:
        result = await self.db.execute(
            select(CourierTransaction)
            .where(CourierTransaction.courier_id == courier_id)
            .order_by(desc(CourierTransaction.created_at))
        )
        return list(result.scalars().all())

    async def list_client_entries(self, user_id: UUID) -> List[ClientTransaction]:
        result = await self.db.execute(
            select(ClientTransaction)
            .where(ClientTransaction.user_id == user_id)
            .order_by(desc(ClientTransaction.created_at))
        )
        return list(result.scalars().all())

    async def list_pending_payouts(self, client_ledger: bool = False) -> List[LedgerEntry]:
        model = ClientTransaction if client_ledger else CourierTransaction
        result = await self.db.execute(
            select(model)
            .where(
                and_(
                    model.type == LedgerEntryType.WITHDRAWAL_REQUEST.value,
                    model.status == LedgerEntryStatus.PENDING.value,
                )
            )
            .order_by(model.created_at)
        )
        return list(result.scalars().all())

    async def _sum(self, model: Type[LedgerEntry], *conditions) -> Decimal:
        await self.db.flush()
        result = await self.db.execute(
            select(func.coalesce(func.sum(model.amount), 0)).where(and_(*conditions))
        )
        return money(result.scalar() or 0)

    async def courier_balance(self, courier_id: UUID) -> Decimal:
        """Processed entries plus pending withdrawals, so requested funds are not spendable twice."""
        return await self._sum(
            CourierTransaction,
            CourierTransaction.courier_id == courier_id,
            CourierTransaction.status.in_(BALANCE_STATUSES),
        )

    async def client_wallet_balance(self, user_id: UUID) -> Decimal:
        return await self._sum(
            ClientTransaction,
            ClientTransaction.user_id == user_id,
            ClientTransaction.status.in_(BALANCE_STATUSES),
        )

    async def courier_financials(self, courier_id: UUID) -> Dict[str, Any]:
        """Earnings, penalties, withdrawals, pending payouts and balance for one courier."""
        await self._get_user(courier_id, UserRoleName.COURIER)
        owner = CourierTransaction.courier_id == courier_id

        total_earnings = await self._sum(
            CourierTransaction, owner, CourierTransaction.type.in_(EARNING_TYPES)
        )
        total_penalties = await self._sum(
            CourierTransaction, owner, CourierTransaction.type == LedgerEntryType.PENALTY.value
        )
        total_withdrawn = await self._sum(
            CourierTransaction,
            owner,
            CourierTransaction.type == LedgerEntryType.WITHDRAWAL_PROCESSED.value,
        )
        pending = await self._sum(
            CourierTransaction,
            owner,
            CourierTransaction.type.in_(WITHDRAWAL_TYPES),
            CourierTransaction.status == LedgerEntryStatus.PENDING.value,
        )

        return {
            "courier_id": courier_id,
            "total_earnings": total_earnings,
            "total_penalties": abs(total_penalties),
            "total_withdrawn": abs(total_withdrawn),
            "pending_payouts": abs(pending),
            "current_balance": await self.courier_balance(courier_id),
        }

    async def client_financials(self, user_id: UUID) -> Dict[str, Any]:
        """Per-client summary: delivered order count and value, flat fee, wallet balance."""
        client = await self._get_user(user_id, UserRoleName.CLIENT)

        delivered = await self.db.execute(
            select(
                func.count(Shipment.id),
                func.coalesce(func.sum(Shipment.package_value), 0),
                func.coalesce(func.sum(Shipment.client_flat_rate_fee), 0),
            ).where(
                and_(
                    Shipment.client_id == user_id,
                    Shipment.status == ShipmentStatus.DELIVERED.value,
                )
            )
        )
        order_count, order_sum, fees = delivered.one()

        return {
            "client_id": client.id,
            "client_name": client.name,
            "flat_rate_fee": money(client.flat_rate_fee or 0),
            "partner_tier": client.partner_tier,
            "delivered_orders": int(order_count or 0),
            "orders_value": money(order_sum or 0),
            "total_fees": money(fees or 0),
            "wallet_balance": await self.client_wallet_balance(user_id),
        }

    async def all_client_financials(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(select(User).order_by(User.name))
        clients = [u for u in result.scalars().all() if u.is_client]
        return [await self.client_financials(c.id) for c in clients]

    async def admin_financials(self) -> Dict[str, Any]:
        """
        Company-wide totals.

        - collected_cod: package value of delivered COD shipments
        - undelivered_value: package value still in transit or waiting
        - failed_value: package value of failed deliveries
        - total_fees: frozen client fees on delivered shipments
        - total_commission: commission and referral payouts to couriers
        - net_revenue: total_fees - total_commission
        """
        async def shipment_sum(column, *conditions) -> Decimal:
            result = await self.db.execute(
                select(func.coalesce(func.sum(column), 0)).where(and_(*conditions))
            )
            return money(result.scalar() or 0)

        delivered = Shipment.status == ShipmentStatus.DELIVERED.value
        collected_cod = await shipment_sum(
            Shipment.package_value, delivered, Shipment.payment_method == PaymentMethod.COD.value
        )
        undelivered_value = await shipment_sum(
            Shipment.package_value,
            Shipment.status.notin_([
                ShipmentStatus.DELIVERED.value,
                ShipmentStatus.DELIVERY_FAILED.value,
            ]),
        )
        failed_value = await shipment_sum(
            Shipment.package_value, Shipment.status == ShipmentStatus.DELIVERY_FAILED.value
        )
        total_fees = await shipment_sum(Shipment.client_flat_rate_fee, delivered)
        total_commission = await self._sum(
            CourierTransaction,
            CourierTransaction.type.in_([
                LedgerEntryType.COMMISSION.value,
                LedgerEntryType.REFERRAL_BONUS.value,
            ]),
        )

        return {
            "collected_cod": collected_cod,
            "undelivered_value": undelivered_value,
            "failed_value": failed_value,
            "total_fees": total_fees,
            "total_commission": total_commission,
            "net_revenue": money(total_fees - total_commission),
            "generated_at": clock.utcnow(),
        }
