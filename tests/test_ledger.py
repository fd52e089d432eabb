from decimal import Decimal

import pytest
from sqlalchemy import select

from lastmile.core.exceptions import (
    InvalidPayoutStateError,
    InvalidStatusError,
    NotFoundError,
    ValidationFailedError,
)
from lastmile.models.ledger import (
    ClientTransaction,
    CourierTransaction,
    LedgerEntryStatus,
    LedgerEntryType,
)
from lastmile.models.user import UserRoleName
from lastmile.services.audit_service import AuditService
from lastmile.services.delivery_verification_service import DeliveryVerificationService
from lastmile.services.ledger_service import LedgerService
from lastmile.services.shipment_service import ShipmentService


async def _deliver(db, shipment):
    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    return await service.verify(shipment.id, verification.code)


# ==================== Penalties ====================

async def test_penalty_is_stored_negative(db, make_courier):
    courier = await make_courier()
    entry = await LedgerService(db).apply_penalty(courier.id, Decimal("40"), "Late pickup")

    assert entry.type == LedgerEntryType.PENALTY.value
    assert entry.amount == Decimal("-40.00")
    assert entry.status == LedgerEntryStatus.PROCESSED.value


async def test_penalty_requires_amount_and_courier(db, make_courier, make_client):
    courier = await make_courier()
    client = await make_client()
    ledger = LedgerService(db)

    with pytest.raises(ValidationFailedError):
        await ledger.apply_penalty(courier.id, Decimal("0"))
    with pytest.raises(NotFoundError):
        await ledger.apply_penalty(client.id, Decimal("10"))


async def test_failed_delivery_penalty_uses_package_value(db, assigned_shipment):
    shipment, _, courier = await assigned_shipment(package_value=Decimal("250"))
    ledger = LedgerService(db)

    with pytest.raises(ValidationFailedError):
        await ledger.apply_failed_delivery_penalty(courier.id, shipment.id)

    await ShipmentService(db).advance(shipment.id, "DELIVERY_FAILED")
    entry = await ledger.apply_failed_delivery_penalty(courier.id, shipment.id)

    assert entry.amount == Decimal("-250.00")
    assert entry.shipment_id == shipment.id
    assert shipment.id in entry.description


# ==================== Payouts ====================

async def test_payout_request_then_process(db, assigned_shipment):
    shipment, _, courier = await assigned_shipment()
    await _deliver(db, shipment)
    ledger = LedgerService(db)

    request = await ledger.request_payout(courier.id, Decimal("20"))
    assert request.amount == Decimal("-20.00")
    assert request.is_pending
    assert await ledger.courier_balance(courier.id) == Decimal("10.00")

    processed = await ledger.process_payout(
        request.id, "Instapay", "data:image/png;base64,iVBORw0KGgo="
    )

    assert processed.type == LedgerEntryType.WITHDRAWAL_PROCESSED.value
    assert processed.status == LedgerEntryStatus.PROCESSED.value
    assert processed.processed_at is not None
    assert processed.transfer_evidence_path.startswith("payouts/")

    financials = await ledger.courier_financials(courier.id)
    assert financials["total_earnings"] == Decimal("30.00")
    assert financials["total_withdrawn"] == Decimal("20.00")
    assert financials["pending_payouts"] == Decimal("0.00")
    assert financials["current_balance"] == Decimal("10.00")


async def test_payout_cannot_be_processed_twice(db, make_courier):
    courier = await make_courier()
    ledger = LedgerService(db)
    request = await ledger.request_payout(courier.id, Decimal("20"))
    await ledger.process_payout(request.id)

    with pytest.raises(InvalidPayoutStateError):
        await ledger.process_payout(request.id)
    with pytest.raises(InvalidPayoutStateError):
        await ledger.decline_payout(request.id)


async def test_declined_payout_leaves_balance(db, make_courier):
    courier = await make_courier()
    ledger = LedgerService(db)
    request = await ledger.request_payout(courier.id, Decimal("20"))
    assert await ledger.courier_balance(courier.id) == Decimal("-20.00")

    declined = await ledger.decline_payout(request.id, "Bank details missing")

    assert declined.status == LedgerEntryStatus.FAILED.value
    assert "Bank details missing" in declined.description
    assert await ledger.courier_balance(courier.id) == Decimal("0.00")


async def test_only_payout_requests_can_be_processed(db, make_courier):
    courier = await make_courier()
    ledger = LedgerService(db)
    penalty = await ledger.apply_penalty(courier.id, Decimal("5"))

    with pytest.raises(InvalidPayoutStateError):
        await ledger.process_payout(penalty.id)


async def test_client_payout_flow(db, assigned_shipment):
    shipment, client, _ = await assigned_shipment(package_value=Decimal("500"))
    await _deliver(db, shipment)
    ledger = LedgerService(db)
    assert await ledger.client_wallet_balance(client.id) == Decimal("425.00")

    request = await ledger.request_client_payout(client.id, Decimal("400"))
    pending = await ledger.list_pending_payouts(client_ledger=True)
    assert [p.id for p in pending] == [request.id]

    await ledger.process_client_payout(request.id, "Bank transfer")

    assert await ledger.client_wallet_balance(client.id) == Decimal("25.00")
    assert await ledger.list_pending_payouts(client_ledger=True) == []


async def test_payout_amount_must_be_positive(db, make_courier):
    courier = await make_courier()
    with pytest.raises(ValidationFailedError):
        await LedgerService(db).request_payout(courier.id, Decimal("0"))


# ==================== Views ====================

async def test_client_financials(db, assigned_shipment):
    shipment, client, _ = await assigned_shipment(package_value=Decimal("500"))
    await _deliver(db, shipment)

    summary = await LedgerService(db).client_financials(client.id)

    assert summary["delivered_orders"] == 1
    assert summary["orders_value"] == Decimal("500.00")
    assert summary["total_fees"] == Decimal("75.00")
    assert summary["wallet_balance"] == Decimal("425.00")


async def test_admin_financials(db, assigned_shipment):
    delivered, _, _ = await assigned_shipment(package_value=Decimal("500"))
    await _deliver(db, delivered)
    failed, _, _ = await assigned_shipment(package_value=Decimal("120"))
    await ShipmentService(db).advance(failed.id, "DELIVERY_FAILED")
    await assigned_shipment(package_value=Decimal("80"))
    await db.flush()

    totals = await LedgerService(db).admin_financials()

    assert totals["collected_cod"] == Decimal("500.00")
    assert totals["failed_value"] == Decimal("120.00")
    assert totals["undelivered_value"] == Decimal("80.00")
    assert totals["total_fees"] == Decimal("75.00")
    assert totals["total_commission"] == Decimal("30.00")
    assert totals["net_revenue"] == Decimal("45.00")


# ==================== Fee overrides ====================

async def _entries(db, model, owner_column, owner_id):
    await db.flush()
    result = await db.execute(select(model).where(owner_column == owner_id))
    return sorted((e.type, e.amount) for e in result.scalars().all())


async def test_fee_override_applies_to_settlement(db, assigned_shipment, make_user):
    shipment, client, courier = await assigned_shipment()
    admin = await make_user([UserRoleName.ADMIN])

    await ShipmentService(db).override_fees(
        shipment.id,
        client_flat_rate_fee=Decimal("50"),
        courier_commission=Decimal("12.5"),
        actor_id=admin.id,
    )
    await _deliver(db, shipment)

    assert await _entries(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        ("DEPOSIT", Decimal("500.00")),
        ("PAYMENT", Decimal("-50.00")),
    ]
    assert await _entries(db, CourierTransaction, CourierTransaction.courier_id, courier.id) == [
        ("COMMISSION", Decimal("12.50")),
    ]

    [log] = await AuditService(db).list_logs(entity_type="SHIPMENT", entity_id=shipment.id)
    assert log.action == "OVERRIDE_FEES"
    assert log.user_id == admin.id
    assert log.old_values["client_flat_rate_fee"] == "75.00"
    assert log.new_values == {"client_flat_rate_fee": "50.00", "courier_commission": "12.50"}


async def test_fee_override_validation(db, assigned_shipment):
    shipment, _, _ = await assigned_shipment()
    service = ShipmentService(db)

    with pytest.raises(ValidationFailedError):
        await service.override_fees(shipment.id)
    with pytest.raises(ValidationFailedError):
        await service.override_fees(shipment.id, courier_commission=Decimal("-1"))

    await _deliver(db, shipment)
    with pytest.raises(InvalidStatusError):
        await service.override_fees(shipment.id, client_flat_rate_fee=Decimal("10"))
    assert await AuditService(db).list_logs(entity_type="SHIPMENT") == []
