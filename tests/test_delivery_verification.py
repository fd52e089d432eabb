from decimal import Decimal

import pytest
from sqlalchemy import select

from lastmile.core.exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    InvalidStatusError,
    MissingContactError,
)
from lastmile.models.courier import CourierStats
from lastmile.models.delivery_verification import DeliveryVerification
from lastmile.models.ledger import ClientTransaction, CourierTransaction, LedgerEntryType
from lastmile.models.notifications import Notification, NotificationChannel
from lastmile.models.shipment import ShipmentStatus
from lastmile.services.courier_performance_service import CourierPerformanceService
from lastmile.services.delivery_verification_service import DeliveryVerificationService
from lastmile.services.shipment_service import ShipmentService


async def _out_for_delivery(db, assigned_shipment, **data):
    shipment, client, courier = await assigned_shipment(**data)
    await ShipmentService(db).advance(shipment.id, "OUT_FOR_DELIVERY")
    return shipment, client, courier


async def _ledger(db, model, owner_column, owner_id):
    await db.flush()
    result = await db.execute(select(model).where(owner_column == owner_id))
    return sorted((e.type, e.amount) for e in result.scalars().all())


# ==================== Issue ====================

async def test_issue_code_texts_recipient(db, assigned_shipment, dispatcher):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)

    verification, sent = await DeliveryVerificationService(db).issue_code(shipment.id)

    assert sent is True
    assert len(verification.code) == 6 and verification.code.isdigit()
    assert dispatcher.messages_to("01099999999") == [
        f"Your delivery code for shipment {shipment.id} is: {verification.code}"
    ]
    logged = (await db.execute(
        select(Notification).where(Notification.channel == NotificationChannel.SMS.value)
    )).scalars().all()
    assert len(logged) == 1 and logged[0].sent


async def test_failed_sms_does_not_fail_issue(db, assigned_shipment, dispatcher):
    dispatcher.succeed = False
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)

    verification, sent = await DeliveryVerificationService(db).issue_code(shipment.id)

    assert sent is False
    assert await db.get(DeliveryVerification, shipment.id) is verification


async def test_issue_code_requires_recipient_phone(db, assigned_shipment):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment, recipient_phone=None)
    with pytest.raises(MissingContactError):
        await DeliveryVerificationService(db).issue_code(shipment.id)


# ==================== Verify ====================

async def test_code_valid_just_before_expiry(db, assigned_shipment, frozen_clock):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    code = verification.code

    frozen_clock.advance(minutes=9, seconds=59)
    shipment = await service.verify(shipment.id, code)

    assert shipment.status == ShipmentStatus.DELIVERED.value
    assert shipment.delivered_at == frozen_clock.now
    await db.flush()
    assert await db.get(DeliveryVerification, shipment.id) is None


async def test_code_expired_just_after_expiry(db, assigned_shipment, frozen_clock):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    code = verification.code

    frozen_clock.advance(minutes=10, seconds=1)
    with pytest.raises(CodeExpiredError):
        await service.verify(shipment.id, code)
    assert shipment.status == ShipmentStatus.OUT_FOR_DELIVERY.value


async def test_reissue_invalidates_previous_code(db, assigned_shipment, monkeypatch):
    from lastmile.core import clock

    codes = iter(["111111", "222222"])
    monkeypatch.setattr(clock, "generate_numeric_code", lambda length=6: next(codes))
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    service = DeliveryVerificationService(db)

    await service.issue_code(shipment.id)
    await service.issue_code(shipment.id)

    with pytest.raises(CodeMismatchError):
        await service.verify(shipment.id, "111111")
    shipment = await service.verify(shipment.id, "222222")
    assert shipment.status == ShipmentStatus.DELIVERED.value


async def test_verify_without_code_is_expired(db, assigned_shipment):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    with pytest.raises(CodeExpiredError):
        await DeliveryVerificationService(db).verify(shipment.id, "123456")


async def test_code_compare_is_exact(db, assigned_shipment, monkeypatch):
    from lastmile.core import clock

    monkeypatch.setattr(clock, "generate_numeric_code", lambda length=6: "012345")
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    service = DeliveryVerificationService(db)
    await service.issue_code(shipment.id)

    for wrong in ("12345", " 012345", "012345 "):
        with pytest.raises(CodeMismatchError):
            await service.verify(shipment.id, wrong)


async def test_code_cannot_be_used_twice(db, assigned_shipment):
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment)
    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    code = verification.code

    await service.verify(shipment.id, code)
    await db.flush()
    with pytest.raises(CodeExpiredError):
        await service.verify(shipment.id, code)


# ==================== Settlement ====================

async def _deliver(db, shipment):
    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    return await service.verify(shipment.id, verification.code)


async def test_cod_settlement(db, assigned_shipment):
    shipment, client, courier = await _out_for_delivery(
        db, assigned_shipment, package_value=Decimal("500")
    )
    assert shipment.client_flat_rate_fee == Decimal("75.00")

    await _deliver(db, shipment)

    assert await _ledger(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        (LedgerEntryType.DEPOSIT.value, Decimal("500.00")),
        (LedgerEntryType.PAYMENT.value, Decimal("-75.00")),
    ]
    assert await _ledger(db, CourierTransaction, CourierTransaction.courier_id, courier.id) == [
        (LedgerEntryType.COMMISSION.value, Decimal("30.00")),
    ]


async def test_bank_transfer_settlement(db, assigned_shipment):
    shipment, client, _ = await _out_for_delivery(
        db, assigned_shipment, payment_method="BANK_TRANSFER", amount_to_collect=Decimal("320")
    )

    await _deliver(db, shipment)

    assert await _ledger(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        (LedgerEntryType.DEPOSIT.value, Decimal("320.00")),
    ]


async def test_wallet_settlement(db, assigned_shipment):
    shipment, client, _ = await _out_for_delivery(
        db, assigned_shipment, payment_method="WALLET", price=Decimal("150")
    )

    await _deliver(db, shipment)

    assert await _ledger(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        (LedgerEntryType.DEPOSIT.value, Decimal("150.00")),
        (LedgerEntryType.PAYMENT.value, Decimal("-75.00")),
    ]


async def test_free_wallet_shipment_writes_no_deposit(db, assigned_shipment):
    shipment, client, _ = await _out_for_delivery(
        db, assigned_shipment, payment_method="WALLET", price=Decimal("0")
    )

    await _deliver(db, shipment)

    assert await _ledger(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        (LedgerEntryType.PAYMENT.value, Decimal("-75.00")),
    ]


async def test_referral_bonus_paid_to_referrer(db, make_courier, assigned_shipment):
    referrer = await make_courier(referral_commission=Decimal("5"))
    courier = await make_courier(referrer_id=referrer.id)
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment, courier=courier)

    await _deliver(db, shipment)

    assert await _ledger(db, CourierTransaction, CourierTransaction.courier_id, referrer.id) == [
        (LedgerEntryType.REFERRAL_BONUS.value, Decimal("5.00")),
    ]


async def test_referral_bonus_paid_without_commission(db, make_courier, assigned_shipment):
    referrer = await make_courier(referral_commission=Decimal("5"))
    courier = await make_courier(referrer_id=referrer.id)
    await CourierPerformanceService(db).update_settings(courier.id, commission_value=Decimal("0"))
    shipment, _, _ = await _out_for_delivery(db, assigned_shipment, courier=courier)
    assert shipment.courier_commission == Decimal("0.00")

    await _deliver(db, shipment)

    assert await _ledger(db, CourierTransaction, CourierTransaction.courier_id, courier.id) == []
    assert await _ledger(db, CourierTransaction, CourierTransaction.courier_id, referrer.id) == [
        (LedgerEntryType.REFERRAL_BONUS.value, Decimal("5.00")),
    ]


async def test_delivered_shipment_cannot_be_failed(db, assigned_shipment):
    shipment, client, courier = await _out_for_delivery(db, assigned_shipment)
    await _deliver(db, shipment)

    with pytest.raises(InvalidStatusError):
        await ShipmentService(db).advance(shipment.id, "DELIVERY_FAILED")

    assert shipment.status == ShipmentStatus.DELIVERED.value
    stats = await db.get(CourierStats, courier.id)
    assert stats.consecutive_failures == 0
    assert await _ledger(db, ClientTransaction, ClientTransaction.user_id, client.id) == [
        (LedgerEntryType.DEPOSIT.value, Decimal("500.00")),
        (LedgerEntryType.PAYMENT.value, Decimal("-75.00")),
    ]


async def test_delivery_resets_failure_streak(db, assigned_shipment):
    shipment, _, courier = await _out_for_delivery(db, assigned_shipment)
    stats = await db.get(CourierStats, courier.id)
    stats.consecutive_failures = 2

    await _deliver(db, shipment)

    assert stats.consecutive_failures == 0
    assert stats.deliveries_completed == 1
