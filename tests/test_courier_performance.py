from decimal import Decimal

import pytest

from lastmile.core.exceptions import CourierRestrictedError, NotFoundError, ValidationFailedError
from lastmile.models.courier import CommissionType, CourierStats
from lastmile.services.courier_performance_service import CourierPerformanceService, compute_rating
from lastmile.services.delivery_verification_service import DeliveryVerificationService
from lastmile.services.shipment_service import ShipmentService


async def _fail(db, assigned_shipment, courier):
    shipment, _, _ = await assigned_shipment(courier=courier)
    await ShipmentService(db).advance(shipment.id, "DELIVERY_FAILED")
    return shipment


async def test_three_failures_restrict_courier(db, make_courier, assigned_shipment):
    courier = await make_courier()

    await _fail(db, assigned_shipment, courier)
    await _fail(db, assigned_shipment, courier)
    stats = await db.get(CourierStats, courier.id)
    assert stats.consecutive_failures == 2
    assert not stats.is_restricted

    await _fail(db, assigned_shipment, courier)

    assert stats.consecutive_failures == 3
    assert stats.is_restricted
    assert "3 consecutive failed deliveries" in stats.restriction_reason


async def test_delivery_resets_counter_but_keeps_restriction(db, make_courier, assigned_shipment):
    courier = await make_courier()
    shipment, _, _ = await assigned_shipment(courier=courier)
    for _ in range(3):
        await _fail(db, assigned_shipment, courier)

    service = DeliveryVerificationService(db)
    verification, _ = await service.issue_code(shipment.id)
    await service.verify(shipment.id, verification.code)

    stats = await db.get(CourierStats, courier.id)
    assert stats.consecutive_failures == 0
    assert stats.is_restricted


async def test_admin_can_clear_restriction(db, make_courier, assigned_shipment):
    courier = await make_courier()
    for _ in range(3):
        await _fail(db, assigned_shipment, courier)
    with pytest.raises(CourierRestrictedError):
        await assigned_shipment(courier=courier)

    stats = await CourierPerformanceService(db).update_settings(courier.id, clear_restriction=True)

    assert not stats.is_restricted
    assert stats.restriction_reason is None
    assert stats.consecutive_failures == 0
    shipment, _, _ = await assigned_shipment(courier=courier)
    assert shipment.courier_id == courier.id


async def test_update_settings(db, make_courier):
    courier = await make_courier()
    service = CourierPerformanceService(db)

    stats = await service.update_settings(
        courier.id,
        commission_type=CommissionType.PERCENTAGE,
        commission_value=Decimal("12.5"),
        referral_commission=Decimal("4"),
        zones=["Maadi", "Zamalek"],
    )

    assert stats.commission_type == CommissionType.PERCENTAGE.value
    assert stats.commission_value == Decimal("12.5")
    assert courier.referral_commission == Decimal("4")
    assert courier.zones == ["Maadi", "Zamalek"]

    with pytest.raises(ValidationFailedError):
        await service.update_settings(courier.id, commission_value=Decimal("-1"))


async def test_update_settings_rejects_non_courier(db, make_client):
    client = await make_client()
    with pytest.raises(NotFoundError):
        await CourierPerformanceService(db).update_settings(client.id, clear_restriction=True)


async def test_list_performance_includes_workload(db, make_courier, assigned_shipment):
    courier = await make_courier(zones=["Z"])
    idle = await make_courier(zones=["Z"])
    await assigned_shipment(courier=courier)

    rows = {r["courier_id"]: r for r in await CourierPerformanceService(db).list_performance()}

    assert rows[courier.id]["active_shipments"] == 1
    assert rows[idle.id]["active_shipments"] == 0
    assert rows[idle.id]["performance_rating"] == 5.0


@pytest.mark.parametrize(
    "completed, failed, streak, expected",
    [
        (0, 0, 0, 5.0),
        (10, 0, 0, 5.0),
        (5, 5, 0, 2.5),
        (5, 5, 2, 2.0),
        (0, 3, 3, 1.0),
        (9, 1, 0, 4.5),
    ],
)
def test_compute_rating(completed, failed, streak, expected):
    assert compute_rating(completed, failed, streak) == expected
