import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select

from lastmile.core.exceptions import CourierRestrictedError, InvalidStatusError, NotFoundError
from lastmile.models.courier import CommissionType, CourierStats
from lastmile.models.notifications import InAppNotification, InAppNotificationType
from lastmile.models.shipment import Shipment, ShipmentStatus
from lastmile.services.assignment_service import AssignmentService
from lastmile.services.courier_performance_service import CourierPerformanceService
from lastmile.services.shipment_service import ShipmentService
from lastmile.services.user_service import UserService


async def test_assign_freezes_commission_and_fee(db, make_client, make_courier, make_shipment):
    client = await make_client(flat_rate_fee=Decimal("75"))
    courier = await make_courier()
    shipment = await make_shipment(client, packaged=True)

    shipment = await AssignmentService(db).assign(shipment.id, courier.id)

    assert shipment.status == ShipmentStatus.ASSIGNED_TO_COURIER.value
    assert shipment.courier_id == courier.id
    assert shipment.courier_commission == Decimal("30.00")
    assert shipment.client_flat_rate_fee == Decimal("75.00")

    # Later rate changes do not touch the frozen values
    await UserService(db).set_client_flat_rate(client.id, Decimal("90"))
    await CourierPerformanceService(db).update_settings(
        courier.id, commission_type=CommissionType.PERCENTAGE, commission_value=Decimal("50")
    )
    assert shipment.client_flat_rate_fee == Decimal("75.00")
    assert shipment.courier_commission == Decimal("30.00")


async def test_assign_uses_percentage_commission(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier = await make_courier()
    await CourierPerformanceService(db).update_settings(
        courier.id, commission_type=CommissionType.PERCENTAGE, commission_value=Decimal("10")
    )
    shipment = await make_shipment(client, packaged=True, price=Decimal("200"))

    shipment = await AssignmentService(db).assign(shipment.id, courier.id)

    assert shipment.courier_commission == Decimal("20.00")


async def test_assign_notifies_courier(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier = await make_courier()
    shipment = await make_shipment(client, packaged=True)

    await AssignmentService(db).assign(shipment.id, courier.id)
    await db.flush()

    notices = (await db.execute(
        select(InAppNotification).where(InAppNotification.user_id == courier.id)
    )).scalars().all()
    assert [n.notification_type for n in notices] == [InAppNotificationType.ASSIGNMENT.value]


async def test_assign_creates_missing_performance_record(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier = await make_courier()
    await db.delete(await db.get(CourierStats, courier.id))
    await db.flush()
    shipment = await make_shipment(client, packaged=True)

    await AssignmentService(db).assign(shipment.id, courier.id)

    stats = await db.get(CourierStats, courier.id)
    assert stats.commission_type == CommissionType.FLAT.value
    assert stats.performance_rating == 5.0
    assert not stats.is_restricted


async def test_assign_unknown_courier(db, make_client, make_shipment):
    client = await make_client()
    shipment = await make_shipment(client, packaged=True)
    with pytest.raises(NotFoundError):
        await AssignmentService(db).assign(shipment.id, uuid.uuid4())


async def test_assign_refuses_delivered_shipment(db, assigned_shipment, make_courier):
    shipment, _, _ = await assigned_shipment()
    shipment.status_history = shipment.status_history + [{"status": "DELIVERED", "timestamp": "2026-10-19T10:00:00+00:00"}]
    shipment.status = ShipmentStatus.DELIVERED.value
    other = await make_courier()

    with pytest.raises(InvalidStatusError):
        await AssignmentService(db).assign(shipment.id, other.id)


async def test_bulk_assign_skips_shipments_not_awaiting(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier = await make_courier()
    ready_a = await make_shipment(client, packaged=True)
    ready_b = await make_shipment(client, packaged=True)
    waiting = await make_shipment(client)

    assigned = await AssignmentService(db).bulk_assign(
        [ready_a.id, waiting.id, "CAI-000000-9999", ready_b.id], courier.id
    )

    assert [s.id for s in assigned] == [ready_a.id, ready_b.id]
    assert waiting.status == ShipmentStatus.WAITING_FOR_PACKAGING.value
    assert waiting.courier_id is None


async def test_restricted_courier_cannot_be_assigned(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier = await make_courier()
    stats = await CourierPerformanceService(db).get_or_create_stats(courier.id)
    stats.is_restricted = True
    single = await make_shipment(client, packaged=True)
    batch = await make_shipment(client, packaged=True)
    service = AssignmentService(db)

    with pytest.raises(CourierRestrictedError):
        await service.assign(single.id, courier.id)
    with pytest.raises(CourierRestrictedError):
        await service.bulk_assign([batch.id], courier.id)

    assert single.courier_id is None
    assert batch.status == ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value


# ==================== Auto-assign ====================

async def _give_workload(db, make_shipment, client, courier, count):
    service = AssignmentService(db)
    for _ in range(count):
        shipment = await make_shipment(client, packaged=True, zone="Z")
        await service.assign(shipment.id, courier.id)


async def test_auto_assign_prefers_least_loaded_courier(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier_a = await make_courier(zones=["Z"])
    courier_b = await make_courier(zones=["Z"])
    await _give_workload(db, make_shipment, client, courier_a, 2)

    first = await make_shipment(client, packaged=True, zone="Z")
    second = await make_shipment(client, packaged=True, zone="Z")
    third = await make_shipment(client, packaged=True, zone="Z")

    assigned = await AssignmentService(db).auto_assign()

    assert assigned == 3
    # B: 0 -> 1 -> 2; the tie at 2 goes to A, which comes first in the pool
    assert first.courier_id == courier_b.id
    assert second.courier_id == courier_b.id
    assert third.courier_id == courier_a.id


async def test_auto_assign_skips_restricted_and_unmatched(db, make_client, make_courier, make_shipment):
    client = await make_client()
    restricted = await make_courier(zones=["Z"])
    stats = await db.get(CourierStats, restricted.id)
    stats.is_restricted = True
    await db.flush()

    in_zone = await make_shipment(client, packaged=True, zone="Z")
    elsewhere = await make_shipment(client, packaged=True, zone="Nowhere")

    assert await AssignmentService(db).auto_assign() == 0
    assert in_zone.courier_id is None
    assert elsewhere.status == ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value

    fresh = await make_courier(zones=["Z"])
    assert await AssignmentService(db).auto_assign() == 1
    assert in_zone.courier_id == fresh.id
    assert elsewhere.courier_id is None


async def test_auto_assign_counts_out_for_delivery_as_workload(db, make_client, make_courier, make_shipment):
    client = await make_client()
    courier_a = await make_courier(zones=["Z"])
    courier_b = await make_courier(zones=["Z"])
    await _give_workload(db, make_shipment, client, courier_a, 1)
    busy = (await db.execute(
        select(Shipment).where(Shipment.courier_id == courier_a.id)
    )).scalar_one()
    await ShipmentService(db).advance(busy.id, "OUT_FOR_DELIVERY")

    shipment = await make_shipment(client, packaged=True, zone="Z")
    await AssignmentService(db).auto_assign()

    assert shipment.courier_id == courier_b.id
