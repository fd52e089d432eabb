import pytest

from lastmile.core.exceptions import NotFoundError, ValidationFailedError
from lastmile.models.inventory import InventoryItem
from lastmile.models.shipment import ShipmentStatus
from lastmile.models.user import UserRoleName
from lastmile.services.audit_service import AuditService
from lastmile.services.inventory_service import InventoryService
from lastmile.services.shipment_service import ShipmentService


async def _item(db, name="Medium box", quantity=20, **data):
    return await InventoryService(db).create_item(
        {"name": name, "quantity": quantity, "unit": "piece", **data}
    )


# ==================== Stock management ====================

async def test_create_update_delete_are_audited(db, make_user):
    admin = await make_user([UserRoleName.ADMIN])
    service = InventoryService(db)

    item = await service.create_item(
        {"name": "Bubble wrap", "quantity": 5, "unit": "roll", "unit_price": "12.50"},
        actor_id=admin.id,
    )
    assert item.is_low_stock

    await service.update_item(item.id, {"quantity": 40, "min_stock": None}, actor_id=admin.id)
    assert item.quantity == 40 and not item.is_low_stock

    await service.delete_item(item.id, actor_id=admin.id)
    await db.flush()
    assert await db.get(InventoryItem, item.id) is None

    logs = await AuditService(db).list_logs(entity_type="inventory_item", entity_id=item.id)
    assert sorted(log.action for log in logs) == ["CREATE", "DELETE", "UPDATE"]
    assert all(log.user_id == admin.id for log in logs)
    update = next(log for log in logs if log.action == "UPDATE")
    assert update.old_values["quantity"] == 5
    assert update.new_values["quantity"] == 40


async def test_item_names_are_unique(db):
    await _item(db, name="Tape")
    other = await _item(db, name="Label")

    with pytest.raises(ValidationFailedError):
        await _item(db, name="Tape")
    with pytest.raises(ValidationFailedError):
        await InventoryService(db).update_item(other.id, {"name": "Tape"})


async def test_stock_cannot_go_negative(db):
    item = await _item(db)

    with pytest.raises(ValidationFailedError):
        await InventoryService(db).update_item(item.id, {"quantity": -1})
    with pytest.raises(ValidationFailedError):
        await _item(db, name="Half box", quantity="2.5")
    assert item.quantity == 20


async def test_unknown_item(db):
    with pytest.raises(NotFoundError):
        await InventoryService(db).get_item("not-a-uuid")


# ==================== Packaging draws stock ====================

async def test_packaging_draws_stock(db, make_client, make_shipment):
    box = await _item(db, quantity=12)
    tape = await _item(db, name="Tape", quantity=3, unit="roll")
    shipment = await make_shipment(await make_client())

    await ShipmentService(db).record_packaging(shipment.id, [
        {"inventory_item_id": str(box.id), "quantity_used": 2},
        {"inventory_item_id": str(tape.id)},
        {"inventory_item_id": str(box.id), "quantity_used": 1},
    ])

    assert shipment.status == ShipmentStatus.PACKAGED_AWAITING_ASSIGNMENT.value
    assert box.quantity == 9
    assert tape.quantity == 2


async def test_shortage_refuses_whole_packaging(db, make_client, make_shipment):
    box = await _item(db, quantity=12)
    tape = await _item(db, name="Tape", quantity=1, unit="roll")
    shipment = await make_shipment(await make_client())

    with pytest.raises(ValidationFailedError) as exc:
        await ShipmentService(db).record_packaging(shipment.id, [
            {"inventory_item_id": str(box.id), "quantity_used": 2},
            {"inventory_item_id": str(tape.id), "quantity_used": 3},
        ])

    assert exc.value.details["short"] == {"Tape": {"available": 1, "requested": 3}}
    assert box.quantity == 12 and tape.quantity == 1
    assert shipment.status == ShipmentStatus.WAITING_FOR_PACKAGING.value
    assert shipment.packaging_log is None


async def test_zero_quantity_is_refused(db, make_client, make_shipment):
    box = await _item(db)
    shipment = await make_shipment(await make_client())

    with pytest.raises(ValidationFailedError):
        await ShipmentService(db).record_packaging(
            shipment.id, [{"inventory_item_id": str(box.id), "quantity_used": 0}]
        )
    assert box.quantity == 20


async def test_note_entries_touch_no_stock(db, make_client, make_shipment):
    box = await _item(db)
    shipment = await make_shipment(await make_client())

    await ShipmentService(db).record_packaging(shipment.id, [{"item": "gift wrap", "qty": 1}])

    assert box.quantity == 20
    assert shipment.packaging_log == [{"item": "gift wrap", "qty": 1}]


async def test_revert_does_not_restore_stock(db, make_client, make_shipment):
    box = await _item(db, quantity=5)
    shipment = await make_shipment(await make_client())
    service = ShipmentService(db)
    await service.record_packaging(shipment.id, [{"inventory_item_id": str(box.id), "quantity_used": 2}])

    await service.revert(shipment.id)

    assert shipment.status == ShipmentStatus.WAITING_FOR_PACKAGING.value
    assert box.quantity == 3
