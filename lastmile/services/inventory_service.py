"""
Inventory Service

Packaging stock. Packing a shipment draws down the items named in its
packaging log inside the same transaction; a revert never puts stock back.
"""
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.core.exceptions import NotFoundError, ValidationFailedError
from lastmile.models.inventory import InventoryItem
from lastmile.services.audit_service import AuditService

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "quantity", "unit", "min_stock", "unit_price")


def _snapshot(item: InventoryItem) -> Dict[str, Any]:
    return {
        "name": item.name,
        "quantity": item.quantity,
        "unit": item.unit,
        "min_stock": item.min_stock,
        "unit_price": str(item.unit_price),
    }


def _non_negative_int(value: Any, field: str) -> int:
    # str() first so 2.5 and True are rejected instead of truncated
    try:
        number = int(str(value))
    except ValueError:
        raise ValidationFailedError(f"{field} must be a whole number", {field: str(value)})
    if number < 0:
        raise ValidationFailedError(f"{field} cannot be negative", {field: number})
    return number


class InventoryService:
    """Packaging stock and its consumption by packed shipments."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or AuditService(db)

    async def get_item(self, item_id: Any, lock: bool = False) -> InventoryItem:
        try:
            key = item_id if isinstance(item_id, uuid.UUID) else uuid.UUID(str(item_id))
        except ValueError:
            raise NotFoundError("Inventory item not found", {"item_id": str(item_id)})

        query = select(InventoryItem).where(InventoryItem.id == key)
        if lock:
            query = query.with_for_update()
        item = (await self.db.execute(query)).scalar_one_or_none()
        if item is None:
            raise NotFoundError("Inventory item not found", {"item_id": str(item_id)})
        return item

    async def list_items(self) -> List[InventoryItem]:
        result = await self.db.execute(select(InventoryItem).order_by(InventoryItem.name))
        return list(result.scalars().all())

    async def _ensure_unique_name(self, name: str, exclude: Optional[uuid.UUID] = None) -> None:
        query = select(InventoryItem).where(InventoryItem.name == name)
        existing = (await self.db.execute(query)).scalar_one_or_none()
        if existing is not None and existing.id != exclude:
            raise ValidationFailedError("An inventory item with this name already exists", {"name": name})

    async def create_item(self, data: Dict[str, Any], actor_id: Optional[uuid.UUID] = None) -> InventoryItem:
        missing = [f for f in ("name", "unit") if not data.get(f)]
        if data.get("quantity") is None:
            missing.append("quantity")
        if missing:
            raise ValidationFailedError("Missing required fields", {"missing": missing})

        name = data["name"].strip()
        await self._ensure_unique_name(name)

        item = InventoryItem(
            name=name,
            quantity=_non_negative_int(data["quantity"], "quantity"),
            unit=data["unit"],
            min_stock=_non_negative_int(data.get("min_stock", 10), "min_stock"),
            unit_price=Decimal(str(data.get("unit_price") or 0)),
        )
        self.db.add(item)
        await self.db.flush()

        await self.audit.log(
            "CREATE", "INVENTORY_ITEM", item.id, actor_id,
            new_values=_snapshot(item),
            description=f"Added inventory item {item.name}",
        )
        logger.info(f"Inventory item {item.name} created with {item.quantity} {item.unit}")
        return item

    async def update_item(
        self,
        item_id: Any,
        data: Dict[str, Any],
        actor_id: Optional[uuid.UUID] = None,
    ) -> InventoryItem:
        """Partial update; only fields present in ``data`` change."""
        item = await self.get_item(item_id, lock=True)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
        if not changes:
            return item

        before = _snapshot(item)
        if "name" in changes:
            item.name = changes["name"].strip()
            await self._ensure_unique_name(item.name, exclude=item.id)
        if "quantity" in changes:
            item.quantity = _non_negative_int(changes["quantity"], "quantity")
        if "min_stock" in changes:
            item.min_stock = _non_negative_int(changes["min_stock"], "min_stock")
        if "unit" in changes:
            item.unit = changes["unit"]
        if "unit_price" in changes:
            price = Decimal(str(changes["unit_price"]))
            if price < 0:
                raise ValidationFailedError("Unit price cannot be negative")
            item.unit_price = price

        await self.audit.log(
            "UPDATE", "INVENTORY_ITEM", item.id, actor_id,
            old_values=before,
            new_values=_snapshot(item),
            description=f"Updated inventory item {item.name}",
        )
        return item

    async def delete_item(self, item_id: Any, actor_id: Optional[uuid.UUID] = None) -> None:
        item = await self.get_item(item_id, lock=True)
        await self.audit.log(
            "DELETE", "INVENTORY_ITEM", item.id, actor_id,
            old_values=_snapshot(item),
            description=f"Removed inventory item {item.name}",
        )
        await self.db.delete(item)
        logger.info(f"Inventory item {item.name} deleted")

    async def consume(self, packaging_log: List[Dict[str, Any]]) -> List[InventoryItem]:
        """
        Draw down stock for every packaging log entry that names an item.

        Entries are ``{"inventory_item_id": ..., "quantity_used": n}``; entries
        without an item id are free-text notes and touch no stock. The whole
        log is checked before anything is decremented, so a shortage on one
        item leaves every item untouched.

        Raises:
            NotFoundError: an entry names an unknown item
            ValidationFailedError: bad quantity, or not enough stock
        """
        needed: Dict[uuid.UUID, int] = {}
        items: Dict[uuid.UUID, InventoryItem] = {}
        for entry in packaging_log:
            item_ref = entry.get("inventory_item_id")
            if not item_ref:
                continue
            quantity = _non_negative_int(entry.get("quantity_used", 1), "quantity_used")
            if quantity == 0:
                raise ValidationFailedError("quantity_used must be at least 1", {"inventory_item_id": str(item_ref)})
            item = await self.get_item(item_ref, lock=True)
            items[item.id] = item
            needed[item.id] = needed.get(item.id, 0) + quantity

        short = {
            items[item_id].name: {"available": items[item_id].quantity, "requested": quantity}
            for item_id, quantity in needed.items()
            if items[item_id].quantity < quantity
        }
        if short:
            raise ValidationFailedError("Not enough packaging stock", {"short": short})

        for item_id, quantity in needed.items():
            item = items[item_id]
            item.quantity -= quantity
            if item.is_low_stock:
                logger.warning(f"Inventory item {item.name} is low: {item.quantity} {item.unit} left")

        return list(items.values())
