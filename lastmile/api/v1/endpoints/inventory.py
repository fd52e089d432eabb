"""API endpoints for packaging inventory."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from lastmile.api.deps import DB, CurrentUser, require_permissions
from lastmile.core.permissions import Permission
from lastmile.schemas.inventory import (
    InventoryItemCreate,
    InventoryItemUpdate,
    InventoryItemResponse,
)
from lastmile.services.inventory_service import InventoryService

router = APIRouter(dependencies=[Depends(require_permissions(Permission.MANAGE_INVENTORY))])


@router.get("", response_model=List[InventoryItemResponse])
async def list_items(db: DB):
    """All packaging items with their stock level."""
    return await InventoryService(db).list_items()


@router.post("", response_model=InventoryItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(item_in: InventoryItemCreate, current_user: CurrentUser, db: DB):
    return await InventoryService(db).create_item(item_in.model_dump(), actor_id=current_user.id)


@router.put("/{item_id}", response_model=InventoryItemResponse)
async def update_item(item_id: UUID, data: InventoryItemUpdate, current_user: CurrentUser, db: DB):
    """Restock or edit an item. Omitted fields are left alone."""
    item = await InventoryService(db).update_item(
        item_id, data.model_dump(exclude_unset=True), actor_id=current_user.id
    )
    await db.flush()
    return item


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(item_id: UUID, current_user: CurrentUser, db: DB):
    await InventoryService(db).delete_item(item_id, actor_id=current_user.id)
