"""API endpoints for the shipment lifecycle."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query

from lastmile.api.deps import DB, CurrentUser, Permissions, require_permissions, require_any_permission
from lastmile.core.permissions import Permission, PermissionChecker
from lastmile.models.shipment import Shipment
from lastmile.schemas.shipment import (
    ShipmentCreate,
    ShipmentResponse,
    ShipmentListResponse,
    TrackingResponse,
    TrackRequest,
    PackagingUpdate,
    FeeOverride,
    StatusUpdate,
    AssignRequest,
    BulkAssignRequest,
    BulkAssignResponse,
    AutoAssignResponse,
    DeliveryCodeResponse,
    VerifyDeliveryRequest,
)
from lastmile.services.assignment_service import AssignmentService
from lastmile.services.delivery_verification_service import DeliveryVerificationService
from lastmile.services.shipment_service import ShipmentService

router = APIRouter()


def _ensure_can_view(checker: PermissionChecker, shipment: Shipment) -> None:
    if checker.has_permission(Permission.VIEW_ALL_SHIPMENTS):
        return
    user_id = checker.user.id
    if shipment.client_id == user_id and checker.has_permission(Permission.VIEW_OWN_SHIPMENTS):
        return
    if shipment.courier_id == user_id and checker.has_permission(Permission.VIEW_COURIER_TASKS):
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Not allowed to access this shipment",
    )


def _ensure_can_drive(checker: PermissionChecker, shipment: Shipment) -> None:
    """Couriers only move their own shipments; staff can move any."""
    if checker.has_any_permission([Permission.ASSIGN_SHIPMENTS, Permission.VIEW_ALL_SHIPMENTS]):
        return
    if shipment.courier_id != checker.user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Shipment is not assigned to you",
        )


# ==================== Public ====================

@router.post("/track", response_model=TrackingResponse)
async def track_shipment(data: TrackRequest, db: DB):
    """Look up a shipment by tracking code and a matching phone number."""
    return await ShipmentService(db).track(data.tracking_id, data.phone)


# ==================== Shipments ====================

@router.post(
    "",
    response_model=ShipmentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.CREATE_SHIPMENTS))],
)
async def create_shipment(
    shipment_in: ShipmentCreate,
    db: DB,
    permissions: Permissions,
):
    """Create a shipment for the caller, or for another client when allowed."""
    client_id = permissions.user.id
    if shipment_in.client_id and shipment_in.client_id != client_id:
        if not permissions.has_permission(Permission.CREATE_SHIPMENTS_FOR_OTHERS):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required: {Permission.CREATE_SHIPMENTS_FOR_OTHERS.value}",
            )
        client_id = shipment_in.client_id

    data = shipment_in.model_dump(exclude={"client_id"}, mode="json")
    return await ShipmentService(db).create_shipment(client_id, data)


@router.get("", response_model=ShipmentListResponse)
async def list_shipments(
    db: DB,
    permissions: Permissions,
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """
    List shipments visible to the caller.

    Staff see everything, couriers their tasks, clients their own orders.
    """
    service = ShipmentService(db)
    user_id = permissions.user.id

    if permissions.has_permission(Permission.VIEW_ALL_SHIPMENTS):
        scope = {}
    elif permissions.has_permission(Permission.VIEW_COURIER_TASKS):
        scope = {"courier_id": user_id}
    elif permissions.has_permission(Permission.VIEW_OWN_SHIPMENTS):
        scope = {"client_id": user_id}
    else:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to list shipments",
        )

    items = await service.list_shipments(status=status_filter, limit=limit, offset=skip, **scope)
    return ShipmentListResponse(
        items=[ShipmentResponse.model_validate(s) for s in items],
        total=len(items),
    )


@router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(shipment_id: str, db: DB, permissions: Permissions):
    """Get a shipment by tracking code."""
    shipment = await ShipmentService(db).get_shipment(shipment_id)
    _ensure_can_view(permissions, shipment)
    return shipment


# ==================== Transitions ====================

@router.put(
    "/{shipment_id}/packaging",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_any_permission(Permission.ASSIGN_SHIPMENTS, Permission.VIEW_ALL_SHIPMENTS))],
)
async def record_packaging(shipment_id: str, data: PackagingUpdate, db: DB):
    """Record packaging, draw the materials from inventory and move the shipment to await assignment."""
    return await ShipmentService(db).record_packaging(
        shipment_id,
        packaging_log=[entry.model_dump(mode="json", exclude_unset=True) for entry in data.packaging_log],
        notes=data.packaging_notes,
    )


@router.put(
    "/{shipment_id}/status",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_permissions(Permission.UPDATE_SHIPMENT_STATUS))],
)
async def update_status(
    shipment_id: str,
    data: StatusUpdate,
    db: DB,
    permissions: Permissions,
):
    """Advance a shipment. Delivery itself goes through verify-delivery."""
    service = ShipmentService(db)
    _ensure_can_drive(permissions, await service.get_shipment(shipment_id))
    return await service.advance(
        shipment_id,
        data.status,
        data.model_dump(exclude={"status"}, exclude_unset=True),
    )


@router.post(
    "/{shipment_id}/revert",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_permissions(Permission.ASSIGN_SHIPMENTS))],
)
async def revert_status(shipment_id: str, db: DB):
    """Undo the last packaging or assignment step."""
    return await ShipmentService(db).revert(shipment_id)


@router.put(
    "/{shipment_id}/fees",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_permissions(Permission.OVERRIDE_SHIPMENT_FEES))],
)
async def override_fees(shipment_id: str, data: FeeOverride, current_user: CurrentUser, db: DB):
    """Override the frozen client fee or courier commission. Audited."""
    return await ShipmentService(db).override_fees(
        shipment_id,
        client_flat_rate_fee=data.client_flat_rate_fee,
        courier_commission=data.courier_commission,
        actor_id=current_user.id,
    )


# ==================== Assignment ====================

@router.put(
    "/{shipment_id}/assign",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_permissions(Permission.ASSIGN_SHIPMENTS))],
)
async def assign_shipment(shipment_id: str, data: AssignRequest, db: DB):
    """Assign a shipment to a courier."""
    return await AssignmentService(db).assign(shipment_id, data.courier_id)


@router.post(
    "/bulk-assign",
    response_model=BulkAssignResponse,
    dependencies=[Depends(require_permissions(Permission.ASSIGN_SHIPMENTS))],
)
async def bulk_assign(data: BulkAssignRequest, db: DB):
    """Assign many shipments to one courier. Shipments not ready for assignment are skipped."""
    assigned = await AssignmentService(db).bulk_assign(data.shipment_ids, data.courier_id)
    return BulkAssignResponse(assigned=len(assigned), shipment_ids=[s.id for s in assigned])


@router.post(
    "/auto-assign",
    response_model=AutoAssignResponse,
    dependencies=[Depends(require_permissions(Permission.ASSIGN_SHIPMENTS))],
)
async def auto_assign(db: DB):
    """Distribute unassigned shipments across couriers by zone and workload."""
    count = await AssignmentService(db).auto_assign()
    return AutoAssignResponse(assigned=count)


# ==================== Delivery verification ====================

@router.post(
    "/{shipment_id}/send-delivery-code",
    response_model=DeliveryCodeResponse,
    dependencies=[Depends(require_permissions(Permission.UPDATE_SHIPMENT_STATUS))],
)
async def send_delivery_code(shipment_id: str, db: DB, permissions: Permissions):
    """Issue a fresh delivery code and text it to the recipient."""
    _ensure_can_drive(permissions, await ShipmentService(db).get_shipment(shipment_id))
    verification, sent = await DeliveryVerificationService(db).issue_code(shipment_id)
    return DeliveryCodeResponse(
        shipment_id=shipment_id,
        expires_at=verification.expires_at,
        sms_sent=sent,
    )


@router.post(
    "/{shipment_id}/verify-delivery",
    response_model=ShipmentResponse,
    dependencies=[Depends(require_permissions(Permission.UPDATE_SHIPMENT_STATUS))],
)
async def verify_delivery(
    shipment_id: str,
    data: VerifyDeliveryRequest,
    db: DB,
    permissions: Permissions,
):
    """Confirm delivery with the recipient's code and settle the shipment."""
    _ensure_can_drive(permissions, await ShipmentService(db).get_shipment(shipment_id))
    return await DeliveryVerificationService(db).verify(shipment_id, data.code)
