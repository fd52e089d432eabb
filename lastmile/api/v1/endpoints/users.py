"""API endpoints for users, client pricing and courier settings."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status, Query

from lastmile.api.deps import DB, CurrentUser, require_permissions
from lastmile.core.permissions import Permission
from lastmile.models.user import UserRoleName
from lastmile.schemas.user import (
    UserCreate,
    UserUpdate,
    UserResponse,
    FlatRateUpdate,
    PriorityMultipliersUpdate,
    TaxCardUpdate,
    ManualTierUpdate,
    CourierSettingsUpdate,
    CourierStatsResponse,
    CourierPerformanceResponse,
)
from lastmile.services.courier_performance_service import CourierPerformanceService
from lastmile.services.partner_tier_service import PartnerTierService
from lastmile.services.user_service import UserService

router = APIRouter()


# ==================== Users ====================

@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def create_user(user_in: UserCreate, db: DB):
    """Create a user with one or more roles."""
    return await UserService(db).create_user(user_in.model_dump())


@router.get(
    "",
    response_model=List[UserResponse],
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def list_users(db: DB, role: Optional[str] = Query(None)):
    """List users, optionally filtered by role name."""
    role_filter = None
    if role:
        try:
            role_filter = UserRoleName(role)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role: {role}",
            )
    return await UserService(db).list_users(role_filter)


@router.put(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def update_user(user_id: UUID, data: UserUpdate, current_user: CurrentUser, db: DB):
    """Edit profile fields, roles or zones. Passwords are not changed here."""
    user = await UserService(db).update_user(
        user_id, data.model_dump(exclude_unset=True), actor_id=current_user.id
    )
    await db.flush()
    return user


@router.delete(
    "/{user_id}",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def deactivate_user(user_id: UUID, current_user: CurrentUser, db: DB):
    """
    Remove a user from service.

    The account is deactivated rather than erased so its shipments and
    ledger history keep their owner.
    """
    user = await UserService(db).deactivate_user(user_id, actor_id=current_user.id)
    await db.flush()
    return user


# ==================== Couriers ====================

@router.get(
    "/couriers/performance",
    response_model=List[CourierPerformanceResponse],
    dependencies=[Depends(require_permissions(Permission.VIEW_COURIER_PERFORMANCE))],
)
async def courier_performance(db: DB):
    """Commission settings, restriction and workload for every courier."""
    return await CourierPerformanceService(db).list_performance()


@router.put(
    "/couriers/{courier_id}/settings",
    response_model=CourierStatsResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def update_courier_settings(courier_id: UUID, data: CourierSettingsUpdate, db: DB):
    """Change commission, zones or referral rate; optionally lift a restriction."""
    stats = await CourierPerformanceService(db).update_settings(
        courier_id,
        commission_type=data.commission_type,
        commission_value=data.commission_value,
        clear_restriction=data.clear_restriction,
        referral_commission=data.referral_commission,
        zones=data.zones,
    )
    await db.flush()
    return stats


# ==================== Clients ====================

@router.put(
    "/clients/{client_id}/flat-rate",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def set_flat_rate(client_id: UUID, data: FlatRateUpdate, db: DB):
    """Change a client's flat fee. Already-assigned shipments keep their fee."""
    return await UserService(db).set_client_flat_rate(client_id, data.flat_rate_fee)


@router.put(
    "/clients/{client_id}/priority-multipliers",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def set_priority_multipliers(client_id: UUID, data: PriorityMultipliersUpdate, db: DB):
    return await UserService(db).set_priority_multipliers(client_id, data.priority_multipliers)


@router.put(
    "/clients/{client_id}/tax-card",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_USERS))],
)
async def set_tax_card(client_id: UUID, data: TaxCardUpdate, db: DB):
    return await UserService(db).set_tax_card(client_id, data.tax_card_number)


@router.put(
    "/clients/{client_id}/tier",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_PARTNER_TIERS))],
)
async def set_manual_tier(client_id: UUID, data: ManualTierUpdate, db: DB):
    """Pin a client to a tier; automatic recomputation leaves it alone."""
    return await PartnerTierService(db).set_manual_tier(client_id, data.tier_name)


@router.delete(
    "/clients/{client_id}/tier",
    response_model=UserResponse,
    dependencies=[Depends(require_permissions(Permission.MANAGE_PARTNER_TIERS))],
)
async def clear_manual_tier(client_id: UUID, db: DB):
    """Return a client to automatic tiering."""
    return await PartnerTierService(db).clear_manual_tier(client_id)
