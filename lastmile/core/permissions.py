"""
Role capability sets.

A user's capabilities are the union of the permission tags of every role they
hold. The HTTP layer resolves this once per request; engine services receive
already-authorized calls and never re-check.
"""
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Set

from lastmile.models.user import User, UserRoleName


class Permission(str, Enum):
    """Permission tags."""
    MANAGE_USERS = "manage_users"
    CREATE_SHIPMENTS = "create_shipments"
    CREATE_SHIPMENTS_FOR_OTHERS = "create_shipments_for_others"
    VIEW_OWN_SHIPMENTS = "view_own_shipments"
    VIEW_ALL_SHIPMENTS = "view_all_shipments"
    ASSIGN_SHIPMENTS = "assign_shipments"
    UPDATE_SHIPMENT_STATUS = "update_shipment_status"
    VIEW_COURIER_TASKS = "view_courier_tasks"
    VIEW_OWN_WALLET = "view_own_wallet"
    VIEW_OWN_FINANCIALS = "view_own_financials"
    VIEW_ADMIN_FINANCIALS = "view_admin_financials"
    VIEW_COURIER_PERFORMANCE = "view_courier_performance"
    MANAGE_COURIER_PAYOUTS = "manage_courier_payouts"
    MANAGE_CLIENT_PAYOUTS = "manage_client_payouts"
    VIEW_COURIER_EARNINGS = "view_courier_earnings"
    VIEW_NOTIFICATIONS_LOG = "view_notifications_log"
    MANAGE_PARTNER_TIERS = "manage_partner_tiers"
    MANAGE_INVENTORY = "manage_inventory"
    OVERRIDE_SHIPMENT_FEES = "override_shipment_fees"
    VIEW_AUDIT_LOG = "view_audit_log"


ALL_PERMISSIONS: FrozenSet[str] = frozenset(p.value for p in Permission)

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    UserRoleName.ADMIN.value: ALL_PERMISSIONS,
    UserRoleName.SUPER_USER.value: ALL_PERMISSIONS - {
        Permission.VIEW_ADMIN_FINANCIALS.value,
        Permission.OVERRIDE_SHIPMENT_FEES.value,
    },
    UserRoleName.CLIENT.value: frozenset({
        Permission.CREATE_SHIPMENTS.value,
        Permission.VIEW_OWN_SHIPMENTS.value,
        Permission.VIEW_OWN_WALLET.value,
        Permission.VIEW_OWN_FINANCIALS.value,
    }),
    UserRoleName.COURIER.value: frozenset({
        Permission.VIEW_COURIER_TASKS.value,
        Permission.UPDATE_SHIPMENT_STATUS.value,
        Permission.VIEW_COURIER_EARNINGS.value,
    }),
    UserRoleName.ASSIGNING_USER.value: frozenset({
        Permission.ASSIGN_SHIPMENTS.value,
        Permission.VIEW_ALL_SHIPMENTS.value,
        Permission.MANAGE_INVENTORY.value,
    }),
}


def permissions_for_roles(roles: Iterable[str]) -> Set[str]:
    """Union of the capability sets of the given role names."""
    granted: Set[str] = set()
    for role in roles:
        granted |= ROLE_PERMISSIONS.get(role, frozenset())
    return granted


class PermissionChecker:
    """
    Permission checker utility for RBAC.
    """

    def __init__(self, user: User):
        self.user = user
        self.roles: List[str] = list(user.roles or [])
        self.permissions = permissions_for_roles(self.roles)

    def has_permission(self, permission_code: str) -> bool:
        return permission_code in self.permissions

    def has_any_permission(self, permission_codes: List[str]) -> bool:
        return bool(self.permissions & set(permission_codes))

    def has_role(self, role: UserRoleName) -> bool:
        return role.value in self.roles
