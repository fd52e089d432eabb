from fastapi import APIRouter

from lastmile.api.v1.endpoints import (
    # Access Control
    auth,
    users,
    # Shipment lifecycle
    shipments,
    # Money
    ledgers,
    tiers,
    # Notifications
    notifications,
    # Background jobs
    jobs,
    # Administration
    inventory,
    audit_logs,
)


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Access Control ====================
api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"]
)

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"]
)

# ==================== Shipments ====================
api_router.include_router(
    shipments.router,
    prefix="/shipments",
    tags=["Shipments"]
)

# ==================== Ledgers & Payouts ====================
api_router.include_router(
    ledgers.router,
    prefix="/ledgers",
    tags=["Ledgers"]
)

# ==================== Partner Tiers ====================
api_router.include_router(
    tiers.router,
    prefix="/tiers",
    tags=["Partner Tiers"]
)

# ==================== Notifications ====================
api_router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"]
)

# ==================== Jobs ====================
api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["Jobs"]
)

# ==================== Administration ====================
api_router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["Inventory"]
)

api_router.include_router(
    audit_logs.router,
    prefix="/audit-logs",
    tags=["Audit Logs"]
)
