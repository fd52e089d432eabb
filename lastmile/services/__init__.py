# Services module
from lastmile.services.notification_service import NotificationService, NotificationDispatcher
from lastmile.services.ledger_service import LedgerService
from lastmile.services.courier_performance_service import CourierPerformanceService
from lastmile.services.shipment_service import ShipmentService
from lastmile.services.delivery_verification_service import DeliveryVerificationService
from lastmile.services.assignment_service import AssignmentService
from lastmile.services.partner_tier_service import PartnerTierService
from lastmile.services.user_service import UserService
from lastmile.services.audit_service import AuditService
from lastmile.services.inventory_service import InventoryService

__all__ = [
    "NotificationService",
    "NotificationDispatcher",
    "LedgerService",
    "CourierPerformanceService",
    "ShipmentService",
    "DeliveryVerificationService",
    "AssignmentService",
    "PartnerTierService",
    "UserService",
    "AuditService",
    "InventoryService",
]
