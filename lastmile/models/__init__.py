from lastmile.models.user import User, UserRoleName
from lastmile.models.courier import CourierStats, CommissionType
from lastmile.models.shipment import (
    Shipment,
    ShipmentCounter,
    ShipmentStatus,
    ShipmentPriority,
    PaymentMethod,
)
from lastmile.models.ledger import (
    ClientTransaction,
    CourierTransaction,
    LedgerEntryType,
    LedgerEntryStatus,
)
from lastmile.models.delivery_verification import DeliveryVerification
from lastmile.models.notifications import (
    Notification,
    InAppNotification,
    NotificationChannel,
    InAppNotificationType,
)
from lastmile.models.partner_tier import TierSetting
from lastmile.models.inventory import InventoryItem
from lastmile.models.audit_log import AuditLog

__all__ = [
    "User",
    "UserRoleName",
    "CourierStats",
    "CommissionType",
    "Shipment",
    "ShipmentCounter",
    "ShipmentStatus",
    "ShipmentPriority",
    "PaymentMethod",
    "ClientTransaction",
    "CourierTransaction",
    "LedgerEntryType",
    "LedgerEntryStatus",
    "DeliveryVerification",
    "Notification",
    "InAppNotification",
    "NotificationChannel",
    "InAppNotificationType",
    "TierSetting",
    "InventoryItem",
    "AuditLog",
]
