"""User management: creation, authentication, client rate settings and administration."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.config import settings
from lastmile.core.exceptions import (
    NotFoundError,
    DuplicateEmailError,
    ValidationFailedError,
)
from lastmile.core.security import get_password_hash, verify_password
from lastmile.models.shipment import Shipment, ACTIVE_STATUSES
from lastmile.models.user import (
    User,
    UserRoleName,
    ROLE_PREFIXES,
    DEFAULT_PRIORITY_MULTIPLIERS,
)
from lastmile.services.audit_service import AuditService
from lastmile.services.courier_performance_service import CourierPerformanceService

logger = logging.getLogger(__name__)

VALID_ROLES = {role.value for role in UserRoleName}

EDITABLE_FIELDS = ("name", "email", "phone", "address", "roles", "zones", "is_active")


def _profile(user: User) -> Dict[str, Any]:
    return {
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "roles": list(user.roles or []),
        "zones": list(user.zones or []),
        "is_active": user.is_active,
    }


class UserService:
    """Creates users and maintains client-side pricing attributes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", {"user_id": str(user_id)})
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def list_users(self, role: Optional[UserRoleName] = None) -> List[User]:
        result = await self.db.execute(select(User).order_by(User.created_at))
        users = list(result.scalars().all())
        if role is not None:
            users = [u for u in users if u.has_role(role)]
        return users

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        user = await self.get_by_email(email)
        if user is None or not user.is_active:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    async def _next_public_id(self, prefix: str) -> str:
        result = await self.db.execute(
            select(func.count(User.id)).where(User.public_id.like(f"{prefix}-%"))
        )
        return f"{prefix}-{(result.scalar() or 0) + 1}"

    async def create_user(self, data: Dict[str, Any]) -> User:
        """
        Create a user.

        Clients get the default flat rate and priority multipliers; couriers
        get an empty zone list and their performance record straight away.
        """
        missing = [f for f in ("name", "email", "password", "roles") if not data.get(f)]
        if missing:
            raise ValidationFailedError("Missing required fields", {"missing": missing})

        roles = list(dict.fromkeys(data["roles"]))
        unknown = [r for r in roles if r not in VALID_ROLES]
        if unknown:
            raise NotFoundError("Role not found", {"roles": unknown})

        email = data["email"].strip().lower()
        if await self.get_by_email(email) is not None:
            raise DuplicateEmailError("A user with this email already exists", {"email": email})

        prefix = ROLE_PREFIXES.get(roles[0], "US")
        user = User(
            name=data["name"],
            email=email,
            password_hash=get_password_hash(data["password"]),
            phone=data.get("phone"),
            address=data.get("address"),
            roles=roles,
            public_id=await self._next_public_id(prefix),
        )

        if UserRoleName.CLIENT.value in roles:
            flat_rate = data.get("flat_rate_fee")
            user.flat_rate_fee = Decimal(str(flat_rate if flat_rate is not None else settings.DEFAULT_CLIENT_FLAT_RATE))
            user.priority_multipliers = data.get("priority_multipliers") or dict(DEFAULT_PRIORITY_MULTIPLIERS)
            user.tax_card_number = data.get("tax_card_number")

        if UserRoleName.COURIER.value in roles:
            user.zones = list(data.get("zones") or [])
            user.referrer_id = data.get("referrer_id")

        if data.get("referral_commission") is not None:
            user.referral_commission = Decimal(str(data["referral_commission"]))

        self.db.add(user)
        await self.db.flush()

        if user.is_courier:
            await CourierPerformanceService(self.db).get_or_create_stats(user.id)

        logger.info(f"Created user {user.public_id} ({', '.join(roles)})")
        return user

    async def _get_client(self, client_id: UUID) -> User:
        client = await self.db.get(User, client_id)
        if client is None or not client.is_client:
            raise NotFoundError("Client not found", {"client_id": str(client_id)})
        return client

    async def set_client_flat_rate(self, client_id: UUID, flat_rate_fee: Decimal) -> User:
        """Change a client's flat rate. Shipments already assigned keep their frozen fee."""
        client = await self._get_client(client_id)
        if flat_rate_fee is None or Decimal(str(flat_rate_fee)) < 0:
            raise ValidationFailedError("Flat rate must be zero or positive")
        client.flat_rate_fee = Decimal(str(flat_rate_fee))
        return client

    async def set_priority_multipliers(self, client_id: UUID, multipliers: Dict[str, float]) -> User:
        client = await self._get_client(client_id)
        bad = {k: v for k, v in multipliers.items() if v is None or float(v) <= 0}
        if bad:
            raise ValidationFailedError("Priority multipliers must be positive", {"invalid": bad})
        client.priority_multipliers = {**DEFAULT_PRIORITY_MULTIPLIERS, **multipliers}
        return client

    async def set_tax_card(self, client_id: UUID, tax_card_number: Optional[str]) -> User:
        client = await self._get_client(client_id)
        client.tax_card_number = tax_card_number
        return client

    # ==================== Administration ====================

    async def update_user(
        self,
        user_id: UUID,
        data: Dict[str, Any],
        actor_id: Optional[UUID] = None,
    ) -> User:
        """
        Partial update of profile fields, roles and courier zones.

        Passwords are not changed here. Giving a user the courier role
        creates their performance record.
        """
        user = await self.get_user(user_id)
        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
        if not changes:
            return user

        before = _profile(user)

        if "email" in changes:
            email = changes["email"].strip().lower()
            existing = await self.get_by_email(email)
            if existing is not None and existing.id != user.id:
                raise DuplicateEmailError("A user with this email already exists", {"email": email})
            user.email = email
        if "roles" in changes:
            roles = list(dict.fromkeys(changes["roles"]))
            if not roles:
                raise ValidationFailedError("A user needs at least one role")
            unknown = [r for r in roles if r not in VALID_ROLES]
            if unknown:
                raise NotFoundError("Role not found", {"roles": unknown})
            user.roles = roles
        for field in ("name", "phone", "address", "is_active"):
            if field in changes:
                setattr(user, field, changes[field])
        if "zones" in changes:
            user.zones = list(changes["zones"])

        await self.db.flush()
        if user.is_courier:
            await CourierPerformanceService(self.db).get_or_create_stats(user.id)

        await AuditService(self.db).log(
            "UPDATE", "USER", user.id, actor_id,
            old_values=before,
            new_values=_profile(user),
            description=f"Updated user {user.public_id}",
        )
        logger.info(f"User {user.public_id} updated: {', '.join(sorted(changes))}")
        return user

    async def deactivate_user(self, user_id: UUID, actor_id: Optional[UUID] = None) -> User:
        """
        Remove a user from service.

        The row stays so shipments and ledger entries keep their owner; the
        user can no longer log in or be assigned work. Couriers still holding
        active shipments must be relieved of them first.
        """
        if actor_id is not None and actor_id == user_id:
            raise ValidationFailedError("You cannot deactivate your own account")

        user = await self.get_user(user_id)
        if user.is_courier:
            active = await self.db.execute(
                select(func.count(Shipment.id)).where(
                    Shipment.courier_id == user.id,
                    Shipment.status.in_([s.value for s in ACTIVE_STATUSES]),
                )
            )
            count = active.scalar() or 0
            if count:
                raise ValidationFailedError(
                    "Courier still has active shipments", {"active_shipments": count}
                )

        user.is_active = False
        await AuditService(self.db).log(
            "DEACTIVATE", "USER", user.id, actor_id,
            old_values={"is_active": True},
            new_values={"is_active": False},
            description=f"Deactivated user {user.public_id}",
        )
        logger.info(f"User {user.public_id} deactivated")
        return user
