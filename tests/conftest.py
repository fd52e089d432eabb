"""
Shared fixtures.

Every test runs against a fresh in-memory SQLite database with the
scheduler off and a fake notification dispatcher that records what would
have been sent.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

from lastmile.core import clock
from lastmile.core.storage import StorageClient
from lastmile.database import async_session_factory, engine, init_db, drop_db
from lastmile.models.user import UserRoleName
from lastmile.services.assignment_service import AssignmentService
from lastmile.services.notification_service import NotificationDispatcher, set_dispatcher
from lastmile.services.shipment_service import ShipmentService
from lastmile.services.user_service import UserService


class FakeDispatcher(NotificationDispatcher):
    """Records every dispatch instead of sending it."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[str, str, str]] = []

    async def dispatch(self, channel, recipient, message, subject=None) -> bool:
        self.sent.append((channel, recipient, message))
        return self.succeed

    def messages_to(self, recipient: str) -> List[str]:
        return [m for _, r, m in self.sent if r == recipient]


class FakeBucket:
    """In-memory stand-in for a Supabase Storage bucket."""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    def upload(self, path, file, file_options=None):
        self.objects[path] = (file, (file_options or {}).get("content-type"))
        return {"Key": path}

    def remove(self, paths):
        return [{"name": p} for p in paths if self.objects.pop(p, None) is not None]


class FakeSupabase:
    """Just enough of the Supabase client for ``client.storage.from_(bucket)``."""

    def __init__(self):
        self.bucket = FakeBucket()
        self.storage = self

    def from_(self, name):
        return self.bucket


class FrozenClock:
    """Replacement for ``clock.utcnow`` that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
async def database():
    await init_db()
    yield
    await drop_db()
    await engine.dispose()


@pytest.fixture
async def db():
    async with async_session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def bucket():
    fake = FakeSupabase()
    previous = StorageClient.set_client(fake)
    yield fake.bucket
    StorageClient.set_client(previous)


@pytest.fixture(autouse=True)
def dispatcher():
    fake = FakeDispatcher()
    previous = set_dispatcher(fake)
    yield fake
    set_dispatcher(previous)


@pytest.fixture
def frozen_clock(monkeypatch):
    fake = FrozenClock(datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc))
    monkeypatch.setattr(clock, "utcnow", fake)
    return fake


# ==================== Factories ====================

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def factory(roles, **data):
        counter["n"] += 1
        payload = {
            "name": f"User {counter['n']}",
            "email": f"user{counter['n']}@example.com",
            "password": "secret123",
            "roles": [r.value if isinstance(r, UserRoleName) else r for r in roles],
        }
        payload.update(data)
        return await UserService(db).create_user(payload)

    return factory


@pytest.fixture
def make_client(make_user):
    async def factory(**data):
        data.setdefault("phone", "01000000001")
        return await make_user([UserRoleName.CLIENT], **data)
    return factory


@pytest.fixture
def make_courier(make_user):
    async def factory(zones: Optional[List[str]] = None, **data):
        return await make_user([UserRoleName.COURIER], zones=zones or ["Nasr City"], **data)
    return factory


@pytest.fixture
def make_shipment(db):
    async def factory(
        client,
        zone: str = "Nasr City",
        package_value: Decimal = Decimal("500"),
        payment_method: str = "COD",
        packaged: bool = False,
        **data,
    ):
        payload = {
            "recipient_name": "Mona Hassan",
            "recipient_phone": "01099999999",
            "to_address": {"street": "12 Makram Ebeid", "city": "Cairo", "zone": zone},
            "package_value": package_value,
            "payment_method": payment_method,
        }
        payload.update(data)
        service = ShipmentService(db)
        shipment = await service.create_shipment(client.id, payload)
        if packaged:
            shipment = await service.record_packaging(shipment.id, [{"item": "box", "qty": 1}])
        return shipment
    return factory


@pytest.fixture
def assigned_shipment(db, make_client, make_courier, make_shipment):
    """A COD shipment assigned to a fresh courier. Returns (shipment, client, courier)."""
    async def factory(**data):
        client = data.pop("client", None) or await make_client()
        courier = data.pop("courier", None) or await make_courier()
        shipment = await make_shipment(client, packaged=True, **data)
        shipment = await AssignmentService(db).assign(shipment.id, courier.id)
        return shipment, client, courier
    return factory
