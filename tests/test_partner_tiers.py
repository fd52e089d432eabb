from decimal import Decimal

import pytest

from lastmile.core.exceptions import NotFoundError, ValidationFailedError
from lastmile.models.notifications import InAppNotificationType
from lastmile.services.notification_service import NotificationService
from lastmile.services.partner_tier_service import PartnerTierService, pick_tier

TIERS = [
    {"tier_name": "Gold", "shipment_threshold": 10, "discount_percentage": Decimal("15")},
    {"tier_name": "Silver", "shipment_threshold": 5, "discount_percentage": Decimal("10")},
    {"tier_name": "Bronze", "shipment_threshold": 1, "discount_percentage": Decimal("2")},
]


async def _ship(make_shipment, client, count):
    for _ in range(count):
        await make_shipment(client)


async def test_default_tiers_are_seeded(db):
    tiers = await PartnerTierService(db).get_settings()

    assert [(t.tier_name, t.shipment_threshold) for t in tiers] == [
        ("Gold", 300),
        ("Silver", 150),
        ("Bronze", 50),
    ]


async def test_update_settings_replaces_table(db):
    service = PartnerTierService(db)
    await service.get_settings()

    tiers = await service.update_settings(TIERS[:2])

    assert [t.tier_name for t in tiers] == ["Gold", "Silver"]
    assert [t.tier_name for t in await service.get_settings()] == ["Gold", "Silver"]


@pytest.mark.parametrize(
    "tiers",
    [
        [{"tier_name": "", "shipment_threshold": 1}],
        [{"tier_name": "Gold"}],
        [{"tier_name": "Gold", "shipment_threshold": -1}],
        [{"tier_name": "Gold", "shipment_threshold": 1}, {"tier_name": "Gold", "shipment_threshold": 2}],
    ],
)
async def test_update_settings_validation(db, tiers):
    with pytest.raises(ValidationFailedError):
        await PartnerTierService(db).update_settings(tiers)


async def test_recompute_picks_highest_tier_met(db, make_client, make_shipment):
    service = PartnerTierService(db)
    await service.update_settings(TIERS)
    busy = await make_client()
    quiet = await make_client()
    await _ship(make_shipment, busy, 12)

    summary = await service.recompute_tiers()

    assert busy.partner_tier == "Gold"
    assert quiet.partner_tier is None
    assert summary["clients_evaluated"] == 2
    assert summary["clients_changed"] == 1


async def test_promotion_sends_in_app_notice(db, make_client, make_shipment):
    service = PartnerTierService(db)
    await service.update_settings(TIERS)
    client = await make_client()
    await _ship(make_shipment, client, 5)

    await service.recompute_tiers()
    await db.flush()

    notices = await NotificationService(db).list_in_app(client.id)
    assert [n.notification_type for n in notices] == [InAppNotificationType.TIER_PROMOTION.value]
    assert "Silver" in notices[0].message


async def test_recompute_leaves_manual_tier_alone(db, make_client, make_shipment):
    service = PartnerTierService(db)
    await service.update_settings(TIERS)
    client = await make_client()
    await _ship(make_shipment, client, 12)
    await service.set_manual_tier(client.id, "Bronze")

    summary = await service.recompute_tiers()

    assert client.partner_tier == "Bronze"
    assert summary["clients_evaluated"] == 0

    await service.clear_manual_tier(client.id)
    await service.recompute_tiers()
    assert client.partner_tier == "Gold"


async def test_set_manual_tier_unknown(db, make_client):
    client = await make_client()
    service = PartnerTierService(db)
    await service.get_settings()

    with pytest.raises(NotFoundError):
        await service.set_manual_tier(client.id, "Platinum")


async def test_set_manual_tier_requires_client(db, make_courier):
    courier = await make_courier()
    with pytest.raises(NotFoundError):
        await PartnerTierService(db).set_manual_tier(courier.id, None)


def test_pick_tier():
    class Tier:
        def __init__(self, name, threshold):
            self.tier_name = name
            self.shipment_threshold = threshold

    tiers = [Tier("Bronze", 1), Tier("Gold", 10), Tier("Silver", 5)]
    assert pick_tier(0, tiers) is None
    assert pick_tier(5, tiers) == "Silver"
    assert pick_tier(9, tiers) == "Silver"
    assert pick_tier(10, tiers) == "Gold"
