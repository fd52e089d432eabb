from decimal import Decimal

import pytest
from sqlalchemy import select

from lastmile.jobs import job_runner
from lastmile.jobs.shipment_jobs import cleanup_expired_evidence, detect_overdue_shipments
from lastmile.models.notifications import InAppNotificationType, Notification, NotificationChannel
from lastmile.models.user import UserRoleName
from lastmile.services.ledger_service import LedgerService
from lastmile.services.notification_service import NotificationService
from lastmile.services.shipment_service import ShipmentService

PHOTO = "data:image/png;base64,iVBORw0KGgo="


# ==================== Overdue detection ====================

async def test_overdue_shipment_flagged_once(db, frozen_clock, make_user, make_client, make_shipment, assigned_shipment):
    admin = await make_user([UserRoleName.ADMIN])
    shipment, _, courier = await assigned_shipment()
    waiting = await make_shipment(await make_client())

    frozen_clock.advance(hours=61)
    summary = await detect_overdue_shipments(db)

    assert summary["flagged"] == 1
    assert summary["shipment_ids"] == [shipment.id]
    assert waiting.id not in summary["shipment_ids"]

    again = await detect_overdue_shipments(db)
    assert again["checked"] == 1
    assert again["flagged"] == 0

    alerts = (await db.execute(
        select(Notification).where(Notification.channel == NotificationChannel.SYSTEM.value)
    )).scalars().all()
    assert len(alerts) == 1

    await db.flush()
    notifier = NotificationService(db)
    for user in (admin, courier):
        notices = await notifier.list_in_app(user.id)
        assert [n.notification_type for n in notices] == [InAppNotificationType.OVERDUE.value]


async def test_recent_shipment_is_not_overdue(db, frozen_clock, assigned_shipment):
    await assigned_shipment()

    frozen_clock.advance(hours=59)
    summary = await detect_overdue_shipments(db)

    assert summary == {"checked": 0, "flagged": 0, "shipment_ids": []}


# ==================== Evidence cleanup ====================

async def test_cleanup_removes_expired_evidence(db, frozen_clock, bucket, assigned_shipment):
    shipment, _, courier = await assigned_shipment()
    shipment = await ShipmentService(db).advance(
        shipment.id, "DELIVERY_FAILED", {"failure_photo": PHOTO}
    )
    ledger = LedgerService(db)
    request = await ledger.request_payout(courier.id, Decimal("10"))
    payout = await ledger.process_payout(request.id, "Instapay", PHOTO)
    await db.flush()

    photo_path = shipment.failure_photo_path
    evidence_path = payout.transfer_evidence_path
    assert set(bucket.objects) == {photo_path, evidence_path}

    frozen_clock.advance(days=2)
    assert await cleanup_expired_evidence(db) == {
        "payout_evidence_removed": 0,
        "failure_photos_removed": 0,
    }

    frozen_clock.advance(days=1, hours=1)
    summary = await cleanup_expired_evidence(db)

    assert summary == {"payout_evidence_removed": 1, "failure_photos_removed": 1}
    assert bucket.objects == {}
    assert shipment.failure_photo_path is None
    assert payout.transfer_evidence_path is None


async def test_payout_evidence_ages_from_processing(db, frozen_clock, bucket, assigned_shipment):
    _, _, courier = await assigned_shipment()
    ledger = LedgerService(db)
    request = await ledger.request_payout(courier.id, Decimal("10"))
    await db.flush()

    frozen_clock.advance(days=4)
    payout = await ledger.process_payout(request.id, "Instapay", PHOTO)
    await db.flush()

    frozen_clock.advance(days=1)
    summary = await cleanup_expired_evidence(db)

    assert summary["payout_evidence_removed"] == 0
    assert payout.transfer_evidence_path in bucket.objects


async def test_cleanup_clears_reference_to_missing_file(db, frozen_clock, bucket, assigned_shipment):
    shipment, _, _ = await assigned_shipment()
    shipment = await ShipmentService(db).advance(
        shipment.id, "DELIVERY_FAILED", {"failure_photo": PHOTO}
    )
    await db.flush()
    bucket.objects.pop(shipment.failure_photo_path)

    frozen_clock.advance(days=4)
    summary = await cleanup_expired_evidence(db)

    assert summary["failure_photos_removed"] == 1
    assert shipment.failure_photo_path is None


# ==================== Runner ====================

async def test_run_job_reports_success():
    summary = await job_runner.run_job("detect_overdue_shipments")

    assert summary["status"] == "success"
    assert summary["result"] == {"checked": 0, "flagged": 0, "shipment_ids": []}
    assert summary["error"] is None


async def test_run_job_reports_failure(monkeypatch):
    async def broken(session):
        raise RuntimeError("boom")

    monkeypatch.setitem(job_runner._jobs, "broken", broken)
    summary = await job_runner.run_job("broken")

    assert summary["status"] == "failed"
    assert summary["error"] == "boom"


async def test_run_unknown_job():
    with pytest.raises(ValueError):
        await job_runner.run_job("does_not_exist")
