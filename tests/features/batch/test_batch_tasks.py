"""
Tests for the batch Celery tasks, run eagerly.
"""
from datetime import datetime, timedelta

from app.features.batch.models.batch_scan import BatchScan, BatchStatus
from app.features.batch.services.batch_service import enqueue_batch
from app.features.batch.workers.tasks import check_stale_batches, notify_batch_complete


def test_check_stale_batches(db):
    batch = BatchScan(
        homepage_url="https://www.acme-store.com/",
        conformance_level="AA",
        status=BatchStatus.running,
        total_urls=1,
        created_at=datetime.utcnow() - timedelta(days=3),
    )
    db.add(batch)
    db.commit()
    batch_id = batch.id

    result = check_stale_batches.apply().get()

    assert result == {"marked": 1}
    db.expire_all()
    assert db.get(BatchScan, batch_id).status == BatchStatus.stale


def test_notify_batch_complete(db):
    batch_id = enqueue_batch(db, ["https://www.acme-store.com/"], email="ops@acme-store.com")

    result = notify_batch_complete.apply(args=[batch_id]).get()

    assert result["sent"] is True
    assert result["status"] == "pending"


def test_notify_unknown_batch(session_factory):
    result = notify_batch_complete.apply(args=["missing"]).get()
    assert result == {"batch_id": "missing", "sent": False}
