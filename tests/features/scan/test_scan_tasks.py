"""
Tests for the scan Celery tasks, run eagerly with a fake browser.
"""
from datetime import datetime

import pytest

from app.features.scan.models.scan_job import ScanJob, ScanJobStatus
from app.features.scan.services.scan import job_service
from app.features.scan.services.scanner.errors import ScanErrorKind
from app.features.scan.workers import tasks
from app.features.scan.workers.periodic_tasks import (
    clear_failed_scan_attempts,
    purge_expired_scan_attempts,
    requeue_expired_scan_claims,
)

URL = "https://www.acme-store.com/"


@pytest.fixture
def worker_scanner(scanner, monkeypatch):
    monkeypatch.setattr(tasks, "get_page_scanner", lambda: scanner)
    return scanner


def test_process_scan_page_completes_and_notifies(db, dispatched, worker_scanner, notifications):
    scan_id = job_service.enqueue_scan(db, URL, email="ops@acme-store.com")

    result = tasks.process_scan_page.apply(args=[dispatched.payload_for(scan_id)]).get()

    assert result["action"] == "completed"
    assert result["error_kind"] is None
    notifications["scan"].assert_called_once_with(scan_id)
    db.expire_all()
    assert db.get(ScanJob, scan_id).status == ScanJobStatus.completed


def test_process_scan_page_without_email_does_not_notify(db, dispatched, worker_scanner, notifications):
    scan_id = job_service.enqueue_scan(db, URL)

    tasks.process_scan_page.apply(args=[dispatched.payload_for(scan_id)]).get()

    notifications["scan"].assert_not_called()


def test_process_scan_page_rejects_bad_payload(session_factory, worker_scanner):
    result = tasks.process_scan_page.apply(args=[{"kind": "scan_page"}]).get()
    assert result["action"] == "rejected"
    assert result["scan_id"] is None


def test_notify_scan_complete(db):
    scan_id = job_service.enqueue_scan(db, URL, email="ops@acme-store.com")

    result = tasks.notify_scan_complete.apply(args=[scan_id]).get()

    assert result == {"scan_id": scan_id, "sent": True, "status": "pending"}


def test_attempt_maintenance_tasks(db):
    scan_id = job_service.enqueue_scan(db, URL)
    _, attempt = job_service.claim_scan_job(db, scan_id)
    job_service.fail_scan_job(db, scan_id, ScanErrorKind.TIMEOUT, attempt_id=attempt.id)

    assert purge_expired_scan_attempts.apply().get() == {"deleted": 0}
    assert clear_failed_scan_attempts.apply(args=[[scan_id]]).get() == {"deleted": 1}


def test_requeue_expired_scan_claims_task(db, dispatched):
    scan_id = job_service.enqueue_scan(db, URL)
    job_service.claim_scan_job(db, scan_id, "task-1", now=datetime(2026, 3, 1, 12, 0, 0))

    result = requeue_expired_scan_claims.apply().get()

    assert result == {"requeued": 1, "scan_ids": [scan_id]}
    assert dispatched.payloads[-1]["scan_id"] == scan_id
