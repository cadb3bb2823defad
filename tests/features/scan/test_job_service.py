"""
Tests for the scan job lifecycle: enqueue, claim, terminal transitions and
attempt retention.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.platform.config import settings
from app.features.scan.models.scan_attempt import AttemptOutcome, ScanAttempt
from app.features.scan.models.scan_job import ConformanceLevel, ScanJob, ScanJobStatus
from app.features.scan.services.scan import job_service
from app.features.scan.services.scan.job_service import ScanServiceError
from app.features.scan.services.scanner.errors import ScanErrorKind
from app.features.scan.services.scanner.page_scanner import ScanOutcome
from app.features.scan.services.scanner.result_mapper import map_results

URL = "https://www.acme-store.com/checkout"


def make_outcome(raw) -> ScanOutcome:
    mapped = map_results(raw)
    return ScanOutcome(
        url=URL,
        final_url=URL,
        title="Checkout",
        issues=mapped.issues,
        summary=mapped.summary,
        passes=mapped.passes,
        inapplicable=mapped.inapplicable,
        duration_ms=1200,
    )


def attempts_of(db, scan_id):
    return db.execute(
        select(ScanAttempt).where(ScanAttempt.scan_job_id == scan_id).order_by(ScanAttempt.attempt_number)
    ).scalars().all()


class TestEnqueueScan:

    def test_creates_pending_scan_and_dispatches(self, db, dispatched, fake_redis):
        scan_id = job_service.enqueue_scan(db, "WWW.Acme-Store.com/checkout/", ConformanceLevel.AAA)

        scan = db.get(ScanJob, scan_id)
        assert scan.status == ScanJobStatus.pending
        assert scan.url == URL
        assert scan.attempt_count == 0
        assert scan.max_attempts == settings.SCAN_MAX_ATTEMPTS

        assert len(dispatched.calls) == 1
        payload = dispatched.calls[0]["payload"]
        assert payload == {
            "kind": "scan_page",
            "scan_id": scan_id,
            "url": URL,
            "conformance_level": "AAA",
            "email": None,
        }
        assert scan.celery_task_id == dispatched.calls[0]["task_id"]
        fake_redis.set.assert_called()

    @pytest.mark.parametrize("url", ["", "ftp://files.acme-store.com/", "https://user:pw@acme-store.com/"])
    def test_invalid_url(self, db, dispatched, url):
        with pytest.raises(ScanServiceError) as exc:
            job_service.enqueue_scan(db, url)
        assert exc.value.code == "INVALID_URL"
        assert dispatched.calls == []

    @pytest.mark.parametrize("url", ["http://localhost:8000", "http://169.254.169.254/latest", "http://10.1.1.1"])
    def test_blocked_url_is_rejected_before_persisting(self, db, dispatched, url):
        with pytest.raises(ScanServiceError) as exc:
            job_service.enqueue_scan(db, url)

        assert exc.value.code == "BLOCKED_URL"
        assert exc.value.message == "This destination is not permitted."
        assert db.execute(select(ScanJob)).scalars().all() == []
        assert dispatched.calls == []

    def test_dispatch_failure_fails_the_scan(self, db, dispatched):
        def broken(*args, **kwargs):
            raise ConnectionError("broker unreachable")

        from unittest.mock import patch
        with patch("app.features.scan.workers.tasks.process_scan_page.apply_async", new=broken):
            scan_id = job_service.enqueue_scan(db, URL)

        db.expire_all()
        scan = db.get(ScanJob, scan_id)
        assert scan.status == ScanJobStatus.failed
        assert scan.error_kind == ScanErrorKind.INTERNAL.value


class TestClaim:

    def test_first_claim_wins(self, db):
        scan_id = job_service.enqueue_scan(db, URL)

        claim = job_service.claim_scan_job(db, scan_id, task_id="task-1")
        assert claim is not None
        scan, attempt = claim
        assert scan.status == ScanJobStatus.running
        assert scan.attempt_count == 1
        assert attempt.attempt_number == 1
        assert attempt.outcome == AttemptOutcome.running

        assert job_service.claim_scan_job(db, scan_id, task_id="task-1-redelivered") is None

        db.expire_all()
        assert db.get(ScanJob, scan_id).attempt_count == 1
        assert len(attempts_of(db, scan_id)) == 1

    def test_expired_lease_can_be_reclaimed(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        t0 = datetime(2026, 3, 1, 12, 0, 0)

        assert job_service.claim_scan_job(db, scan_id, "task-1", now=t0) is not None
        assert job_service.claim_scan_job(db, scan_id, "task-2", now=t0 + timedelta(seconds=30)) is None

        later = t0 + timedelta(seconds=settings.SCAN_CLAIM_LEASE_SECONDS + 1)
        scan, attempt = job_service.claim_scan_job(db, scan_id, "task-3", now=later)

        assert scan.attempt_count == 2
        assert attempt.attempt_number == 2
        first, second = attempts_of(db, scan_id)
        assert first.outcome == AttemptOutcome.failed
        assert second.outcome == AttemptOutcome.running

    def test_terminal_scan_is_not_claimable(self, db, axe_results):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)
        job_service.complete_scan_job(db, scan_id, make_outcome(axe_results), attempt_id=attempt.id)

        assert job_service.claim_scan_job(db, scan_id) is None

    def test_unknown_scan(self, db):
        assert job_service.claim_scan_job(db, "no-such-scan") is None


class TestExpiredClaims:

    def test_expired_claim_is_requeued_and_reclaimed(self, db, dispatched):
        scan_id = job_service.enqueue_scan(db, URL)
        fresh_id = job_service.enqueue_scan(db, URL + "/fresh")
        t0 = datetime(2026, 3, 1, 12, 0, 0)
        job_service.claim_scan_job(db, scan_id, "task-1", now=t0)
        job_service.claim_scan_job(db, fresh_id, "task-2", now=t0 + timedelta(seconds=500))

        later = t0 + timedelta(seconds=settings.SCAN_CLAIM_LEASE_SECONDS + 1)
        requeued = job_service.requeue_expired_claims(db, now=later)

        assert requeued == [scan_id]
        assert len(dispatched.calls) == 3
        assert dispatched.calls[-1]["payload"]["scan_id"] == scan_id

        scan, attempt = job_service.claim_scan_job(db, scan_id, dispatched.calls[-1]["task_id"], now=later)
        assert scan.attempt_count == 2
        assert attempt.attempt_number == 2

    def test_nothing_to_requeue_within_lease(self, db, dispatched):
        scan_id = job_service.enqueue_scan(db, URL)
        job_service.claim_scan_job(db, scan_id, "task-1")

        assert job_service.requeue_expired_claims(db) == []
        assert len(dispatched.calls) == 1


class TestTerminalTransitions:

    def test_complete_stores_result_and_issues(self, db, axe_results):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)

        progress = job_service.complete_scan_job(db, scan_id, make_outcome(axe_results), attempt_id=attempt.id)

        assert progress is None  # not part of a batch
        db.expire_all()
        scan = db.get(ScanJob, scan_id)
        assert scan.status == ScanJobStatus.completed
        assert scan.page_title == "Checkout"
        assert scan.duration_ms == 1200
        assert scan.result.total_issues == 2
        assert scan.result.critical_count == 1
        assert scan.result.passed_checks == 3
        rule_ids = sorted(i.rule_id for i in scan.result.issues)
        assert rule_ids == ["color-contrast", "image-alt"]
        image_alt = [i for i in scan.result.issues if i.rule_id == "image-alt"][0]
        assert len(image_alt.nodes) == 2
        assert image_alt.wcag_criteria == ["1.1.1"]
        assert attempts_of(db, scan_id)[0].outcome == AttemptOutcome.succeeded

    def test_complete_without_claim_is_rejected(self, db, axe_results):
        scan_id = job_service.enqueue_scan(db, URL)

        with pytest.raises(ScanServiceError) as exc:
            job_service.complete_scan_job(db, scan_id, make_outcome(axe_results))
        assert exc.value.code == "LOST_CLAIM"

    def test_fail_records_user_message(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)

        job_service.fail_scan_job(
            db, scan_id, ScanErrorKind.BLOCKED_REDIRECT,
            detail="http://169.254.169.254/: resolves to internal address",
            attempt_id=attempt.id,
        )

        db.expire_all()
        scan = db.get(ScanJob, scan_id)
        assert scan.status == ScanJobStatus.failed
        assert scan.error_kind == "BLOCKED_REDIRECT"
        assert scan.error_message == "This destination is not permitted."
        assert "169.254" in attempts_of(db, scan_id)[0].error_message

    def test_fail_is_noop_when_scan_already_terminal(self, db, axe_results):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)
        job_service.complete_scan_job(db, scan_id, make_outcome(axe_results), attempt_id=attempt.id)

        assert job_service.fail_scan_job(db, scan_id, ScanErrorKind.TIMEOUT) is None
        db.expire_all()
        assert db.get(ScanJob, scan_id).status == ScanJobStatus.completed

    def test_schedule_retry_then_reclaim(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)

        status = job_service.schedule_retry(db, scan_id, ScanErrorKind.TIMEOUT, attempt_id=attempt.id)
        assert status == ScanJobStatus.retrying

        scan, second = job_service.claim_scan_job(db, scan_id)
        assert scan.attempt_count == 2
        assert second.attempt_number == 2

    def test_release_claim_does_not_count_attempt(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)

        assert job_service.release_claim(db, scan_id, attempt.id, reason="pool exhausted") is True

        db.expire_all()
        scan = db.get(ScanJob, scan_id)
        assert scan.status == ScanJobStatus.retrying
        assert scan.attempt_count == 0
        assert attempts_of(db, scan_id)[0].outcome == AttemptOutcome.released

    def test_release_after_retry_was_scheduled_is_a_no_op(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)
        job_service.schedule_retry(db, scan_id, ScanErrorKind.TIMEOUT, attempt_id=attempt.id)

        assert job_service.release_claim(db, scan_id, attempt.id, reason="broker down") is False

        db.expire_all()
        assert db.get(ScanJob, scan_id).attempt_count == 1
        assert attempts_of(db, scan_id)[0].outcome == AttemptOutcome.retrying


class TestAttemptRetention:

    def _failed_scan(self, db):
        scan_id = job_service.enqueue_scan(db, URL)
        _, attempt = job_service.claim_scan_job(db, scan_id)
        job_service.fail_scan_job(db, scan_id, ScanErrorKind.TIMEOUT, attempt_id=attempt.id)
        return scan_id

    def _completed_scan(self, db, raw):
        scan_id = job_service.enqueue_scan(db, URL + "/done")
        _, attempt = job_service.claim_scan_job(db, scan_id)
        job_service.complete_scan_job(db, scan_id, make_outcome(raw), attempt_id=attempt.id)
        return scan_id

    def test_purge_keeps_failed_attempts(self, db, axe_results):
        failed_id = self._failed_scan(db)
        completed_id = self._completed_scan(db, axe_results)

        far_future = datetime.utcnow() + timedelta(days=365)
        purged = job_service.purge_expired_attempts(db, now=far_future)

        assert purged == 1
        assert attempts_of(db, completed_id) == []
        assert len(attempts_of(db, failed_id)) == 1

    def test_purge_respects_retention_window(self, db, axe_results):
        completed_id = self._completed_scan(db, axe_results)

        assert job_service.purge_expired_attempts(db) == 0
        assert len(attempts_of(db, completed_id)) == 1

    def test_clear_failed_attempts(self, db, axe_results):
        failed_id = self._failed_scan(db)
        completed_id = self._completed_scan(db, axe_results)

        cleared = job_service.clear_failed_attempts(db, [failed_id, completed_id])

        assert cleared == 1
        assert attempts_of(db, failed_id) == []
        assert len(attempts_of(db, completed_id)) == 1
