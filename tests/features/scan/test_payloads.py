"""
Tests for the tagged queue payloads.
"""
import pytest

from app.features.scan.models.scan_job import ConformanceLevel
from app.features.scan.schemas.payloads import (
    BatchScanPagePayload,
    JobPayloadError,
    ScanPagePayload,
    parse_job_payload,
)


def test_single_page_payload():
    payload = parse_job_payload({
        "kind": "scan_page",
        "scan_id": "scan-1",
        "url": "https://www.acme-store.com/",
        "email": "ops@acme-store.com",
    })
    assert isinstance(payload, ScanPagePayload)
    assert payload.conformance_level == ConformanceLevel.AA
    assert payload.email == "ops@acme-store.com"


def test_batch_payload():
    payload = parse_job_payload({
        "kind": "batch_scan_page",
        "scan_id": "scan-1",
        "batch_id": "batch-1",
        "url": "https://www.acme-store.com/",
        "conformance_level": "AAA",
    })
    assert isinstance(payload, BatchScanPagePayload)
    assert payload.batch_id == "batch-1"
    assert payload.conformance_level == ConformanceLevel.AAA


def test_payload_survives_json_dump():
    original = BatchScanPagePayload(scan_id="s", batch_id="b", url="https://www.acme-store.com/")
    assert parse_job_payload(original.model_dump(mode="json")) == original


@pytest.mark.parametrize("data", [
    {"scan_id": "s", "url": "https://www.acme-store.com/"},
    {"kind": "crawl_site", "scan_id": "s", "url": "https://www.acme-store.com/"},
    {"kind": "batch_scan_page", "scan_id": "s", "url": "https://www.acme-store.com/"},
    {"kind": "scan_page", "scan_id": "s", "url": "https://www.acme-store.com/", "conformance_level": "B"},
])
def test_malformed_payloads_are_rejected(data):
    with pytest.raises(JobPayloadError):
        parse_job_payload(data)
