"""
Queue payloads.

Every message put on the scan queue is one of these tagged variants and is
validated when a worker picks it up.
"""
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.features.scan.models.scan_job import ConformanceLevel


class JobPayloadError(Exception):
    """Malformed queue payload. Never retried."""


class ScanPagePayload(BaseModel):
    kind: Literal["scan_page"] = "scan_page"
    scan_id: str
    url: str
    conformance_level: ConformanceLevel = ConformanceLevel.AA
    email: Optional[str] = None


class BatchScanPagePayload(BaseModel):
    kind: Literal["batch_scan_page"] = "batch_scan_page"
    scan_id: str
    batch_id: str
    url: str
    conformance_level: ConformanceLevel = ConformanceLevel.AA


JobPayload = Annotated[
    Union[ScanPagePayload, BatchScanPagePayload],
    Field(discriminator="kind"),
]

_payload_adapter = TypeAdapter(JobPayload)


def parse_job_payload(data: Dict[str, Any]) -> Union[ScanPagePayload, BatchScanPagePayload]:
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise JobPayloadError(f"Invalid job payload: {e.errors(include_url=False)}") from e
