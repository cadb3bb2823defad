import enum
from typing import Optional


class ScanErrorKind(str, enum.Enum):
    """Why a single page scan failed."""
    TIMEOUT = "TIMEOUT"
    NAVIGATION_FAILED = "NAVIGATION_FAILED"
    BLOCKED_REDIRECT = "BLOCKED_REDIRECT"
    BLOCKED_URL = "BLOCKED_URL"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INTERNAL = "INTERNAL"


class ScanError(Exception):
    """
    A classified page-scan failure.

    ``message`` is safe to show to users; ``detail`` may contain hosts and
    addresses and only goes to the logs.
    """

    def __init__(self, kind: ScanErrorKind, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.detail = detail

    def __repr__(self) -> str:
        return f"ScanError({self.kind.value}, {self.message!r})"
