"""
Retry policy for failed scan attempts.

``classify_error`` is the one place that decides whether a failure is worth
another attempt and how many attempts that kind of failure gets.
"""
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from app.platform.config import settings
from app.features.scan.services.scanner.errors import ScanError, ScanErrorKind


@dataclass(frozen=True)
class ErrorClassification:
    kind: ScanErrorKind
    retryable: bool
    max_attempts: Optional[int] = None  # None -> use the job's own limit


_POLICY = {
    ScanErrorKind.TIMEOUT: ErrorClassification(ScanErrorKind.TIMEOUT, True),
    ScanErrorKind.NAVIGATION_FAILED: ErrorClassification(ScanErrorKind.NAVIGATION_FAILED, True),
    ScanErrorKind.BLOCKED_REDIRECT: ErrorClassification(ScanErrorKind.BLOCKED_REDIRECT, False),
    ScanErrorKind.BLOCKED_URL: ErrorClassification(ScanErrorKind.BLOCKED_URL, False),
    ScanErrorKind.ANALYSIS_FAILED: ErrorClassification(ScanErrorKind.ANALYSIS_FAILED, True, max_attempts=2),
    ScanErrorKind.VALIDATION_FAILED: ErrorClassification(ScanErrorKind.VALIDATION_FAILED, False),
    ScanErrorKind.INTERNAL: ErrorClassification(ScanErrorKind.INTERNAL, True),
}

USER_MESSAGES = {
    ScanErrorKind.TIMEOUT: "The page took too long to load.",
    ScanErrorKind.NAVIGATION_FAILED: "The page could not be loaded.",
    ScanErrorKind.BLOCKED_REDIRECT: "This destination is not permitted.",
    ScanErrorKind.BLOCKED_URL: "This destination is not permitted.",
    ScanErrorKind.ANALYSIS_FAILED: "The accessibility analysis could not be completed.",
    ScanErrorKind.VALIDATION_FAILED: "The scan request was invalid.",
    ScanErrorKind.INTERNAL: "The scan failed due to an internal error.",
}


def classify_error(exc: BaseException) -> ErrorClassification:
    if isinstance(exc, ScanError):
        return _POLICY[exc.kind]
    if isinstance(exc, (ValidationError, ValueError)):
        return _POLICY[ScanErrorKind.VALIDATION_FAILED]
    return _POLICY[ScanErrorKind.INTERNAL]


def should_retry(classification: ErrorClassification, attempt: int, job_max_attempts: int) -> bool:
    """``attempt`` is the 1-based number of the attempt that just failed."""
    if not classification.retryable:
        return False
    limit = job_max_attempts
    if classification.max_attempts is not None:
        limit = min(limit, classification.max_attempts)
    return attempt < limit


def backoff_delay(attempt: int, base: Optional[float] = None, cap: Optional[float] = None) -> float:
    """Seconds to wait before the attempt after ``attempt``: base * 2^(attempt-1), capped."""
    base = settings.SCAN_RETRY_BASE_DELAY if base is None else base
    cap = settings.SCAN_RETRY_MAX_DELAY if cap is None else cap
    return min(base * (2 ** max(attempt - 1, 0)), cap)


def user_message_for(kind: ScanErrorKind) -> str:
    return USER_MESSAGES.get(kind, USER_MESSAGES[ScanErrorKind.INTERNAL])
