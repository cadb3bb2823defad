"""
Single-page accessibility scan: validate, navigate, re-validate, analyze, map.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from selenium.common.exceptions import TimeoutException

from app.platform.config import settings
from app.features.scan.models.scan_job import ConformanceLevel
from app.features.scan.services.browser.browser_pool import BrowserPool
from app.features.scan.services.browser.navigation import WaitStrategy, navigate, remaining_time
from app.features.scan.services.scanner.axe_analyzer import Analyzer
from app.features.scan.services.scanner.errors import ScanError, ScanErrorKind
from app.features.scan.services.scanner.result_mapper import IssueSummary, MappedIssue, map_results
from app.features.scan.services.security.navigation_validator import NavigationValidator

logger = logging.getLogger(__name__)

BLOCKED_MESSAGE = "This destination is not permitted."


@dataclass
class ScanOutcome:
    url: str
    final_url: str
    title: Optional[str]
    issues: List[MappedIssue]
    summary: IssueSummary
    passes: int
    inapplicable: int
    duration_ms: int
    scanned_at: datetime = field(default_factory=datetime.utcnow)


class PageScanner:

    def __init__(
        self,
        pool: BrowserPool,
        analyzer: Analyzer,
        validator: Optional[NavigationValidator] = None,
    ):
        self.pool = pool
        self.analyzer = analyzer
        self.validator = validator or NavigationValidator()

    def scan(
        self,
        url: str,
        conformance_level: ConformanceLevel = ConformanceLevel.AA,
        timeout: Optional[float] = None,
        wait_strategy: Optional[WaitStrategy] = None,
    ) -> ScanOutcome:
        """
        Scan one URL and return its mapped results.

        Raises ScanError for every expected failure. The browser slot is
        returned to the pool on every path.
        """
        timeout = timeout or settings.SCAN_TIMEOUT_SECONDS
        wait_strategy = wait_strategy or WaitStrategy(settings.SCAN_WAIT_STRATEGY)
        started = time.monotonic()

        verdict = self.validator.validate_target(url)
        if not verdict.allowed:
            logger.warning(f"Refusing to scan {url}: {verdict.reason} (host={verdict.host}, address={verdict.address})")
            raise ScanError(ScanErrorKind.BLOCKED_URL, BLOCKED_MESSAGE, detail=verdict.reason)

        with self.pool.checkout() as slot:
            # One budget for loading, waiting and analysis
            deadline = time.monotonic() + timeout
            final_url = navigate(slot, url, timeout, wait_strategy)

            verdict = self.validator.validate(url, final_url)
            if not verdict.allowed:
                raise ScanError(
                    ScanErrorKind.BLOCKED_REDIRECT,
                    BLOCKED_MESSAGE,
                    detail=f"{final_url}: {verdict.reason} ({verdict.address})",
                )

            try:
                title = slot.driver.title or None
            except Exception:
                title = None

            try:
                raw = self.analyzer.analyze(slot.driver, conformance_level, timeout=remaining_time(deadline))
            except TimeoutException as e:
                raise ScanError(
                    ScanErrorKind.TIMEOUT,
                    f"Page did not finish within {int(timeout)} seconds",
                    detail=str(e),
                )
            except Exception as e:
                raise ScanError(ScanErrorKind.ANALYSIS_FAILED, "Accessibility analysis failed", detail=str(e))

        mapped = map_results(raw)
        duration_ms = int((time.monotonic() - started) * 1000)

        logger.info(f"Scanned {url} -> {final_url}: {mapped.summary.total} issues in {duration_ms}ms")

        return ScanOutcome(
            url=url,
            final_url=final_url,
            title=title,
            issues=mapped.issues,
            summary=mapped.summary,
            passes=mapped.passes,
            inapplicable=mapped.inapplicable,
            duration_ms=duration_ms,
        )

    def scan_pages(
        self,
        requests: Sequence[Tuple[str, ConformanceLevel]],
        max_workers: Optional[int] = None,
    ) -> List[Union[ScanOutcome, ScanError]]:
        """
        Scan many pages concurrently, bounded by the pool.

        Results come back in input order; a failed page yields its ScanError
        and never stops the others.
        """
        def _scan_one(request):
            url, level = request
            try:
                return self.scan(url, level)
            except ScanError as e:
                return e
            except Exception as e:
                logger.exception(f"Unexpected error scanning {url}")
                return ScanError(ScanErrorKind.INTERNAL, "Scan failed unexpectedly", detail=str(e))

        workers = max_workers or self.pool.size
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(_scan_one, requests))
