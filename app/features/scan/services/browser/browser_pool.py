"""
Bounded pool of Chrome drivers shared by the scan threads of one worker process.

At most ``size`` drivers exist at once. Callers that find every slot checked
out wait in FIFO order. A slot is reset when it is released; when the reset
fails, or the slot was marked broken, its driver is quit and a fresh one is
launched the next time the slot is handed out.
"""
import logging
import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional
from urllib.parse import urlparse

from app.platform.config import settings
from app.features.scan.services.browser.navigation import build_driver

logger = logging.getLogger(__name__)

DriverFactory = Callable[[], object]


class PoolExhaustedError(Exception):
    """No slot became free within the acquire timeout."""


class PoolClosedError(Exception):
    """The pool has been shut down."""


@dataclass
class PoolStats:
    size: int
    in_use: int
    idle: int
    peak_in_use: int


class PoolSlot:
    """A checked-out browser. Owned by a single caller until released."""

    def __init__(self, pool: "BrowserPool", index: int):
        self._pool = pool
        self.index = index
        self.driver = None
        self.pages_loaded = 0
        self.broken = False
        self.checked_out = False

    def mark_broken(self) -> None:
        self.broken = True

    def release(self) -> None:
        self._pool.release(self)


class BrowserPool:

    def __init__(
        self,
        size: int,
        driver_factory: DriverFactory,
        acquire_timeout: float = 60.0,
        max_pages_per_driver: Optional[int] = None,
    ):
        if size < 1:
            raise ValueError("Browser pool size must be at least 1")

        self.size = size
        self.acquire_timeout = acquire_timeout
        self.max_pages_per_driver = max_pages_per_driver
        self._driver_factory = driver_factory

        self._idle: "queue.Queue[PoolSlot]" = queue.Queue()
        self._slots: List[PoolSlot] = []
        for i in range(size):
            slot = PoolSlot(self, i)
            self._slots.append(slot)
            self._idle.put(slot)

        self._lock = threading.Lock()
        self._in_use = 0
        self._peak_in_use = 0
        self._closed = False

    def acquire(self, timeout: Optional[float] = None) -> PoolSlot:
        if self._closed:
            raise PoolClosedError("Browser pool is shut down")

        wait = self.acquire_timeout if timeout is None else timeout
        try:
            slot = self._idle.get(timeout=wait)
        except queue.Empty:
            raise PoolExhaustedError(f"No browser available after {wait}s (pool size {self.size})")

        if self._closed:
            self._idle.put(slot)
            raise PoolClosedError("Browser pool is shut down")

        with self._lock:
            slot.checked_out = True
            self._in_use += 1
            self._peak_in_use = max(self._peak_in_use, self._in_use)

        if slot.driver is None:
            try:
                slot.driver = self._driver_factory()
                slot.pages_loaded = 0
                slot.broken = False
                logger.info(f"Launched browser for pool slot {slot.index}")
            except Exception:
                with self._lock:
                    slot.checked_out = False
                self._return(slot)
                raise

        return slot

    def release(self, slot: PoolSlot) -> None:
        with self._lock:
            if not slot.checked_out:
                logger.warning(f"Pool slot {slot.index} released twice; ignoring")
                return
            slot.checked_out = False

        if self._closed:
            self._discard_driver(slot)
        elif slot.broken or not self._reset(slot):
            logger.warning(f"Replacing browser in pool slot {slot.index}")
            self._discard_driver(slot)
        elif self.max_pages_per_driver and slot.pages_loaded >= self.max_pages_per_driver:
            logger.info(f"Recycling browser in pool slot {slot.index} after {slot.pages_loaded} pages")
            self._discard_driver(slot)

        self._return(slot)

    @contextmanager
    def checkout(self, timeout: Optional[float] = None) -> Iterator[PoolSlot]:
        slot = self.acquire(timeout)
        try:
            yield slot
        finally:
            self.release(slot)

    def stats(self) -> PoolStats:
        with self._lock:
            return PoolStats(
                size=self.size,
                in_use=self._in_use,
                idle=self.size - self._in_use,
                peak_in_use=self._peak_in_use,
            )

    def shutdown(self) -> None:
        """Quit idle drivers now; checked-out drivers are quit when released."""
        self._closed = True
        for slot in self._slots:
            if not slot.checked_out:
                self._discard_driver(slot)
        logger.info("Browser pool shut down")

    @property
    def closed(self) -> bool:
        return self._closed

    def _return(self, slot: PoolSlot) -> None:
        with self._lock:
            self._in_use -= 1
        self._idle.put(slot)

    def _reset(self, slot: PoolSlot) -> bool:
        driver = slot.driver
        if driver is None:
            return True
        try:
            origin = self._origin_of(driver.current_url)
            if origin:
                driver.execute_cdp_cmd(
                    "Storage.clearDataForOrigin",
                    {"origin": origin, "storageTypes": "all"},
                )
            driver.execute_cdp_cmd("Network.clearBrowserCookies", {})
            driver.delete_all_cookies()
            driver.get("about:blank")
            driver.execute_cdp_cmd("Page.resetNavigationHistory", {})
            return True
        except Exception as e:
            logger.warning(f"Reset of pool slot {slot.index} failed: {e}")
            return False

    @staticmethod
    def _origin_of(url: str) -> Optional[str]:
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return None
        return f"{parsed.scheme}://{parsed.netloc}"

    @staticmethod
    def _discard_driver(slot: PoolSlot) -> None:
        driver, slot.driver = slot.driver, None
        slot.pages_loaded = 0
        slot.broken = False
        if driver is None:
            return
        try:
            driver.quit()
        except Exception as e:
            logger.warning(f"Error quitting browser in pool slot {slot.index}: {e}")


_pool: Optional[BrowserPool] = None
_pool_lock = threading.Lock()


def get_browser_pool() -> BrowserPool:
    """Process-wide pool, created on first use."""
    global _pool
    with _pool_lock:
        if _pool is None or _pool.closed:
            _pool = BrowserPool(
                size=settings.BROWSER_POOL_SIZE,
                driver_factory=build_driver,
                acquire_timeout=settings.BROWSER_ACQUIRE_TIMEOUT,
                max_pages_per_driver=settings.BROWSER_MAX_PAGES_PER_DRIVER,
            )
        return _pool


def shutdown_browser_pool() -> None:
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.shutdown()
            _pool = None
