"""
Chrome driver construction and page navigation for the scan workers.
"""
import enum
import logging
import time

from selenium import webdriver
from selenium.common.exceptions import (
    InvalidSessionIdException,
    NoSuchWindowException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait

from app.platform.config import settings
from app.features.scan.services.scanner.errors import ScanError, ScanErrorKind

logger = logging.getLogger(__name__)

# Quiet period with no new resource requests before the page counts as idle
NETWORK_IDLE_MS = 500

NETWORK_IDLE_SCRIPT = """
    const entries = performance.getEntriesByType('resource') || [];
    const now = performance.now();
    return entries.every(e => e.responseEnd > 0 && (now - e.responseEnd) > arguments[0]);
"""

DEAD_SESSION_ERRORS = (InvalidSessionIdException, NoSuchWindowException)


class WaitStrategy(str, enum.Enum):
    LOAD = "load"
    DOMCONTENTLOADED = "domcontentloaded"
    NETWORKIDLE = "networkidle"


def build_driver() -> webdriver.Chrome:
    """Headless Chrome with the page-load strategy left to WaitStrategy."""
    chrome_options = Options()
    if settings.BROWSER_HEADLESS:
        chrome_options.add_argument('--headless=new')
    chrome_options.add_argument('--no-sandbox')
    chrome_options.add_argument('--disable-dev-shm-usage')
    chrome_options.add_argument('--disable-gpu')
    chrome_options.add_argument('--disable-extensions')
    chrome_options.add_argument('--disable-background-networking')
    chrome_options.add_argument('--disable-sync')
    chrome_options.add_argument('--no-first-run')
    chrome_options.add_argument('--window-size=1280,1024')
    chrome_options.page_load_strategy = 'eager'

    if settings.CHROMEDRIVER_PATH:
        driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
        driver = webdriver.Chrome(service=driver_service, options=chrome_options)
    else:
        driver = webdriver.Chrome(options=chrome_options)

    return driver


def remaining_time(deadline: float) -> float:
    """Seconds left before ``deadline`` (a time.monotonic() value)."""
    left = deadline - time.monotonic()
    if left <= 0:
        raise TimeoutException("Scan time budget exhausted")
    return left


def _wait_for(driver, strategy: WaitStrategy, deadline: float) -> None:
    ready = WebDriverWait(driver, remaining_time(deadline))
    if strategy == WaitStrategy.DOMCONTENTLOADED:
        ready.until(lambda d: d.execute_script("return document.readyState") in ("interactive", "complete"))
        return

    ready.until(lambda d: d.execute_script("return document.readyState") == "complete")
    if strategy == WaitStrategy.NETWORKIDLE:
        idle = WebDriverWait(driver, remaining_time(deadline))
        idle.until(lambda d: d.execute_script(NETWORK_IDLE_SCRIPT, NETWORK_IDLE_MS) is True)


def navigate(slot, url: str, timeout: float, wait_strategy: WaitStrategy = WaitStrategy.NETWORKIDLE) -> str:
    """
    Load ``url`` in the slot's driver and wait according to ``wait_strategy``.

    ``timeout`` bounds the page load and every wait together. Returns the URL
    the browser ended up on after redirects. Raises ScanError with TIMEOUT or
    NAVIGATION_FAILED; a dead browser session also marks the slot broken so
    the pool replaces the driver.
    """
    driver = slot.driver
    deadline = time.monotonic() + timeout
    try:
        driver.set_page_load_timeout(timeout)
        driver.get(url)
        slot.pages_loaded += 1
        _wait_for(driver, WaitStrategy(wait_strategy), deadline)
        final_url = driver.current_url
    except TimeoutException as e:
        raise ScanError(
            ScanErrorKind.TIMEOUT,
            f"Page did not finish loading within {int(timeout)} seconds",
            detail=str(e),
        )
    except DEAD_SESSION_ERRORS as e:
        slot.mark_broken()
        raise ScanError(ScanErrorKind.NAVIGATION_FAILED, "Browser session was lost", detail=str(e))
    except WebDriverException as e:
        raise ScanError(ScanErrorKind.NAVIGATION_FAILED, "Page could not be loaded", detail=e.msg or str(e))

    if final_url.startswith("chrome-error://"):
        raise ScanError(ScanErrorKind.NAVIGATION_FAILED, "Page could not be loaded", detail=final_url)

    return final_url
