"""
Test configuration and fixtures for the AccessScan API.

Every test gets a fresh in-memory SQLite database, a mocked task queue and a
fake Redis client, so nothing here needs a broker, a browser or the network.
"""

import os
import time
import uuid
from typing import Dict, Generator, List
from unittest.mock import MagicMock, patch

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.platform.celery_app import celery_app  # noqa: F401
from app.platform.db import session as db_session
from app.platform.db.models import Base
from app.features.scan.services.cache.status_cache import status_cache

PUBLIC_ADDRESS = "93.184.216.34"


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine, monkeypatch):
    """Session factory patched into get_sync_db / get_db."""
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    monkeypatch.setattr(db_session, "_sync_engine", engine)
    monkeypatch.setattr(db_session, "_sync_session_factory", factory)
    return factory


@pytest.fixture(scope="function")
def db(session_factory) -> Generator:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    client = MagicMock()
    client.get.return_value = None
    monkeypatch.setattr(status_cache, "_client_factory", lambda: client)
    return client


@pytest.fixture(autouse=True)
def public_dns(monkeypatch):
    """Every hostname resolves to a public address unless a test says otherwise."""
    monkeypatch.setattr(
        "app.features.scan.services.security.navigation_validator.resolve_host",
        lambda hostname: [PUBLIC_ADDRESS],
    )


class DispatchRecorder:
    """Stands in for process_scan_page.apply_async."""

    def __init__(self):
        self.calls: List[Dict] = []

    def __call__(self, args=None, kwargs=None, countdown=None, **options):
        task_id = str(uuid.uuid4())
        self.calls.append({"payload": args[0], "countdown": countdown, "task_id": task_id})
        result = MagicMock()
        result.id = task_id
        return result

    @property
    def payloads(self) -> List[Dict]:
        return [c["payload"] for c in self.calls]

    def payload_for(self, scan_id: str) -> Dict:
        return [p for p in self.payloads if p["scan_id"] == scan_id][-1]


@pytest.fixture(autouse=True)
def dispatched() -> Generator[DispatchRecorder, None, None]:
    recorder = DispatchRecorder()
    with patch("app.features.scan.workers.tasks.process_scan_page.apply_async", new=recorder):
        yield recorder


@pytest.fixture(autouse=True)
def notifications() -> Generator[Dict[str, MagicMock], None, None]:
    with patch("app.features.batch.workers.tasks.notify_batch_complete.delay") as batch_delay, \
            patch("app.features.scan.workers.tasks.notify_scan_complete.delay") as scan_delay:
        yield {"batch": batch_delay, "scan": scan_delay}


@pytest.fixture(autouse=True)
def revoked() -> Generator[MagicMock, None, None]:
    with patch.object(celery_app.control, "revoke") as revoke:
        yield revoke


class FakeDriver:
    """Just enough of a Selenium WebDriver for the pool, navigation and scanner."""

    def __init__(self, redirects=None, title="Test page", get_error=None, load_delay=0.0, network_idle=True):
        self.redirects = redirects if redirects is not None else {}
        self.title = title
        self.get_error = get_error
        self.load_delay = load_delay
        self.network_idle = network_idle
        self.current_url = "about:blank"
        self.visited: List[str] = []
        self.cdp_commands: List[str] = []
        self.cookies_cleared = 0
        self.quit_called = False
        self.cdp_error = None

    def set_page_load_timeout(self, timeout):
        self.page_load_timeout = timeout

    def set_script_timeout(self, timeout):
        self.script_timeout = timeout

    def get(self, url):
        if url != "about:blank" and self.get_error is not None:
            raise self.get_error
        if url != "about:blank" and self.load_delay:
            time.sleep(self.load_delay)
        self.visited.append(url)
        self.current_url = self.redirects.get(url, url)

    def execute_script(self, script, *args):
        if "readyState" in script:
            return "complete"
        if "getEntriesByType" in script:
            return self.network_idle
        return True

    def execute_cdp_cmd(self, cmd, params):
        if self.cdp_error is not None:
            raise self.cdp_error
        self.cdp_commands.append(cmd)
        return {}

    def delete_all_cookies(self):
        self.cookies_cleared += 1

    def quit(self):
        self.quit_called = True


class FakeAnalyzer:
    def __init__(self, raw=None, error=None):
        self.raw = raw if raw is not None else sample_axe_results()
        self.error = error
        self.calls: List[str] = []
        self.timeouts: List[float] = []

    def analyze(self, driver, level, timeout=None):
        self.calls.append(driver.current_url)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return self.raw


def sample_axe_results():
    return {
        "violations": [
            {
                "id": "image-alt",
                "impact": "critical",
                "description": "Ensures <img> elements have alternate text",
                "help": "Images must have alternate text",
                "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/image-alt",
                "tags": ["cat.text-alternatives", "wcag2a", "wcag111"],
                "nodes": [
                    {
                        "html": '<img src="/logo.png" onerror="alert(1)">',
                        "target": ["header > img"],
                        "failureSummary": "Fix any of the following: Element does not have an alt attribute",
                    },
                    {
                        "html": '<img src="/hero.png">',
                        "target": ["main img.hero"],
                        "failureSummary": "Fix any of the following: Element does not have an alt attribute",
                    },
                ],
            },
            {
                "id": "color-contrast",
                "impact": "serious",
                "description": "Ensures the contrast between foreground and background colors meets WCAG 2 AA",
                "help": "Elements must have sufficient color contrast",
                "helpUrl": "https://dequeuniversity.com/rules/axe/4.8/color-contrast",
                "tags": ["cat.color", "wcag2aa", "wcag143"],
                "nodes": [
                    {
                        "html": '<a class="muted" href="/about">About</a>',
                        "target": ["nav a.muted"],
                        "failureSummary": "Fix any of the following: insufficient contrast",
                    }
                ],
            },
        ],
        "passes": [{"id": "document-title"}, {"id": "html-has-lang"}, {"id": "bypass"}],
        "inapplicable": [{"id": "video-caption"}],
    }


@pytest.fixture
def axe_results():
    return sample_axe_results()


@pytest.fixture
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer()


@pytest.fixture
def fake_driver_factory():
    """
    Driver factory sharing one redirect table; keeps every driver it built.
    Set ``get_error``, ``fail_launch``, ``load_delay`` or ``network_idle`` on it
    to configure drivers built afterwards.
    """
    redirects: Dict[str, str] = {}
    built: List[FakeDriver] = []

    def factory():
        if factory.fail_launch is not None:
            raise factory.fail_launch
        driver = FakeDriver(
            redirects=redirects,
            get_error=factory.get_error,
            load_delay=factory.load_delay,
            network_idle=factory.network_idle,
        )
        built.append(driver)
        return driver

    factory.redirects = redirects
    factory.built = built
    factory.get_error = None
    factory.fail_launch = None
    factory.load_delay = 0.0
    factory.network_idle = True
    return factory


@pytest.fixture
def pool(fake_driver_factory):
    from app.features.scan.services.browser.browser_pool import BrowserPool

    browser_pool = BrowserPool(size=2, driver_factory=fake_driver_factory, acquire_timeout=5)
    yield browser_pool
    browser_pool.shutdown()


@pytest.fixture
def scanner(pool, analyzer):
    from app.features.scan.services.scanner.page_scanner import PageScanner
    from app.features.scan.services.security.navigation_validator import NavigationValidator

    return PageScanner(pool=pool, analyzer=analyzer, validator=NavigationValidator())


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from app.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app, session_factory) -> Generator[TestClient, None, None]:
    """
    Create a test client for making HTTP requests.
    Routes use the per-test in-memory database through the patched session factory.
    """
    with TestClient(test_app) as test_client:
        yield test_client
