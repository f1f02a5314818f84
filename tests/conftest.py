"""
Pytest fixtures and configuration for the listing worker test suite.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ.setdefault("LOG_DIR", "/tmp/listing_worker_test_logs")


TEST_ENCRYPTION_KEY = "test-encryption-key-for-testing-only"


# === Fake Playwright ===

class FakeLocator:
    """Locator whose match count comes from the owning page."""

    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def count(self) -> int:
        return self.page.selector_counts.get(self.selector, 0)

    async def inner_text(self) -> str:
        return self.page.texts.get(self.selector, "")

    async def wait_for(self, state: str = "visible", timeout: Optional[float] = None):
        await self.page.wait_for_selector(self.selector, state=state, timeout=timeout)

    async def is_disabled(self) -> bool:
        return self.selector in self.page.disabled

    async def scroll_into_view_if_needed(self):
        return None

    async def fill(self, value: str):
        self.page.filled[self.selector] = value

    async def select_option(self, label: str = None, **kwargs):
        self.page.filled[self.selector] = label

    async def click(self, **kwargs):
        self.page.clicked.append(self.selector)
        if self.selector in self.page.navigations:
            self.page.url = self.page.navigations[self.selector]
        if self.selector in self.page.hide_on_click:
            self.page.selector_counts[self.selector] = 0

    async def set_input_files(self, files):
        self.page.uploaded.append(files)


class FakePage:
    def __init__(self, redirects: Optional[Dict[str, str]] = None):
        self.url = "about:blank"
        self.redirects = redirects or {}
        self.selector_counts: Dict[str, int] = {}
        self.texts: Dict[str, str] = {}
        self.links: Dict[str, List[str]] = {}
        self.disabled: set = set()
        # selector -> url the page lands on when it is clicked
        self.navigations: Dict[str, str] = {}
        self.hide_on_click: set = set()
        self.filled: Dict[str, str] = {}
        self.clicked: List[str] = []
        self.uploaded: List[Any] = []
        self.visited: List[str] = []
        self.default_timeout = None
        self.default_navigation_timeout = None
        self.close_calls = 0

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_navigation_timeout = timeout

    async def goto(self, url: str, wait_until: str = "load", **kwargs):
        self.visited.append(url)
        self.url = self.redirects.get(url, url)

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: Optional[float] = None):
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        present = self.selector_counts.get(selector, 0) > 0
        if present != (state in ("attached", "visible")):
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector} to be {state}")

    async def wait_for_url(self, url, timeout: Optional[float] = None, **kwargs):
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        matched = url.search(self.url) if isinstance(url, re.Pattern) else url == self.url
        if not matched:
            raise PlaywrightTimeoutError(f"Timeout waiting for navigation from {self.url}")

    async def set_input_files(self, selector: str, files):
        self.uploaded.append(files)

    async def eval_on_selector_all(self, selector: str, script: str):
        return list(self.links.get(selector, []))

    async def screenshot(self, path: str, full_page: bool = False):
        Path(path).write_bytes(b"png")

    async def content(self) -> str:
        return "<html></html>"

    async def wait_for_timeout(self, ms):
        return None

    async def close(self):
        self.close_calls += 1


class FakeContext:
    def __init__(self, browser: "FakeBrowser", options: Dict[str, Any]):
        self.browser = browser
        self.options = options
        self.init_scripts: List[str] = []
        self.cookies: List[Dict[str, Any]] = []
        self.pages: List[FakePage] = []
        self.close_calls = 0

    async def add_init_script(self, script: str):
        self.init_scripts.append(script)

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def new_page(self) -> FakePage:
        page = FakePage(redirects=self.browser.redirects)
        self.pages.append(page)
        return page

    async def close(self):
        self.close_calls += 1
        if self.browser.fail_context_close:
            raise RuntimeError("context already closed")


class FakeBrowser:
    def __init__(self):
        self.connected = True
        self.contexts: List[FakeContext] = []
        self.redirects: Dict[str, str] = {}
        self.fail_context_close = False
        self.close_calls = 0

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, **options) -> FakeContext:
        context = FakeContext(self, options)
        self.contexts.append(context)
        return context

    async def close(self):
        self.close_calls += 1
        self.connected = False


class FakeChromium:
    def __init__(self, playwright: "FakePlaywright"):
        self.playwright = playwright
        self.launches: List[Dict[str, Any]] = []

    async def launch(self, **options) -> FakeBrowser:
        self.launches.append(options)
        if self.playwright.launch_error:
            raise self.playwright.launch_error
        browser = FakeBrowser()
        self.playwright.browsers.append(browser)
        return browser


class FakePlaywright:
    def __init__(self):
        self.chromium = FakeChromium(self)
        self.browsers: List[FakeBrowser] = []
        self.launch_error: Optional[Exception] = None
        self.start_calls = 0
        self.stop_calls = 0

    async def start(self):
        self.start_calls += 1
        return self

    async def stop(self):
        self.stop_calls += 1


# === Fixtures ===

@pytest.fixture
def encryption_key():
    return TEST_ENCRYPTION_KEY


@pytest_asyncio.fixture
async def db_path(tmp_path):
    """Fresh SQLite job store per test."""
    from api.database import init_database

    path = tmp_path / "listing_worker.db"
    await init_database(path)
    return path


@pytest.fixture
def fake_playwright():
    return FakePlaywright()


@pytest.fixture
def playwright_factory(fake_playwright):
    return lambda: fake_playwright


@pytest.fixture
def fake_browser():
    return FakeBrowser()


@pytest.fixture
def fake_page():
    return FakePage()


@pytest.fixture
def image_files(tmp_path):
    """Two local image files."""
    paths = []
    for i in range(2):
        path = tmp_path / f"photo_{i}.jpg"
        path.write_bytes(b"\xff\xd8\xff\xe0" + bytes([i]))
        paths.append(str(path))
    return paths


@pytest.fixture
def sample_payload(image_files):
    """Listing payload that satisfies every platform's required fields."""
    return {
        "title": "Vintage Levi's 501 Jeans",
        "description": "Classic straight leg jeans in great condition, size 32x32.",
        "price": "45",
        "category": "Men > Jeans",
        "condition": "Good",
        "brand": "Levi's",
        "size": "32",
        "tags": "denim, vintage",
        "shipping": {"paidBy": "seller", "method": "prepaid"},
        "photos": [{"preview": p} for p in image_files],
    }


@pytest.fixture
def sample_session():
    return {
        "cookies": [
            {"name": "session_id", "value": "abc", "domain": ".mercari.com", "sameSite": "lax"},
            {"name": "__Host-token", "value": "xyz", "url": "https://www.mercari.com/", "secure": True},
        ],
        "userAgent": "Mozilla/5.0 (TestAgent)",
        "capturedAt": "2024-01-01T00:00:00",
    }


@pytest.fixture
def worker_config(db_path, tmp_path):
    from api.config import WorkerConfig

    return WorkerConfig(
        POLL_INTERVAL_MS=10,
        MAX_CONCURRENT_JOBS=1,
        WORKER_ID="worker_test",
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        DATABASE_PATH=str(db_path),
        CAPTURE_ARTIFACTS=False,
        ARTIFACTS_DIR=str(tmp_path / "artifacts"),
        LISTING_URL_TIMEOUT_SECONDS=0.2,
        IMAGE_BASE_URL=None,
    )


def build_scripted_processors() -> Dict[str, type]:
    """
    Processors with the real lifecycle but scripted site hooks.

    Uploads and form values are recorded on the fake page, and a submit
    navigates the page to ``SUBMITTED_URL``.
    """
    from adapters.base import PlatformProcessor
    from core.models import PlatformType

    class ScriptedProcessor(PlatformProcessor):
        LISTING_URL_POLL_INTERVAL = 0.01
        SUBMITTED_URL = ""

        async def _upload_images(self, image_paths):
            self.page.uploaded.append(list(image_paths))

        async def _fill_form(self, listing):
            self.page.filled["title"] = listing.title
            self.page.filled["price"] = listing.formatted_price(0)

        async def _submit(self):
            self.page.url = self.SUBMITTED_URL

    class ScriptedMercari(ScriptedProcessor):
        platform = PlatformType.MERCARI
        display_name = "Mercari"
        START_URL = "https://mercari.example/sell"
        SITE_ORIGIN = "https://mercari.example"
        LISTING_URL_PATTERN = re.compile(r"mercari\.example/m\d+")
        LISTING_LINK_SELECTOR = "a.item"
        SUBMITTED_URL = "https://mercari.example/m123"

    class ScriptedFacebook(ScriptedProcessor):
        platform = PlatformType.FACEBOOK
        display_name = "Facebook"
        START_URL = "https://facebook.example/marketplace/create"
        SITE_ORIGIN = "https://facebook.example"
        LISTING_URL_PATTERN = re.compile(r"facebook\.example/marketplace/item/\d+")
        LISTING_LINK_SELECTOR = "a.item"
        SUBMITTED_URL = "https://facebook.example/marketplace/item/987"

    return {"mercari": ScriptedMercari, "facebook": ScriptedFacebook}


@pytest.fixture
def scripted_processors():
    return build_scripted_processors()


def make_job(payload: Dict[str, Any], platforms: Optional[List[str]] = None, job_id: str = "job_test"):
    from core.models import Job, JobStatus

    return Job(
        id=job_id,
        user_id="user_1",
        platforms=platforms if platforms is not None else ["mercari"],
        payload=payload,
        status=JobStatus.RUNNING,
    )


@pytest.fixture
def job_factory():
    return make_job


# === Markers ===

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "store: Job store and queue tests")
    config.addinivalue_line("markers", "browser: Browser engine and processor tests")
    config.addinivalue_line("markers", "orchestration: Job processor and worker loop tests")
