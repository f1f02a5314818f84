"""
Base processor interface for marketplace listings.
All platform-specific processors inherit from this.

A processor owns one browser context and page for one job x platform run and
walks through a fixed lifecycle:

    initialize -> upload_images -> fill_form -> submit -> get_listing_url

Each step may run at most once and only in that order. ``cleanup`` may be
called at any point, any number of times, and never raises.
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError

from adapters.validation import ListingPayload, SubmissionValidator, validate_listing
from core.error_handler import (
    EngineUnavailable,
    FormValidationError,
    ImageUploadError,
    ListingUrlNotFound,
    ListingWorkerError,
    ProcessorStateError,
    SessionInvalid,
    VerificationRequired,
)
from core.models import Job, PlatformType, SessionPayload
from core.screenshot_manager import ScreenshotContext, ScreenshotManager

logger = logging.getLogger(__name__)

STEPS = ("initialize", "upload_images", "fill_form", "submit", "get_listing_url")

# Used when a captured session carries no user agent
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
DEFAULT_VIEWPORT = {"width": 1280, "height": 720}

# Hides the most obvious headless automation signals
STEALTH_INIT_SCRIPT = """
(() => {
  try {
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
  } catch (e) {}
})();
"""

_SAME_SITE = {"lax": "Lax", "strict": "Strict", "none": "None", "no_restriction": "None"}


def normalize_cookies(cookies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Convert browser-extension cookie dicts into Playwright cookies.

    Cookies without a name, a value, or a url/domain to scope them are
    dropped. A ``url`` wins over ``domain`` when both are present, which
    keeps host-only and ``__Host-`` cookies valid.
    """
    out = []
    for cookie in cookies if isinstance(cookies, list) else []:
        if not isinstance(cookie, dict) or not cookie.get("name") or cookie.get("value") is None:
            continue

        normalized = {
            "name": str(cookie["name"]),
            "value": str(cookie["value"]),
            "path": cookie.get("path") or "/",
            "httpOnly": bool(cookie.get("httpOnly")),
            "secure": bool(cookie.get("secure")),
        }

        url = cookie.get("url")
        if isinstance(url, str) and url.startswith("http"):
            normalized["url"] = url
            # Playwright rejects url together with path
            normalized.pop("path")
        elif cookie.get("domain"):
            normalized["domain"] = cookie["domain"]
        else:
            continue

        same_site = _SAME_SITE.get(str(cookie.get("sameSite") or "").lower())
        if same_site:
            normalized["sameSite"] = same_site

        expires = cookie.get("expires")
        if not isinstance(expires, (int, float)) or isinstance(expires, bool):
            expires = cookie.get("expirationDate")
        if isinstance(expires, (int, float)) and not isinstance(expires, bool):
            normalized["expires"] = float(expires)

        out.append(normalized)
    return out


class StepReporter:
    """Scales a processor's step fractions into the job-wide progress percent."""

    def __init__(self, update: Callable[[int, str], Awaitable[None]], index: int, total: int):
        self.update = update
        self.index = index
        self.total = max(total, 1)

    def percent(self, fraction: float) -> int:
        return int(math.floor((self.index + fraction) / self.total * 100))

    async def report(self, fraction: float, message: str):
        await self.update(self.percent(fraction), message)


class PlatformProcessor(ABC):
    """
    Abstract base class for marketplace processors.
    Each platform (Mercari, Facebook) implements the private step hooks.
    """

    platform: PlatformType
    display_name: str = ""
    START_URL: str = ""
    SITE_ORIGIN: str = ""
    LISTING_URL_PATTERN: "re.Pattern[str]" = re.compile(r"$^")
    LISTING_LINK_SELECTOR: str = ""
    LISTING_URL_POLL_INTERVAL: float = 1.0

    def __init__(
        self,
        engine,
        job: Job,
        session: SessionPayload,
        *,
        page_timeout_ms: int = 90000,
        listing_url_timeout: float = 30.0,
        reporter: Optional[StepReporter] = None,
        artifacts: Optional[ScreenshotManager] = None,
    ):
        self.engine = engine
        self.job = job
        self.session = session
        self.page_timeout_ms = page_timeout_ms
        self.listing_url_timeout = listing_url_timeout
        self.reporter = reporter
        self.artifacts = artifacts

        self.context = None
        self.page = None
        self.listing_url: Optional[str] = None
        self.current_step: Optional[str] = None
        self._next_step = 0
        self._closed = False

    # === Lifecycle ===

    def _enter(self, step: str):
        if self._closed:
            raise ProcessorStateError(f"{self.display_name} processor already cleaned up; cannot {step}")
        expected = STEPS[self._next_step] if self._next_step < len(STEPS) else None
        if step != expected:
            raise ProcessorStateError(
                f"{self.display_name} step '{step}' out of order (expected '{expected}')"
            )
        self._next_step += 1
        self.current_step = step

    async def initialize(self):
        """Open a context with the user's session and land on the sell page."""
        self._enter("initialize")
        if not self.engine.is_connected():
            raise EngineUnavailable("Browser engine is not connected")

        options: Dict[str, Any] = {
            "user_agent": self.session.user_agent or DEFAULT_USER_AGENT,
            "viewport": dict(DEFAULT_VIEWPORT),
            "locale": "en-US",
        }
        headers = self.extra_http_headers()
        if headers:
            logger.info(f"Extra HTTP headers enabled for {self.display_name}: {sorted(headers)}")
            options["extra_http_headers"] = headers

        self.context = await self.engine.new_context(**options)
        await self.context.add_init_script(STEALTH_INIT_SCRIPT)

        cookies = normalize_cookies(self.session.cookies)
        logger.debug(f"Adding cookies: raw={len(self.session.cookies)} normalized={len(cookies)}")
        if cookies:
            await self.context.add_cookies(cookies)

        self.page = await self.context.new_page()
        self.page.set_default_timeout(self.page_timeout_ms)
        self.page.set_default_navigation_timeout(self.page_timeout_ms)

        await self.page.goto(self.START_URL, wait_until="domcontentloaded")
        if SubmissionValidator.is_login_url(self.page.url):
            raise SessionInvalid(
                f"{self.display_name} session is not logged in (redirected to {self.page.url}). "
                f"Reconnect {self.display_name} and try again."
            )

    async def upload_images(self, image_paths: List[str]):
        self._enter("upload_images")
        if not image_paths:
            raise FormValidationError("images")

        await self._report(0.2, f"Uploading images to {self.display_name}...")
        await self._check_verification("before upload")
        try:
            await self._upload_images(list(image_paths))
        except ListingWorkerError:
            raise
        except PlaywrightError as e:
            raise ImageUploadError(f"Image upload failed on {self.display_name}: {e}") from e

    async def fill_form(self, payload: Dict[str, Any]) -> ListingPayload:
        self._enter("fill_form")
        await self._report(0.5, "Filling listing form...")
        listing = validate_listing(payload, self.platform.value)
        await self._check_verification("before form fill")
        await self._fill_form(listing)
        return listing

    async def submit(self):
        self._enter("submit")
        await self._report(0.8, "Submitting listing...")
        await self._check_verification("before submit")
        await self._submit()

    async def get_listing_url(self) -> str:
        """Poll the post-submit page until a listing URL shows up."""
        self._enter("get_listing_url")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.listing_url_timeout

        while True:
            for candidate in await self._candidate_listing_urls():
                url = self.match_listing_url(candidate)
                if url:
                    self.listing_url = url
                    return url
            if loop.time() >= deadline:
                raise ListingUrlNotFound(
                    f"No {self.display_name} listing URL found within {self.listing_url_timeout:g}s"
                )
            await asyncio.sleep(self.LISTING_URL_POLL_INTERVAL)

    async def cleanup(self):
        """Close page and context. Safe to call repeatedly; never raises."""
        if self._closed:
            return
        self._closed = True

        page, context = self.page, self.context
        self.page = None
        self.context = None
        for name, resource in (("page", page), ("context", context)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                logger.warning(f"Error closing {self.display_name} {name}: {e}")

    async def capture_artifacts(self, label: str) -> Dict[str, Any]:
        """Best-effort screenshot and HTML dump of the current page."""
        if self.artifacts is None or self.page is None:
            return {}
        try:
            captured = await self.artifacts.capture(
                self.page,
                ScreenshotContext(job_id=self.job.id, platform=self.platform.value, label=label),
            )
            return captured.to_dict()
        except Exception as e:
            logger.warning(f"Artifact capture failed for {self.display_name}: {e}")
            return {}

    # === Helpers ===

    def extra_http_headers(self) -> Optional[Dict[str, str]]:
        return None

    def match_listing_url(self, candidate: Optional[str]) -> Optional[str]:
        if not candidate:
            return None
        url = urljoin(self.SITE_ORIGIN, candidate.strip()).split("#")[0]
        return url if self.LISTING_URL_PATTERN.search(url) else None

    async def _candidate_listing_urls(self) -> List[str]:
        candidates = [self.page.url]
        if self.LISTING_LINK_SELECTOR:
            try:
                hrefs = await self.page.eval_on_selector_all(
                    self.LISTING_LINK_SELECTOR,
                    "els => els.map(e => e.getAttribute('href'))",
                )
                candidates.extend(h for h in hrefs if h)
            except PlaywrightError as e:
                logger.debug(f"Listing link lookup failed on {self.display_name}: {e}")
        return candidates

    async def _report(self, fraction: float, message: str):
        if self.reporter is None:
            return
        try:
            await self.reporter.report(fraction, message)
        except Exception as e:
            logger.warning(f"Progress report failed for {self.display_name}: {e}")

    async def _check_verification(self, label: str):
        hint = await SubmissionValidator.find_verification_wall(self.page)
        if hint:
            raise VerificationRequired(
                f"Blocked by CAPTCHA / verification wall on {self.display_name} ({label})"
            )

    async def _fill_first(self, selector: str, value: str, field: str, timeout: int = 10000) -> bool:
        """Fill the first visible element matching a selector."""
        locator = self.page.locator(selector).first
        try:
            await locator.wait_for(state="visible", timeout=timeout)
        except PlaywrightError:
            logger.warning(f"{self.display_name}: no input found for {field}")
            return False
        await locator.fill(value)
        return True

    async def _choose_option(self, opener: str, option_text: Optional[str], field: str) -> bool:
        """Open a picker and click the option with the given text."""
        if not option_text:
            return False
        button = self.page.locator(opener).first
        if await button.count() == 0:
            logger.warning(f"{self.display_name}: no picker found for {field}")
            return False
        await button.click()
        await self.page.wait_for_timeout(1000)
        option = self.page.locator(f'text="{option_text}"').first
        if await option.count() == 0:
            logger.warning(f"{self.display_name}: option '{option_text}' not found for {field}")
            return False
        await option.click()
        return True

    # === Platform hooks ===

    @abstractmethod
    async def _upload_images(self, image_paths: List[str]):
        """Attach local image files to the listing form."""
        pass

    @abstractmethod
    async def _fill_form(self, listing: ListingPayload):
        """Fill the site form from a validated listing."""
        pass

    @abstractmethod
    async def _submit(self):
        """Publish the listing and confirm the site accepted it."""
        pass
