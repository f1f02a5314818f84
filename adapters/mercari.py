"""
Mercari listing processor.

Drives the https://www.mercari.com/sell/ form with the user's captured
session. When the browser extension captured Mercari's API headers, an
allow-listed subset is sent with every request of the context.
"""

import logging
import re
from typing import Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from adapters.base import PlatformProcessor
from adapters.validation import ListingPayload, SubmissionValidator
from core.error_handler import ImageUploadError, SessionInvalid, SubmissionRejected
from core.models import PlatformType

logger = logging.getLogger(__name__)

# Headers safe to replay from a captured Mercari API session
ALLOWED_API_HEADERS = frozenset({
    "accept",
    "accept-language",
    "apollo-require-preflight",
    "authorization",
    "baggage",
    "priority",
    "sentry-trace",
    "x-app-version",
    "x-csrf-token",
    "x-de-device-token",
    "x-double-web",
    "x-ld-variants",
    "x-platform",
    "x-socure-device",
    "sec-ch-ua",
    "sec-ch-ua-mobile",
    "sec-ch-ua-platform",
})

FILE_INPUT = 'input[type="file"]'
THUMBNAIL = 'img[src^="blob:"], img[src*="mercari"]'
TITLE_INPUT = 'input[placeholder*="title" i], input[name*="title" i], textarea[placeholder*="title" i]'
DESCRIPTION_INPUT = 'textarea[placeholder*="description" i], textarea[name*="description" i]'
PRICE_INPUT = 'input[placeholder*="price" i], input[name*="price" i], input[type="number"]'
CATEGORY_BUTTON = 'button:has-text("Category")'
CONDITION_SELECT = 'select[name*="condition" i], select[id*="condition" i]'
SUBMIT_BUTTON = 'form button[type="submit"]'
BUSY_INDICATOR = '[aria-busy="true"], .loading, .spinner'
SUCCESS_URL = re.compile(r"/items/|/listing/|/sell/complete|/sell/success", re.IGNORECASE)


class MercariProcessor(PlatformProcessor):
    platform = PlatformType.MERCARI
    display_name = "Mercari"
    START_URL = "https://www.mercari.com/sell/"
    SITE_ORIGIN = "https://www.mercari.com"
    LISTING_URL_PATTERN = re.compile(r"mercari\.com/(?:us/)?items/[A-Za-z0-9]+")
    LISTING_LINK_SELECTOR = 'a[href*="/items/"]'

    def extra_http_headers(self) -> Optional[Dict[str, str]]:
        session = self.session.session or {}
        if session.get("type") != "mercari_api_headers":
            return None
        raw = session.get("headers")
        if not isinstance(raw, dict):
            return None

        headers = {}
        for key, value in raw.items():
            key = str(key).lower()
            if key in ALLOWED_API_HEADERS and isinstance(value, str) and value:
                headers[key] = value

        return headers if "authorization" in headers else None

    async def _upload_images(self, image_paths: List[str]):
        try:
            await self.page.wait_for_selector(FILE_INPUT, state="attached", timeout=30000)
        except PlaywrightError as e:
            raise ImageUploadError("Could not find image upload area on Mercari") from e

        for i, path in enumerate(image_paths, 1):
            try:
                await self.page.set_input_files(FILE_INPUT, path)
                await self.page.wait_for_selector(THUMBNAIL, timeout=10000)
            except PlaywrightError as e:
                raise ImageUploadError(f"Failed to upload image {i}: {e}") from e
            logger.debug(f"Mercari: uploaded image {i}/{len(image_paths)}")

        if await self.page.locator(THUMBNAIL).count() == 0:
            raise ImageUploadError("Mercari did not register uploaded images")

    async def _fill_form(self, listing: ListingPayload):
        await self._fill_first(TITLE_INPUT, listing.title, "title")
        await self._fill_first(DESCRIPTION_INPUT, listing.description, "description")
        await self._fill_first(PRICE_INPUT, listing.formatted_price(0), "price")

        await self._choose_option(CATEGORY_BUTTON, listing.category, "category")

        if listing.condition:
            condition = self.page.locator(CONDITION_SELECT).first
            if await condition.count() > 0:
                await condition.select_option(label=listing.condition)
            else:
                await self._choose_option('button:has-text("Condition")', listing.condition, "condition")

        await self._choose_option('button:has-text("Who pays")', listing.shipping.get("paidBy"), "shipping.paidBy")
        await self._choose_option('button:has-text("Shipping")', listing.shipping.get("method"), "shipping.method")

    async def _submit(self):
        button = self.page.locator(SUBMIT_BUTTON).first
        try:
            await button.wait_for(state="visible", timeout=15000)
        except PlaywrightError as e:
            raise SubmissionRejected("Could not find the Mercari submit button") from e

        if await button.is_disabled():
            raise SubmissionRejected("Submit button is disabled (Mercari still missing required fields)")

        start_url = self.page.url
        await button.scroll_into_view_if_needed()
        await button.click(delay=50)
        await self.page.wait_for_timeout(2000)

        if SubmissionValidator.is_login_url(self.page.url):
            raise SessionInvalid(f"Mercari redirected to login after submit ({self.page.url})")
        await self._check_verification("after submit")

        errors = await SubmissionValidator.collect_inline_errors(self.page)
        if errors:
            raise SubmissionRejected(f"Mercari form validation errors after submit: {'; '.join(errors)}")

        try:
            await self.page.locator(BUSY_INDICATOR).first.wait_for(state="detached", timeout=20000)
        except PlaywrightError:
            pass

        try:
            await self.page.wait_for_url(SUCCESS_URL, timeout=30000)
        except PlaywrightError:
            logger.debug(f"Mercari: no success navigation from {start_url}")

        if self.page.url == start_url and await self.page.locator(self.LISTING_LINK_SELECTOR).count() == 0:
            raise SubmissionRejected("Submit did not navigate or show success; listing likely not created")
