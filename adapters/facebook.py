"""
Facebook Marketplace listing processor.
"""

import logging
import re
from typing import List

from playwright.async_api import Error as PlaywrightError

from adapters.base import PlatformProcessor
from adapters.validation import ListingPayload, SubmissionValidator
from core.error_handler import ImageUploadError, SubmissionRejected
from core.models import PlatformType

logger = logging.getLogger(__name__)

PHOTO_INPUT = 'input[type="file"][accept*="image"]'
ADD_PHOTO_BUTTON = 'div[aria-label*="photo" i]'
TITLE_INPUT = 'input[placeholder*="What are you selling" i], input[aria-label*="Title" i]'
PRICE_INPUT = 'input[placeholder*="Price" i], input[aria-label*="Price" i]'
DESCRIPTION_INPUT = 'textarea[placeholder*="Describe" i], textarea[aria-label*="Description" i], div[contenteditable="true"]'
CATEGORY_BUTTON = 'div[aria-label*="Category" i], button:has-text("Category")'
CONDITION_BUTTON = 'div[aria-label*="Condition" i], button:has-text("Condition")'
PUBLISH_BUTTON = 'div[aria-label*="Publish" i], button:has-text("Publish"), button:has-text("Next")'
DONE_URL = re.compile(r"/marketplace/item/|/marketplace/you/selling", re.IGNORECASE)

# "Next" pages precede the final "Publish" on some listing flows
MAX_PUBLISH_CLICKS = 3


class FacebookProcessor(PlatformProcessor):
    platform = PlatformType.FACEBOOK
    display_name = "Facebook"
    START_URL = "https://www.facebook.com/marketplace/create/item"
    SITE_ORIGIN = "https://www.facebook.com"
    LISTING_URL_PATTERN = re.compile(r"facebook\.com/marketplace/item/\d+")
    LISTING_LINK_SELECTOR = 'a[href*="/marketplace/item/"]'

    async def _upload_images(self, image_paths: List[str]):
        photo_input = self.page.locator(PHOTO_INPUT).first
        try:
            await photo_input.wait_for(state="attached", timeout=15000)
        except PlaywrightError:
            add_photo = self.page.locator(ADD_PHOTO_BUTTON).first
            if await add_photo.count() == 0:
                raise ImageUploadError("Could not find photo upload area on Facebook")
            await add_photo.click()
            try:
                await photo_input.wait_for(state="attached", timeout=10000)
            except PlaywrightError as e:
                raise ImageUploadError("Could not find photo upload area on Facebook") from e

        for i, path in enumerate(image_paths, 1):
            try:
                await self.page.locator(PHOTO_INPUT).first.set_input_files(path)
            except PlaywrightError as e:
                raise ImageUploadError(f"Failed to upload image {i}: {e}") from e
            await self.page.wait_for_timeout(2000)
            logger.debug(f"Facebook: uploaded image {i}/{len(image_paths)}")

    async def _fill_form(self, listing: ListingPayload):
        await self._fill_first(TITLE_INPUT, listing.title, "title", timeout=15000)
        await self._fill_first(PRICE_INPUT, listing.formatted_price(2), "price")

        if listing.description:
            description = self.page.locator(DESCRIPTION_INPUT).first
            if await description.count() > 0:
                await description.click()
                await description.fill(listing.description)

        await self._choose_option(CATEGORY_BUTTON, listing.category, "category")
        await self._choose_option(CONDITION_BUTTON, listing.condition, "condition")

    async def _submit(self):
        for _ in range(MAX_PUBLISH_CLICKS):
            button = self.page.locator(PUBLISH_BUTTON).first
            try:
                await button.wait_for(state="visible", timeout=15000)
            except PlaywrightError as e:
                raise SubmissionRejected("Could not find publish button on Facebook") from e

            await button.click()
            try:
                await self.page.wait_for_url(DONE_URL, timeout=30000)
                break
            except PlaywrightError:
                pass

            await self._check_verification("after publish")
            errors = await SubmissionValidator.collect_inline_errors(self.page)
            if errors:
                raise SubmissionRejected(f"Facebook rejected the listing: {'; '.join(errors)}")
            if await self.page.locator(PUBLISH_BUTTON).count() == 0:
                break
        else:
            raise SubmissionRejected(
                f"Facebook did not accept the listing after {MAX_PUBLISH_CLICKS} publish attempts"
            )
