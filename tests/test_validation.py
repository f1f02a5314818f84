"""
Listing payload normalization and required-field checks.
"""

import re

import pytest

from adapters.validation import (
    SubmissionValidator,
    extract_image_refs,
    missing_fields,
    normalize_listing,
    validate_listing,
)
from core.error_handler import FormValidationError, format_error


class TestNormalizeListing:

    def test_platform_override_wins(self, sample_payload):
        payload = dict(sample_payload, facebook={"title": "FB title", "price": "", "description": None})

        listing = normalize_listing(payload, "facebook")

        assert listing.title == "FB title"
        assert listing.price == 45.0
        assert listing.description == sample_payload["description"]

    def test_override_ignored_for_other_platform(self, sample_payload):
        payload = dict(sample_payload, facebook={"title": "FB title"})
        assert normalize_listing(payload, "mercari").title == sample_payload["title"]

    @pytest.mark.parametrize("raw,expected", [
        ("$1,250.50", 1250.5),
        (" 12 ", 12.0),
        (30, 30.0),
        ("free", None),
        (True, None),
        (None, None),
    ])
    def test_price_parsing(self, raw, expected):
        assert normalize_listing({"price": raw}, "mercari").price == expected

    def test_tags_split_on_commas(self):
        assert normalize_listing({"tags": "a, b,, c "}, "mercari").tags == ["a", "b", "c"]

    def test_shipping_fallbacks(self):
        listing = normalize_listing({"shippingPayer": "buyer", "deliveryMethod": "ship_on_your_own"}, "mercari")
        assert listing.shipping == {"paidBy": "buyer", "method": "ship_on_your_own"}

    def test_category_fallback(self):
        assert normalize_listing({"mercariCategoryId": 88}, "mercari").category == "88"

    def test_formatted_price(self):
        listing = normalize_listing({"price": "45"}, "mercari")
        assert listing.formatted_price(0) == "45"
        assert listing.formatted_price(2) == "45.00"
        assert normalize_listing({}, "mercari").formatted_price(2) == ""


class TestImageRefs:

    def test_images_list_preferred(self):
        payload = {"images": ["a.jpg", " ", "b.jpg"], "photos": [{"preview": "c.jpg"}]}
        assert extract_image_refs(payload) == ["a.jpg", "b.jpg"]

    def test_photo_objects(self):
        payload = {"photos": [
            {"preview": "blob-a.jpg", "imageUrl": "ignored.jpg"},
            {"imageUrl": "https://cdn/b.jpg"},
            {"url": "c.jpg"},
            "d.jpg",
            {"caption": "no image"},
        ]}
        assert extract_image_refs(payload) == ["blob-a.jpg", "https://cdn/b.jpg", "c.jpg", "d.jpg"]

    def test_no_images(self):
        assert extract_image_refs({}) == []


class TestRequiredFields:

    def test_complete_payload_passes_everywhere(self, sample_payload):
        for platform in ("mercari", "facebook"):
            assert missing_fields(normalize_listing(sample_payload, platform), platform) == []

    def test_mercari_minimum_lengths(self, sample_payload):
        payload = dict(sample_payload, title="ab", description="short")
        assert missing_fields(normalize_listing(payload, "mercari"), "mercari") == ["title", "description"]

    def test_facebook_only_needs_title_and_price(self):
        assert missing_fields(normalize_listing({"title": "x", "price": "1"}, "facebook"), "facebook") == []

    def test_invalid_override_price(self, sample_payload):
        payload = dict(sample_payload, facebook={"price": "free"})

        with pytest.raises(FormValidationError) as exc_info:
            validate_listing(payload, "facebook")
        assert format_error(exc_info.value) == "FormValidationError: price"

    def test_all_missing_fields_in_message(self):
        with pytest.raises(FormValidationError, match="title; price"):
            validate_listing({}, "facebook")


class TestSubmissionValidator:

    @pytest.mark.parametrize("url,expected", [
        ("https://www.mercari.com/login/?redirect=/sell", True),
        ("https://www.facebook.com/auth/checkpoint", True),
        ("https://www.mercari.com/sell/", False),
        ("", False),
        (None, False),
    ])
    def test_login_urls(self, url, expected):
        assert SubmissionValidator.is_login_url(url) is expected

    @pytest.mark.asyncio
    async def test_inline_errors(self, fake_page):
        page = fake_page
        page.selector_counts["[role='alert']"] = 1
        page.texts["[role='alert']"] = "  Price\n is required "
        page.selector_counts["text=/invalid/i"] = 1

        errors = await SubmissionValidator.collect_inline_errors(page)
        assert errors == ["Price is required", "text=/invalid/i"]

    @pytest.mark.asyncio
    async def test_no_verification_wall(self, fake_page):
        assert await SubmissionValidator.find_verification_wall(fake_page) is None

    @pytest.mark.parametrize("text,expected", [
        ("Please verify you are human", True),
        ("Verify that you're a human to continue", True),
        ("Security check", True),
        ("I'm not a robot", True),
        ("Verified seller", False),
        ("Verify your email to get offers", False),
        ("Robot vacuum, barely used", False),
    ])
    def test_verification_hints_ignore_listing_text(self, text, expected):
        patterns = [
            re.compile(hint[len("text=/"):-len("/i")], re.IGNORECASE)
            for hint in SubmissionValidator.VERIFICATION_HINTS
            if hint.startswith("text=/")
        ]
        assert any(p.search(text) for p in patterns) is expected
