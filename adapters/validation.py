"""
Shared validation utilities for marketplace processors.
Normalizes listing payloads and detects blockers and errors on live pages.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.error_handler import FormValidationError

logger = logging.getLogger(__name__)


# Required fields per platform, in the order they are reported
REQUIRED_FIELDS = {
    "mercari": [
        "title",
        "description",
        "price",
        "category",
        "condition",
        "shipping.paidBy",
        "shipping.method",
    ],
    "facebook": [
        "title",
        "price",
    ],
}

MIN_LENGTHS = {
    "mercari": {"title": 3, "description": 10},
}


@dataclass
class ListingPayload:
    """Platform-agnostic listing content after normalization."""
    title: str = ""
    description: str = ""
    price: Optional[float] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    brand: Optional[str] = None
    size: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    shipping: Dict[str, Any] = field(default_factory=dict)

    def formatted_price(self, decimals: int) -> str:
        return f"{self.price:.{decimals}f}" if self.price is not None else ""


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _price(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_image_refs(payload: Dict[str, Any]) -> List[str]:
    """
    Ordered image references from a payload.

    ``images`` may be a list of strings; otherwise ``photos`` entries are read
    from their ``preview``, ``imageUrl`` or ``url`` keys.
    """
    images = payload.get("images")
    if isinstance(images, list) and images:
        return [str(i).strip() for i in images if isinstance(i, str) and i.strip()]

    refs = []
    photos = payload.get("photos")
    for photo in photos if isinstance(photos, list) else []:
        if isinstance(photo, str):
            ref = photo
        elif isinstance(photo, dict):
            ref = photo.get("preview") or photo.get("imageUrl") or photo.get("url")
        else:
            ref = None
        if isinstance(ref, str) and ref.strip():
            refs.append(ref.strip())
    return refs


def normalize_listing(payload: Dict[str, Any], platform: str) -> ListingPayload:
    """Merge the platform override block and coerce fields into a ListingPayload."""
    merged = dict(payload or {})
    override = merged.get(platform)
    if isinstance(override, dict):
        merged.update({k: v for k, v in override.items() if v not in (None, "")})

    shipping = merged.get("shipping") if isinstance(merged.get("shipping"), dict) else {}
    shipping = {
        **shipping,
        "paidBy": shipping.get("paidBy") or merged.get("shippingPayer"),
        "method": shipping.get("method") or merged.get("deliveryMethod") or merged.get("shippingCarrier"),
    }

    tags = merged.get("tags")
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]

    return ListingPayload(
        title=_text(merged.get("title")),
        description=_text(merged.get("description")),
        price=_price(merged.get("price")),
        category=_text(
            merged.get("category") or merged.get("mercariCategory") or merged.get("mercariCategoryId")
        ) or None,
        condition=_text(merged.get("condition")) or None,
        brand=_text(merged.get("brand")) or None,
        size=_text(merged.get("size")) or None,
        tags=list(tags) if isinstance(tags, list) else [],
        images=extract_image_refs(merged),
        shipping=shipping,
    )


def missing_fields(listing: ListingPayload, platform: str) -> List[str]:
    """Names of required fields that are absent or invalid for a platform."""
    min_lengths = MIN_LENGTHS.get(platform, {})
    missing = []
    for name in REQUIRED_FIELDS.get(platform, []):
        if name == "price":
            ok = listing.price is not None and listing.price > 0
        elif name.startswith("shipping."):
            ok = bool(listing.shipping.get(name.split(".", 1)[1]))
        else:
            value = getattr(listing, name)
            ok = bool(value) and len(str(value)) >= min_lengths.get(name, 1)
        if not ok:
            missing.append(name)
    return missing


def validate_listing(payload: Dict[str, Any], platform: str) -> ListingPayload:
    """Normalize a payload for a platform or raise FormValidationError."""
    listing = normalize_listing(payload, platform)
    missing = missing_fields(listing, platform)
    if missing:
        raise FormValidationError(*missing)
    return listing


class SubmissionValidator:
    """Inspects marketplace pages for walls, login redirects and form errors."""

    # Captcha and verification walls
    VERIFICATION_HINTS = [
        "text=/captcha/i",
        "text=/verify (that )?you('re| are) (a )?human/i",
        "text=/security check/i",
        "text=/not a robot/i",
        "text=/unusual traffic/i",
        'iframe[src*="captcha"]',
        'iframe[src*="hcaptcha"]',
        'iframe[src*="recaptcha"]',
    ]

    # Inline validation errors shown after a submit attempt
    ERROR_SELECTORS = [
        "[role='alert']",
        "[data-testid*='error']",
        "text=/required/i",
        "text=/please enter/i",
        "text=/invalid/i",
    ]

    LOGIN_URL_MARKERS = ["/login", "/signin", "/authenticate", "/auth"]

    @classmethod
    def is_login_url(cls, url: str) -> bool:
        url_lower = (url or "").lower()
        return any(marker in url_lower for marker in cls.LOGIN_URL_MARKERS)

    @staticmethod
    async def _count(page, selector: str) -> int:
        try:
            return await page.locator(selector).count()
        except Exception:
            return 0

    @classmethod
    async def find_verification_wall(cls, page) -> Optional[str]:
        """Return the first matching verification hint, or None."""
        for hint in cls.VERIFICATION_HINTS:
            if await cls._count(page, hint) > 0:
                return hint
        return None

    @classmethod
    async def collect_inline_errors(cls, page) -> List[str]:
        """Return the visible text of inline form errors, one per matching selector."""
        errors = []
        for selector in cls.ERROR_SELECTORS:
            if await cls._count(page, selector) == 0:
                continue
            try:
                text = await page.locator(selector).first.inner_text()
            except Exception:
                text = ""
            errors.append(re.sub(r"\s+", " ", text).strip()[:300] or selector)
        return errors
