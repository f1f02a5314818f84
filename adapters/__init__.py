"""
Marketplace Processors
Unified interface for publishing listings across marketplaces.
Supports: Mercari, Facebook Marketplace.
"""

from typing import Dict, Optional, Type

from .base import (
    PlatformProcessor,
    StepReporter,
    normalize_cookies,
)
from .mercari import MercariProcessor
from .facebook import FacebookProcessor
from core.error_handler import UnsupportedPlatform


# Processors registry
PROCESSORS: Dict[str, Type[PlatformProcessor]] = {
    "mercari": MercariProcessor,
    "facebook": FacebookProcessor,
}


def get_processor(
    platform: str,
    registry: Optional[Dict[str, Type[PlatformProcessor]]] = None,
) -> Type[PlatformProcessor]:
    """
    Look up the processor class for a platform.

    Args:
        platform: Platform identifier (e.g. "mercari"), case-insensitive
        registry: Processor map to search (default: PROCESSORS)

    Returns:
        PlatformProcessor subclass

    Raises:
        UnsupportedPlatform: if no processor is registered for the platform
    """
    registry = PROCESSORS if registry is None else registry
    processor_class = registry.get((platform or "").strip().lower())
    if processor_class is None:
        raise UnsupportedPlatform(platform)
    return processor_class


__all__ = [
    "PlatformProcessor",
    "StepReporter",
    "MercariProcessor",
    "FacebookProcessor",
    "PROCESSORS",
    "get_processor",
    "normalize_cookies",
]
