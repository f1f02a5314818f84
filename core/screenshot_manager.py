"""
Failure artifact capture.

Saves a screenshot and an HTML dump of the current page when a platform run
fails, using consistent naming so artifacts can be matched to job events.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScreenshotContext:
    """Context for an artifact capture."""
    job_id: str
    platform: str
    label: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class CapturedArtifacts:
    """Files written for one capture. Missing entries failed or were skipped."""
    context: ScreenshotContext
    screenshot_path: Optional[Path] = None
    html_path: Optional[Path] = None
    page_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "screenshot": str(self.screenshot_path) if self.screenshot_path else None,
            "html": str(self.html_path) if self.html_path else None,
            "url": self.page_url,
        }


@dataclass
class ScreenshotConfig:
    """Configuration for artifact capture."""
    base_dir: Path
    naming_template: str = "{platform}_{job_id}_{label}_{timestamp}"
    full_page: bool = True
    enabled: bool = True
    max_captures: int = 50  # recent captures kept for lookup


class ScreenshotManager:
    """
    Capture screenshots and page HTML for failed platform runs.

    Usage:
        manager = ScreenshotManager(ScreenshotConfig(base_dir=Path("./artifacts")))
        artifacts = await manager.capture(page, ScreenshotContext(
            job_id="job_123",
            platform="mercari",
            label="submit_failed",
        ))
    """

    def __init__(self, config: ScreenshotConfig):
        self.config = config
        self.captured: deque = deque(maxlen=config.max_captures)

    def _base_name(self, context: ScreenshotContext) -> str:
        return self.config.naming_template.format(
            platform=context.platform,
            job_id=context.job_id.replace("/", "_"),
            label="".join(c if c.isalnum() or c in "-_" else "_" for c in context.label),
            timestamp=context.timestamp.strftime("%Y%m%d_%H%M%S"),
        )

    async def capture(self, page, context: ScreenshotContext) -> CapturedArtifacts:
        """
        Capture a screenshot and the page HTML. Never raises.

        Args:
            page: Playwright page
            context: Job, platform and label for naming

        Returns:
            CapturedArtifacts with whatever could be written
        """
        artifacts = CapturedArtifacts(context=context)
        if not self.config.enabled or page is None:
            return artifacts

        directory = self.config.base_dir / context.job_id.replace("/", "_")
        base_name = self._base_name(context)

        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create artifact directory {directory}: {e}")
            return artifacts

        try:
            artifacts.page_url = page.url
        except Exception:
            artifacts.page_url = None

        screenshot_path = directory / f"{base_name}.png"
        try:
            await page.screenshot(path=str(screenshot_path), full_page=self.config.full_page)
            artifacts.screenshot_path = screenshot_path
        except Exception as e:
            logger.warning(f"Screenshot capture failed for {context.platform}: {e}")

        html_path = directory / f"{base_name}.html"
        try:
            html_path.write_text(await page.content(), encoding="utf-8")
            artifacts.html_path = html_path
        except Exception as e:
            logger.warning(f"HTML capture failed for {context.platform}: {e}")

        self.captured.append(artifacts)
        return artifacts

    def get_by_label(self, label: str) -> List[CapturedArtifacts]:
        """Get recent captures with a specific label."""
        return [a for a in self.captured if label in a.context.label]
