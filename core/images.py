"""
Listing image resolution.

Listing payloads reference images by URL, by storage-relative path or by local
file path. Browsers can only upload local files, so remote images are
downloaded to a per-job temporary directory first. Downloads are cached per
reference, which lets every platform of a job reuse the same files, and the
directory is removed when the fetcher closes.
"""

import asyncio
import logging
import mimetypes
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import urlsplit, unquote

import aiohttp

from core.error_handler import ImageDownloadError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".heic"}


def _is_remote(ref: str) -> bool:
    return ref.startswith("http://") or ref.startswith("https://")


class ImageFetcher:
    """
    Turn image references into local file paths.

    Usage:
        async with ImageFetcher(base_url="https://cdn.example.com/") as fetcher:
            paths = await fetcher.fetch_all(["photos/1.jpg", "https://x/2.png"])
    """

    def __init__(self, base_url: Optional[str] = None, timeout: float = 45.0):
        self.base_url = base_url.rstrip("/") + "/" if base_url else None
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._tmp_dir: Optional[Path] = None
        self._cache: Dict[str, str] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def resolve(self, ref: str) -> str:
        """Return the URL or local path a reference points at."""
        ref = (ref or "").strip()
        if not ref:
            raise ImageDownloadError("Empty image reference")
        if _is_remote(ref):
            return ref
        if ref.startswith("file://"):
            return unquote(urlsplit(ref).path)
        if os.path.exists(ref):
            return ref
        if self.base_url:
            return self.base_url + ref.lstrip("/")
        raise ImageDownloadError(f"Image not found and IMAGE_BASE_URL is not set: {ref}")

    async def fetch(self, ref: str) -> str:
        if ref in self._cache:
            return self._cache[ref]

        target = self.resolve(ref)
        if _is_remote(target):
            path = await self._download(target, index=len(self._cache))
        else:
            if not os.path.isfile(target):
                raise ImageDownloadError(f"Image file does not exist: {target}")
            path = target

        self._cache[ref] = path
        return path

    async def fetch_all(self, refs: List[str]) -> List[str]:
        """Resolve every reference in order. Any failure fails the whole set."""
        return [await self.fetch(ref) for ref in refs]

    async def _download(self, url: str, index: int) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        if self._tmp_dir is None:
            self._tmp_dir = Path(tempfile.mkdtemp(prefix="listing_images_"))

        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    raise ImageDownloadError(f"Image download failed ({response.status}): {url}")
                data = await response.read()
                content_type = response.headers.get("Content-Type", "")
        except aiohttp.ClientError as e:
            raise ImageDownloadError(f"Image download failed: {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise ImageDownloadError(f"Image download timed out: {url}") from e

        if not data:
            raise ImageDownloadError(f"Image download returned no data: {url}")

        path = self._tmp_dir / f"image_{index:02d}{self._extension(url, content_type)}"
        path.write_bytes(data)
        logger.debug(f"Downloaded {url} -> {path} ({len(data)} bytes)")
        return str(path)

    @staticmethod
    def _extension(url: str, content_type: str) -> str:
        suffix = Path(urlsplit(url).path).suffix.lower()
        if suffix in IMAGE_EXTENSIONS:
            return suffix
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip()) if content_type else None
        return guessed or ".jpg"

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None
        if self._tmp_dir is not None:
            shutil.rmtree(self._tmp_dir, ignore_errors=True)
            self._tmp_dir = None
        self._cache.clear()
