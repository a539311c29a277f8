"""Extracted-content cache for review targets.

Text caches live at ``<base>/<target_id>/<cache_id>.txt``; image caches
are directories ``<base>/<target_id>/<cache_id>/page_<n>.png`` with
1-based page numbers. Retries read these instead of the original
uploads, which are deleted with the task.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import shutil
from pathlib import Path

from checkreview.constants import (
    IMAGE_CACHE_PREFIX,
    IMAGE_CACHE_SUFFIX,
    TEXT_CACHE_SUFFIX,
)

logger = logging.getLogger(__name__)

_PAGE_RE = re.compile(
    rf"{IMAGE_CACHE_PREFIX}(\d+){re.escape(IMAGE_CACHE_SUFFIX)}$"
)


class ReviewCacheStore:
    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    def cache_dir(self, review_target_id: str) -> Path:
        return self._base_dir / review_target_id

    async def save_text(
        self, review_target_id: str, cache_id: str, content: str
    ) -> str:
        name = f"{cache_id}{TEXT_CACHE_SUFFIX}"
        path = self.cache_dir(review_target_id) / name
        await asyncio.to_thread(_write_text, path, content)
        logger.debug(
            "event=text_cache_saved target_id=%s cache_id=%s",
            review_target_id,
            cache_id,
        )
        return str(path)

    async def save_images(
        self, review_target_id: str, cache_id: str, images_b64: list[str]
    ) -> str:
        directory = self.cache_dir(review_target_id) / cache_id
        await asyncio.to_thread(_write_images, directory, images_b64)
        logger.debug(
            "event=image_cache_saved target_id=%s cache_id=%s count=%d",
            review_target_id,
            cache_id,
            len(images_b64),
        )
        return str(directory)

    async def load_text(self, cache_path: str) -> str:
        return await asyncio.to_thread(
            Path(cache_path).read_text, encoding="utf-8"
        )

    async def load_images(self, cache_path: str) -> list[str]:
        """Return base64 page images in page order."""
        return await asyncio.to_thread(_read_images, Path(cache_path))

    async def delete_cache_directory(self, review_target_id: str) -> None:
        directory = self.cache_dir(review_target_id)
        await asyncio.to_thread(shutil.rmtree, directory, ignore_errors=True)
        logger.debug(
            "event=cache_directory_deleted target_id=%s", review_target_id
        )


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _write_images(directory: Path, images_b64: list[str]) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for index, image in enumerate(images_b64, start=1):
        page = directory / f"{IMAGE_CACHE_PREFIX}{index}{IMAGE_CACHE_SUFFIX}"
        page.write_bytes(base64.b64decode(image))


def _read_images(directory: Path) -> list[str]:
    pages: list[tuple[int, Path]] = []
    for entry in directory.iterdir():
        match = _PAGE_RE.match(entry.name)
        if match:
            pages.append((int(match.group(1)), entry))
    pages.sort(key=lambda p: p[0])
    return [
        base64.b64encode(path.read_bytes()).decode("ascii")
        for _, path in pages
    ]
