"""Local-filesystem blob store for task uploads and converted images.

Layout under the base directory::

    <task_id>/<file_id>              uploaded file (text mode)
    <task_id>/<file_id>/<index>      converted page image (image mode)

Blocking filesystem calls run in a worker thread via
``asyncio.to_thread`` so a slow disk never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def ensure_base_dir(self) -> None: ...
    async def save_file(
        self, task_id: str, file_id: str, data: bytes
    ) -> str: ...
    async def save_converted_images(
        self, task_id: str, file_id: str, images: list[bytes]
    ) -> int: ...
    async def read_file(self, path: str) -> bytes: ...
    async def read_converted_images(
        self, task_id: str, file_id: str, count: int
    ) -> list[bytes]: ...
    async def delete_task_files(self, task_id: str) -> None: ...


class LocalBlobStore:
    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def task_dir(self, task_id: str) -> Path:
        return self._base_dir / task_id

    def file_path(self, task_id: str, file_id: str) -> Path:
        return self._base_dir / task_id / file_id

    def image_path(self, task_id: str, file_id: str, index: int) -> Path:
        return self._base_dir / task_id / file_id / str(index)

    async def ensure_base_dir(self) -> None:
        await asyncio.to_thread(
            self._base_dir.mkdir, parents=True, exist_ok=True
        )

    async def save_file(
        self, task_id: str, file_id: str, data: bytes
    ) -> str:
        path = self.file_path(task_id, file_id)
        await asyncio.to_thread(_write_bytes, path, data)
        logger.debug(
            "event=task_file_saved task_id=%s file_id=%s bytes=%d",
            task_id,
            file_id,
            len(data),
        )
        return str(path)

    async def save_converted_images(
        self, task_id: str, file_id: str, images: list[bytes]
    ) -> int:
        for index, image in enumerate(images):
            await asyncio.to_thread(
                _write_bytes, self.image_path(task_id, file_id, index), image
            )
        logger.debug(
            "event=task_images_saved task_id=%s file_id=%s count=%d",
            task_id,
            file_id,
            len(images),
        )
        return len(images)

    async def read_file(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def read_converted_images(
        self, task_id: str, file_id: str, count: int
    ) -> list[bytes]:
        return [
            await asyncio.to_thread(
                self.image_path(task_id, file_id, index).read_bytes
            )
            for index in range(count)
        ]

    async def delete_task_files(self, task_id: str) -> None:
        """Remove the task's directory. Missing directories are fine."""
        task_dir = self.task_dir(task_id)
        await asyncio.to_thread(shutil.rmtree, task_dir, ignore_errors=True)
        logger.debug("event=task_files_deleted task_id=%s", task_id)


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
