"""Session-owned cache of floor-plan image handles.

Image bytes are written to a temporary file owned by the cache and exposed
as a ``file://`` URL. The URL stays valid until the handle is released;
releasing deletes the file.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
import shutil
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from pyindoormap.exceptions import ImageLoadError

_logger = logging.getLogger(__name__)

ImageLoader = Callable[[], Awaitable[bytes]]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def _guess_suffix(data: bytes) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return ".gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return ".webp"
    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return ".svg"
    return ".bin"


@dataclass(frozen=True, slots=True)
class ImageHandle:
    """A renderable, revocable reference to one level image."""

    asset_id: str
    url: str
    path: Path
    size: int


class ImageCache:
    """Exactly one live handle per asset id.

    ``acquire`` shares a single in-flight load between concurrent callers.
    ``release`` is idempotent. ``close`` releases everything.
    """

    def __init__(self, directory: str | Path | None = None) -> None:
        self._directory: Path | None = Path(directory) if directory is not None else None
        self._owns_directory = directory is None
        self._handles: dict[str, ImageHandle] = {}
        self._pending: dict[str, asyncio.Task[ImageHandle]] = {}
        self._closed = False

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_directory(self) -> Path:
        if self._directory is None:
            self._directory = Path(tempfile.mkdtemp(prefix="pyindoormap-"))
        else:
            self._directory.mkdir(parents=True, exist_ok=True)
        return self._directory

    async def acquire(self, asset_id: str, loader: ImageLoader) -> str:
        """Return the URL for *asset_id*, loading it through *loader* if needed."""
        if self._closed:
            raise ImageLoadError("Image cache is closed")

        handle = self._handles.get(asset_id)
        if handle is not None:
            return handle.url

        task = self._pending.get(asset_id)
        if task is None:
            task = asyncio.ensure_future(self._load(asset_id, loader))
            self._pending[asset_id] = task
        # One caller being cancelled must not abort the shared load.
        try:
            handle = await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or current.cancelling() == 0):
                raise ImageLoadError(f"Loading image {asset_id} was cancelled: cache closed") from None
            raise
        return handle.url

    async def _load(self, asset_id: str, loader: ImageLoader) -> ImageHandle:
        try:
            data = await loader()
            if not isinstance(data, (bytes, bytearray, memoryview)):
                raise ImageLoadError(f"Loader for image {asset_id} returned {type(data).__name__}, expected bytes")
            payload = bytes(data)
            if not payload:
                raise ImageLoadError(f"Image {asset_id} is empty")

            directory = self._ensure_directory()
            name = f"{_UNSAFE_CHARS.sub('_', asset_id)}-{secrets.token_hex(4)}{_guess_suffix(payload)}"
            path = directory / name
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, path.write_bytes, payload)
            except OSError as exc:
                raise ImageLoadError(f"Could not store image {asset_id}: {exc}") from exc

            handle = ImageHandle(asset_id=asset_id, url=path.as_uri(), path=path, size=len(payload))
            if self._closed:
                path.unlink(missing_ok=True)
                raise ImageLoadError("Image cache closed while loading")
            self._handles[asset_id] = handle
            _logger.debug("Image %s cached (%d bytes) at %s", asset_id, handle.size, handle.url)
            return handle
        finally:
            if self._pending.get(asset_id) is asyncio.current_task():
                self._pending.pop(asset_id, None)

    def get(self, asset_id: str) -> ImageHandle | None:
        return self._handles.get(asset_id)

    def release(self, asset_id: str) -> None:
        """Revoke and forget the handle for *asset_id*. Releasing twice is a no-op."""
        handle = self._handles.pop(asset_id, None)
        if handle is None:
            return
        try:
            handle.path.unlink(missing_ok=True)
        except OSError:
            _logger.warning("Could not delete image file %s", handle.path, exc_info=True)
        _logger.debug("Image %s released", asset_id)

    def close(self) -> None:
        """Release every handle and cancel in-flight loads."""
        if self._closed:
            return
        self._closed = True
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
        for asset_id in list(self._handles):
            self.release(asset_id)
        if self._owns_directory and self._directory is not None:
            shutil.rmtree(self._directory, ignore_errors=True)
            self._directory = None
