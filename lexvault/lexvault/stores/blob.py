"""Blob storage for uploaded document bytes."""

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class BlobStoreError(Exception):
    """The blob store could not complete an operation."""


class BlobNotFoundError(BlobStoreError):
    """No blob exists under the requested key."""


@dataclass
class BlobStream:
    content_length: int
    content_type: str
    chunks: AsyncIterator[bytes]


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> None: ...

    async def get(self, key: str) -> BlobStream: ...

    async def delete(self, key: str) -> None: ...

    async def exists(self, key: str) -> bool: ...


class LocalBlobStore:
    """Filesystem-backed blob store.

    Blobs live under ``root`` at their key path. Each blob has a small JSON
    sidecar (``<blob>.meta``) recording its content type. Writes go to a temp
    file first and are renamed into place, so readers never see partial blobs.
    """

    def __init__(self, root: Path | str, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.root = Path(root).resolve()
        self.chunk_size = chunk_size
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root) or path == self.root:
            raise BlobStoreError(f"Invalid blob key: {key!r}")
        return path

    @staticmethod
    def _meta_path(path: Path) -> Path:
        return path.with_name(path.name + ".meta")

    def _write(self, path: Path, data: bytes, content_type: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            tmp.write_bytes(data)
            self._meta_path(path).write_text(json.dumps({"content_type": content_type}))
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, data, content_type)
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob {key}: {e}") from e
        logger.info(f"Stored blob {key} ({len(data)} bytes, {content_type})")

    def _stat(self, path: Path) -> tuple[int, str]:
        size = path.stat().st_size
        content_type = "application/octet-stream"
        meta_path = self._meta_path(path)
        if meta_path.exists():
            content_type = json.loads(meta_path.read_text()).get("content_type", content_type)
        return size, content_type

    async def _iter_chunks(self, path: Path) -> AsyncIterator[bytes]:
        handle = await asyncio.to_thread(open, path, "rb")
        try:
            while chunk := await asyncio.to_thread(handle.read, self.chunk_size):
                yield chunk
        finally:
            await asyncio.to_thread(handle.close)

    async def get(self, key: str) -> BlobStream:
        path = self._path(key)
        try:
            size, content_type = await asyncio.to_thread(self._stat, path)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob {key} not found") from e
        except (OSError, ValueError) as e:
            raise BlobStoreError(f"Failed to open blob {key}: {e}") from e
        return BlobStream(
            content_length=size,
            content_type=content_type,
            chunks=self._iter_chunks(path),
        )

    def _remove(self, path: Path) -> None:
        path.unlink(missing_ok=True)
        self._meta_path(path).unlink(missing_ok=True)

    async def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing blob is not an error."""
        path = self._path(key)
        try:
            await asyncio.to_thread(self._remove, path)
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {key}: {e}") from e
        logger.info(f"Deleted blob {key}")

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).is_file)
