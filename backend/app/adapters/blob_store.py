"""Blob store adapters - raw uploaded bytes addressed by storage key."""

import asyncio
from pathlib import Path
from typing import Protocol

from backend.app.config import Settings


class BlobNotFoundError(KeyError):
    """No blob stored under the requested key."""

    pass


class BlobStore(Protocol):
    """Protocol for blob store implementations."""

    async def put(self, key: str, data: bytes) -> str:
        """Store bytes under key and return a URL for them."""
        ...

    async def get(self, key: str) -> bytes:
        """Return bytes stored under key.

        Raises:
            BlobNotFoundError: If nothing is stored under key
        """
        ...


class InMemoryBlobStore:
    """In-memory implementation of BlobStore (tests and local runs)."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> str:
        """Store bytes under key."""
        self._blobs[key] = data
        return f"memory://{key}"

    async def get(self, key: str) -> bytes:
        """Return stored bytes."""
        try:
            return self._blobs[key]
        except KeyError as e:
            raise BlobNotFoundError(key) from e


class LocalBlobStore:
    """Filesystem-backed BlobStore rooted at a directory."""

    def __init__(self, root: str | Path, base_url: str = "file://") -> None:
        self._root = Path(root).resolve()
        self._base_url = base_url

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        # Keys must stay inside the root
        if not path.is_relative_to(self._root):
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes) -> str:
        """Write bytes to <root>/<key>."""
        path = self._path_for(key)
        await asyncio.to_thread(self._write, path, data)
        return f"{self._base_url}{path}"

    async def get(self, key: str) -> bytes:
        """Read bytes from <root>/<key>."""
        path = self._path_for(key)
        if not path.is_file():
            raise BlobNotFoundError(key)
        return await asyncio.to_thread(path.read_bytes)


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the configured blob store."""
    return LocalBlobStore(settings.blob_store_dir, base_url=settings.blob_public_base_url)
