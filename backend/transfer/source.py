"""
Readable file sources and chunk slicing.

The sender reads a source one bounded slice at a time; nothing here
holds the whole file in memory except `BytesSource` itself.
"""

import asyncio
import mimetypes
import os
from abc import ABC, abstractmethod
from typing import Iterator

from config import CHUNK_SIZE
from errors import InvalidFile, ReadError


def iter_slices(total_size: int, chunk_size: int = CHUNK_SIZE, start: int = 0) -> Iterator[tuple[int, int]]:
    """Yield (offset, length) covering [start, total_size) with no gaps or overlap."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    offset = start
    while offset < total_size:
        length = min(chunk_size, total_size - offset)
        yield offset, length
        offset += length


def split_chunks(data: bytes, chunk_size: int = CHUNK_SIZE) -> list[bytes]:
    return [data[offset:offset + length] for offset, length in iter_slices(len(data), chunk_size)]


class FileSource(ABC):
    """A bounded, readable file handle."""

    name: str
    size: int
    mime_type: str

    def validate(self) -> None:
        """Raise InvalidFile if the source is empty or unreadable."""
        if self.size <= 0:
            raise InvalidFile(f"File is empty or invalid: {self.name}")

    @abstractmethod
    async def read(self, offset: int, length: int) -> bytes:
        """Read up to `length` bytes at `offset`. Raises ReadError on failure."""


class BytesSource(FileSource):
    """An in-memory file."""

    def __init__(self, name: str, data: bytes, mime_type: str = "application/octet-stream") -> None:
        self.name = name
        self._data = bytes(data)
        self.size = len(self._data)
        self.mime_type = mime_type

    async def read(self, offset: int, length: int) -> bytes:
        return self._data[offset:offset + length]


class PathSource(FileSource):
    """A file on local disk, read off the event loop."""

    def __init__(self, path: str, name: str | None = None, mime_type: str | None = None) -> None:
        self.path = path
        self.name = name or os.path.basename(path)
        self.mime_type = mime_type or mimetypes.guess_type(path)[0] or "application/octet-stream"
        try:
            self.size = os.path.getsize(path)
        except OSError:
            self.size = 0

    def validate(self) -> None:
        if not os.path.isfile(self.path) or not os.access(self.path, os.R_OK):
            raise InvalidFile(f"File is not readable: {self.path}")
        super().validate()

    async def read(self, offset: int, length: int) -> bytes:
        try:
            return await asyncio.to_thread(self._read_sync, offset, length)
        except OSError as e:
            raise ReadError(f"Error reading {self.path}: {e}") from e

    def _read_sync(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)
