"""Local file sources using mmap."""

import asyncio
import io
import mmap
from pathlib import Path
from typing import BinaryIO, Union

from ..core.model import ByteRange

LocalInput = Union[Path, str, bytes, bytearray, BinaryIO]


class LocalByteSource:
    """Synchronous local byte source: a file, an open binary stream or raw bytes."""

    def __init__(self, source: LocalInput):
        self.bytes_fetched = 0
        self.requests_made = 0
        self.name = None
        self._file = None
        self._mmap = None
        self._data = None  # For in-memory sources
        self._should_close_file = False

        if isinstance(source, (bytes, bytearray)):
            self._data = bytes(source)
        elif hasattr(source, 'read'):
            if isinstance(source, io.BytesIO):
                self._data = source.getvalue()
            else:
                self._file = source
                self._map_file()
        else:
            self.name = str(source)
            self._file = open(source, 'rb')
            self._should_close_file = True
            self._map_file()

    def _map_file(self):
        self._file.seek(0, io.SEEK_END)
        if self._file.tell() == 0:
            # mmap refuses empty files
            self._data = b""
            return
        try:
            self._mmap = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        except (io.UnsupportedOperation, OSError):
            # Fallback for streams without a usable fileno()
            self._file.seek(0)
            self._data = self._file.read()

    @property
    def length(self) -> int:
        """Total size of the source in bytes."""
        if self._mmap is not None:
            return len(self._mmap)
        return len(self._data)

    def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`."""
        rng = ByteRange(offset, length).check(self.length, self.name)
        self.requests_made += 1
        source = self._mmap if self._mmap is not None else self._data
        data = source[rng.offset:rng.offset + rng.length]
        self.bytes_fetched += len(data)
        return data

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        """Close mmap and file if we opened it."""
        if self._mmap is not None:
            self._mmap.close()
            self._mmap = None
        if self._should_close_file and self._file is not None:
            self._file.close()
            self._file = None


class LocalAsyncByteSource:
    """Asynchronous local source - thin wrapper around the sync one."""

    def __init__(self, source: LocalInput):
        self._sync_source = LocalByteSource(source)

    @property
    def length(self) -> int:
        return self._sync_source.length

    @property
    def bytes_fetched(self) -> int:
        return self._sync_source.bytes_fetched

    @property
    def requests_made(self) -> int:
        return self._sync_source.requests_made

    async def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`."""
        return await asyncio.to_thread(self._sync_source.read_at, offset, length)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        """Close the underlying sync source."""
        await asyncio.to_thread(self._sync_source.close)


def open_local_source(source: LocalInput) -> LocalByteSource:
    """Create a synchronous local byte source."""
    return LocalByteSource(source)


async def open_local_source_async(source: LocalInput) -> LocalAsyncByteSource:
    """Create an asynchronous local byte source."""
    return LocalAsyncByteSource(source)
