from __future__ import annotations

import logging
from typing import BinaryIO, Callable, Dict, List, Optional, Union

from ..core.model import ArchiveFormatError, EntryNotFoundError
from ..core.util import format_size
from ..io.base import AsyncByteSource, ByteSource
from .records import (
    LOCAL,
    TAIL_SIZE,
    ArchiveEntry,
    DirectoryLocation,
    EntryDecoder,
    data_windows,
    local_header_length,
    locate_directory,
    parse_central_directory,
)

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 4 * 1024 * 1024

Progress = Callable[[int], None]


def _emit(sink: BinaryIO, data: bytes, progress: Optional[Progress]) -> int:
    if data:
        sink.write(data)
        if progress is not None:
            progress(len(data))
    return len(data)


class _Directory:
    """Name lookup shared by the sync and async archives."""

    entries: List[ArchiveEntry]
    _by_name: Dict[str, ArchiveEntry]

    def _index(self, entries: List[ArchiveEntry]) -> None:
        self.entries = entries
        self._by_name = {}
        for entry in entries:
            # first record wins for duplicated names
            self._by_name.setdefault(entry.name, entry)

    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def get(self, name: str) -> ArchiveEntry:
        try:
            return self._by_name[name]
        except KeyError:
            raise EntryNotFoundError(f"No entry named {name!r} in archive") from None

    def _resolve(self, entry: Union[str, ArchiveEntry]) -> ArchiveEntry:
        return self.get(entry) if isinstance(entry, str) else entry

    @staticmethod
    def _tail_window(total: int) -> tuple[int, int]:
        tail_len = min(total, TAIL_SIZE)
        if tail_len == 0:
            raise ArchiveFormatError("Empty source; not a ZIP archive")
        return total - tail_len, tail_len

    @staticmethod
    def _check_data_window(entry: ArchiveEntry, data_offset: int, total: int) -> None:
        if data_offset + entry.compressed_size > total:
            raise ArchiveFormatError(
                f"{entry.name}: data ({entry.compressed_size} bytes at {data_offset}) runs past end of archive"
            )

    @staticmethod
    def _check_header_window(entry: ArchiveEntry, total: int) -> None:
        if entry.header_offset + LOCAL.size > total:
            raise ArchiveFormatError(f"{entry.name}: local header offset {entry.header_offset} is past end of archive")


class ZipArchive(_Directory):
    """Reads the directory of a ZIP held by any ByteSource and extracts single entries.

    Only the tail, the central directory (when the tail does not already hold
    it), one local header and the entry's data are ever read.
    """

    def __init__(self, source: ByteSource):
        self.source = source
        self.location = self._locate()
        self._index(self._read_directory(self.location))
        logger.info("Loaded %d entries from %s archive", len(self.entries), format_size(source.length))

    def _locate(self) -> DirectoryLocation:
        self._tail_offset, tail_len = self._tail_window(self.source.length)
        self._tail = self.source.read_at(self._tail_offset, tail_len)
        return locate_directory(self._tail, self._tail_offset)

    def _read_directory(self, loc: DirectoryLocation) -> List[ArchiveEntry]:
        if loc.size == 0:
            data = b""
        elif loc.start >= self._tail_offset:
            rel = loc.start - self._tail_offset
            data = self._tail[rel:rel + loc.size]
        else:
            data = self.source.read_at(loc.start, loc.size)
        self._tail = None
        return parse_central_directory(data, loc.count, loc.concat)

    def data_offset(self, entry: ArchiveEntry) -> int:
        """Absolute position of the entry's compressed data (one small read)."""
        self._check_header_window(entry, self.source.length)
        header = self.source.read_at(entry.header_offset, LOCAL.size)
        return entry.header_offset + local_header_length(header)

    def extract(self, entry: Union[str, ArchiveEntry], sink: BinaryIO, *,
                progress: Optional[Progress] = None, read_size: int = DEFAULT_READ_SIZE) -> int:
        """Write the content of `entry` to `sink`; return the number of bytes written.

        `progress` is called with the size of every piece written.
        """
        entry = self._resolve(entry)
        decoder = EntryDecoder(entry)
        if entry.compressed_size == 0:
            decoder.finish()
            return 0

        start = self.data_offset(entry)
        self._check_data_window(entry, start, self.source.length)
        written = 0
        for offset, length in data_windows(start, entry.compressed_size, read_size):
            for piece in decoder.feed(self.source.read_at(offset, length)):
                written += _emit(sink, piece, progress)
        written += _emit(sink, decoder.finish(), progress)
        logger.info("Extracted %s (%s) using %d requests", entry.name, format_size(written),
                    self.source.requests_made)
        return written

    def close(self):
        close = getattr(self.source, "close", None)
        if close is not None:
            close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class AsyncZipArchive(_Directory):
    """Async twin of ZipArchive. Build it with ``await AsyncZipArchive.open(source)``."""

    def __init__(self, source: AsyncByteSource, entries: List[ArchiveEntry], location: DirectoryLocation):
        self.source = source
        self.location = location
        self._index(entries)

    @classmethod
    async def open(cls, source: AsyncByteSource) -> "AsyncZipArchive":
        tail_offset, tail_len = cls._tail_window(source.length)
        tail = await source.read_at(tail_offset, tail_len)
        loc = locate_directory(tail, tail_offset)
        if loc.size == 0:
            data = b""
        elif loc.start >= tail_offset:
            rel = loc.start - tail_offset
            data = tail[rel:rel + loc.size]
        else:
            data = await source.read_at(loc.start, loc.size)
        entries = parse_central_directory(data, loc.count, loc.concat)
        logger.info("Loaded %d entries from %s archive", len(entries), format_size(source.length))
        return cls(source, entries, loc)

    async def data_offset(self, entry: ArchiveEntry) -> int:
        self._check_header_window(entry, self.source.length)
        header = await self.source.read_at(entry.header_offset, LOCAL.size)
        return entry.header_offset + local_header_length(header)

    async def extract(self, entry: Union[str, ArchiveEntry], sink: BinaryIO, *,
                      progress: Optional[Progress] = None, read_size: int = DEFAULT_READ_SIZE) -> int:
        entry = self._resolve(entry)
        decoder = EntryDecoder(entry)
        if entry.compressed_size == 0:
            decoder.finish()
            return 0

        start = await self.data_offset(entry)
        self._check_data_window(entry, start, self.source.length)
        written = 0
        for offset, length in data_windows(start, entry.compressed_size, read_size):
            for piece in decoder.feed(await self.source.read_at(offset, length)):
                written += _emit(sink, piece, progress)
        written += _emit(sink, decoder.finish(), progress)
        logger.info("Extracted %s (%s) using %d requests", entry.name, format_size(written),
                    self.source.requests_made)
        return written

    async def aclose(self):
        aclose = getattr(self.source, "aclose", None)
        if aclose is not None:
            await aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
