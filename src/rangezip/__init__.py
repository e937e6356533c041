"""rangezip - pull single entries out of remote ZIP archives with HTTP range requests."""

from .core.model import (                                             # re-export
    RemoteConfig, ByteRange,
    RemoteReadError, ResourceLengthUnknownError, InvalidRangeError, RangeNotSupportedError,
    ShortReadError, RangeMismatchError, TransportTimeoutError, TransportError,
    ArchiveError, ArchiveFormatError, EntryNotFoundError, UnsupportedEntryError, ChecksumError,
)
from .core.model import DEFAULT_TIMEOUT
from .io import open_source, open_source_async
from .archive import ArchiveEntry, ZipArchive, AsyncZipArchive

__version__ = "0.3.0"


def open_archive(source, *, timeout: float = DEFAULT_TIMEOUT) -> ZipArchive:
    """Open a ZIP from a URL, path or binary file object and read its directory."""
    byte_source = open_source(source, timeout=timeout)
    try:
        return ZipArchive(byte_source)
    except BaseException:
        byte_source.close()
        raise


async def open_archive_async(source, *, timeout: float = DEFAULT_TIMEOUT) -> AsyncZipArchive:
    """Async version of open_archive."""
    byte_source = await open_source_async(source, timeout=timeout)
    try:
        return await AsyncZipArchive.open(byte_source)
    except BaseException:
        await byte_source.aclose()
        raise


__all__ = [
    "open_archive", "open_archive_async",
    "ZipArchive", "AsyncZipArchive", "ArchiveEntry",
    "RemoteConfig", "ByteRange",
    "RemoteReadError", "ResourceLengthUnknownError", "InvalidRangeError", "RangeNotSupportedError",
    "ShortReadError", "RangeMismatchError", "TransportTimeoutError", "TransportError",
    "ArchiveError", "ArchiveFormatError", "EntryNotFoundError", "UnsupportedEntryError", "ChecksumError",
]
