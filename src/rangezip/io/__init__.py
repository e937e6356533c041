"""I/O layer for rangezip - delivers exact byte windows to the archive reader."""

# Re-export these for import convenience
from .base import ByteSource, AsyncByteSource
from .local import LocalByteSource, open_local_source, open_local_source_async
from .http_sync import RangeFetcher, RemoteRangeSource, open_http_source
from .http_async import AsyncRangeFetcher, AsyncRemoteRangeSource, open_http_source_async
from ..core.model import DEFAULT_TIMEOUT, RemoteConfig


def _is_url(source) -> bool:
    return isinstance(source, str) and source.startswith(('http://', 'https://'))


def open_source(source, *, timeout: float = DEFAULT_TIMEOUT):
    """Factory function to create the appropriate ByteSource for a location."""
    if isinstance(source, RemoteConfig):
        return open_http_source(source)
    if _is_url(source):
        return open_http_source(RemoteConfig(source, timeout=timeout))
    return open_local_source(source)


async def open_source_async(source, *, timeout: float = DEFAULT_TIMEOUT):
    """Factory function to create the appropriate AsyncByteSource for a location."""
    if isinstance(source, RemoteConfig):
        return await open_http_source_async(source)
    if _is_url(source):
        return await open_http_source_async(RemoteConfig(source, timeout=timeout))
    return await open_local_source_async(source)
