"""Asynchronous HTTP byte source using httpx."""

import asyncio
import logging
import warnings
from contextlib import contextmanager
from typing import Optional, Union

import httpx

from ..core.model import (
    ByteRange,
    InvalidRangeError,
    RangeMismatchError,
    RangeNotSupportedError,
    RemoteConfig,
    ResourceLengthUnknownError,
    ShortReadError,
    TransportError,
    TransportTimeoutError,
)
from ..core.util import parse_content_range, parse_length, total_from_content_range

logger = logging.getLogger(__name__)


@contextmanager
def _transport_errors(config: RemoteConfig, rng: Optional[ByteRange] = None, received=None):
    """Translate httpx exceptions into RemoteReadError subclasses."""
    where = {"url": config.url}
    if rng is not None:
        where.update(offset=rng.offset, length=rng.length)
    try:
        yield
    except httpx.TimeoutException as e:
        raise TransportTimeoutError(f"No response within {config.timeout:g}s", **where) from e
    except httpx.RemoteProtocolError as e:
        got = len(received) if received is not None else 0
        raise ShortReadError(f"Connection closed after {got} body bytes: {e}", **where) from e
    except httpx.HTTPError as e:
        raise TransportError(f"Request failed: {e}", **where) from e


class AsyncRangeFetcher:
    """Async twin of RangeFetcher: one bounded GET per call, validated."""

    def __init__(self, config: RemoteConfig, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    async def fetch(self, rng: ByteRange, total: Optional[int] = None) -> bytes:
        """GET `rng`, giving up once the whole exchange has taken longer than the timeout."""
        try:
            return await asyncio.wait_for(self._fetch(rng, total), self.config.timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(f"Body not complete within {self.config.timeout:g}s",
                                        offset=rng.offset, length=rng.length, url=self.config.url) from e

    async def _fetch(self, rng: ByteRange, total: Optional[int]) -> bytes:
        headers = self.config.request_headers(Range=rng.header())
        logger.debug("GET %s %s", self.config.url, headers["Range"])
        buf = bytearray()
        with _transport_errors(self.config, rng, buf):
            async with self.client.stream("GET", self.config.url, headers=headers) as response:
                where = dict(offset=rng.offset, length=rng.length, status=response.status_code, url=self.config.url)

                if response.status_code == 200:
                    raise RangeNotSupportedError("Server ignored the Range header", **where)
                if response.status_code == 416:
                    raise InvalidRangeError("Server rejected the range as unsatisfiable", **where)
                if response.status_code != 206:
                    raise TransportError("Unexpected HTTP status for range request", **where)

                content_range = response.headers.get("content-range")
                served = parse_content_range(content_range)
                if served is None:
                    raise RangeMismatchError(f"Missing or malformed Content-Range: {content_range!r}", **where)
                start, end, size = served
                if start > rng.offset or end < rng.end:
                    raise RangeMismatchError(f"Server sent bytes {start}-{end} instead of {rng.offset}-{rng.end}", **where)
                if total is not None and size is not None and size != total:
                    raise RangeMismatchError(f"Resource is now {size} bytes, was {total}", **where)

                skip = rng.offset - start
                wanted = skip + rng.length
                async for chunk in response.aiter_bytes():
                    buf += chunk
                    if len(buf) >= wanted:
                        break
                if len(buf) < wanted:
                    raise ShortReadError(f"Got {max(len(buf) - skip, 0)} of {rng.length} bytes", **where)
                return bytes(buf[skip:wanted])


class AsyncRemoteRangeSource:
    """Asynchronous remote byte source with the same contract as RemoteRangeSource."""

    def __init__(self, config: RemoteConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.url = config.url
        self.bytes_fetched = 0
        self.requests_made = 0
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout, follow_redirects=True)
        self._fetcher = AsyncRangeFetcher(config, self._client)
        self._length: Optional[int] = None

    @property
    def length(self) -> int:
        if self._length is None:
            raise RuntimeError("Source not initialized; use open_http_source_async() or 'async with'")
        return self._length

    async def _ensure_initialized(self):
        """Probe the resource size if not already done."""
        if self._length is None:
            self._length = await self._probe_length()

    async def _probe_length(self) -> int:
        logger.debug("HEAD %s", self.url)
        with _transport_errors(self.config):
            self.requests_made += 1
            head = await self._client.head(self.url, headers=self.config.request_headers())
        if head.status_code < 400:
            size = parse_length(head.headers.get("content-length"))
            if size:
                if head.headers.get("accept-ranges", "").lower() != "bytes":
                    warnings.warn(f"{self.url} does not advertise 'Accept-Ranges: bytes'")
                return size

        probe = ByteRange(0, 1)
        logger.debug("GET %s %s (size probe)", self.url, probe.header())
        with _transport_errors(self.config, probe):
            self.requests_made += 1
            async with self._client.stream("GET", self.url,
                                           headers=self.config.request_headers(Range=probe.header())) as response:
                status = response.status_code
                content_range = response.headers.get("content-range")

        if status == 200:
            raise RangeNotSupportedError("Server ignored the Range header", status=status, url=self.url)
        if status in (206, 416):
            total = total_from_content_range(content_range)
            if total is not None:
                return total
        raise ResourceLengthUnknownError("Server did not report the resource size", status=status, url=self.url)

    async def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`."""
        await self._ensure_initialized()
        rng = ByteRange(offset, length).check(self._length, self.url)
        self.requests_made += 1
        data = await self._fetcher.fetch(rng, self._length)
        self.bytes_fetched += len(data)
        return data

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        await self._ensure_initialized()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


async def open_http_source_async(source: Union[str, RemoteConfig],
                                 client: Optional[httpx.AsyncClient] = None) -> AsyncRemoteRangeSource:
    """Create an asynchronous remote byte source with its size already probed."""
    config = source if isinstance(source, RemoteConfig) else RemoteConfig(source)
    reader = AsyncRemoteRangeSource(config, client)
    try:
        await reader._ensure_initialized()
    except BaseException:
        await reader.aclose()
        raise
    return reader
