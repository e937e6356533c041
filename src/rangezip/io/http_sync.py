"""Synchronous HTTP byte source using requests."""

import logging
import threading
import time
import warnings
from contextlib import contextmanager
from typing import Optional, Union

import requests
from urllib3.exceptions import ReadTimeoutError

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

_BODY_CHUNK = 64 * 1024

# Module-level session for connection pooling
_session = None


def _get_session():
    """Get or create the global requests session."""
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


def _is_timeout(exc: requests.RequestException) -> bool:
    # iter_content re-raises read timeouts as ConnectionError(ReadTimeoutError)
    if isinstance(exc, requests.Timeout):
        return True
    return bool(exc.args) and isinstance(exc.args[0], ReadTimeoutError)


class _Deadline:
    """Cuts off a streamed body still arriving `timeout` seconds after the request began.

    requests only bounds each socket read, so a server dripping bytes could
    otherwise hold a read open indefinitely.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        self.expires = time.monotonic() + timeout
        self.expired = False
        self._timer: Optional[threading.Timer] = None

    def arm(self, response: requests.Response):
        self._timer = threading.Timer(max(self.expires - time.monotonic(), 0), self._expire, args=(response,))
        self._timer.daemon = True
        self._timer.start()

    def _expire(self, response: requests.Response):
        self.expired = True
        try:
            # unblocks a recv that is waiting on the socket
            response.raw.shutdown()
        except OSError as e:
            logger.debug("Socket already closed at deadline: %s", e)

    def passed(self) -> bool:
        return self.expired or time.monotonic() >= self.expires

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()


@contextmanager
def _transport_errors(config: RemoteConfig, rng: Optional[ByteRange] = None, received=None,
                      deadline: Optional[_Deadline] = None):
    """Translate requests exceptions into RemoteReadError subclasses."""
    where = {"url": config.url}
    if rng is not None:
        where.update(offset=rng.offset, length=rng.length)
    try:
        yield
    except requests.RequestException as e:
        if _is_timeout(e) or (deadline is not None and deadline.expired):
            raise TransportTimeoutError(f"No response within {config.timeout:g}s", **where) from e
        if isinstance(e, requests.exceptions.ChunkedEncodingError):
            got = len(received) if received is not None else 0
            raise ShortReadError(f"Connection closed after {got} body bytes: {e}", **where) from e
        raise TransportError(f"Request failed: {e}", **where) from e


class RangeFetcher:
    """Performs one bounded GET per call and validates the reply.

    Exactly the requested bytes come back, or a typed error does.
    Nothing is retried here.
    """

    def __init__(self, config: RemoteConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or _get_session()

    def fetch(self, rng: ByteRange, total: Optional[int] = None) -> bytes:
        """GET `rng`. When `total` is given, the reply must describe a resource of that size."""
        headers = self.config.request_headers(Range=rng.header())
        logger.debug("GET %s %s", self.config.url, headers["Range"])
        buf = bytearray()
        deadline = _Deadline(self.config.timeout)
        with _transport_errors(self.config, rng, buf, deadline):
            with self.session.get(self.config.url, headers=headers,
                                  timeout=self.config.timeout, stream=True) as response:
                deadline.arm(response)
                try:
                    return self._read_window(response, rng, buf, total, deadline)
                finally:
                    deadline.cancel()

    def _read_window(self, response: requests.Response, rng: ByteRange, buf: bytearray,
                     total: Optional[int], deadline: _Deadline) -> bytes:
        where = dict(offset=rng.offset, length=rng.length, status=response.status_code, url=self.config.url)

        if response.status_code == 200:
            raise RangeNotSupportedError("Server ignored the Range header", **where)
        if response.status_code == 416:
            raise InvalidRangeError("Server rejected the range as unsatisfiable", **where)
        if response.status_code != 206:
            raise TransportError("Unexpected HTTP status for range request", **where)

        content_range = response.headers.get("Content-Range")
        served = parse_content_range(content_range)
        if served is None:
            raise RangeMismatchError(f"Missing or malformed Content-Range: {content_range!r}", **where)
        start, end, size = served
        if start > rng.offset or end < rng.end:
            raise RangeMismatchError(f"Server sent bytes {start}-{end} instead of {rng.offset}-{rng.end}", **where)
        if total is not None and size is not None and size != total:
            raise RangeMismatchError(f"Resource is now {size} bytes, was {total}", **where)

        # a wider window than asked for is fine as long as it covers ours
        skip = rng.offset - start
        wanted = skip + rng.length
        for chunk in response.iter_content(chunk_size=_BODY_CHUNK):
            buf += chunk
            if len(buf) >= wanted:
                break
            if deadline.passed():
                break
        if len(buf) < wanted:
            if deadline.passed():
                raise TransportTimeoutError(f"Body not complete within {self.config.timeout:g}s", **where)
            raise ShortReadError(f"Got {max(len(buf) - skip, 0)} of {rng.length} bytes", **where)
        return bytes(buf[skip:wanted])


class RemoteRangeSource:
    """A remote HTTP object seen as a fixed-length, randomly addressable byte source.

    The size is probed once at construction. Every read_at is exactly one
    range request; there is no cache and no read-ahead.
    """

    def __init__(self, config: RemoteConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.url = config.url
        self.bytes_fetched = 0
        self.requests_made = 0
        self._fetcher = RangeFetcher(config, session)
        self._length = self._probe_length()

    @property
    def length(self) -> int:
        return self._length

    def _probe_length(self) -> int:
        """HEAD first; fall back to a one-byte range GET if HEAD gives no size."""
        session = self._fetcher.session
        timeout = self.config.timeout

        logger.debug("HEAD %s", self.url)
        with _transport_errors(self.config):
            self.requests_made += 1
            head = session.head(self.url, headers=self.config.request_headers(),
                                timeout=timeout, allow_redirects=True)
        if head.status_code < 400:
            size = parse_length(head.headers.get("Content-Length"))
            if size:
                if head.headers.get("Accept-Ranges", "").lower() != "bytes":
                    warnings.warn(f"{self.url} does not advertise 'Accept-Ranges: bytes'")
                return size

        probe = ByteRange(0, 1)
        logger.debug("GET %s %s (size probe)", self.url, probe.header())
        with _transport_errors(self.config, probe):
            self.requests_made += 1
            with session.get(self.url, headers=self.config.request_headers(Range=probe.header()),
                             timeout=timeout, stream=True) as response:
                status = response.status_code
                content_range = response.headers.get("Content-Range")

        if status == 200:
            raise RangeNotSupportedError("Server ignored the Range header", status=status, url=self.url)
        if status in (206, 416):
            total = total_from_content_range(content_range)
            if total is not None:
                return total
        raise ResourceLengthUnknownError("Server did not report the resource size", status=status, url=self.url)

    def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`."""
        rng = ByteRange(offset, length).check(self._length, self.url)
        self.requests_made += 1
        data = self._fetcher.fetch(rng, self._length)
        self.bytes_fetched += len(data)
        return data

    def close(self):
        # Session is shared, don't close it here
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def open_http_source(source: Union[str, RemoteConfig], session: Optional[requests.Session] = None) -> RemoteRangeSource:
    """Create a synchronous remote byte source from a URL or a RemoteConfig."""
    config = source if isinstance(source, RemoteConfig) else RemoteConfig(source)
    return RemoteRangeSource(config, session)
