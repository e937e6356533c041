from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import urlparse

DEFAULT_TIMEOUT = 5.0
DEFAULT_USER_AGENT = "rangezip/0.3.0"


@dataclass(slots=True, frozen=True)
class RemoteConfig:
    """Everything a remote source needs to know, passed in explicitly."""

    url: str
    timeout: float = DEFAULT_TIMEOUT      # seconds, per request
    user_agent: str = DEFAULT_USER_AGENT
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if urlparse(self.url).scheme not in ("http", "https"):
            raise ValueError(f"Not an http(s) URL: {self.url!r}")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    def request_headers(self, **extra: str) -> Dict[str, str]:
        # identity keeps offsets in the stored representation
        headers = {"User-Agent": self.user_agent, "Accept-Encoding": "identity"}
        headers.update(self.headers)
        headers.update(extra)
        return headers


@dataclass(slots=True, frozen=True)
class ByteRange:
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Inclusive last byte, as used in HTTP Range headers."""
        return self.offset + self.length - 1

    def header(self) -> str:
        return f"bytes={self.offset}-{self.end}"

    def check(self, total: int, url: str | None = None) -> "ByteRange":
        """Return self, or raise InvalidRangeError if outside [0, total)."""
        if self.offset < 0 or self.length <= 0 or self.offset + self.length > total:
            raise InvalidRangeError(
                f"Range outside resource of {total} bytes",
                offset=self.offset, length=self.length, url=url,
            )
        return self


class RemoteReadError(IOError):
    """Base class for byte-source failures.

    Carries the requested window and the HTTP status (when there was one) so
    callers can decide whether a retry makes sense.
    """

    def __init__(self, message: str, *, offset: int | None = None, length: int | None = None,
                 status: int | None = None, url: str | None = None) -> None:
        self.offset = offset
        self.length = length
        self.status = status
        self.url = url
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        context = []
        if self.offset is not None and self.length is not None:
            context.append(f"offset={self.offset} length={self.length}")
        if self.status is not None:
            context.append(f"status={self.status}")
        if self.url:
            context.append(f"url={self.url}")
        return f"{msg} ({', '.join(context)})" if context else msg


class ResourceLengthUnknownError(RemoteReadError):
    """The total size of the remote object could not be determined."""


class InvalidRangeError(RemoteReadError):
    """Requested window lies outside [0, length) or is empty."""


class RangeNotSupportedError(RemoteReadError):
    """Server ignored the Range header and answered with the whole object."""


class ShortReadError(RemoteReadError):
    """Fewer bytes arrived than were requested."""


class RangeMismatchError(RemoteReadError):
    """Served window does not cover the requested one."""


class TransportTimeoutError(RemoteReadError):
    """Request did not complete within the configured timeout."""


class TransportError(RemoteReadError):
    """Connection failure or unexpected HTTP status."""


class ArchiveError(RuntimeError):
    """Base class for problems found while reading the archive itself."""


class ArchiveFormatError(ArchiveError):
    """Raised when the bytes do not form a readable ZIP structure."""


class EntryNotFoundError(ArchiveError, KeyError):
    """Raised when the archive has no entry with the requested name."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class UnsupportedEntryError(ArchiveError):
    """Raised for encrypted entries and unknown compression methods."""


class ChecksumError(ArchiveError):
    """Raised when extracted data does not match the recorded size or CRC-32."""
