"""Base protocols shared by every byte source."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteSource(Protocol):
    """Protocol for synchronous random-access byte sources.

    This is the whole contract an archive reader relies on.
    """

    requests_made: int   # reads issued, including any size probe
    bytes_fetched: int   # running total of bytes returned by read_at

    @property
    def length(self) -> int:
        """Total size in bytes, fixed for the lifetime of the source."""
        ...

    def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`.

        Raise InvalidRangeError if the window is empty or leaves [0, length).
        """
        ...


@runtime_checkable
class AsyncByteSource(Protocol):
    """Protocol for asynchronous byte sources."""

    requests_made: int
    bytes_fetched: int

    @property
    def length(self) -> int:
        ...

    async def read_at(self, offset: int, length: int) -> bytes:
        """Return exactly `length` bytes starting at absolute `offset`."""
        ...
