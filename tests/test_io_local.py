"""Tests for local file sources."""

import io
import tempfile

import pytest

from rangezip.core.model import InvalidRangeError, RemoteConfig
from rangezip.io import ByteSource, AsyncByteSource, open_source, open_source_async
from rangezip.io.http_sync import RemoteRangeSource
from rangezip.io.local import LocalAsyncByteSource, LocalByteSource, open_local_source, open_local_source_async


class TestLocalByteSource:
    """Test synchronous local byte source."""

    def test_basic_reads(self):
        test_data = b"0123456789"

        with tempfile.NamedTemporaryFile() as f:
            f.write(test_data)
            f.flush()

            source = LocalByteSource(f.name)
            assert source.length == 10
            assert source.read_at(0, 5) == b"01234"
            assert source.read_at(5, 5) == b"56789"
            assert source.read_at(2, 3) == b"234"

            assert source.bytes_fetched == 13  # 5 + 5 + 3
            assert source.requests_made == 3
            source.close()

    def test_binary_io_source(self):
        source = LocalByteSource(io.BytesIO(b"0123456789"))
        assert source.read_at(0, 5) == b"01234"
        assert source.read_at(5, 5) == b"56789"
        assert source.bytes_fetched == 10

    def test_bytes_source(self):
        source = LocalByteSource(b"abcdef")
        assert source.length == 6
        assert source.read_at(4, 2) == b"ef"

    def test_open_file_object(self, tmp_path):
        path = tmp_path / "blob.bin"
        path.write_bytes(b"0123456789")
        with open(path, "rb") as f:
            with LocalByteSource(f) as source:
                assert source.read_at(7, 3) == b"789"

    def test_out_of_bounds(self):
        source = LocalByteSource(b"0123456789")
        for offset, length in [(0, 0), (-1, 2), (8, 3), (10, 1)]:
            with pytest.raises(InvalidRangeError):
                source.read_at(offset, length)
        assert source.requests_made == 0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        with LocalByteSource(path) as source:
            assert source.length == 0
            with pytest.raises(InvalidRangeError):
                source.read_at(0, 1)

    def test_satisfies_protocol(self):
        assert isinstance(LocalByteSource(b"x"), ByteSource)


class TestLocalAsyncByteSource:
    """Test asynchronous local byte source."""

    @pytest.mark.asyncio
    async def test_basic_reads(self):
        async with LocalAsyncByteSource(b"0123456789") as source:
            assert source.length == 10
            assert await source.read_at(0, 5) == b"01234"
            assert await source.read_at(3, 2) == b"34"
            assert source.bytes_fetched == 7
            assert source.requests_made == 2
            assert isinstance(source, AsyncByteSource)

    @pytest.mark.asyncio
    async def test_out_of_bounds(self):
        source = await open_local_source_async(b"0123")
        with pytest.raises(InvalidRangeError):
            await source.read_at(2, 3)
        await source.aclose()


class TestFactories:

    def test_open_source_with_path(self, tmp_path):
        path = tmp_path / "blob.bin"
        path.write_bytes(b"0123456789")
        for location in (path, str(path)):
            source = open_source(location)
            assert isinstance(source, LocalByteSource)
            assert source.read_at(0, 3) == b"012"
            source.close()

    def test_open_source_with_url(self, serve_bytes):
        url = serve_bytes(b"0123456789", "/blob")
        source = open_source(url, timeout=2)
        assert isinstance(source, RemoteRangeSource)
        assert source.config.timeout == 2
        assert source.read_at(8, 2) == b"89"

    def test_open_source_with_config(self, serve_bytes):
        url = serve_bytes(b"0123456789", "/blob")
        source = open_source(RemoteConfig(url))
        assert source.length == 10

    def test_open_local_source(self):
        assert isinstance(open_local_source(b"abc"), LocalByteSource)

    @pytest.mark.asyncio
    async def test_open_source_async_with_bytes_io(self):
        source = await open_source_async(io.BytesIO(b"0123456789"))
        assert isinstance(source, LocalAsyncByteSource)
        assert await source.read_at(0, 2) == b"01"
        await source.aclose()
