"""Shared fixtures: a range-honouring HTTP handler and an in-memory ZIP builder."""

import io
import random
import zipfile

import pytest
from pytest_httpserver import HTTPServer
from werkzeug import Request, Response


def random_bytes(n: int, seed: int = 0) -> bytes:
    return random.Random(seed).randbytes(n)


def build_zip(entries, comment: bytes = b"") -> bytes:
    """Build a ZIP from (name, data, compress_type) tuples."""
    bio = io.BytesIO()
    with zipfile.ZipFile(bio, "w") as zf:
        for name, data, method in entries:
            zf.writestr(name, data, compress_type=method)
        zf.comment = comment
    return bio.getvalue()


def range_handler(data: bytes, *, head_length: bool = True, accept_ranges: str = "bytes", honour_ranges: bool = True):
    """Handler that serves `data` and honours single `bytes=start-end` ranges.

    With honour_ranges=False it behaves like a server that ignores Range.
    """

    def handle(request: Request) -> Response:
        if request.method == "HEAD":
            headers = {"Accept-Ranges": accept_ranges}
            if head_length:
                headers["Content-Length"] = str(len(data))
            return Response(status=200, headers=headers)

        range_header = request.headers.get("Range")
        if not range_header or not honour_ranges:
            return Response(data, status=200)

        start, end = map(int, range_header.replace("bytes=", "").split("-"))
        if start >= len(data):
            return Response(status=416, headers={"Content-Range": f"bytes */{len(data)}"})
        end = min(end, len(data) - 1)
        return Response(
            data[start:end + 1],
            status=206,
            headers={"Content-Range": f"bytes {start}-{end}/{len(data)}", "Accept-Ranges": "bytes"},
        )

    return handle


def range_headers(httpserver):
    """(start, end) of every ranged request the server saw."""
    seen = []
    for request, _ in httpserver.log:
        value = request.headers.get("Range")
        if value:
            start, end = map(int, value.replace("bytes=", "").split("-"))
            seen.append((start, end))
    return seen


@pytest.fixture
def serve_bytes(httpserver):
    """Register `data` under `path` on the test server and return its URL."""

    def serve(data: bytes, path: str = "/archive.zip", **kwargs) -> str:
        httpserver.expect_request(path).respond_with_handler(range_handler(data, **kwargs))
        return httpserver.url_for(path)

    return serve


@pytest.fixture(scope="session")
def make_httpserver():
    """Threaded test server, so a handler still sleeping from a timeout test
    does not block requests made by the tests that follow it."""
    server = HTTPServer(threaded=True)
    server.start()
    yield server
    server.clear()
    if server.is_running():
        server.stop()
