"""CLI implementation for rangezip."""

import logging
import sys
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional

import typer

from . import open_archive
from .archive import ArchiveEntry, ZipArchive
from .core.model import DEFAULT_TIMEOUT, ArchiveError

app = typer.Typer(add_completion=False, help="Extract a single file from a remote ZIP without downloading the archive.")


def _fail(message: str):
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _copy(archive: ZipArchive, entry: ArchiveEntry, sink: BinaryIO, verbose: bool) -> int:
    if not verbose:
        return archive.extract(entry, sink)
    with typer.progressbar(length=entry.uncompressed_size, label=entry.name, file=sys.stderr) as bar:
        return archive.extract(entry, sink, progress=bar.update)


def _write(archive: ZipArchive, entry: ArchiveEntry, target: str, verbose: bool) -> int:
    """Extract into `target`; a half-written file is removed on any failure."""
    if target == "-":
        return _copy(archive, entry, typer.get_binary_stream("stdout"), verbose)
    path = Path(target)
    sink = open(path, "wb")
    try:
        with sink:
            return _copy(archive, entry, sink, verbose)
    except BaseException:
        path.unlink(missing_ok=True)
        raise


@app.command()
def main(
    url: str = typer.Argument(..., help="URL of the ZIP archive (a local path also works)"),
    entry: Optional[str] = typer.Argument(None, help="Name of the entry to extract"),
    output: Optional[str] = typer.Option(None, "-o", "--output", help="Output file, '-' for stdout [default: entry's base name]"),
    timeout: float = typer.Option(DEFAULT_TIMEOUT, "-t", "--timeout", help="Per-request timeout, in seconds"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Log requests and show progress on stderr"),
    list_entries: bool = typer.Option(False, "-l", "--list", help="List the entries in the archive and exit"),
):
    """Extract ENTRY from the ZIP at URL, fetching only the bytes needed."""
    if verbose:
        logging.basicConfig(level=logging.INFO, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

    if not list_entries and not entry:
        _fail("You must specify the entry to extract (or --list)")

    try:
        archive = open_archive(url, timeout=timeout)
    except (ArchiveError, OSError, ValueError) as e:
        _fail(f"Unable to read archive at {url}: {e}")

    with archive:
        if list_entries:
            for name in archive.names():
                typer.echo(name)
            return

        try:
            item = archive.get(entry)
        except ArchiveError as e:
            _fail(str(e))
        if item.is_dir:
            _fail(f"{entry} is a directory")

        target = output or PurePosixPath(entry).name
        try:
            written = _write(archive, item, target, verbose)
        except (ArchiveError, OSError) as e:
            _fail(f"Unable to extract {entry}: {e}")

    if verbose:
        logging.getLogger(__name__).info("Wrote %d bytes to %s", written, "stdout" if target == "-" else target)


if __name__ == "__main__":
    app()
