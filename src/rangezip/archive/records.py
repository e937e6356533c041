"""Pure parsers for the ZIP records needed to pull a single entry.

Nothing here does I/O; readers hand in the bytes they fetched.
"""

from __future__ import annotations

import bz2
import struct
import zlib
from dataclasses import dataclass
from typing import Iterator, List, Tuple
from zipfile import ZIP_BZIP2, ZIP_DEFLATED, ZIP_STORED

from ..core.model import ArchiveFormatError, ChecksumError, UnsupportedEntryError

EOCD_SIG = b"PK\x05\x06"
EOCD = struct.Struct("<4s4H2LH")
ZIP64_LOCATOR_SIG = b"PK\x06\x07"
ZIP64_LOCATOR = struct.Struct("<4sLQL")
ZIP64_EOCD_SIG = b"PK\x06\x06"
ZIP64_EOCD = struct.Struct("<4sQ2H2L4Q")
CENTRAL_SIG = b"PK\x01\x02"
CENTRAL = struct.Struct("<4s4B4HL2L5H2L")
LOCAL_SIG = b"PK\x03\x04"
LOCAL = struct.Struct("<4s2B4HL2L2H")

MAX_COMMENT = 0xFFFF
# EOCD + longest comment, plus the ZIP64 locator and record sitting in front of it
TAIL_SIZE = EOCD.size + MAX_COMMENT + ZIP64_LOCATOR.size + ZIP64_EOCD.size

FLAG_ENCRYPTED = 0x1
FLAG_UTF8 = 0x800
ZIP64_EXTRA_ID = 0x0001


@dataclass(slots=True, frozen=True)
class ArchiveEntry:
    """One central-directory record. Offsets are absolute within the source."""

    name: str
    compressed_size: int
    uncompressed_size: int
    compress_type: int
    header_offset: int
    crc: int = 0
    flags: int = 0
    date_time: Tuple[int, int, int, int, int, int] = (1980, 1, 1, 0, 0, 0)

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")

    @property
    def is_encrypted(self) -> bool:
        return bool(self.flags & FLAG_ENCRYPTED)


@dataclass(slots=True, frozen=True)
class DirectoryLocation:
    count: int
    size: int
    start: int    # absolute position of the first central record
    concat: int   # bytes prepended in front of the archive proper
    comment: bytes = b""


def _find_eocd(tail: bytes) -> Tuple[int, tuple]:
    # A record whose comment ends exactly at EOF wins; otherwise accept the
    # last one that fits, tolerating trailing garbage.
    fallback = None
    pos = tail.rfind(EOCD_SIG)
    while pos >= 0:
        if pos + EOCD.size <= len(tail):
            fields = EOCD.unpack_from(tail, pos)
            end = pos + EOCD.size + fields[7]
            if end == len(tail):
                return pos, fields
            if end < len(tail) and fallback is None:
                fallback = pos, fields
        pos = tail.rfind(EOCD_SIG, 0, pos)
    if fallback is not None:
        return fallback
    raise ArchiveFormatError("End of central directory record not found; not a ZIP archive?")


def locate_directory(tail: bytes, tail_offset: int) -> DirectoryLocation:
    """Find the central directory from the last bytes of the source.

    `tail` must be the final bytes of the resource, starting at `tail_offset`.
    """
    pos, (_, disk, cd_disk, _, count, size, offset, comment_len) = _find_eocd(tail)
    comment = tail[pos + EOCD.size:pos + EOCD.size + comment_len]
    if disk or cd_disk:
        raise ArchiveFormatError("Multi-disk archives are not supported")
    directory_end = tail_offset + pos

    loc_pos = pos - ZIP64_LOCATOR.size
    if loc_pos >= 0 and tail[loc_pos:loc_pos + 4] == ZIP64_LOCATOR_SIG:
        rec_pos = loc_pos - ZIP64_EOCD.size
        if rec_pos < 0 or tail[rec_pos:rec_pos + 4] != ZIP64_EOCD_SIG:
            raise ArchiveFormatError("ZIP64 locator present but ZIP64 end record is missing")
        fields = ZIP64_EOCD.unpack_from(tail, rec_pos)
        count, size, offset = fields[7], fields[8], fields[9]
        directory_end = tail_offset + rec_pos

    start = directory_end - size
    concat = start - offset
    if start < 0 or concat < 0:
        raise ArchiveFormatError(f"Central directory ({size} bytes at {offset}) lies outside the archive")
    return DirectoryLocation(count, size, start, concat, comment)


def _dos_date_time(d: int, t: int) -> Tuple[int, int, int, int, int, int]:
    return ((d >> 9) + 1980, (d >> 5) & 0xF, d & 0x1F, t >> 11, (t >> 5) & 0x3F, (t & 0x1F) * 2)


def _zip64_values(extra: bytes, usize: int, csize: int, offset: int) -> Tuple[int, int, int]:
    """Replace saturated 32-bit fields with the values from the ZIP64 extra field."""
    i = 0
    while i + 4 <= len(extra):
        tag, length = struct.unpack_from("<2H", extra, i)
        if tag == ZIP64_EXTRA_ID:
            data = extra[i + 4:i + 4 + length]
            values = [v for (v,) in struct.iter_unpack("<Q", data[:len(data) // 8 * 8])]
            try:
                if usize == 0xFFFFFFFF:
                    usize = values.pop(0)
                if csize == 0xFFFFFFFF:
                    csize = values.pop(0)
                if offset == 0xFFFFFFFF:
                    offset = values.pop(0)
            except IndexError:
                raise ArchiveFormatError("Truncated ZIP64 extra field")
            break
        i += 4 + length
    return usize, csize, offset


def parse_central_directory(data: bytes, count: int, concat: int = 0) -> List[ArchiveEntry]:
    """Decode `count` central-directory records from `data`."""
    entries = []
    pos = 0
    for _ in range(count):
        if pos + CENTRAL.size > len(data):
            raise ArchiveFormatError(f"Central directory truncated after {len(entries)} entries")
        (sig, _, _, _, _, flags, method, mtime, mdate, crc, csize, usize,
         name_len, extra_len, comment_len, _, _, _, offset) = CENTRAL.unpack_from(data, pos)
        if sig != CENTRAL_SIG:
            raise ArchiveFormatError(f"Bad central directory signature at record {len(entries)}")
        pos += CENTRAL.size
        raw_name = data[pos:pos + name_len]
        extra = data[pos + name_len:pos + name_len + extra_len]
        pos += name_len + extra_len + comment_len

        try:
            name = raw_name.decode("utf-8" if flags & FLAG_UTF8 else "cp437")
        except UnicodeDecodeError as e:
            raise ArchiveFormatError(f"Entry {len(entries)} has an undecodable UTF-8 name: {raw_name!r}") from e
        usize, csize, offset = _zip64_values(extra, usize, csize, offset)
        entries.append(ArchiveEntry(
            name=name,
            compressed_size=csize,
            uncompressed_size=usize,
            compress_type=method,
            header_offset=offset + concat,
            crc=crc,
            flags=flags,
            date_time=_dos_date_time(mdate, mtime),
        ))
    return entries


def local_header_length(header: bytes) -> int:
    """Size of the local header (fixed part, name and extra field)."""
    if len(header) < LOCAL.size or header[:4] != LOCAL_SIG:
        raise ArchiveFormatError("Bad local file header signature")
    fields = LOCAL.unpack_from(header)
    return LOCAL.size + fields[10] + fields[11]


def data_windows(start: int, size: int, read_size: int) -> Iterator[Tuple[int, int]]:
    """Split [start, start+size) into (offset, length) reads of at most read_size."""
    if read_size <= 0:
        raise ValueError("read_size must be > 0")
    end = start + size
    while start < end:
        length = min(read_size, end - start)
        yield start, length
        start += length


# Upper bound on the size of one decompressed piece handed to the sink
MAX_PIECE = 1024 * 1024


class _Stored:
    def pieces(self, data: bytes) -> Iterator[bytes]:
        for i in range(0, len(data), MAX_PIECE):
            yield data[i:i + MAX_PIECE]


class _Inflate:
    def __init__(self):
        self._d = zlib.decompressobj(-15)

    def pieces(self, data: bytes) -> Iterator[bytes]:
        while data:
            out = self._d.decompress(data, MAX_PIECE)
            data = self._d.unconsumed_tail
            if out:
                yield out

    def flush(self) -> bytes:
        return self._d.flush()


class _Bunzip:
    def __init__(self):
        self._d = bz2.BZ2Decompressor()

    def pieces(self, data: bytes) -> Iterator[bytes]:
        out = self._d.decompress(data, MAX_PIECE)
        while True:
            if out:
                yield out
            if self._d.eof or self._d.needs_input:
                return
            out = self._d.decompress(b"", MAX_PIECE)


class EntryDecoder:
    """Turns the raw data windows of an entry into its content, checking size and CRC.

    Output comes in pieces of at most MAX_PIECE bytes, however well the
    entry compresses.
    """

    def __init__(self, entry: ArchiveEntry):
        if entry.is_encrypted:
            raise UnsupportedEntryError(f"{entry.name}: encrypted entries are not supported")
        if entry.compress_type == ZIP_STORED:
            self._codec = _Stored()
        elif entry.compress_type == ZIP_DEFLATED:
            self._codec = _Inflate()
        elif entry.compress_type == ZIP_BZIP2:
            self._codec = _Bunzip()
        else:
            raise UnsupportedEntryError(f"{entry.name}: compression method {entry.compress_type} is not supported")
        self.entry = entry
        self.size = 0
        self.crc = 0

    def _account(self, data: bytes) -> bytes:
        self.size += len(data)
        self.crc = zlib.crc32(data, self.crc)
        return data

    def feed(self, chunk: bytes) -> Iterator[bytes]:
        """Decompress one raw window, yielding the content it unlocks."""
        try:
            for piece in self._codec.pieces(chunk):
                yield self._account(piece)
        except (zlib.error, OSError, EOFError) as e:
            raise ArchiveFormatError(f"{self.entry.name}: corrupt compressed data: {e}") from e

    def finish(self) -> bytes:
        """Flush the codec and verify the result against the directory record."""
        tail = b""
        if hasattr(self._codec, "flush"):
            try:
                tail = self._account(self._codec.flush())
            except zlib.error as e:
                raise ArchiveFormatError(f"{self.entry.name}: corrupt compressed data: {e}") from e
        if self.size != self.entry.uncompressed_size:
            raise ChecksumError(f"{self.entry.name}: expected {self.entry.uncompressed_size} bytes, got {self.size}")
        if self.crc != self.entry.crc:
            raise ChecksumError(f"{self.entry.name}: CRC-32 mismatch ({self.crc:08x} != {self.entry.crc:08x})")
        return tail
