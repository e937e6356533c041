"""ZIP directory reading on top of any byte source."""

from .records import ArchiveEntry, DirectoryLocation
from .reader import DEFAULT_READ_SIZE, AsyncZipArchive, ZipArchive
