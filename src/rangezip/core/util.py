from __future__ import annotations
import re
from typing import Optional, Tuple

_CONTENT_RANGE = re.compile(r"^\s*bytes\s+(\d+)-(\d+)/(\d+|\*)\s*$", re.IGNORECASE)
_UNSATISFIED_RANGE = re.compile(r"^\s*bytes\s+\*/(\d+)\s*$", re.IGNORECASE)


def parse_content_range(value: str | None) -> Optional[Tuple[int, int, Optional[int]]]:
    """Parse ``bytes start-end/total`` into (start, end, total).

    `end` is inclusive; `total` is None when the server sent ``*``.
    Returns None for anything unparseable.
    """
    if not value:
        return None
    m = _CONTENT_RANGE.match(value)
    if not m:
        return None
    start, end = int(m.group(1)), int(m.group(2))
    if end < start:
        return None
    total = None if m.group(3) == "*" else int(m.group(3))
    return start, end, total


def total_from_content_range(value: str | None) -> Optional[int]:
    """Total length from either a satisfied or an unsatisfied Content-Range."""
    parsed = parse_content_range(value)
    if parsed is not None:
        return parsed[2]
    if value and (m := _UNSATISFIED_RANGE.match(value)):
        return int(m.group(1))
    return None


def parse_length(value: str | None) -> Optional[int]:
    """Content-Length as int, or None when missing or garbage."""
    if value is None:
        return None
    try:
        n = int(value.strip())
    except ValueError:
        return None
    return n if n >= 0 else None


def format_size(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    for unit in ("KiB", "MiB", "GiB"):
        n /= 1024
        if n < 1024:
            return f"{n:.1f} {unit}"
    return f"{n / 1024:.1f} TiB"
