"""HTTP byte-range planning and chunked file streaming.

Only single ranges are supported. Suffix ranges (``bytes=-N``) are honoured
so players can fetch trailing container indexes without the whole file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Tuple

import aiofiles

from errors import RangeUnsatisfiable

DEFAULT_CONTENT_TYPE = "application/octet-stream"

MIME_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".ogv": "video/ogg",
    ".ogg": "video/ogg",
}

_RANGE_RE = re.compile(r"^bytes=([0-9]*)-([0-9]*)$")


def content_type_for(filename: str) -> str:
    return MIME_TYPES.get(Path(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


@dataclass
class RangePlan:
    """What to send: status, the inclusive byte window and response headers."""

    status: int
    start: int
    end: int
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def parse_range(range_header: str, file_size: int) -> Tuple[int, int]:
    """Resolve a ``Range`` header to an inclusive ``(start, end)`` window.

    Raises RangeUnsatisfiable for malformed syntax, ``start >= file_size``
    and ``start > end``.
    """
    match = _RANGE_RE.match(range_header.strip())
    if match is None:
        raise RangeUnsatisfiable("Malformed Range header", file_size)
    start_str, end_str = match.groups()
    if not start_str and not end_str:
        raise RangeUnsatisfiable("Malformed Range header", file_size)

    if not start_str:
        suffix = int(end_str)
        start = file_size - min(suffix, file_size)
        end = file_size - 1
    else:
        start = int(start_str)
        end = min(int(end_str), file_size - 1) if end_str else file_size - 1

    if start < 0 or start >= file_size or start > end:
        raise RangeUnsatisfiable("Requested Range Not Satisfiable", file_size)
    return start, end


def plan_range(file_size: int, range_header: Optional[str], filename: str) -> RangePlan:
    """Decide between a full 200 response and a 206 partial response."""
    headers = {
        "Accept-Ranges": "bytes",
        "Content-Type": content_type_for(filename),
    }
    if range_header is None:
        headers["Content-Length"] = str(file_size)
        return RangePlan(status=200, start=0, end=file_size - 1, headers=headers)

    start, end = parse_range(range_header, file_size)
    headers["Content-Range"] = f"bytes {start}-{end}/{file_size}"
    headers["Content-Length"] = str(end - start + 1)
    return RangePlan(status=206, start=start, end=end, headers=headers)


async def iter_file(path: Path, start: int, end: int, chunk_size: int) -> AsyncIterator[bytes]:
    """Yield bytes ``[start, end]`` of *path* in chunks of at most *chunk_size*."""
    remaining = end - start + 1
    if remaining <= 0:
        return
    async with aiofiles.open(path, "rb") as f:
        await f.seek(start)
        while remaining > 0:
            data = await f.read(min(chunk_size, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data
