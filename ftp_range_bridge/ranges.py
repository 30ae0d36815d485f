"""Byte range parsing and resolution.

Both steps are pure. Parsing never fails: anything that does not look like a
single ``bytes=<start>-<end>`` range degrades to a whole-file request.
Resolution clamps the request against the authoritative file size.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import RangeNotSatisfiableError

_RANGE_HEADER = re.compile(
    r"^\s*bytes\s*=\s*(?P<start>[^,-]*)-(?P<end>[^,]*?)\s*$", re.IGNORECASE
)
_NUMERAL = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class RangeRequest:
    start: int = 0
    end: int | None = None


@dataclass(frozen=True)
class ResolvedRange:
    start: int
    end: int
    length: int
    total_size: int
    is_partial: bool

    @property
    def content_range(self) -> str | None:
        if self.length == 0:
            return None
        return f"bytes {self.start}-{self.end}/{self.total_size}"


FULL_FILE = RangeRequest()


def _numeral(text: str) -> int | None:
    text = text.strip()
    if not _NUMERAL.fullmatch(text):
        return None
    return int(text)


def parse_range_header(header: str | None) -> RangeRequest:
    """Parse a ``Range`` header into a tentative request.

    Rules:
        - missing header or a header that is not a single ``bytes`` range
          means the whole file
        - an unparsable start counts as 0
        - an unparsable end means "until the end of the file"
    """
    if not header:
        return FULL_FILE
    match = _RANGE_HEADER.match(header)
    if match is None:
        return FULL_FILE
    start = _numeral(match.group("start"))
    end = _numeral(match.group("end"))
    return RangeRequest(start=start or 0, end=end)


def resolve_range(
    request: RangeRequest, total_size: int, *, allow_partial: bool = True
) -> ResolvedRange:
    """Compute the span to serve for ``request`` against a file of ``total_size``.

    An end past the file, or one not after the start, means "to the end of
    the file". A start at or past the end of a non-empty file raises
    ``RangeNotSatisfiableError``. An empty file always resolves to an empty
    transfer.
    """
    if total_size <= 0:
        return ResolvedRange(start=0, end=-1, length=0, total_size=0, is_partial=False)
    if not allow_partial:
        request = FULL_FILE

    start = request.start
    if start >= total_size:
        raise RangeNotSatisfiableError(start, total_size)

    end = request.end
    if end is None or end >= total_size or end <= start:
        end = total_size - 1

    return ResolvedRange(
        start=start,
        end=end,
        length=end - start + 1,
        total_size=total_size,
        is_partial=start > 0 or end < total_size - 1,
    )
