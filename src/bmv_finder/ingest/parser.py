"""Streaming parser for Price Paid CSV files.

Rows have 16 fixed columns (see ``CSV_COLUMNS``) and no header. Values are
double-quoted; stray quotes inside a field are tolerated. A row with the wrong
number of columns aborts the whole parse: once columns are misaligned every
later field would be silently wrong.
"""

from __future__ import annotations

import csv
import gzip
import re
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import IO

from bmv_finder.errors import ParseFailed
from bmv_finder.logging import get_logger
from bmv_finder.models import CSV_COLUMNS, PropertySale

logger = get_logger(__name__)

COLUMN_COUNT = len(CSV_COLUMNS)

# Largest value a SQLite INTEGER column can hold
MAX_PRICE = 2**63 - 1

_LEADING_INTEGER = re.compile(r"\s*([+-]?[0-9]+)")


def parse_price(value: str) -> int:
    """Parse a price from its leading run of digits.

    ``"100000.0"`` reads as 100000 and ``"1_000"`` as 1. Anything with no leading
    digits becomes 0, as does a negative value or one too large to store.
    """
    match = _LEADING_INTEGER.match(value)
    if match is None:
        return 0
    price = int(match.group(1))
    return price if 0 <= price <= MAX_PRICE else 0


def clean_id(value: str) -> str:
    """Strip whitespace and the braces some source formats wrap GUIDs in."""
    return value.strip().replace("{", "").replace("}", "")


def normalize_date(value: str) -> str:
    """Keep only the calendar date of ``YYYY-MM-DD HH:MM`` timestamps."""
    value = value.strip()
    return value[:10] if len(value) >= 10 and value[4:5] == "-" else value


def _blank_to_none(value: str) -> str | None:
    value = value.strip()
    return value or None


def _looks_like_header(row: list[str]) -> bool:
    return not row[1].strip().lstrip("-").isdigit() and not row[0].strip().startswith("{")


def parse_row(row: list[str], line_number: int | None = None) -> PropertySale:
    """Convert one 16-field CSV row into a PropertySale."""
    if len(row) != COLUMN_COUNT:
        raise ParseFailed(
            f"expected {COLUMN_COUNT} columns, found {len(row)}", line_number=line_number
        )
    sale_id = clean_id(row[0])
    if not sale_id:
        raise ParseFailed("missing transaction id", line_number=line_number)

    return PropertySale(
        id=sale_id,
        price=parse_price(row[1]),
        transfer_date=normalize_date(row[2]),
        **{
            column: _blank_to_none(value)
            for column, value in zip(CSV_COLUMNS[3:], row[3:], strict=True)
        },
    )


class _TrackedLines:
    """Line iterator that remembers whether the input has run out."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = iter(lines)
        self.exhausted = False

    def __iter__(self) -> _TrackedLines:
        return self

    def __next__(self) -> str:
        try:
            return next(self._lines)
        except StopIteration:
            self.exhausted = True
            raise


def iter_records(lines: Iterable[str], *, skip_header: bool = False) -> Iterator[PropertySale]:
    """Lazily parse CSV text into records. Single forward pass.

    Args:
        lines: Text lines (an open file, or any iterable of strings).
        skip_header: Drop the first row if it looks like a header rather than data.

    Raises:
        ParseFailed: On any structurally malformed row, including a final row
            cut off inside a quoted field.
    """
    source = _TrackedLines(lines)
    reader = csv.reader(source, delimiter=",", quotechar='"', strict=False)
    first = True
    try:
        for row in reader:
            # The reader only reads past the end of input while a quote is open
            if source.exhausted:
                raise ParseFailed("unterminated quoted field", line_number=reader.line_num)
            if not row or not any(field.strip() for field in row):
                continue
            if first:
                first = False
                if skip_header and len(row) == COLUMN_COUNT and _looks_like_header(row):
                    logger.debug("csv_header_skipped")
                    continue
            yield parse_row(row, reader.line_num)
    except csv.Error as e:
        raise ParseFailed(str(e), line_number=reader.line_num) from e


def open_source(path: str | Path) -> IO[str]:
    """Open a CSV file for reading as text, decompressing ``.gz`` files."""
    path = Path(path)
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding="utf-8", errors="replace", newline="")
    return path.open(encoding="utf-8", errors="replace", newline="")


def validate_source(path: str | Path, *, skip_header: bool = False) -> int:
    """Parse a whole file without storing anything.

    Returns:
        Number of records in the file.

    Raises:
        ParseFailed: If any row is malformed.
    """
    count = 0
    with open_source(path) as stream:
        for _ in iter_records(stream, skip_header=skip_header):
            count += 1
    return count
