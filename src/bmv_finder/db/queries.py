"""Read-only queries over ``property_sales``: search, trends, history."""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date
from typing import Any, Final

from bmv_finder.db.row_mappers import SALE_COLUMNS_SQL, row_to_sale
from bmv_finder.db.schema import POSTCODE_KEY_SQL, TABLE
from bmv_finder.db.stores import SaleStore
from bmv_finder.logging import get_logger
from bmv_finder.models import (
    AreaSummary,
    PropertyHistory,
    PropertySale,
    TrendPoint,
    normalize_postcode,
)

logger = get_logger(__name__)

MAX_SEARCH_LIMIT: Final = 1000

# A normalised query that starts like a postcode (outward code: 1-2 letters then a digit)
_POSTCODE_LIKE: Final = re.compile(r"^[A-Z]{1,2}[0-9]")

# Upper bound for prefix ranges; sorts after every printable ASCII character
_PREFIX_SENTINEL: Final = "\x7f"

_NOT_RETRACTED: Final = "COALESCE(status, '') != 'D'"

Clause = tuple[str, list[Any]]


def percentage_change(current: float, baseline: float) -> float | None:
    """``(current / baseline - 1) * 100`` rounded to one decimal, or None without a baseline."""
    if not baseline:
        return None
    return round((current / baseline - 1) * 100, 1)


def build_trend(yearly: Sequence[tuple[str, float, int]]) -> list[TrendPoint]:
    """Turn ``(year, average, count)`` rows (ascending) into trend points.

    The first year has no baseline, so its ``pct_change`` is None.
    """
    points: list[TrendPoint] = []
    previous: float | None = None
    for year, average, count in yearly:
        points.append(
            TrendPoint(
                year=year,
                avg_price=round(average, 2),
                sales=count,
                pct_change=percentage_change(average, previous) if previous is not None else None,
            )
        )
        previous = average
    return points


def sale_growth(sales: Sequence[PropertySale]) -> float | None:
    """Growth from first to last sale (ordered oldest first), None for fewer than two."""
    if len(sales) < 2:
        return None
    return percentage_change(sales[-1].price, sales[0].price)


def postcode_prefix_clause(prefix: str) -> Clause:
    """WHERE fragment matching normalised postcodes that start with ``prefix``.

    Expressed as a range over the indexed postcode key so SQLite can use the index.
    """
    key = normalize_postcode(prefix)
    return (
        f"{POSTCODE_KEY_SQL} >= ? AND {POSTCODE_KEY_SQL} < ?",
        [key, key + _PREFIX_SENTINEL],
    )


def area_clause(area: str) -> Clause:
    name = " ".join(area.split()).upper()
    return "(UPPER(town) = ? OR UPPER(district) = ?)", [name, name]


def candidate_clauses(query: str) -> list[Clause]:
    """Match strategies for a free-text query, most specific first.

    Postcode-like queries try a postcode prefix before falling back to town/district.
    """
    key = normalize_postcode(query)
    if not key:
        return []
    clauses: list[Clause] = []
    if _POSTCODE_LIKE.match(key):
        clauses.append(postcode_prefix_clause(key))
    clauses.append(area_clause(query))
    return clauses


class SaleQueries:
    """Read-only query service used by the API, the CLI and the coordinator."""

    def __init__(self, store: SaleStore) -> None:
        self._store = store

    async def count(self) -> int:
        rows = await self._store.fetch_all(f"SELECT COUNT(*) AS n FROM {TABLE}")
        return int(rows[0]["n"]) if rows else 0

    async def latest_transfer_date(self) -> date | None:
        """Most recent transfer date stored, or None for an empty table."""
        rows = await self._store.fetch_all(f"SELECT MAX(transfer_date) AS latest FROM {TABLE}")
        latest = rows[0]["latest"] if rows else None
        if not latest:
            return None
        try:
            return date.fromisoformat(str(latest)[:10])
        except ValueError:
            logger.warning("unparseable_latest_transfer_date", value=latest)
            return None

    async def get_sale(self, sale_id: str) -> PropertySale | None:
        rows = await self._store.fetch_all(
            f"SELECT {SALE_COLUMNS_SQL} FROM {TABLE} WHERE id = ?", (sale_id,)
        )
        return row_to_sale(rows[0]) if rows else None

    async def search(
        self, query: str, limit: int = 100, *, include_retracted: bool = False
    ) -> list[PropertySale]:
        """Search sales by postcode (prefix) or, failing that, by town/district.

        Args:
            query: Postcode, postcode prefix or area name. Case and spacing are ignored.
            limit: Maximum rows, clamped to 1..MAX_SEARCH_LIMIT.
            include_retracted: Include records whose status is "D".

        Returns:
            Matching sales, newest first.
        """
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        for where, params in candidate_clauses(query):
            if not include_retracted:
                where = f"{where} AND {_NOT_RETRACTED}"
            rows = await self._store.fetch_all(
                f"""
                SELECT {SALE_COLUMNS_SQL} FROM {TABLE}
                WHERE {where}
                ORDER BY transfer_date DESC, id
                LIMIT ?
                """,
                [*params, limit],
            )
            if rows:
                return [row_to_sale(r) for r in rows]
        return []

    async def trend(self, query: str) -> list[TrendPoint]:
        """Yearly average price with year-over-year change for a postcode or area.

        Retracted and zero-price rows are excluded from the averages.
        """
        for where, params in candidate_clauses(query):
            rows = await self._store.fetch_all(
                f"""
                SELECT substr(transfer_date, 1, 4) AS year,
                       AVG(price) AS avg_price,
                       COUNT(*) AS sales
                FROM {TABLE}
                WHERE {where} AND {_NOT_RETRACTED} AND price > 0
                GROUP BY year
                ORDER BY year
                """,
                params,
            )
            if rows:
                return build_trend(
                    [(str(r["year"]), float(r["avg_price"]), int(r["sales"])) for r in rows]
                )
        return []

    async def property_history(
        self,
        *,
        postcode: str,
        paon: str | None = None,
        saon: str | None = None,
        street: str | None = None,
    ) -> PropertyHistory:
        """All sales of one address (paon + saon + street + postcode), oldest first."""

        def _norm(value: str | None) -> str:
            return " ".join((value or "").split()).upper()

        rows = await self._store.fetch_all(
            f"""
            SELECT {SALE_COLUMNS_SQL} FROM {TABLE}
            WHERE {POSTCODE_KEY_SQL} = ?
              AND UPPER(TRIM(COALESCE(paon, ''))) = ?
              AND UPPER(TRIM(COALESCE(saon, ''))) = ?
              AND UPPER(TRIM(COALESCE(street, ''))) = ?
              AND {_NOT_RETRACTED}
            ORDER BY transfer_date ASC, id
            """,
            (normalize_postcode(postcode), _norm(paon), _norm(saon), _norm(street)),
        )
        sales = [row_to_sale(r) for r in rows]
        return PropertyHistory(
            paon=paon,
            saon=saon,
            street=street,
            postcode=" ".join(postcode.upper().split()),
            sales=sales,
            growth_pct=sale_growth(sales),
        )

    async def area_summary(self, query: str) -> AreaSummary:
        """Count, average, range and latest sale for a postcode or area."""
        for where, params in candidate_clauses(query):
            rows = await self._store.fetch_all(
                f"""
                SELECT COUNT(*) AS n, AVG(price) AS avg_price, MIN(price) AS min_price,
                       MAX(price) AS max_price, MAX(transfer_date) AS latest
                FROM {TABLE}
                WHERE {where} AND {_NOT_RETRACTED} AND price > 0
                """,
                params,
            )
            row = rows[0] if rows else None
            if row and row["n"]:
                return AreaSummary(
                    query=query,
                    count=int(row["n"]),
                    average_price=round(float(row["avg_price"]), 2),
                    min_price=int(row["min_price"]),
                    max_price=int(row["max_price"]),
                    latest_sale_date=row["latest"],
                )
        return AreaSummary(query=query)

    async def sold_comparables(
        self, postcode: str, *, limit: int = 200, since: date | None = None
    ) -> list[PropertySale]:
        """Recent non-retracted sales in the same outward code as ``postcode``."""
        parts = postcode.upper().split()
        key = normalize_postcode(postcode)
        if len(parts) > 1:
            outcode = parts[0]
        elif len(key) > 4:
            # Unspaced full postcode: the inward code is always the last three characters
            outcode = key[:-3]
        else:
            outcode = key
        if not outcode:
            return []
        where, params = postcode_prefix_clause(outcode)
        # Full postcodes only; keeps "SW1" from matching "SW1A" postcodes
        where += f" AND LENGTH({POSTCODE_KEY_SQL}) = ?"
        params.append(len(outcode) + 3)
        if since is not None:
            where += " AND transfer_date >= ?"
            params.append(since.isoformat())
        rows = await self._store.fetch_all(
            f"""
            SELECT {SALE_COLUMNS_SQL} FROM {TABLE}
            WHERE {where} AND {_NOT_RETRACTED} AND price > 0
            ORDER BY transfer_date DESC
            LIMIT ?
            """,
            [*params, max(1, min(limit, MAX_SEARCH_LIMIT))],
        )
        return [row_to_sale(r) for r in rows]
