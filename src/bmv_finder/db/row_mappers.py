"""Row-mapping utilities for the sales table."""

from __future__ import annotations

from typing import Any, Final

from bmv_finder.models import CSV_COLUMNS, PropertySale

SALE_COLUMNS_SQL: Final = ", ".join(CSV_COLUMNS)


def row_to_sale(row: dict[str, Any]) -> PropertySale:
    """Convert a ``property_sales`` row into a PropertySale."""
    return PropertySale(
        id=row["id"],
        price=int(row["price"] or 0),
        transfer_date=row["transfer_date"] or "",
        **{column: row.get(column) for column in CSV_COLUMNS[3:]},
    )
