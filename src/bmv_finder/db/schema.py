"""Schema for the ``property_sales`` table and migration from the legacy layout."""

from __future__ import annotations

from typing import Final

from bmv_finder.db.stores import SaleStore
from bmv_finder.logging import get_logger

logger = get_logger(__name__)

TABLE: Final = "property_sales"

# Match key for postcode-prefix search; must stay identical to the index expression
POSTCODE_KEY_SQL: Final = "REPLACE(UPPER(postcode), ' ', '')"

_CREATE_TABLE: Final = f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        id TEXT PRIMARY KEY NOT NULL,
        price INTEGER NOT NULL DEFAULT 0,
        transfer_date TEXT NOT NULL,
        postcode TEXT,
        property_type TEXT,
        is_new_build TEXT,
        duration TEXT,
        paon TEXT,
        saon TEXT,
        street TEXT,
        locality TEXT,
        town TEXT,
        district TEXT,
        county TEXT,
        category TEXT,
        status TEXT
    )
"""

_INDEXES: Final = (
    f"CREATE INDEX IF NOT EXISTS idx_sales_transfer_date ON {TABLE}(transfer_date)",
    f"CREATE INDEX IF NOT EXISTS idx_sales_postcode_key ON {TABLE}({POSTCODE_KEY_SQL})",
    f"CREATE INDEX IF NOT EXISTS idx_sales_town ON {TABLE}(UPPER(town))",
    f"CREATE INDEX IF NOT EXISTS idx_sales_district ON {TABLE}(UPPER(district))",
)

LEGACY_TABLE: Final = "prices"

# Legacy ``prices`` rows come in two flavours: the transaction GUID as a TEXT key,
# or an AUTOINCREMENT integer key with no GUID. Integer keys get a "legacy:" prefix
# so they can never collide with a real transaction id.
_MIGRATE_LEGACY: Final = f"""
    INSERT OR IGNORE INTO {TABLE} (
        id, price, transfer_date, postcode, property_type, is_new_build, duration,
        paon, saon, street, locality, town, district, county, category, status
    )
    SELECT
        CASE WHEN typeof(id) = 'integer' THEN 'legacy:' || id
             ELSE REPLACE(REPLACE(id, '{{', ''), '}}', '') END,
        COALESCE(price, 0),
        substr(date_of_transfer, 1, 10),
        NULLIF(TRIM(postcode), ''),
        NULLIF(property_type, ''),
        NULLIF(old_new, ''),
        NULLIF(duration, ''),
        NULLIF(paon, ''),
        NULLIF(saon, ''),
        NULLIF(street, ''),
        NULLIF(locality, ''),
        NULLIF(town_city, ''),
        NULLIF(district, ''),
        NULLIF(county, ''),
        NULLIF(ppd_category_type, ''),
        NULLIF(record_status, '')
    FROM {LEGACY_TABLE}
    WHERE date_of_transfer IS NOT NULL AND date_of_transfer != ''
"""


async def initialize_schema(store: SaleStore) -> None:
    """Create the sales table and its indexes if they do not exist."""
    await store.execute(_CREATE_TABLE)
    for statement in _INDEXES:
        await store.execute(statement)
    logger.debug("schema_initialized", store=store.name)


async def table_exists(store: SaleStore, name: str) -> bool:
    rows = await store.fetch_all(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    )
    return bool(rows)


async def migrate_legacy_prices(store: SaleStore) -> int:
    """Copy rows from a legacy ``prices`` table into ``property_sales``.

    Existing ids are left untouched. The legacy table itself is kept.

    Returns:
        Number of rows copied (0 when there is no legacy table).
    """
    if not await table_exists(store, LEGACY_TABLE):
        logger.info("legacy_table_absent", table=LEGACY_TABLE)
        return 0

    await initialize_schema(store)
    copied = await store.execute(_MIGRATE_LEGACY)
    logger.info("legacy_rows_migrated", table=LEGACY_TABLE, copied=copied)
    return copied
