"""Tests for schema setup and the legacy ``prices`` migration."""

import pytest

from bmv_finder.db import LocalStore, initialize_schema, migrate_legacy_prices
from bmv_finder.db.queries import SaleQueries
from bmv_finder.db.schema import table_exists

LEGACY_DDL = """
    CREATE TABLE prices (
        id {id_type},
        price INTEGER,
        date_of_transfer TEXT,
        postcode TEXT,
        property_type TEXT,
        old_new TEXT,
        duration TEXT,
        paon TEXT,
        saon TEXT,
        street TEXT,
        locality TEXT,
        town_city TEXT,
        district TEXT,
        county TEXT,
        ppd_category_type TEXT,
        record_status TEXT
    )
"""

LEGACY_INSERT = "INSERT INTO prices VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"


def legacy_row(legacy_id: object, price: int | None, when: str) -> tuple[object, ...]:
    return (
        legacy_id, price, when, "E8 3RH", "T", "N", "F", "12", "", "MARE STREET",
        "", "LONDON", "HACKNEY", "GREATER LONDON", "A", "A",
    )


class TestInitializeSchema:
    async def test_idempotent(self, store: LocalStore) -> None:
        await initialize_schema(store)
        await initialize_schema(store)

        assert await table_exists(store, "property_sales")

    async def test_creates_postcode_index(self, store: LocalStore) -> None:
        rows = await store.fetch_all(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND tbl_name = 'property_sales'"
        )

        assert "idx_sales_postcode_key" in {r["name"] for r in rows}


class TestMigrateLegacyPrices:
    async def test_no_legacy_table(self) -> None:
        store = LocalStore(":memory:")

        assert await migrate_legacy_prices(store) == 0
        await store.close()

    @pytest.mark.parametrize(
        ("id_type", "legacy_id", "expected_id"),
        [
            ("TEXT PRIMARY KEY", "{ABC-123}", "ABC-123"),
            ("INTEGER PRIMARY KEY AUTOINCREMENT", 7, "legacy:7"),
        ],
    )
    async def test_copies_rows(
        self, id_type: str, legacy_id: object, expected_id: str
    ) -> None:
        store = LocalStore(":memory:")
        await store.execute(LEGACY_DDL.format(id_type=id_type))
        await store.execute(LEGACY_INSERT, legacy_row(legacy_id, 450000, "2019-05-01 00:00"))

        copied = await migrate_legacy_prices(store)

        assert copied == 1
        sale = await SaleQueries(store).get_sale(expected_id)
        assert sale is not None
        assert sale.price == 450000
        assert sale.transfer_date == "2019-05-01"
        assert sale.town == "LONDON"
        assert sale.saon is None
        assert await table_exists(store, "prices")
        await store.close()

    async def test_existing_rows_untouched(self, store: LocalStore) -> None:
        await store.execute(LEGACY_DDL.format(id_type="TEXT PRIMARY KEY"))
        await store.execute(LEGACY_INSERT, legacy_row("A", 100, "2019-05-01"))
        await store.execute(LEGACY_INSERT, legacy_row("B", None, ""))

        first = await migrate_legacy_prices(store)
        second = await migrate_legacy_prices(store)

        # Rows without a transfer date are skipped
        assert first == 1
        assert second == 0
        assert await SaleQueries(store).count() == 1
