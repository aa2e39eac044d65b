"""Tests for batched upserts."""

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from bmv_finder.db import LocalStore
from bmv_finder.db.queries import SaleQueries
from bmv_finder.errors import BatchWriteFailed, StorageError, StorageUnavailable
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy, build_upsert_sql, chunked
from bmv_finder.models import PropertySale


class FlakyStore:
    """Delegates to a real store but fails writes whose params contain a poisoned id."""

    name = "flaky"

    def __init__(self, inner: LocalStore, poisoned: str, *, unavailable: bool = False) -> None:
        self._inner = inner
        self._poisoned = poisoned
        self._unavailable = unavailable
        self.writes = 0

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        if sql.lstrip().startswith("INSERT") and self._poisoned in params:
            if self._unavailable:
                raise StorageUnavailable("connection reset")
            raise StorageError("constraint failed")
        self.writes += 1
        return await self._inner.execute(sql, params)

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        return await self._inner.fetch_all(sql, params)

    async def close(self) -> None:
        await self._inner.close()


class TestBuildUpsertSql:
    def test_placeholder_groups(self) -> None:
        sql = build_upsert_sql(3, ConflictPolicy.REPLACE)

        assert sql.startswith("INSERT OR REPLACE INTO property_sales")
        assert sql.count("(?, ") == 3
        assert sql.count("?") == 48

    def test_update_keeps_stored_values_over_blanks(self) -> None:
        sql = build_upsert_sql(1, ConflictPolicy.UPDATE)

        assert "ON CONFLICT(id) DO UPDATE SET" in sql
        assert "price = excluded.price" in sql
        assert "street = COALESCE(excluded.street, property_sales.street)" in sql

    def test_ignore(self) -> None:
        assert build_upsert_sql(1, ConflictPolicy.IGNORE).endswith("ON CONFLICT(id) DO NOTHING")


class TestChunked:
    def test_splits_lazily(self, make_sale: Callable[..., PropertySale]) -> None:
        sales = (make_sale(str(i)) for i in range(5))

        assert [len(b) for b in chunked(sales, 2)] == [2, 2, 1]

    def test_empty(self) -> None:
        assert list(chunked([], 10)) == []


class TestUpsert:
    async def test_counts_new_then_updated(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store, batch_size=2)

        first = await upserter.upsert([make_sale("A"), make_sale("B"), make_sale("C")])
        second = await upserter.upsert([make_sale("A", price=300000), make_sale("D")])

        assert (first.total_processed, first.new_records, first.updated_records) == (3, 3, 0)
        assert (second.total_processed, second.new_records, second.updated_records) == (2, 1, 1)
        assert await SaleQueries(store).count() == 4

    async def test_same_id_twice_keeps_latest_price(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store, batch_size=10)

        stats = await upserter.upsert([make_sale("A", price=100000), make_sale("A", price=120000)])

        sale = await SaleQueries(store).get_sale("A")
        assert sale is not None
        assert sale.price == 120000
        assert await SaleQueries(store).count() == 1
        assert stats.new_records == 1
        # The second occurrence overwrote the first, so it counts as an update
        assert stats.updated_records == 1

    async def test_update_policy_preserves_stored_text_over_blanks(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store)
        await upserter.upsert([make_sale("A", street="HIGH STREET")])

        await upserter.upsert([make_sale("A", price=1, street=None, status="C")])

        sale = await SaleQueries(store).get_sale("A")
        assert sale is not None
        assert sale.price == 1
        assert sale.street == "HIGH STREET"
        assert sale.status == "C"

    async def test_retraction_is_stored_not_deleted(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store)
        await upserter.upsert([make_sale("A")])

        await upserter.upsert([make_sale("A", status="D")])

        sale = await SaleQueries(store).get_sale("A")
        assert sale is not None
        assert sale.is_retracted

    async def test_replace_policy_overwrites_every_column(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store)
        await upserter.upsert([make_sale("A", street="HIGH STREET")], ConflictPolicy.REPLACE)

        await upserter.upsert([make_sale("A", street=None)], ConflictPolicy.REPLACE)

        sale = await SaleQueries(store).get_sale("A")
        assert sale is not None
        assert sale.street is None

    async def test_ignore_policy_keeps_first(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store)
        await upserter.upsert([make_sale("A", price=100)], ConflictPolicy.IGNORE)

        stats = await upserter.upsert(
            [make_sale("A", price=200), make_sale("B")], ConflictPolicy.IGNORE
        )

        sale = await SaleQueries(store).get_sale("A")
        assert sale is not None
        assert sale.price == 100
        assert stats.new_records == 1
        assert stats.updated_records == 0

    async def test_failed_batch_counted_and_run_continues(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        flaky = FlakyStore(store, poisoned="B")
        upserter = BatchUpserter(flaky, batch_size=2)

        stats = await upserter.upsert([make_sale(i) for i in "ABCDE"])

        # Batch [A, B] fails, [C, D] and [E] succeed
        assert stats.total_processed == 5
        assert stats.errors == 2
        assert stats.new_records == 3
        assert await SaleQueries(store).get_sale("A") is None
        assert await SaleQueries(store).get_sale("E") is not None

    async def test_unstorable_price_fails_only_its_batch(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(store, batch_size=1)

        stats = await upserter.upsert(
            [make_sale("A", price=100000), make_sale("B", price=2**64), make_sale("C")]
        )

        assert stats.total_processed == 3
        assert stats.errors == 1
        assert stats.new_records == 2
        assert await SaleQueries(store).get_sale("B") is None
        assert await SaleQueries(store).get_sale("C") is not None

    async def test_unavailable_store_stops_run(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        flaky = FlakyStore(store, poisoned="C", unavailable=True)
        upserter = BatchUpserter(flaky, batch_size=2)

        with pytest.raises(StorageUnavailable):
            await upserter.upsert([make_sale(i) for i in "ABCDE"])

        assert flaky.writes == 1

    async def test_write_batch_wraps_statement_errors(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        upserter = BatchUpserter(FlakyStore(store, poisoned="A"))

        with pytest.raises(BatchWriteFailed) as exc_info:
            await upserter.write_batch([make_sale("A")])

        assert exc_info.value.batch_size == 1

    async def test_input_iterator_consumed_once(
        self, store: LocalStore, make_sale: Callable[..., PropertySale]
    ) -> None:
        consumed: list[str] = []

        def records():
            for sale_id in "ABC":
                consumed.append(sale_id)
                yield make_sale(sale_id)

        await BatchUpserter(store, batch_size=1).upsert(records())

        assert consumed == ["A", "B", "C"]

    def test_rejects_zero_batch_size(self, store: LocalStore) -> None:
        with pytest.raises(ValueError):
            BatchUpserter(store, batch_size=0)
