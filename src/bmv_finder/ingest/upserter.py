"""Batched multi-row upserts of PropertySale records."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from enum import StrEnum
from itertools import islice
from typing import Final

from bmv_finder.db.schema import TABLE
from bmv_finder.db.stores import SaleStore
from bmv_finder.errors import BatchWriteFailed, StorageError, StorageUnavailable
from bmv_finder.logging import get_logger
from bmv_finder.models import CSV_COLUMNS, IngestionStats, PropertySale

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE: Final = 500

_COLUMNS_SQL: Final = ", ".join(CSV_COLUMNS)
_ROW_PLACEHOLDER: Final = "(" + ", ".join("?" for _ in CSV_COLUMNS) + ")"


class ConflictPolicy(StrEnum):
    """What to do when a record's id is already stored."""

    REPLACE = "replace"  # overwrite every column (full reloads)
    UPDATE = "update"  # update non-key columns, keeping stored values over blanks (deltas)
    IGNORE = "ignore"  # keep the stored row


def _update_assignments() -> str:
    assignments = ["price = excluded.price"]
    for column in CSV_COLUMNS[2:]:
        if column == "transfer_date":
            new_value = "NULLIF(excluded.transfer_date, '')"
        else:
            new_value = f"excluded.{column}"
        assignments.append(f"{column} = COALESCE({new_value}, {TABLE}.{column})")
    return ",\n        ".join(assignments)


def build_upsert_sql(row_count: int, policy: ConflictPolicy) -> str:
    """One INSERT statement with ``row_count`` placeholder groups."""
    values = ", ".join(_ROW_PLACEHOLDER for _ in range(row_count))
    if policy is ConflictPolicy.REPLACE:
        return f"INSERT OR REPLACE INTO {TABLE} ({_COLUMNS_SQL}) VALUES {values}"
    if policy is ConflictPolicy.IGNORE:
        return f"INSERT INTO {TABLE} ({_COLUMNS_SQL}) VALUES {values} ON CONFLICT(id) DO NOTHING"
    return (
        f"INSERT INTO {TABLE} ({_COLUMNS_SQL}) VALUES {values}\n"
        f"    ON CONFLICT(id) DO UPDATE SET\n        {_update_assignments()}"
    )


def chunked(records: Iterable[PropertySale], size: int) -> Iterator[list[PropertySale]]:
    """Yield lists of at most ``size`` records, lazily."""
    iterator = iter(records)
    while batch := list(islice(iterator, size)):
        yield batch


class BatchUpserter:
    """Writes records in fixed-size batches, one statement per batch.

    A failing batch is counted and skipped; only an unreachable store stops the run.
    """

    def __init__(
        self,
        store: SaleStore,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_every: int = 10_000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self.batch_size = batch_size
        self.progress_every = progress_every

    async def _count_existing(self, ids: Sequence[str]) -> int:
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._store.fetch_all(
            f"SELECT COUNT(*) AS n FROM {TABLE} WHERE id IN ({placeholders})", ids
        )
        return int(rows[0]["n"]) if rows else 0

    async def write_batch(
        self, batch: Sequence[PropertySale], policy: ConflictPolicy = ConflictPolicy.UPDATE
    ) -> IngestionStats:
        """Write one batch as a single statement.

        An id seen for the first time counts as new. Every later write of the same
        id counts as an update, whether it lands in this batch or a later one, so
        ``new + updated`` is the number of row writes, not the growth of the table.

        Raises:
            BatchWriteFailed: The statement failed; nothing from this batch is counted.
            StorageUnavailable: The store is unreachable.
        """
        stats = IngestionStats(total_processed=len(batch))
        if not batch:
            return stats

        distinct_ids = list(dict.fromkeys(r.id for r in batch))
        params = [value for record in batch for value in record.as_row()]
        try:
            existing = await self._count_existing(distinct_ids)
            affected = await self._store.execute(build_upsert_sql(len(batch), policy), params)
        except StorageUnavailable:
            raise
        except StorageError as e:
            raise BatchWriteFailed(len(batch), str(e)) from e

        if policy is ConflictPolicy.IGNORE:
            stats.new_records = affected
        else:
            stats.new_records = min(len(distinct_ids) - existing, affected)
            stats.updated_records = max(affected - stats.new_records, 0)
        return stats

    async def upsert(
        self,
        records: Iterable[PropertySale],
        policy: ConflictPolicy = ConflictPolicy.UPDATE,
    ) -> IngestionStats:
        """Persist ``records`` batch by batch.

        Errors from the record iterator itself (e.g. ParseFailed) propagate.

        Returns:
            Totals: processed, new, updated and failed rows.
        """
        stats = IngestionStats()
        next_progress = self.progress_every

        for batch_number, batch in enumerate(chunked(records, self.batch_size), start=1):
            try:
                result = await self.write_batch(batch, policy)
            except BatchWriteFailed as e:
                logger.error(
                    "batch_write_failed",
                    batch=batch_number,
                    rows=e.batch_size,
                    first_id=batch[0].id,
                    error=str(e),
                )
                stats.total_processed += len(batch)
                stats.errors += e.batch_size
                continue
            stats.merge(result)

            if stats.total_processed >= next_progress:
                logger.info(
                    "upsert_progress",
                    processed=stats.total_processed,
                    written=stats.written,
                    errors=stats.errors,
                )
                next_progress = (
                    stats.total_processed // self.progress_every + 1
                ) * self.progress_every

        logger.info(
            "upsert_complete",
            policy=policy.value,
            processed=stats.total_processed,
            new=stats.new_records,
            updated=stats.updated_records,
            errors=stats.errors,
        )
        return stats
