"""Monthly incremental update of the sales table.

State machine::

    IDLE -> CHECKING_FRESHNESS -> CHECKING_AVAILABILITY -> DOWNLOADING -> PROCESSING -> DONE
                                 (FAILED is reachable from every state)

Repeated runs within one publication period are no-ops: once the newest stored
transfer date reaches the expected period the coordinator stops at the
freshness check.
"""

from __future__ import annotations

import asyncio
import tempfile
from collections.abc import Callable
from datetime import date
from pathlib import Path

from bmv_finder.config import Settings
from bmv_finder.db.queries import SaleQueries
from bmv_finder.db.schema import initialize_schema
from bmv_finder.db.stores import SaleStore
from bmv_finder.errors import NotAvailableYet
from bmv_finder.ingest.fetcher import SourceFetcher
from bmv_finder.ingest.pipeline import (
    completed_message,
    failure_result,
    ingest_file,
    success_result,
)
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy
from bmv_finder.logging import get_logger
from bmv_finder.models import IngestionStats, UpdateResult, UpdateState

logger = get_logger(__name__)


def expected_period(today: date, lag_months: int) -> date:
    """First day of the newest month expected to be published."""
    index = today.year * 12 + (today.month - 1) - lag_months
    return date(index // 12, index % 12 + 1, 1)


def build_fetcher(settings: Settings) -> SourceFetcher:
    return SourceFetcher(
        timeout=settings.download_timeout_seconds,
        max_retries=settings.download_max_retries,
        initial_backoff=settings.download_initial_backoff_seconds,
    )


class UpdateCoordinator:
    """Decides whether a monthly delta is needed, then fetches and applies it."""

    def __init__(
        self,
        store: SaleStore,
        settings: Settings,
        *,
        fetcher: SourceFetcher | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._store = store
        self._settings = settings
        self._fetcher = fetcher
        self._today = today
        self._state = UpdateState.IDLE

    @property
    def state(self) -> UpdateState:
        return self._state

    def _enter(self, state: UpdateState) -> None:
        logger.debug("update_state", previous=self._state.value, state=state.value)
        self._state = state

    def delta_url(self, period: date) -> str:
        return self._settings.monthly_update_url(period.year, period.month)

    async def run_update(self) -> UpdateResult:
        """Run one update. Never raises; every outcome is an UpdateResult."""
        self._state = UpdateState.IDLE
        period = expected_period(self._today(), self._settings.publication_lag_months)
        url = self.delta_url(period)
        owns_fetcher = self._fetcher is None
        fetcher = self._fetcher or build_fetcher(self._settings)

        logger.info("update_started", period=period.isoformat(), url=url)
        try:
            async with asyncio.timeout(self._settings.update_timeout_seconds):
                result = await self._run(fetcher, period, url)
        except Exception as e:
            failed_in = self._state
            self._enter(UpdateState.FAILED)
            return failure_result(e, failed_in=failed_in)
        finally:
            if owns_fetcher:
                await fetcher.close()

        self._enter(UpdateState.DONE)
        logger.info("update_finished", message=result.message)
        return result

    async def _run(self, fetcher: SourceFetcher, period: date, url: str) -> UpdateResult:
        self._enter(UpdateState.CHECKING_FRESHNESS)
        await initialize_schema(self._store)
        latest = await SaleQueries(self._store).latest_transfer_date()
        logger.info(
            "latest_stored_transfer",
            latest=latest.isoformat() if latest else None,
            expected_period=period.isoformat(),
        )
        if latest is not None and latest >= period:
            return success_result("Database is already up to date", IngestionStats())

        self._enter(UpdateState.CHECKING_AVAILABILITY)
        if not await fetcher.exists(url):
            raise NotAvailableYet(url)

        with tempfile.TemporaryDirectory(prefix="bmv-finder-") as scratch:
            path = Path(scratch) / url.rsplit("/", 1)[-1]

            self._enter(UpdateState.DOWNLOADING)
            await fetcher.download(url, path)

            self._enter(UpdateState.PROCESSING)
            upserter = BatchUpserter(
                self._store,
                batch_size=self._settings.batch_size,
                progress_every=self._settings.progress_every,
            )
            stats = await ingest_file(path, upserter, policy=ConflictPolicy.UPDATE)

        return success_result(completed_message(stats), stats)
