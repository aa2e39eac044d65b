"""Full-dataset (re)load from a local file or a URL."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from bmv_finder.config import Settings
from bmv_finder.db.schema import initialize_schema
from bmv_finder.db.stores import SaleStore
from bmv_finder.ingest.coordinator import build_fetcher
from bmv_finder.ingest.fetcher import SourceFetcher
from bmv_finder.ingest.pipeline import (
    completed_message,
    failure_result,
    ingest_file,
    success_result,
)
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy
from bmv_finder.logging import get_logger
from bmv_finder.models import UpdateResult, UpdateState

logger = get_logger(__name__)


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


async def run_full_load(
    store: SaleStore,
    settings: Settings,
    source: str | None = None,
    *,
    policy: ConflictPolicy = ConflictPolicy.REPLACE,
    skip_header: bool = True,
    fetcher: SourceFetcher | None = None,
    timeout: float | None = None,
) -> UpdateResult:
    """Load a complete Price Paid file into the store.

    Args:
        store: Target store.
        settings: Application settings (batch size, download retry budget).
        source: Local path or URL; defaults to ``settings.full_dataset_url``.
        policy: Conflict policy; REPLACE overwrites every column of existing ids.
        skip_header: Drop a leading header row if the file has one.
        fetcher: Optional fetcher for URL sources.
        timeout: Overall budget in seconds; None means unbounded (full files are large).

    Returns:
        Structured result; never raises.
    """
    source = source or settings.full_dataset_url
    state = UpdateState.IDLE
    owns_fetcher = fetcher is None and is_url(source)
    active_fetcher = (fetcher or build_fetcher(settings)) if is_url(source) else None
    upserter = BatchUpserter(
        store, batch_size=settings.batch_size, progress_every=settings.progress_every
    )
    logger.info("full_load_started", source=source, policy=policy.value)

    try:
        async with asyncio.timeout(timeout):
            await initialize_schema(store)
            with tempfile.TemporaryDirectory(prefix="bmv-finder-") as scratch:
                if active_fetcher is not None:
                    state = UpdateState.DOWNLOADING
                    path = await active_fetcher.download(
                        source, Path(scratch) / source.rsplit("/", 1)[-1]
                    )
                else:
                    path = Path(source)
                    if not path.is_file():
                        raise FileNotFoundError(f"No such file: {source}")
                state = UpdateState.PROCESSING
                stats = await ingest_file(path, upserter, policy=policy, skip_header=skip_header)
    except Exception as e:
        return failure_result(e, failed_in=state)
    finally:
        if owns_fetcher and active_fetcher is not None:
            await active_fetcher.close()

    logger.info("full_load_finished", processed=stats.total_processed, errors=stats.errors)
    return success_result(completed_message(stats, action="Load"), stats)
