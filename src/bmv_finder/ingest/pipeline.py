"""Shared processing step and result reporting for update and load runs."""

from __future__ import annotations

import asyncio
from pathlib import Path

from bmv_finder.errors import (
    BmvFinderError,
    DownloadFailed,
    NotAvailableYet,
    ParseFailed,
    StorageUnavailable,
)
from bmv_finder.ingest.parser import iter_records, open_source, validate_source
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy
from bmv_finder.logging import get_logger
from bmv_finder.models import IngestionStats, UpdateResult, UpdateState

logger = get_logger(__name__)


async def ingest_file(
    path: str | Path,
    upserter: BatchUpserter,
    *,
    policy: ConflictPolicy = ConflictPolicy.UPDATE,
    skip_header: bool = False,
) -> IngestionStats:
    """Validate a CSV file end to end, then upsert its records.

    The validation pass means a malformed row aborts before anything is written.

    Raises:
        ParseFailed: The file is structurally malformed.
        StorageUnavailable: The store became unreachable mid-run.
    """
    rows = await asyncio.to_thread(validate_source, path, skip_header=skip_header)
    logger.info("source_validated", path=str(path), rows=rows)

    with open_source(path) as stream:
        return await upserter.upsert(iter_records(stream, skip_header=skip_header), policy)


def success_result(message: str, stats: IngestionStats) -> UpdateResult:
    return UpdateResult(success=True, message=message, state=UpdateState.DONE, stats=stats)


def completed_message(stats: IngestionStats, *, action: str = "Update") -> str:
    message = f"{action} completed with {stats.written} new/updated records"
    if stats.errors:
        message += f" ({stats.errors} rows failed)"
    return message


def failure_result(error: BaseException, *, failed_in: UpdateState) -> UpdateResult:
    """Map an exception to a structured failure. Tracebacks go to the log only."""
    if isinstance(error, NotAvailableYet):
        logger.warning("update_not_available_yet", url=error.url, state=failed_in.value)
        return UpdateResult(
            success=False,
            message=str(error),
            state=UpdateState.FAILED,
            error="not_available_yet",
            retry_later=True,
        )

    if isinstance(error, TimeoutError):
        message = "Update timed out"
    elif isinstance(error, DownloadFailed):
        message = "Download failed"
    elif isinstance(error, ParseFailed):
        message = "Source file is malformed; nothing was written"
    elif isinstance(error, StorageUnavailable):
        message = "Database unavailable"
    elif isinstance(error, BmvFinderError):
        message = "Update failed"
    else:
        message = "Update failed unexpectedly"

    logger.error(
        "update_failed",
        state=failed_in.value,
        error_type=type(error).__name__,
        error=str(error),
        exc_info=error,
    )
    return UpdateResult(
        success=False,
        message=message,
        state=UpdateState.FAILED,
        error=str(error) or type(error).__name__,
    )
