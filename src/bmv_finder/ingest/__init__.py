"""Price Paid ingestion: fetch, parse, upsert and coordinate monthly updates."""

from bmv_finder.ingest.coordinator import UpdateCoordinator, expected_period
from bmv_finder.ingest.fetcher import SourceFetcher
from bmv_finder.ingest.loader import run_full_load
from bmv_finder.ingest.parser import iter_records, open_source, parse_row, validate_source
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy

__all__ = [
    "BatchUpserter",
    "ConflictPolicy",
    "SourceFetcher",
    "UpdateCoordinator",
    "expected_period",
    "iter_records",
    "open_source",
    "parse_row",
    "run_full_load",
    "validate_source",
]
