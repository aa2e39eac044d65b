"""Storage backends, schema and read-side queries for property sales."""

from bmv_finder.db.queries import SaleQueries
from bmv_finder.db.schema import initialize_schema, migrate_legacy_prices
from bmv_finder.db.stores import FallbackStore, LocalStore, RemoteStore, SaleStore, open_store

__all__ = [
    "FallbackStore",
    "LocalStore",
    "RemoteStore",
    "SaleQueries",
    "SaleStore",
    "initialize_schema",
    "migrate_legacy_prices",
    "open_store",
]
