"""Shared pytest fixtures."""

import gc
import os
import sys
import threading
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from hypothesis import HealthCheck, settings

from bmv_finder.config import Settings
from bmv_finder.db import LocalStore, initialize_schema
from bmv_finder.ingest.upserter import BatchUpserter, ConflictPolicy
from bmv_finder.models import PropertySale


def pytest_configure(config: pytest.Config) -> None:
    """Force line-buffered stdout when piped."""
    if hasattr(sys.stdout, "reconfigure") and not sys.stdout.isatty():
        sys.stdout.reconfigure(line_buffering=True)
    if hasattr(sys.stderr, "reconfigure") and not sys.stderr.isatty():
        sys.stderr.reconfigure(line_buffering=True)


# Hypothesis settings profiles for different environments
settings.register_profile("fast", max_examples=10)
settings.register_profile(
    "ci",
    max_examples=200,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))


@pytest.fixture(autouse=True)
def _isolate_settings_from_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    """Prevent the local .env file from leaking into test Settings instances."""
    monkeypatch.setattr(
        Settings,
        "model_config",
        {**Settings.model_config, "env_file": None},
    )
    for key in list(os.environ):
        if key.startswith("BMV_FINDER_"):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def _cleanup_aiosqlite_threads():
    """Safety net: detect and stop leaked aiosqlite worker threads.

    aiosqlite creates a non-daemon worker thread per connection that blocks
    indefinitely. If a test leaks a connection (doesn't call ``await store.close()``),
    the thread prevents clean process exit.
    """
    yield

    from aiosqlite.core import _STOP_RUNNING_SENTINEL, Connection

    leaked = False

    gc.collect()
    for obj in gc.get_objects():
        if isinstance(obj, Connection) and obj._connection is not None:
            leaked = True
            obj.stop()

    for thread in threading.enumerate():
        if "_connection_worker_thread" in (thread.name or "") and thread.is_alive():
            leaked = True
            tx = getattr(thread, "_args", (None,))[0]
            if tx is not None and hasattr(tx, "put_nowait"):
                tx.put_nowait((None, lambda: _STOP_RUNNING_SENTINEL))
                thread.join(timeout=1.0)

    if leaked:
        import warnings

        warnings.warn(
            "Test leaked aiosqlite connection(s); add 'await store.close()' to fixture teardown",
            ResourceWarning,
            stacklevel=1,
        )


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings pointing at a scratch database, with fast retries."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "database_path": str(tmp_path / "sales.db"),
            "download_initial_backoff_seconds": 0,
            "monthly_update_base_url": "https://data.example.test/pp-monthly-update",
            "full_dataset_url": "https://data.example.test/pp-complete.csv",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[LocalStore, None]:
    """An in-memory store with the schema in place."""
    s = LocalStore(":memory:")
    await initialize_schema(s)
    yield s
    await s.close()


@pytest.fixture
def make_sale() -> Callable[..., PropertySale]:
    """Factory for PropertySale with sensible defaults."""

    def _make(sale_id: str = "A1", **overrides: Any) -> PropertySale:
        values: dict[str, Any] = {
            "id": sale_id,
            "price": 250000,
            "transfer_date": "2023-06-15",
            "postcode": "SW1A 1AA",
            "property_type": "F",
            "is_new_build": "N",
            "duration": "L",
            "paon": "10",
            "saon": None,
            "street": "DOWNING STREET",
            "locality": None,
            "town": "LONDON",
            "district": "CITY OF WESTMINSTER",
            "county": "GREATER LONDON",
            "category": "A",
            "status": "A",
        }
        values.update(overrides)
        return PropertySale(**values)

    return _make


@pytest.fixture
def seed(store: LocalStore) -> Callable[..., Any]:
    """Write sales into the ``store`` fixture."""

    async def _seed(*sales: PropertySale) -> None:
        await BatchUpserter(store).upsert(sales, ConflictPolicy.REPLACE)

    return _seed


def _csv_line(*fields: str) -> str:
    return ",".join(f'"{f}"' for f in fields) + "\n"


def _sale_line(
    sale_id: str,
    price: str = "250000",
    transfer_date: str = "2024-01-15 00:00",
    postcode: str = "SW1A 1AA",
    *,
    status: str = "A",
    paon: str = "10",
) -> str:
    """One Price Paid CSV row in published format."""
    return _csv_line(
        "{" + sale_id + "}",
        price,
        transfer_date,
        postcode,
        "F",
        "N",
        "L",
        paon,
        "",
        "DOWNING STREET",
        "",
        "LONDON",
        "CITY OF WESTMINSTER",
        "GREATER LONDON",
        "A",
        status,
    )


@pytest.fixture
def sale_line() -> Callable[..., str]:
    return _sale_line


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Write CSV lines to a scratch file and return its path."""

    def _write(*lines: str, name: str = "pp.csv") -> Path:
        path = tmp_path / name
        path.write_text("".join(lines), encoding="utf-8")
        return path

    return _write
