"""Storage backends: a local SQLite file or a remote libSQL database over HTTP.

Both speak the same small interface (``SaleStore``) so the ingestion pipeline
and the query service never know which one they are talking to. The backend
is chosen once, at startup, by ``open_store``.
"""

from __future__ import annotations

import base64
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final, Protocol

import aiosqlite
import httpx

from bmv_finder.errors import StorageError, StorageUnavailable
from bmv_finder.logging import get_logger

if TYPE_CHECKING:
    from bmv_finder.config import Settings

logger = get_logger(__name__)

Params = Sequence[Any]

_USER_AGENT: Final = "bmv-finder/1.0"


class SaleStore(Protocol):
    """Minimal statement-level interface shared by all backends."""

    name: str

    async def execute(self, sql: str, params: Params = ()) -> int:
        """Run a write statement and return the number of rows affected."""
        ...

    async def fetch_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        """Run a query and return rows as column-name dicts."""
        ...

    async def close(self) -> None: ...


class LocalStore:
    """SQLite file (or ``:memory:``) accessed through aiosqlite."""

    name = "local"

    def __init__(self, db_path: str) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
        """
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    def _ensure_directory(self) -> None:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            try:
                self._ensure_directory()
                conn = await aiosqlite.connect(self.db_path)
            except (OSError, aiosqlite.Error) as e:
                raise StorageUnavailable(f"Cannot open {self.db_path}: {e}") from e
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA cache_size=-64000")
            self._conn = conn
        return self._conn

    async def execute(self, sql: str, params: Params = ()) -> int:
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(sql, tuple(params))
            await conn.commit()
        # Out-of-range parameters fail at bind time, outside sqlite3.Error
        except (aiosqlite.Error, OverflowError, ValueError) as e:
            await conn.rollback()
            raise StorageError(str(e)) from e
        return max(cursor.rowcount, 0)

    async def fetch_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        conn = await self._get_connection()
        try:
            cursor = await conn.execute(sql, tuple(params))
            rows = await cursor.fetchall()
        except (aiosqlite.Error, OverflowError, ValueError) as e:
            raise StorageError(str(e)) from e
        return [dict(row) for row in rows]

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


def _http_base_url(url: str) -> str:
    if url.startswith("libsql://"):
        url = "https://" + url.removeprefix("libsql://")
    return url.rstrip("/")


def encode_arg(value: Any) -> dict[str, Any]:
    """Encode a Python value as a typed libSQL pipeline argument."""
    if value is None:
        return {"type": "null"}
    if isinstance(value, bool):
        return {"type": "integer", "value": str(int(value))}
    if isinstance(value, int):
        # Integers travel as strings to survive 64-bit range in JSON
        return {"type": "integer", "value": str(value)}
    if isinstance(value, float):
        return {"type": "float", "value": value}
    if isinstance(value, bytes):
        return {"type": "blob", "base64": base64.b64encode(value).decode("ascii")}
    return {"type": "text", "value": str(value)}


def decode_value(cell: dict[str, Any]) -> Any:
    """Decode a typed libSQL result cell."""
    kind = cell.get("type")
    if kind == "null":
        return None
    if kind == "integer":
        return int(cell["value"])
    if kind == "float":
        return float(cell["value"])
    if kind == "blob":
        return base64.b64decode(cell["base64"])
    return cell.get("value")


class RemoteStore:
    """libSQL (Turso) database accessed through its HTTP pipeline API."""

    name = "remote"

    def __init__(
        self,
        url: str,
        auth_token: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not url:
            raise StorageUnavailable("Remote store selected but no database URL is configured")
        self.base_url = _http_base_url(url)
        self._auth_token = auth_token
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            )
        return self._client

    async def _run(self, sql: str, params: Params) -> dict[str, Any]:
        stmt: dict[str, Any] = {"sql": sql}
        if params:
            stmt["args"] = [encode_arg(p) for p in params]
        body = {"requests": [{"type": "execute", "stmt": stmt}, {"type": "close"}]}
        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}

        try:
            response = await self._get_client().post(
                f"{self.base_url}/v2/pipeline", json=body, headers=headers
            )
        except httpx.TransportError as e:
            raise StorageUnavailable(f"Remote database unreachable: {e}") from e

        if response.status_code >= 500:
            raise StorageUnavailable(
                f"Remote database returned HTTP {response.status_code}: {response.text[:200]}"
            )
        if response.status_code != 200:
            raise StorageError(f"HTTP {response.status_code}: {response.text[:200]}")

        data = response.json()
        if data.get("error"):
            raise StorageError(f"Database error: {data['error']}")
        results = data.get("results") or []
        if not results:
            raise StorageError("Unexpected response format: no results")
        first = results[0]
        if first.get("type") == "error":
            message = (first.get("error") or {}).get("message", "unknown error")
            raise StorageError(message)
        result: dict[str, Any] | None = (first.get("response") or {}).get("result")
        if result is None:
            raise StorageError("Unexpected response format: missing result")
        return result

    async def execute(self, sql: str, params: Params = ()) -> int:
        result = await self._run(sql, params)
        return int(result.get("affected_row_count") or 0)

    async def fetch_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        result = await self._run(sql, params)
        columns = [col["name"] for col in result.get("cols", [])]
        return [
            {columns[i]: decode_value(cell) for i, cell in enumerate(row)}
            for row in result.get("rows", [])
        ]

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None


class FallbackStore:
    """Remote primary that downgrades to a local store when unreachable.

    Only built outside production. Once switched, it stays on the fallback
    for the rest of its lifetime.
    """

    def __init__(
        self,
        primary: SaleStore,
        fallback: SaleStore,
        *,
        prepare_fallback: Callable[[SaleStore], Awaitable[None]] | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._prepare_fallback = prepare_fallback
        self._using_fallback = False

    @property
    def name(self) -> str:
        return self._fallback.name if self._using_fallback else self._primary.name

    @property
    def using_fallback(self) -> bool:
        return self._using_fallback

    async def _switch(self, error: StorageUnavailable) -> None:
        logger.warning(
            "remote_store_unavailable_falling_back",
            primary=self._primary.name,
            fallback=self._fallback.name,
            error=str(error),
        )
        self._using_fallback = True
        if self._prepare_fallback is not None:
            await self._prepare_fallback(self._fallback)

    async def execute(self, sql: str, params: Params = ()) -> int:
        if not self._using_fallback:
            try:
                return await self._primary.execute(sql, params)
            except StorageUnavailable as e:
                await self._switch(e)
        return await self._fallback.execute(sql, params)

    async def fetch_all(self, sql: str, params: Params = ()) -> list[dict[str, Any]]:
        if not self._using_fallback:
            try:
                return await self._primary.fetch_all(sql, params)
            except StorageUnavailable as e:
                await self._switch(e)
        return await self._fallback.fetch_all(sql, params)

    async def close(self) -> None:
        try:
            await self._primary.close()
        finally:
            await self._fallback.close()


def open_store(settings: Settings) -> SaleStore:
    """Build the configured store.

    Remote stores get a local fallback only when ``settings.fallback_enabled``;
    in production an unreachable remote store is fatal.
    """
    from bmv_finder.db.schema import initialize_schema

    if settings.storage_backend == "local":
        logger.info("store_selected", backend="local", path=settings.database_path)
        return LocalStore(settings.database_path)

    if not settings.remote_database_url and settings.fallback_enabled:
        logger.warning("remote_store_not_configured_using_local", path=settings.database_path)
        return LocalStore(settings.database_path)

    remote = RemoteStore(
        settings.remote_database_url,
        settings.remote_auth_token.get_secret_value(),
        timeout=settings.remote_timeout_seconds,
    )
    if not settings.fallback_enabled:
        logger.info("store_selected", backend="remote", url=remote.base_url)
        return remote

    logger.info(
        "store_selected",
        backend="remote",
        url=remote.base_url,
        fallback_path=settings.database_path,
    )
    return FallbackStore(
        remote, LocalStore(settings.database_path), prepare_fallback=initialize_schema
    )
