"""HTTP(S) download of Price Paid CSV files with retry and backoff."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Final

import httpx

from bmv_finder.errors import DownloadFailed, NotAvailableYet
from bmv_finder.logging import get_logger

logger = get_logger(__name__)

_USER_AGENT: Final = "bmv-finder/1.0"
_CHUNK_SIZE: Final = 1024 * 1024


class SourceFetcher:
    """Downloads remote CSV files atomically.

    The body is streamed into ``<dest>.part`` and only moved onto ``dest`` once
    complete, so a failed download never leaves a truncated file that looks valid.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        initial_backoff: float = 5.0,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: Shared HTTP client. If omitted, the fetcher creates and owns one.
            timeout: Per-attempt timeout in seconds.
            max_retries: Total download attempts before giving up.
            initial_backoff: Seconds to wait after the first failure; doubles each attempt.
        """
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": _USER_AGENT},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def exists(self, url: str) -> bool:
        """HEAD-probe ``url``. Only HTTP 200 counts as available."""
        try:
            response = await self._get_client().head(url, timeout=self.timeout)
        except httpx.HTTPError:
            logger.warning("existence_probe_failed", url=url, exc_info=True)
            return False
        logger.debug("existence_probe", url=url, status=response.status_code)
        return response.status_code == 200

    async def download(self, url: str, dest: str | Path) -> Path:
        """Download ``url`` to ``dest``.

        Raises:
            NotAvailableYet: The server answered 404; not retried.
            DownloadFailed: Every attempt failed; carries the last error message.
        """
        dest = Path(dest)
        part = dest.with_name(dest.name + ".part")
        delay = self.initial_backoff
        last_error = ""

        for attempt in range(1, self.max_retries + 1):
            logger.info(
                "download_attempt", url=url, attempt=attempt, max_retries=self.max_retries
            )
            try:
                size = await self._download_once(url, part)
            except NotAvailableYet:
                part.unlink(missing_ok=True)
                logger.warning("download_not_available", url=url)
                raise
            except (httpx.HTTPError, OSError) as e:
                part.unlink(missing_ok=True)
                last_error = str(e) or type(e).__name__
                logger.warning(
                    "download_attempt_failed", url=url, attempt=attempt, error=last_error
                )
                if attempt < self.max_retries:
                    logger.info("download_retrying", url=url, delay_seconds=delay)
                    await asyncio.sleep(delay)
                    delay *= 2
                continue

            os.replace(part, dest)
            logger.info("download_complete", url=url, bytes=size, path=str(dest))
            return dest

        raise DownloadFailed(url, self.max_retries, last_error)

    async def _download_once(self, url: str, part: Path) -> int:
        client = self._get_client()
        async with client.stream("GET", url, timeout=self.timeout) as response:
            if response.status_code == 404:
                raise NotAvailableYet(url)
            if response.status_code != 200:
                raise httpx.HTTPStatusError(
                    f"Failed to download file: {response.status_code} {response.reason_phrase}",
                    request=response.request,
                    response=response,
                )
            size = 0
            with part.open("wb") as fh:
                async for chunk in response.aiter_bytes(_CHUNK_SIZE):
                    fh.write(chunk)
                    size += len(chunk)
        return size
