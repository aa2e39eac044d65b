"""Error taxonomy for ingestion, storage and queries."""


class BmvFinderError(Exception):
    """Base class for all application errors."""


class NotAvailableYet(BmvFinderError):
    """The upstream file for the requested period has not been published.

    This is an expected condition: callers should retry later rather than alarm.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(
            f"Update file not found at {url}. The data for this month may not be available yet."
        )


class DownloadFailed(BmvFinderError):
    """A download failed after exhausting all retries."""

    def __init__(self, url: str, attempts: int, last_error: str) -> None:
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Failed to download {url} after {attempts} attempts. Last error: {last_error}"
        )


class ParseFailed(BmvFinderError):
    """A CSV row is structurally malformed; the whole run must abort."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        self.line_number = line_number
        prefix = f"line {line_number}: " if line_number is not None else ""
        super().__init__(f"{prefix}{message}")


class StorageError(BmvFinderError):
    """A statement against the store failed."""


class BatchWriteFailed(StorageError):
    """One batch of an upsert failed; the run records it and continues."""

    def __init__(self, batch_size: int, cause: str) -> None:
        self.batch_size = batch_size
        super().__init__(f"Batch of {batch_size} rows failed: {cause}")


class StorageUnavailable(StorageError):
    """The store cannot be reached at all."""
