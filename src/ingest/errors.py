"""Ingestion error taxonomy.

Only ``ConfigError`` ever reaches callers of the orchestrator.  The per-chunk
errors are raised inside the fetcher's request helper, consulted by the retry
policy, and turned into ``FetchStatus`` metadata at the fetcher boundary.
"""

from src.ingest.models import FetchStatus, FetchStatusKind


class IngestError(Exception):
    """Base class for ingestion errors."""


class ConfigError(IngestError):
    """A required setting (e.g. the API token) is missing. Fatal for the run."""


class ChunkError(IngestError):
    """A recoverable failure of one chunk fetch."""

    kind: FetchStatusKind = FetchStatusKind.NETWORK_ERROR

    def to_status(self) -> FetchStatus:
        return FetchStatus(kind=self.kind, message=str(self))


class HttpError(ChunkError):
    kind = FetchStatusKind.HTTP_ERROR

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code

    def to_status(self) -> FetchStatus:
        return FetchStatus(kind=self.kind, status_code=self.status_code, message=str(self))


class FetchTimeoutError(ChunkError):
    """Gateway or client timeout, reported separately from other HTTP errors."""

    kind = FetchStatusKind.TIMEOUT


class NetworkError(ChunkError):
    kind = FetchStatusKind.NETWORK_ERROR


class ParseError(ChunkError):
    """The response body was missing or did not match the threads schema."""

    kind = FetchStatusKind.PARSE_ERROR
