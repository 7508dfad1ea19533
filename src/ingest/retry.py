"""Retry policy for chunk fetches.

The default policy makes a single attempt: the orchestrator's fixed pause
between chunks is the only pacing the remote API gets.  Retries are opt-in
via ``FETCH_MAX_ATTEMPTS`` / ``FETCH_BACKOFF_SECONDS``.
"""

from pydantic import BaseModel, ConfigDict, Field

from src.ingest.errors import ChunkError
from src.ingest.models import FetchStatusKind

_DEFAULT_RETRYABLE = frozenset({FetchStatusKind.TIMEOUT, FetchStatusKind.NETWORK_ERROR})
_RETRYABLE_HTTP_CODES = frozenset({429, 502, 503, 504})


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=1, ge=1)
    backoff_seconds: tuple[float, ...] = ()
    retryable: frozenset[FetchStatusKind] = _DEFAULT_RETRYABLE
    retryable_http_codes: frozenset[int] = _RETRYABLE_HTTP_CODES

    def should_retry(self, error: ChunkError, attempt: int) -> bool:
        """Decide whether to try again after ``attempt`` (1-based) failed with ``error``."""
        if attempt >= self.max_attempts:
            return False
        if error.kind is FetchStatusKind.HTTP_ERROR:
            return getattr(error, "status_code", None) in self.retryable_http_codes
        return error.kind in self.retryable

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based).

        The last backoff value repeats when there are more retries than entries.
        """
        if not self.backoff_seconds:
            return 0.0
        index = min(attempt, len(self.backoff_seconds)) - 1
        return self.backoff_seconds[index]

    @classmethod
    def from_settings(cls, max_attempts: int, backoff_seconds: str) -> "RetryPolicy":
        """Build a policy from the comma-separated ``FETCH_BACKOFF_SECONDS`` value."""
        backoff = tuple(float(part) for part in backoff_seconds.split(",") if part.strip())
        return cls(max_attempts=max_attempts, backoff_seconds=backoff)


NO_RETRY = RetryPolicy()
