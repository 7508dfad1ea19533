"""Drive a full ingestion run: cache → plan → sequential fetch → merge → cache.

Chunks are fetched strictly one at a time with a fixed pause between
requests.  Individual chunk failures are recorded in the status list and
never stop the run; only a missing API token aborts it, before any request
is made.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta
from typing import Protocol

from src.config import Settings, get_settings
from src.ingest.cache import RangeCache, get_initialized_connection
from src.ingest.errors import ConfigError
from src.ingest.fetcher import ChunkFetcher, build_client
from src.ingest.models import (
    ChunkOutcome,
    ChunkStatus,
    FetchProgress,
    IngestionResult,
    TimeChunk,
    ensure_aware,
)
from src.ingest.planner import DEFAULT_DAY_BOUNDARIES, parse_boundaries, plan_chunks
from src.ingest.retry import RetryPolicy
from src.observability.metrics import CACHE_ENTRIES, INGESTION_RUNS_TOTAL

logger = logging.getLogger(__name__)

DEFAULT_INTER_CHUNK_DELAY_SECONDS = 0.1

ProgressCallback = Callable[[FetchProgress], None]


class Fetcher(Protocol):
    async def fetch(self, chunk: TimeChunk, chunk_index: int) -> ChunkOutcome: ...


class IngestionOrchestrator:
    """Runs one ingestion for a time range against an injected fetcher and cache."""

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        cache: RangeCache,
        api_token: str,
        boundaries: Sequence[int] = DEFAULT_DAY_BOUNDARIES,
        inter_chunk_delay: float = DEFAULT_INTER_CHUNK_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._api_token = api_token
        self._boundaries = tuple(boundaries)
        self._inter_chunk_delay = inter_chunk_delay
        self._sleep = sleep

    def _check_credentials(self) -> None:
        if not self._api_token.strip():
            msg = "Thread API token not configured (THREADS_API_TOKEN is empty)"
            raise ConfigError(msg)

    @staticmethod
    def _notify(on_progress: ProgressCallback | None, progress: FetchProgress) -> None:
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception:
            logger.warning("Progress callback failed", exc_info=True)

    async def run(
        self,
        start: datetime,
        end: datetime,
        on_progress: ProgressCallback | None = None,
        *,
        force_refresh: bool = False,
    ) -> IngestionResult:
        """Fetch all records created in ``[start, end)``.

        Args:
            start: Inclusive start of the range (naive values are read as UTC).
            end: Exclusive end of the range.
            on_progress: Called synchronously after every chunk, in chunk order.
            force_refresh: Drop any cached entry for this exact range and refetch.

        Returns:
            The merged records in chunk order plus one status per chunk. A
            cache hit returns the cached records and no chunk statuses.

        Raises:
            ConfigError: If the API token is missing (no chunk is attempted).
            ValueError: If ``start`` is after ``end``.
        """
        start, end = ensure_aware(start), ensure_aware(end)
        if start > end:
            raise ValueError(f"start ({start.isoformat()}) must not be after end ({end.isoformat()})")

        if force_refresh:
            self._cache.invalidate(start, end)
        else:
            cached = self._cache.lookup(start, end)
            if cached is not None:
                INGESTION_RUNS_TOTAL.labels(outcome="cache_hit").inc()
                return IngestionResult(records=cached, from_cache=True)

        self._check_credentials()

        chunks = plan_chunks(start, end, self._boundaries)
        logger.info("Fetching %s - %s in %d chunks", start.isoformat(), end.isoformat(), len(chunks))

        outcomes: list[ChunkOutcome] = []
        statuses: list[ChunkStatus] = []
        for index, chunk in enumerate(chunks):
            if index > 0 and self._inter_chunk_delay > 0:
                await self._sleep(self._inter_chunk_delay)

            outcome = await self._fetcher.fetch(chunk, index)
            outcomes.append(outcome)
            statuses.append(
                ChunkStatus(
                    chunk_index=index,
                    status=outcome.status.display(),
                    label=chunk.label,
                    message=None if outcome.status.ok else outcome.status.message,
                )
            )
            self._notify(
                on_progress,
                FetchProgress(current=index + 1, total=len(chunks), current_label=chunk.label),
            )

        outcomes.sort(key=lambda o: o.chunk_index)
        records = [record for outcome in outcomes for record in outcome.records]
        result = IngestionResult(records=records, chunk_statuses=statuses)

        if result.all_failed:
            INGESTION_RUNS_TOTAL.labels(outcome="failed").inc()
            logger.error("All %d chunks failed for %s - %s", len(chunks), start.isoformat(), end.isoformat())
            return result

        self._cache.store(start, end, records)
        CACHE_ENTRIES.set(self._cache.stats()["entries"])

        if result.failed_chunks:
            INGESTION_RUNS_TOTAL.labels(outcome="partial").inc()
            logger.warning(
                "%d of %d chunks failed; returning %d records from the rest",
                len(result.failed_chunks),
                len(chunks),
                len(records),
            )
        elif result.is_empty:
            INGESTION_RUNS_TOTAL.labels(outcome="empty").inc()
            logger.info("No threads found for %s - %s", start.isoformat(), end.isoformat())
        else:
            INGESTION_RUNS_TOTAL.labels(outcome="success").inc()
            logger.info("Fetched %d threads", len(records))
        return result


# ---------------------------------------------------------------------------
# Settings-driven convenience
# ---------------------------------------------------------------------------


def build_cache(settings: Settings | None = None) -> RangeCache:
    """Open the configured range cache, scoped to the configured environment.

    Raises:
        ConfigError: If the cache settings are invalid.
    """
    settings = settings or get_settings()
    if settings.cache_max_entries < 1:
        raise ConfigError(f"CACHE_MAX_ENTRIES must be at least 1, got {settings.cache_max_entries}")
    conn = get_initialized_connection(settings.cache_db_path or ":memory:")
    return RangeCache(
        conn,
        ttl=timedelta(minutes=settings.cache_ttl_minutes),
        max_entries=settings.cache_max_entries,
        scope=settings.environment,
    )


def _fetch_settings(settings: Settings) -> tuple[RetryPolicy, tuple[int, ...]]:
    """Parse the retry policy and chunk boundaries, reporting bad values as ConfigError."""
    try:
        retry_policy = RetryPolicy.from_settings(settings.fetch_max_attempts, settings.fetch_backoff_seconds)
    except ValueError as exc:
        raise ConfigError(f"Invalid FETCH_MAX_ATTEMPTS / FETCH_BACKOFF_SECONDS: {exc}") from exc
    try:
        boundaries = parse_boundaries(settings.chunk_boundary_hours)
    except ValueError as exc:
        raise ConfigError(f"Invalid CHUNK_BOUNDARY_HOURS: {exc}") from exc
    return retry_policy, boundaries


async def run_ingestion(
    start: datetime,
    end: datetime,
    *,
    cache: RangeCache | None = None,
    on_progress: ProgressCallback | None = None,
    force_refresh: bool = False,
    settings: Settings | None = None,
) -> IngestionResult:
    """Run an ingestion with the HTTP client, retry policy, and cache built from settings.

    Raises:
        ConfigError: If the token is missing or a fetch or cache setting is invalid.
        ValueError: If ``start`` is after ``end``.
    """
    settings = settings or get_settings()
    retry_policy, boundaries = _fetch_settings(settings)
    cache = cache or build_cache(settings)

    async with build_client(
        settings.threads_api_base_url,
        settings.threads_api_token,
        timeout=settings.request_timeout_seconds,
    ) as client:
        fetcher = ChunkFetcher(client, limit=settings.fetch_limit, retry_policy=retry_policy)
        orchestrator = IngestionOrchestrator(
            fetcher,
            cache=cache,
            api_token=settings.threads_api_token,
            boundaries=boundaries,
            inter_chunk_delay=settings.inter_chunk_delay_seconds,
        )
        return await orchestrator.run(start, end, on_progress, force_refresh=force_refresh)
