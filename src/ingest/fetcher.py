"""Fetch one chunk of threads from the remote API and classify the outcome.

``ChunkFetcher.fetch`` never raises: HTTP errors, timeouts, transport errors
and malformed bodies all come back as a ``ChunkOutcome`` with a failure
status so the orchestrator can carry on with the next chunk.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx
from pydantic import ValidationError

from src.ingest.errors import ChunkError, FetchTimeoutError, HttpError, NetworkError, ParseError
from src.ingest.models import ChunkOutcome, ConversationRecord, FetchStatus, FetchStatusKind, TimeChunk, ensure_aware
from src.ingest.retry import NO_RETRY, RetryPolicy
from src.observability.metrics import CHUNK_FETCH_DURATION, CHUNK_FETCHES_TOTAL, RECORDS_FETCHED_TOTAL

logger = logging.getLogger(__name__)

# --- Constants ---

THREADS_ENDPOINT = "/thread"
DEFAULT_LIMIT = 10000
DEFAULT_TIMEOUT_SECONDS = 60

_TIMEOUT_MARKERS = ("504", "timeout", "timed out", "gateway time")


def to_api_timestamp(dt: datetime) -> str:
    """Format a datetime the way the API expects: UTC, millisecond precision, ``Z`` suffix."""
    return ensure_aware(dt).astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _looks_like_timeout(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _TIMEOUT_MARKERS)


def parse_threads_response(response: httpx.Response) -> list[ConversationRecord]:
    """Map a ``{threads: [{thread: {...}}]}`` body to canonical records.

    Raises:
        ParseError: If the body is not JSON, has no ``threads`` list, or a
            thread does not validate.
    """
    try:
        body: object = response.json()
    except ValueError as e:
        raise ParseError("Response body is not valid JSON") from e

    if not isinstance(body, dict) or not isinstance(body.get("threads"), list):
        raise ParseError("Response body has no 'threads' list")

    records: list[ConversationRecord] = []
    for item in body["threads"]:
        thread = item.get("thread") if isinstance(item, dict) else None
        if not isinstance(thread, dict):
            raise ParseError("Thread item is missing its 'thread' object")
        try:
            records.append(ConversationRecord.model_validate(thread))
        except ValidationError as e:
            raise ParseError(f"Invalid thread {thread.get('id', '?')}: {e.error_count()} validation error(s)") from e
    return records


class ChunkFetcher:
    """Retrieves a single chunk's records through a shared ``httpx.AsyncClient``.

    The client is expected to carry the base URL and the bearer token; see
    ``build_client``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        limit: int = DEFAULT_LIMIT,
        retry_policy: RetryPolicy = NO_RETRY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._limit = limit
        self._retry_policy = retry_policy
        self._sleep = sleep

    async def _request(self, chunk: TimeChunk) -> tuple[int, list[ConversationRecord]]:
        payload = {
            "startTimestamp": to_api_timestamp(chunk.start),
            "endTimestamp": to_api_timestamp(chunk.end),
            "limit": self._limit,
        }
        try:
            response = await self._client.post(THREADS_ENDPOINT, json=payload)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(str(e) or "Request timed out") from e
        except httpx.HTTPError as e:
            message = str(e) or type(e).__name__
            if _looks_like_timeout(message):
                raise FetchTimeoutError(message) from e
            raise NetworkError(message) from e

        if not response.is_success:
            raise HttpError(response.status_code, f"HTTP {response.status_code}: {response.reason_phrase}")
        return response.status_code, parse_threads_response(response)

    async def fetch(self, chunk: TimeChunk, chunk_index: int) -> ChunkOutcome:
        """Fetch ``chunk`` and return a classified outcome. Never raises."""
        start = time.monotonic()
        attempt = 0
        while True:
            attempt += 1
            try:
                status_code, records = await self._request(chunk)
            except ChunkError as e:
                if self._retry_policy.should_retry(e, attempt):
                    delay = self._retry_policy.delay_for(attempt)
                    logger.warning(
                        "Chunk %d (%s) attempt %d failed (%s), retrying in %.1fs",
                        chunk_index,
                        chunk.label,
                        attempt,
                        e,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                status = e.to_status()
                records = []
                logger.warning("Chunk %d (%s) failed: %s", chunk_index, chunk.label, e)
            except Exception as e:
                # Anything the client raises outside httpx's hierarchy is still a per-chunk failure
                logger.exception("Chunk %d (%s) failed unexpectedly", chunk_index, chunk.label)
                status = FetchStatus(kind=FetchStatusKind.NETWORK_ERROR, message=str(e) or type(e).__name__)
                records = []
            else:
                status = FetchStatus(kind=FetchStatusKind.SUCCESS, status_code=status_code)
                logger.info("Chunk %d (%s): %d threads", chunk_index, chunk.label, len(records))
            break

        CHUNK_FETCH_DURATION.observe(time.monotonic() - start)
        CHUNK_FETCHES_TOTAL.labels(status=status.kind.value).inc()
        RECORDS_FETCHED_TOTAL.inc(len(records))
        return ChunkOutcome(chunk_index=chunk_index, status=status, records=records)


def build_client(
    base_url: str,
    api_token: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> httpx.AsyncClient:
    """Create the AsyncClient used for all chunk requests of one run."""
    return httpx.AsyncClient(
        base_url=base_url,
        headers={
            "Authorization": f"Bearer {api_token.strip()}",
            "Content-Type": "application/json",
        },
        timeout=timeout,
    )
