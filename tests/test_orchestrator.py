"""Tests for the ingestion orchestrator with a fake fetcher and in-memory cache."""

import asyncio
import random
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import respx

from src.ingest.cache import RangeCache, get_connection
from src.ingest.errors import ConfigError
from src.ingest.models import (
    ChunkOutcome,
    ConversationRecord,
    FetchProgress,
    FetchStatus,
    FetchStatusKind,
    TimeChunk,
)
from src.ingest.orchestrator import IngestionOrchestrator, build_cache, run_ingestion

START = datetime(2024, 5, 1, 10, tzinfo=UTC)
END = datetime(2024, 5, 1, 20, tzinfo=UTC)  # 10-12, 12-17, 17-19, 19-20


class FakeFetcher:
    """Returns one record per chunk after a random delay; selected chunks fail."""

    def __init__(self, fail: dict[int, FetchStatus] | None = None, jitter: bool = False) -> None:
        self.fail = fail or {}
        self.jitter = jitter
        self.calls: list[int] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, chunk: TimeChunk, chunk_index: int) -> ChunkOutcome:
        self.calls.append(chunk_index)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.jitter:
                await asyncio.sleep(random.uniform(0, 0.01))
            if chunk_index in self.fail:
                return ChunkOutcome(chunk_index=chunk_index, status=self.fail[chunk_index])
            record = ConversationRecord(id=f"r{chunk_index}", created_at=chunk.start)
            return ChunkOutcome(
                chunk_index=chunk_index,
                status=FetchStatus(kind=FetchStatusKind.SUCCESS, status_code=200),
                records=[record],
            )
        finally:
            self.in_flight -= 1


def _cache() -> RangeCache:
    return RangeCache(get_connection(":memory:"))


def _orchestrator(fetcher: FakeFetcher, cache: RangeCache | None = None, **kwargs: Any) -> IngestionOrchestrator:
    sleeps: list[float] = kwargs.pop("sleeps", [])

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return IngestionOrchestrator(
        fetcher,
        cache=cache or _cache(),
        api_token=kwargs.pop("api_token", "test-token"),
        sleep=fake_sleep,
        **kwargs,
    )


class TestRun:
    async def test_records_follow_chunk_order(self) -> None:
        fetcher = FakeFetcher(jitter=True)

        result = await _orchestrator(fetcher).run(START, END)

        assert [r.id for r in result.records] == ["r0", "r1", "r2", "r3"]
        assert [s.chunk_index for s in result.chunk_statuses] == [0, 1, 2, 3]
        assert fetcher.calls == [0, 1, 2, 3]
        assert fetcher.max_in_flight == 1
        assert not result.from_cache

    async def test_fixed_delay_between_chunks(self) -> None:
        sleeps: list[float] = []

        await _orchestrator(FakeFetcher(), sleeps=sleeps, inter_chunk_delay=0.1).run(START, END)

        assert sleeps == [0.1, 0.1, 0.1]

    async def test_partial_failure_keeps_other_records(self) -> None:
        fetcher = FakeFetcher(
            fail={
                1: FetchStatus(kind=FetchStatusKind.HTTP_ERROR, status_code=503, message="HTTP 503"),
                2: FetchStatus(kind=FetchStatusKind.TIMEOUT, message="timed out"),
            }
        )

        result = await _orchestrator(fetcher).run(START, END)

        assert [r.id for r in result.records] == ["r0", "r3"]
        assert [s.status for s in result.chunk_statuses] == ["200", "503", "Timeout", "200"]
        assert [s.chunk_index for s in result.failed_chunks] == [1, 2]
        assert result.chunk_statuses[1].message == "HTTP 503"
        assert not result.all_failed

    async def test_all_failed_is_distinguishable_from_empty(self) -> None:
        error = FetchStatus(kind=FetchStatusKind.NETWORK_ERROR, message="down")
        cache = _cache()

        result = await _orchestrator(FakeFetcher(fail=dict.fromkeys(range(4), error)), cache).run(START, END)

        assert result.records == []
        assert result.all_failed
        assert [s.status for s in result.chunk_statuses] == ["Error"] * 4
        # A failed run is not cached
        assert cache.lookup(START, END) is None

    async def test_missing_token_raises_before_any_fetch(self) -> None:
        fetcher = FakeFetcher()

        with pytest.raises(ConfigError):
            await _orchestrator(fetcher, api_token="  ").run(START, END)

        assert fetcher.calls == []

    async def test_start_after_end_rejected(self) -> None:
        with pytest.raises(ValueError):
            await _orchestrator(FakeFetcher()).run(END, START)

    async def test_empty_range(self) -> None:
        result = await _orchestrator(FakeFetcher()).run(START, START)

        assert result.records == []
        assert result.chunk_statuses == []
        assert not result.all_failed


class TestCaching:
    async def test_second_run_is_served_from_cache(self) -> None:
        cache = _cache()
        fetcher = FakeFetcher()
        orchestrator = _orchestrator(fetcher, cache)

        first = await orchestrator.run(START, END)
        second = await orchestrator.run(START, END)

        assert second.from_cache
        assert second.records == first.records
        assert second.chunk_statuses == []
        assert fetcher.calls == [0, 1, 2, 3]

    async def test_cache_hit_does_not_need_token(self) -> None:
        cache = _cache()
        await _orchestrator(FakeFetcher(), cache).run(START, END)

        result = await _orchestrator(FakeFetcher(), cache, api_token="").run(START, END)

        assert result.from_cache

    async def test_sub_range_served_from_superset(self) -> None:
        cache = _cache()
        await _orchestrator(FakeFetcher(), cache).run(START, END)
        fetcher = FakeFetcher()

        result = await _orchestrator(fetcher, cache).run(
            datetime(2024, 5, 1, 12, tzinfo=UTC),
            datetime(2024, 5, 1, 19, tzinfo=UTC),
        )

        assert result.from_cache
        assert [r.id for r in result.records] == ["r1", "r2"]
        assert fetcher.calls == []

    async def test_force_refresh_refetches(self) -> None:
        cache = _cache()
        await _orchestrator(FakeFetcher(), cache).run(START, END)
        fetcher = FakeFetcher()

        result = await _orchestrator(fetcher, cache).run(START, END, force_refresh=True)

        assert not result.from_cache
        assert fetcher.calls == [0, 1, 2, 3]

    async def test_partial_result_is_cached(self) -> None:
        cache = _cache()
        error = FetchStatus(kind=FetchStatusKind.TIMEOUT, message="slow")
        await _orchestrator(FakeFetcher(fail={0: error}), cache).run(START, END)

        cached = cache.lookup(START, END)
        assert cached is not None
        assert [r.id for r in cached] == ["r1", "r2", "r3"]


class TestProgress:
    async def test_progress_after_every_chunk(self) -> None:
        updates: list[FetchProgress] = []

        await _orchestrator(FakeFetcher()).run(START, END, updates.append)

        assert [(u.current, u.total) for u in updates] == [(1, 4), (2, 4), (3, 4), (4, 4)]
        assert updates[0].current_label == "2024-05-01 10:00-12:00"

    async def test_failing_callback_does_not_stop_run(self) -> None:
        def explode(_progress: FetchProgress) -> None:
            raise RuntimeError("UI went away")

        result = await _orchestrator(FakeFetcher()).run(START, END, explode)

        assert len(result.records) == 4


@pytest.mark.integration
class TestRunIngestion:
    @respx.mock
    async def test_end_to_end_with_settings(self, mock_settings: Any) -> None:
        route = respx.post("http://threads.test/api/thread").mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={"threads": [{"thread": {"id": "t1", "createdAt": "2024-05-01T10:30:00Z", "messages": []}}]},
                ),
                httpx.Response(502),
            ]
        )

        result = await run_ingestion(
            START,
            datetime(2024, 5, 1, 13, tzinfo=UTC),
            cache=_cache(),
            settings=mock_settings,
        )

        assert route.call_count == 2
        assert [r.id for r in result.records] == ["t1"]
        assert [s.status for s in result.chunk_statuses] == ["200", "502"]

    async def test_blank_token_raises_config_error(self, mock_settings: Any) -> None:
        mock_settings.threads_api_token = ""
        with pytest.raises(ConfigError):
            await run_ingestion(START, END, cache=_cache(), settings=mock_settings)

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("fetch_backoff_seconds", "1,soon", "FETCH_BACKOFF_SECONDS"),
            ("fetch_max_attempts", 0, "FETCH_MAX_ATTEMPTS"),
            ("chunk_boundary_hours", "0,17,12", "CHUNK_BOUNDARY_HOURS"),
            ("chunk_boundary_hours", "6,12", "CHUNK_BOUNDARY_HOURS"),
        ],
    )
    async def test_invalid_fetch_settings_raise_config_error(
        self, mock_settings: Any, field: str, value: object, message: str
    ) -> None:
        setattr(mock_settings, field, value)
        with pytest.raises(ConfigError, match=message):
            await run_ingestion(START, END, cache=_cache(), settings=mock_settings)

    def test_invalid_cache_size_raises_config_error(self, mock_settings: Any) -> None:
        mock_settings.cache_max_entries = 0
        with pytest.raises(ConfigError, match="CACHE_MAX_ENTRIES"):
            build_cache(mock_settings)
