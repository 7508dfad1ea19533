"""FastAPI backend for thread insights.

Exposes ingestion, tool usage analysis and cache management over HTTP.  The
range cache is opened once at startup and shared across requests.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from src.analysis.extractor import ToolExtractor
from src.analysis.conversations import workflow_usage
from src.analysis.models import ToolRate, ToolUsage, WorkflowUsage
from src.analysis.usage import contact_rate, summarize_tool_usage, travel_agent_rate
from src.config import get_settings
from src.ingest.errors import ConfigError
from src.ingest.models import ChunkStatus, ConversationRecord, IngestionResult
from src.ingest.orchestrator import build_cache, run_ingestion
from src.observability.metrics import APP_INFO, CACHE_ENTRIES, REQUEST_DURATION, REQUESTS_TOTAL

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class RangeRequest(BaseModel):
    """Request body for POST /ingest and POST /tools."""

    start: datetime
    end: datetime
    force_refresh: bool = False


class IngestRequest(RangeRequest):
    include_records: bool = False


class IngestResponse(BaseModel):
    """Response body for POST /ingest."""

    thread_count: int
    from_cache: bool
    chunk_statuses: list[ChunkStatus]
    failed_chunks: int
    records: list[ConversationRecord] | None = None


class ToolsResponse(BaseModel):
    """Response body for POST /tools."""

    thread_count: int
    from_cache: bool
    failed_chunks: int
    observations: int
    tools: list[ToolUsage] = Field(default_factory=list)
    contact_rate: ToolRate
    travel_agent_rate: ToolRate
    workflows: list[WorkflowUsage] = Field(default_factory=list)


class CacheResponse(BaseModel):
    scope: str
    entries: int
    records: int
    size_bytes: int


class CacheClearResponse(BaseModel):
    scope: str
    removed: int


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    environment: str
    token_configured: bool
    cache_entries: int


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the range cache at startup and close it on shutdown."""
    settings = get_settings()
    APP_INFO.info({"version": "0.1.0", "environment": settings.environment})

    app.state.cache = build_cache(settings)
    logger.info("Range cache ready (scope=%s)", settings.environment)
    yield
    app.state.cache.close()
    logger.info("Shutting down thread insights")


app = FastAPI(title="Thread Insights", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _ingest(endpoint: str, request: RangeRequest) -> IngestionResult:
    """Run an ingestion for an endpoint, mapping failures to HTTP errors and recording metrics."""
    start = time.monotonic()
    try:
        result = await run_ingestion(
            request.start,
            request.end,
            cache=app.state.cache,
            force_refresh=request.force_refresh,
        )
    except ConfigError as exc:
        REQUESTS_TOTAL.labels(endpoint=endpoint, status="error").inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        logger.error("Ingestion not configured: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        REQUESTS_TOTAL.labels(endpoint=endpoint, status="error").inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except Exception as exc:
        REQUESTS_TOTAL.labels(endpoint=endpoint, status="error").inc()
        REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
        logger.exception("Ingestion failed")
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
    REQUESTS_TOTAL.labels(endpoint=endpoint, status="success").inc()
    return result


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/ingest", response_model=IngestResponse)
async def ingest(request: IngestRequest) -> IngestResponse:
    """Fetch (or serve from cache) all threads created in ``[start, end)``."""
    result = await _ingest("/ingest", request)
    return IngestResponse(
        thread_count=len(result.records),
        from_cache=result.from_cache,
        chunk_statuses=result.chunk_statuses,
        failed_chunks=len(result.failed_chunks),
        records=result.records if request.include_records else None,
    )


@app.post("/tools", response_model=ToolsResponse)
async def tools(request: RangeRequest) -> ToolsResponse:
    """Tool invocation counts, latency statistics, tool rates and workflow shares for ``[start, end)``."""
    result = await _ingest("/tools", request)
    settings = get_settings()
    observations = ToolExtractor(max_latency_seconds=settings.max_latency_seconds).extract(result.records)
    return ToolsResponse(
        thread_count=len(result.records),
        from_cache=result.from_cache,
        failed_chunks=len(result.failed_chunks),
        observations=len(observations),
        tools=summarize_tool_usage(observations),
        contact_rate=contact_rate(result.records, observations),
        travel_agent_rate=travel_agent_rate(result.records, observations),
        workflows=workflow_usage(result.records),
    )


@app.get("/cache", response_model=CacheResponse)
async def cache_stats() -> CacheResponse:
    """Live entries in the range cache for the configured environment."""
    cache = app.state.cache
    stats = cache.stats()
    CACHE_ENTRIES.set(stats["entries"])
    return CacheResponse(scope=cache.scope, **stats)


@app.delete("/cache", response_model=CacheClearResponse)
async def clear_cache() -> CacheClearResponse:
    """Drop every cached range for the configured environment."""
    cache = app.state.cache
    removed = cache.clear()
    CACHE_ENTRIES.set(0)
    return CacheClearResponse(scope=cache.scope, removed=removed)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Report configuration and cache health."""
    settings = get_settings()
    token_configured = bool(settings.threads_api_token.strip())
    try:
        entries = app.state.cache.stats()["entries"]
    except Exception:
        logger.exception("Range cache health check failed")
        return HealthResponse(
            status="unhealthy",
            environment=settings.environment,
            token_configured=token_configured,
            cache_entries=0,
        )

    return HealthResponse(
        status="healthy" if token_configured else "degraded",
        environment=settings.environment,
        token_configured=token_configured,
        cache_entries=entries,
    )
