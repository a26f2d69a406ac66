"""
FastAPI routes for the TFT Blog aggregator API.
"""

import asyncio
import json
from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from tftblog.config import get_settings
from tftblog.models.database import Database
from tftblog.models.domain import Platform, SourceTarget, utcnow
from tftblog.services.auth import ApiKeyAuthGate, AuthGate
from tftblog.services.cache import TTLCache
from tftblog.services.data_ingestion.errors import AuthorizationError
from tftblog.services.persistence import ArticleStore, SqlArticleStore
from tftblog.services.pipeline import PipelineService, exit_code, resolve_platforms
from tftblog.services.sources import (
    DuplicateSourceError,
    ProtectedSourceError,
    SourceNotFoundError,
    SourceRegistry,
)
from tftblog.services.statistics import StatisticsService

logger = structlog.get_logger(__name__)
router = APIRouter()

# Set by the application lifespan
_database: Optional[Database] = None

# Results cached per process; cleared when the database changes
_preview_caches: dict[Platform, TTLCache] = {}
_stats_cache: Optional[TTLCache] = None


def set_database(database: Optional[Database]) -> None:
    global _database, _stats_cache
    _database = database
    _preview_caches.clear()
    _stats_cache = None


def get_database() -> Database:
    if _database is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Database not initialized")
    return _database


def get_store(database: Annotated[Database, Depends(get_database)]) -> ArticleStore:
    return SqlArticleStore(database)


def get_registry(database: Annotated[Database, Depends(get_database)]) -> SourceRegistry:
    return SourceRegistry(database)


def get_statistics(store: Annotated[ArticleStore, Depends(get_store)]) -> StatisticsService:
    return StatisticsService(store)


def get_pipeline(
    registry: Annotated[SourceRegistry, Depends(get_registry)],
    store: Annotated[ArticleStore, Depends(get_store)],
) -> PipelineService:
    return PipelineService(registry, store, get_settings())


def get_auth_gate() -> AuthGate:
    return ApiKeyAuthGate(get_settings().admin_api_key)


def require_admin(request: Request, gate: Annotated[AuthGate, Depends(get_auth_gate)]) -> None:
    """Dependency: reject non-admin callers with 403 before doing anything."""
    try:
        gate.require_admin(request.headers)
    except AuthorizationError as e:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(e))


def _parse_platform(value: str) -> Platform:
    try:
        return Platform.parse(value)
    except ValueError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e))


def _preview_cache(platform: Platform) -> TTLCache:
    if platform not in _preview_caches:
        _preview_caches[platform] = TTLCache(get_settings().cache_ttl_seconds)
    return _preview_caches[platform]


def _stats(settings_ttl: int) -> TTLCache:
    global _stats_cache
    if _stats_cache is None:
        _stats_cache = TTLCache(settings_ttl)
    return _stats_cache


StoreDep = Annotated[ArticleStore, Depends(get_store)]
RegistryDep = Annotated[SourceRegistry, Depends(get_registry)]
StatisticsDep = Annotated[StatisticsService, Depends(get_statistics)]
PipelineDep = Annotated[PipelineService, Depends(get_pipeline)]
AdminDep = Depends(require_admin)


# ============================================================================
# Feed Routes
# ============================================================================


@router.get("/feeds")
async def list_feeds(
    store: StoreDep,
    platform: Optional[str] = None,
    author: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: Optional[int] = Query(default=None, ge=1),
):
    """
    Paginated article listing, newest first.

    Filters by platform and/or author when given.
    """
    settings = get_settings()
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    platform_value = _parse_platform(platform).value if platform else None

    result = await store.query(platform=platform_value, author=author, page=page, page_size=size)
    return {
        "items": [a.model_dump(mode="json") for a in result.items],
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
        "page_count": result.page_count,
    }


@router.get("/feeds/preview")
async def preview_feeds(
    pipeline: PipelineDep,
    platform: str = Query(default=Platform.BILIBILI.value),
    refresh: bool = False,
):
    """
    Live poll of one platform without persisting, cached for the TTL.

    Only articles inside the freshness window are returned.
    """
    selected = _parse_platform(platform)
    cache = _preview_cache(selected)

    cached = None if refresh else cache.get()
    if cached is None:
        logger.info("Refreshing preview", platform=selected.value)
        articles = await pipeline.preview(selected.value)
        cached = {
            "items": [a.model_dump(mode="json") for a in articles],
            "generated_at": utcnow().isoformat(),
        }
        cache.set(cached)
        from_cache = False
    else:
        from_cache = True

    return {
        "platform": selected.value,
        "cached": from_cache,
        "remaining_ttl": round(cache.remaining_ttl()),
        **cached,
    }


@router.get("/platforms")
async def list_platforms(statistics: StatisticsDep):
    """Known platforms and those with stored articles."""
    return {
        "platforms": [p.value for p in Platform],
        "with_articles": await statistics.platforms(),
        "counts": await statistics.platform_counts(),
    }


@router.get("/authors")
async def list_authors(statistics: StatisticsDep, platform: Optional[str] = None):
    """Authors grouped by platform with article counts."""
    platform_value = _parse_platform(platform).value if platform else None
    grouped = await statistics.authors_by_platform(platform_value)
    return {
        "authors": {
            name: [a.model_dump() for a in authors] for name, authors in grouped.items()
        },
        "total": sum(len(authors) for authors in grouped.values()),
    }


@router.get("/aggregation/stats", dependencies=[AdminDep])
async def aggregation_stats(statistics: StatisticsDep, refresh: bool = False):
    """Per (platform, author) totals and trailing-week counts."""
    cache = _stats(get_settings().cache_ttl_seconds)
    data = None if refresh else cache.get()
    if data is None:
        activity = await statistics.author_activity()
        data = [row.model_dump(mode="json") for row in activity]
        cache.set(data)
    return {"items": data, "remaining_ttl": round(cache.remaining_ttl())}


# ============================================================================
# Source Routes
# ============================================================================


class SourceCreate(BaseModel):
    platform: str
    display_name: str = Field(min_length=1)
    identifier: str = Field(min_length=1)
    enabled: bool = True
    metadata: dict[str, str] = Field(default_factory=dict)


class SourceUpdate(BaseModel):
    enabled: bool


@router.get("/sources")
async def list_sources(registry: RegistryDep, platform: Optional[str] = None):
    """Configured targets, optionally for one platform."""
    selected = _parse_platform(platform) if platform else None
    targets = await registry.list_targets(selected)
    return {"items": [t.model_dump(mode="json") for t in targets], "total": len(targets)}


@router.post("/sources", status_code=status.HTTP_201_CREATED, dependencies=[AdminDep])
async def create_source(body: SourceCreate, registry: RegistryDep):
    target = SourceTarget(
        platform=_parse_platform(body.platform),
        display_name=body.display_name,
        identifier=body.identifier,
        enabled=body.enabled,
        metadata=body.metadata,
    )
    try:
        created = await registry.add_target(target)
    except DuplicateSourceError as e:
        raise HTTPException(status.HTTP_409_CONFLICT, str(e))
    return created.model_dump(mode="json")


@router.patch("/sources/{source_id}", dependencies=[AdminDep])
async def update_source(source_id: int, body: SourceUpdate, registry: RegistryDep):
    try:
        updated = await registry.set_enabled(source_id, body.enabled)
    except SourceNotFoundError as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    return updated.model_dump(mode="json")


@router.delete(
    "/sources/{source_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[AdminDep]
)
async def delete_source(source_id: int, registry: RegistryDep):
    try:
        await registry.remove_target(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(e))
    except ProtectedSourceError as e:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(e))


# ============================================================================
# Admin Routes
# ============================================================================


# Fetch runs outlive their stream when the client disconnects
_running_fetches: set[asyncio.Task] = set()


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _log_abandoned_run(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Fetch run failed after stream closed", error=str(error))
        return
    for report in task.result().values():
        logger.info("Fetch run stopped after stream closed", summary=str(report))


@router.get("/admin/fetch", dependencies=[AdminDep])
async def trigger_fetch(pipeline: PipelineDep, platforms: Optional[str] = None):
    """
    Run a fetch and stream progress as Server-Sent Events.

    Events are JSON objects with a `type` of start, progress or end; the end
    event carries `code` 0 when every target succeeded, else 1.
    """
    names = [p for p in (platforms or "").split(",") if p.strip()]
    try:
        selected = resolve_platforms(names)
    except ValueError as e:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(e))

    async def stream():
        queue: asyncio.Queue = asyncio.Queue()
        cancel_event = asyncio.Event()

        async def on_progress(line: str) -> None:
            await queue.put(line)

        yield _sse({"type": "start", "platforms": [p.value for p in selected]})

        task = asyncio.create_task(
            pipeline.run(
                [p.value for p in selected], on_progress=on_progress, cancel_event=cancel_event
            )
        )
        _running_fetches.add(task)
        task.add_done_callback(_running_fetches.discard)
        try:
            while not task.done() or not queue.empty():
                try:
                    line = await asyncio.wait_for(queue.get(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                yield _sse({"type": "progress", "message": line})
        finally:
            if not task.done():
                # Client went away; the run stops at its next pause
                logger.info("Fetch stream closed, cancelling run")
                cancel_event.set()
                task.add_done_callback(_log_abandoned_run)

        try:
            reports = task.result()
        except Exception as e:
            logger.error("Fetch run failed", error=str(e))
            yield _sse({"type": "end", "code": 1, "message": str(e)})
            return

        yield _sse(
            {
                "type": "end",
                "code": exit_code(reports),
                "reports": [r.to_dict() for r in reports.values()],
            }
        )

    return StreamingResponse(stream(), media_type="text/event-stream")


# ============================================================================
# Health Check
# ============================================================================


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": get_settings().app_version,
    }
