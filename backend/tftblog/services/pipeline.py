"""
Pipeline service - runs the fetch orchestrators for the selected platforms.

Platforms hit independent upstreams, so their orchestrators run
concurrently; each one is sequential inside.
"""
import asyncio
import random
from datetime import timedelta
from typing import Awaitable, Callable, Iterable, Optional

import httpx
import structlog

from tftblog.config import Settings
from tftblog.models.domain import Article, Platform, SaveResult
from tftblog.services.data_ingestion.base import BaseAdapter
from tftblog.services.data_ingestion.orchestrator import (
    BackoffPolicy,
    FetchOrchestrator,
    FetchReport,
    ProgressCallback,
)
from tftblog.services.data_ingestion.registry import build_adapter
from tftblog.services.dedup import deduplicate, filter_recent
from tftblog.services.persistence import ArticleStore
from tftblog.services.sources import SourceRegistry

logger = structlog.get_logger()

AdapterFactory = Callable[[Platform, Settings, Optional[httpx.AsyncClient]], BaseAdapter]


def resolve_platforms(names: Optional[Iterable[str]]) -> list[Platform]:
    """
    Platforms for a run; None or empty selects all of them.

    Raises:
        ValueError: a name does not match any platform
    """
    if not names:
        return list(Platform)
    selected = []
    for name in names:
        platform = Platform.parse(name.strip())
        if platform not in selected:
            selected.append(platform)
    return selected


def exit_code(reports: dict[Platform, FetchReport]) -> int:
    """0 when every target of every platform succeeded, else 1."""
    return 0 if all(r.success for r in reports.values()) else 1


class PipelineService:
    """
    Entry point for fetch runs from the API, the scheduler and the CLI.

    Sleep and randomness are passed through to every orchestrator so runs
    can be driven without real delays.
    """

    def __init__(
        self,
        sources: SourceRegistry,
        store: ArticleStore,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        adapter_factory: AdapterFactory = build_adapter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.sources = sources
        self.store = store
        self.settings = settings
        self.client = client
        self.adapter_factory = adapter_factory
        self.policy = BackoffPolicy.from_settings(settings.fetch)
        self._sleep = sleep
        self._rng = rng

    async def run(
        self,
        platforms: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> dict[Platform, FetchReport]:
        """
        Fetch and persist every enabled target of the selected platforms.

        Raises:
            ValueError: unknown platform name (before any network activity)
        """
        selected = resolve_platforms(platforms)
        logger.info("Fetch run starting", platforms=[p.value for p in selected])

        reports = await asyncio.gather(
            *(self._run_platform(p, self.store.save_all, on_progress, cancel_event) for p in selected)
        )
        results = dict(zip(selected, reports))

        for report in results.values():
            logger.info("Platform run finished", summary=str(report))
        return results

    async def preview(
        self,
        platform: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[Article]:
        """
        Poll one platform without persisting anything.

        Results are deduplicated, limited to the freshness window and sorted
        newest first.
        """
        selected = Platform.parse(platform)
        collected: list[Article] = []

        async def collect(articles: list[Article]) -> SaveResult:
            collected.extend(articles)
            return SaveResult(article_count=len(articles))

        await self._run_platform(selected, collect, on_progress, None)

        window = timedelta(days=self.settings.fetch.freshness_days)
        return filter_recent(deduplicate(collected), window)

    async def _run_platform(
        self,
        platform: Platform,
        sink,
        on_progress: Optional[ProgressCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> FetchReport:
        targets = await self.sources.list_enabled_targets(platform)
        if not targets:
            logger.info("No enabled targets, skipping", platform=platform.value)
            report = FetchReport(platform=platform)
            report.finished_at = report.started_at
            return report

        adapter = self.adapter_factory(platform, self.settings, self.client)
        orchestrator = FetchOrchestrator(
            adapter,
            sink,
            policy=self.policy,
            sleep=self._sleep,
            rng=self._rng,
            on_progress=on_progress,
        )
        return await orchestrator.run(targets, cancel_event=cancel_event)
