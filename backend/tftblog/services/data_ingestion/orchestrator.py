"""
Fetch Orchestrator - one polling pass over a platform's targets.

Targets of one platform are always attempted sequentially with a jittered
pause between requests; several upstreams answer parallel requests with
anti-bot rejections. Failed targets are retried in later rounds with a
growing interval until they succeed, hit the attempt ceiling, or the
round ceiling ends the run.
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

from tftblog.config import FetchPolicySettings
from tftblog.models.domain import Article, Platform, SaveResult, SourceTarget, utcnow
from tftblog.services.data_ingestion.base import BaseAdapter
from tftblog.services.data_ingestion.errors import FetchError, ParseError
from tftblog.services.normalize import normalize

logger = structlog.get_logger()

ArticleSink = Callable[[list[Article]], Awaitable[SaveResult]]
ProgressCallback = Callable[[str], Awaitable[None]]


@dataclass
class BackoffPolicy:
    """Pacing and retry ceilings; all intervals in seconds."""
    initial_interval: float = 15.0
    multiplier: float = 2.0
    max_interval: float = 60.0
    jitter: float = 2.0
    max_retries: int = 10
    max_rounds: int = 10

    @classmethod
    def from_settings(cls, settings: FetchPolicySettings) -> "BackoffPolicy":
        return cls(
            initial_interval=settings.initial_interval_seconds,
            multiplier=settings.interval_multiplier,
            max_interval=settings.max_interval_seconds,
            jitter=settings.jitter_seconds,
            max_retries=settings.max_retries,
            max_rounds=settings.max_rounds,
        )

    def next_interval(self, current: float) -> float:
        return min(current * self.multiplier, self.max_interval)

    def jittered(self, interval: float, rng: random.Random) -> float:
        """`interval` plus a uniform offset in [-jitter, +jitter], never negative."""
        return max(0.0, interval + rng.uniform(-self.jitter, self.jitter))


# =============================================================================
# Retry bookkeeping
# =============================================================================

class TargetState(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryEntry:
    """Mutable per-target state for one run."""
    target: SourceTarget
    state: TargetState = TargetState.PENDING
    attempt_count: int = 0
    last_error: Optional[str] = None
    attempt_timestamps: list[datetime] = field(default_factory=list)
    save_result: Optional[SaveResult] = None

    def record_attempt(self, at: datetime) -> None:
        self.attempt_count += 1
        self.attempt_timestamps.append(at)

    def succeed(self, save_result: SaveResult) -> None:
        self.state = TargetState.SUCCEEDED
        self.save_result = save_result

    def fail_attempt(self, error: str, max_retries: int) -> bool:
        """Record a failed attempt; returns True when the target is now terminal."""
        self.last_error = error
        if self.attempt_count >= max_retries:
            self.state = TargetState.FAILED
            return True
        return False

    def force_fail(self, reason: str) -> None:
        self.state = TargetState.FAILED
        if self.last_error:
            self.last_error = f"{reason} (last error: {self.last_error})"
        else:
            self.last_error = reason

    def to_dict(self) -> dict:
        data = {
            "target": self.target.label,
            "state": self.state.value,
            "attempts": self.attempt_count,
        }
        if self.last_error:
            data["error"] = self.last_error
        if self.save_result is not None:
            data["saved"] = self.save_result.model_dump()
        return data


class RetryTracker:
    """Entries in configured order; order is preserved across rounds."""

    def __init__(self, targets: list[SourceTarget]):
        self.entries = [RetryEntry(target=t) for t in targets]

    def pending(self) -> list[RetryEntry]:
        return [e for e in self.entries if e.state == TargetState.PENDING]

    def with_state(self, state: TargetState) -> list[RetryEntry]:
        return [e for e in self.entries if e.state == state]


@dataclass
class FetchReport:
    """Summary of one orchestrator run."""
    platform: Platform
    succeeded: list[RetryEntry] = field(default_factory=list)
    failed: list[RetryEntry] = field(default_factory=list)
    pending_at_cutoff: list[RetryEntry] = field(default_factory=list)
    rounds: int = 0
    cancelled: bool = False
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return not self.failed and not self.pending_at_cutoff

    @property
    def totals(self) -> SaveResult:
        total = SaveResult()
        for entry in self.succeeded:
            total = total + entry.save_result
        return total

    def to_dict(self) -> dict:
        return {
            "platform": self.platform.value,
            "succeeded": [e.to_dict() for e in self.succeeded],
            "failed": [e.to_dict() for e in self.failed],
            "pending_at_cutoff": [e.to_dict() for e in self.pending_at_cutoff],
            "rounds": self.rounds,
            "cancelled": self.cancelled,
            "totals": self.totals.model_dump(),
        }

    def __str__(self) -> str:
        totals = self.totals
        return (
            f"{self.platform.value}: {len(self.succeeded)} succeeded, "
            f"{len(self.failed)} failed, {len(self.pending_at_cutoff)} pending "
            f"({totals.created} new, {totals.updated} updated, {totals.failed} save errors)"
        )


# =============================================================================
# Orchestrator
# =============================================================================

class FetchOrchestrator:
    """
    Drive one adapter over its targets under the backoff policy.

    Each succeeded target's articles are normalized, deduplicated against
    everything already seen in this run, and handed to `sink` before the
    target is marked succeeded.

    Sleep, randomness and clock are injectable for tests.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        sink: ArticleSink,
        policy: Optional[BackoffPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.adapter = adapter
        self.sink = sink
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self.on_progress = on_progress

    async def run(
        self,
        targets: list[SourceTarget],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FetchReport:
        """
        Poll every target until it succeeds or fails terminally.

        Always returns a report, even when every target fails. A set
        `cancel_event` stops the run at the next pause or attempt; targets
        not yet settled are reported as pending at cutoff.
        """
        report = FetchReport(platform=self.adapter.platform, started_at=self._clock())
        tracker = RetryTracker(targets)
        seen_ids: set[str] = set()
        interval = self.policy.initial_interval

        await self._emit("Run started", targets=len(targets))

        while tracker.pending() and report.rounds < self.policy.max_rounds:
            if report.rounds > 0:
                interval = self.policy.next_interval(interval)
                if await self._pause(interval, cancel_event):
                    report.cancelled = True
                    break

            report.rounds += 1
            pending = tracker.pending()
            await self._emit(
                f"Round {report.rounds}/{self.policy.max_rounds}",
                pending=len(pending),
                interval=round(interval, 1),
            )

            for i, entry in enumerate(pending):
                if _is_set(cancel_event):
                    report.cancelled = True
                    break
                await self._attempt(entry, seen_ids)
                if i < len(pending) - 1 and await self._pause(interval, cancel_event):
                    report.cancelled = True
                    break

            if report.cancelled:
                break

        if report.cancelled:
            await self._emit("Run cancelled", pending=len(tracker.pending()))
        else:
            for entry in tracker.pending():
                entry.force_fail(f"Round ceiling ({self.policy.max_rounds}) reached")

        report.succeeded = tracker.with_state(TargetState.SUCCEEDED)
        report.failed = tracker.with_state(TargetState.FAILED)
        report.pending_at_cutoff = tracker.pending()
        report.finished_at = self._clock()

        await self._emit(
            "Run finished",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            pending=len(report.pending_at_cutoff),
            rounds=report.rounds,
        )
        return report

    async def _attempt(self, entry: RetryEntry, seen_ids: set[str]) -> None:
        label = entry.target.label
        entry.record_attempt(self._clock())

        try:
            candidates = await self.adapter.fetch(entry.target)
            articles = self._normalize(candidates, label)
            fresh = [a for a in articles if a.id not in seen_ids]
            save_result = await self.sink(fresh)
        except FetchError as e:
            await self._record_failure(entry, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected error fetching target", target=label)
            await self._record_failure(entry, f"{type(e).__name__}: {e}")
            return

        seen_ids.update(a.id for a in fresh)
        entry.succeed(save_result)
        await self._emit(
            f"{label} succeeded",
            articles=save_result.article_count,
            created=save_result.created,
            updated=save_result.updated,
            save_errors=save_result.failed,
        )

    async def _record_failure(self, entry: RetryEntry, error: str) -> None:
        terminal = entry.fail_attempt(error, self.policy.max_retries)
        if terminal:
            await self._emit(
                f"{entry.target.label} failed", attempts=entry.attempt_count, error=error
            )
        else:
            await self._emit(
                f"{entry.target.label} attempt {entry.attempt_count}/{self.policy.max_retries} failed",
                error=error,
            )

    def _normalize(self, candidates, label: str) -> list[Article]:
        articles = []
        for raw in candidates:
            try:
                article = normalize(raw)
            except ParseError as e:
                logger.warning("Skipping candidate", target=label, error=str(e))
                continue
            if any(a.id == article.id for a in articles):
                continue
            articles.append(article)
        return articles

    async def _pause(self, interval: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep a jittered interval; returns True if the run was cancelled."""
        if _is_set(cancel_event):
            return True
        await self._sleep(self.policy.jittered(interval, self._rng))
        return _is_set(cancel_event)

    async def _emit(self, message: str, **fields) -> None:
        platform = self.adapter.platform.value
        logger.info(message, platform=platform, **fields)
        if self.on_progress is not None:
            detail = " ".join(f"{k}={v}" for k, v in fields.items())
            line = f"[{platform}] {message}"
            if detail:
                line = f"{line} {detail}"
            await self.on_progress(line)


def _is_set(event: Optional[asyncio.Event]) -> bool:
    return event is not None and event.is_set()
