"""
Source Health Tracker
=====================

Owns the per-source health state machine and backoff policy.

States:
    healthy -> degraded -> failing -> disabled

- Status is derived from consecutive failures (``degraded_after``,
  ``failing_after``, ``disabled_after``); a permanent failure (access denied,
  not found) disables the source immediately.
- One success resets the failure count and backoff and returns a degraded or
  failing source to healthy.
- disabled is terminal for automatic scheduling; only ``reactivate`` leaves it.
"""

import random
from datetime import datetime, timedelta
from typing import Optional

from ..config.settings import HealthSettings
from ..database.models import HealthSnapshot, JobResult, Source, SourceStatus
from ..storage.base import ArticleRecords, SourceStore
from ..utils.clock import Clock, SystemClock
from ..utils.exceptions import ErrorCode, ErrorKind, ValidationError
from ..utils.logging import get_logger_for_component

# 2**63 seconds is beyond any sensible cap
_MAX_EXPONENT = 63


class SourceHealthTracker:
    """Applies job outcomes to source health fields."""

    def __init__(
        self,
        sources: SourceStore,
        settings: Optional[HealthSettings] = None,
        clock: Optional[Clock] = None,
        articles: Optional[ArticleRecords] = None,
        rng: Optional[random.Random] = None,
    ):
        self.sources = sources
        self.settings = settings or HealthSettings()
        self.clock = clock or SystemClock()
        self.articles = articles
        self.rng = rng or random.Random()
        self.logger = get_logger_for_component("health_tracker")

    def status_for(self, consecutive_failures: int) -> SourceStatus:
        """Status implied by a consecutive failure count."""
        if consecutive_failures >= self.settings.disabled_after:
            return SourceStatus.DISABLED
        if consecutive_failures >= self.settings.failing_after:
            return SourceStatus.FAILING
        if consecutive_failures >= self.settings.degraded_after:
            return SourceStatus.DEGRADED
        return SourceStatus.HEALTHY

    def backoff_delay(self, consecutive_failures: int, jitter: float = 0.0) -> float:
        """Backoff in seconds after ``consecutive_failures`` failures.

        ``min(base * 2**n, cap)`` scaled up by at most ``jitter_ratio``
        (``jitter`` in [0, 1]) and clamped to the cap again. With a ratio of
        at most 1 the jittered delay for n never exceeds the unjittered delay
        for n + 1, so the delay stays non-decreasing in n.

        Args:
            consecutive_failures: Failure count including the current failure
            jitter: Uniform sample in [0, 1]

        Returns:
            Delay in seconds, never above ``backoff_cap_seconds``
        """
        cap = self.settings.backoff_cap_seconds
        if consecutive_failures <= 0:
            return 0.0

        exponent = min(consecutive_failures, _MAX_EXPONENT)
        delay = min(self.settings.backoff_base_seconds * (2 ** exponent), cap)
        jitter = min(max(jitter, 0.0), 1.0)
        return min(cap, delay * (1.0 + jitter * self.settings.backoff_jitter_ratio))

    def _load(self, source_id: str) -> Source:
        source = self.sources.load(source_id)
        if source is None:
            raise ValidationError(
                f"Unknown source: {source_id}",
                field_name="source_id",
                error_code=ErrorCode.RESOURCE_NOT_FOUND,
            )
        return source

    def _log_transition(self, source: Source, previous: SourceStatus, reason: str) -> None:
        if source.status == previous:
            return

        log = self.logger.warning if source.status != SourceStatus.HEALTHY else self.logger.info
        log(
            f"Source {source.id}: {previous.value} -> {source.status.value} ({reason})",
            extra={
                "source_id": source.id,
                "previous_status": previous.value,
                "status": source.status.value,
                "consecutive_failures": source.consecutive_failures,
                "reason": reason,
            },
        )

    def record_success(self, source_id: str) -> Source:
        """Apply a successful job outcome."""
        source = self._load(source_id)
        now = self.clock.now()
        previous = source.status

        source.consecutive_failures = 0
        source.consecutive_successes += 1
        source.backoff_until = None
        source.last_attempt_at = now
        source.last_success_at = now
        source.last_error_kind = None
        source.last_error = None
        if source.status != SourceStatus.DISABLED:
            source.status = SourceStatus.HEALTHY

        self.sources.save(source)
        self._log_transition(source, previous, "job succeeded")
        return source

    def record_failure(
        self,
        source_id: str,
        kind: ErrorKind,
        error: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> Source:
        """Apply a failed job outcome.

        Args:
            source_id: Source the job ran for
            kind: Error taxonomy bucket
            error: Short error description, stored without stack detail
            retry_after: Server-requested delay for rate-limited failures
        """
        source = self._load(source_id)
        now = self.clock.now()
        previous = source.status

        source.consecutive_failures += 1
        source.consecutive_successes = 0
        source.last_attempt_at = now
        source.last_error_kind = kind
        source.last_error = (error or kind.value)[:500]

        if kind.is_permanent:
            source.status = SourceStatus.DISABLED
        elif source.status != SourceStatus.DISABLED:
            source.status = self.status_for(source.consecutive_failures)

        delay = self.backoff_delay(source.consecutive_failures, self.rng.random())
        if kind == ErrorKind.RATE_LIMITED:
            delay = max(delay, self.settings.rate_limit_backoff_seconds, retry_after or 0.0)
            delay = min(delay, max(self.settings.backoff_cap_seconds, self.settings.rate_limit_backoff_seconds))
        source.backoff_until = now + timedelta(seconds=delay)

        self.sources.save(source)
        self.logger.info(
            f"Source {source.id} failed ({kind.value}), "
            f"{source.consecutive_failures} consecutive, backoff {delay:.0f}s",
            extra={
                "source_id": source.id,
                "error_kind": kind.value,
                "consecutive_failures": source.consecutive_failures,
                "backoff_seconds": round(delay, 1),
            },
        )
        self._log_transition(source, previous, f"{kind.value} failure")
        return source

    def record(self, result: JobResult) -> Source:
        """Apply a completed job result."""
        if result.succeeded:
            return self.record_success(result.source_id)
        return self.record_failure(
            result.source_id,
            result.error_kind or ErrorKind.TRANSIENT,
            result.error,
            result.retry_after,
        )

    def reactivate(self, source_id: str) -> Source:
        """Return a source to healthy, clearing failures, backoff and the last error."""
        source = self._load(source_id)
        previous = source.status

        source.status = SourceStatus.HEALTHY
        source.consecutive_failures = 0
        source.consecutive_successes = 0
        source.backoff_until = None
        source.last_error_kind = None
        source.last_error = None

        self.sources.save(source)
        self._log_transition(source, previous, "reactivated")
        return source

    def get_status(self, source_id: str) -> HealthSnapshot:
        source = self._load(source_id)
        return HealthSnapshot(
            source_id=source.id,
            status=source.status,
            last_attempt=source.last_attempt_at,
            last_error=source.last_error_kind,
            consecutive_failures=source.consecutive_failures,
            backoff_until=source.backoff_until,
        )

    def is_stale(self, source_id: str, now: Optional[datetime] = None) -> bool:
        """Whether the source has no article newer than ``stale_after_days``.

        Articles are dated by publication time, falling back to fetch time.
        A source without any article is stale. Without an article store
        nothing can be judged and the source is reported fresh.
        """
        self._load(source_id)
        if self.articles is None:
            return False

        now = now or self.clock.now()
        latest = self.articles.latest_article_at(source_id)
        if latest is None:
            return True
        return now - latest > timedelta(days=self.settings.stale_after_days)
