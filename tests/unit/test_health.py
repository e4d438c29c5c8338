"""
Unit Tests for Source Health Tracker
====================================

Tests for the health state machine, backoff policy and reactivation.
"""

import random
from datetime import timedelta

import pytest

from skillfeed.config.settings import HealthSettings
from skillfeed.database.models import (
    Article,
    JobOutcome,
    JobResult,
    SourceStatus,
    StrategyKind,
)
from skillfeed.scheduling.health import SourceHealthTracker
from skillfeed.utils.exceptions import ErrorKind, ValidationError


@pytest.fixture
def health_settings():
    return HealthSettings(
        degraded_after=2,
        failing_after=5,
        disabled_after=10,
        backoff_base_seconds=60,
        backoff_cap_seconds=3600,
        backoff_jitter_ratio=0.1,
        rate_limit_backoff_seconds=900,
        stale_after_days=30,
    )


@pytest.fixture
def tracker(store, health_settings, clock):
    return SourceHealthTracker(
        store, health_settings, clock, articles=store, rng=random.Random(42)
    )


class TestStateMachine:
    """Status transitions driven by job outcomes."""

    def test_new_source_is_healthy(self, tracker):
        snapshot = tracker.get_status("example-blog")
        assert snapshot.status == SourceStatus.HEALTHY
        assert snapshot.last_attempt is None
        assert snapshot.last_error is None

    def test_thresholds(self, tracker, store):
        expected = {
            1: SourceStatus.HEALTHY,
            2: SourceStatus.DEGRADED,
            4: SourceStatus.DEGRADED,
            5: SourceStatus.FAILING,
            9: SourceStatus.FAILING,
            10: SourceStatus.DISABLED,
        }
        for failures in range(1, 11):
            tracker.record_failure("example-blog", ErrorKind.TRANSIENT, "timeout")
            if failures in expected:
                assert store.load("example-blog").status == expected[failures], failures

    def test_disabled_after_k3_failures_stays_disabled(self, tracker, store):
        for _ in range(10):
            tracker.record_failure("example-blog", ErrorKind.EXTRACTION_FAILURE)

        source = store.load("example-blog")
        assert source.status == SourceStatus.DISABLED
        assert source.consecutive_failures == 10

        tracker.record_failure("example-blog", ErrorKind.TRANSIENT)
        assert store.load("example-blog").status == SourceStatus.DISABLED

    @pytest.mark.parametrize("kind", [ErrorKind.ACCESS_DENIED, ErrorKind.NOT_FOUND])
    def test_permanent_failure_disables_immediately(self, tracker, store, kind):
        tracker.record_failure("example-blog", kind, "HTTP 403")

        source = store.load("example-blog")
        assert source.status == SourceStatus.DISABLED
        assert source.consecutive_failures == 1

    @pytest.mark.parametrize("failures", [2, 5, 9])
    def test_single_success_returns_to_healthy(self, tracker, store, failures):
        for _ in range(failures):
            tracker.record_failure("example-blog", ErrorKind.TRANSIENT)
        assert store.load("example-blog").status != SourceStatus.HEALTHY

        tracker.record_success("example-blog")

        source = store.load("example-blog")
        assert source.status == SourceStatus.HEALTHY
        assert source.consecutive_failures == 0
        assert source.backoff_until is None
        assert source.last_error_kind is None

    def test_success_does_not_reenable_disabled_source(self, tracker, store):
        tracker.record_failure("example-blog", ErrorKind.ACCESS_DENIED)
        tracker.record_success("example-blog")

        assert store.load("example-blog").status == SourceStatus.DISABLED

    def test_reactivate_resets_disabled_source(self, tracker, store, clock):
        for _ in range(10):
            tracker.record_failure("example-blog", ErrorKind.TRANSIENT)

        tracker.reactivate("example-blog")

        source = store.load("example-blog")
        assert source.status == SourceStatus.HEALTHY
        assert source.consecutive_failures == 0
        assert source.backoff_until is None
        assert "example-blog" in [s.id for s in store.list_due(clock.now())]

    def test_reactivate_clears_last_error(self, tracker, store):
        tracker.record_success("example-blog")
        tracker.record_failure("example-blog", ErrorKind.NOT_FOUND, "HTTP 404")

        tracker.reactivate("example-blog")

        source = store.load("example-blog")
        assert source.last_error_kind is None
        assert source.last_error is None
        assert source.consecutive_successes == 0
        assert tracker.get_status("example-blog").last_error is None

    def test_record_job_result(self, tracker, store, clock):
        result = JobResult(
            source_id="example-blog",
            strategy=StrategyKind.SKILL,
            started_at=clock.now(),
            outcome=JobOutcome.TRANSIENT_FAILURE,
            error_kind=ErrorKind.GENERATION_FAILURE,
            error="no valid ruleset",
        )
        tracker.record(result)

        source = store.load("example-blog")
        assert source.last_error_kind == ErrorKind.GENERATION_FAILURE
        assert source.last_attempt_at == clock.now()

    def test_get_status_exposes_error_kind_only(self, tracker):
        tracker.record_failure(
            "example-blog", ErrorKind.TRANSIENT, "Traceback (most recent call last): ..."
        )

        snapshot = tracker.get_status("example-blog")
        assert snapshot.last_error == ErrorKind.TRANSIENT
        assert set(snapshot.to_dict()) == {
            "source_id",
            "status",
            "last_attempt",
            "last_error",
            "consecutive_failures",
            "backoff_until",
        }
        assert snapshot.to_dict()["last_error"] == "transient"

    def test_unknown_source_raises(self, tracker):
        with pytest.raises(ValidationError):
            tracker.get_status("missing")


class TestBackoff:
    """Backoff delay policy."""

    def test_exponential_growth_without_jitter(self, tracker):
        assert tracker.backoff_delay(0) == 0.0
        assert tracker.backoff_delay(1) == 120.0
        assert tracker.backoff_delay(2) == 240.0
        assert tracker.backoff_delay(3) == 480.0

    def test_bounded_by_cap(self, tracker, health_settings):
        for failures in range(1, 200):
            for jitter in (0.0, 0.5, 1.0):
                assert tracker.backoff_delay(failures, jitter) <= health_settings.backoff_cap_seconds

    def test_monotonic_for_any_jitter(self, tracker):
        previous_max = 0.0
        for failures in range(0, 40):
            low = tracker.backoff_delay(failures, 0.0)
            high = tracker.backoff_delay(failures, 1.0)
            assert low >= previous_max
            previous_max = high

    def test_monotonic_with_full_jitter_ratio(self, store, clock):
        tracker = SourceHealthTracker(
            store,
            HealthSettings(backoff_base_seconds=10, backoff_cap_seconds=10_000, backoff_jitter_ratio=1.0),
            clock,
        )
        for failures in range(0, 30):
            assert tracker.backoff_delay(failures + 1, 0.0) >= tracker.backoff_delay(failures, 1.0)

    def test_failure_sets_backoff_until(self, tracker, store, clock):
        tracker.record_failure("example-blog", ErrorKind.TRANSIENT)

        source = store.load("example-blog")
        delay = (source.backoff_until - clock.now()).total_seconds()
        assert 120.0 <= delay <= 132.0
        assert source not in store.list_due(clock.now())

        clock.advance(seconds=delay)
        assert [s.id for s in store.list_due(clock.now())].count("example-blog") == 1

    def test_rate_limited_gets_minimum_backoff(self, tracker, store, clock):
        tracker.record_failure("example-blog", ErrorKind.RATE_LIMITED)

        source = store.load("example-blog")
        assert source.backoff_until - clock.now() >= timedelta(seconds=900)

    def test_rate_limited_honours_retry_after(self, tracker, store, clock):
        tracker.record_failure("example-blog", ErrorKind.RATE_LIMITED, retry_after=1800)

        source = store.load("example-blog")
        assert source.backoff_until - clock.now() == timedelta(seconds=1800)


class TestStaleness:
    """Staleness detection from the latest ingested article."""

    def test_source_with_recent_article_is_fresh(self, tracker, store, clock):
        store.save_article(
            Article(
                source_id="example-blog",
                source_url="https://blog.example.com/a",
                canonical_url="https://blog.example.com/a",
                title="Recent",
                raw_html_hash="x",
                clean_content="content",
                fetched_at=clock.now() - timedelta(days=2),
            )
        )
        assert tracker.is_stale("example-blog") is False

    def test_source_without_articles_is_stale(self, tracker, store, clock):
        source = store.load("example-blog")
        source.created_at = clock.now()
        store.save(source)

        assert tracker.is_stale("example-blog") is True

    def test_staleness_uses_publication_date(self, tracker, store, clock):
        """An old article fetched today does not keep a source fresh."""
        store.save_article(
            Article(
                source_id="example-blog",
                source_url="https://blog.example.com/old",
                canonical_url="https://blog.example.com/old",
                title="Old",
                raw_html_hash="x",
                clean_content="content",
                published_at=clock.now() - timedelta(days=60),
                fetched_at=clock.now(),
            )
        )

        assert tracker.is_stale("example-blog") is True
        assert tracker.is_stale("example-blog", now=clock.now() - timedelta(days=40)) is False

    def test_without_article_store_reports_fresh(self, store, health_settings, clock):
        tracker = SourceHealthTracker(store, health_settings, clock)
        assert tracker.is_stale("example-blog") is False
