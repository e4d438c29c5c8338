"""
Scheduler Integration Tests
===========================

Due-set ordering, single-flight, the job semaphore, job timeouts and
graceful shutdown, driven through the wired ingestion service with feed
sources.
"""

import asyncio
from datetime import timedelta

import pytest

from skillfeed.database.models import JobOutcome, Source, SourceStatus, SourceType
from skillfeed.service import IngestionService
from skillfeed.storage.memory import InMemoryStore
from skillfeed.utils.exceptions import AccessDeniedError, ErrorKind

from conftest import RSS_FEED, FakeFetcher, FakeLLM

pytestmark = pytest.mark.integration

FEED_URLS = {name: f"https://{name}.example.com/rss.xml" for name in ("alpha", "bravo", "charlie")}


@pytest.fixture
def feed_store():
    return InMemoryStore(
        [Source(id=name, url=url, type=SourceType.FEED) for name, url in FEED_URLS.items()]
    )


@pytest.fixture
def feed_fetcher():
    return FakeFetcher({url: RSS_FEED for url in FEED_URLS.values()})


@pytest.fixture
def service(settings, feed_store, feed_fetcher, clock):
    return IngestionService(
        settings=settings, store=feed_store, llm=FakeLLM(), fetcher=feed_fetcher, clock=clock
    )


def update(store, source_id, **fields):
    source = store.load(source_id)
    for name, value in fields.items():
        setattr(source, name, value)
    store.save(source)


class TestDueSet:
    """Which sources are due, and in which order."""

    def test_never_attempted_first_then_oldest(self, service, feed_store, clock):
        now = clock.now()
        feed_store.save(Source(id="delta", url="https://delta.example.com/rss.xml", type=SourceType.FEED))
        update(feed_store, "alpha", last_attempt_at=now - timedelta(hours=3))
        update(feed_store, "charlie", last_attempt_at=now - timedelta(hours=5))
        update(feed_store, "delta", last_attempt_at=now - timedelta(hours=3))

        due = service.scheduler.due_sources(now)

        assert [s.id for s in due] == ["bravo", "charlie", "alpha", "delta"]

    def test_fetch_interval(self, service, feed_store, clock):
        now = clock.now()
        update(feed_store, "alpha", last_attempt_at=now - timedelta(minutes=10))
        update(feed_store, "bravo", last_attempt_at=now - timedelta(minutes=10), fetch_interval_minutes=5)

        due = [s.id for s in service.scheduler.due_sources(now)]

        assert due == ["charlie", "bravo"]

    def test_backoff_and_disabled_excluded(self, service, feed_store, clock):
        now = clock.now()
        update(feed_store, "alpha", backoff_until=now + timedelta(minutes=1))
        update(feed_store, "bravo", status=SourceStatus.DISABLED)

        assert [s.id for s in service.scheduler.due_sources(now)] == ["charlie"]
        assert [s.id for s in service.scheduler.due_sources(now + timedelta(minutes=1))] == [
            "alpha",
            "charlie",
        ]


class TestDispatch:
    """Job dispatch from scheduler ticks."""

    @pytest.mark.asyncio
    async def test_run_once_and_interval(self, service, feed_store, clock):
        results = await service.scheduler.run_once()

        assert sorted(r.source_id for r in results) == ["alpha", "bravo", "charlie"]
        assert all(r.outcome == JobOutcome.SUCCESS for r in results)
        assert len(feed_store.list_articles("alpha")) == 2

        assert await service.scheduler.run_once() == []

        clock.advance(minutes=61)
        assert len(await service.scheduler.run_once()) == 3

    @pytest.mark.asyncio
    async def test_single_flight_across_ticks(self, service, feed_fetcher):
        """A source still running is never dispatched again."""
        feed_fetcher.gate = asyncio.Event()

        first = service.scheduler.tick()
        await asyncio.sleep(0.01)
        second = service.scheduler.tick()

        assert len(first) == 3
        assert second == []
        assert service.scheduler.get_status()["in_flight"] == ["alpha", "bravo", "charlie"]

        feed_fetcher.gate.set()
        await asyncio.gather(*first)

        assert len(feed_fetcher.calls) == 3
        assert service.scheduler.get_status()["in_flight"] == []

    @pytest.mark.asyncio
    async def test_job_semaphore(self, settings, feed_store, feed_fetcher, clock):
        settings.scheduler.max_concurrent_jobs = 1
        service = IngestionService(
            settings=settings, store=feed_store, llm=FakeLLM(), fetcher=feed_fetcher, clock=clock
        )
        feed_fetcher.gate = asyncio.Event()

        tasks = service.scheduler.tick()
        await asyncio.sleep(0.05)

        assert len(tasks) == 3
        assert len(feed_fetcher.calls) == 1

        feed_fetcher.gate.set()
        await asyncio.gather(*tasks)
        assert len(feed_fetcher.calls) == 3

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, service, feed_store, feed_fetcher):
        feed_fetcher.pages[FEED_URLS["alpha"]] = AccessDeniedError(
            "HTTP 403", url=FEED_URLS["alpha"], status=403
        )

        results = {r.source_id: r for r in await service.scheduler.run_once()}

        assert results["alpha"].outcome == JobOutcome.PERMANENT_FAILURE
        assert results["bravo"].succeeded
        assert results["charlie"].succeeded
        assert feed_store.load("alpha").status == SourceStatus.DISABLED
        assert service.scheduler.get_status()["jobs_failed"] == 1

    @pytest.mark.asyncio
    async def test_job_timeout_is_transient(self, settings, feed_store, feed_fetcher, clock):
        settings.scheduler.job_timeout_seconds = 0.05
        service = IngestionService(
            settings=settings, store=feed_store, llm=FakeLLM(), fetcher=feed_fetcher, clock=clock
        )
        feed_fetcher.gate = asyncio.Event()

        results = await service.scheduler.run_once()

        assert len(results) == 3
        assert all(r.error_kind == ErrorKind.TRANSIENT for r in results)
        source = feed_store.load("alpha")
        assert source.consecutive_failures == 1
        assert source.last_attempt_at == clock.now()
        assert source.backoff_until > clock.now()
        assert len(service.scheduler.single_flight) == 0
        assert feed_store.article_count == 0

    @pytest.mark.asyncio
    async def test_unexpected_job_error_is_transient(self, service, feed_store, monkeypatch):
        """A job that raises outside the error taxonomy still releases its source."""

        async def explode(source):
            raise RuntimeError("boom")

        monkeypatch.setattr(service.scheduler.dispatcher, "run", explode)

        results = await service.scheduler.run_once()

        assert len(results) == 3
        assert all(r.outcome == JobOutcome.TRANSIENT_FAILURE for r in results)
        assert all(r.error_kind == ErrorKind.TRANSIENT for r in results)
        assert all("boom" in r.error for r in results)
        assert len(service.scheduler.single_flight) == 0
        assert feed_store.load("alpha").consecutive_failures == 1
        assert feed_store.load("alpha").status == SourceStatus.HEALTHY
        assert service.scheduler.get_status()["jobs_failed"] == 3


class TestLifecycle:
    """Start, stop and status."""

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_after_grace(self, service, feed_store, feed_fetcher):
        feed_fetcher.gate = asyncio.Event()

        await service.scheduler.start()
        await asyncio.sleep(0.05)
        assert service.scheduler.is_running
        assert len(feed_fetcher.calls) == 3

        await service.scheduler.stop(grace=0.05)

        assert not service.scheduler.is_running
        assert len(service.scheduler.single_flight) == 0
        assert all(s.last_attempt_at is None for s in feed_store.list_all())
        assert feed_store.article_count == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_quick_jobs(self, service, feed_store):
        await service.scheduler.start()
        await asyncio.sleep(0.05)
        await service.scheduler.stop(grace=1)

        assert all(s.last_attempt_at is not None for s in feed_store.list_all())
        assert service.scheduler.get_status()["jobs_completed"] == 3

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self, service):
        await service.scheduler.start()
        await service.scheduler.start()
        await service.scheduler.stop(grace=0)

        assert not service.scheduler.is_running

    def test_status_before_start(self, service, settings):
        status = service.scheduler.get_status()

        assert status["running"] is False
        assert status["last_tick"] is None
        assert status["in_flight"] == []
        assert status["max_concurrent_jobs"] == settings.scheduler.max_concurrent_jobs
