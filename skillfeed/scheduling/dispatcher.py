"""
Strategy Dispatcher
===================

Runs one ingestion job for one source.

The strategy is a closed variant:

- ``FeedStrategy``  when the source is a feed or has a discovered feed URL
- ``SkillStrategy`` otherwise; generates a skill inline when none is
  active, regenerates first when drift was flagged, then extracts

Every exception except cancellation is captured at the job boundary and
classified. The job ends with a commit step that has no suspension point:
pending skill activation, article ingestion and the health update happen
together or, if the job is cancelled earlier, not at all.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..config.settings import SkillFeedSettings, get_settings
from ..database.models import (
    CandidateArticle,
    JobOutcome,
    JobResult,
    Skill,
    Source,
    StrategyKind,
)
from ..extraction.agent import ExtractionAgent
from ..ingestion.feed_parser import FeedParser
from ..ingestion.fetcher import FetchLayer
from ..ingestion.ingestor import ArticleIngestor, IngestSummary
from ..skills.generator import SkillGenerator
from ..skills.store import SkillStore
from ..utils.clock import Clock, SystemClock
from ..utils.exceptions import (
    GenerationError,
    RateLimitedError,
    SkillFeedError,
    classify_error,
)
from ..utils.logging import get_logger_for_component
from .health import SourceHealthTracker


@dataclass(frozen=True)
class FeedStrategy:
    feed_url: str


@dataclass(frozen=True)
class SkillStrategy:
    page_url: str
    render: bool = False


Strategy = Union[FeedStrategy, SkillStrategy]


def select_strategy(source: Source) -> Strategy:
    """Pick the ingestion strategy for a source."""
    feed_target = source.feed_target
    if feed_target:
        return FeedStrategy(feed_url=feed_target)
    return SkillStrategy(page_url=source.url, render=source.render)


@dataclass
class _JobState:
    strategy: StrategyKind
    candidates: List[CandidateArticle] = field(default_factory=list)
    pending_skill: Optional[Skill] = None
    skill_version: Optional[int] = None
    error: Optional[Exception] = None


class StrategyDispatcher:
    """Executes ingestion jobs and commits their outcomes."""

    def __init__(
        self,
        fetcher: FetchLayer,
        feed_parser: FeedParser,
        skill_store: SkillStore,
        generator: SkillGenerator,
        agent: ExtractionAgent,
        ingestor: ArticleIngestor,
        tracker: SourceHealthTracker,
        settings: Optional[SkillFeedSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.fetcher = fetcher
        self.feed_parser = feed_parser
        self.skill_store = skill_store
        self.generator = generator
        self.agent = agent
        self.ingestor = ingestor
        self.tracker = tracker
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.logger = get_logger_for_component("dispatcher")

    async def run(self, source: Source) -> JobResult:
        """Run one job for a source and commit its outcome.

        Cancellation propagates and commits nothing.

        Returns:
            JobResult recorded with the health tracker
        """
        started_at = self.clock.now()
        start = time.monotonic()
        strategy = select_strategy(source)

        if isinstance(strategy, FeedStrategy):
            state = _JobState(strategy=StrategyKind.FEED)
        elif isinstance(strategy, SkillStrategy):
            state = _JobState(strategy=StrategyKind.SKILL)
        else:
            raise TypeError(f"Unhandled strategy: {strategy!r}")

        try:
            if isinstance(strategy, FeedStrategy):
                await self._run_feed(source, strategy, state)
            else:
                await self._run_skill(source, strategy, state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state.error = e

        # Commit: no awaits below this line
        result = JobResult(
            source_id=source.id,
            strategy=state.strategy,
            started_at=started_at,
            skill_version=state.skill_version,
        )
        self._commit(source, state, result)
        result.duration = time.monotonic() - start
        self._log_result(result)
        return result

    async def _run_feed(self, source: Source, strategy: FeedStrategy, state: _JobState) -> None:
        page = await self.fetcher.fetch(strategy.feed_url)
        state.candidates = self.feed_parser.parse(page.html, page.final_url, source.id)

    async def _run_skill(self, source: Source, strategy: SkillStrategy, state: _JobState) -> None:
        skill = self.skill_store.get_active(source)

        if skill is not None and self.agent.needs_regeneration(source.id):
            try:
                state.pending_skill = await self.generator.synthesize(source)
                skill = state.pending_skill
            except SkillFeedError as e:
                self.logger.warning(
                    f"Regeneration failed, keeping skill v{skill.version}: {e}",
                    extra={"source_id": source.id, "error_kind": e.kind.value},
                )

        if skill is None:
            try:
                skill = await self.generator.synthesize(source)
            except GenerationError:
                if self.settings.skills.allow_generic_fallback:
                    await self._run_generic(source, state)
                raise
            state.pending_skill = skill

        state.skill_version = skill.version
        extraction = await self.agent.extract(
            source, skill, is_known=lambda url: self.ingestor.is_known(source.id, url)
        )
        state.candidates = extraction.articles

    async def _run_generic(self, source: Source, state: _JobState) -> None:
        try:
            state.candidates = await self.agent.extract_generic(source)
            state.strategy = StrategyKind.GENERIC
        except SkillFeedError as e:
            self.logger.debug(
                f"Generic fallback produced nothing: {e}", extra={"source_id": source.id}
            )

    def _commit(self, source: Source, state: _JobState, result: JobResult) -> None:
        if state.pending_skill is not None:
            try:
                self.skill_store.activate(state.pending_skill)
                self.agent.clear_drift(source.id)
            except SkillFeedError as e:
                self.logger.error(
                    f"Could not activate skill v{state.pending_skill.version}: {e}",
                    extra={"source_id": source.id},
                )
                if state.error is None:
                    state.error = e

        try:
            summary = self.ingestor.ingest_many(state.candidates)
        except SkillFeedError as e:
            self.logger.error(
                f"Ingesting {len(state.candidates)} candidates failed: {e}",
                extra={"source_id": source.id},
            )
            summary = IngestSummary()
            if state.error is None:
                state.error = e

        result.produced_article_ids = summary.accepted_ids
        result.articles_seen = len(state.candidates)

        if state.error is None:
            result.outcome = JobOutcome.SUCCESS
        else:
            kind = classify_error(state.error)
            result.error_kind = kind
            result.error = str(state.error)
            result.outcome = (
                JobOutcome.PERMANENT_FAILURE if kind.is_permanent else JobOutcome.TRANSIENT_FAILURE
            )
            if isinstance(state.error, RateLimitedError):
                result.retry_after = state.error.retry_after

        self.tracker.record(result)

    def _log_result(self, result: JobResult) -> None:
        if result.succeeded:
            self.logger.info(
                f"Job for {result.source_id} succeeded: "
                f"{len(result.produced_article_ids)} new of {result.articles_seen} articles",
                extra=result.to_dict(),
            )
        else:
            self.logger.warning(
                f"Job for {result.source_id} failed ({result.error_kind.value}): {result.error}",
                extra=result.to_dict(),
            )
