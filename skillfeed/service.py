"""
Ingestion Service
=================

Wires the ingestion core together from settings: record store, fetch
layer, LLM client and gate, skill generator, extraction agent, ingestor,
health tracker, dispatcher and scheduler.

Collaborators can be injected (tests, embedding); anything not given is
built from configuration.
"""

from typing import List, Optional

from .ai.limiter import LLMGate
from .ai.providers.base import LLMClient, UnconfiguredLLM
from .ai.providers.openai_provider import OpenAICompatibleProvider
from .config.settings import SkillFeedSettings, get_settings
from .database.connection import DatabaseConnection
from .database.models import HealthSnapshot, Skill, Source, SourceType
from .database.schema import DatabaseSchema
from .extraction.agent import ExtractionAgent
from .ingestion.browser import PlaywrightRenderer, Renderer
from .ingestion.content_cleaner import ContentCleaner
from .ingestion.feed_parser import FeedParser
from .ingestion.fetcher import FetchLayer
from .ingestion.ingestor import ArticleIngestor, Downstream
from .scheduling.dispatcher import StrategyDispatcher
from .scheduling.health import SourceHealthTracker
from .scheduling.scheduler import Scheduler
from .skills.generator import SkillGenerator
from .skills.store import SkillStore
from .storage.base import RecordStore
from .storage.sqlite_store import SQLiteStore
from .utils.clock import Clock, SystemClock
from .utils.exceptions import ErrorCode, ValidationError
from .utils.logging import get_logger_for_component
from .utils.validators import URLValidator


class IngestionService:
    """Composition root for the ingestion core."""

    def __init__(
        self,
        settings: Optional[SkillFeedSettings] = None,
        store: Optional[RecordStore] = None,
        llm: Optional[LLMClient] = None,
        renderer: Optional[Renderer] = None,
        fetcher: Optional[FetchLayer] = None,
        downstream: Optional[Downstream] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.logger = get_logger_for_component("service")

        if store is None:
            DatabaseSchema(self.settings.database.path).create_tables()
            self.db = DatabaseConnection(self.settings.database.path, self.settings.database.pool_size)
            store = SQLiteStore(self.db)
        else:
            self.db = None
        self.store = store

        if fetcher is None:
            if renderer is None:
                renderer = PlaywrightRenderer(user_agent=self.settings.fetch.user_agent)
            fetcher = FetchLayer(self.settings, renderer=renderer)
        self.fetcher = fetcher

        if llm is None:
            if self.settings.has_llm_credentials():
                llm = OpenAICompatibleProvider.from_settings(self.settings.llm)
            else:
                self.logger.warning("No LLM API key configured; skill generation is unavailable")
                llm = UnconfiguredLLM()
        self.llm = llm

        llm_settings = self.settings.llm
        self.gate = LLMGate(
            max_concurrent=llm_settings.max_concurrent_calls,
            requests_per_minute=llm_settings.requests_per_minute,
            acquire_timeout=llm_settings.request_timeout,
        )

        cleaner = ContentCleaner()
        self.skill_store = SkillStore(self.store, self.store)
        self.generator = SkillGenerator(
            self.fetcher, self.llm, self.gate, self.skill_store, self.settings, self.clock, cleaner
        )
        self.agent = ExtractionAgent(self.fetcher, self.settings, cleaner)
        self.ingestor = ArticleIngestor(self.store, downstream=downstream, clock=self.clock)
        self.tracker = SourceHealthTracker(
            self.store, self.settings.health, self.clock, articles=self.store
        )
        self.dispatcher = StrategyDispatcher(
            self.fetcher,
            FeedParser(cleaner),
            self.skill_store,
            self.generator,
            self.agent,
            self.ingestor,
            self.tracker,
            self.settings,
            self.clock,
        )
        self.scheduler = Scheduler(
            self.store, self.dispatcher, self.tracker, self.settings, self.clock
        )

    def add_source(
        self,
        source_id: str,
        url: str,
        name: Optional[str] = None,
        source_type: SourceType = SourceType.WEB,
        feed_url: Optional[str] = None,
        render: bool = False,
        fetch_interval_minutes: Optional[int] = None,
    ) -> Source:
        """Register a new source.

        Raises:
            ValidationError: If a URL is invalid or the ID is taken
        """
        if self.store.load(source_id) is not None:
            raise ValidationError(
                f"Source {source_id} already exists",
                field_name="source_id",
                error_code=ErrorCode.VALIDATION_INVALID_FORMAT,
            )

        url = URLValidator.validate_url(url)
        if feed_url:
            feed_url = URLValidator.validate_url(feed_url)
        elif source_type == SourceType.WEB and URLValidator.is_likely_feed_url(url):
            self.logger.info(f"{url} looks like a feed, registering as feed source")
            source_type = SourceType.FEED

        source = Source(
            id=source_id,
            url=url,
            name=name,
            type=source_type,
            feed_url=feed_url,
            render=render,
            fetch_interval_minutes=fetch_interval_minutes,
            created_at=self.clock.now(),
        )
        self.store.save(source)
        self.logger.info(f"Registered source {source}", extra={"source_id": source_id})
        return source

    def _require(self, source_id: str) -> Source:
        source = self.store.load(source_id)
        if source is None:
            raise ValidationError(
                f"Unknown source: {source_id}",
                field_name="source_id",
                error_code=ErrorCode.RESOURCE_NOT_FOUND,
            )
        return source

    async def generate_skill(self, source_id: str, sample_urls: Optional[List[str]] = None) -> Skill:
        """Generate and publish a skill for a web source on demand."""
        source = self._require(source_id)
        skill = await self.generator.generate(source, sample_urls)
        self.agent.clear_drift(source_id)
        return skill

    def get_health(self, source_id: str) -> HealthSnapshot:
        return self.tracker.get_status(source_id)

    def list_health(self) -> List[HealthSnapshot]:
        return [self.tracker.get_status(source.id) for source in self.store.list_all()]

    def reactivate(self, source_id: str) -> Source:
        return self.tracker.reactivate(source_id)

    async def close(self) -> None:
        """Stop the scheduler and release network and database resources."""
        if self.scheduler.is_running:
            await self.scheduler.stop()
        await self.ingestor.drain()
        await self.llm.close()
        await self.fetcher.close()
        if self.db is not None:
            self.db.close_all_connections()
