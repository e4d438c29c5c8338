"""
Storage Interfaces
==================

Abstract record stores used by the ingestion core. All methods are
synchronous: a job's commit step runs without yielding to the event loop,
so a cancelled job never leaves a half-written commit behind.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..database.models import Source, Skill, Article


class SourceStore(ABC):
    """Persistence for sources and their health fields."""

    @abstractmethod
    def load(self, source_id: str) -> Optional[Source]:
        """Load a source by ID, or None if unknown."""

    @abstractmethod
    def save(self, source: Source) -> None:
        """Insert or replace a source."""

    @abstractmethod
    def list_all(self) -> List[Source]:
        """All sources, ordered by ID."""

    def list_due(self, now: datetime) -> List[Source]:
        """Sources that are not disabled and whose backoff has expired.

        The scheduler applies the fetch interval and single-flight checks on
        top of this set.
        """
        return [
            source
            for source in self.list_all()
            if not source.is_disabled
            and (source.backoff_until is None or source.backoff_until <= now)
        ]


class SkillRecords(ABC):
    """Append-only persistence for published skills."""

    @abstractmethod
    def save_skill(self, skill: Skill) -> None:
        """Store a new skill version.

        Raises:
            DatabaseError: If the (source_id, version) pair already exists
        """

    @abstractmethod
    def get_skill(self, source_id: str, version: int) -> Optional[Skill]:
        """Load one skill version."""

    @abstractmethod
    def list_skills(self, source_id: str) -> List[Skill]:
        """Every stored version for a source, oldest first."""

    def latest_version(self, source_id: str) -> int:
        """Highest stored version for a source, 0 when none exist."""
        skills = self.list_skills(source_id)
        return max((skill.version for skill in skills), default=0)


class ArticleRecords(ABC):
    """Persistence for accepted articles."""

    @abstractmethod
    def has_article(self, source_id: str, canonical_url: str) -> bool:
        """Whether the canonical URL was already accepted for the source."""

    @abstractmethod
    def has_content_hash(self, source_id: str, content_hash: str) -> bool:
        """Whether identical content was already accepted for the source."""

    @abstractmethod
    def save_article(self, article: Article) -> bool:
        """Store an article.

        Returns:
            False if the (source_id, canonical_url) pair already exists
        """

    @abstractmethod
    def list_articles(self, source_id: str, limit: int = 50) -> List[Article]:
        """Most recently fetched articles for a source."""

    @abstractmethod
    def latest_article_at(self, source_id: str) -> Optional[datetime]:
        """Newest article date for a source.

        An article counts with its publication time, or its fetch time when
        it has no publication date. None when the source has no articles.
        """


class RecordStore(SourceStore, SkillRecords, ArticleRecords):
    """A single backend implementing all three record stores."""
