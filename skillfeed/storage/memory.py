"""
In-Memory Record Store
======================

Dictionary-backed store for tests and embedding. Records are deep-copied on
the way in and out so callers never mutate stored state by accident.
"""

from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

from ..database.models import Source, Skill, Article
from ..utils.exceptions import DatabaseError, ErrorCode
from .base import RecordStore


class InMemoryStore(RecordStore):
    """Record store keeping everything in process memory."""

    def __init__(self, sources: Optional[List[Source]] = None):
        self._sources: Dict[str, Source] = {}
        self._skills: Dict[Tuple[str, int], Skill] = {}
        self._articles: Dict[Tuple[str, str], Article] = {}
        self._hashes: Set[Tuple[str, str]] = set()

        for source in sources or []:
            self.save(source)

    # Sources

    def load(self, source_id: str) -> Optional[Source]:
        source = self._sources.get(source_id)
        return source.model_copy(deep=True) if source else None

    def save(self, source: Source) -> None:
        self._sources[source.id] = source.model_copy(deep=True)

    def list_all(self) -> List[Source]:
        return [
            self._sources[key].model_copy(deep=True) for key in sorted(self._sources)
        ]

    # Skills

    def save_skill(self, skill: Skill) -> None:
        key = (skill.source_id, skill.version)
        if key in self._skills:
            raise DatabaseError(
                f"Skill v{skill.version} already exists for {skill.source_id}",
                error_code=ErrorCode.DATABASE_CONSTRAINT,
            )
        self._skills[key] = skill

    def get_skill(self, source_id: str, version: int) -> Optional[Skill]:
        return self._skills.get((source_id, version))

    def list_skills(self, source_id: str) -> List[Skill]:
        return sorted(
            (skill for (sid, _), skill in self._skills.items() if sid == source_id),
            key=lambda skill: skill.version,
        )

    # Articles

    def has_article(self, source_id: str, canonical_url: str) -> bool:
        return (source_id, canonical_url) in self._articles

    def has_content_hash(self, source_id: str, content_hash: str) -> bool:
        return (source_id, content_hash) in self._hashes

    def save_article(self, article: Article) -> bool:
        key = (article.source_id, article.canonical_url)
        if key in self._articles:
            return False
        self._articles[key] = article.model_copy(deep=True)
        self._hashes.add((article.source_id, article.content_hash))
        return True

    def list_articles(self, source_id: str, limit: int = 50) -> List[Article]:
        articles = [a for (sid, _), a in self._articles.items() if sid == source_id]
        articles.sort(key=lambda a: a.fetched_at, reverse=True)
        return [a.model_copy(deep=True) for a in articles[:limit]]

    def latest_article_at(self, source_id: str) -> Optional[datetime]:
        times = [a.published_at or a.fetched_at for (sid, _), a in self._articles.items() if sid == source_id]
        return max(times) if times else None

    @property
    def article_count(self) -> int:
        return len(self._articles)
