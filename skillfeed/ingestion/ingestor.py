"""
Article Ingestor
================

The boundary between extraction strategies and storage. Candidates are
validated, deduplicated per source by canonical URL and content hash, and
accepted articles are saved and handed to the downstream consumer.

Saving is synchronous; the downstream hand-off is fire-and-forget and its
failures are logged, never rolled back.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Set
from urllib.parse import urljoin

from pydantic import ValidationError as PydanticValidationError

from ..database.models import Article, CandidateArticle
from ..storage.base import ArticleRecords
from ..utils.clock import Clock, SystemClock
from ..utils.exceptions import ValidationError
from ..utils.logging import get_logger_for_component
from ..utils.validators import ContentValidator, URLValidator, content_hash


class IngestStatus(str, Enum):
    """Result of ingesting one candidate."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class IngestDecision:
    status: IngestStatus
    canonical_url: Optional[str] = None
    article: Optional[Article] = None
    reason: Optional[str] = None


@dataclass
class IngestSummary:
    """Aggregate of one batch of ingest decisions."""

    decisions: List[IngestDecision] = field(default_factory=list)

    @property
    def accepted(self) -> List[Article]:
        return [d.article for d in self.decisions if d.status == IngestStatus.ACCEPTED]

    @property
    def accepted_ids(self) -> List[str]:
        return [article.id for article in self.accepted]

    @property
    def duplicates(self) -> int:
        return sum(1 for d in self.decisions if d.status == IngestStatus.DUPLICATE)

    @property
    def rejected(self) -> int:
        return sum(1 for d in self.decisions if d.status == IngestStatus.REJECTED)

    def to_dict(self) -> dict:
        return {
            "accepted": len(self.accepted),
            "duplicates": self.duplicates,
            "rejected": self.rejected,
        }


class Downstream(ABC):
    """Consumer of accepted articles."""

    @abstractmethod
    async def enqueue(self, article: Article) -> None:
        """Hand an accepted article to the next stage."""


class NullDownstream(Downstream):
    async def enqueue(self, article: Article) -> None:
        return None


class ArticleIngestor:
    """Validates, deduplicates and stores candidate articles."""

    def __init__(
        self,
        articles: ArticleRecords,
        downstream: Optional[Downstream] = None,
        clock: Optional[Clock] = None,
    ):
        self.articles = articles
        self.downstream = downstream
        self.clock = clock or SystemClock()
        self.logger = get_logger_for_component("ingestor")
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def canonical_url_for(candidate: CandidateArticle) -> str:
        """Canonical URL of a candidate, resolved against the page it came from."""
        declared = (candidate.canonical_url or "").strip()
        return URLValidator.canonicalize(urljoin(candidate.source_url, declared or candidate.source_url))

    def is_known(self, source_id: str, url: str) -> bool:
        """Whether an article URL was already ingested for a source."""
        return self.articles.has_article(source_id, URLValidator.canonicalize(url))

    def ingest(self, candidate: CandidateArticle) -> IngestDecision:
        """Ingest one candidate.

        Returns:
            IngestDecision with status accepted, duplicate or rejected
        """
        content = ContentValidator.validate_article_content(candidate.content)
        if content is None:
            return self._reject(candidate, "empty body")

        try:
            title = ContentValidator.validate_article_title(candidate.title)
            canonical_url = self.canonical_url_for(candidate)
        except ValidationError as e:
            return self._reject(candidate, str(e))

        if self.articles.has_article(candidate.source_id, canonical_url):
            return IngestDecision(IngestStatus.DUPLICATE, canonical_url, reason="canonical url")

        digest = content_hash(content)
        if self.articles.has_content_hash(candidate.source_id, digest):
            return IngestDecision(IngestStatus.DUPLICATE, canonical_url, reason="content hash")

        try:
            article = Article(
                source_id=candidate.source_id,
                source_url=candidate.source_url,
                canonical_url=canonical_url,
                title=title,
                raw_html_hash=content_hash(candidate.raw_html or content),
                clean_content=content,
                content_hash=digest,
                published_at=candidate.published_at,
                extraction_confidence=candidate.confidence,
                strategy=candidate.strategy,
                skill_version=candidate.skill_version,
                author=candidate.author,
                fetched_at=self.clock.now(),
            )
        except PydanticValidationError as e:
            return self._reject(candidate, f"invalid article: {e.error_count()} field errors")

        if not self.articles.save_article(article):
            return IngestDecision(IngestStatus.DUPLICATE, canonical_url, reason="store constraint")

        self._hand_off(article)
        return IngestDecision(IngestStatus.ACCEPTED, canonical_url, article=article)

    def ingest_many(self, candidates: Iterable[CandidateArticle]) -> IngestSummary:
        """Ingest a batch in order. Contains no suspension point."""
        summary = IngestSummary()
        for candidate in candidates:
            summary.decisions.append(self.ingest(candidate))

        if summary.decisions:
            self.logger.info(
                f"Ingested batch: {len(summary.accepted)} accepted, "
                f"{summary.duplicates} duplicates, {summary.rejected} rejected",
                extra=summary.to_dict(),
            )
        return summary

    def _reject(self, candidate: CandidateArticle, reason: str) -> IngestDecision:
        self.logger.debug(
            f"Rejected candidate from {candidate.source_url}: {reason}",
            extra={"source_id": candidate.source_id},
        )
        return IngestDecision(IngestStatus.REJECTED, reason=reason)

    def _hand_off(self, article: Article) -> None:
        if self.downstream is None:
            return
        task = asyncio.get_running_loop().create_task(self.downstream.enqueue(article))
        self._pending.add(task)
        task.add_done_callback(self._on_enqueued)

    def _on_enqueued(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                f"Downstream enqueue failed: {error}",
                extra={"error_type": type(error).__name__},
            )

    async def drain(self) -> None:
        """Wait for outstanding downstream hand-offs."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
