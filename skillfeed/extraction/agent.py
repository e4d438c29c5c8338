"""
Extraction Agent
================

Applies a published skill to live pages, validates each extracted article
with the same checks used when the skill was generated, and watches the
page-level success rate for drift.

Also provides the generic heuristic extractor used when a source has no
skill and generation failed.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Set, Tuple

from ..config.settings import SkillFeedSettings, get_settings
from ..database.models import CandidateArticle, Skill, Source, StrategyKind
from ..ingestion.content_cleaner import ContentCleaner
from ..ingestion.fetcher import FetchLayer, FetchedPage
from ..skills.ruleset import apply_ruleset, select_links
from ..skills.validation import check_page
from ..utils.exceptions import ErrorCode, ExtractionError, FetchError
from ..utils.logging import get_logger_for_component


@dataclass
class ExtractionResult:
    """Outcome of one skill-based extraction run."""

    source_id: str
    skill_version: Optional[int]
    articles: List[CandidateArticle] = field(default_factory=list)
    pages_attempted: int = 0
    pages_passed: int = 0
    failures: List[str] = field(default_factory=list)
    drift_flagged: bool = False


class DriftTracker:
    """Rolling page-level success window per (source, skill version)."""

    def __init__(self, window: int = 10, threshold: float = 0.5, min_samples: int = 5):
        self.window = window
        self.threshold = threshold
        self.min_samples = min_samples
        self._outcomes: Dict[Tuple[str, int], Deque[bool]] = {}
        self._flagged: Set[str] = set()

    def record(self, source_id: str, version: int, success: bool) -> bool:
        """Record one page outcome.

        Returns:
            True if this outcome flagged the source for regeneration
        """
        key = (source_id, version)
        outcomes = self._outcomes.setdefault(key, deque(maxlen=self.window))
        outcomes.append(success)

        if source_id in self._flagged or len(outcomes) < self.min_samples:
            return False
        if self.success_rate(source_id, version) < self.threshold:
            self._flagged.add(source_id)
            return True
        return False

    def success_rate(self, source_id: str, version: int) -> Optional[float]:
        outcomes = self._outcomes.get((source_id, version))
        if not outcomes:
            return None
        return sum(1 for ok in outcomes if ok) / len(outcomes)

    def is_flagged(self, source_id: str) -> bool:
        return source_id in self._flagged

    def clear(self, source_id: str) -> None:
        """Drop the flag and every window for a source."""
        self._flagged.discard(source_id)
        for key in [k for k in self._outcomes if k[0] == source_id]:
            del self._outcomes[key]


class ExtractionAgent:
    """Deterministic skill application with drift detection."""

    def __init__(
        self,
        fetcher: FetchLayer,
        settings: Optional[SkillFeedSettings] = None,
        cleaner: Optional[ContentCleaner] = None,
    ):
        self.fetcher = fetcher
        self.settings = settings or get_settings()
        self.extraction_settings = self.settings.extraction
        self.min_body_chars = self.settings.skills.min_body_chars
        self.cleaner = cleaner or ContentCleaner()
        self.logger = get_logger_for_component("extraction_agent")
        self.drift = DriftTracker(
            window=self.extraction_settings.drift_window,
            threshold=self.extraction_settings.drift_threshold,
            min_samples=self.extraction_settings.drift_min_samples,
        )

    def needs_regeneration(self, source_id: str) -> bool:
        """Whether drift was flagged for the source's active skill."""
        return self.drift.is_flagged(source_id)

    def clear_drift(self, source_id: str) -> None:
        self.drift.clear(source_id)

    async def extract(
        self,
        source: Source,
        skill: Skill,
        is_known: Optional[Callable[[str], bool]] = None,
    ) -> ExtractionResult:
        """Extract articles from a source's live pages with its skill.

        With a link selector the list page is fetched first and each
        unknown article link is fetched and extracted; otherwise the
        source page itself is the article.

        Args:
            source: Web source
            skill: Active skill for the source
            is_known: Predicate for article URLs already ingested, which
                are skipped without counting toward drift

        Returns:
            ExtractionResult with validated candidate articles

        Raises:
            FetchError: If the source page itself could not be fetched
            ExtractionError: If pages were attempted and none passed
        """
        log = self.logger.bind(source_id=source.id, skill_version=skill.version)
        result = ExtractionResult(source_id=source.id, skill_version=skill.version)
        ruleset = skill.ruleset

        page = await self.fetcher.fetch(source.url, render=source.render)

        if ruleset.link_selector:
            limit = self.extraction_settings.max_articles_per_job
            links = select_links(ruleset, page.html, page.final_url)[:limit]

            if not links:
                result.pages_attempted += 1
                result.failures.append(f"{page.final_url}: link_selector matched no links")
                self._record(source, skill, False, result)
            else:
                for link in links:
                    if is_known is not None and is_known(link):
                        continue
                    try:
                        article_page = await self.fetcher.fetch(link, render=source.render)
                    except FetchError as e:
                        result.pages_attempted += 1
                        result.failures.append(f"{link}: {e}")
                        self._record(source, skill, False, result)
                        log.debug(f"Article fetch failed: {e}")
                        continue
                    self._extract_page(source, skill, article_page, result)
        else:
            self._extract_page(source, skill, page, result)

        if result.drift_flagged:
            log.warning(
                f"Drift detected for skill v{skill.version}, regeneration requested",
                extra={"success_rate": self.drift.success_rate(source.id, skill.version)},
            )

        if result.pages_attempted and not result.pages_passed:
            raise ExtractionError(
                f"Skill v{skill.version} failed on all {result.pages_attempted} pages",
                url=source.url,
                context={
                    "source_id": source.id,
                    "skill_version": skill.version,
                    "failures": result.failures[:5],
                },
            )

        log.info(
            f"Extracted {len(result.articles)} articles "
            f"({result.pages_passed}/{result.pages_attempted} pages passed)"
        )
        return result

    def _extract_page(
        self, source: Source, skill: Skill, page: FetchedPage, result: ExtractionResult
    ) -> None:
        result.pages_attempted += 1
        extracted = apply_ruleset(skill.ruleset, page.html, page.final_url)
        check = check_page(extracted, skill.ruleset, self.min_body_chars)
        self._record(source, skill, check.passed, result)

        if not check.passed:
            result.failures.append(f"{page.final_url}: {'; '.join(check.reasons)}")
            return

        result.pages_passed += 1
        result.articles.append(
            CandidateArticle(
                source_id=source.id,
                source_url=page.final_url,
                title=str(extracted.title).strip(),
                content=extracted.body,
                canonical_url=extracted.canonical_url,
                raw_html=page.html,
                published_at=extracted.published_at,
                author=extracted.author,
                confidence=self.extraction_settings.skill_confidence,
                strategy=StrategyKind.SKILL,
                skill_version=skill.version,
            )
        )

    def _record(self, source: Source, skill: Skill, success: bool, result: ExtractionResult) -> None:
        if self.drift.record(source.id, skill.version, success):
            result.drift_flagged = True

    def generic_extract(self, page: FetchedPage, source: Source) -> Optional[CandidateArticle]:
        """Heuristic extraction from the largest text block on a page.

        Returns:
            Low-confidence candidate, or None when the page has no title or
            too little text
        """
        block = self.cleaner.largest_text_block(page.html)
        if block is None or not block.title or len(block.text) < self.min_body_chars:
            return None

        return CandidateArticle(
            source_id=source.id,
            source_url=page.final_url,
            title=block.title,
            content=block.text,
            raw_html=page.html,
            confidence=min(self.extraction_settings.fallback_confidence, 1.0),
            strategy=StrategyKind.GENERIC,
        )

    async def extract_generic(self, source: Source) -> List[CandidateArticle]:
        """Fetch the source page and run the heuristic extractor on it.

        Raises:
            FetchError: If the page could not be fetched
            ExtractionError: If no content block was found
        """
        page = await self.fetcher.fetch(source.url, render=source.render)
        candidate = self.generic_extract(page, source)
        if candidate is None:
            raise ExtractionError(
                "Generic extraction found no content block",
                url=source.url,
                error_code=ErrorCode.EXTRACTION_NO_CONTENT,
            )
        self.logger.info(
            f"Generic extraction produced '{candidate.title[:60]}' "
            f"(confidence {candidate.confidence})",
            extra={"source_id": source.id},
        )
        return [candidate]
