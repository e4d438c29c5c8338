"""
Feed Parser
===========

Turns RSS/Atom documents into candidate articles with feedparser.
"""

import calendar
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser

from ..database.models import CandidateArticle, StrategyKind
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import FeedParseError
from .content_cleaner import ContentCleaner


class FeedParser:
    """feedparser wrapper producing CandidateArticle records."""

    CONTENT_FIELDS = ("content", "description", "summary")
    DATE_FIELDS = ("published_parsed", "updated_parsed", "created_parsed")

    def __init__(self, cleaner: Optional[ContentCleaner] = None):
        self.cleaner = cleaner or ContentCleaner()
        self.logger = get_logger_for_component("feed_parser")

    def parse(self, document: str, feed_url: str, source_id: str) -> List[CandidateArticle]:
        """Parse a feed document.

        Args:
            document: Raw feed XML
            feed_url: URL the document was fetched from
            source_id: Owning source

        Returns:
            Candidate articles in feed order

        Raises:
            FeedParseError: If the document is malformed and has no entries
        """
        feed_data = feedparser.parse(document)

        if getattr(feed_data, "bozo", False):
            exception = getattr(feed_data, "bozo_exception", None)
            error_msg = f"Feed parse error: {exception or 'invalid XML structure'}"
            if not feed_data.entries:
                raise FeedParseError(error_msg, feed_url=feed_url)
            self.logger.info(
                f"Feed has parse warnings but contains entries: {feed_url}",
                extra={"source_id": source_id},
            )

        if not feed_data.entries:
            version = getattr(feed_data, "version", "")
            if not version:
                raise FeedParseError("Document is not a syndication feed", feed_url=feed_url)
            self.logger.info(f"Feed {feed_url} has no entries", extra={"source_id": source_id})
            return []

        candidates = []
        for entry in feed_data.entries:
            link = getattr(entry, "link", "") or ""
            if not link:
                self.logger.debug(f"Entry without link in {feed_url}, skipping")
                continue

            raw_content = self._raw_content(entry)
            candidates.append(
                CandidateArticle(
                    source_id=source_id,
                    source_url=link,
                    title=(getattr(entry, "title", "") or "").strip() or None,
                    content=self.cleaner.clean_html_content(raw_content) if raw_content else None,
                    raw_html=raw_content,
                    published_at=self._parse_date(entry),
                    author=getattr(entry, "author", None),
                    confidence=1.0,
                    strategy=StrategyKind.FEED,
                )
            )

        return candidates

    def _raw_content(self, entry: Any) -> Optional[str]:
        """First non-empty content field, preferring full content."""
        for field in self.CONTENT_FIELDS:
            raw = entry.get(field)

            # Atom content is a list of dicts
            if isinstance(raw, list) and raw:
                raw = raw[0]
            if isinstance(raw, dict):
                raw = raw.get("value", "")

            if raw and isinstance(raw, str) and raw.strip():
                return raw

        return None

    def _parse_date(self, entry: Any) -> Optional[datetime]:
        for field in self.DATE_FIELDS:
            date_tuple = entry.get(field)
            if date_tuple:
                try:
                    # feedparser normalizes to UTC struct_time
                    return datetime.fromtimestamp(calendar.timegm(date_tuple), tz=timezone.utc)
                except (ValueError, OverflowError, TypeError):
                    continue
        return None
