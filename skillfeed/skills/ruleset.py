"""
Ruleset Engine
==============

Applies a declarative ruleset to a page. Application is a pure function of
(ruleset, html, page_url): no network access, no state, and no code from
the ruleset is ever executed. Applying the same ruleset to the same page
twice yields identical output.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from dateutil import parser as date_parser
from soupsieve import SelectorSyntaxError

from ..database.models import ArticleField, ExtractionRule, FieldTransform, Ruleset
from ..ingestion.content_cleaner import ContentCleaner

_cleaner = ContentCleaner()


@dataclass
class ExtractedPage:
    """Field values extracted from one page."""

    page_url: str
    fields: Dict[ArticleField, object] = field(default_factory=dict)
    missing_required: List[ArticleField] = field(default_factory=list)
    invalid_selectors: List[str] = field(default_factory=list)

    @property
    def title(self) -> Optional[str]:
        return self.fields.get(ArticleField.TITLE)

    @property
    def body(self) -> Optional[str]:
        return self.fields.get(ArticleField.BODY)

    @property
    def published_at(self) -> Optional[datetime]:
        return self.fields.get(ArticleField.PUBLISHED_AT)

    @property
    def author(self) -> Optional[str]:
        return self.fields.get(ArticleField.AUTHOR)

    @property
    def canonical_url(self) -> Optional[str]:
        return self.fields.get(ArticleField.CANONICAL_URL)

    def coverage(self, ruleset: Ruleset) -> float:
        """Share of the ruleset's fields that produced a value."""
        targets = {rule.field for rule in ruleset.rules}
        if not targets:
            return 0.0
        return sum(1 for f in targets if self.fields.get(f)) / len(targets)


def parse_document(html: str) -> BeautifulSoup:
    return _cleaner.parse(html)


def safe_select(soup: BeautifulSoup, selector: str) -> Optional[List[Tag]]:
    """Run a CSS selector, returning None when the selector is invalid."""
    try:
        return soup.select(selector)
    except (SelectorSyntaxError, ValueError, NotImplementedError):
        return None


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse a free-form date string into an aware UTC datetime."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = date_parser.parse(value, fuzzy=True)
    except (ValueError, OverflowError, TypeError):
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def apply_transform(rule: ExtractionRule, element: Tag, page_url: str) -> Optional[object]:
    """Turn a selected element into a field value according to the rule."""
    transform = rule.transform

    if transform == FieldTransform.TEXT:
        preserve = rule.field == ArticleField.BODY
        text = _cleaner.element_text(element, preserve_blocks=preserve)
        return text or None

    elif transform == FieldTransform.HTML_TEXT:
        text = _cleaner.clean_html_content(element.decode_contents())
        return text or None

    elif transform == FieldTransform.ATTR:
        value = element.get(rule.attribute)
        if isinstance(value, list):
            value = " ".join(value)
        return value.strip() if value and value.strip() else None

    elif transform == FieldTransform.ABSOLUTE_URL:
        raw = element.get(rule.attribute or "href") or element.get_text(strip=True)
        if not raw:
            return None
        return urljoin(page_url, raw.strip())

    elif transform == FieldTransform.DATETIME:
        if rule.attribute:
            raw = element.get(rule.attribute)
        else:
            raw = element.get("datetime") or element.get("content") or element.get_text(" ", strip=True)
        return parse_datetime(raw) if raw else None

    else:
        raise TypeError(f"Unhandled transform: {transform!r}")


def apply_ruleset(ruleset: Ruleset, html: str, page_url: str) -> ExtractedPage:
    """Apply every rule to a page.

    For each field the first rule whose selector yields a value wins.
    Required fields without a value are reported in ``missing_required``.
    """
    soup = parse_document(html)
    page = ExtractedPage(page_url=page_url)

    for rule in ruleset.rules:
        if page.fields.get(rule.field):
            continue

        elements = safe_select(soup, rule.selector)
        if elements is None:
            page.invalid_selectors.append(rule.selector)
            continue

        for element in elements:
            value = apply_transform(rule, element, page_url)
            if value:
                page.fields[rule.field] = value
                break

    for rule in ruleset.rules:
        if rule.required and not page.fields.get(rule.field) and rule.field not in page.missing_required:
            page.missing_required.append(rule.field)

    return page


def select_links(ruleset: Ruleset, html: str, page_url: str) -> List[str]:
    """Article links selected by the ruleset's link selector, deduplicated."""
    if not ruleset.link_selector:
        return []

    soup = parse_document(html)
    if safe_select(soup, ruleset.link_selector) is None:
        return []
    links = _cleaner.links_from_soup(soup, page_url, ruleset.link_selector)
    if ruleset.max_articles:
        links = links[: ruleset.max_articles]
    return links
