"""
Content Cleaner
===============

HTML cleaning and text extraction utilities shared by the feed parser,
the ruleset engine and the generic heuristic extractor.

This module provides:
- Removal of script, style and other non-content elements
- Plain text extraction with paragraph structure preserved
- Link extraction with relative URL resolution
- Largest-text-block detection for pages without a skill
"""

import re
import html
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Comment, Tag
from bs4.element import CData, ProcessingInstruction, Doctype

from ..utils.logging import get_logger_for_component


@dataclass
class TextBlock:
    """Best content block found by the heuristic extractor."""

    title: Optional[str]
    text: str
    score: float


class ContentCleaner:
    """HTML content cleaner with text and link extraction."""

    # Elements removed together with their content
    NON_CONTENT_ELEMENTS = {
        "script",
        "style",
        "iframe",
        "embed",
        "object",
        "applet",
        "form",
        "input",
        "button",
        "select",
        "textarea",
        "meta",
        "link",
        "base",
        "noscript",
        "canvas",
        "svg",
    }

    # Page chrome ignored by the largest-block heuristic
    BOILERPLATE_ELEMENTS = {"nav", "header", "footer", "aside"}

    BLOCK_CANDIDATES = ("article", "main", "section", "div", "td")

    WHITESPACE_PATTERN = re.compile(r"[ \t\r\f\v]+")
    MULTIPLE_NEWLINES_PATTERN = re.compile(r"\n\s*\n\s*\n+")
    SKIP_HREF_PATTERN = re.compile(r"^\s*(javascript|data|mailto|tel):", re.IGNORECASE)

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser
        self.logger = get_logger_for_component("content_cleaner")

    def parse(self, html_content: str) -> BeautifulSoup:
        """Parse markup with the configured parser."""
        return BeautifulSoup(html_content or "", self.parser)

    def clean_html_content(self, html_content: str) -> str:
        """Clean HTML and extract readable text with paragraph breaks.

        Args:
            html_content: Raw HTML content to clean

        Returns:
            Cleaned plain text content
        """
        if not html_content or not html_content.strip():
            return ""

        soup = self.parse(html_content)
        self._strip_non_content(soup)
        return self.normalize_text(soup.get_text(separator="\n", strip=True))

    def element_text(self, element: Tag, preserve_blocks: bool = False) -> str:
        """Text of a single element, optionally keeping block breaks."""
        fragment = self.parse(str(element))
        self._strip_non_content(fragment)
        separator = "\n" if preserve_blocks else " "
        return self.normalize_text(fragment.get_text(separator=separator, strip=True))

    def extract_text_only(self, html_content: str) -> str:
        """Extract single-line text from HTML, removing all markup."""
        if not html_content or not html_content.strip():
            return ""

        soup = self.parse(html_content)
        self._strip_non_content(soup)
        text = soup.get_text(separator=" ", strip=True)
        return self.WHITESPACE_PATTERN.sub(" ", html.unescape(text)).strip()

    def extract_links(self, html_content: str, base_url: str, selector: str = "a[href]") -> List[str]:
        """Extract absolute http(s) links matching a selector.

        Args:
            html_content: HTML content to process
            base_url: Base URL for resolving relative links
            selector: CSS selector for anchors

        Returns:
            Unique absolute URLs in document order
        """
        soup = self.parse(html_content)
        return self.links_from_soup(soup, base_url, selector)

    def links_from_soup(self, soup: BeautifulSoup, base_url: str, selector: str = "a[href]") -> List[str]:
        """Same as :meth:`extract_links` for an already parsed document."""
        seen = set()
        links = []

        for element in soup.select(selector):
            anchor = element if element.name == "a" else element.find("a", href=True)
            if anchor is None:
                continue

            href = (anchor.get("href") or "").strip()
            if not href or href.startswith("#") or self.SKIP_HREF_PATTERN.match(href):
                continue

            absolute = urljoin(base_url, href).split("#", 1)[0]
            if urlparse(absolute).scheme not in ("http", "https"):
                continue

            if absolute not in seen:
                seen.add(absolute)
                links.append(absolute)

        return links

    def page_title(self, soup: BeautifulSoup) -> Optional[str]:
        """Best-effort page title: og:title, then h1, then <title>."""
        og_title = soup.find("meta", attrs={"property": "og:title"})
        if og_title and og_title.get("content"):
            return og_title["content"].strip()

        h1 = soup.find("h1")
        if h1 and h1.get_text(strip=True):
            return h1.get_text(" ", strip=True)

        if soup.title and soup.title.string:
            return soup.title.string.strip()

        return None

    def largest_text_block(self, html_content: str) -> Optional[TextBlock]:
        """Find the largest contiguous block of paragraph text.

        Candidates are scored by the length of their direct paragraph text,
        so a wrapper div does not win over the article it contains.
        """
        soup = self.parse(html_content)
        title = self.page_title(soup)
        self._strip_non_content(soup)
        for element_name in self.BOILERPLATE_ELEMENTS:
            for element in soup.find_all(element_name):
                element.decompose()

        best: Optional[Tag] = None
        best_score = 0.0

        for candidate in soup.find_all(self.BLOCK_CANDIDATES):
            paragraphs = candidate.find_all("p", recursive=False)
            score = float(sum(len(p.get_text(strip=True)) for p in paragraphs))
            # Semantic containers get a small boost
            if candidate.name in ("article", "main"):
                score *= 1.2
            if score > best_score:
                best, best_score = candidate, score

        if best is None:
            body = soup.body or soup
            text = self.normalize_text(body.get_text(separator="\n", strip=True))
            if not text:
                return None
            return TextBlock(title=title, text=text, score=float(len(text)))

        text = self.normalize_text(best.get_text(separator="\n", strip=True))
        return TextBlock(title=title, text=text, score=best_score)

    def normalize_text(self, text: str) -> str:
        """Normalize whitespace while keeping paragraph breaks."""
        if not text:
            return ""

        text = html.unescape(text)
        text = self.WHITESPACE_PATTERN.sub(" ", text)
        text = self.MULTIPLE_NEWLINES_PATTERN.sub("\n\n", text)

        lines = [line.strip() for line in text.split("\n")]
        return "\n".join(line for line in lines if line).strip()

    def _strip_non_content(self, soup: BeautifulSoup) -> None:
        for element in soup.find_all(self.NON_CONTENT_ELEMENTS):
            element.decompose()

        for node in soup.find_all(
            string=lambda text: isinstance(
                text, (Comment, CData, ProcessingInstruction, Doctype)
            )
        ):
            node.extract()
