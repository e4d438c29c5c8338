"""
Skill Generator
===============

LLM-driven synthesis of a declarative extraction ruleset for a web source.

Generation flow:
1. Fetch the source's list page and discover candidate article links
   (common article link selectors plus hints inferred from date-shaped URLs)
2. Fetch up to ``sample_pages`` sample article pages
3. Ask the LLM for a ruleset against the ruleset JSON schema
4. Validate the ruleset on the samples; on failure feed the reasons back as
   a repair prompt, at most ``max_turns`` LLM turns in total
5. Return (or publish) the validated skill. Failing rulesets are never
   published.
"""

import json
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError as PydanticValidationError

from ..ai.limiter import LLMGate
from ..ai.providers.base import LLMClient
from ..config.settings import SkillFeedSettings, get_settings
from ..database.models import Ruleset, Skill, Source
from ..ingestion.content_cleaner import ContentCleaner
from ..ingestion.fetcher import FetchLayer, FetchedPage
from ..utils.clock import Clock, SystemClock
from ..utils.exceptions import (
    AIError,
    ErrorCode,
    FetchError,
    GenerationError,
    LLMRateLimitError,
)
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .ruleset import safe_select, select_links
from .store import SkillStore
from .validation import ValidationReport, validate_ruleset

SYSTEM_PROMPT = (
    "You write declarative CSS-selector extraction rules for news and blog "
    "websites. You never write code. Only use selectors that exist in the "
    "HTML you are shown."
)

# Common article link patterns on list pages
ARTICLE_LINK_SELECTORS = [
    "article a",
    "a[href*='/post']",
    "a[href*='/article']",
    "a[href*='/blog']",
    "a[href*='/news']",
    ".post a",
    ".article a",
    ".entry a",
    "h2 a",
    "h3 a",
]

DATE_PATH_PATTERN = re.compile(r"/20\d{2}/\d{2}/\d{2}/")


@dataclass
class SelectorHints:
    """Selectors inferred from the list page structure."""

    container_selector: Optional[str] = None
    link_selector: Optional[str] = None
    title_selector: Optional[str] = None
    date_selector: Optional[str] = None

    def describe(self) -> str:
        return (
            f"- Container selector: {self.container_selector or 'unknown'}\n"
            f"- Link selector: {self.link_selector or 'unknown'}\n"
            f"- Title selector: {self.title_selector or 'unknown'}\n"
            f"- Date selector: {self.date_selector or 'unknown'}"
        )


@dataclass
class PageAnalysis:
    """What the generator learned about a source's list page."""

    page: FetchedPage
    article_links: List[Tuple[str, str]] = field(default_factory=list)
    hints: Optional[SelectorHints] = None

    @property
    def url(self) -> str:
        return self.page.final_url

    @property
    def html(self) -> str:
        return self.page.html


def _most_common_class(elements: List[Tag], min_share: float) -> Optional[str]:
    counts: Counter = Counter()
    for element in elements:
        for cls in element.get("class") or []:
            counts[cls] += 1

    if not counts:
        return None
    best_cls, best_count = counts.most_common(1)[0]
    if best_count / max(1, len(elements)) < min_share:
        return None
    return best_cls


def infer_list_selectors(soup: BeautifulSoup, base_url: str) -> Optional[SelectorHints]:
    """Infer list selectors from same-origin links with date-shaped paths.

    Returns None unless at least three such links exist.
    """
    origin = urlparse(base_url)
    anchors = []
    for anchor in soup.select("a[href]"):
        if not anchor.get_text(strip=True):
            continue
        href = urlparse(anchor["href"])
        if href.netloc and href.netloc != origin.netloc:
            continue
        if DATE_PATH_PATTERN.search(href.path or ""):
            anchors.append(anchor)

    if len(anchors) < 3:
        return None

    link_class = _most_common_class(anchors, 0.35)
    link_selector = f"a.{link_class}" if link_class else "a[href]"

    containers: List[Tag] = []
    for anchor in anchors:
        current = anchor.parent
        while current is not None and current.name not in ("body", "[document]"):
            if current.name in ("li", "article") or current.get("class"):
                containers.append(current)
                break
            current = current.parent

    container_selector = None
    container_class = _most_common_class(containers, 0.3)
    if container_class:
        tag_name = next(
            c.name for c in containers if container_class in (c.get("class") or [])
        )
        container_selector = f"{tag_name}.{container_class}"

    times = [c.select_one("time[datetime]") for c in containers]
    times = [t for t in times if t is not None]
    date_selector = None
    if times:
        time_class = _most_common_class(times, 0.35)
        date_selector = f"time.{time_class}" if time_class else "time[datetime]"

    return SelectorHints(
        container_selector=container_selector,
        link_selector=link_selector,
        title_selector=link_selector,
        date_selector=date_selector,
    )


class SkillGenerator:
    """Synthesizes, validates and publishes extraction skills."""

    def __init__(
        self,
        fetcher: FetchLayer,
        llm: LLMClient,
        gate: LLMGate,
        skill_store: SkillStore,
        settings: Optional[SkillFeedSettings] = None,
        clock: Optional[Clock] = None,
        cleaner: Optional[ContentCleaner] = None,
    ):
        self.fetcher = fetcher
        self.llm = llm
        self.gate = gate
        self.skill_store = skill_store
        self.settings = settings or get_settings()
        self.skill_settings = self.settings.skills
        self.clock = clock or SystemClock()
        self.cleaner = cleaner or ContentCleaner()
        self.logger = get_logger_for_component("skill_generator")
        self.ruleset_schema = Ruleset.model_json_schema()

    async def analyze_list_page(self, source: Source) -> PageAnalysis:
        """Fetch the list page and collect candidate article links."""
        page = await self.fetcher.fetch(source.url, render=source.render)
        soup = self.cleaner.parse(page.html)
        own_url = page.final_url.rstrip("/")

        links: List[Tuple[str, str]] = []
        seen = set()
        for selector in ARTICLE_LINK_SELECTORS:
            for element in safe_select(soup, selector) or []:
                if element.name != "a" or not element.get("href"):
                    continue
                text = element.get_text(" ", strip=True)
                if not text:
                    continue
                url = urljoin(page.final_url, element["href"].strip()).split("#", 1)[0]
                if urlparse(url).scheme not in ("http", "https"):
                    continue
                if url in seen or url.rstrip("/") == own_url:
                    continue
                seen.add(url)
                links.append((url, text[:100]))

        hints = infer_list_selectors(soup, page.final_url)
        return PageAnalysis(
            page=page,
            article_links=links[: self.skill_settings.max_candidate_links],
            hints=hints,
        )

    async def fetch_samples(
        self, source: Source, candidate_urls: List[str]
    ) -> List[FetchedPage]:
        """Fetch up to ``sample_pages`` sample pages, skipping failed ones.

        Raises:
            GenerationError: When no sample could be fetched; the last fetch
                error is kept as the cause
        """
        wanted = self.skill_settings.sample_pages
        samples: List[FetchedPage] = []
        last_error: Optional[FetchError] = None

        for url in candidate_urls[: wanted * 2]:
            if len(samples) >= wanted:
                break
            try:
                samples.append(await self.fetcher.fetch(url, render=source.render))
            except FetchError as e:
                last_error = e
                self.logger.debug(
                    f"Sample fetch failed for {url}: {e}", extra={"source_id": source.id}
                )

        if not samples and last_error is not None:
            raise GenerationError(
                f"No sample page of {len(candidate_urls)} candidates could be fetched: {last_error}",
                source_id=source.id,
                context={
                    "last_error_kind": last_error.kind.value,
                    "last_error_url": last_error.url,
                },
            ) from last_error
        return samples

    def _compact_html(self, html: str) -> str:
        soup = self.cleaner.parse(html)
        for element in soup.find_all(self.cleaner.NON_CONTENT_ELEMENTS):
            element.decompose()
        return str(soup)[: self.skill_settings.max_html_chars]

    def build_prompt(self, source: Source, analysis: PageAnalysis, samples: List[FetchedPage]) -> str:
        """Initial generation prompt."""
        list_mode = bool(analysis.article_links)
        links_sample = "\n".join(
            f"- {text}: {url}" for url, text in analysis.article_links[:10]
        )
        hint_text = ""
        if analysis.hints:
            hint_text = (
                "\nSelector hints derived from the list page:\n"
                f"{analysis.hints.describe()}\n"
                "Use these selectors if they match the HTML. Do not invent selectors "
                "that are not present in the HTML.\n"
            )

        if list_mode:
            mode_text = (
                "This is a list page. Set link_selector to a selector matching the "
                "article links on the list page, and write the field rules for the "
                "article pages."
            )
        else:
            mode_text = (
                "The page itself is the article. Leave link_selector null and write "
                "the field rules for this page."
            )

        sample_html = self._compact_html(samples[0].html) if samples else ""
        return (
            f"Website URL: {analysis.url}\n"
            f"Site name: {source.name or source.id}\n\n"
            f"{mode_text}\n\n"
            f"Sample article links found:\n{links_sample or '(none)'}\n"
            f"{hint_text}\n"
            f"List page HTML (truncated):\n```html\n{self._compact_html(analysis.html)}\n```\n\n"
            f"Sample article HTML from {samples[0].final_url if samples else analysis.url} "
            f"(truncated):\n```html\n{sample_html}\n```\n\n"
            "Write rules for the fields title and body (required), and published_at, "
            "author and canonical_url when present. Allowed transforms: text, "
            "html_text, attr (needs attribute), absolute_url, datetime. List more "
            "than one rule for a field to provide fallbacks; the first rule that "
            f"yields a value wins. The body must yield at least "
            f"{self.skill_settings.min_body_chars} characters of article text."
        )

    def build_repair_prompt(self, previous: Optional[dict], feedback: str) -> str:
        """Follow-up prompt carrying the validation failures."""
        previous_json = json.dumps(previous, indent=2) if previous is not None else "(unparseable)"
        return (
            "Your previous ruleset failed validation on the sample pages.\n\n"
            f"Previous ruleset:\n```json\n{previous_json}\n```\n\n"
            f"Failures:\n{feedback}\n\n"
            "Return a corrected ruleset. Only use selectors present in the HTML "
            "shown earlier."
        )

    async def _ask(self, prompt: str) -> dict:
        try:
            async with self.gate.slot():
                return await self.llm.generate_structured(
                    prompt, self.ruleset_schema, system=SYSTEM_PROMPT
                )
        except LLMRateLimitError:
            raise
        except AIError as e:
            raise GenerationError(
                f"LLM request failed: {e}",
                error_code=ErrorCode.SKILL_GENERATION_FAILED,
                context={"llm_error": e.to_dict()},
            ) from e

    async def synthesize(
        self, source: Source, sample_urls: Optional[List[str]] = None
    ) -> Skill:
        """Generate and validate a new skill version without storing it.

        Args:
            source: Web source to generate a skill for
            sample_urls: Explicit sample pages, bypassing link discovery

        Returns:
            Validated, unpublished skill carrying the next version number

        Raises:
            GenerationError: If no sample page could be fetched or no ruleset
                passed validation within max_turns
            LLMRateLimitError: If the provider throttled the request
            FetchError: If the list page itself failed to fetch
        """
        log = self.logger.bind(source_id=source.id)

        with PerformanceLogger(log, "skill generation", source_id=source.id):
            analysis = await self.analyze_list_page(source)

            if sample_urls:
                candidate_urls = list(sample_urls)
            else:
                candidate_urls = [url for url, _ in analysis.article_links]

            if candidate_urls:
                samples = await self.fetch_samples(source, candidate_urls)
            else:
                # Single-article source: the page itself is the sample
                samples = [analysis.page]

            log.info(
                f"Generating skill from {len(analysis.article_links)} candidate links "
                f"and {len(samples)} sample pages"
            )

            sample_pairs = [(page.final_url, page.html) for page in samples]
            prompt = self.build_prompt(source, analysis, samples)
            report: Optional[ValidationReport] = None
            previous: Optional[dict] = None

            turn = 0
            while turn < self.skill_settings.max_turns:
                turn += 1
                raw = await self._ask(prompt)
                previous = raw

                try:
                    ruleset = Ruleset.model_validate(raw)
                except PydanticValidationError as e:
                    feedback = "; ".join(
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in e.errors()[:5]
                    )
                    log.warning(f"Turn {turn}: ruleset failed schema validation: {feedback}")
                    prompt = self.build_repair_prompt(previous, f"schema errors: {feedback}")
                    continue

                report = validate_ruleset(
                    ruleset,
                    sample_pairs,
                    min_body_chars=self.skill_settings.min_body_chars,
                    min_pass_ratio=self.skill_settings.min_pass_ratio,
                )
                if ruleset.link_selector:
                    report.link_count = len(
                        select_links(ruleset, analysis.html, analysis.url)
                    )

                if report.passed:
                    log.info(
                        f"Turn {turn}: ruleset passed validation "
                        f"({report.samples_passed}/{report.samples_total})"
                    )
                    return self.skill_store.build(
                        source.id,
                        ruleset,
                        report.to_validation(),
                        generating_model=self.llm.model_name,
                        generated_at=self.clock.now(),
                    )

                log.warning(
                    f"Turn {turn}: ruleset failed validation "
                    f"({report.samples_passed}/{report.samples_total})",
                    extra={"failures": report.failure_summary()},
                )
                prompt = self.build_repair_prompt(previous, report.failure_summary())

        context = {"turns": turn}
        if report is not None:
            context.update(report.to_validation().model_dump())
        raise GenerationError(
            f"No valid ruleset for {source.id} after {turn} turns",
            source_id=source.id,
            error_code=ErrorCode.SKILL_VALIDATION_FAILED,
            context=context,
        )

    async def generate(
        self, source: Source, sample_urls: Optional[List[str]] = None
    ) -> Skill:
        """Synthesize a skill and publish it as the source's next version."""
        return self.skill_store.activate(await self.synthesize(source, sample_urls))

    async def regenerate(self, source: Source) -> Skill:
        """Re-run generation for a source that already has a skill.

        The new ruleset is always validated; on failure the current version
        stays active and the error propagates.
        """
        self.logger.info(
            f"Regenerating skill (current v{source.active_skill_version})",
            extra={"source_id": source.id},
        )
        return await self.generate(source)
