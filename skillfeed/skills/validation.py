"""
Skill Validation
================

The gate every ruleset passes before it is trusted. The same per-page check
is reused by the extraction agent on live pages.
"""

import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from ..database.models import Ruleset, SkillValidation
from .ruleset import ExtractedPage, apply_ruleset


@dataclass
class PageCheck:
    """Outcome of validating one extracted page."""

    page_url: str
    passed: bool
    reasons: List[str] = field(default_factory=list)
    coverage: float = 0.0


@dataclass
class ValidationReport:
    """Aggregate validation of a ruleset over sample pages."""

    checks: List[PageCheck]
    min_pass_ratio: float
    link_count: int = -1  # -1 when the ruleset has no link selector

    @property
    def samples_total(self) -> int:
        return len(self.checks)

    @property
    def samples_passed(self) -> int:
        return sum(1 for check in self.checks if check.passed)

    @property
    def required_passes(self) -> int:
        return max(1, math.ceil(self.samples_total * self.min_pass_ratio - 1e-9))

    @property
    def passed(self) -> bool:
        if self.samples_total == 0 or self.link_count == 0:
            return False
        return self.samples_passed >= self.required_passes

    def to_validation(self) -> SkillValidation:
        coverage = (
            sum(check.coverage for check in self.checks) / self.samples_total
            if self.samples_total
            else 0.0
        )
        return SkillValidation(
            samples_passed=self.samples_passed,
            samples_total=self.samples_total,
            extracted_field_coverage=round(coverage, 4),
        )

    def failure_summary(self, limit: int = 5) -> str:
        """Human-readable reasons, fed back to the LLM as a repair prompt."""
        lines = []
        if self.link_count == 0:
            lines.append("link_selector matched no article links on the list page")
        for check in self.checks:
            if not check.passed:
                lines.append(f"{check.page_url}: {'; '.join(check.reasons)}")
        return "\n".join(lines[:limit])


def check_page(page: ExtractedPage, ruleset: Ruleset, min_body_chars: int) -> PageCheck:
    """Validate one extracted page.

    A page passes with a non-empty title, a body of at least
    ``min_body_chars`` characters and every required field present.
    """
    reasons = []

    if page.invalid_selectors:
        reasons.append(f"invalid selectors: {', '.join(page.invalid_selectors)}")

    title = page.title
    if not title or not str(title).strip():
        reasons.append("title is empty")

    body = page.body or ""
    if len(body.strip()) < min_body_chars:
        reasons.append(f"body has {len(body.strip())} chars, need {min_body_chars}")

    if page.missing_required:
        names = ", ".join(f.value for f in page.missing_required)
        reasons.append(f"required fields missing: {names}")

    return PageCheck(
        page_url=page.page_url,
        passed=not reasons,
        reasons=reasons,
        coverage=page.coverage(ruleset),
    )


def validate_ruleset(
    ruleset: Ruleset,
    samples: Sequence[Tuple[str, str]],
    min_body_chars: int,
    min_pass_ratio: float,
) -> ValidationReport:
    """Apply a ruleset to (url, html) samples and aggregate the checks."""
    checks = [
        check_page(apply_ruleset(ruleset, html, url), ruleset, min_body_chars)
        for url, html in samples
    ]
    return ValidationReport(checks=checks, min_pass_ratio=min_pass_ratio)
