"""
SkillFeed Data Models
=====================

Pydantic data models for sources, skills, rulesets and articles. These
models correspond to the database schema and provide validation,
serialization and type hints for every component of the ingestion core.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, field_validator, model_validator
import uuid

from ..utils.exceptions import ErrorKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    """Declared source type."""
    FEED = "feed"
    WEB = "web"


class SourceStatus(str, Enum):
    """Source health states, ordered from best to worst."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILING = "failing"
    DISABLED = "disabled"


class StrategyKind(str, Enum):
    """Ingestion strategy chosen for a job."""
    FEED = "feed"
    SKILL = "skill"
    GENERIC = "generic"


class JobOutcome(str, Enum):
    """Outcome of one ingestion job."""
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class ArticleField(str, Enum):
    """Article fields a ruleset can populate."""
    TITLE = "title"
    BODY = "body"
    PUBLISHED_AT = "published_at"
    AUTHOR = "author"
    CANONICAL_URL = "canonical_url"


class FieldTransform(str, Enum):
    """Declarative transforms applied to a selected element."""
    TEXT = "text"
    HTML_TEXT = "html_text"
    ATTR = "attr"
    ABSOLUTE_URL = "absolute_url"
    DATETIME = "datetime"


class Source(BaseModel):
    """Ingestion source with its health fields."""
    id: str = Field(..., min_length=1, description="Stable source identifier")
    url: str = Field(..., min_length=1, description="Homepage or list page URL")
    name: Optional[str] = Field(default=None, max_length=255, description="Display name")
    type: SourceType = Field(default=SourceType.WEB, description="Declared source type")
    feed_url: Optional[str] = Field(default=None, description="Discovered syndication feed URL")
    render: bool = Field(default=False, description="Page needs a headless browser")
    fetch_interval_minutes: Optional[int] = Field(default=None, ge=1, description="Per-source fetch interval")

    status: SourceStatus = Field(default=SourceStatus.HEALTHY, description="Health state")
    consecutive_failures: int = Field(default=0, ge=0, description="Failures since the last success")
    consecutive_successes: int = Field(default=0, ge=0, description="Successes since the last failure")
    backoff_until: Optional[datetime] = Field(default=None, description="Not due before this instant")
    last_attempt_at: Optional[datetime] = Field(default=None, description="Last job completion")
    last_success_at: Optional[datetime] = Field(default=None, description="Last successful job")
    last_error_kind: Optional[ErrorKind] = Field(default=None, description="Kind of the last failure")
    last_error: Optional[str] = Field(default=None, description="Message of the last failure")
    active_skill_version: Optional[int] = Field(default=None, ge=1, description="Published skill in use")
    created_at: Optional[datetime] = Field(default_factory=utc_now)

    @property
    def feed_target(self) -> Optional[str]:
        """URL the feed strategy reads, if any."""
        if self.feed_url:
            return self.feed_url
        if self.type == SourceType.FEED:
            return self.url
        return None

    @property
    def is_disabled(self) -> bool:
        return self.status == SourceStatus.DISABLED

    def __str__(self) -> str:
        return f"Source({self.id}:{self.status.value})"


class ExtractionRule(BaseModel):
    """One declarative field extraction rule."""
    field: ArticleField = Field(..., description="Target article field")
    selector: str = Field(..., min_length=1, description="CSS selector")
    transform: FieldTransform = Field(default=FieldTransform.TEXT, description="Value transform")
    attribute: Optional[str] = Field(default=None, description="Attribute read by attr/absolute_url/datetime")
    required: bool = Field(default=False, description="Missing value fails the page")

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, v):
        """Strip whitespace around selectors."""
        v = v.strip()
        if not v:
            raise ValueError("selector cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_attribute(self):
        """The attr transform needs an attribute name."""
        if self.transform == FieldTransform.ATTR and not self.attribute:
            raise ValueError("attr transform requires an attribute")
        return self


class Ruleset(BaseModel):
    """Declarative extraction procedure. Never contains executable code."""
    rules: List[ExtractionRule] = Field(..., min_length=1, description="Field rules")
    link_selector: Optional[str] = Field(default=None, description="Selects article links on the list page")
    max_articles: Optional[int] = Field(default=None, ge=1, le=100, description="Articles taken per list page")

    @field_validator("link_selector")
    @classmethod
    def validate_link_selector(cls, v):
        """Treat blank selectors as absent."""
        if v is not None and not v.strip():
            return None
        return v.strip() if v else v

    @model_validator(mode="after")
    def validate_required_fields(self):
        """Title and body rules must be present."""
        fields = {rule.field for rule in self.rules}
        missing = {ArticleField.TITLE, ArticleField.BODY} - fields
        if missing:
            names = ", ".join(sorted(f.value for f in missing))
            raise ValueError(f"ruleset is missing rules for: {names}")
        return self

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "Ruleset":
        return cls.model_validate_json(raw)


class SkillValidation(BaseModel):
    """Validation evidence recorded when a skill is published."""
    samples_passed: int = Field(default=0, ge=0)
    samples_total: int = Field(default=0, ge=0)
    extracted_field_coverage: float = Field(default=0.0, ge=0.0, le=1.0, description="Mean share of fields extracted per sample")

    @property
    def pass_ratio(self) -> float:
        if self.samples_total == 0:
            return 0.0
        return self.samples_passed / self.samples_total


class Skill(BaseModel):
    """Published, immutable extraction procedure for one source."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique skill ID")
    source_id: str = Field(..., min_length=1)
    version: int = Field(..., ge=1, description="Monotonic per source")
    ruleset: Ruleset
    generated_at: datetime = Field(default_factory=utc_now)
    generating_model: str = Field(default="unknown", description="LLM model that produced the ruleset")
    validation: SkillValidation = Field(default_factory=SkillValidation)

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"Skill({self.source_id}:v{self.version})"


class CandidateArticle(BaseModel):
    """Article produced by a strategy, before the ingestion boundary."""
    source_id: str
    source_url: str = Field(..., description="Page the article was read from")
    title: Optional[str] = None
    content: Optional[str] = None
    canonical_url: Optional[str] = Field(default=None, description="Declared canonical URL, falls back to source_url")
    raw_html: Optional[str] = Field(default=None, description="Raw page HTML or entry markup")
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    strategy: StrategyKind = StrategyKind.FEED
    skill_version: Optional[int] = None


class Article(BaseModel):
    """Accepted article record."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique article ID")
    source_id: str = Field(..., min_length=1)
    source_url: str = Field(..., min_length=1)
    canonical_url: str = Field(..., min_length=1, description="Unique per source")
    title: str = Field(..., min_length=1, max_length=1000)
    raw_html_hash: str = Field(..., description="SHA-256 of the raw markup")
    clean_content: str = Field(..., min_length=1)
    content_hash: str = Field(default="", description="SHA-256 of clean_content")
    published_at: Optional[datetime] = None
    extraction_confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    strategy: StrategyKind = StrategyKind.FEED
    skill_version: Optional[int] = None
    author: Optional[str] = None
    fetched_at: datetime = Field(default_factory=utc_now)

    def __str__(self) -> str:
        return f"Article({self.title[:50]}...)"


@dataclass
class HealthSnapshot:
    """Externally visible health of one source."""
    source_id: str
    status: SourceStatus
    last_attempt: Optional[datetime]
    last_error: Optional[ErrorKind]
    consecutive_failures: int = 0
    backoff_until: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status.value,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "last_error": self.last_error.value if self.last_error else None,
            "consecutive_failures": self.consecutive_failures,
            "backoff_until": self.backoff_until.isoformat() if self.backoff_until else None,
        }


@dataclass
class JobResult:
    """Ephemeral record of one ingestion job."""
    source_id: str
    strategy: StrategyKind
    started_at: datetime
    outcome: JobOutcome = JobOutcome.SUCCESS
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    duration: float = 0.0
    produced_article_ids: List[str] = field(default_factory=list)
    articles_seen: int = 0
    skill_version: Optional[int] = None
    retry_after: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == JobOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "strategy": self.strategy.value,
            "outcome": self.outcome.value,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "duration_seconds": round(self.duration, 3),
            "articles_produced": len(self.produced_article_ids),
            "articles_seen": self.articles_seen,
            "skill_version": self.skill_version,
        }
