"""
Foundation Tests for SkillFeed
==============================

Test suite for core foundation components: configuration, error taxonomy,
URL validation, data models and the SQLite record store.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from skillfeed.config.settings import SkillFeedSettings, LLMProvider
from skillfeed.database.connection import DatabaseConnection
from skillfeed.database.models import (
    Article,
    Ruleset,
    Skill,
    SkillValidation,
    Source,
    SourceStatus,
    SourceType,
    StrategyKind,
)
from skillfeed.database.schema import DatabaseSchema
from skillfeed.ingestion.fetcher import raise_for_status
from skillfeed.storage.sqlite_store import SQLiteStore
from skillfeed.utils.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    DatabaseError,
    ErrorCode,
    ErrorKind,
    ExtractionError,
    FeedParseError,
    FetchError,
    GenerationError,
    LLMRateLimitError,
    RateLimitedError,
    SkillFeedError,
    SourceGoneError,
    classify_error,
    handle_exception,
    is_retryable_error,
    ValidationError,
)
from skillfeed.utils.logging import get_logger_for_component
from skillfeed.utils.validators import URLValidator, ContentValidator, content_hash

from conftest import ruleset_dict


class TestConfiguration:
    """Test settings loading and validation."""

    def test_defaults(self, monkeypatch):
        """Defaults match the documented health policy."""
        monkeypatch.delenv("SKILLFEED_HEALTH__DISABLED_AFTER", raising=False)
        settings = SkillFeedSettings()

        assert settings.health.degraded_after == 2
        assert settings.health.failing_after == 5
        assert settings.health.disabled_after == 10
        assert settings.skills.sample_pages == 3
        assert settings.llm.provider == LLMProvider.OPENROUTER

    def test_environment_override(self, monkeypatch):
        """Nested settings are read from SKILLFEED_<SECTION>__<FIELD>."""
        monkeypatch.setenv("SKILLFEED_HEALTH__DISABLED_AFTER", "12")
        monkeypatch.setenv("SKILLFEED_SCHEDULER__MAX_CONCURRENT_JOBS", "8")

        settings = SkillFeedSettings()
        assert settings.health.disabled_after == 12
        assert settings.scheduler.max_concurrent_jobs == 8

    def test_threshold_order_enforced(self, tmp_path):
        settings = SkillFeedSettings(
            health={"degraded_after": 5, "failing_after": 3, "disabled_after": 10},
            database={"path": str(tmp_path / "x.db")},
            logging={"file_path": None},
        )
        with pytest.raises(ConfigurationError):
            settings.validate_configuration()

    def test_drift_min_samples_within_window(self):
        with pytest.raises(PydanticValidationError):
            SkillFeedSettings(extraction={"drift_window": 3, "drift_min_samples": 5})

    def test_base_url_per_provider(self):
        settings = SkillFeedSettings(llm={"provider": "openai"})
        assert settings.llm.get_base_url() == "https://api.openai.com/v1"

        settings = SkillFeedSettings(llm={"provider": "openrouter", "base_url": "http://proxy/v1"})
        assert settings.llm.get_base_url() == "http://proxy/v1"

    def test_llm_credentials(self):
        assert not SkillFeedSettings(llm={"api_key": None}).has_llm_credentials()
        assert SkillFeedSettings(llm={"api_key": "sk-test"}).has_llm_credentials()


class TestErrorTaxonomy:
    """Test exception hierarchy and job error classification."""

    @pytest.mark.parametrize(
        "exception,kind",
        [
            (FetchError("boom"), ErrorKind.TRANSIENT),
            (RateLimitedError("slow down"), ErrorKind.RATE_LIMITED),
            (LLMRateLimitError("slow down"), ErrorKind.RATE_LIMITED),
            (AccessDeniedError("forbidden"), ErrorKind.ACCESS_DENIED),
            (SourceGoneError("gone"), ErrorKind.NOT_FOUND),
            (FeedParseError("bad xml"), ErrorKind.PARSE_FAILURE),
            (GenerationError("no ruleset"), ErrorKind.GENERATION_FAILURE),
            (ExtractionError("empty"), ErrorKind.EXTRACTION_FAILURE),
            (TimeoutError(), ErrorKind.TRANSIENT),
            (ConnectionResetError(), ErrorKind.TRANSIENT),
            (PermissionError(), ErrorKind.ACCESS_DENIED),
            (RuntimeError("unexpected"), ErrorKind.TRANSIENT),
        ],
    )
    def test_classify_error(self, exception, kind):
        assert classify_error(exception) == kind

    def test_permanent_kinds(self):
        permanent = {kind for kind in ErrorKind if kind.is_permanent}
        assert permanent == {ErrorKind.ACCESS_DENIED, ErrorKind.NOT_FOUND}

    def test_error_serialization(self):
        error = GenerationError("no valid ruleset", source_id="example-blog")
        data = error.to_dict()

        assert data["error_type"] == "GenerationError"
        assert data["error_code"] == ErrorCode.SKILL_GENERATION_FAILED.value
        assert data["error_kind"] == "generation_failure"
        assert data["context"]["source_id"] == "example-blog"
        assert str(error).startswith("[K001]")

    def test_retryable(self):
        assert is_retryable_error(FetchError("timeout"))
        assert not is_retryable_error(AccessDeniedError("forbidden"))
        assert not is_retryable_error(SourceGoneError("gone"))

    def test_handle_exception_wraps_timeouts(self):
        logger = get_logger_for_component("test")
        error = handle_exception(TimeoutError("slow"), logger, "fetch")

        assert isinstance(error, FetchError)
        assert error.error_code == ErrorCode.FETCH_TIMEOUT
        assert error.context["operation"] == "fetch"

    def test_handle_exception_passes_through(self):
        original = ExtractionError("empty")
        assert handle_exception(original, get_logger_for_component("test"), "extract") is original

    def test_handle_exception_unknown(self):
        error = handle_exception(KeyError("x"), get_logger_for_component("test"), "job")
        assert type(error) is SkillFeedError
        assert error.recoverable


class TestHTTPStatusMapping:
    """HTTP status codes mapped onto the taxonomy."""

    def test_success_codes_pass(self):
        raise_for_status(200, "https://example.com")
        raise_for_status(304, "https://example.com")

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (401, AccessDeniedError),
            (403, AccessDeniedError),
            (404, SourceGoneError),
            (410, SourceGoneError),
            (429, RateLimitedError),
            (500, FetchError),
            (503, FetchError),
        ],
    )
    def test_error_codes(self, status, error_type):
        with pytest.raises(error_type) as exc_info:
            raise_for_status(status, "https://example.com/page")
        assert exc_info.value.status == status

    def test_retry_after_header(self):
        with pytest.raises(RateLimitedError) as exc_info:
            raise_for_status(429, "https://example.com", retry_after="120")
        assert exc_info.value.retry_after == 120.0

        with pytest.raises(RateLimitedError) as exc_info:
            raise_for_status(429, "https://example.com", retry_after="Wed, 21 Oct 2015 07:28:00 GMT")
        assert exc_info.value.retry_after is None


class TestURLValidator:
    """Test URL validation and canonicalization."""

    def test_ensure_fetchable_normalizes(self):
        assert URLValidator.ensure_fetchable("HTTPS://Blog.Example.com/News#top") == (
            "https://blog.example.com/News"
        )

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost/admin",
            "http://127.0.0.1:8080/",
            "http://10.0.0.5/feed",
            "http://192.168.1.1/",
            "http://169.254.169.254/latest/meta-data/",
            "http://[::1]/",
            "ftp://example.com/file",
            "file:///etc/passwd",
            "not a url",
        ],
    )
    def test_ensure_fetchable_blocks(self, url):
        with pytest.raises(AccessDeniedError):
            URLValidator.ensure_fetchable(url)

    def test_canonicalize(self):
        canonical = URLValidator.canonicalize(
            "HTTPS://Blog.Example.com:443/2024/05/01/post/?utm_source=rss&b=2&a=1#comments"
        )
        assert canonical == "https://blog.example.com/2024/05/01/post?a=1&b=2"

    def test_canonicalize_keeps_root(self):
        assert URLValidator.canonicalize("https://example.com") == "https://example.com/"
        assert URLValidator.canonicalize("https://example.com/") == "https://example.com/"

    def test_feed_url_detection(self):
        assert URLValidator.is_likely_feed_url("https://example.com/feed/")
        assert URLValidator.is_likely_feed_url("https://example.com/rss.xml")
        assert not URLValidator.is_likely_feed_url("https://example.com/news/")


class TestContentValidator:
    """Test content sanitization."""

    def test_title_required(self):
        with pytest.raises(SkillFeedError):
            ContentValidator.validate_article_title("   ")

    def test_title_of_control_characters_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            ContentValidator.validate_article_title("\x07\x08")
        assert exc_info.value.error_code == ErrorCode.VALIDATION_REQUIRED_FIELD

    def test_title_truncated(self):
        assert len(ContentValidator.validate_article_title("x" * 2000)) == 1000

    def test_content_sanitized(self):
        assert ContentValidator.validate_article_content("a\x00b   c\n\n\n\nd") == "ab c\n\nd"
        assert ContentValidator.validate_article_content("") is None

    def test_content_hash_stable(self):
        assert content_hash("body") == content_hash("body")
        assert content_hash("body") != content_hash("body ")


class TestModels:
    """Test pydantic model constraints."""

    def test_skill_is_immutable(self, valid_ruleset):
        skill = Skill(source_id="example-blog", version=1, ruleset=valid_ruleset)
        with pytest.raises(PydanticValidationError):
            skill.version = 2

    def test_skill_version_positive(self, valid_ruleset):
        with pytest.raises(PydanticValidationError):
            Skill(source_id="example-blog", version=0, ruleset=valid_ruleset)

    def test_feed_target(self):
        web = Source(id="a", url="https://example.com/news")
        feed = Source(id="b", url="https://example.com/rss.xml", type=SourceType.FEED)
        discovered = Source(id="c", url="https://example.com", feed_url="https://example.com/feed")

        assert web.feed_target is None
        assert feed.feed_target == "https://example.com/rss.xml"
        assert discovered.feed_target == "https://example.com/feed"

    def test_validation_pass_ratio(self):
        assert SkillValidation(samples_passed=2, samples_total=3).pass_ratio == pytest.approx(2 / 3)
        assert SkillValidation().pass_ratio == 0.0


class TestDatabaseSchema:
    """Test database schema creation and validation."""

    def test_create_tables(self, tmp_path):
        db_path = tmp_path / "test.db"
        schema = DatabaseSchema(str(db_path))

        assert not schema.verify_schema()
        schema.create_tables()
        assert schema.verify_schema()

        with sqlite3.connect(db_path) as conn:
            tables = {
                row[0]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
                )
            }
        assert tables == {"sources", "skills", "articles"}


class TestSQLiteStore:
    """Test the SQLite record store."""

    @pytest.fixture
    def sqlite_store(self, tmp_path):
        db_path = str(tmp_path / "store.db")
        DatabaseSchema(db_path).create_tables()
        db = DatabaseConnection(db_path, pool_size=2)
        yield SQLiteStore(db)
        db.close_all_connections()

    def test_source_round_trip(self, sqlite_store):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        source = Source(
            id="example-blog",
            url="https://blog.example.com/news/",
            render=True,
            status=SourceStatus.DEGRADED,
            consecutive_failures=3,
            backoff_until=now + timedelta(minutes=8),
            last_error_kind=ErrorKind.TRANSIENT,
        )
        sqlite_store.save(source)

        loaded = sqlite_store.load("example-blog")
        assert loaded.render is True
        assert loaded.status == SourceStatus.DEGRADED
        assert loaded.backoff_until == now + timedelta(minutes=8)
        assert loaded.last_error_kind == ErrorKind.TRANSIENT
        assert sqlite_store.load("missing") is None

    def test_list_due_skips_disabled_and_backed_off(self, sqlite_store):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        sqlite_store.save(Source(id="a", url="https://a.example.com"))
        sqlite_store.save(Source(id="b", url="https://b.example.com", status=SourceStatus.DISABLED))
        sqlite_store.save(Source(id="c", url="https://c.example.com", backoff_until=now + timedelta(hours=1)))

        assert [s.id for s in sqlite_store.list_due(now)] == ["a"]

    def test_skill_versions(self, sqlite_store, valid_ruleset):
        sqlite_store.save(Source(id="example-blog", url="https://blog.example.com"))
        assert sqlite_store.latest_version("example-blog") == 0

        for version in (1, 2):
            sqlite_store.save_skill(
                Skill(
                    source_id="example-blog",
                    version=version,
                    ruleset=valid_ruleset,
                    validation=SkillValidation(samples_passed=3, samples_total=3, extracted_field_coverage=1.0),
                )
            )

        assert sqlite_store.latest_version("example-blog") == 2
        assert [s.version for s in sqlite_store.list_skills("example-blog")] == [1, 2]
        assert sqlite_store.get_skill("example-blog", 1).ruleset == valid_ruleset

    def test_duplicate_skill_version_rejected(self, sqlite_store):
        ruleset = Ruleset.model_validate(ruleset_dict())
        sqlite_store.save(Source(id="example-blog", url="https://blog.example.com"))
        sqlite_store.save_skill(Skill(source_id="example-blog", version=1, ruleset=ruleset))

        with pytest.raises(DatabaseError):
            sqlite_store.save_skill(Skill(source_id="example-blog", version=1, ruleset=ruleset))

    def test_article_uniqueness(self, sqlite_store):
        sqlite_store.save(Source(id="example-blog", url="https://blog.example.com"))
        article = Article(
            source_id="example-blog",
            source_url="https://blog.example.com/a?utm_source=x",
            canonical_url="https://blog.example.com/a",
            title="Title",
            raw_html_hash="raw",
            clean_content="Body",
            content_hash=content_hash("Body"),
            strategy=StrategyKind.SKILL,
            skill_version=1,
        )

        assert sqlite_store.save_article(article) is True
        assert sqlite_store.save_article(article.model_copy(update={"id": "other"})) is False
        assert sqlite_store.has_article("example-blog", "https://blog.example.com/a")
        assert sqlite_store.has_content_hash("example-blog", content_hash("Body"))
        assert sqlite_store.latest_article_at("example-blog") == article.fetched_at

        stored = sqlite_store.list_articles("example-blog")
        assert len(stored) == 1
        assert stored[0].strategy == StrategyKind.SKILL
        assert stored[0].skill_version == 1

    def test_latest_article_at_without_articles(self, sqlite_store):
        assert sqlite_store.latest_article_at("example-blog") is None

    def test_latest_article_at_prefers_publication_date(self, sqlite_store):
        sqlite_store.save(Source(id="example-blog", url="https://blog.example.com"))
        published = datetime(2024, 1, 15, tzinfo=timezone.utc)
        sqlite_store.save_article(
            Article(
                source_id="example-blog",
                source_url="https://blog.example.com/old",
                canonical_url="https://blog.example.com/old",
                title="Old",
                raw_html_hash="raw",
                clean_content="Body",
                published_at=published,
            )
        )

        assert sqlite_store.latest_article_at("example-blog") == published
