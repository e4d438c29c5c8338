"""
SkillFeed Configuration System
==============================

Configuration management with environment variables and Pydantic models.
Environment variables (``SKILLFEED_<SECTION>__<FIELD>``) override Field
defaults with clear precedence.
"""

from pathlib import Path
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from ..utils.exceptions import ConfigurationError, ErrorCode


class LLMProvider(str, Enum):
    """Supported OpenAI-compatible chat completion endpoints."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"


class LogLevel(str, Enum):
    """Available log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SchedulerSettings(BaseModel):
    """Scheduler tick and job concurrency configuration."""
    tick_interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between scheduler ticks")
    max_concurrent_jobs: int = Field(default=4, ge=1, le=64, description="Global cap on concurrently running jobs")
    default_fetch_interval_minutes: int = Field(default=60, ge=1, description="Fetch interval for sources without their own")
    job_timeout_seconds: float = Field(default=300.0, gt=0, description="Overall timeout per job, LLM queueing included")
    shutdown_grace_seconds: float = Field(default=30.0, ge=0, description="Time in-flight jobs get to finish on stop")


class HealthSettings(BaseModel):
    """Source health thresholds and backoff policy."""
    degraded_after: int = Field(default=2, ge=1, description="Consecutive failures before degraded")
    failing_after: int = Field(default=5, ge=1, description="Consecutive failures before failing")
    disabled_after: int = Field(default=10, ge=1, description="Consecutive failures before disabled")
    backoff_base_seconds: float = Field(default=60.0, gt=0, description="Base backoff delay")
    backoff_cap_seconds: float = Field(default=6 * 3600.0, gt=0, description="Maximum backoff delay")
    backoff_jitter_ratio: float = Field(default=0.1, ge=0.0, le=1.0, description="Upper bound of upward jitter as a ratio of the delay")
    rate_limit_backoff_seconds: float = Field(default=900.0, ge=0, description="Minimum backoff after a rate-limited failure")
    stale_after_days: int = Field(default=30, ge=1, description="Days without new articles before a source is stale")


class FetchSettings(BaseModel):
    """HTTP fetch and browser render configuration."""
    request_timeout: float = Field(default=30.0, gt=0, le=300, description="HTTP request timeout in seconds")
    render_timeout: float = Field(default=30.0, gt=0, le=300, description="Browser render timeout in seconds")
    max_concurrent_renders: int = Field(default=2, ge=1, le=16, description="Concurrent headless browser renders")
    max_connections: int = Field(default=20, ge=1, le=200, description="HTTP connection pool size")
    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; SkillFeed/1.0; +https://github.com/skillfeed)",
        description="User-Agent header for outbound requests",
    )


class SkillSettings(BaseModel):
    """Skill generation and validation configuration."""
    sample_pages: int = Field(default=3, ge=1, le=10, description="Sample article pages used for generation")
    max_turns: int = Field(default=2, ge=1, le=5, description="LLM turns per generation including repair")
    min_pass_ratio: float = Field(default=2 / 3, gt=0.0, le=1.0, description="Share of samples that must validate")
    min_body_chars: int = Field(default=200, ge=1, description="Minimum extracted body length")
    max_candidate_links: int = Field(default=20, ge=1, le=200, description="Candidate article links kept from the list page")
    max_html_chars: int = Field(default=15000, ge=1000, description="HTML characters sent to the LLM per page")
    allow_generic_fallback: bool = Field(default=True, description="Ingest heuristic extractions when generation fails")


class ExtractionSettings(BaseModel):
    """Extraction agent and drift detection configuration."""
    drift_window: int = Field(default=10, ge=1, le=100, description="Rolling window of page outcomes per skill")
    drift_threshold: float = Field(default=0.5, ge=0.0, le=1.0, description="Success rate below which drift is flagged")
    drift_min_samples: int = Field(default=5, ge=1, description="Samples required before drift can be flagged")
    fallback_confidence: float = Field(default=0.3, ge=0.0, le=1.0, description="Confidence cap for heuristic extraction")
    skill_confidence: float = Field(default=0.9, ge=0.0, le=1.0, description="Confidence of skill-based extraction")
    max_articles_per_job: int = Field(default=10, ge=1, le=100, description="Articles extracted per job from a list page")

    @field_validator("drift_min_samples")
    @classmethod
    def validate_min_samples(cls, v, info):
        """Ensure the minimum fits inside the window."""
        window = info.data.get("drift_window")
        if window is not None and v > window:
            raise ValueError("drift_min_samples cannot exceed drift_window")
        return v


class LLMSettings(BaseModel):
    """LLM provider configuration."""
    provider: LLMProvider = Field(default=LLMProvider.OPENROUTER, description="Chat completion endpoint")
    api_key: Optional[str] = Field(default=None, description="API key for the provider")
    base_url: Optional[str] = Field(default=None, description="Override the provider base URL")
    model: str = Field(default="openai/gpt-4o-mini", description="Model used for skill generation")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=2000, ge=100, le=16000, description="Maximum tokens per response")
    request_timeout: float = Field(default=60.0, gt=0, description="Per-call timeout in seconds")
    max_concurrent_calls: int = Field(default=2, ge=1, le=32, description="Concurrent LLM calls")
    requests_per_minute: int = Field(default=20, ge=1, description="Sliding-window LLM request budget")

    def get_base_url(self) -> str:
        """Resolve the endpoint for the configured provider."""
        if self.base_url:
            return self.base_url
        if self.provider == LLMProvider.OPENROUTER:
            return "https://openrouter.ai/api/v1"
        return "https://api.openai.com/v1"


class DatabaseSettings(BaseModel):
    """Database configuration."""
    path: str = Field(default="data/skillfeed.db", description="SQLite database file path")
    pool_size: int = Field(default=5, ge=1, le=20, description="Connection pool size")


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Global log level")
    file_path: Optional[str] = Field(default="logs/skillfeed.log", description="Log file path")
    structured_logging: bool = Field(default=False, description="Use structured JSON logging")
    console_logging: bool = Field(default=True, description="Enable console logging")


class SkillFeedSettings(BaseSettings):
    """Main application settings."""

    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    skills: SkillSettings = Field(default_factory=SkillSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_name: str = Field(default="SkillFeed", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "env_prefix": "SKILLFEED_",
    }

    def validate_configuration(self) -> None:
        """Validate cross-field constraints and filesystem paths.

        Raises:
            ConfigurationError: If any constraint is violated
        """
        errors = []

        health = self.health
        if not health.degraded_after < health.failing_after < health.disabled_after:
            errors.append(
                "health thresholds must satisfy degraded_after < failing_after < disabled_after"
            )
        if health.backoff_base_seconds > health.backoff_cap_seconds:
            errors.append("health.backoff_base_seconds cannot exceed backoff_cap_seconds")

        try:
            Path(self.database.path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Invalid database path: {e}")

        if self.logging.file_path:
            try:
                Path(self.logging.file_path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(f"Invalid log file path: {e}")

        if errors:
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}",
                error_code=ErrorCode.CONFIG_INVALID,
            )

    def has_llm_credentials(self) -> bool:
        """Check whether skill generation can reach an LLM."""
        return bool(self.llm.api_key)

    def get_effective_log_level(self) -> str:
        """Get effective log level considering debug mode."""
        if self.debug:
            return "DEBUG"
        return self.logging.level.value


def load_settings() -> SkillFeedSettings:
    """Load settings from environment variables and defaults.

    Returns:
        Loaded and validated settings

    Raises:
        ConfigurationError: If configuration is invalid
    """
    from dotenv import load_dotenv
    load_dotenv()

    try:
        settings = SkillFeedSettings()
        settings.validate_configuration()
        return settings

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Failed to initialize settings: {e}",
            error_code=ErrorCode.CONFIG_INVALID,
        )


# Global settings instance
_settings: Optional[SkillFeedSettings] = None


def get_settings(reload: bool = False) -> SkillFeedSettings:
    """Get global settings instance (singleton pattern).

    Args:
        reload: Force reload of settings

    Returns:
        Global settings instance
    """
    global _settings

    if _settings is None or reload:
        _settings = load_settings()

    return _settings
