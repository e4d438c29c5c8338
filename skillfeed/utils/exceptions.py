"""
SkillFeed Custom Exceptions
===========================

Custom exception hierarchy for SkillFeed with error codes, context
information, user-facing messages and the job-level error taxonomy used by
the source health tracker.
"""

import asyncio
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Error codes for categorizing exceptions."""

    # Configuration errors (C001-C099)
    CONFIG_INVALID = "C001"
    CONFIG_MISSING = "C002"

    # Database errors (D001-D099)
    DATABASE_CONNECTION = "D001"
    DATABASE_CONSTRAINT = "D003"
    DATABASE_ERROR = "D006"

    # Fetch errors (F001-F099)
    FETCH_INVALID_URL = "F001"
    FETCH_TIMEOUT = "F002"
    FEED_PARSE_ERROR = "F003"
    FETCH_NETWORK_ERROR = "F004"
    FETCH_ACCESS_DENIED = "F005"
    FETCH_NOT_FOUND = "F006"
    FETCH_SERVER_ERROR = "F007"
    FETCH_RATE_LIMITED = "F008"
    RENDER_FAILED = "F009"

    # Skill lifecycle errors (K001-K099)
    SKILL_GENERATION_FAILED = "K001"
    SKILL_VALIDATION_FAILED = "K002"
    SKILL_INVALID_RULESET = "K003"
    SKILL_NOT_FOUND = "K004"

    # Extraction errors (X001-X099)
    EXTRACTION_FAILED = "X001"
    EXTRACTION_NO_CONTENT = "X002"

    # AI errors (A001-A099)
    AI_API_ERROR = "A001"
    AI_INVALID_RESPONSE = "A003"
    AI_TIMEOUT = "A004"
    AI_AUTHENTICATION = "A005"
    AI_RATE_LIMIT = "A006"
    AI_PROVIDER_UNAVAILABLE = "A008"

    # Validation errors (V001-V099)
    VALIDATION_REQUIRED_FIELD = "V001"
    VALIDATION_INVALID_FORMAT = "V002"
    VALIDATION_OUT_OF_RANGE = "V003"

    # Resource errors (R001-R099)
    RESOURCE_NOT_FOUND = "R002"


class ErrorKind(str, Enum):
    """Job-level error taxonomy consumed by the health tracker."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    PARSE_FAILURE = "parse_failure"
    GENERATION_FAILURE = "generation_failure"
    EXTRACTION_FAILURE = "extraction_failure"

    @property
    def is_permanent(self) -> bool:
        """Permanent kinds escalate straight to disabled."""
        return self in (ErrorKind.ACCESS_DENIED, ErrorKind.NOT_FOUND)


class SkillFeedError(Exception):
    """Base exception for all SkillFeed errors."""

    #: Taxonomy bucket used when the error ends a job.
    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        recoverable: bool = False,
    ):
        """Initialize SkillFeed error.

        Args:
            message: Technical error message for logging
            error_code: Categorized error code
            context: Additional context information
            user_message: User-friendly error message
            recoverable: Whether the error is recoverable
        """
        super().__init__(message)
        self.error_code = error_code
        self.context = context or {}
        self.user_message = user_message or message
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value if self.error_code else None,
            "error_kind": self.kind.value,
            "error_message": str(self),
            "user_message": self.user_message,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __str__(self) -> str:
        """String representation with error code."""
        if self.error_code:
            return f"[{self.error_code.value}] {super().__str__()}"
        return super().__str__()


def _split_kwargs(kwargs: Dict[str, Any], *names: str) -> Dict[str, Any]:
    return {k: v for k, v in kwargs.items() if k not in names}


class ConfigurationError(SkillFeedError):
    """Configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.CONFIG_INVALID),
            context=context,
            user_message=kwargs.get("user_message", f"Configuration error: {message}"),
            **_split_kwargs(kwargs, "context", "error_code", "user_message"),
        )


class DatabaseError(SkillFeedError):
    """Database-related errors."""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if query:
            context["query"] = query

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.DATABASE_CONNECTION),
            context=context,
            user_message=kwargs.get("user_message", "Database operation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class FetchError(SkillFeedError):
    """HTTP fetch errors (timeouts, 5xx, connection resets)."""

    kind = ErrorKind.TRANSIENT

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        **kwargs,
    ):
        """Initialize fetch error.

        Args:
            message: Error message
            url: URL that caused the error
            status: HTTP status code, when a response was received
            **kwargs: Additional arguments for SkillFeedError
        """
        context = kwargs.get("context", {})
        if url:
            context["url"] = url
        if status is not None:
            context["status"] = status
        self.url = url
        self.status = status

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FETCH_NETWORK_ERROR),
            context=context,
            user_message=kwargs.get("user_message", f"Fetch failed: {message}"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class RateLimitedError(FetchError):
    """Remote side (site or LLM provider) answered 429."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FETCH_RATE_LIMITED)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class AccessDeniedError(FetchError):
    """401/403, robots disallow or a blocked URL. Permanent."""

    kind = ErrorKind.ACCESS_DENIED

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FETCH_ACCESS_DENIED)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class SourceGoneError(FetchError):
    """404/410: the feed or page was removed. Permanent."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.FETCH_NOT_FOUND)
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class RenderError(FetchError):
    """Browser automation failed or timed out."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.RENDER_FAILED)
        super().__init__(message, **kwargs)


class FeedParseError(SkillFeedError):
    """Malformed feed or feed without usable entries."""

    kind = ErrorKind.PARSE_FAILURE

    def __init__(self, message: str, feed_url: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if feed_url:
            context["feed_url"] = feed_url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.FEED_PARSE_ERROR),
            context=context,
            user_message=kwargs.get("user_message", f"Feed processing failed: {message}"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class GenerationError(SkillFeedError):
    """The LLM did not produce a ruleset that passed validation."""

    kind = ErrorKind.GENERATION_FAILURE

    def __init__(self, message: str, source_id: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if source_id:
            context["source_id"] = source_id

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.SKILL_GENERATION_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Skill generation failed"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class ExtractionError(SkillFeedError):
    """A live page failed post-extraction validation."""

    kind = ErrorKind.EXTRACTION_FAILURE

    def __init__(self, message: str, url: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if url:
            context["url"] = url

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.EXTRACTION_FAILED),
            context=context,
            user_message=kwargs.get("user_message", "Article extraction failed"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class AIError(SkillFeedError):
    """LLM provider errors."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        rate_limited: bool = False,
        **kwargs,
    ):
        context = kwargs.get("context", {})
        if provider:
            context["ai_provider"] = provider
        self.provider = provider
        self.rate_limited = rate_limited

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.AI_API_ERROR),
            context=context,
            user_message=kwargs.get("user_message", "AI processing temporarily unavailable"),
            recoverable=kwargs.get("recoverable", True),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class LLMRateLimitError(AIError):
    """Provider answered with a rate-limit (429) response."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", ErrorCode.AI_RATE_LIMIT)
        super().__init__(message, provider=provider, rate_limited=True, **kwargs)


class ValidationError(SkillFeedError):
    """Data validation errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        context = kwargs.get("context", {})
        if field_name:
            context["field_name"] = field_name

        super().__init__(
            message=message,
            error_code=kwargs.get("error_code", ErrorCode.VALIDATION_INVALID_FORMAT),
            context=context,
            user_message=kwargs.get(
                "user_message", f"Invalid {field_name or 'input'}: {message}"
            ),
            recoverable=kwargs.get("recoverable", False),
            **_split_kwargs(kwargs, "context", "error_code", "user_message", "recoverable"),
        )


class ContentValidationError(ValidationError):
    """Content failed minimum-content validation."""

    pass


# Exception handling utilities


def classify_error(exception: BaseException) -> ErrorKind:
    """Map any exception raised inside a job onto the error taxonomy.

    Args:
        exception: Exception captured at the job boundary

    Returns:
        ErrorKind bucket for the health tracker
    """
    if isinstance(exception, SkillFeedError):
        return exception.kind

    if isinstance(exception, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT

    if isinstance(exception, PermissionError):
        return ErrorKind.ACCESS_DENIED

    return ErrorKind.TRANSIENT


def handle_exception(
    exception: Exception,
    logger,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
) -> SkillFeedError:
    """Convert generic exceptions to SkillFeed exceptions with proper logging.

    Args:
        exception: Original exception
        logger: Logger instance for error logging
        operation: Operation that was being performed
        context: Additional context information

    Returns:
        SkillFeed exception with proper categorization
    """
    context = context or {}
    context["operation"] = operation
    context["original_exception_type"] = type(exception).__name__

    if isinstance(exception, SkillFeedError):
        logger.error(f"Operation '{operation}' failed", extra=exception.to_dict())
        return exception

    elif isinstance(exception, (asyncio.TimeoutError, TimeoutError)):
        error = FetchError(
            f"Timeout during {operation}: {exception}",
            error_code=ErrorCode.FETCH_TIMEOUT,
            context=context,
            user_message="Operation timed out",
        )

    elif isinstance(exception, ConnectionError):
        error = FetchError(
            f"Network error during {operation}: {exception}",
            error_code=ErrorCode.FETCH_NETWORK_ERROR,
            context=context,
            user_message="Network connection failed",
        )

    elif isinstance(exception, PermissionError):
        error = AccessDeniedError(
            f"Permission denied during {operation}: {exception}",
            context=context,
            user_message="Access denied",
        )

    else:
        error = SkillFeedError(
            message=f"Unexpected error during {operation}: {exception}",
            context=context,
            user_message="An unexpected error occurred",
            recoverable=True,
        )

    logger.error(f"Operation '{operation}' failed", extra=error.to_dict())
    return error


def is_retryable_error(exception: SkillFeedError) -> bool:
    """Check if an error is worth retrying on a later cycle.

    Args:
        exception: SkillFeed exception to check

    Returns:
        True if the error is potentially retryable
    """
    if not exception.recoverable:
        return False
    return not exception.kind.is_permanent


def get_user_friendly_message(exception: Exception) -> str:
    """Get user-friendly error message for any exception."""
    if isinstance(exception, SkillFeedError):
        return exception.user_message

    return "An unexpected error occurred. Please try again later."
