"""
SkillFeed Input Validators
==========================

URL and content validation for the ingestion core: scheme and host checks
that keep fetches off loopback and private networks, URL canonicalization
for deduplication, and article content sanitization.
"""

import hashlib
import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from .exceptions import AccessDeniedError, ValidationError, ErrorCode


class URLValidator:
    """URL validation, SSRF guard and canonicalization utilities."""

    ALLOWED_SCHEMES = {"http", "https"}

    BLOCKED_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0", "::1", "[::1]"}

    PRIVATE_HOST_PATTERNS = [
        r"^10\.",
        r"^172\.(1[6-9]|2[0-9]|3[0-1])\.",
        r"^192\.168\.",
        r"^169\.254\.",
        r"^fc00:",
        r"^fd00:",
        r"^fe80:",
    ]

    # Query parameters that never change the article a URL points at
    TRACKING_PARAMS = {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "mc_cid",
        "mc_eid",
        "ref",
    }

    FEED_PATTERNS = [
        r"\.rss$",
        r"\.xml$",
        r"\.atom$",
        r"/rss/?$",
        r"/feed/?$",
        r"/feeds/?$",
        r"/atom/?$",
    ]

    @classmethod
    def validate_url(cls, url: str) -> str:
        """Validate and normalize an http(s) URL.

        Args:
            url: URL to validate

        Returns:
            Normalized URL (lowercased scheme and host, no fragment)

        Raises:
            ValidationError: If URL is malformed or uses another scheme
        """
        if not url or not isinstance(url, str):
            raise ValidationError(
                "URL is required and must be a string",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="url",
            )

        parsed = urlparse(url.strip())

        if parsed.scheme.lower() not in cls.ALLOWED_SCHEMES:
            raise ValidationError(
                "URL scheme must be http or https",
                field_name="url",
            )

        if not parsed.netloc:
            raise ValidationError("URL must include a hostname", field_name="url")

        return urlunparse(
            parsed._replace(
                scheme=parsed.scheme.lower(),
                netloc=parsed.netloc.lower(),
                path=parsed.path or "/",
                fragment="",
            )
        )

    @classmethod
    def is_private_host(cls, hostname: str) -> bool:
        """Check whether a hostname is loopback or in a private range."""
        host = (hostname or "").lower().strip("[]")
        if host in cls.BLOCKED_HOSTS:
            return True

        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return any(re.search(p, host) for p in cls.PRIVATE_HOST_PATTERNS)

        return (
            address.is_private
            or address.is_loopback
            or address.is_link_local
            or address.is_unspecified
        )

    @classmethod
    def ensure_fetchable(cls, url: str) -> str:
        """Validate a URL before any network access.

        Args:
            url: URL about to be fetched or rendered

        Returns:
            Normalized URL

        Raises:
            AccessDeniedError: If the URL is malformed, non-http(s), or points
                at localhost or a private network
        """
        try:
            normalized = cls.validate_url(url)
        except ValidationError as e:
            raise AccessDeniedError(
                f"Blocked URL: {e.user_message}", url=url, context={"reason": "invalid"}
            )

        hostname = urlparse(normalized).hostname or ""
        if cls.is_private_host(hostname):
            raise AccessDeniedError(
                "Blocked URL: private network and localhost URLs are not allowed",
                url=url,
                context={"reason": "private_network"},
            )

        return normalized

    @classmethod
    def canonicalize(cls, url: str) -> str:
        """Canonical form used as the per-source deduplication key.

        Lowercases scheme and host, drops the fragment, default ports,
        tracking query parameters and a trailing slash on non-root paths,
        and sorts the remaining query parameters.
        """
        parsed = urlparse(url.strip())
        scheme = parsed.scheme.lower()
        netloc = parsed.netloc.lower()
        if (scheme == "http" and netloc.endswith(":80")) or (
            scheme == "https" and netloc.endswith(":443")
        ):
            netloc = netloc.rsplit(":", 1)[0]

        path = parsed.path or "/"
        if len(path) > 1 and path.endswith("/"):
            path = path.rstrip("/") or "/"

        query_pairs = [
            (k, v)
            for k, v in parse_qsl(parsed.query, keep_blank_values=True)
            if k.lower() not in cls.TRACKING_PARAMS
        ]
        query = urlencode(sorted(query_pairs))

        return urlunparse((scheme, netloc, path, "", query, ""))

    @classmethod
    def is_likely_feed_url(cls, url: str) -> bool:
        """Check if URL is likely an RSS/Atom feed."""
        url_lower = url.lower()
        return any(re.search(pattern, url_lower) for pattern in cls.FEED_PATTERNS)


class ContentValidator:
    """Content validation and sanitization utilities."""

    MAX_TITLE_LENGTH = 1000
    MAX_CONTENT_LENGTH = 50000

    @classmethod
    def validate_article_title(cls, title: Optional[str]) -> str:
        """Validate and sanitize article title.

        Raises:
            ValidationError: If title is missing or empty
        """
        if isinstance(title, str):
            title = cls.sanitize_text(title)
        if not title or not isinstance(title, str):
            raise ValidationError(
                "Title is required",
                error_code=ErrorCode.VALIDATION_REQUIRED_FIELD,
                field_name="title",
            )

        if len(title) > cls.MAX_TITLE_LENGTH:
            title = title[: cls.MAX_TITLE_LENGTH]
        return title

    @classmethod
    def validate_article_content(cls, content: Optional[str]) -> Optional[str]:
        """Sanitize article content, truncating oversized bodies.

        Returns:
            Sanitized content or None if empty
        """
        if not content or not isinstance(content, str):
            return None

        content = cls.sanitize_text(content)
        if not content:
            return None

        if len(content) > cls.MAX_CONTENT_LENGTH:
            content = content[: cls.MAX_CONTENT_LENGTH] + "... [truncated]"

        return content

    @classmethod
    def sanitize_text(cls, text: str) -> str:
        """Strip control characters and collapse runs of spaces."""
        text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
        text = re.sub(r"[ \t]+", " ", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()


def content_hash(content: str) -> str:
    """Stable SHA-256 hex digest used for content-level deduplication."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
