"""
SkillFeed - Source Ingestion Core
=================================

Recurring ingestion of articles from registered sources: syndication feeds
are parsed directly, other web pages are read with LLM-generated, validated
extraction skills.

Main Components:
- Scheduling: tick loop, single-flight guard, source health state machine
- Strategies: feed parsing or skill-based extraction, with inline skill generation
- Skills: versioned declarative CSS rulesets, validated before publication
- Ingestion: fetch layer with headless rendering, deduplicating article ingestor
- Storage: in-memory and SQLite record stores
"""

__version__ = "0.3.0"
__author__ = "SkillFeed Development Team"
__description__ = "LLM-assisted source ingestion core"

# Core imports for easy access
from .config.settings import get_settings
from .database.schema import DatabaseSchema
from .utils.logging import configure_application_logging, get_logger_for_component
from .utils.exceptions import SkillFeedError

__all__ = [
    "get_settings",
    "DatabaseSchema",
    "configure_application_logging",
    "get_logger_for_component",
    "SkillFeedError",
]
