"""
SkillFeed Storage Layer
=======================

Record store interfaces and their implementations.

This module provides:
- Source, skill and article record interfaces
- In-memory store for tests and embedding
- SQLite store on the pooled database connection
"""

from .base import ArticleRecords, RecordStore, SkillRecords, SourceStore
from .memory import InMemoryStore
from .sqlite_store import SQLiteStore

__all__ = [
    "ArticleRecords",
    "RecordStore",
    "SkillRecords",
    "SourceStore",
    "InMemoryStore",
    "SQLiteStore",
]
