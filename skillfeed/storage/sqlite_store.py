"""
SQLite Record Store
===================

Repository implementation of the source, skill and article stores on top of
the pooled ``DatabaseConnection``.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional, Dict, Any

from ..database.connection import DatabaseConnection
from ..database.models import (
    Source,
    Skill,
    Article,
    Ruleset,
    SkillValidation,
)
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import DatabaseError, ErrorCode
from .base import RecordStore

_SOURCE_COLUMNS = (
    "id",
    "url",
    "name",
    "type",
    "feed_url",
    "render",
    "fetch_interval_minutes",
    "status",
    "consecutive_failures",
    "consecutive_successes",
    "backoff_until",
    "last_attempt_at",
    "last_success_at",
    "last_error_kind",
    "last_error",
    "active_skill_version",
    "created_at",
)

_SOURCE_TIMESTAMPS = {"backoff_until", "last_attempt_at", "last_success_at", "created_at"}


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStore(RecordStore):
    """Record store persisting to SQLite."""

    def __init__(self, db_connection: DatabaseConnection):
        """Initialize the store.

        Args:
            db_connection: Database connection manager
        """
        self.db = db_connection
        self.logger = get_logger_for_component("sqlite_store")

    # Sources

    def load(self, source_id: str) -> Optional[Source]:
        row = self.db.execute_one("SELECT * FROM sources WHERE id = ?", (source_id,))
        return self._row_to_source(row) if row else None

    def save(self, source: Source) -> None:
        data = source.model_dump()
        placeholders = ", ".join("?" for _ in _SOURCE_COLUMNS)
        columns = ", ".join(_SOURCE_COLUMNS)
        updates = ", ".join(f"{column} = excluded.{column}" for column in _SOURCE_COLUMNS[1:])
        values = tuple(_to_db(data[column]) for column in _SOURCE_COLUMNS)

        self.db.execute_update(
            f"INSERT INTO sources ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            values,
        )

    def list_all(self) -> List[Source]:
        rows = self.db.execute_query("SELECT * FROM sources ORDER BY id")
        return [self._row_to_source(row) for row in rows]

    def _row_to_source(self, row: sqlite3.Row) -> Source:
        data: Dict[str, Any] = dict(row)
        for column in _SOURCE_TIMESTAMPS:
            data[column] = _from_db_time(data.get(column))
        data["render"] = bool(data.get("render"))
        return Source(**data)

    # Skills

    def save_skill(self, skill: Skill) -> None:
        try:
            with self.db.get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO skills (
                        id, source_id, version, ruleset, generated_at, generating_model,
                        samples_passed, samples_total, extracted_field_coverage
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        skill.id,
                        skill.source_id,
                        skill.version,
                        skill.ruleset.to_json(),
                        skill.generated_at.isoformat(),
                        skill.generating_model,
                        skill.validation.samples_passed,
                        skill.validation.samples_total,
                        skill.validation.extracted_field_coverage,
                    ),
                )
                conn.commit()
        except DatabaseError as e:
            self.logger.error(f"Failed to save skill {skill}: {e}")
            raise DatabaseError(
                f"Failed to save skill v{skill.version} for {skill.source_id}: {e}",
                error_code=ErrorCode.DATABASE_CONSTRAINT,
            ) from e

    def get_skill(self, source_id: str, version: int) -> Optional[Skill]:
        row = self.db.execute_one(
            "SELECT * FROM skills WHERE source_id = ? AND version = ?",
            (source_id, version),
        )
        return self._row_to_skill(row) if row else None

    def list_skills(self, source_id: str) -> List[Skill]:
        rows = self.db.execute_query(
            "SELECT * FROM skills WHERE source_id = ? ORDER BY version", (source_id,)
        )
        return [self._row_to_skill(row) for row in rows]

    def latest_version(self, source_id: str) -> int:
        row = self.db.execute_one(
            "SELECT MAX(version) AS version FROM skills WHERE source_id = ?",
            (source_id,),
        )
        if row is None or row["version"] is None:
            return 0
        return row["version"]

    def _row_to_skill(self, row: sqlite3.Row) -> Skill:
        return Skill(
            id=row["id"],
            source_id=row["source_id"],
            version=row["version"],
            ruleset=Ruleset.from_json(row["ruleset"]),
            generated_at=datetime.fromisoformat(row["generated_at"]),
            generating_model=row["generating_model"] or "unknown",
            validation=SkillValidation(
                samples_passed=row["samples_passed"],
                samples_total=row["samples_total"],
                extracted_field_coverage=row["extracted_field_coverage"],
            ),
        )

    # Articles

    def has_article(self, source_id: str, canonical_url: str) -> bool:
        row = self.db.execute_one(
            "SELECT 1 FROM articles WHERE source_id = ? AND canonical_url = ?",
            (source_id, canonical_url),
        )
        return row is not None

    def has_content_hash(self, source_id: str, content_hash: str) -> bool:
        row = self.db.execute_one(
            "SELECT 1 FROM articles WHERE source_id = ? AND content_hash = ? LIMIT 1",
            (source_id, content_hash),
        )
        return row is not None

    def save_article(self, article: Article) -> bool:
        rowcount = self.db.execute_update(
            """
            INSERT OR IGNORE INTO articles (
                id, source_id, source_url, canonical_url, title, raw_html_hash,
                clean_content, content_hash, published_at, extraction_confidence,
                strategy, skill_version, author, fetched_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                article.id,
                article.source_id,
                article.source_url,
                article.canonical_url,
                article.title,
                article.raw_html_hash,
                article.clean_content,
                article.content_hash,
                _to_db(article.published_at),
                article.extraction_confidence,
                article.strategy.value,
                article.skill_version,
                article.author,
                article.fetched_at.isoformat(),
            ),
        )
        return rowcount > 0

    def list_articles(self, source_id: str, limit: int = 50) -> List[Article]:
        rows = self.db.execute_query(
            "SELECT * FROM articles WHERE source_id = ? ORDER BY fetched_at DESC LIMIT ?",
            (source_id, limit),
        )
        articles = []
        for row in rows:
            data = dict(row)
            data["published_at"] = _from_db_time(data.get("published_at"))
            data["fetched_at"] = _from_db_time(data["fetched_at"])
            articles.append(Article(**data))
        return articles

    def latest_article_at(self, source_id: str) -> Optional[datetime]:
        rows = self.db.execute_query(
            "SELECT published_at, fetched_at FROM articles WHERE source_id = ?",
            (source_id,),
        )
        times = [_from_db_time(row["published_at"] or row["fetched_at"]) for row in rows]
        return max(times) if times else None
