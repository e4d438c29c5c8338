"""
SkillFeed Database Schema
=========================

SQLite schema for the ingestion core:
- sources: registered sources with their health fields
- skills: every published skill version per source (history retained)
- articles: accepted articles, unique per (source_id, canonical_url)
"""

import sqlite3
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class DatabaseSchema:
    """Database schema manager for the SkillFeed SQLite database."""

    EXPECTED_TABLES = {"articles", "skills", "sources"}

    def __init__(self, db_path: str = "data/skillfeed.db"):
        """Initialize database schema manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables and indexes."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("PRAGMA foreign_keys = ON")

            self._create_sources_table(conn)
            self._create_skills_table(conn)
            self._create_articles_table(conn)
            self._create_indexes(conn)

            conn.commit()
            logger.info("Database schema created successfully")

    def _create_sources_table(self, conn: sqlite3.Connection) -> None:
        """Create sources table with health state columns."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sources (
                id TEXT PRIMARY KEY,
                url TEXT NOT NULL,
                name TEXT,
                type TEXT NOT NULL DEFAULT 'web' CHECK (type IN ('feed', 'web')),
                feed_url TEXT,
                render BOOLEAN DEFAULT FALSE,
                fetch_interval_minutes INTEGER,
                status TEXT NOT NULL DEFAULT 'healthy'
                    CHECK (status IN ('healthy', 'degraded', 'failing', 'disabled')),
                consecutive_failures INTEGER DEFAULT 0,
                consecutive_successes INTEGER DEFAULT 0,
                backoff_until TIMESTAMP,
                last_attempt_at TIMESTAMP,
                last_success_at TIMESTAMP,
                last_error_kind TEXT,
                last_error TEXT,
                active_skill_version INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

    def _create_skills_table(self, conn: sqlite3.Connection) -> None:
        """Create skills table; rows are never updated once written."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS skills (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                ruleset TEXT NOT NULL,  -- JSON ruleset
                generated_at TIMESTAMP NOT NULL,
                generating_model TEXT,
                samples_passed INTEGER DEFAULT 0,
                samples_total INTEGER DEFAULT 0,
                extracted_field_coverage REAL DEFAULT 0.0,
                FOREIGN KEY (source_id) REFERENCES sources(id),
                UNIQUE(source_id, version)
            )
        """
        )

    def _create_articles_table(self, conn: sqlite3.Connection) -> None:
        """Create articles table with per-source canonical URL uniqueness."""
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS articles (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL,
                source_url TEXT NOT NULL,
                canonical_url TEXT NOT NULL,
                title TEXT NOT NULL,
                raw_html_hash TEXT NOT NULL,
                clean_content TEXT NOT NULL,
                content_hash TEXT NOT NULL,
                published_at TIMESTAMP,
                extraction_confidence REAL CHECK (extraction_confidence BETWEEN 0.0 AND 1.0),
                strategy TEXT NOT NULL,
                skill_version INTEGER,
                author TEXT,
                fetched_at TIMESTAMP NOT NULL,
                FOREIGN KEY (source_id) REFERENCES sources(id),
                UNIQUE(source_id, canonical_url)
            )
        """
        )

    def _create_indexes(self, conn: sqlite3.Connection) -> None:
        """Create indexes used by due-set and dedupe queries."""
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_sources_status ON sources(status)",
            "CREATE INDEX IF NOT EXISTS idx_sources_last_attempt ON sources(last_attempt_at)",
            "CREATE INDEX IF NOT EXISTS idx_skills_source ON skills(source_id, version)",
            "CREATE INDEX IF NOT EXISTS idx_articles_source_hash ON articles(source_id, content_hash)",
            "CREATE INDEX IF NOT EXISTS idx_articles_fetched ON articles(source_id, fetched_at)",
        ]

        for index_sql in indexes:
            conn.execute(index_sql)

    def verify_schema(self) -> bool:
        """Verify that every expected table exists."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                SELECT name FROM sqlite_master
                WHERE type='table' AND name NOT LIKE 'sqlite_%'
            """
            )
            tables = {row[0] for row in cursor.fetchall()}

        missing = self.EXPECTED_TABLES - tables
        if missing:
            logger.error(f"Missing tables: {sorted(missing)}")
            return False

        logger.info("Database schema verification passed")
        return True
