from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("sportswriter.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS regions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            leagues_json TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS selected_regions (
            region_id INTEGER PRIMARY KEY,
            selected_at TEXT NOT NULL
        )
        """
    )


def _migration_matches(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS matches (
            match_code TEXT PRIMARY KEY,
            region TEXT NOT NULL DEFAULT '',
            home_team TEXT NOT NULL DEFAULT '',
            away_team TEXT NOT NULL DEFAULT '',
            kickoff_datetime TEXT NOT NULL,
            time_zone TEXT NOT NULL DEFAULT '',
            provider TEXT NOT NULL DEFAULT '',
            odds_json TEXT NOT NULL DEFAULT '{}',
            processing_state TEXT NOT NULL DEFAULT 'unprocessed',
            processed_started_at TEXT NULL,
            process_completed_at TEXT NULL,
            processed_failed_at TEXT NULL,
            last_error TEXT NULL,
            article_id TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_matches_state_kickoff "
        "ON matches(processing_state, kickoff_datetime)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_matches_completed ON matches(process_completed_at)"
    )


def _migration_api_secrets(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS api_secrets (
            name TEXT PRIMARY KEY,
            key_id TEXT NOT NULL,
            value_enc TEXT NOT NULL,
            value_last4 TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_matches", _migration_matches),
        ("003_api_secrets", _migration_api_secrets),
    ]
