from __future__ import annotations

import logging

from .utils import utc_now_iso


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("sportswriter.migrations")
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
    for version, statements in _get_migrations():
        if version in applied:
            continue
        for statement in statements:
            conn.execute(statement)
        conn.execute(
            "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?) "
            "ON CONFLICT DO NOTHING",
            (version, utc_now_iso()),
        )
        logger.info("migration_applied version=%s", version)
    conn.commit()


def _get_migrations() -> list[tuple[str, list[str]]]:
    return [
        (
            "pg_bootstrap_001",
            [
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS regions (
                    id BIGSERIAL PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    leagues_json TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS selected_regions (
                    region_id BIGINT PRIMARY KEY,
                    selected_at TEXT NOT NULL
                )
                """,
            ],
        ),
        (
            "pg_matches_002",
            [
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
                """,
                "CREATE INDEX IF NOT EXISTS idx_matches_state_kickoff "
                "ON matches(processing_state, kickoff_datetime)",
                "CREATE INDEX IF NOT EXISTS idx_matches_completed ON matches(process_completed_at)",
            ],
        ),
        (
            "pg_api_secrets_003",
            [
                """
                CREATE TABLE IF NOT EXISTS api_secrets (
                    name TEXT PRIMARY KEY,
                    key_id TEXT NOT NULL,
                    value_enc TEXT NOT NULL,
                    value_last4 TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """,
            ],
        ),
    ]
