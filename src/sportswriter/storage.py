from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from .db import connect_db
from .models import IngestResult, Match, MatchRecord, ProcessingState, Region
from .security.secrets import open_api_key, seal_api_key
from .utils import isoformat_utc, json_dumps, log_event, parse_iso, utc_now

RETENTION_DAYS = 2

_MATCH_COLUMNS = """
    match_code, region, home_team, away_team, kickoff_datetime, time_zone, provider,
    odds_json, processing_state, processed_started_at, process_completed_at,
    processed_failed_at, created_at, last_error, article_id
"""

logger = logging.getLogger("sportswriter.storage")


def init_db(path: str | None = None):
    return connect_db(path)


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = isoformat_utc(utc_now())
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def set_api_secret(conn: Any, name: str, value: str) -> None:
    sealed = seal_api_key(name, value)
    conn.execute(
        """
        INSERT INTO api_secrets (name, key_id, value_enc, value_last4, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            key_id = excluded.key_id,
            value_enc = excluded.value_enc,
            value_last4 = excluded.value_last4,
            updated_at = excluded.updated_at
        """,
        (sealed.name, sealed.key_id, sealed.blob, sealed.last4, isoformat_utc(utc_now())),
    )
    conn.commit()


def get_api_secret(conn: Any, name: str) -> str | None:
    row = conn.execute(
        "SELECT key_id, value_enc FROM api_secrets WHERE name = ?", (name,)
    ).fetchone()
    if not row:
        return None
    return open_api_key(name, row[0], row[1])


def get_api_secret_last4(conn: Any, name: str) -> str | None:
    row = conn.execute(
        "SELECT value_last4 FROM api_secrets WHERE name = ?", (name,)
    ).fetchone()
    return row[0] if row else None


def clear_api_secret(conn: Any, name: str) -> None:
    conn.execute("DELETE FROM api_secrets WHERE name = ?", (name,))
    conn.commit()


def upsert_regions(conn: Any, regions: Iterable[Region]) -> int:
    inserted = 0
    now = isoformat_utc(utc_now())
    for region in regions:
        name = region.name.strip()
        if not name:
            continue
        cursor = conn.execute(
            """
            INSERT INTO regions (name, leagues_json, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(name) DO NOTHING
            """,
            (name, json_dumps(list(region.leagues)), now),
        )
        if cursor.rowcount == 1:
            inserted += 1
    conn.commit()
    return inserted


def list_regions(conn: Any) -> list[Region]:
    cursor = conn.execute(
        """
        SELECT r.id, r.name, r.leagues_json,
               CASE WHEN s.region_id IS NULL THEN 0 ELSE 1 END
        FROM regions r
        LEFT JOIN selected_regions s ON s.region_id = r.id
        ORDER BY r.name ASC
        """
    )
    regions = []
    for region_id, name, leagues_json, selected in cursor.fetchall():
        try:
            leagues = json.loads(leagues_json) if leagues_json else []
        except json.JSONDecodeError:
            leagues = []
        regions.append(
            Region(id=int(region_id), name=name, leagues=leagues, selected=bool(selected))
        )
    return regions


def set_selected_regions(conn: Any, region_ids: Iterable[int]) -> list[int]:
    known = {region.id for region in list_regions(conn)}
    selected = sorted({int(region_id) for region_id in region_ids} & known)
    now = isoformat_utc(utc_now())
    conn.execute("DELETE FROM selected_regions")
    for region_id in selected:
        conn.execute(
            "INSERT INTO selected_regions (region_id, selected_at) VALUES (?, ?)",
            (region_id, now),
        )
    conn.commit()
    return selected


def list_selected_region_names(conn: Any) -> list[str]:
    cursor = conn.execute(
        """
        SELECT r.name FROM regions r
        JOIN selected_regions s ON s.region_id = r.id
        ORDER BY r.name ASC
        """
    )
    return [row[0] for row in cursor.fetchall()]


def evict_expired_matches(conn: Any, now: datetime | None = None) -> int:
    now = now or utc_now()
    cutoff = isoformat_utc(now - timedelta(days=RETENTION_DAYS))
    cursor = conn.execute(
        "DELETE FROM matches WHERE kickoff_datetime < ?",
        (cutoff,),
    )
    return max(cursor.rowcount, 0)


def upsert_ingested(
    conn: Any, records: Iterable[MatchRecord], now: datetime | None = None
) -> IngestResult:
    now = now or utc_now()
    evicted = evict_expired_matches(conn, now)
    inserted = 0
    skipped = 0
    created_at = isoformat_utc(now)
    for record in records:
        cursor = conn.execute(
            """
            INSERT INTO matches
                (match_code, region, home_team, away_team, kickoff_datetime, time_zone,
                 provider, odds_json, processing_state, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(match_code) DO NOTHING
            """,
            (
                record.match_code,
                record.region,
                record.home_team,
                record.away_team,
                isoformat_utc(record.kickoff_datetime),
                record.time_zone,
                record.provider,
                json_dumps(record.odds),
                ProcessingState.UNPROCESSED.value,
                created_at,
            ),
        )
        if cursor.rowcount == 1:
            inserted += 1
        else:
            skipped += 1
    conn.commit()
    return IngestResult(
        inserted_count=inserted, skipped_duplicates=skipped, evicted_count=evicted
    )


def claim_batch(
    conn: Any,
    max_count: int,
    not_before: datetime,
    now: datetime | None = None,
) -> list[Match]:
    if max_count <= 0:
        return []
    now = now or utc_now()
    lock_clause = "FOR UPDATE SKIP LOCKED" if getattr(conn, "backend", "") == "postgres" else ""
    cursor = conn.execute(
        f"""
        UPDATE matches
        SET processing_state = ?, processed_started_at = ?
        WHERE processing_state = ?
          AND match_code IN (
              SELECT match_code FROM matches
              WHERE processing_state = ? AND kickoff_datetime > ?
              ORDER BY kickoff_datetime ASC, match_code ASC
              LIMIT ?
              {lock_clause}
          )
        RETURNING {_MATCH_COLUMNS}
        """,
        (
            ProcessingState.IN_PROGRESS.value,
            isoformat_utc(now),
            ProcessingState.UNPROCESSED.value,
            ProcessingState.UNPROCESSED.value,
            isoformat_utc(not_before),
            int(max_count),
        ),
    )
    rows = cursor.fetchall()
    conn.commit()
    claimed = [_row_to_match(row) for row in rows]
    claimed.sort(key=lambda match: (match.kickoff_datetime, match.match_code))
    return claimed


def count_completed_since(conn: Any, since: datetime) -> int:
    row = conn.execute(
        """
        SELECT COUNT(*) FROM matches
        WHERE processing_state = ? AND process_completed_at >= ?
        """,
        (ProcessingState.COMPLETED.value, isoformat_utc(since)),
    ).fetchone()
    return int(row[0]) if row else 0


def mark_completed(
    conn: Any,
    match_code: str,
    article_id: str | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now()
    return _finish_match(
        conn,
        match_code,
        ProcessingState.COMPLETED,
        "process_completed_at = ?, article_id = ?, last_error = NULL",
        (isoformat_utc(now), article_id),
    )


def mark_failed(
    conn: Any,
    match_code: str,
    reason: str | None = None,
    now: datetime | None = None,
) -> bool:
    now = now or utc_now()
    return _finish_match(
        conn,
        match_code,
        ProcessingState.FAILED,
        "processed_failed_at = ?, last_error = ?",
        (isoformat_utc(now), (reason or "")[:500] or None),
    )


def _finish_match(
    conn: Any,
    match_code: str,
    target: ProcessingState,
    assignments: str,
    params: tuple,
) -> bool:
    current = _get_state(conn, match_code)
    if current is None or current.is_terminal:
        return False
    current.transition_to(target)
    cursor = conn.execute(
        f"""
        UPDATE matches
        SET processing_state = ?, {assignments}
        WHERE match_code = ? AND processing_state = ?
        """,
        (target.value, *params, match_code, ProcessingState.IN_PROGRESS.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def _get_state(conn: Any, match_code: str) -> ProcessingState | None:
    row = conn.execute(
        "SELECT processing_state FROM matches WHERE match_code = ?", (match_code,)
    ).fetchone()
    if not row:
        return None
    return ProcessingState(row[0])


def get_match(conn: Any, match_code: str) -> Match | None:
    row = conn.execute(
        f"SELECT {_MATCH_COLUMNS} FROM matches WHERE match_code = ?", (match_code,)
    ).fetchone()
    return _row_to_match(row) if row else None


def list_matches(
    conn: Any, state: ProcessingState | None = None, limit: int = 100
) -> list[Match]:
    params: list[object] = []
    where = ""
    if state is not None:
        where = "WHERE processing_state = ?"
        params.append(state.value)
    params.append(int(limit))
    cursor = conn.execute(
        f"""
        SELECT {_MATCH_COLUMNS} FROM matches
        {where}
        ORDER BY kickoff_datetime ASC, match_code ASC
        LIMIT ?
        """,
        tuple(params),
    )
    return [_row_to_match(row) for row in cursor.fetchall()]


def count_by_state(conn: Any) -> dict[str, int]:
    counts = {state.value: 0 for state in ProcessingState}
    cursor = conn.execute(
        "SELECT processing_state, COUNT(*) FROM matches GROUP BY processing_state"
    )
    for state, count in cursor.fetchall():
        counts[state] = int(count)
    return counts


def reset_stuck_matches(
    conn: Any, older_than: timedelta, now: datetime | None = None
) -> int:
    now = now or utc_now()
    cutoff = isoformat_utc(now - older_than)
    cursor = conn.execute(
        """
        UPDATE matches
        SET processing_state = ?, processed_failed_at = ?, last_error = ?
        WHERE processing_state = ? AND processed_started_at < ?
        """,
        (
            ProcessingState.FAILED.value,
            isoformat_utc(now),
            "stuck_in_progress_reset",
            ProcessingState.IN_PROGRESS.value,
            cutoff,
        ),
    )
    conn.commit()
    reset = max(cursor.rowcount, 0)
    if reset:
        log_event(logger, logging.WARNING, "stuck_matches_reset", count=reset, cutoff=cutoff)
    return reset


def _row_to_match(row: tuple) -> Match:
    (
        match_code,
        region,
        home_team,
        away_team,
        kickoff_datetime,
        time_zone,
        provider,
        odds_json,
        processing_state,
        processed_started_at,
        process_completed_at,
        processed_failed_at,
        created_at,
        last_error,
        article_id,
    ) = row
    try:
        odds = json.loads(odds_json) if odds_json else {}
    except json.JSONDecodeError:
        odds = {}
    return Match(
        match_code=match_code,
        region=region,
        home_team=home_team,
        away_team=away_team,
        kickoff_datetime=parse_iso(kickoff_datetime),
        time_zone=time_zone,
        provider=provider,
        odds=odds if isinstance(odds, dict) else {},
        processing_state=ProcessingState(processing_state),
        processed_started_at=processed_started_at,
        process_completed_at=process_completed_at,
        processed_failed_at=processed_failed_at,
        created_at=created_at,
        last_error=last_error,
        article_id=article_id,
    )
