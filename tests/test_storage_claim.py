import threading
from datetime import datetime, timedelta, timezone

import pytest

from sportswriter.errors import InvalidTransitionError
from sportswriter.models import MatchRecord, ProcessingState
from sportswriter.storage import (
    claim_batch,
    count_by_state,
    count_completed_since,
    get_match,
    init_db,
    mark_completed,
    mark_failed,
    reset_stuck_matches,
    upsert_ingested,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _record(code: str, kickoff: datetime) -> MatchRecord:
    return MatchRecord(
        match_code=code,
        region="England",
        home_team="Home",
        away_team="Away",
        kickoff_datetime=kickoff,
        time_zone="UTC",
        provider="test",
        odds={},
    )


def _seed(conn, count: int) -> list[str]:
    codes = [f"M{index:02d}" for index in range(count)]
    upsert_ingested(
        conn,
        [_record(code, NOW + timedelta(hours=index + 1)) for index, code in enumerate(codes)],
        now=NOW,
    )
    return codes


def test_claim_orders_by_kickoff_then_code(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    kickoff = NOW + timedelta(hours=3)
    upsert_ingested(
        conn,
        [
            _record("C", kickoff),
            _record("B", kickoff),
            _record("A", NOW + timedelta(hours=4)),
            _record("Z", NOW + timedelta(hours=1)),
        ],
        now=NOW,
    )

    claimed = claim_batch(conn, 3, not_before=NOW, now=NOW)

    assert [match.match_code for match in claimed] == ["Z", "B", "C"]
    assert all(match.processing_state == ProcessingState.IN_PROGRESS for match in claimed)
    assert all(match.processed_started_at for match in claimed)
    assert get_match(conn, "A").processing_state == ProcessingState.UNPROCESSED


def test_claim_skips_past_kickoffs(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    upsert_ingested(
        conn,
        [_record("PAST", NOW - timedelta(hours=1)), _record("NEXT", NOW + timedelta(hours=1))],
        now=NOW,
    )

    claimed = claim_batch(conn, 5, not_before=NOW, now=NOW)

    assert [match.match_code for match in claimed] == ["NEXT"]


def test_claim_zero_returns_nothing(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed(conn, 2)
    assert claim_batch(conn, 0, not_before=NOW, now=NOW) == []
    assert count_by_state(conn)["unprocessed"] == 2


def test_two_connections_claim_disjoint_sets(tmp_path):
    path = str(tmp_path / "state.sqlite3")
    conn_a = init_db(path)
    conn_b = init_db(path)
    codes = _seed(conn_a, 5)

    first = claim_batch(conn_a, 3, not_before=NOW, now=NOW)
    second = claim_batch(conn_b, 3, not_before=NOW, now=NOW)
    third = claim_batch(conn_a, 3, not_before=NOW, now=NOW)

    first_codes = {match.match_code for match in first}
    second_codes = {match.match_code for match in second}
    assert first_codes.isdisjoint(second_codes)
    assert first_codes | second_codes == set(codes)
    assert third == []


def test_concurrent_claims_never_overlap(tmp_path):
    path = str(tmp_path / "state.sqlite3")
    seed_conn = init_db(path)
    codes = _seed(seed_conn, 12)
    connections = [init_db(path) for _ in range(4)]
    results: list[list[str]] = [[] for _ in connections]
    errors: list[BaseException] = []

    def _worker(index: int) -> None:
        try:
            claimed = claim_batch(connections[index], 3, not_before=NOW, now=NOW)
            results[index] = [match.match_code for match in claimed]
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_worker, args=(index,)) for index in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    claimed = [code for batch in results for code in batch]
    assert len(claimed) == len(set(claimed))
    assert sorted(claimed) == sorted(codes)


def test_mark_completed_and_failed_are_terminal(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed(conn, 2)
    claim_batch(conn, 2, not_before=NOW, now=NOW)

    assert mark_completed(conn, "M00", article_id="post-1", now=NOW) is True
    assert mark_failed(conn, "M01", "statistics_unavailable", now=NOW) is True

    completed = get_match(conn, "M00")
    failed = get_match(conn, "M01")
    assert completed.processing_state == ProcessingState.COMPLETED
    assert completed.process_completed_at == "2026-03-10T12:00:00+00:00"
    assert completed.article_id == "post-1"
    assert failed.processing_state == ProcessingState.FAILED
    assert failed.last_error == "statistics_unavailable"

    assert mark_completed(conn, "M00", now=NOW) is False
    assert mark_failed(conn, "M00", "late", now=NOW) is False
    assert get_match(conn, "M00").processing_state == ProcessingState.COMPLETED


def test_mark_on_unclaimed_match_is_rejected(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed(conn, 1)
    with pytest.raises(InvalidTransitionError):
        mark_completed(conn, "M00", now=NOW)
    assert mark_failed(conn, "missing", "x", now=NOW) is False


def test_count_completed_since_uses_completion_time(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed(conn, 3)
    claim_batch(conn, 3, not_before=NOW, now=NOW)
    mark_completed(conn, "M00", now=NOW - timedelta(days=1))
    mark_completed(conn, "M01", now=NOW)
    mark_failed(conn, "M02", "x", now=NOW)

    midnight = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert count_completed_since(conn, midnight) == 1


def test_reset_stuck_matches(tmp_path):
    conn = init_db(str(tmp_path / "state.sqlite3"))
    _seed(conn, 2)
    claim_batch(conn, 1, not_before=NOW, now=NOW - timedelta(hours=10))
    claim_batch(conn, 1, not_before=NOW, now=NOW)

    reset = reset_stuck_matches(conn, timedelta(hours=6), now=NOW)

    assert reset == 1
    assert get_match(conn, "M00").processing_state == ProcessingState.FAILED
    assert get_match(conn, "M00").last_error == "stuck_in_progress_reset"
    assert get_match(conn, "M01").processing_state == ProcessingState.IN_PROGRESS
