import sqlite3

from sportswriter.migrations import _get_migrations, apply_migrations
from sportswriter.storage import init_db


def test_apply_migrations_idempotent(tmp_path):
    db_path = tmp_path / "state.sqlite3"
    conn = sqlite3.connect(str(db_path))
    apply_migrations(conn)
    apply_migrations(conn)

    rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
    versions = [row[0] for row in rows]
    expected = [version for version, _ in _get_migrations()]
    assert sorted(versions) == sorted(expected)
    assert len(versions) == len(set(versions))


def test_each_new_database_gets_its_own_schema(tmp_path):
    for name in ("one.sqlite3", "two.sqlite3"):
        conn = init_db(str(tmp_path / name))
        tables = {
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }
        assert {"matches", "regions", "selected_regions", "settings", "api_secrets"} <= tables
        conn.close()
