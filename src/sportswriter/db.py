from __future__ import annotations

import os
import sqlite3
from typing import Any

from .errors import PersistenceError
from .migrations import apply_migrations
from .migrations_pg import apply_migrations_pg

DEFAULT_DATA_DIR = "/data"


def get_db_url() -> str | None:
    url = os.environ.get("SW_DB_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    if not url:
        return False
    return url.startswith("postgres://") or url.startswith("postgresql://")


def get_state_db_path() -> str:
    data_dir = os.environ.get("SW_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "state.sqlite3")


class DBConn:
    def __init__(self, conn: Any, backend: str, errors: tuple[type[BaseException], ...]) -> None:
        self._conn = conn
        self.backend = backend
        self._errors = errors

    def execute(self, sql: str, params: tuple | list | None = None):
        sql = _normalize_sql(sql, self.backend)
        params = params or ()
        cursor = self._conn.cursor()
        try:
            cursor.execute(sql, params)
        except self._errors as exc:
            raise PersistenceError(f"{self.backend}_error: {exc}") from exc
        return cursor

    def executemany(self, sql: str, seq_of_params):
        sql = _normalize_sql(sql, self.backend)
        cursor = self._conn.cursor()
        try:
            cursor.executemany(sql, seq_of_params)
        except self._errors as exc:
            raise PersistenceError(f"{self.backend}_error: {exc}") from exc
        return cursor

    def commit(self) -> None:
        try:
            self._conn.commit()
        except self._errors as exc:
            raise PersistenceError(f"{self.backend}_error: {exc}") from exc

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str | None = None) -> DBConn:
    url = get_db_url()
    if url and is_postgres_url(url):
        try:
            import psycopg
        except ImportError as exc:  # pragma: no cover - depends on env
            raise RuntimeError("psycopg is required for PostgreSQL support") from exc
        raw = psycopg.connect(url)
        conn = DBConn(raw, "postgres", (psycopg.Error,))
        apply_migrations_pg(conn)
        return conn

    path = path or get_state_db_path()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    raw = sqlite3.connect(path, timeout=5.0, check_same_thread=False)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    apply_migrations(raw)
    return DBConn(raw, "sqlite", (sqlite3.Error,))


def _normalize_sql(sql: str, backend: str) -> str:
    if backend != "postgres":
        return sql
    normalized = sql.replace("BEGIN IMMEDIATE", "BEGIN")
    normalized = _convert_qmark_to_percent(normalized)
    return normalized


def _convert_qmark_to_percent(sql: str) -> str:
    out = []
    in_single = False
    in_double = False
    escape = False
    for ch in sql:
        if ch == "\\" and not escape:
            escape = True
            out.append(ch)
            continue
        if ch == "'" and not in_double and not escape:
            in_single = not in_single
        elif ch == '"' and not in_single and not escape:
            in_double = not in_double
        if ch == "?" and not in_single and not in_double:
            out.append("%s")
        else:
            out.append(ch)
        escape = False
    return "".join(out)
