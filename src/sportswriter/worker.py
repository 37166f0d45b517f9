from __future__ import annotations

import argparse
import logging
import time
from datetime import datetime, timedelta

from .config import ConfigError, PostSettings, load_post_settings
from .context import AppContext, build_context
from .errors import InvalidTransitionError, PersistenceError, UnexpectedError, UpstreamError
from .fsinit import build_default_paths, ensure_runtime_dirs, set_umask_from_env
from .pipelines.ingest_matches import ingest_upcoming
from .pipelines.match_preview import process_match
from .storage import (
    claim_batch,
    count_completed_since,
    get_setting,
    list_selected_region_names,
    mark_failed,
    set_setting,
    upsert_regions,
)
from .utils import configure_logging, isoformat_utc, log_event, parse_iso, utc_midnight, utc_now

TRIGGER_INGEST = "ingest"
TRIGGER_GENERATE = "generate"
TRIGGERS = (TRIGGER_INGEST, TRIGGER_GENERATE)


def _setup_logging() -> logging.Logger:
    return configure_logging("sportswriter.worker")


def run_ingest(ctx: AppContext, now: datetime | None = None) -> dict[str, object]:
    now = now or utc_now()
    logger = ctx.logger
    settings = _load_settings(ctx)
    if settings is None:
        return {"status": "aborted", "reason": "settings_unavailable"}
    if not settings.sport_api_key:
        log_event(logger, logging.ERROR, "ingest_aborted", reason="missing_sport_api_key")
        return {"status": "aborted", "reason": "missing_sport_api_key"}
    try:
        result, filtered = ingest_upcoming(
            ctx.conn,
            ctx.sport_api,
            settings.sport_api_key,
            list_selected_region_names(ctx.conn),
            logger,
            now=now,
        )
    except UpstreamError as exc:
        log_event(
            logger,
            logging.ERROR,
            "ingest_aborted",
            reason="upstream_error",
            endpoint=exc.endpoint,
            status=exc.status,
            error=str(exc),
        )
        return {"status": "aborted", "reason": "upstream_error", "error": str(exc)}
    except PersistenceError as exc:
        log_event(logger, logging.ERROR, "ingest_aborted", reason="persistence_error", error=str(exc))
        return {"status": "aborted", "reason": "persistence_error", "error": str(exc)}
    return {
        "status": "ok",
        "inserted": result.inserted_count,
        "skipped": result.skipped_duplicates,
        "evicted": result.evicted_count,
        "filtered": filtered,
    }


def run_generation(ctx: AppContext, now: datetime | None = None) -> dict[str, object]:
    now = now or utc_now()
    logger = ctx.logger
    settings = _load_settings(ctx)
    if settings is None:
        return {"status": "aborted", "reason": "settings_unavailable"}
    if not settings.has_credentials:
        log_event(logger, logging.ERROR, "generation_aborted", reason="missing_api_keys")
        return {"status": "aborted", "reason": "missing_api_keys"}

    try:
        completed_today = count_completed_since(ctx.conn, utc_midnight(now))
    except PersistenceError as exc:
        return _abort_generation(ctx, exc)
    if completed_today >= settings.max_games_per_day:
        log_event(
            logger,
            logging.WARNING,
            "generation_aborted",
            reason="daily_cap_reached",
            completed_today=completed_today,
            max_games_per_day=settings.max_games_per_day,
        )
        return {"status": "aborted", "reason": "daily_cap_reached", "completed_today": completed_today}

    try:
        batch = claim_batch(ctx.conn, settings.max_games_per_hour, not_before=now, now=now)
    except PersistenceError as exc:
        return _abort_generation(ctx, exc)
    if not batch:
        log_event(logger, logging.INFO, "generation_idle", reason="no_unprocessed_matches")
        return {"status": "idle", "claimed": 0}
    log_event(logger, logging.INFO, "batch_claimed", count=len(batch))

    outcomes = {"completed": 0, "failed": 0}
    for index, match in enumerate(batch):
        try:
            state = process_match(
                ctx.conn,
                match=match,
                index=index,
                now=now,
                settings=settings,
                sport_api=ctx.sport_api,
                openai=ctx.openai,
                sink=ctx.sink,
                logger=logger,
                publish_delay_minutes=ctx.config.schedule.publish_delay_minutes,
            )
        except PersistenceError as exc:
            log_event(
                logger,
                logging.ERROR,
                "match_error",
                match_code=match.match_code,
                error_type="persistence",
                error=str(exc),
            )
            _mark_failed_best_effort(ctx, match.match_code, str(exc))
            state = "failed"
        except Exception as exc:  # noqa: BLE001
            error = UnexpectedError(f"{type(exc).__name__}: {exc}")
            log_event(
                logger,
                logging.ERROR,
                "match_error",
                match_code=match.match_code,
                error_type="unexpected",
                error=str(error),
            )
            _mark_failed_best_effort(ctx, match.match_code, str(error))
            state = "failed"
        outcomes[state] = outcomes.get(state, 0) + 1

    log_event(
        logger,
        logging.INFO,
        "generation_finished",
        claimed=len(batch),
        completed=outcomes["completed"],
        failed=outcomes["failed"],
    )
    return {"status": "ok", "claimed": len(batch), **outcomes}


def sync_regions(ctx: AppContext) -> dict[str, object]:
    settings = _load_settings(ctx)
    if settings is None or not settings.sport_api_key:
        log_event(ctx.logger, logging.ERROR, "regions_sync_aborted", reason="missing_sport_api_key")
        return {"status": "aborted", "reason": "missing_sport_api_key"}
    try:
        regions = ctx.sport_api.fetch_regions(settings.sport_api_key)
    except UpstreamError as exc:
        log_event(ctx.logger, logging.ERROR, "regions_sync_aborted", reason="upstream_error", error=str(exc))
        return {"status": "aborted", "reason": "upstream_error", "error": str(exc)}
    try:
        inserted = upsert_regions(ctx.conn, regions)
    except PersistenceError as exc:
        log_event(ctx.logger, logging.ERROR, "regions_sync_aborted", reason="persistence_error", error=str(exc))
        return {"status": "aborted", "reason": "persistence_error", "error": str(exc)}
    log_event(ctx.logger, logging.INFO, "regions_synced", fetched=len(regions), inserted=inserted)
    return {"status": "ok", "fetched": len(regions), "inserted": inserted}


def trigger_interval(ctx_or_config, name: str) -> timedelta:
    config = getattr(ctx_or_config, "config", ctx_or_config)
    if name == TRIGGER_INGEST:
        return timedelta(minutes=config.schedule.ingest_interval_minutes)
    if name == TRIGGER_GENERATE:
        return timedelta(minutes=config.schedule.generate_interval_minutes)
    raise ValueError(f"unknown_trigger {name}")


def get_last_run(conn, name: str) -> datetime | None:
    value = get_setting(conn, _last_run_key(name), None)
    if not isinstance(value, str) or not value:
        return None
    try:
        return parse_iso(value)
    except ValueError:
        return None


def record_run(conn, name: str, when: datetime) -> None:
    set_setting(conn, _last_run_key(name), isoformat_utc(when))


def trigger_status(ctx: AppContext, now: datetime | None = None) -> list[dict[str, object]]:
    now = now or utc_now()
    status = []
    for name in TRIGGERS:
        interval = trigger_interval(ctx, name)
        last_run = get_last_run(ctx.conn, name)
        next_run = (last_run + interval) if last_run else now
        status.append(
            {
                "name": name,
                "interval_minutes": int(interval.total_seconds() // 60),
                "last_run_at": isoformat_utc(last_run) if last_run else None,
                "next_run_at": isoformat_utc(next_run),
                "due": next_run <= now,
            }
        )
    return status


def run_due_triggers(ctx: AppContext, now: datetime | None = None) -> dict[str, object]:
    now = now or utc_now()
    results: dict[str, object] = {}
    for item in trigger_status(ctx, now):
        if not item["due"]:
            continue
        name = str(item["name"])
        if name == TRIGGER_INGEST:
            results[name] = run_ingest(ctx, now)
        else:
            results[name] = run_generation(ctx, now)
        try:
            record_run(ctx.conn, name, now)
        except PersistenceError as exc:
            log_event(ctx.logger, logging.ERROR, "trigger_record_failed", trigger=name, error=str(exc))
    return results


def run_once(ctx: AppContext | None = None, now: datetime | None = None) -> int:
    logger = _setup_logging()
    owned = ctx is None
    if ctx is None:
        try:
            ctx = build_context(logger=logger)
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "config_error", error=str(exc))
            return 1
        set_umask_from_env()
        paths = ctx.config.paths
        ensure_runtime_dirs(build_default_paths(paths.data_dir, paths.output_dir, paths.images_dir))
    try:
        results = run_due_triggers(ctx, now)
    finally:
        if owned:
            ctx.close()
    if results:
        log_event(logger, logging.INFO, "triggers_ran", triggers=",".join(sorted(results)))
    return 0


def run_loop(sleep_seconds: int) -> None:
    logger = _setup_logging()
    log_event(logger, logging.INFO, "worker_started", sleep_seconds=sleep_seconds)
    while True:
        try:
            run_once()
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "worker_cycle_failed", error=f"{type(exc).__name__}: {exc}")
        time.sleep(sleep_seconds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sportswriter-worker")
    parser.add_argument("--once", action="store_true", help="Run due triggers once and exit")
    parser.add_argument("--sleep", type=int, default=60, help="Sleep seconds between polls")
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.once:
        return run_once()
    run_loop(args.sleep)
    return 0


def _load_settings(ctx: AppContext) -> PostSettings | None:
    try:
        return load_post_settings(ctx.conn)
    except (ValueError, PersistenceError) as exc:
        log_event(ctx.logger, logging.ERROR, "settings_error", error=str(exc))
        return None


def _abort_generation(ctx: AppContext, exc: PersistenceError) -> dict[str, object]:
    log_event(ctx.logger, logging.ERROR, "generation_aborted", reason="persistence_error", error=str(exc))
    return {"status": "aborted", "reason": "persistence_error", "error": str(exc)}


def _mark_failed_best_effort(ctx: AppContext, match_code: str, reason: str) -> None:
    try:
        ctx.conn.rollback()
    except Exception as exc:  # noqa: BLE001
        log_event(ctx.logger, logging.WARNING, "rollback_failed", match_code=match_code, error=str(exc))
    try:
        mark_failed(ctx.conn, match_code, reason)
    except (PersistenceError, InvalidTransitionError) as exc:
        log_event(
            ctx.logger,
            logging.ERROR,
            "mark_failed_error",
            match_code=match_code,
            error=str(exc),
        )


def _last_run_key(name: str) -> str:
    return f"trigger.{name}.last_run_at"


if __name__ == "__main__":
    raise SystemExit(main())
