from __future__ import annotations

import argparse
import json
import logging
from datetime import timedelta

from .config import (
    ConfigError,
    SECRET_NAMES,
    get_post_settings,
    save_post_settings,
)
from .context import build_context
from .models import ProcessingState
from .storage import (
    count_by_state,
    get_api_secret_last4,
    init_db,
    list_matches,
    list_regions,
    reset_stuck_matches,
    set_api_secret,
    set_selected_regions,
)
from .utils import configure_logging, log_event
from .worker import run_generation, run_ingest, sync_regions, trigger_status


def _setup_logging() -> logging.Logger:
    return configure_logging("sportswriter.cli")


def _open_context(args: argparse.Namespace, logger: logging.Logger):
    conn = init_db(args.db)
    try:
        return build_context(conn, logger=logger)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        conn.close()
        return None


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", path=args.db or "default")
    return 0


def _cmd_ingest(args: argparse.Namespace, logger: logging.Logger) -> int:
    ctx = _open_context(args, logger)
    if ctx is None:
        return 1
    try:
        result = run_ingest(ctx)
    finally:
        ctx.close()
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") == "ok" else 1


def _cmd_generate(args: argparse.Namespace, logger: logging.Logger) -> int:
    ctx = _open_context(args, logger)
    if ctx is None:
        return 1
    try:
        result = run_generation(ctx)
    finally:
        ctx.close()
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") in ("ok", "idle") else 1


def _cmd_status(args: argparse.Namespace, logger: logging.Logger) -> int:
    ctx = _open_context(args, logger)
    if ctx is None:
        return 1
    try:
        payload = {
            "triggers": trigger_status(ctx),
            "matches": count_by_state(ctx.conn),
        }
    finally:
        ctx.close()
    print(json.dumps(payload, indent=2))
    return 0


def _cmd_regions_sync(args: argparse.Namespace, logger: logging.Logger) -> int:
    ctx = _open_context(args, logger)
    if ctx is None:
        return 1
    try:
        result = sync_regions(ctx)
    finally:
        ctx.close()
    print(json.dumps(result, indent=2))
    return 0 if result.get("status") == "ok" else 1


def _cmd_regions_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    regions = list_regions(conn)
    conn.close()
    if not regions:
        log_event(
            logger,
            logging.WARNING,
            "no_regions",
            hint="Fetch regions with `sportswriter regions sync`",
        )
        return 1
    for region in regions:
        marker = "*" if region.selected else " "
        print(f"{marker} {region.id}\t{region.name}\t{len(region.leagues)} leagues")
    return 0


def _cmd_regions_select(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    selected = set_selected_regions(conn, args.region_ids)
    conn.close()
    ignored = sorted(set(args.region_ids) - set(selected))
    log_event(logger, logging.INFO, "regions_selected", selected=selected, ignored=ignored)
    return 0


def _cmd_matches_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    state = ProcessingState(args.state) if args.state else None
    matches = list_matches(conn, state=state, limit=args.limit)
    conn.close()
    for match in matches:
        print(
            "\t".join(
                [
                    match.match_code,
                    match.kickoff_datetime.isoformat(),
                    f"{match.home_team} vs {match.away_team}",
                    match.processing_state.value,
                    match.last_error or "",
                ]
            )
        )
    log_event(logger, logging.INFO, "matches_listed", count=len(matches))
    return 0


def _cmd_matches_reset_stuck(args: argparse.Namespace, logger: logging.Logger) -> int:
    ctx = _open_context(args, logger)
    if ctx is None:
        return 1
    minutes = args.older_than_minutes or ctx.config.schedule.stuck_after_minutes
    try:
        count = reset_stuck_matches(ctx.conn, timedelta(minutes=minutes))
    finally:
        ctx.close()
    log_event(logger, logging.INFO, "matches_reset", count=count)
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    log_event(logger, logging.INFO, "admin_api_starting", host=args.host, port=args.port)
    uvicorn.run("sportswriter.admin:app", host=args.host, port=args.port, proxy_headers=True)
    return 0


def _cmd_settings_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    payload = get_post_settings(conn)
    for name in SECRET_NAMES:
        payload[f"{name}_last4"] = get_api_secret_last4(conn, name)
    conn.close()
    print(json.dumps(payload, indent=2))
    return 0


def _cmd_settings_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    updates: dict[str, object] = {}
    for item in args.values:
        if "=" not in item:
            log_event(logger, logging.ERROR, "invalid_setting", value=item, hint="use key=value")
            return 1
        key, value = item.split("=", 1)
        updates[key.strip()] = value
    conn = init_db(args.db)
    warnings = save_post_settings(conn, updates)
    conn.close()
    for warning in warnings:
        log_event(logger, logging.WARNING, "setting_rejected", field=warning.field, message=warning.message)
    log_event(logger, logging.INFO, "settings_saved", keys=",".join(sorted(updates)))
    return 0


def _cmd_secrets_set(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = init_db(args.db)
    try:
        set_api_secret(conn, args.name, args.value.strip())
    except ValueError as exc:
        log_event(logger, logging.ERROR, "secret_error", name=args.name, error=str(exc))
        return 1
    finally:
        conn.close()
    log_event(logger, logging.INFO, "secret_saved", name=args.name)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sportswriter")
    parser.add_argument(
        "--db",
        dest="db",
        default=None,
        help="Path to the SQLite state file (defaults to $SW_DATA_DIR/state.sqlite3)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    ingest_parser = subparsers.add_parser("ingest", help="Fetch upcoming matches now")
    ingest_parser.set_defaults(func=_cmd_ingest)

    generate_parser = subparsers.add_parser("generate", help="Run one generation cycle now")
    generate_parser.set_defaults(func=_cmd_generate)

    status_parser = subparsers.add_parser("status", help="Show trigger schedule and match counts")
    status_parser.set_defaults(func=_cmd_status)

    serve_parser = subparsers.add_parser("serve", help="Run the admin API")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=8080)
    serve_parser.set_defaults(func=_cmd_serve)

    regions_parser = subparsers.add_parser("regions", help="Manage regions")
    regions_subparsers = regions_parser.add_subparsers(dest="regions_command", required=True)
    regions_sync = regions_subparsers.add_parser("sync", help="Fetch regions from the provider")
    regions_sync.set_defaults(func=_cmd_regions_sync)
    regions_list = regions_subparsers.add_parser("list", help="List stored regions")
    regions_list.set_defaults(func=_cmd_regions_list)
    regions_select = regions_subparsers.add_parser(
        "select", help="Replace the region selection (no ids clears it)"
    )
    regions_select.add_argument("region_ids", nargs="*", type=int, help="Region ids")
    regions_select.set_defaults(func=_cmd_regions_select)

    matches_parser = subparsers.add_parser("matches", help="Inspect matches")
    matches_subparsers = matches_parser.add_subparsers(dest="matches_command", required=True)
    matches_list = matches_subparsers.add_parser("list", help="List matches")
    matches_list.add_argument(
        "--state", choices=[state.value for state in ProcessingState], default=None
    )
    matches_list.add_argument("--limit", type=int, default=50, help="Number of matches to show")
    matches_list.set_defaults(func=_cmd_matches_list)
    matches_reset = matches_subparsers.add_parser(
        "reset-stuck", help="Mark long-running in-progress matches as failed"
    )
    matches_reset.add_argument(
        "--older-than-minutes",
        type=int,
        default=None,
        help="Defaults to schedule.stuck_after_minutes from the runtime config",
    )
    matches_reset.set_defaults(func=_cmd_matches_reset_stuck)

    settings_parser = subparsers.add_parser("settings", help="Post settings")
    settings_subparsers = settings_parser.add_subparsers(dest="settings_command", required=True)
    settings_show = settings_subparsers.add_parser("show", help="Print post settings")
    settings_show.set_defaults(func=_cmd_settings_show)
    settings_set = settings_subparsers.add_parser("set", help="Update post settings")
    settings_set.add_argument("values", nargs="+", help="key=value pairs")
    settings_set.set_defaults(func=_cmd_settings_set)

    secrets_parser = subparsers.add_parser("secrets", help="API keys")
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command", required=True)
    secrets_set = secrets_subparsers.add_parser("set", help="Store an encrypted API key")
    secrets_set.add_argument("name", choices=list(SECRET_NAMES))
    secrets_set.add_argument("value")
    secrets_set.set_defaults(func=_cmd_secrets_set)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
