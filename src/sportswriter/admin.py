from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import (
    ConfigError,
    SECRET_NAMES,
    bootstrap_runtime_config,
    get_post_settings,
    get_runtime_config,
    load_runtime_config,
    save_post_settings,
    set_runtime_config,
)
from .context import build_context
from .db import get_state_db_path
from .fsinit import build_default_paths, ensure_runtime_dirs, set_umask_from_env
from .models import ProcessingState
from .security.secrets import master_key_configured
from .storage import (
    clear_api_secret,
    count_by_state,
    get_api_secret_last4,
    init_db,
    list_matches,
    list_regions,
    set_api_secret,
    set_selected_regions,
)
from .utils import configure_logging, isoformat_utc, log_event
from .worker import run_generation, run_ingest, sync_regions, trigger_status

app = FastAPI(title="SportsWriter Admin API")
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

logger = logging.getLogger("sportswriter.admin")


def _require_admin_token(request: Request) -> None:
    token = os.environ.get("SW_ADMIN_TOKEN")
    if not token:
        return
    if request.headers.get("X-Admin-Token") != token:
        raise HTTPException(status_code=401, detail="unauthorized")


def _get_conn():
    conn = init_db(get_state_db_path())
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


class RuntimeConfigRequest(BaseModel):
    config: dict


class PostSettingsRequest(BaseModel):
    sport_api_key: str | None = None
    openai_api_key: str | None = None
    openai_model: str | None = None
    max_games_per_day: int | None = None
    max_games_per_hour: int | None = None
    post_intervals: int | None = None
    post_author: int | None = None
    post_category: int | None = None
    ai_content_prompt: str | None = None
    featured_image_url: str | None = None
    dalle_image_generation: bool | None = None
    dalle_image_size: str | None = None
    dalle_image_quality: str | None = None


class RegionSelectionRequest(BaseModel):
    region_ids: list[int] = []


@app.get("/")
def root() -> dict[str, str]:
    return {"service": "SportsWriter Admin API"}


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.on_event("startup")
def _startup() -> None:
    configure_logging("sportswriter.admin")
    conn = init_db(get_state_db_path())
    try:
        config = load_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return
    finally:
        conn.close()
    set_umask_from_env()
    ensure_runtime_dirs(
        build_default_paths(
            config.paths.data_dir, config.paths.output_dir, config.paths.images_dir
        )
    )


@app.get("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_get(conn=Depends(_get_conn)) -> dict[str, object]:
    try:
        cfg = get_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"config": cfg}


@app.put("/admin/config/runtime", dependencies=[Depends(_require_admin_token)])
def runtime_config_set(
    payload: RuntimeConfigRequest, conn=Depends(_get_conn)
) -> dict[str, object]:
    try:
        set_runtime_config(conn, payload.config)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok"}


@app.get("/admin/settings/post", dependencies=[Depends(_require_admin_token)])
def post_settings_get(conn=Depends(_get_conn)) -> dict[str, object]:
    return {
        "settings": get_post_settings(conn),
        "secrets": {name: get_api_secret_last4(conn, name) for name in SECRET_NAMES},
        "master_key_configured": master_key_configured(),
    }


@app.put("/admin/settings/post", dependencies=[Depends(_require_admin_token)])
def post_settings_set(
    payload: PostSettingsRequest, conn=Depends(_get_conn)
) -> dict[str, object]:
    values = payload.model_dump(exclude_unset=True)
    secrets = {name: values.pop(name) for name in SECRET_NAMES if name in values}
    for name, value in secrets.items():
        value = (value or "").strip()
        if not value:
            clear_api_secret(conn, name)
            continue
        try:
            set_api_secret(conn, name, value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    warnings = save_post_settings(conn, values)
    log_event(
        logger,
        logging.INFO,
        "post_settings_saved",
        keys=",".join(sorted(values)),
        secrets=",".join(sorted(secrets)),
        warnings=len(warnings),
    )
    return {
        "status": "ok",
        "warnings": [{"field": item.field, "message": item.message} for item in warnings],
    }


@app.get("/admin/regions", dependencies=[Depends(_require_admin_token)])
def regions_list(conn=Depends(_get_conn)) -> list[dict[str, object]]:
    return [
        {
            "id": region.id,
            "name": region.name,
            "leagues": region.leagues,
            "selected": region.selected,
        }
        for region in list_regions(conn)
    ]


@app.post("/admin/regions/sync", dependencies=[Depends(_require_admin_token)])
def regions_sync(conn=Depends(_get_conn)) -> dict[str, object]:
    ctx = _context(conn)
    return sync_regions(ctx)


@app.put("/admin/regions/selection", dependencies=[Depends(_require_admin_token)])
def regions_select(
    payload: RegionSelectionRequest, conn=Depends(_get_conn)
) -> dict[str, object]:
    selected = set_selected_regions(conn, payload.region_ids)
    return {"status": "ok", "selected": selected}


@app.get("/admin/matches", dependencies=[Depends(_require_admin_token)])
def matches_list(
    state: str | None = None, limit: int = 100, conn=Depends(_get_conn)
) -> list[dict[str, object]]:
    try:
        state_filter = ProcessingState(state) if state else None
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="invalid_state") from exc
    rows = []
    for match in list_matches(conn, state=state_filter, limit=limit):
        rows.append(
            {
                "match_code": match.match_code,
                "region": match.region,
                "home_team": match.home_team,
                "away_team": match.away_team,
                "kickoff_datetime": isoformat_utc(match.kickoff_datetime),
                "processing_state": match.processing_state.value,
                "processed_started_at": match.processed_started_at,
                "process_completed_at": match.process_completed_at,
                "processed_failed_at": match.processed_failed_at,
                "last_error": match.last_error,
                "article_id": match.article_id,
            }
        )
    return rows


@app.get("/admin/matches/counts", dependencies=[Depends(_require_admin_token)])
def matches_counts(conn=Depends(_get_conn)) -> dict[str, int]:
    return count_by_state(conn)


@app.get("/admin/triggers", dependencies=[Depends(_require_admin_token)])
def triggers(conn=Depends(_get_conn)) -> list[dict[str, object]]:
    return trigger_status(_context(conn))


@app.post("/admin/run/ingest", dependencies=[Depends(_require_admin_token)])
def run_ingest_now(conn=Depends(_get_conn)) -> dict[str, object]:
    return run_ingest(_context(conn))


@app.post("/admin/run/generate", dependencies=[Depends(_require_admin_token)])
def run_generation_now(conn=Depends(_get_conn)) -> dict[str, object]:
    return run_generation(_context(conn))


def _context(conn):
    try:
        return build_context(conn, logger=logger)
    except ConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("sportswriter")
    except Exception:  # noqa: BLE001
        return "unknown"
