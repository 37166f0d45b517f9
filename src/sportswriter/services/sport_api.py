from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

import jsonschema

from ..errors import UpstreamError
from ..models import MatchRecord, MatchStatistics, Region
from ..utils import log_event

DEFAULT_BASE_URL = "https://app.scalesp.com/api/v1/football"
DEFAULT_TIMEOUT_SECONDS = 30

STATISTICS_ENDPOINTS = (
    ("home_matches", "/stats/{code}/home-matches"),
    ("away_matches", "/stats/{code}/away-matches"),
    ("head_to_head", "/stats/{code}/head-to-head"),
)

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"data": {"type": "array"}},
    "required": ["data"],
}

REGION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "leagues": {"type": ["array", "null"]},
    },
    "required": ["name"],
}

GAME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "match_code": {"type": ["string", "integer"]},
        "match_datetime": {"type": "string"},
        "odds": {"type": ["object", "array", "null"]},
    },
    "required": ["match_code", "match_datetime"],
}


class SportApiClient:
    """Read-only client for the football data provider."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent
        self.logger = logger or logging.getLogger("sportswriter.sport_api")

    def fetch_regions(self, api_key: str) -> list[Region]:
        payload = self._get_envelope("/regions", api_key)
        regions: list[Region] = []
        for item in payload["data"]:
            try:
                jsonschema.validate(item, REGION_SCHEMA)
            except jsonschema.ValidationError as exc:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "region_skipped",
                    error=exc.message,
                )
                continue
            regions.append(
                Region(id=None, name=item["name"].strip(), leagues=list(item.get("leagues") or []))
            )
        log_event(self.logger, logging.INFO, "regions_fetched", count=len(regions))
        return regions

    def fetch_upcoming(self, api_key: str) -> list[MatchRecord]:
        payload = self._get_envelope("/games", api_key)
        records: list[MatchRecord] = []
        skipped = 0
        for item in payload["data"]:
            try:
                jsonschema.validate(item, GAME_SCHEMA)
                records.append(MatchRecord.from_payload(item))
            except (jsonschema.ValidationError, ValueError) as exc:
                skipped += 1
                reason = exc.message if isinstance(exc, jsonschema.ValidationError) else str(exc)
                log_event(
                    self.logger,
                    logging.WARNING,
                    "game_skipped",
                    match_code=item.get("match_code") if isinstance(item, dict) else None,
                    error=reason,
                )
        log_event(
            self.logger,
            logging.INFO,
            "games_fetched",
            count=len(records),
            skipped=skipped,
        )
        return records

    def fetch_statistics(self, api_key: str, match_code: str) -> MatchStatistics | None:
        """Fetch the three history lists for a match, or None if any call fails."""
        collected: dict[str, list[dict[str, Any]]] = {}
        code = urllib.parse.quote(str(match_code), safe="")
        for key, template in STATISTICS_ENDPOINTS:
            endpoint = template.format(code=code)
            try:
                payload = self._get_json(endpoint, api_key)
            except UpstreamError as exc:
                log_event(
                    self.logger,
                    logging.ERROR,
                    "statistics_failed",
                    match_code=match_code,
                    endpoint=endpoint,
                    error=str(exc),
                )
                return None
            if not isinstance(payload, dict) or "error" in payload:
                log_event(
                    self.logger,
                    logging.ERROR,
                    "statistics_failed",
                    match_code=match_code,
                    endpoint=endpoint,
                    error="provider_error",
                )
                return None
            data = payload.get("data") or []
            collected[key] = [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []
        return MatchStatistics(**collected)

    def _get_envelope(self, endpoint: str, api_key: str) -> dict[str, Any]:
        payload = self._get_json(endpoint, api_key)
        try:
            jsonschema.validate(payload, ENVELOPE_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise UpstreamError(
                f"invalid_envelope: {exc.message}", endpoint=endpoint
            ) from exc
        return payload

    def _get_json(self, endpoint: str, api_key: str) -> Any:
        url = self.base_url + endpoint
        request = urllib.request.Request(url, method="GET")
        request.add_header("Authorization", f"Bearer {api_key}")
        request.add_header("Content-Type", "application/json")
        if self.user_agent:
            request.add_header("User-Agent", self.user_agent)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                status = response.getcode()
                raw = response.read()
        except urllib.error.HTTPError as exc:
            raise UpstreamError(
                f"http_error {exc.code}", endpoint=endpoint, status=exc.code
            ) from exc
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise UpstreamError(f"network_error: {exc}", endpoint=endpoint) from exc
        if status != 200:
            raise UpstreamError(f"http_error {status}", endpoint=endpoint, status=status)
        try:
            return json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise UpstreamError("invalid_encoding", endpoint=endpoint, status=status) from exc
        except json.JSONDecodeError as exc:
            raise UpstreamError("invalid_json", endpoint=endpoint, status=status) from exc
