from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTransitionError

ODDS_KEYS = ("1", "2", "12", "x", "1x", "x2", "u_2_5", "o_2_5")


class ProcessingState(str, Enum):
    UNPROCESSED = "unprocessed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingState.COMPLETED, ProcessingState.FAILED)

    def can_transition_to(self, target: "ProcessingState") -> bool:
        return target in _TRANSITIONS[self]

    def transition_to(self, target: "ProcessingState") -> "ProcessingState":
        if self.is_terminal and target == self:
            return self
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                f"illegal_transition {self.value}->{target.value}"
            )
        return target


_TRANSITIONS: dict[ProcessingState, frozenset[ProcessingState]] = {
    ProcessingState.UNPROCESSED: frozenset({ProcessingState.IN_PROGRESS}),
    ProcessingState.IN_PROGRESS: frozenset(
        {ProcessingState.COMPLETED, ProcessingState.FAILED}
    ),
    ProcessingState.COMPLETED: frozenset(),
    ProcessingState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class MatchRecord:
    match_code: str
    region: str
    home_team: str
    away_team: str
    kickoff_datetime: datetime
    time_zone: str
    provider: str
    odds: dict[str, str]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "MatchRecord":
        match_code = str(payload.get("match_code") or "").strip()
        if not match_code:
            raise ValueError("missing_match_code")
        raw_kickoff = payload.get("match_datetime")
        if not raw_kickoff:
            raise ValueError("missing_match_datetime")
        time_zone = str(payload.get("time_zone") or "")
        return cls(
            match_code=match_code,
            region=str(payload.get("region") or ""),
            home_team=str(payload.get("home") or ""),
            away_team=str(payload.get("away") or ""),
            kickoff_datetime=parse_kickoff(str(raw_kickoff), time_zone),
            time_zone=time_zone,
            provider=str(payload.get("provider") or ""),
            odds=normalize_odds(payload.get("odds")),
        )


@dataclass(frozen=True)
class Match:
    match_code: str
    region: str
    home_team: str
    away_team: str
    kickoff_datetime: datetime
    time_zone: str
    provider: str
    odds: dict[str, str]
    processing_state: ProcessingState
    processed_started_at: str | None
    process_completed_at: str | None
    processed_failed_at: str | None
    created_at: str
    last_error: str | None = None
    article_id: str | None = None


@dataclass(frozen=True)
class Region:
    id: int | None
    name: str
    leagues: list[Any]
    selected: bool = False


@dataclass(frozen=True)
class MatchStatistics:
    home_matches: list[dict[str, Any]] = field(default_factory=list)
    away_matches: list[dict[str, Any]] = field(default_factory=list)
    head_to_head: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "home_matches": list(self.home_matches),
            "away_matches": list(self.away_matches),
            "head_to_head": list(self.head_to_head),
        }


@dataclass(frozen=True)
class GeneratedArticle:
    title: str
    body: str
    publish_at: datetime
    author_id: int | None
    category_id: int | None
    image_url: str | None


@dataclass(frozen=True)
class IngestResult:
    inserted_count: int
    skipped_duplicates: int
    evicted_count: int


def parse_kickoff(value: str, time_zone: str) -> datetime:
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = datetime.strptime(text, "%Y-%m-%d %H:%M")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_resolve_zone(time_zone))
    return parsed.astimezone(timezone.utc).replace(microsecond=0)


def _resolve_zone(name: str):
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def normalize_odds(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    odds: dict[str, str] = {}
    for key, item in value.items():
        if item is None or item == "":
            continue
        odds[str(key)] = str(item)
    return odds
