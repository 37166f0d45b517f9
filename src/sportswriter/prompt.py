from __future__ import annotations

from typing import Any, Mapping

from .models import Match, MatchStatistics

ODDS_LINES = (
    ("1", "Home Win ({home})"),
    ("2", "Away Win ({away})"),
    ("12", "Either team to Win"),
    ("x", "Draw"),
    ("1x", "Home win or draw"),
    ("x2", "Away win or draw"),
    ("u_2_5", "Total goals, less than 3 goals"),
    ("o_2_5", "Total goals, 3 goals or more"),
)
MISSING_ODDS = "n/a"


def build_prompt(
    match: Match,
    statistics: MatchStatistics | Mapping[str, Any] | None,
    template: str,
) -> str:
    """Assemble the article prompt for one match.

    History lists arrive oldest first and are rendered newest first. Sections
    without content are left out; the result is never truncated.
    """
    stats = _stats_mapping(statistics)
    home_lines = _history_lines(stats.get("home_matches"))
    away_lines = _history_lines(stats.get("away_matches"))
    h2h_lines = _history_lines(stats.get("head_to_head"))

    blocks = [_match_details(match)]
    odds_block = _odds_block(match)
    if odds_block:
        blocks.append(odds_block)
    if home_lines or away_lines or h2h_lines:
        blocks.append("Match History Analysis:")
    if home_lines:
        blocks.append("Home Team Recent Performance:\n" + "\n".join(home_lines))
    if away_lines:
        blocks.append("Away Team Recent Performance:\n" + "\n".join(away_lines))
    if h2h_lines:
        blocks.append("Head-to-Head History:\n" + "\n".join(h2h_lines))

    parts = [template.rstrip()] if template and template.strip() else []
    parts.extend(blocks)
    return "\n\n".join(parts)


def format_history_entry(entry: Mapping[str, Any]) -> str:
    home = entry.get("home_team_name", "")
    away = entry.get("away_team_name", "")
    line = f"-{home} vs {away}"
    home_ht = entry.get("home_ht_score")
    away_ht = entry.get("away_ht_score")
    if home_ht is not None and away_ht is not None:
        line += f". Half time: {home_ht}:{away_ht}"
    line += (
        f". Full time: {_score(entry.get('home_ft_score'))}:{_score(entry.get('away_ft_score'))}"
        f". Date: {entry.get('match_date', '')}"
    )
    return line


def _stats_mapping(statistics: MatchStatistics | Mapping[str, Any] | None) -> Mapping[str, Any]:
    if statistics is None:
        return {}
    if isinstance(statistics, MatchStatistics):
        return statistics.as_dict()
    return statistics


def _history_lines(entries: Any) -> list[str]:
    if not isinstance(entries, list):
        return []
    return [format_history_entry(entry) for entry in reversed(entries) if isinstance(entry, Mapping)]


def _score(value: Any) -> str:
    return "" if value is None else str(value)


def _match_details(match: Match) -> str:
    kickoff = match.kickoff_datetime.strftime("%Y-%m-%d %H:%M UTC")
    return "\n".join(
        [
            "Match Details:",
            f"- Upcoming Match: {match.home_team} vs {match.away_team}",
            f"- Home team: {match.home_team}",
            f"- Away team: {match.away_team}",
            f"- Match Date: {kickoff}",
            f"- Region: {match.region}",
        ]
    )


def _odds_block(match: Match) -> str:
    odds = match.odds or {}
    if not odds:
        return ""
    lines = ["Betting Odds Breakdown:"]
    for key, label in ODDS_LINES:
        value = odds.get(key)
        rendered = MISSING_ODDS if value in (None, "") else value
        lines.append(f"- {label.format(home=match.home_team, away=match.away_team)}: {rendered}")
    return "\n".join(lines)
