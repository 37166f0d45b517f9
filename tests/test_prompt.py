from datetime import datetime, timezone

from sportswriter.models import Match, MatchStatistics, ProcessingState
from sportswriter.prompt import build_prompt, format_history_entry

TEMPLATE = "Write a lively preview."


def _match(odds=None) -> Match:
    return Match(
        match_code="M1",
        region="England",
        home_team="Arsenal",
        away_team="Chelsea",
        kickoff_datetime=datetime(2026, 3, 10, 19, 45, tzinfo=timezone.utc),
        time_zone="Europe/London",
        provider="test",
        odds=odds or {},
        processing_state=ProcessingState.IN_PROGRESS,
        processed_started_at="2026-03-10T12:00:00+00:00",
        process_completed_at=None,
        processed_failed_at=None,
        created_at="2026-03-10T09:00:00+00:00",
    )


def _row(home, away, date, ht=(1, 0), ft=(2, 1)):
    row = {
        "home_team_name": home,
        "away_team_name": away,
        "home_ft_score": ft[0],
        "away_ft_score": ft[1],
        "match_date": date,
    }
    if ht is not None:
        row["home_ht_score"] = ht[0]
        row["away_ht_score"] = ht[1]
    return row


def test_empty_statistics_yield_template_and_match_details_only():
    prompt = build_prompt(_match(), {}, TEMPLATE)

    assert prompt.startswith(TEMPLATE + "\n\nMatch Details:")
    assert "- Upcoming Match: Arsenal vs Chelsea" in prompt
    assert "- Home team: Arsenal" in prompt
    assert "- Away team: Chelsea" in prompt
    assert "- Match Date: 2026-03-10 19:45 UTC" in prompt
    assert "- Region: England" in prompt
    assert "Betting Odds Breakdown" not in prompt
    assert "Match History Analysis" not in prompt
    assert "Head-to-Head History" not in prompt


def test_history_is_rendered_newest_first():
    stats = MatchStatistics(
        home_matches=[
            _row("Arsenal", "Spurs", "2026-01-01"),
            _row("Leeds", "Arsenal", "2026-02-01", ht=None, ft=(0, 0)),
        ],
        away_matches=[],
        head_to_head=[_row("Chelsea", "Arsenal", "2025-10-01", ht=(0, 0), ft=(1, 1))],
    )

    prompt = build_prompt(_match(), stats, TEMPLATE)

    home_block = (
        "Home Team Recent Performance:\n"
        "-Leeds vs Arsenal. Full time: 0:0. Date: 2026-02-01\n"
        "-Arsenal vs Spurs. Half time: 1:0. Full time: 2:1. Date: 2026-01-01"
    )
    assert home_block in prompt
    assert "Away Team Recent Performance" not in prompt
    assert (
        "Head-to-Head History:\n"
        "-Chelsea vs Arsenal. Half time: 0:0. Full time: 1:1. Date: 2025-10-01"
    ) in prompt
    assert prompt.index("Match History Analysis:") < prompt.index("Home Team Recent Performance")


def test_odds_block_uses_all_eight_keys():
    odds = {
        "1": "1.90",
        "2": "4.20",
        "12": "1.25",
        "x": "3.60",
        "1x": "1.28",
        "x2": "1.95",
        "u_2_5": "2.05",
        "o_2_5": "1.80",
    }

    prompt = build_prompt(_match(odds), None, TEMPLATE)

    expected = "\n".join(
        [
            "Betting Odds Breakdown:",
            "- Home Win (Arsenal): 1.90",
            "- Away Win (Chelsea): 4.20",
            "- Either team to Win: 1.25",
            "- Draw: 3.60",
            "- Home win or draw: 1.28",
            "- Away win or draw: 1.95",
            "- Total goals, less than 3 goals: 2.05",
            "- Total goals, 3 goals or more: 1.80",
        ]
    )
    assert expected in prompt
    assert prompt.index("Match Details:") < prompt.index("Betting Odds Breakdown:")


def test_partial_odds_render_missing_values_as_na():
    prompt = build_prompt(_match({"1": "1.90"}), {}, TEMPLATE)

    assert "- Home Win (Arsenal): 1.90" in prompt
    assert "- Draw: n/a" in prompt
    assert "- Total goals, 3 goals or more: n/a" in prompt


def test_missing_statistics_keys_never_raise():
    prompt = build_prompt(_match(), {"home_matches": None, "unexpected": [1]}, "")
    assert prompt.startswith("Match Details:")


def test_format_history_entry_omits_half_time_when_partial():
    entry = {
        "home_team_name": "A",
        "away_team_name": "B",
        "home_ht_score": 1,
        "home_ft_score": 2,
        "away_ft_score": 2,
        "match_date": "2026-01-01",
    }
    assert format_history_entry(entry) == "-A vs B. Full time: 2:2. Date: 2026-01-01"
