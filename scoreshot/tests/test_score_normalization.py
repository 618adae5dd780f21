from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from scoreshot.score_models import ScoringBreakdown  # noqa: E402
from scoreshot.score_normalization import (  # noqa: E402
    ScoreParseError,
    coerce_score_value,
    extract_json_payload,
    normalize_model_output,
    placements_from_total_scores,
    sanitize_player_name,
)


def _player(name: str, total: int, **breakdown) -> dict:
    return {"playerName": name, "totalScore": total, "scoringBreakdown": breakdown}


def _reply(players: list, **extra) -> str:
    return json.dumps({"players": players, **extra})


def test_extract_json_payload_prefers_fenced_block():
    text = """
Here are the scores I found {not json}.
```json
{"players": [], "extractionNotes": "fenced"}
```
"""
    assert extract_json_payload(text) == {"players": [], "extractionNotes": "fenced"}


def test_extract_json_payload_accepts_untagged_fence():
    text = '```\n{"players": [{"playerName": "Ana"}]}\n```'

    assert extract_json_payload(text)["players"][0]["playerName"] == "Ana"


def test_extract_json_payload_finds_balanced_object_in_prose():
    text = (
        'Sure! {"players": [{"playerName": "Brace } Lover", "scoringBreakdown": {"birds": 40}}], '
        '"extractionNotes": "nested {braces} in strings"} Let me know if you need more.'
    )

    payload = extract_json_payload(text)

    assert payload["players"][0]["playerName"] == "Brace } Lover"
    assert payload["extractionNotes"] == "nested {braces} in strings"


@pytest.mark.parametrize(
    "prefix",
    [
        "I read {3} columns. ",
        "Row { was blurry. ",
        "Layout: {players x rows} -> ",
        'Example shape: {"note": "ignore"} Actual: ',
    ],
)
def test_stray_braces_in_prose_do_not_hide_payload(prefix):
    text = prefix + '{"players": [{"playerName": "Ana", "scoringBreakdown": {"birds": 40}}]}'

    payload = extract_json_payload(text)

    assert payload["players"][0]["playerName"] == "Ana"


def test_fenced_block_with_trailing_line_is_read():
    text = (
        "```json\n"
        '{"players": [{"playerName": "Ana"}]}\n'
        "Second column was hard to read\n"
        "```\n"
        "Also see:\n"
        "```json\n"
        '{"summary": "done"}\n'
        "```"
    )

    assert extract_json_payload(text) == {"players": [{"playerName": "Ana"}]}


def test_later_fence_with_players_beats_earlier_fence_without():
    text = (
        '```json\n{"columns": 3}\n```\n'
        '```json\n{"players": [], "extractionNotes": "second fence"}\n```'
    )

    assert extract_json_payload(text)["extractionNotes"] == "second fence"


def test_object_without_players_is_returned_when_nothing_better_exists():
    assert extract_json_payload('Result: {"extractionNotes": "empty"}') == {"extractionNotes": "empty"}


@pytest.mark.parametrize(
    "text",
    [
        "",
        "I could not read this screenshot.",
        '{"players": [',
        "```json\n{'players': []}\n```",
        "{players: []}",
    ],
)
def test_extract_json_payload_rejects_unusable_replies(text):
    with pytest.raises(ScoreParseError):
        extract_json_payload(text)


def test_players_list_is_required():
    with pytest.raises(ScoreParseError, match="players array missing"):
        normalize_model_output('{"extractionNotes": "empty"}')
    with pytest.raises(ScoreParseError, match="must be an array"):
        normalize_model_output('{"players": {"playerName": "Ana"}}')


def test_total_is_recomputed_from_breakdown():
    reply = _reply(
        [_player("Ana", 120, birds=50, bonusCards=20, endOfRoundGoals=15, eggs=14, foodOnCards=10, tuckedCards=8, nectar=2)]
    )

    game = normalize_model_output(reply)

    player = game.players[0]
    assert player.total_score == 119
    assert player.scoring_breakdown == ScoringBreakdown(
        birds=50,
        bonus_cards=20,
        end_of_round_goals=15,
        eggs=14,
        food_on_cards=10,
        tucked_cards=8,
        nectar=2,
    )


def test_total_invariant_holds_for_every_player():
    reply = _reply(
        [
            _player("Ana", 999, birds="41", eggs=12.0, nectar=-4),
            _player("Bo", 3, bonusCards=7, tuckedCards="x"),
            {"playerName": "Cy", "totalScore": 77},
        ]
    )

    game = normalize_model_output(reply)

    for player in game.players:
        breakdown = player.scoring_breakdown
        assert player.total_score == (
            breakdown.birds
            + breakdown.bonus_cards
            + breakdown.end_of_round_goals
            + breakdown.eggs
            + breakdown.food_on_cards
            + breakdown.tucked_cards
            + breakdown.nectar
        )
    assert [player.total_score for player in game.players] == [53, 7, 0]


def test_missing_breakdown_becomes_zeroes():
    game = normalize_model_output(_reply([{"playerName": "Cy", "totalScore": 77}]))

    assert game.players[0].scoring_breakdown == ScoringBreakdown()
    assert game.players[0].total_score == 0


def test_malformed_player_entries_do_not_abort_the_batch():
    reply = _reply(["garbage", None, _player("Ana", 60, birds=60)])

    game = normalize_model_output(reply)

    assert [player.player_name for player in game.players] == ["", "", "Ana"]
    assert [player.total_score for player in game.players] == [0, 0, 60]
    assert [player.placement for player in game.players] == [2, 2, 1]


@pytest.mark.parametrize(
    ("raw_value", "expected"),
    [
        (12, 12),
        ("12", 12),
        (" 7 ", 7),
        ("12.0", 12),
        (9.0, 9),
        (0, 0),
        (-3, 0),
        ("-3", 0),
        (2.5, 0),
        ("2.5", 0),
        ("abc", 0),
        ("", 0),
        (None, 0),
        (True, 0),
        (float("nan"), 0),
        (float("inf"), 0),
        ([4], 0),
        ({"value": 4}, 0),
    ],
)
def test_coerce_score_value(raw_value, expected):
    assert coerce_score_value(raw_value) == expected


@pytest.mark.parametrize(
    ("totals", "expected"),
    [
        ([100, 100, 90, 80], [1, 1, 3, 4]),
        ([95, 90, 85, 80, 75], [1, 2, 3, 4, 5]),
        ([70, 70, 70, 70], [1, 1, 1, 1]),
        ([80, 100, 90, 100], [4, 1, 3, 1]),
        ([50, 60, 60, 40, 40], [3, 1, 1, 4, 4]),
        ([42], [1]),
        ([], []),
    ],
)
def test_placements_from_total_scores_uses_competition_ranking(totals, expected):
    assert placements_from_total_scores(totals) == expected


def test_placements_follow_recomputed_totals_not_reported_ones():
    reply = _reply(
        [
            _player("Ana", 150, birds=40),
            _player("Bo", 60, birds=70),
        ]
    )

    game = normalize_model_output(reply)

    assert [player.placement for player in game.players] == [2, 1]


def test_normalization_is_idempotent():
    reply = """```json
{"players": [
  {"playerName": " Ana ", "totalScore": 88, "scoringBreakdown": {"birds": "30", "eggs": 12.7, "nectar": 4}},
  {"playerName": "Bo", "totalScore": 88, "scoringBreakdown": {"birds": 34}}
], "extractionNotes": "Column two was blurry"}
```"""

    first = normalize_model_output(reply)
    second = normalize_model_output(reply)

    assert first == second
    assert json.dumps(first.to_dict(), sort_keys=True) == json.dumps(second.to_dict(), sort_keys=True)
    assert first.players[0].player_name == "Ana"
    assert first.extraction_notes == "Column two was blurry"


def test_non_string_notes_are_dropped():
    game = normalize_model_output(_reply([], extractionNotes=["list", "of", "notes"]))

    assert game.extraction_notes is None
    assert "extractionNotes" not in game.to_dict()


def test_to_dict_uses_wire_keys():
    game = normalize_model_output(_reply([_player("Ana", 0, bonusCards=5, endOfRoundGoals=3)]))

    assert game.to_dict()["players"][0] == {
        "playerName": "Ana",
        "placement": 1,
        "totalScore": 8,
        "scoringBreakdown": {
            "birds": 0,
            "bonusCards": 5,
            "endOfRoundGoals": 3,
            "eggs": 0,
            "foodOnCards": 0,
            "tuckedCards": 0,
            "nectar": 0,
        },
    }


def test_sanitize_player_name():
    assert sanitize_player_name('  <b>"Robin"</b>  ') == "bRobin/b"
    assert sanitize_player_name("x" * 80) == "x" * 50
    assert sanitize_player_name("O'Hare") == "OHare"
