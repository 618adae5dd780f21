from __future__ import annotations

import json
import math
import re
from typing import Any, Sequence

from .score_models import ExtractedGameData, ExtractedPlayer, ScoringBreakdown
from .scoring_rules import BREAKDOWN_FIELDS, BREAKDOWN_WIRE_KEYS

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", flags=re.DOTALL | re.IGNORECASE)
UNSAFE_NAME_CHARACTERS = re.compile(r"[<>\"']")
MAX_PLAYER_NAME_LENGTH = 50


class ScoreParseError(RuntimeError):
    pass


def extract_json_payload(text: str) -> dict[str, Any]:
    """Locate and parse the JSON object embedded in a model reply.

    Objects inside ```json fences are tried before objects found anywhere
    in the text. The first object carrying a ``players`` key wins; failing
    that, the first object found is returned.
    """
    if not isinstance(text, str) or not text.strip():
        raise ScoreParseError("Model reply was empty.")

    candidates: list[dict[str, Any]] = []
    for fenced_match in FENCED_BLOCK_PATTERN.finditer(text):
        candidates.extend(_decode_objects(fenced_match.group(1)))
    candidates.extend(_decode_objects(text))

    if not candidates:
        raise ScoreParseError("Could not extract JSON from model reply.")
    for payload in candidates:
        if "players" in payload:
            return payload
    return candidates[0]


def coerce_score_value(raw_value: Any) -> int:
    """Return a non-negative int, or 0 for anything that is not one."""
    if isinstance(raw_value, bool) or raw_value is None:
        return 0
    if isinstance(raw_value, int):
        return raw_value if raw_value >= 0 else 0
    if isinstance(raw_value, str):
        stripped = raw_value.strip()
        if not stripped:
            return 0
        try:
            return coerce_score_value(int(stripped))
        except ValueError:
            pass
        try:
            raw_value = float(stripped)
        except ValueError:
            return 0
    if isinstance(raw_value, float):
        if not math.isfinite(raw_value) or raw_value < 0 or not raw_value.is_integer():
            return 0
        return int(raw_value)
    return 0


def normalize_breakdown(raw_breakdown: Any) -> ScoringBreakdown:
    if not isinstance(raw_breakdown, dict):
        return ScoringBreakdown()
    values = {
        field_name: coerce_score_value(raw_breakdown.get(BREAKDOWN_WIRE_KEYS[field_name]))
        for field_name in BREAKDOWN_FIELDS
    }
    return ScoringBreakdown(**values)


def normalize_player_entry(raw_entry: Any) -> ExtractedPlayer:
    if not isinstance(raw_entry, dict):
        raw_entry = {}

    raw_name = raw_entry.get("playerName")
    if raw_name is None:
        player_name = ""
    else:
        player_name = str(raw_name).strip()

    breakdown = normalize_breakdown(raw_entry.get("scoringBreakdown"))
    # The breakdown digits are read individually and are more reliable than
    # the model's total, so the total is always recomputed.
    return ExtractedPlayer(
        player_name=player_name,
        total_score=breakdown.total(),
        scoring_breakdown=breakdown,
    )


def placements_from_total_scores(totals: Sequence[int]) -> list[int]:
    """Competition ranking: [100, 100, 90, 80] -> [1, 1, 3, 4], in input order."""
    order = sorted(range(len(totals)), key=lambda index: totals[index], reverse=True)
    placements = [0] * len(totals)
    rank = 1
    for position, index in enumerate(order):
        if position > 0 and totals[index] != totals[order[position - 1]]:
            rank = position + 1
        placements[index] = rank
    return placements


def assign_placements(game: ExtractedGameData) -> ExtractedGameData:
    placements = placements_from_total_scores([player.total_score for player in game.players])
    for player, placement in zip(game.players, placements):
        player.placement = placement
    return game


def normalize_game_payload(payload: dict[str, Any]) -> ExtractedGameData:
    players_raw = payload.get("players")
    if players_raw is None:
        raise ScoreParseError("Invalid data structure: players array missing.")
    if not isinstance(players_raw, list):
        raise ScoreParseError("Invalid data structure: players must be an array.")

    notes_raw = payload.get("extractionNotes")
    game = ExtractedGameData(
        players=[normalize_player_entry(entry) for entry in players_raw],
        extraction_notes=notes_raw if isinstance(notes_raw, str) else None,
    )
    return assign_placements(game)


def normalize_model_output(text: str) -> ExtractedGameData:
    return normalize_game_payload(extract_json_payload(text))


def sanitize_player_name(name: str) -> str:
    cleaned = UNSAFE_NAME_CHARACTERS.sub("", (name or "").strip())
    return cleaned[:MAX_PLAYER_NAME_LENGTH]


def _decode_objects(text: str) -> list[dict[str, Any]]:
    # Try each opening brace so stray braces in prose do not hide the payload.
    decoder = json.JSONDecoder()
    found: list[dict[str, Any]] = []
    position = text.find("{")
    while position >= 0:
        try:
            payload, end = decoder.raw_decode(text, position)
        except json.JSONDecodeError:
            position = text.find("{", position + 1)
            continue
        if isinstance(payload, dict):
            found.append(payload)
        position = text.find("{", end)
    return found
