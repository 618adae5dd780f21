from __future__ import annotations

from .score_models import ExtractedGameData
from .scoring_rules import (
    BREAKDOWN_FIELDS,
    BREAKDOWN_LABELS,
    BREAKDOWN_WIRE_KEYS,
    GENERIC_NOTE_PHRASES,
    WINGSPAN_CONSTRAINTS,
    ScoringConstraints,
)

NO_PLAYERS_WARNING = "No players detected in screenshot"
DUPLICATE_NAMES_WARNING = "Duplicate player names detected - please verify"


def extract_warnings(
    game: ExtractedGameData,
    constraints: ScoringConstraints = WINGSPAN_CONSTRAINTS,
) -> list[str]:
    """List every anomaly a reviewer should look at before saving.

    An empty list means nothing notable was found, not that the
    extraction is correct.
    """
    players = game.players
    if not players:
        return [NO_PLAYERS_WARNING]

    warnings: list[str] = []

    if len(players) > constraints.max_players:
        warnings.append(f"Detected {len(players)} players (max is {constraints.max_players})")

    for position, player in enumerate(players, start=1):
        name = player.player_name.strip()
        if not name:
            warnings.append(f"Player {position}: Missing name")
        elif len(name) < constraints.min_name_length:
            warnings.append(f'Player {position}: Name "{name}" seems too short')

    for player in players:
        breakdown_sum = player.breakdown_sum()
        difference = abs(breakdown_sum - player.total_score)
        if difference > 0:
            warnings.append(
                f"{player.player_name}: Breakdown sum ({breakdown_sum}) differs from total "
                f"({player.total_score}) by {difference} points - please verify"
            )

    for player in players:
        if player.total_score < constraints.min_total_score:
            warnings.append(f"{player.player_name}: Score {player.total_score} is unusually low - please verify")
        if player.total_score > constraints.max_total_score:
            warnings.append(f"{player.player_name}: Score {player.total_score} is unusually high - please verify")

    for player in players:
        breakdown = player.scoring_breakdown
        for field_name in BREAKDOWN_FIELDS:
            value = getattr(breakdown, field_name)
            if value > constraints.category_ceiling(field_name):
                warnings.append(
                    f"{player.player_name}: {BREAKDOWN_LABELS[field_name]} {value} exceeds typical maximum"
                )

    for player in players:
        negative_keys = [
            BREAKDOWN_WIRE_KEYS[field_name]
            for field_name, value in player.scoring_breakdown.values().items()
            if value < 0
        ]
        if negative_keys:
            warnings.append(f"{player.player_name}: Negative values detected ({', '.join(negative_keys)})")

    names = [player.player_name.strip().lower() for player in players]
    names = [name for name in names if name]
    if len(set(names)) < len(names):
        warnings.append(DUPLICATE_NAMES_WARNING)

    notes = (game.extraction_notes or "").strip()
    if notes and not any(phrase in notes.lower() for phrase in GENERIC_NOTE_PHRASES):
        warnings.append(f"AI notes: {notes}")

    return warnings
