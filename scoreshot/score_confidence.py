from __future__ import annotations

from .score_models import ExtractedGameData, ExtractedPlayer
from .scoring_rules import BREAKDOWN_FIELDS, PLACEHOLDER_NAMES, WINGSPAN_CONSTRAINTS, ScoringConstraints

BASE_CONFIDENCE = 0.4
PLAYER_COUNT_WEIGHT = 0.1
NAMES_PRESENT_WEIGHT = 0.15
NAMES_PLAUSIBLE_WEIGHT = 0.05
TOTALS_IN_RANGE_WEIGHT = 0.1
BREAKDOWN_INTEGERS_WEIGHT = 0.05
BREAKDOWN_EXACT_WEIGHT = 0.15
BREAKDOWN_CLOSE_WEIGHT = 0.08
CATEGORIES_IN_RANGE_WEIGHT = 0.1
RANKING_CONSISTENT_WEIGHT = 0.05


def calculate_confidence(
    game: ExtractedGameData,
    constraints: ScoringConstraints = WINGSPAN_CONSTRAINTS,
) -> float:
    """Score how plausible an extraction looks, from 0.0 to 1.0.

    Advisory only: the value orders results for a reviewer and never
    blocks anything on its own.
    """
    players = game.players
    if not players:
        return 0.0

    confidence = BASE_CONFIDENCE

    if constraints.min_players <= len(players) <= constraints.max_players:
        confidence += PLAYER_COUNT_WEIGHT

    if all(player.player_name.strip() for player in players):
        confidence += NAMES_PRESENT_WEIGHT

    if all(_name_looks_real(player, constraints) for player in players):
        confidence += NAMES_PLAUSIBLE_WEIGHT

    if all(_total_in_range(player, constraints) for player in players):
        confidence += TOTALS_IN_RANGE_WEIGHT

    if all(_breakdown_is_non_negative_ints(player) for player in players):
        confidence += BREAKDOWN_INTEGERS_WEIGHT

    if all(player.breakdown_sum() == player.total_score for player in players):
        confidence += BREAKDOWN_EXACT_WEIGHT
    elif all(abs(player.breakdown_sum() - player.total_score) <= 1 for player in players):
        confidence += BREAKDOWN_CLOSE_WEIGHT

    if all(_categories_in_range(player, constraints) for player in players):
        confidence += CATEGORIES_IN_RANGE_WEIGHT

    ranked = sorted((player.total_score for player in players), reverse=True)
    if all(ranked[index] <= ranked[index - 1] for index in range(1, len(ranked))):
        confidence += RANKING_CONSISTENT_WEIGHT

    return min(confidence, 1.0)


def _name_looks_real(player: ExtractedPlayer, constraints: ScoringConstraints) -> bool:
    name = player.player_name.strip()
    return len(name) >= constraints.min_name_length and name.lower() not in PLACEHOLDER_NAMES


def _total_in_range(player: ExtractedPlayer, constraints: ScoringConstraints) -> bool:
    total = player.total_score
    return (
        _is_int(total)
        and constraints.min_total_score <= total <= constraints.max_total_score
    )


def _breakdown_is_non_negative_ints(player: ExtractedPlayer) -> bool:
    return all(_is_int(value) and value >= 0 for value in player.scoring_breakdown.values().values())


def _categories_in_range(player: ExtractedPlayer, constraints: ScoringConstraints) -> bool:
    breakdown = player.scoring_breakdown
    return all(
        getattr(breakdown, field_name) <= constraints.category_ceiling(field_name)
        for field_name in BREAKDOWN_FIELDS
    )


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
