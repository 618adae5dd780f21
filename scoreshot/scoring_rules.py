from __future__ import annotations

from dataclasses import dataclass

BREAKDOWN_FIELDS = (
    "birds",
    "bonus_cards",
    "end_of_round_goals",
    "eggs",
    "food_on_cards",
    "tucked_cards",
    "nectar",
)

BREAKDOWN_WIRE_KEYS = {
    "birds": "birds",
    "bonus_cards": "bonusCards",
    "end_of_round_goals": "endOfRoundGoals",
    "eggs": "eggs",
    "food_on_cards": "foodOnCards",
    "tucked_cards": "tuckedCards",
    "nectar": "nectar",
}

BREAKDOWN_LABELS = {
    "birds": "Birds score",
    "bonus_cards": "Bonus cards",
    "end_of_round_goals": "End-of-round goals",
    "eggs": "Eggs",
    "food_on_cards": "Food on cards",
    "tucked_cards": "Tucked cards",
    "nectar": "Nectar",
}

PLACEHOLDER_NAMES = frozenset({"player", "name", "total", "score", "unknown", "???", "..."})
GENERIC_NOTE_PHRASES = ("no issues", "no uncertainty", "extraction successful", "all clear")


@dataclass(frozen=True)
class ScoringConstraints:
    """Plausibility limits observed across real Wingspan score screens.

    Tuned from league data rather than derived from the rulebook, so treat
    them as calibration constants.
    """

    min_total_score: int = 30
    max_total_score: int = 180
    max_birds: int = 100
    max_bonus_cards: int = 50
    max_end_of_round_goals: int = 25
    max_eggs: int = 40
    max_food_on_cards: int = 50
    max_tucked_cards: int = 40
    max_nectar: int = 20
    min_players: int = 1
    max_players: int = 5
    min_name_length: int = 2

    def category_ceiling(self, field_name: str) -> int:
        return getattr(self, f"max_{field_name}")


WINGSPAN_CONSTRAINTS = ScoringConstraints()
