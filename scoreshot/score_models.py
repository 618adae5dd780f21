from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .scoring_rules import BREAKDOWN_FIELDS, BREAKDOWN_WIRE_KEYS


@dataclass
class RawUpload:
    content: bytes
    media_type: str
    filename: str

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class PreparedImage:
    content: bytes
    media_type: str
    resized: bool = False
    width: int | None = None
    height: int | None = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ScoringBreakdown:
    birds: int = 0
    bonus_cards: int = 0
    end_of_round_goals: int = 0
    eggs: int = 0
    food_on_cards: int = 0
    tucked_cards: int = 0
    nectar: int = 0

    def values(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in BREAKDOWN_FIELDS}

    def total(self) -> int:
        return sum(self.values().values())

    def to_dict(self) -> dict[str, int]:
        return {BREAKDOWN_WIRE_KEYS[name]: value for name, value in self.values().items()}


@dataclass
class ExtractedPlayer:
    player_name: str
    total_score: int = 0
    scoring_breakdown: ScoringBreakdown = field(default_factory=ScoringBreakdown)
    placement: int = 0

    def breakdown_sum(self) -> int:
        return self.scoring_breakdown.total()

    def to_dict(self) -> dict[str, Any]:
        return {
            "playerName": self.player_name,
            "placement": self.placement,
            "totalScore": self.total_score,
            "scoringBreakdown": self.scoring_breakdown.to_dict(),
        }


@dataclass
class ExtractedGameData:
    players: list[ExtractedPlayer] = field(default_factory=list)
    extraction_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"players": [player.to_dict() for player in self.players]}
        if self.extraction_notes is not None:
            payload["extractionNotes"] = self.extraction_notes
        return payload


@dataclass
class ScreenshotExtractionResult:
    extracted_data: ExtractedGameData
    confidence: float
    warnings: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "extractedData": self.extracted_data.to_dict(),
            "confidence": self.confidence,
        }
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload
