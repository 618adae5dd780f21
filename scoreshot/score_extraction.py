from __future__ import annotations

import logging
import time
from typing import Any

from .image_preparation import ImageLimits, prepare_image
from .score_confidence import calculate_confidence
from .score_models import RawUpload, ScreenshotExtractionResult
from .score_normalization import normalize_model_output, sanitize_player_name
from .score_warnings import extract_warnings
from .scoring_rules import WINGSPAN_CONSTRAINTS, ScoringConstraints
from .vision_providers import build_default_provider

logger = logging.getLogger(__name__)

CATEGORY_ALIASES = (
    ('"Bonus Cards"', '"Bonus" or "End-of-game bonuses"'),
    ('"End-of-Round Goals"', '"Round goals" or "Goals"'),
    ('"Food on Cards"', '"Cached food" or "Food cached"'),
    ('"Tucked Cards"', '"Tucked" or "Cards tucked"'),
)


def build_extraction_prompt() -> str:
    alias_lines = "\n".join(f"  - {label} may appear as {aliases}" for label, aliases in CATEGORY_ALIASES)
    return (
        "You are extracting final scores from a Wingspan board game end-of-game screenshot.\n\n"
        "WINGSPAN SCORING LAYOUT:\n"
        "The score screen shows a table with players as columns and scoring categories as rows:\n"
        "- Row order (top to bottom): Birds, Bonus Cards, End-of-Round Goals, Eggs, Food on Cards, "
        "Tucked Cards, Nectar (if Oceania expansion)\n"
        "- The TOTAL score is shown prominently for each player\n"
        "- Player names appear at the top of each column\n"
        "- Some versions label categories differently:\n"
        f"{alias_lines}\n\n"
        "EXTRACTION INSTRUCTIONS:\n"
        "1. Identify each player's column by their username at the top\n"
        "2. For each player, read down their column to get each scoring category value\n"
        "3. The displayed total should equal: birds + bonusCards + endOfRoundGoals + eggs + "
        "foodOnCards + tuckedCards + nectar\n"
        "4. If the nectar row is missing (base game without Oceania), use 0 for nectar\n\n"
        "CRITICAL VERIFICATION:\n"
        "- Double-check that the sum of breakdown values equals the displayed total for each player\n"
        "- If they don't match, re-read the values carefully - OCR errors are common with "
        "similar-looking digits (0/8, 1/7, 3/8, 5/6)\n"
        "- Player names are case-sensitive - preserve exact capitalization\n\n"
        "Return ONLY valid JSON (no markdown, no explanation):\n"
        "{\n"
        '  "players": [\n'
        "    {\n"
        '      "playerName": "ExactPlayerName",\n'
        '      "totalScore": 0,\n'
        '      "scoringBreakdown": {\n'
        '        "birds": 0,\n'
        '        "bonusCards": 0,\n'
        '        "endOfRoundGoals": 0,\n'
        '        "eggs": 0,\n'
        '        "foodOnCards": 0,\n'
        '        "tuckedCards": 0,\n'
        '        "nectar": 0\n'
        "      }\n"
        "    }\n"
        "  ],\n"
        '  "extractionNotes": "Any uncertainty or issues noticed during extraction"\n'
        "}"
    )


class ScreenshotScoreService:
    """Runs one upload through prepare -> extract -> normalize -> score -> warn.

    Every stage runs once, in order. Failures propagate as the stage's own
    typed error; nothing here retries or persists.
    """

    def __init__(
        self,
        *,
        provider: Any | None = None,
        limits: ImageLimits | None = None,
        constraints: ScoringConstraints = WINGSPAN_CONSTRAINTS,
    ) -> None:
        self.provider = provider or build_default_provider()
        self.limits = limits or ImageLimits()
        self.constraints = constraints

    def provider_status(self) -> dict[str, Any]:
        return self.provider.availability()

    def extract(self, upload: RawUpload) -> ScreenshotExtractionResult:
        started = time.monotonic()

        image = prepare_image(upload, self.limits)
        prepared_at = time.monotonic()

        provider_result = self.provider.extract_text(prompt=build_extraction_prompt(), image=image)
        extracted_at = time.monotonic()

        game = normalize_model_output(provider_result.text)
        for player in game.players:
            player.player_name = sanitize_player_name(player.player_name)

        confidence = calculate_confidence(game, self.constraints)
        warnings = extract_warnings(game, self.constraints)
        finished = time.monotonic()

        metadata = {
            "model_used": provider_result.model_used,
            "original_bytes": upload.size,
            "prepared_bytes": image.size,
            "prepared_media_type": image.media_type,
            "resized": image.resized,
            "timings_ms": {
                "prepare": _elapsed_ms(started, prepared_at),
                "extract": _elapsed_ms(prepared_at, extracted_at),
                "normalize": _elapsed_ms(extracted_at, finished),
                "total": _elapsed_ms(started, finished),
            },
        }
        logger.info(
            "Extracted %s players from %s (confidence=%.2f, warnings=%s, %sms)",
            len(game.players),
            upload.filename,
            confidence,
            len(warnings),
            metadata["timings_ms"]["total"],
        )
        return ScreenshotExtractionResult(
            extracted_data=game,
            confidence=confidence,
            warnings=warnings,
            metadata=metadata,
        )


def _elapsed_ms(start: float, end: float) -> int:
    return int((end - start) * 1000)
