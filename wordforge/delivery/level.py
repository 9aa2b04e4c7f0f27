"""
Level Adaptation Engine.

Moves the learner's global difficulty tier one step at a time based on
rolling accuracy over the most recently reviewed words:
- Promote when accuracy > 80% and at least 5 words at the current tier are mastered
- Demote when accuracy < 50%

Deterministic; evaluation is skipped until the deck is large enough.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from .word_record import DIFFICULTY_ORDER, VocabDifficulty, WordRecord, WordStatus


@dataclass
class LevelConfig:
    """Thresholds for level adaptation."""

    up_threshold: float = 0.80
    down_threshold: float = 0.50
    mastered_min: int = 5  # Mastered words at current tier before promotion
    min_reviewed_in_sample: int = 5
    sample_size: int = 20
    min_words: int = 10  # Deck size before adaptation kicks in


@dataclass(frozen=True)
class LevelEvaluation:
    """Result of one level evaluation."""

    previous: VocabDifficulty
    level: VocabDifficulty
    accuracy: float | None = None
    sample_size: int = 0
    mastered_at_level: int = 0

    @property
    def changed(self) -> bool:
        return self.level != self.previous

    @property
    def promoted(self) -> bool:
        return DIFFICULTY_ORDER.index(self.level) > DIFFICULTY_ORDER.index(self.previous)


class LevelAdaptationEngine:
    """Promotes or demotes the learner's vocabulary tier."""

    def __init__(self, config: LevelConfig | None = None):
        self.config = config or LevelConfig()

    def rolling_sample(self, words: Sequence[WordRecord]) -> list[WordRecord]:
        """Most recently reviewed words, newest first, capped at sample_size."""
        reviewed = [w for w in words if w.total_reviews > 0]
        reviewed.sort(key=lambda w: w.last_reviewed or datetime.min, reverse=True)
        return reviewed[: self.config.sample_size]

    def evaluate(
        self,
        words: Sequence[WordRecord],
        current: VocabDifficulty,
    ) -> LevelEvaluation:
        """
        Evaluate the learner's tier.

        Args:
            words: Every word in the deck
            current: The learner's current tier

        Returns:
            LevelEvaluation (level == previous when nothing changes)
        """
        cfg = self.config
        unchanged = LevelEvaluation(previous=current, level=current)

        if len(words) < cfg.min_words:
            return unchanged

        sample = self.rolling_sample(words)
        if len(sample) < cfg.min_reviewed_in_sample:
            return unchanged

        total = sum(w.total_reviews for w in sample)
        correct = sum(w.correct_reviews for w in sample)
        accuracy = correct / total

        mastered_at_level = sum(
            1 for w in words if w.status == WordStatus.MASTERED and w.difficulty == current
        )

        idx = DIFFICULTY_ORDER.index(current)
        level = current
        if (
            accuracy > cfg.up_threshold
            and mastered_at_level >= cfg.mastered_min
            and idx < len(DIFFICULTY_ORDER) - 1
        ):
            level = DIFFICULTY_ORDER[idx + 1]
        elif accuracy < cfg.down_threshold and idx > 0:
            level = DIFFICULTY_ORDER[idx - 1]

        evaluation = LevelEvaluation(
            previous=current,
            level=level,
            accuracy=accuracy,
            sample_size=len(sample),
            mastered_at_level=mastered_at_level,
        )

        if evaluation.changed:
            logger.info(
                f"Vocab level {current.value} -> {level.value} "
                f"(accuracy {accuracy:.0%} over {len(sample)} words)"
            )
        return evaluation
