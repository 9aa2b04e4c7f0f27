"""
SM-2 Spaced Repetition Scheduler.

Implements:
- SM-2 interval / ease updates driven by the adjusted quality
- Status derivation from repetitions and interval
- Review bookkeeping (counters, latency average, failed quiz types)
- Reward events for the external economy

Intervals: 1 day after the first correct review, 3 after the second,
then interval * ease (capped at 365). A lapse steps repetitions back by one
instead of resetting, so a mastered word drops to 'reviewing' rather than
starting over.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from loguru import logger

from wordforge.integrations.rewards import (
    MasteryReward,
    RewardEvent,
    RewardSink,
    ReviewReward,
    tier_for_quality,
)

from .quality import QualityConfig, ReviewSignal, adjust_quality, clamp_quality, is_correct
from .word_record import WordRecord, WordStatus

# =============================================================================
# SM-2 Algorithm
# =============================================================================


@dataclass
class SM2Config:
    """Configuration for SM-2 algorithm."""

    default_ease: float = 2.5
    min_ease: float = 1.3
    max_ease: float = 3.0
    max_interval: int = 365  # Days
    first_interval: int = 1  # Days after first correct review
    second_interval: int = 3  # Days after second correct review
    reviewing_threshold: int = 3  # Repetitions to leave 'learning'
    mastery_interval: int = 21  # Interval (days) to count as 'mastered'
    response_time_decay: float = 0.7  # Weight of previous average


@dataclass(frozen=True)
class ScheduleState:
    ease_factor: float
    interval: int
    repetitions: int


@dataclass(frozen=True)
class ScheduleResult:
    ease_factor: float
    interval: int
    repetitions: int
    status: WordStatus
    next_review_date: date


@dataclass
class ReviewOutcome:
    """Result of applying one review to a word."""

    word: WordRecord
    raw_quality: int
    adjusted_quality: int
    correct: bool
    previous_status: WordStatus
    newly_mastered: bool = False
    events: list[RewardEvent] = field(default_factory=list)


def derive_status(repetitions: int, interval: int, config: SM2Config | None = None) -> WordStatus:
    """Status of a reviewed word as a pure function of repetitions and interval."""
    config = config or SM2Config()
    if repetitions < config.reviewing_threshold:
        return WordStatus.LEARNING
    if interval < config.mastery_interval:
        return WordStatus.REVIEWING
    return WordStatus.MASTERED


class SM2Scheduler:
    """
    Implements the SM-2 spaced repetition algorithm for vocabulary.

    Each word has:
    - Ease Factor (EF): growth multiplier, clamped to [1.3, 3.0]
    - Interval: days until next review
    - Repetitions: consecutive correct reviews since the last lapse
    """

    def __init__(
        self,
        config: SM2Config | None = None,
        quality_config: QualityConfig | None = None,
        rewards: RewardSink | None = None,
    ):
        """
        Initialize SM-2 scheduler.

        Args:
            config: Custom configuration (uses defaults if None)
            quality_config: Quality adjustment thresholds
            rewards: Sink for reward events (events are only returned if None)
        """
        self.config = config or SM2Config()
        self.quality_config = quality_config or QualityConfig()
        self.rewards = rewards

    def _clamp_ease(self, ease: float) -> float:
        return min(self.config.max_ease, max(self.config.min_ease, ease))

    def calculate(self, state: ScheduleState, adjusted_quality: int, today: date) -> ScheduleResult:
        """
        Calculate the next schedule from prior state and an adjusted quality.

        Pure and deterministic; out-of-range inputs are clamped.
        """
        cfg = self.config
        quality = clamp_quality(adjusted_quality)
        ease = self._clamp_ease(state.ease_factor)
        interval = max(0, min(cfg.max_interval, int(state.interval)))
        repetitions = max(0, int(state.repetitions))

        if quality >= 3:
            if repetitions == 0:
                interval = cfg.first_interval
            elif repetitions == 1:
                interval = cfg.second_interval
            else:
                interval = min(cfg.max_interval, round(interval * ease))
            repetitions += 1
        else:
            repetitions = max(0, repetitions - 1)
            interval = 0 if repetitions == 0 else 1

        # EF' = EF + (0.1 - (5 - q) * (0.08 + (5 - q) * 0.02))
        ease = self._clamp_ease(ease + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)))

        return ScheduleResult(
            ease_factor=ease,
            interval=interval,
            repetitions=repetitions,
            status=derive_status(repetitions, interval, cfg),
            next_review_date=today + timedelta(days=max(interval, 1)),
        )

    def review(
        self,
        word: WordRecord,
        quality: int,
        signal: ReviewSignal | None = None,
        today: date | None = None,
        now: datetime | None = None,
    ) -> ReviewOutcome:
        """
        Apply a review to a word in place.

        Args:
            word: The reviewed word (mutated)
            quality: Raw quality 0-5
            signal: Confidence / latency / quiz type metadata
            today: Review date (defaults to today)
            now: Review timestamp (defaults to now)

        Returns:
            ReviewOutcome with the reward events emitted
        """
        signal = signal or ReviewSignal()
        today = today or date.today()
        now = now or datetime.now()

        raw = clamp_quality(quality)
        correct = is_correct(raw)
        adjusted = adjust_quality(raw, signal, self.quality_config)
        previous_status = word.status

        result = self.calculate(
            ScheduleState(word.ease_factor, word.interval, word.repetitions),
            adjusted,
            today,
        )

        word.ease_factor = result.ease_factor
        word.interval = result.interval
        word.repetitions = result.repetitions
        word.status = result.status
        word.next_review_date = result.next_review_date
        word.last_reviewed = now
        word.total_reviews += 1
        word.correct_reviews += 1 if correct else 0
        word.last_confidence_correct = correct

        if signal.response_ms is not None:
            if word.avg_response_time_ms is None:
                word.avg_response_time_ms = float(signal.response_ms)
            else:
                decay = self.config.response_time_decay
                word.avg_response_time_ms = (
                    word.avg_response_time_ms * decay + signal.response_ms * (1 - decay)
                )

        if correct:
            word.consecutive_failures = 0
            if signal.quiz_type:
                word.failed_quiz_types.discard(signal.quiz_type)
        else:
            word.consecutive_failures += 1
            if signal.quiz_type:
                word.failed_quiz_types.add(signal.quiz_type)

        outcome = ReviewOutcome(
            word=word,
            raw_quality=raw,
            adjusted_quality=adjusted,
            correct=correct,
            previous_status=previous_status,
        )

        outcome.events.append(
            ReviewReward(
                word_id=word.id,
                word=word.word,
                quality=adjusted,
                tier=tier_for_quality(adjusted),
                correct=correct,
            )
        )

        if (
            word.status == WordStatus.MASTERED
            and previous_status != WordStatus.MASTERED
            and word.mastered_on is None
        ):
            word.mastered_on = today
            outcome.newly_mastered = True
            outcome.events.append(MasteryReward(word_id=word.id, word=word.word))

        logger.debug(
            f"Reviewed {word.word!r}: q={raw}->{adjusted}, reps={word.repetitions}, "
            f"interval={word.interval}d, ease={word.ease_factor:.2f}, status={word.status.value}"
        )

        self._emit(outcome.events)
        return outcome

    def _emit(self, events: list[RewardEvent]) -> None:
        if self.rewards is None:
            return
        for event in events:
            try:
                self.rewards.emit(event)
            except Exception as e:
                # Scheduling state is already committed
                logger.error(f"Reward delivery failed for {event}: {e}")
