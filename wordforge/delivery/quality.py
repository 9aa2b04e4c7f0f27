"""
Quality Adjuster: turns an answer into an SM-2 scheduling signal.

SM-2 Grade Scale:
0 - Complete blackout, wrong response
1 - Incorrect, but upon seeing answer remembered
2 - Incorrect, but answer seemed easy to recall
3 - Correct, but with significant difficulty
4 - Correct, with some hesitation
5 - Correct, with perfect recall

Adjustments, applied in order:
1. Correct but doubted (confidence <= 2)  -> capped at 3
2. Wrong but sure (confidence >= 4)       -> capped at 0
3. Correct and fast (< 3s)                -> +1 (max 5)
4. Correct and slow (> 15s)               -> -1 (min 3)
"""

from __future__ import annotations

from dataclasses import dataclass

PASSING_QUALITY = 3


@dataclass(frozen=True)
class ReviewSignal:
    """Optional metadata accompanying an answer."""

    confidence: int | None = None  # Self-reported 1-5
    response_ms: int | None = None  # Time to answer
    quiz_type: str | None = None  # e.g. 'multiple_choice', 'free_recall'


@dataclass
class QualityConfig:
    """Thresholds for quality adjustment."""

    low_confidence_max: int = 2
    high_confidence_min: int = 4
    fast_response_ms: int = 3000
    slow_response_ms: int = 15000


def clamp_quality(quality: int) -> int:
    return max(0, min(5, int(quality)))


def is_correct(quality: int) -> bool:
    return clamp_quality(quality) >= PASSING_QUALITY


def adjust_quality(
    quality: int,
    signal: ReviewSignal | None = None,
    config: QualityConfig | None = None,
) -> int:
    """
    Compute the effective quality fed to the scheduler.

    Args:
        quality: Raw quality 0-5 (>= 3 is correct)
        signal: Optional confidence / latency metadata
        config: Thresholds (defaults if None)

    Returns:
        Adjusted quality 0-5
    """
    config = config or QualityConfig()
    signal = signal or ReviewSignal()

    raw = clamp_quality(quality)
    correct = raw >= PASSING_QUALITY
    adjusted = raw

    if signal.confidence is not None:
        if correct and signal.confidence <= config.low_confidence_max:
            adjusted = min(adjusted, 3)
        elif not correct and signal.confidence >= config.high_confidence_min:
            adjusted = min(adjusted, 0)

    if signal.response_ms is not None and correct:
        if signal.response_ms < config.fast_response_ms:
            adjusted = min(5, adjusted + 1)
        elif signal.response_ms > config.slow_response_ms:
            adjusted = max(3, adjusted - 1)

    return adjusted
