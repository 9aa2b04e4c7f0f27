"""
Reward events and the reward-economy port.

The review engine never touches currency. It emits one ReviewReward per
graded review and a one-time MasteryReward when a word first reaches
'mastered'; the economy converts those into XP and gold.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Union

from loguru import logger


class RewardTier(str, Enum):
    """Quality tier of a review."""

    HIGH = "high"  # quality >= 4
    MID = "mid"  # quality >= 3
    LOW = "low"  # quality < 3


def tier_for_quality(quality: int) -> RewardTier:
    if quality >= 4:
        return RewardTier.HIGH
    if quality >= 3:
        return RewardTier.MID
    return RewardTier.LOW


@dataclass(frozen=True)
class ReviewReward:
    word_id: str
    word: str
    quality: int
    tier: RewardTier
    correct: bool


@dataclass(frozen=True)
class MasteryReward:
    word_id: str
    word: str


RewardEvent = Union[ReviewReward, MasteryReward]


class RewardSink(Protocol):
    """Receives reward events from the scheduler."""

    def emit(self, event: RewardEvent) -> None: ...


# =============================================================================
# In-memory ledger
# =============================================================================


@dataclass
class RewardTable:
    """XP / gold amounts per event."""

    xp_high: int = 15
    xp_mid: int = 10
    xp_low: int = 5
    gold_correct: int = 3
    gold_incorrect: int = 1
    mastery_xp: int = 50
    mastery_gold: int = 20


@dataclass
class RewardLedger:
    """
    Records reward events and tallies XP and gold.

    Stands in for the app's reward economy in the CLI and in tests.
    """

    table: RewardTable = field(default_factory=RewardTable)
    events: list[RewardEvent] = field(default_factory=list)
    xp: int = 0
    gold: int = 0

    def emit(self, event: RewardEvent) -> None:
        self.events.append(event)

        if isinstance(event, MasteryReward):
            self.xp += self.table.mastery_xp
            self.gold += self.table.mastery_gold
            logger.info(f'Mastered "{event.word}"! +{self.table.mastery_xp} XP')
            return

        self.xp += {
            RewardTier.HIGH: self.table.xp_high,
            RewardTier.MID: self.table.xp_mid,
            RewardTier.LOW: self.table.xp_low,
        }[event.tier]
        self.gold += self.table.gold_correct if event.correct else self.table.gold_incorrect

    @property
    def mastery_count(self) -> int:
        return sum(1 for e in self.events if isinstance(e, MasteryReward))
