"""
External integrations for the WordForge review engine.

Modules:
- questions: quiz-question generators (HTTP service, offline)
- rewards: reward events and an in-memory XP/gold ledger
"""
from .questions import HttpQuestionGenerator, OfflineQuestionGenerator, QuestionGenerationError
from .rewards import MasteryReward, RewardLedger, ReviewReward

__all__ = [
    "HttpQuestionGenerator",
    "OfflineQuestionGenerator",
    "QuestionGenerationError",
    "MasteryReward",
    "ReviewReward",
    "RewardLedger",
]
