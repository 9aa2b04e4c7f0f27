"""
WordForge delivery: the vocabulary review engine.

A storage-agnostic spaced-repetition engine for vocabulary words.

Components:
- WordRecord: word content plus scheduling state
- VocabDeck: word collection, streak and difficulty tier
- SM2Scheduler: SM-2 spaced repetition with quality adjustment
- BatchSelector: due-first, interleaved batch selection (incl. endless mode)
- ReviewSession: study / quiz / recall state machine
- LevelAdaptationEngine: difficulty tier promotion and demotion
- StreakTracker: consecutive-day review streak
- SnapshotStore: JSON persistence for the terminal client
"""

from .batch_selector import BatchConfig, BatchSelector, EndlessSelection
from .deck import VocabDeck
from .level import LevelAdaptationEngine, LevelConfig, LevelEvaluation
from .quality import QualityConfig, ReviewSignal, adjust_quality
from .scheduler import ReviewOutcome, ScheduleResult, ScheduleState, SM2Config, SM2Scheduler
from .session import (
    AnswerFeedback,
    QuizMode,
    ReviewSession,
    SessionConfig,
    SessionPhase,
    SessionStateError,
    SessionSummary,
)
from .state_store import SnapshotStore
from .stats import deck_stats
from .streak import StreakTracker
from .word_record import (
    ContentValidationError,
    VocabDifficulty,
    WordRecord,
    WordStatus,
    ingest_words,
)

__all__ = [
    # Records
    "WordRecord",
    "WordStatus",
    "VocabDifficulty",
    "ContentValidationError",
    "ingest_words",
    "VocabDeck",
    # Scheduling
    "SM2Scheduler",
    "SM2Config",
    "ScheduleState",
    "ScheduleResult",
    "ReviewOutcome",
    "QualityConfig",
    "ReviewSignal",
    "adjust_quality",
    # Batching
    "BatchSelector",
    "BatchConfig",
    "EndlessSelection",
    # Sessions
    "ReviewSession",
    "SessionConfig",
    "SessionPhase",
    "SessionStateError",
    "SessionSummary",
    "QuizMode",
    "AnswerFeedback",
    # Progression
    "LevelAdaptationEngine",
    "LevelConfig",
    "LevelEvaluation",
    "StreakTracker",
    "deck_stats",
    # Persistence
    "SnapshotStore",
]
