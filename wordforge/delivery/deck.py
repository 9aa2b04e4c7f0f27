"""
Vocab Deck: the learner's word collection.

Owns every WordRecord together with the learner-wide state that travels
with it in the app snapshot:
- current difficulty tier
- review streak
- date of the last content batch

All mutation goes through the command methods below; the snapshot
methods exchange plain JSON-compatible data with the persistence layer.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import date

from loguru import logger

from .streak import StreakTracker
from .word_record import VocabDifficulty, WordRecord, ingest_words

DEFAULT_LEVEL = VocabDifficulty.INTERMEDIATE


class VocabDeck:
    """
    Manages a collection of vocabulary words.

    Provides:
    - Ingestion of generated content batches (all-or-nothing)
    - Lookup by id or word text
    - Delete / restore (undo) of individual words
    - Study-pass commands (confidence, personal mnemonic)
    """

    def __init__(
        self,
        words: Iterable[WordRecord] = (),
        current_level: VocabDifficulty = DEFAULT_LEVEL,
        streak: StreakTracker | None = None,
        daily_date: date | None = None,
    ):
        self._words: dict[str, WordRecord] = {w.id: w for w in words}
        self.current_level = current_level
        self.streak = streak or StreakTracker()
        self.daily_date = daily_date

    def __len__(self) -> int:
        return len(self._words)

    def __iter__(self) -> Iterator[WordRecord]:
        return iter(self._words.values())

    def __contains__(self, word_id: object) -> bool:
        return word_id in self._words

    @property
    def words(self) -> list[WordRecord]:
        return list(self._words.values())

    def get(self, word_id: str) -> WordRecord | None:
        return self._words.get(word_id)

    def find(self, text: str) -> WordRecord | None:
        """Find a word by its text (case-insensitive)."""
        key = text.strip().lower()
        for word in self._words.values():
            if word.word.lower() == key:
                return word
        return None

    def due_words(self, today: date) -> list[WordRecord]:
        return [w for w in self._words.values() if w.is_due(today)]

    # =========================================================================
    # Commands
    # =========================================================================

    def add_words(self, contents: Iterable[dict], today: date) -> list[WordRecord]:
        """
        Ingest a generated content batch.

        Raises:
            ContentValidationError: if any entry is malformed (deck unchanged)
        """
        records = ingest_words(contents, today, existing_words=(w.word for w in self))
        for record in records:
            self._words[record.id] = record
        self.daily_date = today
        logger.info(f"Added {len(records)} words (deck size {len(self)})")
        return records

    def delete_word(self, word_id: str) -> WordRecord | None:
        """Remove a word; returns the record so it can be restored."""
        record = self._words.pop(word_id, None)
        if record is not None:
            logger.info(f"Deleted word {record.word!r}")
        return record

    def restore_word(self, record: WordRecord) -> None:
        """Re-insert a previously deleted record unchanged."""
        self._words[record.id] = record

    def set_confidence(self, word_id: str, confidence: int) -> None:
        word = self._words.get(word_id)
        if word is not None:
            word.confidence_rating = max(1, min(5, int(confidence)))

    def set_user_mnemonic(self, word_id: str, mnemonic: str) -> None:
        word = self._words.get(word_id)
        if word is not None:
            word.user_mnemonic = mnemonic.strip() or None

    # =========================================================================
    # Snapshot
    # =========================================================================

    def to_snapshot(self) -> dict:
        return {
            "vocabWords": [w.to_dict() for w in self],
            "vocabCurrentLevel": self.current_level.value,
            "vocabStreak": self.streak.streak,
            "vocabLastReviewDate": (
                self.streak.last_review_date.isoformat() if self.streak.last_review_date else None
            ),
            "vocabDailyDate": self.daily_date.isoformat() if self.daily_date else None,
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> VocabDeck:
        last_review = data.get("vocabLastReviewDate")
        daily = data.get("vocabDailyDate")
        return cls(
            words=[WordRecord.from_dict(w) for w in data.get("vocabWords", [])],
            current_level=VocabDifficulty(data.get("vocabCurrentLevel", DEFAULT_LEVEL.value)),
            streak=StreakTracker(
                streak=int(data.get("vocabStreak", 0)),
                last_review_date=date.fromisoformat(last_review) if last_review else None,
            ),
            daily_date=date.fromisoformat(daily) if daily else None,
        )
