"""
Word Record: Vocabulary Item Model.

Holds one vocabulary item as two halves:
- Content fields, owned by the content-generation collaborator and opaque here
- Scheduling fields, owned exclusively by the review engine

Content batches are validated with a pydantic model at the ingestion
boundary; a batch with any malformed entry is rejected as a whole.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_EASE = 2.5


# =============================================================================
# Enums
# =============================================================================


class WordStatus(str, Enum):
    """Learning status, derived from repetitions and interval after each review."""

    NEW = "new"
    LEARNING = "learning"
    REVIEWING = "reviewing"
    MASTERED = "mastered"


class VocabDifficulty(str, Enum):
    """Content difficulty tier, also used as the learner's global level."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


DIFFICULTY_ORDER: list[VocabDifficulty] = [
    VocabDifficulty.BEGINNER,
    VocabDifficulty.INTERMEDIATE,
    VocabDifficulty.ADVANCED,
    VocabDifficulty.EXPERT,
]


class ContentValidationError(ValueError):
    """Raised when an ingested content batch contains malformed words."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("Invalid content batch: " + "; ".join(errors))


# =============================================================================
# Content Validation
# =============================================================================


class WordContent(BaseModel):
    """Content fields supplied by the word-generation service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    word: str = Field(min_length=1)
    definition: str = Field(min_length=1)
    part_of_speech: str = Field(alias="partOfSpeech", min_length=1)
    examples: list[str]
    mnemonic: str
    pronunciation: str
    difficulty: VocabDifficulty
    category: str
    etymology: str | None = None
    related_words: list[str] = Field(default_factory=list, alias="relatedWords")
    antonym: str | None = None

    @field_validator("word", "definition", "part_of_speech")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO timestamp as naive local time."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


# =============================================================================
# Word Record
# =============================================================================


@dataclass
class WordRecord:
    """
    A vocabulary word with its SM-2 scheduling metadata.

    Scheduling fields are only mutated by SM2Scheduler.review(); status is
    recomputed on every review and never assigned by callers.
    """

    id: str
    word: str
    definition: str
    part_of_speech: str
    examples: list[str] = field(default_factory=list)
    mnemonic: str = ""
    pronunciation: str = ""
    difficulty: VocabDifficulty = VocabDifficulty.INTERMEDIATE
    category: str = ""
    etymology: str | None = None
    related_words: list[str] = field(default_factory=list)
    antonym: str | None = None
    user_mnemonic: str | None = None
    date_added: date = field(default_factory=date.today)

    # SM-2 state
    ease_factor: float = DEFAULT_EASE
    interval: int = 0
    repetitions: int = 0
    status: WordStatus = WordStatus.NEW
    next_review_date: date = field(default_factory=date.today)
    last_reviewed: datetime | None = None
    total_reviews: int = 0
    correct_reviews: int = 0

    # Review metadata
    confidence_rating: int | None = None
    last_confidence_correct: bool | None = None
    avg_response_time_ms: float | None = None
    failed_quiz_types: set[str] = field(default_factory=set)
    consecutive_failures: int = 0
    mastered_on: date | None = None

    def is_due(self, today: date) -> bool:
        """Check if this word is due for review on the given day."""
        return self.next_review_date <= today

    @property
    def accuracy(self) -> float:
        if self.total_reviews == 0:
            return 0.0
        return self.correct_reviews / self.total_reviews

    def question_payload(self) -> dict:
        """Content plus scheduling metadata sent to the question generator."""
        return {
            "id": self.id,
            "word": self.word,
            "definition": self.definition,
            "partOfSpeech": self.part_of_speech,
            "examples": list(self.examples),
            "difficulty": self.difficulty.value,
            "status": self.status.value,
            "confidenceRating": self.confidence_rating,
            "lastConfidenceCorrect": self.last_confidence_correct,
            "consecutiveFailures": self.consecutive_failures,
            "failedQuizTypes": sorted(self.failed_quiz_types),
            "totalReviews": self.total_reviews,
        }

    def distractor_payload(self) -> dict:
        return {
            "word": self.word,
            "definition": self.definition,
            "partOfSpeech": self.part_of_speech,
        }

    def to_dict(self) -> dict:
        """Serialize to the plain-data shape of the persisted snapshot."""
        return {
            "id": self.id,
            "word": self.word,
            "definition": self.definition,
            "partOfSpeech": self.part_of_speech,
            "examples": list(self.examples),
            "mnemonic": self.mnemonic,
            "pronunciation": self.pronunciation,
            "difficulty": self.difficulty.value,
            "category": self.category,
            "etymology": self.etymology,
            "relatedWords": list(self.related_words),
            "antonym": self.antonym,
            "userMnemonic": self.user_mnemonic,
            "dateAdded": self.date_added.isoformat(),
            "easeFactor": self.ease_factor,
            "interval": self.interval,
            "repetitions": self.repetitions,
            "status": self.status.value,
            "nextReviewDate": self.next_review_date.isoformat(),
            "lastReviewed": self.last_reviewed.isoformat() if self.last_reviewed else None,
            "totalReviews": self.total_reviews,
            "correctReviews": self.correct_reviews,
            "confidenceRating": self.confidence_rating,
            "lastConfidenceCorrect": self.last_confidence_correct,
            "avgResponseTimeMs": self.avg_response_time_ms,
            "failedQuizTypes": sorted(self.failed_quiz_types),
            "consecutiveFailures": self.consecutive_failures,
            "masteredOn": self.mastered_on.isoformat() if self.mastered_on else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> WordRecord:
        """
        Create a WordRecord from snapshot data.

        Args:
            data: Dictionary produced by to_dict() (or the app snapshot)

        Returns:
            WordRecord instance
        """
        last_reviewed = _parse_timestamp(data.get("lastReviewed"))
        status = WordStatus(data.get("status", "new"))
        today = date.today()

        mastered_on: date | None = None
        if data.get("masteredOn"):
            mastered_on = date.fromisoformat(data["masteredOn"])
        elif status == WordStatus.MASTERED:
            # Snapshots without masteredOn: the word reached mastery earlier
            mastered_on = last_reviewed.date() if last_reviewed else today

        return cls(
            id=data["id"],
            word=data["word"],
            definition=data["definition"],
            part_of_speech=data.get("partOfSpeech", ""),
            examples=list(data.get("examples", [])),
            mnemonic=data.get("mnemonic", ""),
            pronunciation=data.get("pronunciation", ""),
            difficulty=VocabDifficulty(data.get("difficulty", "intermediate")),
            category=data.get("category", ""),
            etymology=data.get("etymology"),
            related_words=list(data.get("relatedWords") or []),
            antonym=data.get("antonym"),
            user_mnemonic=data.get("userMnemonic"),
            date_added=date.fromisoformat(data.get("dateAdded") or today.isoformat()),
            ease_factor=float(data.get("easeFactor", DEFAULT_EASE)),
            interval=int(data.get("interval", 0)),
            repetitions=int(data.get("repetitions", 0)),
            status=status,
            next_review_date=date.fromisoformat(data.get("nextReviewDate") or today.isoformat()),
            last_reviewed=last_reviewed,
            total_reviews=int(data.get("totalReviews", 0)),
            correct_reviews=int(data.get("correctReviews", 0)),
            confidence_rating=data.get("confidenceRating"),
            last_confidence_correct=data.get("lastConfidenceCorrect"),
            avg_response_time_ms=data.get("avgResponseTimeMs"),
            failed_quiz_types=set(data.get("failedQuizTypes") or []),
            consecutive_failures=int(data.get("consecutiveFailures", 0)),
            mastered_on=mastered_on,
        )


# =============================================================================
# Ingestion
# =============================================================================


def new_record(content: WordContent, today: date, default_ease: float = DEFAULT_EASE) -> WordRecord:
    """Attach fresh scheduling fields to validated content."""
    return WordRecord(
        id=str(uuid.uuid4()),
        word=content.word,
        definition=content.definition,
        part_of_speech=content.part_of_speech,
        examples=list(content.examples),
        mnemonic=content.mnemonic,
        pronunciation=content.pronunciation,
        difficulty=content.difficulty,
        category=content.category,
        etymology=content.etymology,
        related_words=list(content.related_words),
        antonym=content.antonym,
        date_added=today,
        ease_factor=default_ease,
        interval=0,
        repetitions=0,
        status=WordStatus.NEW,
        next_review_date=today,
    )


def validate_contents(contents: Iterable[dict]) -> list[WordContent]:
    """
    Validate a content batch without creating any records.

    Raises:
        ContentValidationError: if any entry is malformed (nothing is accepted)
    """
    validated: list[WordContent] = []
    errors: list[str] = []

    for index, raw in enumerate(contents):
        if not isinstance(raw, dict):
            errors.append(f"[{index}] expected an object, got {type(raw).__name__}")
            continue
        try:
            validated.append(WordContent.model_validate(raw))
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(part) for part in err["loc"])
                errors.append(f"[{index}] {loc}: {err['msg']}")

    if errors:
        logger.warning(f"Rejected content batch with {len(errors)} error(s)")
        raise ContentValidationError(errors)

    return validated


def ingest_words(
    contents: Iterable[dict],
    today: date,
    existing_words: Iterable[str] = (),
) -> list[WordRecord]:
    """
    Turn a generated content batch into new WordRecords.

    Args:
        contents: Raw word objects from the content-generation service
        today: Ingestion date (becomes dateAdded and nextReviewDate)
        existing_words: Words already in the deck; duplicates are skipped

    Returns:
        Newly created records (status=new, interval=0, repetitions=0)
    """
    validated = validate_contents(list(contents))
    seen = {w.lower() for w in existing_words}
    records: list[WordRecord] = []

    for content in validated:
        key = content.word.lower()
        if key in seen:
            logger.info(f"Skipping duplicate word: {content.word}")
            continue
        seen.add(key)
        records.append(new_record(content, today))

    logger.debug(f"Ingested {len(records)} of {len(validated)} words")
    return records
