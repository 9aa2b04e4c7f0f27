"""
Quiz Question Generation.

The review engine treats question text as opaque: it only needs to know
which word a question drills, whether it has options, and which option is
correct. Generators receive plain payload dicts, never live WordRecords,
so a late or failed response can never touch scheduling state.

Generators:
- HttpQuestionGenerator: remote AI question service (httpx)
- OfflineQuestionGenerator: local multiple-choice questions with distractors
  drawn from the learner's other words

Usage:
    async with HttpQuestionGenerator(base_url, api_key=key) as generator:
        questions = await generator.generate(build_request(batch, pool))
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

if TYPE_CHECKING:
    from wordforge.delivery.word_record import WordRecord

FILLER_DISTRACTORS = [
    "An incorrect definition option A",
    "An incorrect definition option B",
    "An incorrect definition option C",
]


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    REVERSE_CHOICE = "reverse_choice"
    FILL_BLANK = "fill_blank"
    USE_IN_SENTENCE = "use_in_sentence"
    FREE_RECALL = "free_recall"


class QuestionGenerationError(Exception):
    """Raised when a question batch cannot be produced."""


class QuizQuestion(BaseModel):
    """A single quiz question as returned by a generator."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    word: str
    type: QuestionType
    question: str
    options: list[str] = Field(default_factory=list)
    correct_index: int | None = Field(default=None, alias="correctIndex")
    hint: str = ""

    @model_validator(mode="after")
    def _check_options(self) -> QuizQuestion:
        if self.type == QuestionType.FREE_RECALL:
            return self
        if len(self.options) < 2:
            raise ValueError(f"{self.type.value} question needs at least 2 options")
        if self.correct_index is None or not 0 <= self.correct_index < len(self.options):
            raise ValueError("correctIndex out of range")
        return self

    @property
    def has_options(self) -> bool:
        return self.type != QuestionType.FREE_RECALL


@dataclass
class QuestionRequest:
    """Payload sent to a question generator."""

    words: list[dict]
    all_words: list[dict]
    insights: dict[str, Any] | None = None

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {"words": self.words, "allWords": self.all_words}
        if self.insights:
            body["insights"] = self.insights
        return body


class QuestionGenerator(Protocol):
    async def generate(self, request: QuestionRequest) -> list[QuizQuestion]: ...


InsightProvider = Callable[[], "dict[str, Any] | None"]


def build_request(
    batch: Sequence[WordRecord],
    pool: Sequence[WordRecord],
    insights: dict[str, Any] | None = None,
) -> QuestionRequest:
    """Snapshot a batch and its pool into a generator request."""
    return QuestionRequest(
        words=[w.question_payload() for w in batch],
        all_words=[w.distractor_payload() for w in pool],
        insights=insights,
    )


# =============================================================================
# Local question builders
# =============================================================================


def build_recall_questions(words: Sequence[WordRecord]) -> list[QuizQuestion]:
    """Free-recall prompts, built locally (no generator call)."""
    return [
        QuizQuestion(
            word=w.word,
            type=QuestionType.FREE_RECALL,
            question=f'What does "{w.word}" mean?',
            hint=f"It's a {w.part_of_speech}. First letter: {w.word[0]}",
        )
        for w in words
    ]


def local_choice_question(
    word: dict,
    all_words: Sequence[dict],
    rng: random.Random,
) -> QuizQuestion:
    """
    Build a multiple-choice question for one word payload.

    Distractors are distinct definitions of other words in the pool (never
    the answer itself), padded with filler text when the pool is too small.
    """
    answer = word["definition"]
    others = list(dict.fromkeys(
        w["definition"] for w in all_words
        if w["word"] != word["word"] and w["definition"] != answer
    ))
    distractors = rng.sample(others, min(3, len(others)))
    fillers = [f for f in FILLER_DISTRACTORS if f != answer]
    distractors += fillers[: 3 - len(distractors)]

    options = [answer, *distractors]
    rng.shuffle(options)

    return QuizQuestion(
        word=word["word"],
        type=QuestionType.MULTIPLE_CHOICE,
        question=f'What does "{word["word"]}" mean?',
        options=options,
        correct_index=options.index(answer),
        hint=f"This is a {word.get('partOfSpeech', 'word')}.",
    )


@dataclass
class OfflineQuestionGenerator:
    """Generates multiple-choice questions without a network call."""

    rng: random.Random = field(default_factory=random.Random)

    async def generate(self, request: QuestionRequest) -> list[QuizQuestion]:
        if not request.words:
            raise QuestionGenerationError("No words provided")
        return [local_choice_question(w, request.all_words, self.rng) for w in request.words]


# =============================================================================
# HTTP generator
# =============================================================================


def parse_questions(payload: Any) -> list[QuizQuestion]:
    """Parse a service response, dropping malformed questions."""
    if not isinstance(payload, dict) or not isinstance(payload.get("questions"), list):
        raise QuestionGenerationError("Invalid quiz response")

    questions: list[QuizQuestion] = []
    for raw in payload["questions"]:
        try:
            questions.append(QuizQuestion.model_validate(raw))
        except ValidationError as e:
            logger.warning(f"Dropping malformed question: {e.errors()[0]['msg']}")

    if not questions:
        error = payload.get("error") or "no usable questions"
        raise QuestionGenerationError(f"Could not generate quiz: {error}")
    return questions


class HttpQuestionGenerator:
    """
    HTTP client for the quiz-question service.

    Supports:
    - Bearer API key authentication
    - Reusable AsyncClient (async context manager)
    - Transport injection for tests
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        endpoint: str = "/api/vocab/generate-quiz",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> HttpQuestionGenerator:
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"

            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def generate(self, request: QuestionRequest) -> list[QuizQuestion]:
        """
        Request questions for a batch.

        Raises:
            QuestionGenerationError: on transport errors, non-200 status or bad payload
        """
        if not request.words:
            raise QuestionGenerationError("No words provided")

        try:
            client = await self._ensure_client()
            response = await client.post(self.endpoint, json=request.to_json())
        except httpx.HTTPError as e:
            logger.error(f"Connection error generating quiz: {e}")
            raise QuestionGenerationError(f"Network error generating quiz: {e}") from e

        if response.status_code != 200:
            logger.warning(f"Quiz service returned {response.status_code}")
            raise QuestionGenerationError(f"Server error: {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise QuestionGenerationError("Quiz service returned invalid JSON") from e

        questions = parse_questions(payload)
        logger.debug(f"Received {len(questions)} questions for {len(request.words)} words")
        return questions
