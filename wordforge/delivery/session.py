"""
Review Session: state machine for one vocabulary review session.

Phases:
    idle -> study -> quiz | recall -> done
                       ^     |
                       +-----+  (endless mode: next batch)

- study: optional flashcard pass; collects confidence ratings and
  personal mnemonics, never schedules
- quiz / recall: each answer goes Quality Adjuster -> SM-2 Scheduler and
  counts toward the daily streak
- loading: waiting on question generation between batches
- done: level adaptation has run (unless practicing)

Asynchronous work (question generation, endless prefetch, the auto-advance
timer) never mutates scheduling state. Results are applied only when the
state machine consumes them, and everything pending is discarded when the
session ends or is torn down.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from wordforge.integrations.questions import (
    InsightProvider,
    QuestionGenerationError,
    QuestionGenerator,
    QuizQuestion,
    build_recall_questions,
    build_request,
    local_choice_question,
)

from .batch_selector import BatchSelector
from .deck import VocabDeck
from .level import LevelAdaptationEngine, LevelEvaluation
from .quality import ReviewSignal, clamp_quality, is_correct
from .scheduler import ReviewOutcome, SM2Scheduler
from .word_record import WordRecord

# =============================================================================
# Ports
# =============================================================================


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Time source and timer factory owned by the session."""

    def today(self) -> date: ...

    def now(self) -> datetime: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class SystemClock:
    """Wall-clock time with timers on the running asyncio loop."""

    def today(self) -> date:
        return date.today()

    def now(self) -> datetime:
        return datetime.now()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


# =============================================================================
# Data Classes
# =============================================================================


class SessionPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    STUDY = "study"
    QUIZ = "quiz"
    RECALL = "recall"
    DONE = "done"


class QuizMode(str, Enum):
    QUIZ = "quiz"  # Options-based questions from the generator
    RECALL = "recall"  # Self-graded free recall


ACTIVE_PHASES = frozenset({SessionPhase.QUIZ, SessionPhase.RECALL})


class SessionStateError(RuntimeError):
    """Raised when a command is not valid in the current phase."""


@dataclass
class SessionConfig:
    """Configuration for review sessions."""

    auto_advance_seconds: float = 2.5
    correct_option_quality: int = 4
    incorrect_option_quality: int = 1
    allow_recycle: bool = True  # Endless mode may resample an exhausted pool
    prefetch_lead: int = 2  # Prefetch when this many items remain


@dataclass
class ReviewItem:
    word: WordRecord
    question: QuizQuestion


@dataclass
class PreparedBatch:
    """A fully prepared batch: words plus their questions."""

    items: list[ReviewItem] = field(default_factory=list)
    recycled: bool = False

    @property
    def word_ids(self) -> set[str]:
        return {item.word.id for item in self.items}


@dataclass
class SessionResult:
    word_id: str
    word: str
    correct: bool
    quality: int
    confidence: int | None = None
    adjusted_quality: int | None = None


@dataclass
class AnswerFeedback:
    """What the UI shows after an answer."""

    item: ReviewItem
    correct: bool
    quality: int
    selected_index: int | None = None
    outcome: ReviewOutcome | None = None
    auto_advance: bool = False

    @property
    def correct_answer(self) -> str:
        question = self.item.question
        if question.has_options and question.correct_index is not None:
            return question.options[question.correct_index]
        return self.item.word.definition


@dataclass
class SessionSummary:
    answered: int
    correct: int
    batches: int
    streak: int
    level: str
    practice: bool = False
    level_changes: list[LevelEvaluation] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    # Confidence calibration, as word lists
    overconfident: list[str] = field(default_factory=list)
    underconfident: list[str] = field(default_factory=list)
    calibrated: list[str] = field(default_factory=list)
    has_confidence_data: bool = False

    @property
    def accuracy(self) -> int:
        """Accuracy as a rounded percentage."""
        if self.answered == 0:
            return 0
        return round(self.correct / self.answered * 100)


def calibrate(results: list[SessionResult]) -> dict[str, Any]:
    """
    Compare self-rated confidence with actual correctness.

    Overconfident: rated 4-5 but wrong. Underconfident: rated 1-2 but right.
    Calibrated: rated 3+ and right, or 1-2 and wrong. Unrated answers are skipped.
    """
    rated = [r for r in results if r.confidence is not None]
    return {
        "overconfident": [r.word for r in rated if r.confidence >= 4 and not r.correct],
        "underconfident": [r.word for r in rated if r.confidence <= 2 and r.correct],
        "calibrated": [
            r.word
            for r in rated
            if (r.confidence >= 3 and r.correct) or (r.confidence <= 2 and not r.correct)
        ],
        "has_confidence_data": bool(rated),
    }


# =============================================================================
# Review Session
# =============================================================================


class ReviewSession:
    """
    Orchestrates study, quiz/recall and endless batches for one learner.

    Usage:
        session = ReviewSession(deck, generator)
        await session.start(QuizMode.QUIZ)
        await session.finish_study()
        feedback = session.answer_option(2, response_ms=1800)
        await session.continue_()
    """

    def __init__(
        self,
        deck: VocabDeck,
        generator: QuestionGenerator,
        scheduler: SM2Scheduler | None = None,
        selector: BatchSelector | None = None,
        level_engine: LevelAdaptationEngine | None = None,
        clock: Clock | None = None,
        config: SessionConfig | None = None,
        insights: InsightProvider | None = None,
        rng: random.Random | None = None,
    ):
        self.deck = deck
        self.generator = generator
        self.scheduler = scheduler or SM2Scheduler()
        self.selector = selector or BatchSelector()
        self.level_engine = level_engine or LevelAdaptationEngine()
        self.clock = clock or SystemClock()
        self.config = config or SessionConfig()
        self.insights = insights
        self.rng = rng or random.Random()

        self.phase = SessionPhase.IDLE
        self.mode = QuizMode.QUIZ
        self.endless = False
        self.practice = False

        self.batch: list[WordRecord] = []
        self.items: list[ReviewItem] = []
        self.index = 0
        self.study_index = 0
        self.results: list[SessionResult] = []
        self.reviewed_ids: set[str] = set()
        self.retry_ids: set[str] = set()
        self.batch_count = 0
        self.notices: list[str] = []
        self.level_changes: list[LevelEvaluation] = []

        self._confidence: dict[str, int] = {}
        self._feedback: AnswerFeedback | None = None
        self._committed_in_batch = 0
        self._epoch = 0
        self._question_token = 0
        self._timer: TimerHandle | None = None
        self._prefetch_task: asyncio.Task[PreparedBatch | None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def is_active(self) -> bool:
        return self.phase not in {SessionPhase.IDLE, SessionPhase.DONE}

    @property
    def current_item(self) -> ReviewItem | None:
        if self.phase not in ACTIVE_PHASES or not self.items:
            return None
        return self.items[self.index]

    @property
    def current_study_card(self) -> WordRecord | None:
        if self.phase != SessionPhase.STUDY or not self.batch:
            return None
        return self.batch[self.study_index]

    @property
    def feedback(self) -> AnswerFeedback | None:
        return self._feedback

    @property
    def has_pending_auto_advance(self) -> bool:
        return self._timer is not None

    @property
    def prefetch_in_flight(self) -> bool:
        return self._prefetch_task is not None and not self._prefetch_task.done()

    @property
    def prefetch_ready(self) -> bool:
        task = self._prefetch_task
        return (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
            and task.result() is not None
        )

    @property
    def summary(self) -> SessionSummary:
        return SessionSummary(
            answered=len(self.results),
            correct=sum(1 for r in self.results if r.correct),
            batches=self.batch_count,
            streak=self.deck.streak.streak,
            level=self.deck.current_level.value,
            practice=self.practice,
            level_changes=list(self.level_changes),
            notices=list(self.notices),
            **calibrate(self.results),
        )

    # =========================================================================
    # Idle -> Study
    # =========================================================================

    async def start(
        self,
        mode: QuizMode = QuizMode.QUIZ,
        endless: bool = False,
        practice: bool = False,
        skip_study: bool = False,
    ) -> bool:
        """
        Start a session by building the first batch.

        Args:
            mode: Options-based quiz or self-graded recall
            endless: Stream batches until the learner stops
            practice: Quiz without touching scheduling state
            skip_study: Go straight to questions

        Returns:
            False if there was nothing to review
        """
        if self.is_active:
            raise SessionStateError(f"Session already running ({self.phase.value})")

        self._reset()
        self.mode, self.endless, self.practice = mode, endless, practice
        today = self.clock.today()

        if endless:
            batch = self.selector.select_endless(self.deck.words, today, reviewed_ids=()).words
        else:
            batch = self.selector.select(self.deck.words, today)

        if not batch:
            self._notify("No words to practice!" if practice else "No words due for review!")
            return False

        self.batch = batch
        self.batch_count = 1
        self.phase = SessionPhase.STUDY
        logger.info(
            f"Session started: {len(batch)} words, mode={mode.value}, "
            f"endless={endless}, practice={practice}"
        )

        if skip_study:
            await self.finish_study()
        return True

    def _reset(self) -> None:
        self._cancel_pending()
        self._epoch += 1
        self.batch, self.items, self.results, self.notices, self.level_changes = [], [], [], [], []
        self.reviewed_ids, self.retry_ids = set(), set()
        self._confidence = {}
        self.index = self.study_index = self.batch_count = self._committed_in_batch = 0
        self._feedback = None

    # =========================================================================
    # Study
    # =========================================================================

    def set_confidence(self, word_id: str, confidence: int) -> None:
        """Record a self-rated confidence (1-5) for a word in this session."""
        confidence = max(1, min(5, int(confidence)))
        self._confidence[word_id] = confidence
        self.deck.set_confidence(word_id, confidence)

    def set_mnemonic(self, word_id: str, mnemonic: str) -> None:
        self.deck.set_user_mnemonic(word_id, mnemonic)

    async def next_study_card(self) -> None:
        """Flip to the next study card; the last card starts the questions."""
        self._require(SessionPhase.STUDY)
        if self.study_index < len(self.batch) - 1:
            self.study_index += 1
        else:
            await self.finish_study()

    async def finish_study(self) -> None:
        """Complete (or skip) the study pass and load questions."""
        self._require(SessionPhase.STUDY)
        self.phase = SessionPhase.LOADING
        epoch = self._epoch

        try:
            items = await self._prepare_items(self.batch)
        except QuestionGenerationError as e:
            logger.error(f"Quiz generation failed: {e}")
            if epoch == self._epoch:
                self._terminate("Could not generate quiz. Try free recall instead.")
            return

        if epoch != self._epoch:
            return
        self._apply_items(items)

    # =========================================================================
    # Quiz / Recall
    # =========================================================================

    def answer_option(self, option_index: int, response_ms: int | None = None) -> AnswerFeedback:
        """
        Answer an options-based question.

        Correct answers schedule an auto-advance; incorrect answers wait
        for continue_() so the correction stays on screen.
        """
        item = self._require_question()
        if self._feedback is not None:
            return self._feedback
        if not item.question.has_options:
            raise SessionStateError("Current question is free recall; use grade_recall()")

        correct = option_index == item.question.correct_index
        quality = (
            self.config.correct_option_quality if correct else self.config.incorrect_option_quality
        )
        outcome = self._commit(item, quality, response_ms)

        self._feedback = AnswerFeedback(
            item=item,
            correct=correct,
            quality=quality,
            selected_index=option_index,
            outcome=outcome,
            auto_advance=correct,
        )
        if correct:
            self._schedule_auto_advance()
        return self._feedback

    async def grade_recall(self, quality: int, response_ms: int | None = None) -> AnswerFeedback:
        """Self-grade a free-recall question (0-5) and move on."""
        item = self._require_question()
        if self._feedback is not None:
            return self._feedback
        if item.question.has_options:
            raise SessionStateError("Current question has options; use answer_option()")

        quality = clamp_quality(quality)
        outcome = self._commit(item, quality, response_ms)
        feedback = AnswerFeedback(
            item=item, correct=is_correct(quality), quality=quality, outcome=outcome
        )
        self._feedback = feedback
        await self.advance()
        return feedback

    async def continue_(self) -> None:
        """Manual advance after an answer; cancels any pending auto-advance."""
        if self.phase == SessionPhase.LOADING:
            return
        self._require_question()
        if self._feedback is None:
            raise SessionStateError("Answer the current question before continuing")
        await self.advance()

    async def advance(self, expected_token: int | None = None) -> None:
        """Move to the next question, the next batch, or done."""
        if expected_token is not None and expected_token != self._question_token:
            return
        self._cancel_timer()
        if self.phase not in ACTIVE_PHASES:
            return

        if self.index < len(self.items) - 1:
            self._show_question(self.index + 1)
        elif self.endless:
            await self._next_endless_batch()
        else:
            self._complete()

    def _commit(self, item: ReviewItem, quality: int, response_ms: int | None) -> ReviewOutcome | None:
        word = item.word
        confidence = self._confidence.get(word.id)
        outcome = None

        if not self.practice:
            outcome = self.scheduler.review(
                word,
                quality,
                ReviewSignal(
                    confidence=confidence,
                    response_ms=response_ms,
                    quiz_type=item.question.type.value,
                ),
                today=self.clock.today(),
                now=self.clock.now(),
            )
            self.deck.streak.record(self.clock.today())
            self._committed_in_batch += 1

        correct = is_correct(quality)
        self.results.append(
            SessionResult(
                word_id=word.id,
                word=word.word,
                correct=correct,
                quality=quality,
                confidence=confidence,
                adjusted_quality=outcome.adjusted_quality if outcome else None,
            )
        )
        self.reviewed_ids.add(word.id)
        if not correct:
            self.retry_ids.add(word.id)
        return outcome

    def _show_question(self, index: int) -> None:
        self._cancel_timer()
        self.index = index
        self._feedback = None
        self._question_token += 1

        if self.endless and index >= len(self.items) - self.config.prefetch_lead:
            self._start_prefetch()

    # =========================================================================
    # Auto-advance timer
    # =========================================================================

    def _schedule_auto_advance(self) -> None:
        self._cancel_timer()
        token, epoch = self._question_token, self._epoch
        self._timer = self.clock.call_later(
            self.config.auto_advance_seconds,
            lambda: self._on_auto_advance(token, epoch),
        )

    def _on_auto_advance(self, token: int, epoch: int) -> None:
        self._timer = None
        if epoch != self._epoch or token != self._question_token or self.phase not in ACTIVE_PHASES:
            logger.debug("Ignoring stale auto-advance")
            return
        self._spawn(self.advance(expected_token=token))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Session task failed: {task.exception()!r}")

    # =========================================================================
    # Endless mode
    # =========================================================================

    def _start_prefetch(self) -> None:
        if self._prefetch_task is not None:
            return
        self._prefetch_task = asyncio.get_running_loop().create_task(self._prefetch())
        logger.debug("Prefetching next endless batch")

    async def _prefetch(self) -> PreparedBatch | None:
        try:
            return await self._prepare_next_batch()
        except QuestionGenerationError as e:
            logger.warning(f"Prefetch failed, will load synchronously: {e}")
            return None

    async def _prepare_next_batch(self) -> PreparedBatch:
        selection = self.selector.select_endless(
            self.deck.words,
            self.clock.today(),
            reviewed_ids=self.reviewed_ids,
            retry_ids=self.retry_ids,
            exclude_ids={w.id for w in self.batch} - self.reviewed_ids,
            allow_recycle=self.config.allow_recycle,
        )
        if selection.is_empty:
            return PreparedBatch()
        items = await self._prepare_items(selection.words)
        return PreparedBatch(items=items, recycled=selection.recycled)

    async def _next_endless_batch(self) -> None:
        self._batch_boundary()
        epoch = self._epoch
        task = self._prefetch_task
        prepared: PreparedBatch | None = None

        if task is not None:
            if not task.done():
                self.phase = SessionPhase.LOADING
            try:
                prepared = await task
            except asyncio.CancelledError:
                # end() cancelled the prefetch while we waited on it
                if epoch != self._epoch:
                    return
                raise
            if epoch != self._epoch:
                return
            self._prefetch_task = None

        if prepared is None or not prepared.items:
            self.phase = SessionPhase.LOADING
            try:
                prepared = await self._prepare_next_batch()
            except QuestionGenerationError as e:
                logger.error(f"Could not load next batch: {e}")
                if epoch == self._epoch:
                    self._terminate("Network error loading more words. Session ended.")
                return
            if epoch != self._epoch:
                return

        if not prepared.items:
            self._terminate("No more words to review.")
            return

        if prepared.recycled:
            self.reviewed_ids.clear()
        self.retry_ids -= prepared.word_ids
        self.batch = [item.word for item in prepared.items]
        self.batch_count += 1
        self._committed_in_batch = 0
        logger.info(f"Endless batch {self.batch_count}: {len(self.batch)} words")
        self._apply_items(prepared.items)

    def _batch_boundary(self) -> None:
        if self.practice or self._committed_in_batch == 0:
            return
        self._evaluate_level()

    # =========================================================================
    # Question preparation
    # =========================================================================

    async def _prepare_items(self, words: list[WordRecord]) -> list[ReviewItem]:
        if self.mode == QuizMode.RECALL:
            questions = build_recall_questions(words)
        else:
            insights = self.insights() if self.insights else None
            request = build_request(words, self.deck.words, insights)
            questions = await self.generator.generate(request)
            questions = self._align(request.words, request.all_words, questions)

        items = [ReviewItem(word=w, question=q) for w, q in zip(words, questions)]
        self.rng.shuffle(items)
        return items

    def _align(
        self,
        words: list[dict],
        all_words: list[dict],
        questions: list[QuizQuestion],
    ) -> list[QuizQuestion]:
        """Order questions like the batch; fill gaps with local questions."""
        by_word: dict[str, QuizQuestion] = {}
        for question in questions:
            by_word.setdefault(question.word.strip().lower(), question)

        aligned = []
        for payload in words:
            question = by_word.get(payload["word"].lower())
            if question is None:
                logger.debug(f"No question returned for {payload['word']!r}; using local fallback")
                question = local_choice_question(payload, all_words, self.rng)
            aligned.append(question)
        return aligned

    def _apply_items(self, items: list[ReviewItem]) -> None:
        self.items = items
        self.phase = SessionPhase.RECALL if self.mode == QuizMode.RECALL else SessionPhase.QUIZ
        self._show_question(0)

    # =========================================================================
    # Ending
    # =========================================================================

    def _complete(self) -> None:
        self._cancel_pending()
        if not self.practice and self._committed_in_batch:
            self._evaluate_level()
        self.phase = SessionPhase.DONE

        summary = self.summary
        label = "Practice" if self.practice else "Review"
        logger.info(f"{label} complete! {summary.correct}/{summary.answered} correct ({summary.accuracy}%)")

    def _evaluate_level(self) -> None:
        evaluation = self.level_engine.evaluate(self.deck.words, self.deck.current_level)
        if evaluation.changed:
            self.deck.current_level = evaluation.level
            self.level_changes.append(evaluation)

    async def end(self) -> SessionSummary:
        """End the session now, discarding any prefetched or in-flight batch."""
        if not self.is_active:
            return self.summary

        self._cancel_pending()
        self._epoch += 1
        self.phase = SessionPhase.DONE
        logger.info(f"Session ended by user after {len(self.results)} answers")
        return self.summary

    def close(self) -> None:
        """Teardown: cancel timers and background work without changing phase."""
        self._cancel_pending()
        self._epoch += 1

    def _terminate(self, notice: str) -> None:
        self._notify(notice)
        self._cancel_pending()
        self._epoch += 1
        self.phase = SessionPhase.DONE

    def _cancel_pending(self) -> None:
        self._cancel_timer()
        if self._prefetch_task is not None:
            self._prefetch_task.cancel()
            self._prefetch_task = None
        for task in list(self._tasks):
            if task is not asyncio.current_task():
                task.cancel()

    def _notify(self, message: str) -> None:
        self.notices.append(message)
        logger.warning(message)

    # =========================================================================
    # Guards
    # =========================================================================

    def _require(self, phase: SessionPhase) -> None:
        if self.phase != phase:
            raise SessionStateError(f"Expected phase {phase.value}, session is {self.phase.value}")

    def _require_question(self) -> ReviewItem:
        item = self.current_item
        if item is None:
            raise SessionStateError(f"No question to answer in phase {self.phase.value}")
        return item
