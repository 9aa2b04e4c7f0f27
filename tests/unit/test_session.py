"""
Unit tests for the ReviewSession state machine.

Tests:
- Study pass and question loading
- Options answers: auto-advance on correct, manual continue on incorrect
- Stale timer protection
- Free recall, practice mode, completion (streak + level)
- Endless mode: prefetch, batch swap, exhaustion, recycling, teardown
"""

import asyncio
import random
from datetime import datetime, time, timedelta
from unittest.mock import AsyncMock

import pytest

from wordforge.delivery.batch_selector import BatchConfig, BatchSelector
from wordforge.delivery.deck import VocabDeck
from wordforge.delivery.session import (
    QuizMode,
    ReviewSession,
    SessionConfig,
    SessionPhase,
    SessionStateError,
)
from wordforge.delivery.word_record import VocabDifficulty, WordStatus
from wordforge.integrations.questions import (
    QuestionGenerationError,
    QuestionType,
    QuizQuestion,
)


# =============================================================================
# Fakes
# =============================================================================


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Fixed date; timers fire only when the test says so."""

    def __init__(self, today):
        self._today = today
        self.timers = []

    def today(self):
        return self._today

    def now(self):
        return datetime.combine(self._today, time(9, 0))

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def fire(self):
        for timer in self.pending:
            self.timers.remove(timer)
            timer.callback()


def question_for(word):
    """Multiple-choice question whose correct answer is option 0."""
    return QuizQuestion(
        word=word["word"],
        type=QuestionType.MULTIPLE_CHOICE,
        question=f'What does "{word["word"]}" mean?',
        options=[word["definition"], "wrong 1", "wrong 2", "wrong 3"],
        correct_index=0,
    )


class GatedGenerator:
    """Question generator that can be paused and made to fail."""

    def __init__(self, fail_from_call=None):
        self.requests = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.fail_from_call = fail_from_call

    async def generate(self, request):
        self.requests.append(request)
        call = len(self.requests)
        await self.gate.wait()
        if self.fail_from_call is not None and call >= self.fail_from_call:
            raise QuestionGenerationError("Network error generating quiz")
        return [question_for(w) for w in request.words]


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


async def answer(session, correct=True, response_ms=None):
    item = session.current_item
    index = 0 if correct else 1
    return session.answer_option(index, response_ms=response_ms), item


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock(today):
    return FakeClock(today)


@pytest.fixture
def generator():
    return GatedGenerator()


@pytest.fixture
def build_session(make_word, clock, generator):
    def _build(count=4, words=None, deck=None, config=None, batch_size=10, **kwargs):
        if deck is None:
            words = words if words is not None else [make_word(f"word{i}") for i in range(count)]
            deck = VocabDeck(words)
        return ReviewSession(
            deck,
            kwargs.pop("generator", generator),
            selector=BatchSelector(BatchConfig(batch_size=batch_size), rng=random.Random(0)),
            clock=clock,
            config=config or SessionConfig(),
            rng=random.Random(0),
            **kwargs,
        )

    return _build


# =============================================================================
# Study and loading
# =============================================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_empty_deck(self, build_session):
        session = build_session(count=0)

        assert await session.start() is False
        assert session.phase == SessionPhase.IDLE
        assert session.notices == ["No words due for review!"]

    @pytest.mark.asyncio
    async def test_study_then_quiz(self, build_session, generator):
        session = build_session(count=3)

        assert await session.start()
        assert session.phase == SessionPhase.STUDY
        assert len(session.batch) == 3

        for _ in range(3):
            assert session.current_study_card is not None
            await session.next_study_card()

        assert session.phase == SessionPhase.QUIZ
        assert len(session.items) == 3
        assert len(generator.requests) == 1
        assert {i.question.word for i in session.items} == {w.word for w in session.batch}

    @pytest.mark.asyncio
    async def test_skip_study(self, build_session):
        session = build_session()

        await session.start(skip_study=True)

        assert session.phase == SessionPhase.QUIZ
        assert session.index == 0

    @pytest.mark.asyncio
    async def test_cannot_start_twice(self, build_session):
        session = build_session()
        await session.start()

        with pytest.raises(SessionStateError):
            await session.start()

    @pytest.mark.asyncio
    async def test_study_never_schedules(self, build_session):
        session = build_session(count=2)
        await session.start()
        card = session.current_study_card

        session.set_confidence(card.id, 2)
        session.set_mnemonic(card.id, "my hook")

        assert card.total_reviews == 0
        assert card.confidence_rating == 2
        assert card.user_mnemonic == "my hook"

    @pytest.mark.asyncio
    async def test_generation_failure_ends_session(self, build_session):
        generator = AsyncMock()
        generator.generate.side_effect = QuestionGenerationError("Server error: 500")
        session = build_session(generator=generator)

        await session.start(skip_study=True)

        assert session.phase == SessionPhase.DONE
        assert "Could not generate quiz. Try free recall instead." in session.notices
        assert session.deck.streak.streak == 0

    @pytest.mark.asyncio
    async def test_insights_forwarded(self, build_session):
        generator = AsyncMock()
        generator.generate.side_effect = lambda request: [question_for(w) for w in request.words]
        session = build_session(generator=generator, insights=lambda: {"weakTypes": ["fill_blank"]})

        await session.start(skip_study=True)

        request = generator.generate.call_args[0][0]
        assert request.insights == {"weakTypes": ["fill_blank"]}

    @pytest.mark.asyncio
    async def test_questions_aligned_to_batch(self, build_session):
        generator = AsyncMock()
        # Out of order, one word missing, one extra question for an unknown word
        generator.generate.side_effect = lambda request: [
            question_for(w) for w in reversed(request.words[1:])
        ] + [question_for({"word": "stranger", "definition": "?"})]
        session = build_session(count=4, generator=generator)

        await session.start(skip_study=True)

        assert len(session.items) == 4
        for item in session.items:
            assert item.question.word == item.word.word
            assert item.question.options[item.question.correct_index] == item.word.definition


# =============================================================================
# Answering
# =============================================================================


class TestOptionsAnswers:
    @pytest.mark.asyncio
    async def test_correct_answer_auto_advances(self, build_session, clock):
        session = build_session()
        await session.start(skip_study=True)

        feedback, item = await answer(session)

        assert feedback.correct and feedback.auto_advance
        assert feedback.quality == 4
        assert item.word.total_reviews == 1
        assert [t.delay for t in clock.pending] == [2.5]
        assert session.index == 0

        clock.fire()
        await settle()

        assert session.index == 1
        assert session.feedback is None

    @pytest.mark.asyncio
    async def test_incorrect_answer_waits(self, build_session, clock):
        session = build_session()
        await session.start(skip_study=True)

        feedback, item = await answer(session, correct=False)

        assert not feedback.correct
        assert feedback.quality == 1
        assert feedback.correct_answer == item.word.definition
        assert clock.pending == []
        assert item.word.id in session.retry_ids

        await session.continue_()
        assert session.index == 1

    @pytest.mark.asyncio
    async def test_answer_is_idempotent(self, build_session):
        session = build_session()
        await session.start(skip_study=True)

        first, item = await answer(session)
        second = session.answer_option(2)

        assert second is first
        assert item.word.total_reviews == 1
        assert len(session.results) == 1

    @pytest.mark.asyncio
    async def test_continue_before_answer_rejected(self, build_session):
        session = build_session()
        await session.start(skip_study=True)

        with pytest.raises(SessionStateError):
            await session.continue_()

    @pytest.mark.asyncio
    async def test_manual_continue_cancels_auto_advance(self, build_session, clock):
        session = build_session()
        await session.start(skip_study=True)
        await answer(session)
        [timer] = clock.timers

        await session.continue_()

        assert timer.cancelled
        assert session.index == 1

        # A late callback from the cancelled timer must not skip a question
        timer.callback()
        await settle()
        assert session.index == 1

    @pytest.mark.asyncio
    async def test_session_confidence_adjusts_quality(self, build_session):
        session = build_session(count=2)
        await session.start()
        for word in session.batch:
            session.set_confidence(word.id, 1)
        await session.finish_study()

        feedback, _ = await answer(session)

        assert feedback.outcome.adjusted_quality == 3
        assert session.results[0].confidence == 1

    @pytest.mark.asyncio
    async def test_confidence_calibration_summary(self, build_session):
        session = build_session(count=4)
        await session.start()
        ratings = {"word0": 5, "word1": 1, "word2": 3}
        for word in session.batch:
            if word.word in ratings:
                session.set_confidence(word.id, ratings[word.word])
        await session.finish_study()

        while session.phase == SessionPhase.QUIZ:
            await answer(session, correct=session.current_item.word.word != "word0")
            await session.continue_()

        summary = session.summary
        assert summary.has_confidence_data
        assert summary.overconfident == ["word0"]
        assert summary.underconfident == ["word1"]
        assert summary.calibrated == ["word2"]

    @pytest.mark.asyncio
    async def test_no_calibration_without_ratings(self, build_session):
        session = build_session(count=2)
        await session.start(skip_study=True)
        await answer(session, correct=False)

        summary = session.summary
        assert not summary.has_confidence_data
        assert summary.overconfident == summary.underconfident == summary.calibrated == []

    @pytest.mark.asyncio
    async def test_stored_confidence_from_earlier_session_ignored(self, build_session, make_word):
        word = make_word("alpha", confidence_rating=1)
        session = build_session(words=[word])
        await session.start(skip_study=True)

        feedback, _ = await answer(session)

        assert feedback.outcome.adjusted_quality == 4

    @pytest.mark.asyncio
    async def test_fast_answer_bonus(self, build_session):
        session = build_session()
        await session.start(skip_study=True)

        feedback, item = await answer(session, response_ms=1200)

        assert feedback.outcome.adjusted_quality == 5
        assert item.word.avg_response_time_ms == 1200


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completes_and_records_streak(self, build_session, clock, today):
        session = build_session(count=3)
        await session.start(skip_study=True)

        for _ in range(3):
            await answer(session)
            clock.fire()
            await settle()

        assert session.phase == SessionPhase.DONE
        summary = session.summary
        assert summary.answered == 3
        assert summary.correct == 3
        assert summary.accuracy == 100
        assert session.deck.streak.streak == 1
        assert session.deck.streak.last_review_date == today

    @pytest.mark.asyncio
    async def test_level_adapts_on_completion(self, build_session, make_word):
        history = [
            make_word(
                f"old{i}",
                status=WordStatus.LEARNING,
                repetitions=1,
                interval=1,
                total_reviews=4,
                correct_reviews=0,
                last_reviewed=datetime(2025, 3, 1) + timedelta(hours=i),
                next_review_date=datetime(2025, 4, 1).date(),
            )
            for i in range(20)
        ]
        due = [make_word("alpha"), make_word("beta")]
        deck = VocabDeck(due + history, current_level=VocabDifficulty.ADVANCED)
        session = build_session(deck=deck)

        await session.start(skip_study=True)
        for _ in range(2):
            await answer(session)
            await session.continue_()

        assert session.phase == SessionPhase.DONE
        assert deck.current_level == VocabDifficulty.INTERMEDIATE
        assert [c.level for c in session.summary.level_changes] == [VocabDifficulty.INTERMEDIATE]

    @pytest.mark.asyncio
    async def test_practice_leaves_schedule_untouched(self, build_session, reviewed_word):
        words = [reviewed_word(f"w{i}", WordStatus.REVIEWING) for i in range(3)]
        before = [(w.interval, w.repetitions, w.next_review_date, w.total_reviews) for w in words]
        session = build_session(words=words)

        assert await session.start(practice=True, skip_study=True)
        for _ in range(3):
            feedback, _ = await answer(session)
            assert feedback.outcome is None
            await session.continue_()

        assert session.phase == SessionPhase.DONE
        assert session.summary.answered == 3
        assert session.summary.practice
        assert [(w.interval, w.repetitions, w.next_review_date, w.total_reviews) for w in words] == before
        assert session.deck.streak.streak == 0

    @pytest.mark.asyncio
    async def test_end_midway(self, build_session, clock):
        session = build_session()
        await session.start(skip_study=True)
        await answer(session)

        summary = await session.end()

        assert session.phase == SessionPhase.DONE
        assert summary.answered == 1
        assert session.deck.streak.streak == 1
        assert clock.pending == []

    @pytest.mark.asyncio
    async def test_end_without_answers_keeps_streak(self, build_session):
        session = build_session()
        await session.start(skip_study=True)

        await session.end()

        assert session.deck.streak.streak == 0

    @pytest.mark.asyncio
    async def test_streak_recorded_before_teardown(self, build_session, today):
        session = build_session()
        await session.start(skip_study=True)
        await answer(session)

        session.close()

        assert session.deck.streak.streak == 1
        assert session.deck.streak.last_review_date == today

    @pytest.mark.asyncio
    async def test_auto_advance_after_end_is_ignored(self, build_session, clock):
        session = build_session()
        await session.start(skip_study=True)
        await answer(session)
        [timer] = clock.timers
        await session.end()

        timer.callback()
        await settle()

        assert session.phase == SessionPhase.DONE
        assert session.index == 0


class TestRecall:
    @pytest.mark.asyncio
    async def test_recall_questions_built_locally(self, build_session, generator):
        session = build_session(count=2)

        await session.start(QuizMode.RECALL, skip_study=True)

        assert session.phase == SessionPhase.RECALL
        assert generator.requests == []
        assert session.current_item.question.type == QuestionType.FREE_RECALL

    @pytest.mark.asyncio
    async def test_grade_advances_immediately(self, build_session, clock):
        session = build_session(count=2)
        await session.start(QuizMode.RECALL, skip_study=True)
        item = session.current_item

        feedback = await session.grade_recall(2)

        assert not feedback.correct
        assert item.word.repetitions == 0
        assert session.index == 1
        assert clock.pending == []

        await session.grade_recall(5)
        assert session.phase == SessionPhase.DONE

    @pytest.mark.asyncio
    async def test_options_answer_rejected_in_recall(self, build_session):
        session = build_session()
        await session.start(QuizMode.RECALL, skip_study=True)

        with pytest.raises(SessionStateError):
            session.answer_option(0)


# =============================================================================
# Endless mode
# =============================================================================


async def answer_through(session, until_index):
    """Answer correctly and continue until the given question index is shown."""
    while session.index < until_index:
        await answer(session)
        await session.continue_()


class TestEndless:
    @pytest.mark.asyncio
    async def test_prefetch_and_swap(self, build_session, generator):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        first_batch = {w.id for w in session.batch}
        assert len(first_batch) == 10

        await answer_through(session, 8)
        await settle()

        assert session.prefetch_ready
        assert len(generator.requests) == 2

        await answer_through(session, 9)
        await answer(session)
        await session.continue_()

        assert session.phase == SessionPhase.QUIZ
        assert session.batch_count == 2
        assert session.index == 0
        assert not {w.id for w in session.batch} & first_batch
        assert session.deck.streak.streak == 1

    @pytest.mark.asyncio
    async def test_single_prefetch_in_flight(self, build_session, generator):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        generator.gate.clear()

        await answer_through(session, 9)
        await settle()

        assert session.prefetch_in_flight
        assert len(generator.requests) == 2
        session.close()

    @pytest.mark.asyncio
    async def test_waits_for_prefetch_in_flight(self, build_session, generator):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        generator.gate.clear()
        await answer_through(session, 9)
        await answer(session)

        pending = asyncio.create_task(session.continue_())
        await settle()
        assert session.phase == SessionPhase.LOADING

        generator.gate.set()
        await pending

        assert session.phase == SessionPhase.QUIZ
        assert session.batch_count == 2

    @pytest.mark.asyncio
    async def test_end_discards_prefetch(self, build_session, generator):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        generator.gate.clear()
        await answer_through(session, 8)
        assert session.prefetch_in_flight

        await session.end()
        generator.gate.set()
        await settle()

        assert session.phase == SessionPhase.DONE
        assert session.batch_count == 1
        assert not session.prefetch_in_flight

    @pytest.mark.asyncio
    async def test_end_while_loading(self, build_session, generator):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        generator.gate.clear()
        await answer_through(session, 9)
        await answer(session)
        pending = asyncio.create_task(session.continue_())
        await settle()

        await session.end()
        generator.gate.set()
        await pending

        assert session.phase == SessionPhase.DONE
        assert session.batch_count == 1

    @pytest.mark.asyncio
    async def test_network_error_ends_session(self, build_session):
        generator = GatedGenerator(fail_from_call=2)
        session = build_session(count=25, generator=generator)
        await session.start(endless=True, skip_study=True)

        await answer_through(session, 9)
        await answer(session)
        await session.continue_()

        assert session.phase == SessionPhase.DONE
        assert session.notices == ["Network error loading more words. Session ended."]
        assert session.summary.answered == 10

    @pytest.mark.asyncio
    async def test_exhausted_pool_without_recycle(self, build_session):
        session = build_session(count=3, config=SessionConfig(allow_recycle=False))
        await session.start(endless=True, skip_study=True)

        await answer_through(session, 2)
        await answer(session)
        await session.continue_()

        assert session.phase == SessionPhase.DONE
        assert session.notices == ["No more words to review."]
        assert session.deck.streak.streak == 1

    @pytest.mark.asyncio
    async def test_tiny_pool_recycles(self, build_session):
        session = build_session(count=3)
        await session.start(endless=True, skip_study=True)
        first_batch = {w.id for w in session.batch}

        await answer_through(session, 2)
        await answer(session)
        await session.continue_()

        assert session.phase == SessionPhase.QUIZ
        assert session.batch_count == 2
        assert session.batch
        assert {w.id for w in session.batch} <= first_batch
        assert session.reviewed_ids == set()

    @pytest.mark.asyncio
    async def test_missed_word_redrilled(self, build_session):
        session = build_session(count=12, config=SessionConfig(allow_recycle=False))
        await session.start(endless=True, skip_study=True)

        _, missed = await answer(session, correct=False)
        await session.continue_()
        await answer_through(session, 9)
        await answer(session)
        await session.continue_()

        assert session.batch_count == 2
        assert missed.word.id in {w.id for w in session.batch}
        assert missed.word.id not in session.retry_ids

    @pytest.mark.asyncio
    async def test_close_cancels_background_work(self, build_session, generator, clock):
        session = build_session(count=25)
        await session.start(endless=True, skip_study=True)
        generator.gate.clear()
        await answer_through(session, 8)
        await answer(session)

        session.close()
        await settle()

        assert not session.prefetch_in_flight
        assert clock.pending == []
