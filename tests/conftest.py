"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from wordforge.delivery.word_record import VocabDifficulty, WordRecord, WordStatus  # noqa: E402

TODAY = date(2025, 3, 10)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def today():
    """A fixed review date."""
    return TODAY


def _content_for(word: str, **overrides) -> dict:
    """Word content as produced by the word-generation service."""
    content = {
        "word": word,
        "definition": f"definition of {word}",
        "partOfSpeech": "noun",
        "examples": [f"An example using {word}."],
        "mnemonic": f"Remember {word}",
        "pronunciation": f"/{word}/",
        "difficulty": "intermediate",
        "category": "general",
    }
    content.update(overrides)
    return content


def _make_word(word: str = "ephemeral", **overrides) -> WordRecord:
    """Build a WordRecord with deterministic id and sensible defaults."""
    fields = {
        "id": f"id-{word}",
        "word": word,
        "definition": f"definition of {word}",
        "part_of_speech": "adjective",
        "examples": [f"An example using {word}."],
        "difficulty": VocabDifficulty.INTERMEDIATE,
        "date_added": TODAY,
        "next_review_date": TODAY,
    }
    fields.update(overrides)
    return WordRecord(**fields)


def _reviewed_word(word: str, status: WordStatus, due_in: int = 5, **overrides) -> WordRecord:
    """A word that has been reviewed before, due `due_in` days from TODAY."""
    reps = {WordStatus.LEARNING: 1, WordStatus.REVIEWING: 3, WordStatus.MASTERED: 5}[status]
    interval = {WordStatus.LEARNING: 1, WordStatus.REVIEWING: 8, WordStatus.MASTERED: 30}[status]
    defaults = dict(
        status=status,
        repetitions=reps,
        interval=interval,
        total_reviews=reps,
        correct_reviews=reps,
        next_review_date=TODAY + timedelta(days=due_in),
    )
    defaults.update(overrides)
    return _make_word(word, **defaults)


@pytest.fixture
def sample_content():
    """Provide a sample generated word for testing."""
    return _content_for(
        "ephemeral",
        partOfSpeech="adjective",
        definition="Lasting for a very short time",
        etymology="Greek ephemeros, lasting a day",
        relatedWords=["transient", "fleeting"],
        antonym="permanent",
    )


@pytest.fixture
def sample_quiz_question():
    """Provide a sample quiz question for testing."""
    return {
        "word": "ephemeral",
        "type": "multiple_choice",
        "question": 'What does "ephemeral" mean?',
        "options": [
            "Lasting forever",
            "Lasting for a very short time",
            "Extremely large",
            "Easily angered",
        ],
        "correctIndex": 1,
        "hint": "Think of mayflies.",
    }


@pytest.fixture
def content_for():
    """Factory for generated word content dicts."""
    return _content_for


@pytest.fixture
def make_word():
    """Factory for fresh WordRecords."""
    return _make_word


@pytest.fixture
def reviewed_word():
    """Factory for previously reviewed WordRecords."""
    return _reviewed_word
