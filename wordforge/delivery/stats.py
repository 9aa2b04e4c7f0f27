"""
Read-only learning statistics for analytics and achievements.
"""

from __future__ import annotations

from datetime import date

from .deck import VocabDeck
from .word_record import WordStatus


def deck_stats(deck: VocabDeck, today: date | None = None) -> dict:
    """
    Get overall vocabulary statistics.

    Returns:
        Dictionary with aggregate stats
    """
    today = today or date.today()
    words = deck.words

    by_status = {status.value: 0 for status in WordStatus}
    for word in words:
        by_status[word.status.value] += 1

    total_reviews = sum(w.total_reviews for w in words)
    correct_reviews = sum(w.correct_reviews for w in words)

    return {
        "total_words": len(words),
        "by_status": by_status,
        "words_due": sum(1 for w in words if w.is_due(today)),
        "total_reviews": total_reviews,
        "correct_reviews": correct_reviews,
        "accuracy_percent": round(correct_reviews * 100.0 / total_reviews, 1) if total_reviews else 0.0,
        "streak": deck.streak.current(today),
        "current_level": deck.current_level.value,
    }
