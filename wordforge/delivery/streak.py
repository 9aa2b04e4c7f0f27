"""Daily review streak."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta


@dataclass
class StreakTracker:
    """Counts consecutive calendar days with at least one review."""

    streak: int = 0
    last_review_date: date | None = None

    def record(self, today: date) -> bool:
        """
        Register a review on `today`.

        Returns:
            True if the streak state changed (first review of the day)
        """
        if self.last_review_date == today:
            return False

        if self.last_review_date == today - timedelta(days=1):
            self.streak += 1
        else:
            self.streak = 1

        self.last_review_date = today
        return True

    def current(self, today: date) -> int:
        """Streak as displayed on `today` (0 once a day has been missed)."""
        if self.last_review_date is None:
            return 0
        if today - self.last_review_date > timedelta(days=1):
            return 0
        return self.streak
