"""
Batch Selector: builds interleaved review batches.

Mixes:
- Due words (highest priority, up to 70% of the batch)
- Interleave words: already-reviewed 'reviewing'/'mastered' words not yet due

The combined batch is shuffled so old and new material alternate
instead of arriving in blocks. When nothing is due the batch is a
uniform sample of the whole pool.

Endless sessions call select_endless() repeatedly. It additionally
excludes words already reviewed this session, re-drills words missed
earlier in the session (ahead of the interleave pool), tops up from words
not yet seen this session, and only recycles the pool when allowed.
"""

from __future__ import annotations

import math
import random
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import date

from loguru import logger

from .word_record import WordRecord, WordStatus

INTERLEAVE_STATUSES = frozenset({WordStatus.MASTERED, WordStatus.REVIEWING})


@dataclass
class BatchConfig:
    """Configuration for batch selection."""

    batch_size: int = 10
    due_ratio: float = 0.7  # Share of the batch reserved for due words

    def due_quota(self) -> int:
        # round() absorbs float noise in ratio * size before ceil
        return math.ceil(round(self.due_ratio * self.batch_size, 6))


@dataclass
class EndlessSelection:
    """Outcome of one endless-mode selection."""

    words: list[WordRecord] = field(default_factory=list)
    recycled: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.words


class BatchSelector:
    """
    Selects review batches with due priority and interleaving.

    The random source is injected so tests can assert exact compositions.
    """

    def __init__(self, config: BatchConfig | None = None, rng: random.Random | None = None):
        self.config = config or BatchConfig()
        self.rng = rng or random.Random()

    def _sample(self, words: Sequence[WordRecord], k: int) -> list[WordRecord]:
        k = max(0, min(k, len(words)))
        return self.rng.sample(list(words), k) if k else []

    def partition(
        self,
        pool: Sequence[WordRecord],
        today: date,
    ) -> tuple[list[WordRecord], list[WordRecord]]:
        """Split a pool into (due, interleave candidates)."""
        due = [w for w in pool if w.is_due(today)]
        interleave = [
            w
            for w in pool
            if not w.is_due(today) and w.status in INTERLEAVE_STATUSES and w.total_reviews > 0
        ]
        return due, interleave

    def _batch_size(self, override: int | None) -> int:
        size = self.config.batch_size if override is None else override
        if size < 1:
            raise ValueError(f"Batch size must be at least 1, got {size}")
        return size

    def select(
        self,
        pool: Sequence[WordRecord],
        today: date,
        batch_size: int | None = None,
    ) -> list[WordRecord]:
        """
        Build a review batch.

        Args:
            pool: All word records
            today: Current date
            batch_size: Override for the configured N

        Returns:
            At most N distinct words, shuffled
        """
        size = self._batch_size(batch_size)
        due, interleave = self.partition(pool, today)

        if not due:
            batch = self._sample(pool, size)
            logger.debug(f"No due words; sampled {len(batch)} from pool of {len(pool)}")
            return batch

        quota = BatchConfig(batch_size=size, due_ratio=self.config.due_ratio).due_quota()
        due_take = self._sample(due, min(len(due), quota))
        interleave_take = self._sample(interleave, size - len(due_take))

        batch = due_take + interleave_take
        self.rng.shuffle(batch)

        logger.debug(
            f"Batch built: {len(due_take)} due + {len(interleave_take)} interleaved "
            f"(due pool {len(due)}, interleave pool {len(interleave)})"
        )
        return batch

    def select_endless(
        self,
        pool: Sequence[WordRecord],
        today: date,
        reviewed_ids: Collection[str],
        retry_ids: Collection[str] = (),
        exclude_ids: Collection[str] = (),
        allow_recycle: bool = False,
        batch_size: int | None = None,
    ) -> EndlessSelection:
        """
        Build the next batch of an endless session.

        Args:
            pool: All word records
            today: Current date
            reviewed_ids: Words already reviewed this session (excluded)
            retry_ids: Words missed this session and not yet re-drilled
            exclude_ids: Words that must not appear (e.g. the batch in progress)
            allow_recycle: Whether an exhausted pool may be resampled from scratch
            batch_size: Override for the configured N

        Returns:
            EndlessSelection; empty when the session should end
        """
        size = self._batch_size(batch_size)
        blocked = set(exclude_ids)
        seen = set(reviewed_ids) | blocked

        retry = [w for w in pool if w.id in retry_ids and w.id not in blocked]
        retry_set = {w.id for w in retry}
        available = [w for w in pool if w.id not in seen and w.id not in retry_set]
        due, interleave = self.partition(available, today)

        quota = BatchConfig(batch_size=size, due_ratio=self.config.due_ratio).due_quota()
        chosen = self._sample(due, min(len(due), quota))
        chosen += self._sample(retry, size - len(chosen))
        chosen += self._sample(interleave, size - len(chosen))

        taken = {w.id for w in chosen}
        unseen = [w for w in available if w.id not in taken]
        chosen += self._sample(unseen, size - len(chosen))

        if chosen:
            self.rng.shuffle(chosen)
            return EndlessSelection(words=chosen)

        if allow_recycle:
            # A pool no larger than the batch in progress recycles in full
            recyclable = [w for w in pool if w.id not in blocked] or list(pool)
            if recyclable:
                logger.info(f"Endless pool exhausted; recycling {len(recyclable)} words")
                fresh = self.select_endless(recyclable, today, reviewed_ids=(), batch_size=size)
                return EndlessSelection(words=fresh.words, recycled=True)

        logger.info("Endless pool exhausted; no eligible words remain")
        return EndlessSelection()
