"""
Snapshot persistence for the WordForge CLI.

The review engine itself only exposes plain data (VocabDeck.to_snapshot);
this store writes that snapshot as JSON so the terminal client can keep
progress between runs.

Default location: ~/.wordforge/vocab.json
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .deck import VocabDeck

DEFAULT_SNAPSHOT_PATH = Path.home() / ".wordforge" / "vocab.json"


class SnapshotStore:
    """Loads and saves a VocabDeck snapshot as a JSON file."""

    def __init__(self, path: Path | None = None):
        self.path = path or DEFAULT_SNAPSHOT_PATH

    def load(self) -> VocabDeck:
        """Load the deck; a missing file yields an empty deck."""
        if not self.path.exists():
            logger.info(f"No snapshot at {self.path}; starting with an empty deck")
            return VocabDeck()

        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        deck = VocabDeck.from_snapshot(data)
        logger.debug(f"Loaded {len(deck)} words from {self.path}")
        return deck

    def save(self, deck: VocabDeck) -> Path:
        """Write the deck snapshot atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")

        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(deck.to_snapshot(), f, indent=2, ensure_ascii=False)
        tmp.replace(self.path)

        logger.debug(f"Saved {len(deck)} words to {self.path}")
        return self.path
