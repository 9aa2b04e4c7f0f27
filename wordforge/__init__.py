"""
WordForge: spaced-repetition vocabulary review engine.

Subpackages:
- delivery: word records, scheduling, batch selection, review sessions, CLI
- integrations: question-generation and reward collaborators
"""

__version__ = "1.0.0"
