"""
WordForge: terminal client for vocabulary review.

A Rich terminal interface driving the review session state machine.

Commands:
- wordforge review    - Start a review session (quiz, recall, endless, practice)
- wordforge due       - List words due today
- wordforge stats     - Show learning statistics
- wordforge add       - Ingest a generated word batch (JSON)
- wordforge delete    - Remove a word from the deck
"""
from __future__ import annotations

import asyncio
import json
import sys
import time
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from wordforge.config import get_settings
from wordforge.integrations.questions import (
    HttpQuestionGenerator,
    OfflineQuestionGenerator,
    QuestionGenerator,
)
from wordforge.integrations.rewards import RewardLedger

from .batch_selector import BatchSelector
from .level import LevelAdaptationEngine
from .scheduler import SM2Scheduler
from .session import ACTIVE_PHASES, QuizMode, ReviewItem, ReviewSession, SessionPhase, SessionSummary
from .state_store import SnapshotStore
from .stats import deck_stats
from .word_record import ContentValidationError, WordRecord

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="wordforge",
    help="WordForge: spaced-repetition vocabulary review",
    no_args_is_help=True,
)
console = Console()


# =============================================================================
# Styling
# =============================================================================

STYLES = {
    "correct": "bold green",
    "incorrect": "bold red",
    "status": {
        "new": "blue",
        "learning": "yellow",
        "reviewing": "magenta",
        "mastered": "green",
    },
}


def style_status(status: str) -> str:
    color = STYLES["status"].get(status, "white")
    return f"[{color}]{status.upper()}[/{color}]"


def _store() -> SnapshotStore:
    return SnapshotStore(get_settings().snapshot_path)


# =============================================================================
# Display Helpers
# =============================================================================


def display_study_card(word: WordRecord, index: int, total: int) -> None:
    """Display a study flashcard (front and back together)."""
    content = (
        f"[bold]{word.word}[/bold]  [dim]{word.pronunciation}[/dim]\n"
        f"[italic]{word.part_of_speech}[/italic]\n\n"
        f"{word.definition}"
    )
    if word.examples:
        content += "\n\n" + "\n".join(f"  • {ex}" for ex in word.examples)
    if word.user_mnemonic or word.mnemonic:
        content += f"\n\n[dim]Mnemonic: {word.user_mnemonic or word.mnemonic}[/dim]"

    console.print(Panel(
        content,
        title=f"Study {index}/{total}  |  {style_status(word.status.value)}",
        title_align="left",
        border_style="cyan",
        padding=(1, 2),
    ))


def display_question(item: ReviewItem, index: int, total: int, batch: int) -> None:
    question = item.question
    content = question.question
    if question.has_options:
        content += "\n\n" + "\n".join(
            f"  {chr(65 + i)}. {opt}" for i, opt in enumerate(question.options)
        )

    console.print(Panel(
        content,
        title=f"Batch {batch}  |  Question {index}/{total}  |  {question.type.value}",
        title_align="left",
        border_style="cyan",
        padding=(1, 2),
    ))


def display_summary(summary: SessionSummary, ledger: RewardLedger) -> None:
    label = "Practice" if summary.practice else "Review"
    body = (
        f"[bold]{label} complete![/bold]\n\n"
        f"Answered: {summary.answered}\n"
        f"Correct: {summary.correct} ({summary.accuracy}%)\n"
        f"Batches: {summary.batches}\n"
        f"Streak: {summary.streak} day(s)\n"
        f"Level: {summary.level}"
    )
    if not summary.practice:
        body += f"\nRewards: +{ledger.xp} XP, +{ledger.gold} gold"
    for change in summary.level_changes:
        arrow = "promoted" if change.promoted else "demoted"
        body += f"\n[bold]Level {arrow}: {change.previous.value} -> {change.level.value}[/bold]"
    if summary.has_confidence_data:
        body += f"\n\n[bold]Confidence check[/bold] ({len(summary.calibrated)} calibrated)"
        if summary.overconfident:
            body += f"\n[red]Overconfident:[/red] {', '.join(summary.overconfident)}"
        if summary.underconfident:
            body += f"\n[yellow]Underconfident:[/yellow] {', '.join(summary.underconfident)}"
    for notice in summary.notices:
        body += f"\n[yellow]{notice}[/yellow]"

    console.print(Panel(body, title="Summary", border_style="green"))


# =============================================================================
# Interactive loop
# =============================================================================


async def _ask(prompt: str, **kwargs) -> str:
    """Prompt without blocking the event loop (prefetch keeps running)."""
    return await asyncio.to_thread(Prompt.ask, prompt, **kwargs)


async def _wait_for_advance(session: ReviewSession, item: ReviewItem) -> None:
    while session.current_item is item and session.phase in ACTIVE_PHASES:
        await asyncio.sleep(0.05)


async def _run_study(session: ReviewSession) -> None:
    total = len(session.batch)
    while session.phase == SessionPhase.STUDY:
        card = session.current_study_card
        display_study_card(card, session.study_index + 1, total)

        answer = await _ask(
            "Confidence 1-5, m for a mnemonic, s to skip to questions, Enter for next",
            default="",
        )
        answer = answer.strip().lower()
        if answer == "s":
            await session.finish_study()
            return
        if answer == "m":
            mnemonic = await _ask("Your mnemonic")
            session.set_mnemonic(card.id, mnemonic)
            continue
        if answer.isdigit():
            session.set_confidence(card.id, int(answer))
        await session.next_study_card()


async def _run_questions(session: ReviewSession) -> None:
    while session.is_active:
        if session.phase == SessionPhase.LOADING:
            with console.status("Loading questions..."):
                while session.phase == SessionPhase.LOADING:
                    await asyncio.sleep(0.05)
            continue

        item = session.current_item
        display_question(item, session.index + 1, len(session.items), session.batch_count)
        started = time.monotonic()

        if item.question.has_options:
            letters = [chr(65 + i) for i in range(len(item.question.options))]
            choices = letters + [c.lower() for c in letters] + ["q"]
            answer = await _ask("Your answer (q to quit)", choices=choices, show_choices=False)
            if answer == "q":
                await session.end()
                return

            response_ms = int((time.monotonic() - started) * 1000)
            feedback = session.answer_option(ord(answer.upper()) - ord("A"), response_ms)
            if feedback.correct:
                console.print(f"[{STYLES['correct']}]Correct![/{STYLES['correct']}]")
                await _wait_for_advance(session, item)
            else:
                console.print(
                    f"[{STYLES['incorrect']}]Incorrect[/{STYLES['incorrect']}] "
                    f"- {feedback.correct_answer}"
                )
                await _ask("[dim]Press Enter to continue[/dim]", default="")
                await session.continue_()
        else:
            reveal = await _ask("[dim]Enter to reveal, h for hint, q to quit[/dim]", default="")
            if reveal == "q":
                await session.end()
                return
            if reveal == "h":
                console.print(f"[dim]{item.question.hint}[/dim]")
                await _ask("[dim]Enter to reveal[/dim]", default="")
            response_ms = int((time.monotonic() - started) * 1000)
            console.print(Panel(item.word.definition, border_style="green"))

            console.print("[dim]5 perfect · 4 hesitant · 3 difficult · 2 almost · 1 familiar · 0 blank[/dim]")
            grade = await _ask("Grade", choices=[str(g) for g in range(6)])
            await session.grade_recall(int(grade), response_ms)


async def _run_review(
    session: ReviewSession,
    mode: QuizMode,
    endless: bool,
    practice: bool,
    skip_study: bool,
) -> SessionSummary:
    try:
        if not await session.start(mode, endless=endless, practice=practice, skip_study=skip_study):
            return session.summary
        await _run_study(session)
        await _run_questions(session)
        return session.summary
    finally:
        session.close()
        if isinstance(session.generator, HttpQuestionGenerator):
            await session.generator.close()


def _build_generator() -> QuestionGenerator:
    settings = get_settings()
    if settings.question_api_url:
        return HttpQuestionGenerator(
            settings.question_api_url,
            api_key=settings.question_api_key,
            endpoint=settings.question_endpoint,
            timeout=settings.question_timeout_seconds,
        )
    return OfflineQuestionGenerator()


# =============================================================================
# Commands
# =============================================================================


@app.command()
def review(
    recall: bool = typer.Option(False, "--recall", "-r", help="Self-graded free recall"),
    endless: bool = typer.Option(False, "--endless", "-e", help="Keep streaming batches"),
    practice: bool = typer.Option(False, "--practice", "-p", help="Don't update the schedule"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-n", min=1, help="Words per batch"),
    skip_study: bool = typer.Option(False, "--skip-study", "-s", help="Skip the study cards"),
) -> None:
    """
    Start a review session.

    Due words come first, mixed with already-learned words for
    interleaving. Progress is saved when the session ends.
    """
    settings = get_settings()
    store = _store()
    deck = store.load()

    if len(deck) == 0:
        console.print("\n[red]No words yet![/red] Add a batch with [bold]wordforge add[/bold].")
        raise typer.Exit(1)

    if not practice and not deck.due_words(date.today()):
        console.print("\n[green]All caught up![/green] Nothing is due for review.")
        if not Confirm.ask("Practice without affecting the schedule?", default=True):
            raise typer.Exit(0)
        practice = True

    batch_config = settings.batch_config()
    if batch_size is not None:
        batch_config.batch_size = batch_size

    ledger = RewardLedger()
    session = ReviewSession(
        deck,
        _build_generator(),
        scheduler=SM2Scheduler(rewards=ledger),
        selector=BatchSelector(batch_config),
        level_engine=LevelAdaptationEngine(settings.level_config()),
        config=settings.session_config(),
    )
    mode = QuizMode.RECALL if recall else QuizMode.QUIZ

    try:
        summary = asyncio.run(_run_review(session, mode, endless, practice, skip_study))
    except KeyboardInterrupt:
        console.print("\n\n[yellow]Session interrupted.[/yellow]")
        summary = session.summary
    finally:
        store.save(deck)

    display_summary(summary, ledger)


@app.command()
def due(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of words to list"),
) -> None:
    """List words due for review today."""
    deck = _store().load()
    today = date.today()
    words = sorted(deck.due_words(today), key=lambda w: (w.next_review_date, w.word))

    if not words:
        console.print("\n[green]All caught up! Come back later.[/green]")
        return

    table = Table(title=f"Words Due ({len(words)})")
    table.add_column("Word")
    table.add_column("Status")
    table.add_column("Due")
    table.add_column("Reviews")

    for word in words[:limit]:
        table.add_row(
            word.word,
            style_status(word.status.value),
            word.next_review_date.isoformat(),
            str(word.total_reviews),
        )
    console.print(table)


@app.command()
def stats() -> None:
    """Show learning statistics and progress."""
    data = deck_stats(_store().load())

    console.print("\n[bold cyan]Vocabulary Statistics[/bold cyan]")
    console.print("=" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Total words", str(data["total_words"]))
    for status, count in data["by_status"].items():
        table.add_row(f"  {style_status(status)}", str(count))
    table.add_row("Due today", str(data["words_due"]))
    table.add_row("Total reviews", str(data["total_reviews"]))
    table.add_row("Accuracy", f"{data['accuracy_percent']:.1f}%")
    table.add_row("Streak", f"{data['streak']} day(s)")
    table.add_row("Level", data["current_level"])

    console.print(table)


@app.command()
def add(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with words"),
) -> None:
    """
    Ingest a generated word batch.

    Accepts either a list of word objects or {"words": [...]}.
    """
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    contents = payload.get("words", []) if isinstance(payload, dict) else payload

    store = _store()
    deck = store.load()
    try:
        added = deck.add_words(contents, date.today())
    except ContentValidationError as e:
        console.print("[red]Batch rejected - no words were added:[/red]")
        for error in e.errors:
            console.print(f"  [red]•[/red] {error}")
        raise typer.Exit(1)

    store.save(deck)
    console.print(f"[green]Added {len(added)} words[/green] (deck size {len(deck)})")


@app.command()
def delete(
    word: str = typer.Argument(..., help="Word to remove"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove a word and its review history."""
    store = _store()
    deck = store.load()
    record = deck.find(word)

    if record is None:
        console.print(f"[red]No word named {word!r}[/red]")
        raise typer.Exit(1)

    if not yes and not Confirm.ask(f"Delete {record.word!r}?", default=False):
        raise typer.Exit(0)

    deck.delete_word(record.id)
    store.save(deck)
    console.print(f"[green]Deleted {record.word}[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level.upper(),
        format="<level>{message}</level>",
    )

    app()


if __name__ == "__main__":
    main()
