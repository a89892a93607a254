#!/usr/bin/env python3
"""
Console tutor for lesson flashcards.

Without arguments it runs a practice session: pick one of your decks, go
through the flashcards that are due and grade each one from 0 (forgot it) to
5 (perfect recall). `learn.py import lesson.json --owner NAME` stores the
vocabulary of a lesson file the same way the API does.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sqlite3
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import config
from errors import NotFoundError, ValidationError
from ingest import IngestionPipeline, IngestResult
from store import Database, DeckSummary, DueFlashcard, ReviewStore

QUIT_COMMANDS = {"q", "quit", "exit"}
SKIP_COMMANDS = {"s", "skip"}
ALL_DECKS = "all"

USE_COLORS = sys.stdout.isatty() and os.environ.get("NO_COLOR") is None
COLOR_RESET = "\033[0m"
COLOR_FRONT = "\033[96m"  # cyan
COLOR_BACK = "\033[95m"  # magenta
COLOR_TITLE = "\033[93m"  # yellow

QUALITY_HINTS = (
    "0 = blackout",
    "1 = wrong, felt familiar",
    "2 = wrong, easy once seen",
    "3 = right with effort",
    "4 = right after a pause",
    "5 = instant",
)


def color_text(content: str, color_code: str) -> str:
    if not USE_COLORS:
        return content
    return f"{color_code}{content}{COLOR_RESET}"


def parse_quality(answer: str) -> Union[int, str, None]:
    """Map console input to a grade, "skip", "quit" or None when unrecognised."""
    cleaned = answer.strip().lower()
    if cleaned in QUIT_COMMANDS:
        return "quit"
    if cleaned in SKIP_COMMANDS:
        return "skip"
    if cleaned.isdigit() and 0 <= int(cleaned) <= 5:
        return int(cleaned)
    return None


def prompt_owner() -> str:
    while True:
        name = input("Your name: ").strip()
        if name:
            return name
        print("Type at least one character.")


def choose_deck(summaries: Sequence[DeckSummary]) -> Optional[Union[int, str]]:
    print("\nWhich deck do you want to practise?")
    for idx, summary in enumerate(summaries, start=1):
        deck = summary.deck
        print(f"  {idx}) {deck.name} [{deck.language}, {deck.proficiency}] - {summary.due_count}/{summary.flashcard_count} due")
    print("  a) All decks")
    print("  q) Quit")
    while True:
        answer = input("Choice: ").strip().lower()
        if answer in QUIT_COMMANDS:
            return None
        if answer == "a":
            return ALL_DECKS
        if answer.isdigit() and 1 <= int(answer) <= len(summaries):
            return summaries[int(answer) - 1].deck.id
        print("Unknown choice, try again.")


def ask_card(entry: DueFlashcard) -> Union[int, str]:
    card = entry.flashcard
    print("\n----------------------------------------")
    print(color_text(card.front, COLOR_FRONT) + f"  ({card.word_type})")
    if entry.review and entry.review.repetitions:
        print(f"Streak: {entry.review.repetitions}, last interval {entry.review.interval} d")
    input("Press Enter to reveal the answer...")
    print(color_text(card.back, COLOR_BACK))
    print("  " + " | ".join(QUALITY_HINTS))
    while True:
        choice = parse_quality(input("Grade 0-5 ('s' skip, 'q' quit): "))
        if choice is not None:
            return choice
        print("Enter a number from 0 to 5.")


def practice_loop(conn: sqlite3.Connection, owner_id: str, deck_id: Optional[int]) -> Dict[str, int]:
    store = ReviewStore(conn)
    due = store.due_flashcards(owner_id, deck_id)
    tally = {"reviewed": 0, "passed": 0, "skipped": 0}
    if not due:
        print("Nothing is due right now. Come back later!")
        return tally

    print(color_text(f"\n{len(due)} flashcard(s) due.", COLOR_TITLE))
    for idx, entry in enumerate(due, start=1):
        print(f"\nCard {idx}/{len(due)}")
        choice = ask_card(entry)
        if choice == "quit":
            print("Session stopped.")
            break
        if choice == "skip":
            tally["skipped"] += 1
            continue
        review = store.upsert(entry.flashcard.id, owner_id, int(choice))
        tally["reviewed"] += 1
        if review.repetitions:
            tally["passed"] += 1
        print(f"Next review in {review.interval} day(s).")
    return tally


def summary_line(tally: Dict[str, int]) -> str:
    reviewed = tally["reviewed"]
    rate = (tally["passed"] / reviewed) * 100 if reviewed else 0.0
    return (
        f"Reviewed {reviewed}, remembered {tally['passed']}, skipped {tally['skipped']} "
        f"({rate:.1f}% recall)."
    )


def load_lesson_file(path: Path) -> Dict:
    with path.open(encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValidationError("Lesson file must contain a JSON object.")
    return data


def import_lesson(conn: sqlite3.Connection, path: Path, owner_id: str) -> IngestResult:
    lesson = load_lesson_file(path)
    return IngestionPipeline(conn).ingest(
        owner_id=owner_id,
        topic=lesson.get("topic"),
        language=lesson.get("language"),
        proficiency=lesson.get("proficiency"),
        vocabulary=lesson.get("vocabulary"),
    )


def run_import(database: Database, path: Path, owner_id: str) -> int:
    with database.connect() as conn:
        try:
            result = import_lesson(conn, path, owner_id)
        except OSError as exc:
            print(f"Cannot read {path}: {exc}")
            return 2
        except (ValidationError, json.JSONDecodeError) as exc:
            print(f"Invalid lesson file: {exc}")
            return 2
    if not result.success:
        print("Saving failed:")
        for error in result.errors or []:
            print(f"  - {error}")
        return 1
    print(f"Deck '{result.deck_name}' (#{result.deck_id}): {result.created} created, {result.skipped} skipped.")
    for error in result.errors or []:
        print(f"  ! {error}")
    return 0


def run_practice(database: Database) -> int:
    print("Lesson flashcards - practice session")
    owner_id = prompt_owner()
    with database.connect() as conn:
        try:
            while True:
                summaries = ReviewStore(conn).list_decks(owner_id)
                if not summaries:
                    print(f"No decks for {owner_id} yet. Import a lesson first.")
                    return 0
                choice = choose_deck(summaries)
                if choice is None:
                    print("Bye!")
                    return 0
                deck_id = None if choice == ALL_DECKS else int(choice)
                tally = practice_loop(conn, owner_id, deck_id)
                print(summary_line(tally))
        except NotFoundError as exc:
            print(exc)
            return 1
        except KeyboardInterrupt:
            print("\nInterrupted. Bye!")
            return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--db", type=Path, default=config.DB_PATH, help="SQLite database file")
    sub = parser.add_subparsers(dest="command")
    importer = sub.add_parser("import", help="store the vocabulary of a lesson JSON file")
    importer.add_argument("file", type=Path)
    importer.add_argument("--owner", required=True)
    sub.add_parser("practice", help="review due flashcards (default)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    # The tutor talks through print(); only problems go to the log.
    logging.basicConfig(level=logging.WARNING, format=config.LOG_FORMAT)
    database = Database(args.db)
    database.initialize()
    if args.command == "import":
        return run_import(database, args.file, args.owner)
    return run_practice(database)


if __name__ == "__main__":
    sys.exit(main())
