"""
SQLite storage for decks, flashcards and review state.

Every component takes an open connection in its constructor; the connection
itself comes from a Database owned by the process entry point (the API
lifespan or the console tutor). Case-insensitive matching is done on
pre-normalized key columns, and the uniqueness rules for decks, flashcard
fingerprints and reviews are enforced by table constraints.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from errors import NotFoundError, ValidationError
from srs import DEFAULT_EASE, next_review_at, next_schedule

logger = logging.getLogger(__name__)

PROFICIENCY_LEVELS = ("A1", "A2", "B1", "B2", "C1", "C2")
BEGINNER_LEVELS = ("A1", "A2")
DEFAULT_DIFFICULTY = 3

LANGUAGE_CODE_MAP: Dict[str, str] = {
    "english": "en",
    "german": "de",
    "chinese": "zh",
    "custom": "custom",
}
LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "de": "German",
    "zh": "Chinese",
    "custom": "Custom",
}

# State assumed for a flashcard graded before it ever had a review row.
UNREVIEWED_INTERVAL = 1
UNREVIEWED_REPETITIONS = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    # Second precision keeps lexicographic order equal to chronological order.
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def now_iso() -> str:
    return to_iso(utcnow())


def normalize_key(value: str) -> str:
    return " ".join(value.strip().lower().split())


def language_code(language: str) -> str:
    normalized = normalize_key(language)
    return LANGUAGE_CODE_MAP.get(normalized, normalized)


def language_name(code: str, fallback: Optional[str] = None) -> str:
    if code in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[code]
    return (fallback or code).strip()


@dataclass(frozen=True)
class VocabularyItem:
    word: str
    type: str
    meaning: str
    definition: Optional[str] = None


@dataclass(frozen=True)
class Deck:
    id: int
    owner_id: str
    name: str
    description: str
    language: str
    proficiency: str
    created_at: str


@dataclass(frozen=True)
class DeckSummary:
    deck: Deck
    flashcard_count: int
    due_count: int


@dataclass(frozen=True)
class Flashcard:
    id: int
    deck_id: int
    front: str
    back: str
    word_type: str
    language: str
    difficulty: int
    created_at: str


@dataclass(frozen=True)
class Review:
    id: int
    flashcard_id: int
    owner_id: str
    quality: int
    interval: int
    repetitions: int
    ease_factor: float
    next_review: str
    updated_at: str


@dataclass(frozen=True)
class DueFlashcard:
    flashcard: Flashcard
    review: Optional[Review]


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS decks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            name TEXT NOT NULL,
            name_key TEXT NOT NULL,
            description TEXT NOT NULL,
            language TEXT NOT NULL,
            proficiency TEXT NOT NULL CHECK(proficiency IN ('A1', 'A2', 'B1', 'B2', 'C1', 'C2')),
            created_at TEXT NOT NULL,
            UNIQUE(owner_id, name_key, language)
        );

        CREATE TABLE IF NOT EXISTS flashcards (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            deck_id INTEGER NOT NULL,
            owner_id TEXT NOT NULL,
            front TEXT NOT NULL,
            front_key TEXT NOT NULL,
            back TEXT NOT NULL,
            word_type TEXT NOT NULL,
            language TEXT NOT NULL,
            difficulty INTEGER NOT NULL DEFAULT 3,
            created_at TEXT NOT NULL,
            UNIQUE(owner_id, language, front_key),
            FOREIGN KEY (deck_id) REFERENCES decks(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_flashcards_deck ON flashcards(deck_id);

        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            flashcard_id INTEGER NOT NULL,
            owner_id TEXT NOT NULL,
            quality INTEGER NOT NULL CHECK(quality BETWEEN 0 AND 5),
            interval INTEGER NOT NULL CHECK(interval >= 0),
            repetitions INTEGER NOT NULL CHECK(repetitions >= 0),
            ease_factor REAL NOT NULL CHECK(ease_factor >= 1.3),
            next_review TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(flashcard_id, owner_id),
            FOREIGN KEY (flashcard_id) REFERENCES flashcards(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_reviews_owner_next ON reviews(owner_id, next_review);
        """
    )


@contextmanager
def transaction(conn: sqlite3.Connection, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """Commit on success, roll back on any error.

    ``immediate`` takes the write lock up front, for read-modify-write units.
    """
    if immediate and not conn.in_transaction:
        conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


class Database:
    """Owns the SQLite file and hands out configured connections."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            ensure_schema(conn)
        logger.info("Database ready at %s", self.path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
        finally:
            conn.close()


def _deck_from_row(row: sqlite3.Row) -> Deck:
    return Deck(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        description=row["description"],
        language=row["language"],
        proficiency=row["proficiency"],
        created_at=row["created_at"],
    )


def _flashcard_from_row(row: sqlite3.Row) -> Flashcard:
    return Flashcard(
        id=row["id"],
        deck_id=row["deck_id"],
        front=row["front"],
        back=row["back"],
        word_type=row["word_type"],
        language=row["language"],
        difficulty=row["difficulty"],
        created_at=row["created_at"],
    )


def _review_from_row(row: sqlite3.Row) -> Review:
    return Review(
        id=row["id"],
        flashcard_id=row["flashcard_id"],
        owner_id=row["owner_id"],
        quality=row["quality"],
        interval=row["interval"],
        repetitions=row["repetitions"],
        ease_factor=row["ease_factor"],
        next_review=row["next_review"],
        updated_at=row["updated_at"],
    )


_DECK_COLUMNS = "id, owner_id, name, description, language, proficiency, created_at"
_FLASHCARD_COLUMNS = "id, deck_id, front, back, word_type, language, difficulty, created_at"
_REVIEW_COLUMNS = (
    "id, flashcard_id, owner_id, quality, interval, repetitions, ease_factor, next_review, updated_at"
)


class DeckResolver:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def find(self, owner_id: str, topic: str, language: str) -> Optional[Deck]:
        row = self.conn.execute(
            f"SELECT {_DECK_COLUMNS} FROM decks WHERE owner_id = ? AND name_key = ? AND language = ?",
            (owner_id, normalize_key(topic), language_code(language)),
        ).fetchone()
        return _deck_from_row(row) if row else None

    def resolve(self, owner_id: str, topic: str, language: str, proficiency: str) -> Deck:
        """Return the owner's deck for topic+language, creating it on first use.

        An existing deck keeps its original proficiency label. When two
        callers race to create the same deck, the loser's insert is ignored
        and both read back the same row.
        """
        existing = self.find(owner_id, topic, language)
        if existing:
            return existing

        code = language_code(language)
        description = f"{language_name(code, fallback=language)} - {proficiency}"
        with transaction(self.conn):
            cur = self.conn.execute(
                """
                INSERT INTO decks (owner_id, name, name_key, description, language, proficiency, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id, name_key, language) DO NOTHING
                """,
                (owner_id, topic.strip(), normalize_key(topic), description, code, proficiency, now_iso()),
            )
        deck = self.find(owner_id, topic, language)
        if deck is None:
            raise sqlite3.DatabaseError(f'Deck "{topic}" could not be read back after creation')
        if cur.rowcount:
            logger.info("Created deck %s (%s, %s) for owner %s", deck.id, deck.name, code, owner_id)
        else:
            logger.debug("Deck %s was created concurrently; reusing it", deck.id)
        return deck

    def get(self, deck_id: int, owner_id: str) -> Deck:
        row = self.conn.execute(
            f"SELECT {_DECK_COLUMNS} FROM decks WHERE id = ? AND owner_id = ?",
            (deck_id, owner_id),
        ).fetchone()
        if not row:
            raise NotFoundError(f"Deck {deck_id} not found.")
        return _deck_from_row(row)


class DuplicateDetector:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def exists(self, owner_id: str, word: str, language: str) -> bool:
        # Scoped to the owner and language, across every deck.
        row = self.conn.execute(
            "SELECT 1 FROM flashcards WHERE owner_id = ? AND language = ? AND front_key = ? LIMIT 1",
            (owner_id, language_code(language), normalize_key(word)),
        ).fetchone()
        return row is not None


def back_text_for(item: VocabularyItem, proficiency: str) -> str:
    if proficiency in BEGINNER_LEVELS:
        return item.meaning.strip()
    definition = (item.definition or "").strip()
    return definition or item.meaning.strip()


class ReviewStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create_flashcard_and_review(
        self,
        item: VocabularyItem,
        deck: Deck,
        language: str,
        proficiency: str,
    ) -> Optional[Flashcard]:
        """Store the flashcard and its sentinel review in one transaction.

        Returns None when the owner already has this word in this language.
        """
        code = language_code(language)
        now = now_iso()
        with transaction(self.conn):
            cur = self.conn.execute(
                """
                INSERT INTO flashcards (
                    deck_id, owner_id, front, front_key, back, word_type, language, difficulty, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(owner_id, language, front_key) DO NOTHING
                """,
                (
                    deck.id,
                    deck.owner_id,
                    item.word.strip(),
                    normalize_key(item.word),
                    back_text_for(item, proficiency),
                    item.type.strip(),
                    code,
                    DEFAULT_DIFFICULTY,
                    now,
                ),
            )
            if not cur.rowcount:
                return None
            flashcard_id = int(cur.lastrowid)
            self.conn.execute(
                """
                INSERT INTO reviews (
                    flashcard_id, owner_id, quality, interval, repetitions, ease_factor,
                    next_review, created_at, updated_at
                )
                VALUES (?, ?, 0, 0, 0, ?, ?, ?, ?)
                """,
                (flashcard_id, deck.owner_id, DEFAULT_EASE, now, now, now),
            )
        return self.get_flashcard(flashcard_id)

    def get_flashcard(self, flashcard_id: int) -> Flashcard:
        row = self.conn.execute(
            f"SELECT {_FLASHCARD_COLUMNS} FROM flashcards WHERE id = ?", (flashcard_id,)
        ).fetchone()
        if not row:
            raise NotFoundError(f"Flashcard {flashcard_id} not found.")
        return _flashcard_from_row(row)

    def get_review(self, flashcard_id: int, owner_id: str) -> Optional[Review]:
        row = self.conn.execute(
            f"SELECT {_REVIEW_COLUMNS} FROM reviews WHERE flashcard_id = ? AND owner_id = ?",
            (flashcard_id, owner_id),
        ).fetchone()
        return _review_from_row(row) if row else None

    def upsert(
        self,
        flashcard_id: int,
        owner_id: str,
        quality: int,
        now: Optional[datetime] = None,
    ) -> Review:
        """Record a grade for the owner's flashcard and reschedule it."""
        if isinstance(quality, bool) or not isinstance(quality, int) or not 0 <= quality <= 5:
            raise ValidationError("Quality must be an integer between 0 and 5.")
        moment = now or utcnow()
        stamp = to_iso(moment)

        with transaction(self.conn, immediate=True):
            owned = self.conn.execute(
                """
                SELECT 1 FROM flashcards f
                JOIN decks d ON d.id = f.deck_id
                WHERE f.id = ? AND d.owner_id = ?
                """,
                (flashcard_id, owner_id),
            ).fetchone()
            if not owned:
                raise NotFoundError(f"Flashcard {flashcard_id} not found.")

            current = self.get_review(flashcard_id, owner_id)
            if current:
                schedule = next_schedule(quality, current.interval, current.repetitions, current.ease_factor)
            else:
                schedule = next_schedule(quality, UNREVIEWED_INTERVAL, UNREVIEWED_REPETITIONS, DEFAULT_EASE)

            self.conn.execute(
                """
                INSERT INTO reviews (
                    flashcard_id, owner_id, quality, interval, repetitions, ease_factor,
                    next_review, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(flashcard_id, owner_id) DO UPDATE SET
                    quality = excluded.quality,
                    interval = excluded.interval,
                    repetitions = excluded.repetitions,
                    ease_factor = excluded.ease_factor,
                    next_review = excluded.next_review,
                    updated_at = excluded.updated_at
                """,
                (
                    flashcard_id,
                    owner_id,
                    quality,
                    schedule.interval,
                    schedule.repetitions,
                    schedule.ease_factor,
                    to_iso(next_review_at(schedule.interval, moment)),
                    stamp,
                    stamp,
                ),
            )
            review = self.get_review(flashcard_id, owner_id)
            if review is None:
                raise NotFoundError(f"Review for flashcard {flashcard_id} not found.")
        logger.debug(
            "Graded flashcard %s for %s: q=%s interval=%s reps=%s ease=%.2f",
            flashcard_id,
            owner_id,
            quality,
            review.interval,
            review.repetitions,
            review.ease_factor,
        )
        return review

    def due_flashcards(
        self,
        owner_id: str,
        deck_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[DueFlashcard]:
        """Flashcards with no review yet, or whose owner review is due.

        The "no review" test looks at reviews from anyone while the overdue
        test only looks at the owner's review. Flashcards are never shared
        between owners, so both agree today.
        """
        if deck_id is not None:
            DeckResolver(self.conn).get(deck_id, owner_id)
        rows = self.conn.execute(
            """
            SELECT
                f.id, f.deck_id, f.front, f.back, f.word_type, f.language, f.difficulty, f.created_at,
                r.id AS review_id, r.owner_id AS review_owner_id, r.quality, r.interval,
                r.repetitions, r.ease_factor, r.next_review, r.updated_at AS review_updated_at
            FROM flashcards f
            JOIN decks d ON d.id = f.deck_id
            LEFT JOIN reviews r ON r.flashcard_id = f.id AND r.owner_id = :owner
            WHERE d.owner_id = :owner
              AND (:deck_id IS NULL OR f.deck_id = :deck_id)
              AND (
                  NOT EXISTS (SELECT 1 FROM reviews any_r WHERE any_r.flashcard_id = f.id)
                  OR r.next_review <= :now
              )
            ORDER BY r.next_review IS NOT NULL, r.next_review, f.id
            """,
            {"owner": owner_id, "deck_id": deck_id, "now": to_iso(now or utcnow())},
        ).fetchall()

        due: List[DueFlashcard] = []
        for row in rows:
            review = None
            if row["review_id"] is not None:
                review = Review(
                    id=row["review_id"],
                    flashcard_id=row["id"],
                    owner_id=row["review_owner_id"],
                    quality=row["quality"],
                    interval=row["interval"],
                    repetitions=row["repetitions"],
                    ease_factor=row["ease_factor"],
                    next_review=row["next_review"],
                    updated_at=row["review_updated_at"],
                )
            due.append(DueFlashcard(flashcard=_flashcard_from_row(row), review=review))
        return due

    def list_decks(self, owner_id: str, now: Optional[datetime] = None) -> List[DeckSummary]:
        rows = self.conn.execute(
            """
            SELECT
                d.id, d.owner_id, d.name, d.description, d.language, d.proficiency, d.created_at,
                COUNT(f.id) AS flashcard_count,
                COALESCE(SUM(
                    CASE
                        WHEN f.id IS NULL THEN 0
                        WHEN NOT EXISTS (SELECT 1 FROM reviews any_r WHERE any_r.flashcard_id = f.id) THEN 1
                        WHEN r.next_review <= :now THEN 1
                        ELSE 0
                    END
                ), 0) AS due_count
            FROM decks d
            LEFT JOIN flashcards f ON f.deck_id = d.id
            LEFT JOIN reviews r ON r.flashcard_id = f.id AND r.owner_id = :owner
            WHERE d.owner_id = :owner
            GROUP BY d.id
            ORDER BY d.created_at DESC, d.id DESC
            """,
            {"owner": owner_id, "now": to_iso(now or utcnow())},
        ).fetchall()
        return [
            DeckSummary(
                deck=_deck_from_row(row),
                flashcard_count=row["flashcard_count"],
                due_count=row["due_count"],
            )
            for row in rows
        ]

