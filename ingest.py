"""
Turns a lesson's vocabulary into flashcards.

A batch is validated up front, the target deck is resolved once, and then
each word is either created (flashcard plus a review that is due right
away) or skipped because the owner already studies it in that language.
Resubmitting a batch is safe: everything that was stored the first time is
skipped the second time.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import asdict, dataclass
from typing import Any, List, Mapping, Optional, Sequence, Union

import config
from errors import FatalPersistenceError, ItemPersistenceError, ValidationError
from store import (
    PROFICIENCY_LEVELS,
    Deck,
    DeckResolver,
    DuplicateDetector,
    ReviewStore,
    VocabularyItem,
    normalize_key,
)

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 200
REQUIRED_ITEM_FIELDS = ("word", "type", "meaning")

RawItem = Union[VocabularyItem, Mapping[str, Any]]


@dataclass(frozen=True)
class LessonBatch:
    owner_id: str
    topic: str
    language: str
    proficiency: str
    items: List[VocabularyItem]


@dataclass
class IngestResult:
    success: bool
    deck_id: Optional[int]
    deck_name: str
    created: int
    skipped: int
    errors: Optional[List[str]] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _require_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(message)
    return value


def _coerce_item(index: int, raw: RawItem) -> VocabularyItem:
    if isinstance(raw, VocabularyItem):
        data: Mapping[str, Any] = asdict(raw)
    elif isinstance(raw, Mapping):
        data = raw
    else:
        raise ValidationError(f"Vocabulary item at index {index} must be an object.")

    missing = [name for name in REQUIRED_ITEM_FIELDS if not data.get(name)]
    if missing:
        raise ValidationError(
            f"Vocabulary item at index {index} is missing required fields ({', '.join(missing)})."
        )
    for name in REQUIRED_ITEM_FIELDS:
        if not isinstance(data[name], str):
            raise ValidationError(f"Vocabulary item at index {index}: '{name}' must be a string.")
    definition = data.get("definition")
    if definition is not None and not isinstance(definition, str):
        raise ValidationError(f"Vocabulary item at index {index}: 'definition' must be a string.")
    return VocabularyItem(
        word=data["word"],
        type=data["type"],
        meaning=data["meaning"],
        definition=definition,
    )


def validate_batch(
    owner_id: Any,
    topic: Any,
    language: Any,
    proficiency: Any,
    vocabulary: Any,
    max_items: int = config.MAX_VOCABULARY_ITEMS,
) -> LessonBatch:
    """Check caller input without touching storage; raise ValidationError on the first problem."""
    _require_text(owner_id, "Owner is required and must be a string.")
    _require_text(topic, "Topic is required and must be a string.")
    if len(topic.strip()) > MAX_TOPIC_LENGTH:
        raise ValidationError(f"Topic cannot exceed {MAX_TOPIC_LENGTH} characters.")
    _require_text(language, "Language is required and must be a string.")
    _require_text(proficiency, "Proficiency is required and must be a string.")
    level = proficiency.strip().upper()
    if level not in PROFICIENCY_LEVELS:
        raise ValidationError(f"Proficiency must be one of {', '.join(PROFICIENCY_LEVELS)}.")

    if isinstance(vocabulary, (str, bytes, Mapping)) or not isinstance(vocabulary, Sequence):
        raise ValidationError("Vocabulary is required and must be a non-empty array.")
    if not vocabulary:
        raise ValidationError("Vocabulary is required and must be a non-empty array.")
    if len(vocabulary) > max_items:
        raise ValidationError(f"Vocabulary array cannot exceed {max_items} items.")

    items = [_coerce_item(index, raw) for index, raw in enumerate(vocabulary)]
    return LessonBatch(
        owner_id=owner_id,
        topic=topic.strip(),
        language=language.strip(),
        proficiency=level,
        items=items,
    )


class IngestionPipeline:
    def __init__(self, conn: sqlite3.Connection, max_items: int = config.MAX_VOCABULARY_ITEMS) -> None:
        self.decks = DeckResolver(conn)
        self.duplicates = DuplicateDetector(conn)
        self.reviews = ReviewStore(conn)
        self.max_items = max_items

    def ingest(
        self,
        owner_id: str,
        topic: str,
        language: str,
        proficiency: str,
        vocabulary: Sequence[RawItem],
    ) -> IngestResult:
        started = time.monotonic()
        batch = validate_batch(owner_id, topic, language, proficiency, vocabulary, self.max_items)

        try:
            deck = self.decks.resolve(batch.owner_id, batch.topic, batch.language, batch.proficiency)
        except sqlite3.Error as exc:
            fatal = FatalPersistenceError(f"Could not resolve deck: {exc}")
            logger.error("Vocabulary save failed for %s / %s: %s", batch.owner_id, batch.topic, fatal)
            result = IngestResult(success=False, deck_id=None, deck_name="", created=0, skipped=0, errors=[str(fatal)])
            self._log_summary(batch, result, started)
            return result

        created = 0
        skipped = 0
        errors: List[str] = []
        for item in batch.items:
            try:
                if self._store_item(item, deck, batch.proficiency):
                    created += 1
                else:
                    skipped += 1
            except ItemPersistenceError as exc:
                logger.warning("%s (deck %s)", exc, deck.id)
                errors.append(str(exc))

        result = IngestResult(
            success=True,
            deck_id=deck.id,
            deck_name=deck.name,
            created=created,
            skipped=skipped,
            errors=errors or None,
        )
        self._log_summary(batch, result, started)
        return result

    def _store_item(self, item: VocabularyItem, deck: Deck, proficiency: str) -> bool:
        """Return True if a flashcard was created, False if the word was a duplicate."""
        if not normalize_key(item.word):
            raise ItemPersistenceError(item.word, "word is blank")
        if not item.meaning.strip():
            raise ItemPersistenceError(item.word, "meaning is blank")
        try:
            if self.duplicates.exists(deck.owner_id, item.word, deck.language):
                return False
            # A concurrent writer can still win the race; the store reports that as None.
            flashcard = self.reviews.create_flashcard_and_review(item, deck, deck.language, proficiency)
        except sqlite3.Error as exc:
            raise ItemPersistenceError(item.word, str(exc)) from exc
        return flashcard is not None

    @staticmethod
    def _log_summary(batch: LessonBatch, result: IngestResult, started: float) -> None:
        summary = {
            "owner_id": batch.owner_id,
            "topic": batch.topic,
            "language": batch.language,
            "vocabulary_count": len(batch.items),
            "success": result.success,
            "created": result.created,
            "skipped": result.skipped,
            "errors": result.errors or [],
            "duration_ms": round((time.monotonic() - started) * 1000, 1),
        }
        logger.info("Vocabulary save %s", json.dumps(summary, ensure_ascii=False))
