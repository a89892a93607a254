from __future__ import annotations


class LessonCardsError(Exception):
    """Base class for errors raised by the flashcard core."""


class ValidationError(LessonCardsError):
    """Caller input was rejected before any storage access."""


class NotFoundError(LessonCardsError):
    """A flashcard or deck does not exist or belongs to someone else."""


class PersistenceError(LessonCardsError):
    pass


class FatalPersistenceError(PersistenceError):
    """Storage failed before item processing started; nothing was written."""


class ItemPersistenceError(PersistenceError):
    """One vocabulary item could not be stored; the rest of the batch goes on."""

    def __init__(self, word: str, reason: str) -> None:
        super().__init__(f'Failed to process "{word}": {reason}')
        self.word = word
        self.reason = reason
