#!/usr/bin/env python3
"""
FastAPI service for lesson flashcards.

The API shares its SQLite database and core logic with the console tutor in
learn.py. Clients save the vocabulary of a finished lesson, fetch the
flashcards that are due, and submit recall grades that reschedule them.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Dict, Generator, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import config
from errors import NotFoundError, ValidationError
from ingest import IngestionPipeline
from store import Database, DeckSummary, DueFlashcard, Review, ReviewStore

logger = logging.getLogger(__name__)

Proficiency = Literal["A1", "A2", "B1", "B2", "C1", "C2"]

router = APIRouter()


def get_db(request: Request) -> Generator[sqlite3.Connection, None, None]:
    database: Database = request.app.state.database
    with database.connect() as conn:
        yield conn


class VocabularyItemIn(BaseModel):
    word: str
    type: str
    meaning: str
    definition: Optional[str] = None


class SaveVocabularyRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    language: str = Field(..., min_length=1)
    proficiency: Proficiency
    vocabulary: List[VocabularyItemIn]


class SaveVocabularyResponse(BaseModel):
    success: bool
    deck_id: Optional[int]
    deck_name: str
    created: int
    skipped: int
    errors: Optional[List[str]] = None


class GradeRequest(BaseModel):
    flashcard_id: int
    owner_id: str = Field(..., min_length=1)
    quality: int = Field(..., ge=0, le=5)


class ReviewOut(BaseModel):
    id: int
    flashcard_id: int
    owner_id: str
    quality: int
    interval: int
    repetitions: int
    ease_factor: float
    next_review: str
    updated_at: str


class FlashcardOut(BaseModel):
    id: int
    deck_id: int
    front: str
    back: str
    word_type: str
    language: str
    difficulty: int
    created_at: str
    review: Optional[ReviewOut] = None


class DeckOut(BaseModel):
    id: int
    name: str
    description: str
    language: str
    proficiency: Proficiency
    created_at: str
    flashcard_count: int
    due_count: int


def _review_out(review: Review) -> ReviewOut:
    return ReviewOut(
        id=review.id,
        flashcard_id=review.flashcard_id,
        owner_id=review.owner_id,
        quality=review.quality,
        interval=review.interval,
        repetitions=review.repetitions,
        ease_factor=review.ease_factor,
        next_review=review.next_review,
        updated_at=review.updated_at,
    )


def _flashcard_out(entry: DueFlashcard) -> FlashcardOut:
    card = entry.flashcard
    return FlashcardOut(
        id=card.id,
        deck_id=card.deck_id,
        front=card.front,
        back=card.back,
        word_type=card.word_type,
        language=card.language,
        difficulty=card.difficulty,
        created_at=card.created_at,
        review=_review_out(entry.review) if entry.review else None,
    )


def _deck_out(summary: DeckSummary) -> DeckOut:
    deck = summary.deck
    return DeckOut(
        id=deck.id,
        name=deck.name,
        description=deck.description,
        language=deck.language,
        proficiency=deck.proficiency,
        created_at=deck.created_at,
        flashcard_count=summary.flashcard_count,
        due_count=summary.due_count,
    )


@router.get("/")
def root(request: Request) -> Dict[str, str]:
    return {"message": "Lesson flashcards API is ready.", "db": str(request.app.state.database.path)}


@router.post("/lessons/vocabulary", response_model=SaveVocabularyResponse)
def save_vocabulary(
    payload: SaveVocabularyRequest, conn: sqlite3.Connection = Depends(get_db)
) -> SaveVocabularyResponse:
    pipeline = IngestionPipeline(conn)
    try:
        result = pipeline.ingest(
            owner_id=payload.owner_id,
            topic=payload.topic,
            language=payload.language,
            proficiency=payload.proficiency,
            vocabulary=[item.model_dump() for item in payload.vocabulary],
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not result.success:
        raise HTTPException(
            status_code=500,
            detail={"error": "Failed to save vocabulary", "details": result.errors or []},
        )
    return SaveVocabularyResponse(**result.to_dict())


@router.post("/reviews", response_model=ReviewOut)
def grade_flashcard(payload: GradeRequest, conn: sqlite3.Connection = Depends(get_db)) -> ReviewOut:
    try:
        review = ReviewStore(conn).upsert(payload.flashcard_id, payload.owner_id, payload.quality)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _review_out(review)


@router.get("/reviews", response_model=List[FlashcardOut])
def due_flashcards(
    owner_id: str = Query(..., min_length=1),
    deck_id: Optional[int] = Query(default=None),
    conn: sqlite3.Connection = Depends(get_db),
) -> List[FlashcardOut]:
    try:
        due = ReviewStore(conn).due_flashcards(owner_id, deck_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [_flashcard_out(entry) for entry in due]


@router.get("/decks", response_model=List[DeckOut])
def list_decks(
    owner_id: str = Query(..., min_length=1),
    conn: sqlite3.Connection = Depends(get_db),
) -> List[DeckOut]:
    return [_deck_out(summary) for summary in ReviewStore(conn).list_decks(owner_id)]


def create_app(db_path: Optional[Union[str, Path]] = None) -> FastAPI:
    config.configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        database = Database(db_path or config.DB_PATH)
        database.initialize()
        app.state.database = database
        yield
        logger.info("Shutting down; releasing %s", database.path)
        del app.state.database

    app = FastAPI(
        title="Lesson Flashcards API",
        description="Stores lesson vocabulary as flashcards and schedules reviews with SM-2.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api:app", host="127.0.0.1", port=8000)
