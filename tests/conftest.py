import sqlite3
from typing import Iterator

import pytest

from store import Database


@pytest.fixture
def database(tmp_path) -> Database:
    db = Database(tmp_path / "cards.db")
    db.initialize()
    return db


@pytest.fixture
def conn(database: Database) -> Iterator[sqlite3.Connection]:
    with database.connect() as connection:
        yield connection


@pytest.fixture
def travel_words():
    return [
        {"word": "Passport", "type": "noun", "meaning": "hộ chiếu", "definition": "An official travel document."},
        {"word": "luggage", "type": "noun", "meaning": "hành lý"},
        {"word": "to board", "type": "verb", "meaning": "lên tàu/máy bay", "definition": "To get on a vehicle."},
    ]


@pytest.fixture
def flashcard_count(conn):
    def count(owner_id, language=None):
        query = "SELECT COUNT(*) FROM flashcards WHERE owner_id = ?"
        params = [owner_id]
        if language:
            query += " AND language = ?"
            params.append(language)
        return conn.execute(query, params).fetchone()[0]

    return count
