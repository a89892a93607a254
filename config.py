"""
Runtime settings for the lesson flashcard service.

Values come from the environment (optionally a .env file next to the code) and
are read once at import time.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")

DB_PATH = Path(os.environ.get("LESSON_CARDS_DB_PATH", BASE_DIR / "lesson_cards.db"))
MAX_VOCABULARY_ITEMS = int(os.environ.get("LESSON_CARDS_MAX_ITEMS", "100"))
LOG_LEVEL = os.environ.get("LESSON_CARDS_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("LESSON_CARDS_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
