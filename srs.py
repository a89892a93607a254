"""
SM-2 review scheduling.

The engine only maps a recall grade and the previous schedule state to the
next one. Wall-clock time is handled by callers through next_review_at().
"""
from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import NamedTuple

MIN_EASE = 1.3
DEFAULT_EASE = 2.5
PASSING_QUALITY = 3
FAILED_EASE_PENALTY = 0.2
SECOND_INTERVAL = 6


class Schedule(NamedTuple):
    interval: int
    repetitions: int
    ease_factor: float


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _floor_ease(value: float) -> float:
    return max(MIN_EASE, value)


def next_schedule(quality: int, prior_interval: int, prior_repetitions: int, prior_ease: float) -> Schedule:
    """Return the schedule after a review graded ``quality`` (0-5).

    Callers are expected to clamp ``quality`` to 0..5 beforehand.
    """
    if quality < PASSING_QUALITY:
        return Schedule(
            interval=1,
            repetitions=0,
            ease_factor=_floor_ease(prior_ease - FAILED_EASE_PENALTY),
        )

    if prior_repetitions == 0:
        interval = 1
    elif prior_repetitions == 1:
        interval = SECOND_INTERVAL
    else:
        interval = _round_half_up(prior_interval * prior_ease)

    miss = 5 - quality
    ease = prior_ease + (0.1 - miss * (0.08 + miss * 0.02))
    return Schedule(interval=interval, repetitions=prior_repetitions + 1, ease_factor=_floor_ease(ease))


def next_review_at(interval: int, now: datetime) -> datetime:
    return now + timedelta(days=interval)
