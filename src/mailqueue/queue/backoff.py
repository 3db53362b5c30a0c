"""Retry backoff policy."""

from __future__ import annotations

from datetime import timedelta

DEFAULT_BACKOFF_UNIT = timedelta(minutes=1)


def backoff_delay(attempts: int, unit: timedelta = DEFAULT_BACKOFF_UNIT) -> timedelta:
    """Delay before a task that failed on attempt ``attempts`` is eligible again.

    2 ** (attempts - 1) units: 1, 2, 4, 8, ... No cap and no jitter; the
    task's max_attempts bounds how far it grows.
    """

    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    return unit * (2 ** (attempts - 1))
