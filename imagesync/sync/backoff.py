"""Retry backoff schedule shared by upload and deletion scans."""

from __future__ import annotations

from collections.abc import Sequence

DEFAULT_BACKOFF_SECONDS: tuple[int, ...] = (60, 300, 900)


def backoff_delay_seconds(retry_count: int, schedule: Sequence[int] = DEFAULT_BACKOFF_SECONDS) -> int:
    """Delay for ``retry_count``, clamped to the last schedule entry."""
    steps = list(schedule) or list(DEFAULT_BACKOFF_SECONDS)
    index = min(max(0, int(retry_count)), len(steps) - 1)
    return max(0, int(steps[index]))


def is_backoff_elapsed(
    last_attempt_ms: int | None,
    retry_count: int,
    now_ms: int,
    schedule: Sequence[int] = DEFAULT_BACKOFF_SECONDS,
) -> bool:
    if last_attempt_ms is None:
        return True
    return now_ms - int(last_attempt_ms) >= backoff_delay_seconds(retry_count, schedule) * 1000
