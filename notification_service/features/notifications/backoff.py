"""Backoff policy of notification delivery retries."""

from __future__ import annotations

from datetime import timedelta

DEFAULT_BASE_DELAY_MS = 100.0
DEFAULT_MULTIPLIER = 1.5


def notification_retry_delay(
    retry_count: int,
    *,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    multiplier: float = DEFAULT_MULTIPLIER,
) -> timedelta:
    """Delay before the next attempt of a notification.

    ``base_delay_ms * multiplier ** retry_count``, without jitter; the
    defaults give 150 ms, 225 ms, 337.5 ms for retry counts 1, 2, 3.

    Example:
        >>> notification_retry_delay(2)
        datetime.timedelta(microseconds=225000)
    """
    if retry_count < 0:
        raise ValueError("retry_count must be >= 0")
    return timedelta(milliseconds=base_delay_ms * multiplier**retry_count)
