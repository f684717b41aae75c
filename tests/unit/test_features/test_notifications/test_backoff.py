"""Unit tests for the notification and webhook backoff policies."""

from __future__ import annotations

from datetime import timedelta

import pytest

from notification_service.features.notifications.backoff import notification_retry_delay
from notification_service.features.webhooks.signing import webhook_retry_delay


class TestNotificationRetryDelay:
    @pytest.mark.parametrize(
        ("retry_count", "expected_ms"),
        [(0, 100.0), (1, 150.0), (2, 225.0), (3, 337.5)],
    )
    def test_exponential_sequence(self, retry_count, expected_ms):
        assert notification_retry_delay(retry_count) == timedelta(milliseconds=expected_ms)

    def test_custom_parameters(self):
        delay = notification_retry_delay(2, base_delay_ms=1000, multiplier=2.0)

        assert delay == timedelta(seconds=4)

    def test_negative_retry_count(self):
        with pytest.raises(ValueError):
            notification_retry_delay(-1)


class TestWebhookRetryDelay:
    def test_doubles_in_minutes(self):
        delays = [webhook_retry_delay(n) for n in range(1, 6)]

        assert delays == [timedelta(minutes=m) for m in (2, 4, 8, 16, 32)]

    def test_negative_retry_count(self):
        with pytest.raises(ValueError):
            webhook_retry_delay(-1)
