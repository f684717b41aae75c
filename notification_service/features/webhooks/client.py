"""HTTP client for webhook delivery."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from notification_service.features.webhooks.signing import (
    EVENT_TYPE_HEADER,
    NOTIFICATION_ID_HEADER,
    RETRY_ATTEMPT_HEADER,
    SIGNATURE_HEADER,
)
from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from notification_service.features.webhooks.models import WebhookEventRecord

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


@dataclass
class WebhookDeliveryResult:
    """Result of a webhook delivery attempt."""

    success: bool
    status_code: int | None
    response_body: str | None
    response_time_ms: int | None
    error_message: str | None


class WebhookClient:
    """HTTP client for delivering signed webhook events.

    Handles:
    - Signature, event type and notification id headers
    - Retry attempt header on redeliveries
    - Timeout and error handling
    - Response capture (truncated)
    """

    def __init__(
        self,
        timeout: httpx.Timeout | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        max_response_body_chars: int = 5000,
    ) -> None:
        """Initialize webhook client.

        Args:
            timeout: Connect/read timeouts, default connect 10s and read 30s
            client: Shared AsyncClient; a new one per request when omitted
            max_response_body_chars: Stored response body limit
        """
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self._client = client
        self.max_response_body_chars = max_response_body_chars

    def build_headers(self, event: WebhookEventRecord, retry_attempt: int | None = None) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "notification-service-webhook/1.0",
            SIGNATURE_HEADER: event.signature,
            EVENT_TYPE_HEADER: event.event_type,
        }
        if event.notification_id is not None:
            headers[NOTIFICATION_ID_HEADER] = str(event.notification_id)
        if retry_attempt is not None:
            headers[RETRY_ATTEMPT_HEADER] = str(retry_attempt)
        return headers

    async def _post(self, url: str, content: str, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, content=content, headers=headers, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, content=content, headers=headers)

    async def deliver(
        self,
        event: WebhookEventRecord,
        *,
        retry_attempt: int | None = None,
    ) -> WebhookDeliveryResult:
        """POST the stored payload of ``event`` to its URL.

        Args:
            event: Webhook event to deliver
            retry_attempt: Attempt number for redeliveries, None on the first

        Returns:
            WebhookDeliveryResult with delivery status and response
        """
        start_time = time.time()
        lazy_logger.debug(
            lambda: f"client.deliver: event_id={event.id}, event_type={event.event_type}, url={event.webhook_url}"
        )

        try:
            response = await self._post(
                event.webhook_url, event.payload, self.build_headers(event, retry_attempt)
            )
        except httpx.TimeoutException:
            logger.warning(
                "Webhook delivery timeout",
                extra={
                    "webhook_event_id": str(event.id),
                    "event_type": event.event_type,
                    "operation": "client.deliver",
                },
            )
            return WebhookDeliveryResult(
                success=False,
                status_code=None,
                response_body=None,
                response_time_ms=int((time.time() - start_time) * 1000),
                error_message="Request timeout",
            )
        except httpx.RequestError as exc:
            logger.warning(
                "Webhook delivery request error",
                extra={
                    "webhook_event_id": str(event.id),
                    "event_type": event.event_type,
                    "error": str(exc),
                    "operation": "client.deliver",
                },
            )
            return WebhookDeliveryResult(
                success=False,
                status_code=None,
                response_body=None,
                response_time_ms=int((time.time() - start_time) * 1000),
                error_message=f"Request error: {exc}",
            )
        except Exception as exc:
            logger.error(
                "Webhook delivery unexpected error",
                extra={
                    "webhook_event_id": str(event.id),
                    "event_type": event.event_type,
                    "error": str(exc),
                    "operation": "client.deliver",
                },
                exc_info=True,
            )
            return WebhookDeliveryResult(
                success=False,
                status_code=None,
                response_body=None,
                response_time_ms=int((time.time() - start_time) * 1000),
                error_message=f"Unexpected error: {exc}",
            )

        response_time_ms = int((time.time() - start_time) * 1000)
        success = 200 <= response.status_code < 300
        response_body = response.text[: self.max_response_body_chars] if response.text else None

        if not success:
            logger.warning(
                "Webhook delivery failed with non-2xx status",
                extra={
                    "webhook_event_id": str(event.id),
                    "event_type": event.event_type,
                    "status_code": response.status_code,
                    "response_time_ms": response_time_ms,
                    "operation": "client.deliver",
                },
            )

        return WebhookDeliveryResult(
            success=success,
            status_code=response.status_code,
            response_body=response_body,
            response_time_ms=response_time_ms,
            error_message=None if success else f"HTTP {response.status_code}",
        )
