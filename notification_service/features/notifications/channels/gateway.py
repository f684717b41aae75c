"""SMS and PUSH channel senders over HTTP provider gateways."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from notification_service.features.notifications.channels.base import ChannelResult, render_text

if TYPE_CHECKING:
    from notification_service.features.notifications.schemas import Channel, NotificationRequest

logger = logging.getLogger(__name__)


class HttpGatewaySender:
    """POST a JSON message to a provider gateway.

    The body carries the recipient address, the notification type and a
    plain-text rendering; vendor-specific formats are the gateway's
    business. 2xx is success, 4xx a permanent rejection, 5xx and network
    errors are transient.
    """

    def __init__(
        self,
        channel: Channel,
        url: str,
        *,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self.channel = channel
        self._url = url
        self._token = token
        self._client = client
        self._timeout = timeout or httpx.Timeout(30.0, connect=10.0)

    def _body(self, request: NotificationRequest, recipient: str) -> dict[str, Any]:
        subject, text = render_text(request)
        body: dict[str, Any] = {
            "to": recipient,
            "notification_type": str(request.notification_type),
            "title": subject,
            "message": text,
            "priority": str(request.priority),
        }
        if request.appointment is not None:
            body["data"] = request.appointment.model_dump(mode="json", exclude_none=True)
        return body

    async def send(self, request: NotificationRequest) -> ChannelResult:
        recipient = request.contact_for(self.channel)
        if not recipient:
            return ChannelResult.rejected(f"No {self.channel} address for beneficiary")

        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        start = time.monotonic()
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._url, json=self._body(request, recipient), headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=self._body(request, recipient), headers=headers)
        except httpx.TimeoutException:
            return ChannelResult.transient(f"{self.channel} gateway timed out")
        except httpx.RequestError as exc:
            return ChannelResult.transient(f"{self.channel} gateway unreachable: {exc}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if response.is_success:
            return ChannelResult.ok(status_code=response.status_code, response_time_ms=elapsed_ms)

        error = f"{self.channel} gateway returned HTTP {response.status_code}"
        logger.warning(
            "Gateway rejected message",
            extra={
                "channel": str(self.channel),
                "status_code": response.status_code,
                "beneficiary_id": request.beneficiary_id,
            },
        )
        if response.is_client_error and response.status_code not in (408, 429):
            return ChannelResult.rejected(error, status_code=response.status_code, response_time_ms=elapsed_ms)
        return ChannelResult.transient(error, status_code=response.status_code, response_time_ms=elapsed_ms)
