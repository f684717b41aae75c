"""Webhook notifier: signed delivery-confirmation callbacks with retries."""

from __future__ import annotations

import json
import time
import uuid
from typing import TYPE_CHECKING, Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.database import run_with_optimistic_retry, utcnow
from notification_service.core.exceptions import PersistenceError, SignatureMismatchError
from notification_service.core.services.base import BaseService
from notification_service.features.webhooks.client import WebhookClient, WebhookDeliveryResult
from notification_service.features.webhooks.metrics import (
    webhook_delivery_duration_seconds,
    webhook_delivery_total,
    webhook_failed_gauge,
    webhook_pending_gauge,
    webhook_signature_rejected_total,
)
from notification_service.features.webhooks.models import WebhookEventRecord
from notification_service.features.webhooks.repository import (
    WebhookEventRepository,
    get_webhook_event_repository,
)
from notification_service.features.webhooks.schemas import WebhookStats, WebhookStatus
from notification_service.features.webhooks.signing import (
    sign_payload,
    verify_signature,
    webhook_retry_delay,
)

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings.webhooks import WebhookSettings


def encode_payload(payload: dict[str, Any] | str) -> str:
    """Canonical JSON text of a payload; strings are taken as-is."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)


class WebhookNotifier(BaseService):
    """Publish, deliver and retry outbound webhook events.

    A failed POST increments ``retry_count``. Reaching ``max_retries``
    marks the event failed; otherwise it stays pending with
    ``next_retry_at = now + 2 ** retry_count`` minutes for the retry
    sweep to pick up.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: WebhookSettings,
        *,
        client: WebhookClient | None = None,
        repository: WebhookEventRepository | None = None,
        optimistic_lock_attempts: int = 5,
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self._settings = settings
        self._client = client or WebhookClient(
            httpx.Timeout(settings.timeout_seconds, connect=settings.connect_timeout_seconds),
            max_response_body_chars=settings.max_response_body_chars,
        )
        self._repository = repository or get_webhook_event_repository()
        self._lock_attempts = optimistic_lock_attempts

    @property
    def _secret(self) -> str:
        return self._settings.secret.get_secret_value()

    def sign(self, payload: str) -> str:
        return sign_payload(self._secret, payload)

    def verify_signature(self, payload: str, provided_signature: str | None) -> bool:
        """Whether ``provided_signature`` is the signature of ``payload``."""
        return verify_signature(self._secret, payload, provided_signature)

    def require_valid_signature(self, payload: str, provided_signature: str | None) -> None:
        """Reject an inbound payload whose signature does not match.

        Raises:
            SignatureMismatchError: If the signature is missing or wrong.
        """
        if not self.verify_signature(payload, provided_signature):
            webhook_signature_rejected_total.inc()
            self.logger.warning(
                "Webhook signature mismatch",
                extra={"operation": "webhook.verify_signature"},
            )
            raise SignatureMismatchError

    async def publish_webhook_event(
        self,
        *,
        webhook_url: str,
        event_type: str,
        payload: dict[str, Any] | str,
        notification_id: UUID | None = None,
        max_retries: int | None = None,
        now: datetime | None = None,
    ) -> WebhookEventRecord:
        """Sign and persist a webhook event, then attempt immediate delivery.

        Returns:
            The event after the first attempt.

        Raises:
            PersistenceError: If the event could not be stored.
        """
        now = now or utcnow()
        body = encode_payload(payload)
        record = WebhookEventRecord(
            id=uuid.uuid4(),
            notification_id=notification_id,
            webhook_url=webhook_url,
            event_type=event_type,
            payload=body,
            signature=self.sign(body),
            status=WebhookStatus.PENDING,
            retry_count=0,
            max_retries=self._settings.max_retries if max_retries is None else max_retries,
            next_retry_at=now,
        )
        try:
            async with self._session_factory() as session, session.begin():
                await self._repository.save(session, record)
        except SQLAlchemyError as exc:
            self.logger.exception(
                "Persisting webhook event failed",
                extra={"event_type": event_type, "operation": "webhook.publish"},
            )
            raise PersistenceError(
                detail="Webhook event could not be stored",
                extra={"event_type": event_type},
            ) from exc

        self.logger.info(
            "Webhook event created",
            extra={
                "webhook_event_id": str(record.id),
                "event_type": event_type,
                "notification_id": str(notification_id) if notification_id else None,
                "operation": "webhook.publish",
            },
        )
        delivered = await self.deliver(record.id, now=now)
        return delivered or record

    async def deliver(self, event_id: UUID, *, now: datetime | None = None) -> WebhookEventRecord | None:
        """Attempt delivery of a pending event and record the outcome."""
        async with self._session_factory() as session:
            snapshot = await self._repository.get(session, event_id)
        if snapshot is None or snapshot.status is not WebhookStatus.PENDING:
            return snapshot

        attempt = snapshot.retry_count
        retry_attempt = attempt + 1 if attempt > 0 else None
        start = time.perf_counter()
        result = await self._client.deliver(snapshot, retry_attempt=retry_attempt)
        webhook_delivery_duration_seconds.observe(time.perf_counter() - start)

        async def apply(session: AsyncSession) -> WebhookEventRecord | None:
            current = await self._repository.get(session, event_id)
            if current is None or current.status is not WebhookStatus.PENDING or current.retry_count != attempt:
                return None
            self._apply_result(current, result, now or utcnow())
            return await self._repository.save(session, current)

        updated = await run_with_optimistic_retry(
            self._session_factory,
            apply,
            name="webhook.deliver",
            attempts=self._lock_attempts,
        )
        if updated is None:
            self.logger.info(
                "Webhook attempt superseded by a concurrent writer",
                extra={"webhook_event_id": str(event_id), "operation": "webhook.deliver"},
            )
            return snapshot
        return updated

    def _apply_result(self, record: WebhookEventRecord, result: WebhookDeliveryResult, now: datetime) -> None:
        record.response_code = result.status_code
        record.response_body = result.response_body

        if result.success:
            record.status = WebhookStatus.SUCCESS
            record.processed_at = now
            record.next_retry_at = None
            record.error_message = None
            webhook_delivery_total.labels(event_type=record.event_type, outcome="success").inc()
            self.logger.info(
                "Webhook delivered",
                extra={
                    "webhook_event_id": str(record.id),
                    "event_type": record.event_type,
                    "status_code": result.status_code,
                    "response_time_ms": result.response_time_ms,
                    "operation": "webhook.deliver",
                },
            )
            return

        record.retry_count += 1
        record.error_message = result.error_message
        if record.retry_count >= record.max_retries:
            record.status = WebhookStatus.FAILED
            record.next_retry_at = None
            record.processed_at = now
            webhook_delivery_total.labels(event_type=record.event_type, outcome="failed").inc()
            self.logger.error(
                "Webhook failed after max retries",
                extra={
                    "webhook_event_id": str(record.id),
                    "event_type": record.event_type,
                    "max_retries": record.max_retries,
                    "operation": "webhook.deliver",
                },
            )
            return

        record.next_retry_at = now + webhook_retry_delay(record.retry_count)
        webhook_delivery_total.labels(event_type=record.event_type, outcome="retrying").inc()
        self.logger.warning(
            "Webhook delivery failed, retry scheduled",
            extra={
                "webhook_event_id": str(record.id),
                "event_type": record.event_type,
                "retry_count": record.retry_count,
                "next_retry_at": record.next_retry_at.isoformat(),
                "error": result.error_message,
                "operation": "webhook.deliver",
            },
        )

    async def retry_pending(self, now: datetime | None = None, *, limit: int = 100) -> int:
        """Redeliver every pending event whose retry time has come.

        Returns:
            Number of events attempted.
        """
        now = now or utcnow()
        async with self._session_factory() as session:
            due = await self._repository.find_ready_for_retry(session, now, limit=limit)
            due_ids = [record.id for record in due]

        errors = 0
        for event_id in due_ids:
            try:
                await self.deliver(event_id, now=now)
            except Exception:
                errors += 1
                self.logger.exception(
                    "Webhook redelivery failed",
                    extra={"webhook_event_id": str(event_id), "operation": "webhook.retry_pending"},
                )

        if due_ids:
            self.logger.info(
                "Webhook retry sweep finished",
                extra={"attempted": len(due_ids), "errors": errors, "operation": "webhook.retry_pending"},
            )
        return len(due_ids)

    async def monitor(self, now: datetime | None = None) -> WebhookStats:
        """Report pending and failed webhook counts."""
        now = now or utcnow()
        async with self._session_factory() as session:
            counts = await self._repository.count_by_status(session)
            due = await self._repository.count_due(session, now)

        stats = WebhookStats(
            pending=counts.get(WebhookStatus.PENDING, 0),
            due=due,
            failed=counts.get(WebhookStatus.FAILED, 0),
            succeeded=counts.get(WebhookStatus.SUCCESS, 0),
        )
        webhook_pending_gauge.set(stats.pending)
        webhook_failed_gauge.set(stats.failed)

        if stats.failed:
            self.logger.warning(
                "Failed webhooks require attention",
                extra={**stats.model_dump(), "operation": "webhook.monitor"},
            )
        else:
            self.logger.info("Webhook status", extra={**stats.model_dump(), "operation": "webhook.monitor"})
        return stats
