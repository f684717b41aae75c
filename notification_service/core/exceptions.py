"""Custom exception classes for the notification service.

Every domain error derives from AppException, which carries RFC 7807
problem-detail fields so that any outer surface can render it without
knowing the concrete class.
"""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: HTTP-equivalent status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (RFC 7807 problem type).
        title: Short, human-readable summary of the problem type.
        instance: Reference that identifies the specific occurrence.
        extra: Additional context-specific information about the error.

    Example:
            raise AppException(
            status_code=404,
            detail="Notification not found",
            type="notification-not-found",
            extra={"notification_id": "abc123"}
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP-equivalent status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem(self) -> dict[str, Any]:
        """Render the exception as an RFC 7807 problem dict."""
        problem: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        if self.extra:
            problem.update(self.extra)
        return problem


class NotFoundException(AppException):
    """Exception raised when a notification, campaign or webhook is not found."""

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class NotificationValidationError(AppException):
    """A request was rejected before anything was persisted.

    Raised for unsupported or missing channels and for missing contact
    information for the resolved channel.

    Example:
            raise NotificationValidationError(
            detail="No mobile number for SMS delivery",
            extra={"beneficiary_id": "b-1", "channel": "SMS"}
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "notification-validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=422,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class PersistenceError(AppException):
    """The store rejected or failed a write; nothing was published."""

    def __init__(
        self,
        detail: str,
        type: str = "persistence-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=503,
            detail=detail,
            type=type,
            title="Service Unavailable",
            instance=instance,
            extra=extra,
        )


class InvalidStateTransition(AppException):
    """A status change that the record's state machine does not allow.

    Example:
            raise InvalidStateTransition(
            detail="Campaign abc is COMPLETED and cannot be paused",
            extra={"campaign_id": "abc", "from": "COMPLETED", "to": "PAUSED"}
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "invalid-state-transition",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=409,
            detail=detail,
            type=type,
            title="Conflict",
            instance=instance,
            extra=extra,
        )


class SignatureMismatchError(AppException):
    """An inbound webhook signature did not match the payload.

    Rejected outright and never retried.
    """

    def __init__(
        self,
        detail: str = "Webhook signature does not match payload",
        type: str = "signature-mismatch",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=401,
            detail=detail,
            type=type,
            title="Unauthorized",
            instance=instance,
            extra=extra,
        )


class ChannelError(AppException):
    """Base class for failures reported by a channel sender.

    Attributes:
        channel: Channel that failed (EMAIL, SMS or PUSH).
        retryable: Whether another attempt may succeed.
    """

    retryable: bool = True

    def __init__(
        self,
        detail: str,
        channel: str | None = None,
        type: str = "channel-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.channel = channel
        context = {"channel": channel} if channel else {}
        context.update(extra or {})
        super().__init__(
            status_code=502,
            detail=detail,
            type=type,
            title="Bad Gateway",
            extra=context,
        )


class TransientChannelError(ChannelError):
    """Network or provider failure; the attempt consumes a retry slot."""

    retryable = True

    def __init__(
        self,
        detail: str,
        channel: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail, channel=channel, type="transient-channel-error", extra=extra)


class PermanentChannelError(ChannelError):
    """The provider rejected the message for good (e.g. invalid address)."""

    retryable = False

    def __init__(
        self,
        detail: str,
        channel: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail, channel=channel, type="permanent-channel-error", extra=extra)


__all__ = [
    "AppException",
    "ChannelError",
    "InvalidStateTransition",
    "NotFoundException",
    "NotificationValidationError",
    "PermanentChannelError",
    "PersistenceError",
    "SignatureMismatchError",
    "TransientChannelError",
]
