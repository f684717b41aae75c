"""Unit tests for the error taxonomy."""

from __future__ import annotations

from notification_service.core.exceptions import (
    AppException,
    ChannelError,
    InvalidStateTransition,
    NotFoundException,
    NotificationValidationError,
    PermanentChannelError,
    PersistenceError,
    SignatureMismatchError,
    TransientChannelError,
)


def test_problem_details():
    exc = NotificationValidationError(
        detail="No contact information for SMS delivery",
        extra={"beneficiary_id": "ben-1"},
    )

    problem = exc.to_problem()

    assert problem == {
        "type": "notification-validation-error",
        "title": "Validation Error",
        "status": 422,
        "detail": "No contact information for SMS delivery",
        "beneficiary_id": "ben-1",
    }


def test_status_codes():
    assert NotFoundException("missing").status_code == 404
    assert PersistenceError("down").status_code == 503
    assert InvalidStateTransition("nope").status_code == 409
    assert SignatureMismatchError().status_code == 401


def test_signature_mismatch_default_detail():
    assert SignatureMismatchError().detail == "Webhook signature does not match payload"


def test_channel_errors_carry_retryability():
    transient = TransientChannelError("timeout", channel="SMS")
    permanent = PermanentChannelError("bad number", channel="SMS")

    assert isinstance(transient, ChannelError)
    assert isinstance(permanent, AppException)
    assert transient.retryable is True
    assert permanent.retryable is False
    assert permanent.extra == {"channel": "SMS"}
