"""Tests for the error hierarchy codes and messages."""
import pytest

from core.errors import (
    BlacklistError, BlacklistRejection, ErrorCodes, GatewayError, InvalidStatusTransition,
    NotFoundError, NotificationError, ProcessingError, RateLimitExceeded, ValidationError,
)


@pytest.mark.parametrize("error,code", [
    (ValidationError("bad"), ErrorCodes.INVALID_REQUEST),
    (BlacklistRejection("+911234567890"), ErrorCodes.PHONE_NUMBER_BLACKLISTED),
    (GatewayError("down"), ErrorCodes.PROVIDER_ERROR),
    (ProcessingError("boom"), ErrorCodes.PROCESSING_ERROR),
    (NotFoundError("missing"), ErrorCodes.REQUEST_NOT_FOUND),
    (InvalidStatusTransition("no"), ErrorCodes.INVALID_STATUS_TRANSITION),
    (RateLimitExceeded("+911234567890"), ErrorCodes.RATE_LIMIT_EXCEEDED),
    (NotificationError("generic"), ErrorCodes.INTERNAL_SERVER_ERROR),
])
def test_codes(error, code):
    assert error.code == code
    assert isinstance(error, NotificationError)


def test_code_override():
    error = BlacklistError("store down", code=ErrorCodes.BLACKLIST_ADD_FAILED)
    assert error.code == ErrorCodes.BLACKLIST_ADD_FAILED
    assert str(error) == "store down"


def test_messages_carry_phone_number():
    assert BlacklistRejection("+911234567890").message == "Phone number is blacklisted"
    assert RateLimitExceeded("+911234567890").message == "Rate limit exceeded for +911234567890"


def test_gateway_error_keeps_provider_code():
    error = GatewayError("Non-2xx response: 503", provider_code=ErrorCodes.SMS_SEND_FAILED)
    assert error.code == ErrorCodes.PROVIDER_ERROR
    assert error.provider_code == ErrorCodes.SMS_SEND_FAILED
