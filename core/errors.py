"""
Error hierarchy for the dispatch pipeline.

Every error carries a stable code that is used on the response topic
and mapped to an HTTP status by the API layer.
"""
from __future__ import annotations


class ErrorCodes:
    INVALID_REQUEST = "INVALID_REQUEST"
    PHONE_NUMBER_BLACKLISTED = "PHONE_NUMBER_BLACKLISTED"
    SMS_SEND_FAILED = "SMS_SEND_FAILED"
    REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"

    BLACKLIST_ADD_FAILED = "BLACKLIST_ADD_FAILED"
    BLACKLIST_REMOVE_FAILED = "BLACKLIST_REMOVE_FAILED"
    BLACKLIST_RETRIEVE_FAILED = "BLACKLIST_RETRIEVE_FAILED"
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"


class NotificationError(Exception):
    """Base exception for all pipeline operations."""

    code = ErrorCodes.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: str = ""):
        if code:
            self.code = code
        self.message = message
        super().__init__(message)


class ValidationError(NotificationError):
    code = ErrorCodes.INVALID_REQUEST


class BlacklistRejection(NotificationError):
    code = ErrorCodes.PHONE_NUMBER_BLACKLISTED

    def __init__(self, phone_number: str):
        self.phone_number = phone_number
        super().__init__("Phone number is blacklisted")


class BlacklistError(NotificationError):
    """A blacklist store mutation failed."""


class GatewayError(NotificationError):
    code = ErrorCodes.PROVIDER_ERROR

    def __init__(self, message: str, provider_code: str = ErrorCodes.PROVIDER_ERROR):
        self.provider_code = provider_code
        super().__init__(message)


class ProcessingError(NotificationError):
    code = ErrorCodes.PROCESSING_ERROR


class NotFoundError(NotificationError):
    code = ErrorCodes.REQUEST_NOT_FOUND


class InvalidStatusTransition(NotificationError):
    code = ErrorCodes.INVALID_STATUS_TRANSITION


class RateLimitExceeded(NotificationError):
    code = ErrorCodes.RATE_LIMIT_EXCEEDED

    def __init__(self, phone_number: str):
        self.phone_number = phone_number
        super().__init__(f"Rate limit exceeded for {phone_number}")
