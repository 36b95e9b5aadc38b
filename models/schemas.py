"""
Core data models for the SMS dispatch pipeline.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Generic, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_request_id() -> str:
    """Time-ordered opaque correlation token, e.g. req-1718000000000-1a2b3c4d."""
    return f"req-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class SmsStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"      # reserved for delivery receipts
    FAILED = "FAILED"


# Legal ledger transitions. Re-writing the current status is always allowed.
ALLOWED_TRANSITIONS: dict[SmsStatus, set[SmsStatus]] = {
    SmsStatus.PENDING: {SmsStatus.SENT, SmsStatus.FAILED},
    SmsStatus.SENT: {SmsStatus.DELIVERED},
    SmsStatus.DELIVERED: set(),
    SmsStatus.FAILED: set(),
}


def can_transition(current: SmsStatus, target: SmsStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


# ──────────────────────────────────────────────────────────────
#  Ledger & Blacklist records
# ──────────────────────────────────────────────────────────────

class DispatchRequest(BaseModel):
    """A single SMS dispatch request as recorded in the ledger."""
    id: int
    request_id: Optional[str] = None
    phone_number: str
    message: str
    status: SmsStatus = SmsStatus.PENDING
    external_message_id: Optional[str] = None
    failure_code: Optional[str] = None
    failure_comments: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BlacklistEntry(BaseModel):
    phone_number: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SearchDocument(BaseModel):
    """Denormalized, eventually consistent projection of a DispatchRequest."""
    id: str
    request_id: Optional[str] = None
    phone_number: str
    message: str
    status: str
    external_message_id: Optional[str] = None
    failure_code: Optional[str] = None
    failure_comments: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_request(cls, request: DispatchRequest) -> SearchDocument:
        return cls(
            id=str(request.id),
            request_id=request.request_id,
            phone_number=request.phone_number,
            message=request.message,
            status=request.status.value,
            external_message_id=request.external_message_id,
            failure_code=request.failure_code,
            failure_comments=request.failure_comments,
            created_at=request.created_at,
            updated_at=request.updated_at,
        )

    def to_request(self) -> DispatchRequest:
        return DispatchRequest(
            id=int(self.id),
            request_id=self.request_id,
            phone_number=self.phone_number,
            message=self.message,
            status=SmsStatus(self.status),
            external_message_id=self.external_message_id,
            failure_code=self.failure_code,
            failure_comments=self.failure_comments,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# ──────────────────────────────────────────────────────────────
#  Queue payloads
# ──────────────────────────────────────────────────────────────

class SmsRequestMessage(BaseModel):
    """Request-topic payload. Keyed by phone_number."""
    phone_number: str
    message: str
    request_id: str = ""


class SuccessData(BaseModel):
    kind: Literal["success"] = "success"
    request_id: str
    comments: str = ""
    phone_number: str = ""
    ledger_id: Optional[int] = None


class ErrorData(BaseModel):
    kind: Literal["error"] = "error"
    error_code: str
    error_message: str = ""


class SmsResponseEnvelope(BaseModel):
    """Response-topic payload: exactly one of SuccessData or ErrorData."""
    payload: Annotated[Union[SuccessData, ErrorData], Field(discriminator="kind")]

    @classmethod
    def success(cls, request_id: str, comments: str, phone_number: str = "",
                ledger_id: Optional[int] = None) -> SmsResponseEnvelope:
        return cls(payload=SuccessData(
            request_id=request_id, comments=comments,
            phone_number=phone_number, ledger_id=ledger_id,
        ))

    @classmethod
    def error(cls, code: str, message: str) -> SmsResponseEnvelope:
        return cls(payload=ErrorData(error_code=code, error_message=message))

    @property
    def is_success(self) -> bool:
        return isinstance(self.payload, SuccessData)

    @property
    def partition_key(self) -> Optional[str]:
        return self.payload.request_id if self.is_success else None


# ──────────────────────────────────────────────────────────────
#  Gateway & pipeline outcomes
# ──────────────────────────────────────────────────────────────

class GatewayOutcome(BaseModel):
    success: bool
    request_id: str
    comments: str = ""
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def external_message_id(self) -> str:
        return self.request_id


@dataclass(frozen=True)
class Delivered:
    request_id: str
    ledger_id: Optional[int] = None


@dataclass(frozen=True)
class Rejected:
    reason: str
    message: str = ""


@dataclass(frozen=True)
class Errored:
    reason: str
    message: str = ""


# Every variant advances the consumer offset.
ProcessingOutcome = Union[Delivered, Rejected, Errored]


@dataclass(frozen=True)
class GateDecision:
    blocked: bool
    degraded: bool = False


# ──────────────────────────────────────────────────────────────
#  Search
# ──────────────────────────────────────────────────────────────

class SearchCriteria(BaseModel):
    text: Optional[str] = None
    phone_number: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def is_empty(self) -> bool:
        return not (self.text or self.phone_number or self.start or self.end)


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T] = []
    page: int = 0
    page_size: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size > 0 else 0

    @property
    def has_next(self) -> bool:
        return self.page + 1 < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 0

    def page_info(self) -> dict[str, Any]:
        return {
            "current_page": self.page,
            "page_size": self.page_size,
            "total_elements": self.total,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_previous": self.has_previous,
        }


class SubmitResult(BaseModel):
    request_id: str
    ledger_id: int
    status: SmsStatus = SmsStatus.PENDING
    message: str = "SMS request received and queued for processing"
