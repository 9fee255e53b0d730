# engine/results.py
"""
Tagged results returned across the engine boundary.

Components raise EngineError for expected conditions; the orchestrator turns
it into an ActionResult so callers never see a raw exception.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    STATE = "state"
    RATE_LIMIT = "rate_limit"
    INFRASTRUCTURE = "infrastructure"


class ErrorCode(str, Enum):
    ASSESSMENT_NOT_FOUND = "ASSESSMENT_NOT_FOUND"
    ASSESSMENT_NOT_OPEN = "ASSESSMENT_NOT_OPEN"
    QUESTIONS_UNAVAILABLE = "QUESTIONS_UNAVAILABLE"
    INVALID_ACCESS_CODE = "INVALID_ACCESS_CODE"
    INVALID_SESSION_ID = "INVALID_SESSION_ID"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    INVALID_ANSWER = "INVALID_ANSWER"
    INVALID_VIOLATION_TYPE = "INVALID_VIOLATION_TYPE"
    INVALID_COMPLETION_REASON = "INVALID_COMPLETION_REASON"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    SESSION_NOT_ACTIVE = "SESSION_NOT_ACTIVE"
    SESSION_NOT_FINISHED = "SESSION_NOT_FINISHED"
    ATTEMPT_LIMIT_EXCEEDED = "ATTEMPT_LIMIT_EXCEEDED"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    RETRY_LATER = "RETRY_LATER"


_KIND_BY_CODE = {
    ErrorCode.ASSESSMENT_NOT_FOUND: ErrorKind.VALIDATION,
    ErrorCode.ASSESSMENT_NOT_OPEN: ErrorKind.VALIDATION,
    ErrorCode.QUESTIONS_UNAVAILABLE: ErrorKind.VALIDATION,
    ErrorCode.INVALID_ACCESS_CODE: ErrorKind.VALIDATION,
    ErrorCode.INVALID_SESSION_ID: ErrorKind.VALIDATION,
    ErrorCode.SESSION_NOT_FOUND: ErrorKind.VALIDATION,
    ErrorCode.INVALID_ANSWER: ErrorKind.VALIDATION,
    ErrorCode.INVALID_VIOLATION_TYPE: ErrorKind.VALIDATION,
    ErrorCode.INVALID_COMPLETION_REASON: ErrorKind.VALIDATION,
    ErrorCode.UNAUTHENTICATED: ErrorKind.VALIDATION,
    ErrorCode.SESSION_NOT_ACTIVE: ErrorKind.STATE,
    ErrorCode.SESSION_NOT_FINISHED: ErrorKind.STATE,
    ErrorCode.ATTEMPT_LIMIT_EXCEEDED: ErrorKind.RATE_LIMIT,
    ErrorCode.COOLDOWN_ACTIVE: ErrorKind.RATE_LIMIT,
    ErrorCode.RETRY_LATER: ErrorKind.INFRASTRUCTURE,
}


class Failure(BaseModel):
    code: ErrorCode
    kind: ErrorKind
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)


class ActionResult(BaseModel):
    ok: bool
    data: Any = None
    error: Optional[Failure] = None


class EngineError(Exception):
    def __init__(self, code: ErrorCode, message: str, **context: Any) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context

    @property
    def kind(self) -> ErrorKind:
        return _KIND_BY_CODE[self.code]

    def to_failure(self) -> Failure:
        return Failure(code=self.code, kind=self.kind, message=self.message, context=self.context)


def success(data: Any = None) -> ActionResult:
    return ActionResult(ok=True, data=data)


def failure(code: ErrorCode, message: str, **context: Any) -> ActionResult:
    return ActionResult(ok=False, error=EngineError(code, message, **context).to_failure())


def retry_later() -> ActionResult:
    # internal detail stays in the logs
    return failure(
        ErrorCode.RETRY_LATER,
        "Something went wrong while saving. Please try again.",
        retryable=True,
    )
