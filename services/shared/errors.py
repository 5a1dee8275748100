"""
GiftPool Error Classes
======================
Every failure the funding lifecycle reports to a caller is one of these.

  ValidationError    → malformed input. Reported synchronously, never retried.
  InvalidStateError  → operation attempted against the wrong status.
  NotFoundError      → unknown event / contribution / order.
  ConflictError      → version mismatch or compare-and-set attempts exhausted.
  RetryableError     → a collaborator failed mid-transition; nothing committed.

Each class carries an ErrorKind so the handler boundary can turn it into a
tagged Err result without isinstance ladders.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    INVALID_STATE = "invalid_state"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RETRYABLE = "retryable"


class FundingError(Exception):
    """Base class for all lifecycle errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False


class ValidationError(FundingError):
    kind = ErrorKind.VALIDATION


class InvalidStateError(FundingError):
    kind = ErrorKind.INVALID_STATE


class NotFoundError(FundingError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(FundingError):
    """Concurrent writers kept winning. Safe to retry the whole operation."""

    kind = ErrorKind.CONFLICT
    retryable = True


class RetryableError(FundingError):
    """A collaborator failed and the transition was not applied."""

    kind = ErrorKind.RETRYABLE
    retryable = True
