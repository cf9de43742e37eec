from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base for failures surfaced to callers as typed errors.

    `error` is the machine-readable code written into the HTTP error envelope.
    """

    error = "domain_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFound(DomainError):
    error = "not_found"
    status_code = 404


class ConflictError(DomainError):
    error = "conflict"
    status_code = 409


class InvariantViolation(DomainError):
    error = "invariant_violation"
    status_code = 409


class ValidationError(DomainError):
    error = "validation_error"
    status_code = 400


class PurgeAlreadyRunning(ConflictError):
    error = "purge_in_progress"
