"""
Error taxonomy for the proposal service.

Services raise these; ``main.py`` renders them as
``{"error": {"code", "message", "meta"}}`` with the matching HTTP status.
"""
from __future__ import annotations

from typing import Any


class ProposalServiceError(Exception):
    code = "proposal_service_error"
    status_code = 500

    def __init__(self, message: str, *, meta: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.meta = meta or {}

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.meta:
            error["meta"] = self.meta
        return {"error": error}


class ValidationError(ProposalServiceError):
    """Missing or malformed fields. ``field_errors`` maps field name -> message."""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, field_errors: dict[str, str] | None = None):
        self.field_errors = dict(field_errors or {})
        super().__init__(message, meta={"fields": self.field_errors} if self.field_errors else None)

    @property
    def missing_fields(self) -> list[str]:
        return list(self.field_errors)


class IdentityResolutionError(ProposalServiceError):
    code = "identity_resolution_error"
    status_code = 502


class ConsistencyError(ProposalServiceError):
    """Relational row and document store disagree for a proposal."""

    code = "consistency_error"
    status_code = 409

    def __init__(self, message: str, issues: list[dict[str, Any]]):
        self.issues = issues
        super().__init__(message, meta={"issues": issues})


class StateTransitionError(ProposalServiceError):
    code = "state_transition_error"
    status_code = 409

    def __init__(self, message: str, *, source: str, action: str):
        self.source = source
        self.action = action
        super().__init__(message, meta={"from": source, "action": action})


class PersistenceError(ProposalServiceError):
    """A store is unavailable or rejected the write. Safe to retry."""

    code = "persistence_error"
    status_code = 503

    def __init__(self, message: str, *, store: str):
        self.store = store
        super().__init__(message, meta={"store": store, "retryable": True})


class NotFoundError(ProposalServiceError):
    code = "not_found"
    status_code = 404


class PermissionDeniedError(ProposalServiceError):
    code = "permission_denied"
    status_code = 403


class AuthenticationRequiredError(ProposalServiceError):
    code = "authentication_required"
    status_code = 401
