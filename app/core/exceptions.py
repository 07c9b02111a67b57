"""
core/exceptions.py
------------------
Domain error taxonomy.

Services raise these; main.py renders them as
    {"detail": <message>, "code": <code>, "errors": [...]}
so a caller can tell "fix your input" (400/422) from "not allowed" (401/403),
"never existed" (404) from "permanently gone" (410), and "try again later"
(503) apart without parsing messages.
"""

from typing import List, Optional


class ControlPlaneError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, errors: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationFailedError(ControlPlaneError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(ControlPlaneError):
    status_code = 401
    code = "authentication_required"


class AuthorizationError(ControlPlaneError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ControlPlaneError):
    status_code = 404
    code = "not_found"


class GoneError(ControlPlaneError):
    """The record existed but reached a terminal state."""
    status_code = 410
    code = "gone"


class ConflictError(ControlPlaneError):
    status_code = 409
    code = "conflict"


class StateError(ControlPlaneError):
    """Operation is illegal for the record's current lifecycle state."""
    status_code = 409
    code = "invalid_state"


class TenantSuspendedError(StateError):
    status_code = 403
    code = "tenant_suspended"


class TenantNotFoundError(NotFoundError):
    code = "tenant_not_found"


class TenantUnavailableError(StateError):
    status_code = 403
    code = "tenant_unavailable"


class PersistenceError(ControlPlaneError):
    status_code = 503
    code = "persistence_error"


def error_body(exc: ControlPlaneError) -> dict:
    return {"detail": exc.message, "code": exc.code, "errors": exc.errors}
