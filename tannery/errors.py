# tannery/errors.py
"""
Error taxonomy shared by the lifecycle engine, repositories and the API layer.

Every error carries an `error_code` (stable string for clients) and the HTTP
status the API layer should answer with.
"""

from typing import Any, Dict, List, Optional

E_VALIDATION = "E_VALIDATION"
E_TRANSITION = "E_TRANSITION"
E_NOT_FOUND = "E_NOT_FOUND"
E_CONFLICT = "E_CONFLICT"
E_PERSISTENCE = "E_PERSISTENCE"
E_SIDE_EFFECT = "E_SIDE_EFFECT"


class TanneryError(Exception):
    error_code = "E_INTERNAL"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "error",
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TanneryError):
    """Malformed or missing input. `errors` holds one {path, message} per field."""

    error_code = E_VALIDATION
    status_code = 400

    def __init__(self, message: str = "Validation Error", errors: Optional[List[Dict[str, str]]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})

    @classmethod
    def from_pydantic(cls, exc, message: str = "Validation Error") -> "ValidationError":
        errors = []
        for err in exc.errors():
            path = ".".join(str(p) for p in err.get("loc", ()))
            errors.append({"path": path, "message": err.get("msg", "invalid value")})
        return cls(message, errors)


class TransitionError(ValidationError):
    error_code = E_TRANSITION


class NotFoundError(TanneryError):
    error_code = E_NOT_FOUND
    status_code = 404


class ConflictError(TanneryError):
    error_code = E_CONFLICT
    status_code = 409


class PersistenceError(TanneryError):
    error_code = E_PERSISTENCE
    status_code = 500


class DuplicateKeyError(PersistenceError):
    """A unique index rejected the write. `field` names the offending key when known."""

    error_code = E_CONFLICT
    status_code = 409

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class SideEffectError(TanneryError):
    """Notification or email failure. Never surfaces to API callers."""

    error_code = E_SIDE_EFFECT
