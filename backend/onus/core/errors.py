"""
Error kinds raised by the core services.

Every access-control failure is an explicit exception; services never return an
empty result in place of a denial. The HTTP layer maps these to responses in
``onus.main``.
"""
from typing import Dict, List, Optional


class OnusError(Exception):
    """Base class for all recoverable core errors."""

    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OnusError):
    """Missing or malformed input. Carries field-level detail."""

    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(f"{field}: {message}", errors=[{"field": field, "message": message}])

    @classmethod
    def from_pydantic(cls, exc, prefix: str = "") -> "ValidationError":
        """Convert a ``pydantic.ValidationError`` into field-level detail."""
        errors = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            field = f"{prefix}{loc}" if loc else prefix.rstrip(".") or "payload"
            errors.append({"field": field, "message": err.get("msg", "invalid value")})
        summary = ", ".join(e["field"] for e in errors) or "payload"
        return cls(f"Invalid fields: {summary}", errors=errors)


class AccessDeniedError(OnusError):
    default_message = "Not authorized"


class NotFoundError(OnusError):
    default_message = "Resource not found"


class ConflictError(OnusError):
    default_message = "Resource already exists"


class InvalidStateError(OnusError):
    default_message = "Operation not allowed in the current state"
