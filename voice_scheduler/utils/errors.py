"""Application error types.

Every error raised on purpose by the scheduler derives from ``AppError`` and is
operational: it is mapped to a caller-facing outcome, never left to crash the
process.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base application error."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(AppError):
    """Malformed or missing input field."""

    status_code = 400
    code = "validation_error"


class ParseError(ValidationError):
    """A date, time or phone string could not be parsed."""

    code = "parse_error"


class AuthenticationError(AppError):
    status_code = 401
    code = "authentication_error"

    def __init__(self, message: str = "Authentication required", context: Optional[dict[str, Any]] = None):
        super().__init__(message, context)


class NotFoundError(AppError):
    """Referenced appointment or user does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, identifier: Optional[str] = None, context: Optional[dict[str, Any]] = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message, context)
        self.resource = resource
        self.identifier = identifier


class ConflictError(AppError):
    """Requested interval overlaps one or more existing appointments."""

    status_code = 409
    code = "conflict"

    def __init__(self, message: str, conflicts: Optional[list[str]] = None, context: Optional[dict[str, Any]] = None):
        context = dict(context or {})
        context["conflicts"] = list(conflicts or [])
        super().__init__(message, context)
        self.conflicts = context["conflicts"]


class BusinessRuleError(AppError):
    """Past date, outside business hours, illegal status transition."""

    status_code = 422
    code = "business_rule_violation"


class ExternalServiceError(AppError):
    """AI provider or telephony provider call failed."""

    status_code = 502
    code = "external_service_error"

    def __init__(self, service: str, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(f"{service} error: {message}", context)
        self.service = service


class DatabaseError(AppError):
    """Storage operation failed for a reason not classified above."""

    status_code = 500
    code = "database_error"
