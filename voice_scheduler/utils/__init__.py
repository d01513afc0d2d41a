"""Utility functions package."""

from .errors import (
    AppError,
    BusinessRuleError,
    ConflictError,
    DatabaseError,
    ExternalServiceError,
    NotFoundError,
    ParseError,
    ValidationError,
)
from .phone_utils import is_anonymous_caller, normalize_phone_number

__all__ = [
    "AppError",
    "BusinessRuleError",
    "ConflictError",
    "DatabaseError",
    "ExternalServiceError",
    "NotFoundError",
    "ParseError",
    "ValidationError",
    "is_anonymous_caller",
    "normalize_phone_number",
]
