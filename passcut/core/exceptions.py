"""
Custom Exceptions - Pass-Cut Platform
passcut/core/exceptions.py

Domain exceptions for scoring/rescoring/release operations and
repository exceptions for persistence.
"""
from typing import Any, Dict, Optional


class PassCutError(Exception):
    """Base exception for domain operations."""

    error_code = "PASSCUT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(PassCutError):
    """Input failed a domain validation rule. Nothing was written."""

    error_code = "VALIDATION_ERROR"


class BusinessConflictError(PassCutError):
    """Request conflicts with the current state (duplicate release, edit limit...)."""

    error_code = "BUSINESS_CONFLICT"


class RateLimitExceeded(PassCutError):
    """Too many requests in the current rate-limit window."""

    error_code = "RATE_LIMITED"

    def __init__(self, retry_after_sec: int):
        self.retry_after_sec = retry_after_sec
        super().__init__(
            "Too many requests",
            details={"retry_after_sec": retry_after_sec},
        )


class RepositoryException(Exception):
    """Base exception for repository operations."""

    pass


class EntityNotFoundException(RepositoryException):
    """Entity not found in storage."""

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} with ID {entity_id} not found")


class DuplicateEntityException(RepositoryException):
    """Unique constraint violation."""

    def __init__(self, message: str = "Entity already exists"):
        self.message = message
        super().__init__(message)


class DatabaseConnectionException(RepositoryException):
    """Database connection failure."""

    def __init__(self, message: str = "Database connection failed"):
        self.message = message
        super().__init__(message)


class ForeignKeyViolationException(RepositoryException):
    """Foreign key constraint violation."""

    def __init__(self, message: str = "Foreign key constraint violation"):
        self.message = message
        super().__init__(message)
