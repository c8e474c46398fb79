"""
Error Handlers - Pass-Cut Platform
passcut/routers/errors.py

Maps request validation failures and domain/repository exceptions to the
common error payload: error_code, message, details, timestamp.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from passcut.core.exceptions import (
    BusinessConflictError,
    EntityNotFoundException,
    RateLimitExceeded,
    RepositoryException,
    ValidationError,
)

logger = logging.getLogger(__name__)



#  Validation Error Messages


FIELD_MESSAGES = {
    "exam_id": {
        "missing": "Exam ID is required",
        "greater_than_equal": "Exam ID must be a positive integer",
        "int_parsing": "Exam ID must be a valid integer",
    },
    "region_id": {
        "missing": "Region ID is required",
        "greater_than_equal": "Region ID must be a positive integer",
        "int_parsing": "Region ID must be a valid integer",
    },
    "exam_type": {
        "missing": "Exam type is required",
        "enum": "Exam type must be PUBLIC or CAREER",
    },
    "exam_number": {
        "missing": "Exam number is required",
        "string_too_short": "Exam number cannot be empty",
        "string_too_long": "Exam number must not exceed 50 characters",
    },
    "answers": {
        "missing": "Answers are required",
        "too_short": "At least one answer is required",
    },
    "bonus_type": {
        "enum": "Bonus type must be one of NONE, VETERAN_5, VETERAN_10, HERO_3, HERO_5",
    },
    "memo": {
        "string_too_long": "Memo must not exceed 500 characters",
    },
}

DEFAULT_MESSAGES = {
    "missing": "Field '{field}' is required",
    "string_too_short": "Field '{field}' is too short",
    "string_too_long": "Field '{field}' is too long",
    "too_short": "Field '{field}' has too few items",
    "less_than_equal": "Field '{field}' exceeds maximum allowed value",
    "greater_than_equal": "Field '{field}' is below minimum allowed value",
    "enum": "Field '{field}' has an unsupported value",
    "string_type": "Field '{field}' must be a string",
    "float_type": "Field '{field}' must be a number",
    "float_parsing": "Field '{field}' must be a valid number",
    "int_type": "Field '{field}' must be an integer",
    "int_parsing": "Field '{field}' must be a valid integer",
    "bool_parsing": "Field '{field}' must be a boolean",
    "json_invalid": "Malformed JSON request body",
    "extra_forbidden": "Unknown field '{field}' is not allowed",
}


def get_validation_message(field: str, error_type: str) -> str:
    leaf = field.split(".")[-1] if field else field
    for name in (field, leaf):
        if name in FIELD_MESSAGES:
            for key in FIELD_MESSAGES[name]:
                if key in error_type:
                    return FIELD_MESSAGES[name][key]
    for key, template in DEFAULT_MESSAGES.items():
        if key in error_type:
            return template.format(field=field)
    return f"Invalid value for field '{field}'"



#  Schemas


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: Optional[dict] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def error_payload(error_code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "error_code": error_code,
        "message": message,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }



#  Exception Handlers


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_payload("VALIDATION_ERROR", "Request validation failed"),
        )
    err = errors[0]
    error_type = err.get("type", "")
    loc = err.get("loc", [])
    if "json_invalid" in error_type:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_payload("INVALID_REQUEST", "Malformed JSON request body"),
        )
    field = ".".join(str(l) for l in loc if l not in ("body", "query", "path"))
    message = get_validation_message(field, error_type)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_payload(
            "VALIDATION_ERROR",
            message,
            {"field": field, "type": error_type} if field else None,
        ),
    )


async def domain_validation_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(exc.error_code, exc.message, exc.details),
    )


async def business_conflict_handler(request: Request, exc: BusinessConflictError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content=error_payload(exc.error_code, exc.message, exc.details),
    )


async def not_found_handler(request: Request, exc: EntityNotFoundException):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content=error_payload(
            "NOT_FOUND",
            str(exc),
            {"entity_type": exc.entity_type, "entity_id": str(exc.entity_id)},
        ),
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=error_payload(exc.error_code, exc.message, exc.details),
        headers={"Retry-After": str(exc.retry_after_sec)},
    )


async def repository_exception_handler(request: Request, exc: RepositoryException):
    logger.error(
        "repository_error",
        exc_info=exc,
        extra={"path": request.url.path, "error_type": type(exc).__name__},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload("INTERNAL_ERROR", "Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, domain_validation_handler)
    app.add_exception_handler(BusinessConflictError, business_conflict_handler)
    app.add_exception_handler(EntityNotFoundException, not_found_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RepositoryException, repository_exception_handler)
