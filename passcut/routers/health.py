"""
Health Check Router - Pass-Cut Platform
passcut/routers/health.py

Returns health status of the configured storage and rate-limit backends.
"""
from datetime import datetime, timezone
from typing import Dict

import redis
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from snowflake.connector.errors import Error as SnowflakeError

from passcut.config import get_settings
from passcut.services.snowflake import get_snowflake_connection

router = APIRouter(tags=["Health"])



#  Schemas


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    dependencies: Dict[str, str]



#  Dependency Health Checks


def _short(error: Exception) -> str:
    message = str(error)
    return message[:100] + "..." if len(message) > 100 else message


def check_storage() -> str:
    """Check the configured ExamDataStore backend."""
    settings = get_settings()
    if settings.STORAGE_BACKEND == "memory":
        return "healthy (in-memory)"
    try:
        conn = get_snowflake_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT CURRENT_USER(), CURRENT_ROLE()")
        result = cursor.fetchone()
        cursor.close()
        conn.close()
        return f"healthy (User: {result[0]})"
    except SnowflakeError as e:
        return f"unhealthy: {_short(e)}"


def check_rate_limiter() -> str:
    """Check Redis when it backs the rate limiter."""
    settings = get_settings()
    if settings.RATE_LIMIT_BACKEND == "memory":
        return "healthy (in-memory)"
    try:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        client.ping()
        client.close()
        return "healthy (redis)"
    except redis.RedisError as e:
        return f"unhealthy: {_short(e)}"



#  Main Health Check Route


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        200: {"description": "All dependencies healthy"},
        503: {"description": "One or more dependencies unhealthy"},
    },
    summary="Health check",
    description="Check health of all dependencies.",
)
def health_check():
    """Check health of all dependencies."""
    settings = get_settings()
    dependencies = {
        "storage": check_storage(),
        "rate_limiter": check_rate_limiter(),
    }

    all_healthy = all(v.startswith("healthy") for v in dependencies.values())

    response = HealthResponse(
        status="healthy" if all_healthy else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=settings.APP_VERSION,
        dependencies=dependencies,
    )

    if all_healthy:
        return response
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json"),
    )
