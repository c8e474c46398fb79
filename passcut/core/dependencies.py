"""
Dependencies - Pass-Cut Platform
passcut/core/dependencies.py

FastAPI dependency injection for the store, services and rate limiter.
"""

from functools import lru_cache

from fastapi import Depends, Request

from passcut.config import get_settings
from passcut.repositories.base import ExamDataStore
from passcut.repositories.memory import InMemoryExamDataStore
from passcut.repositories.seed import seed_demo_data
from passcut.repositories.snowflake_repository import SnowflakeExamDataStore
from passcut.services.answer_key_service import AnswerKeyService
from passcut.services.notification_service import NotificationService
from passcut.services.pass_cut_service import PassCutService
from passcut.services.prediction_service import PredictionService
from passcut.services.rate_limiter import RateLimiter, build_rate_limiter
from passcut.services.release_service import AutoReleaseRunner, ReleaseManager
from passcut.services.rescoring_service import RescoringService
from passcut.services.statistics_service import StatisticsService
from passcut.services.submission_service import SubmissionService


@lru_cache()
def get_store() -> ExamDataStore:
    """Get cached ExamDataStore instance."""
    settings = get_settings()
    if settings.STORAGE_BACKEND == "snowflake":
        return SnowflakeExamDataStore()
    store = InMemoryExamDataStore()
    if settings.SEED_DEMO_DATA:
        seed_demo_data(store)
    return store


@lru_cache()
def get_submission_service() -> SubmissionService:
    """Get cached SubmissionService instance."""
    return SubmissionService(get_store(), get_settings())


@lru_cache()
def get_statistics_service() -> StatisticsService:
    """Get cached StatisticsService instance."""
    return StatisticsService(get_store(), get_settings())


@lru_cache()
def get_pass_cut_service() -> PassCutService:
    """Get cached PassCutService instance."""
    return PassCutService(get_store(), get_settings())


@lru_cache()
def get_prediction_service() -> PredictionService:
    """Get cached PredictionService instance."""
    return PredictionService(get_store())


@lru_cache()
def get_rescoring_service() -> RescoringService:
    """Get cached RescoringService instance."""
    return RescoringService(get_store(), get_settings())


@lru_cache()
def get_answer_key_service() -> AnswerKeyService:
    """Get cached AnswerKeyService instance."""
    return AnswerKeyService(get_store(), get_rescoring_service())


@lru_cache()
def get_notification_service() -> NotificationService:
    """Get cached NotificationService instance."""
    return NotificationService(get_store())


@lru_cache()
def get_release_manager() -> ReleaseManager:
    """Get cached ReleaseManager instance."""
    return ReleaseManager(get_store(), get_pass_cut_service(), get_settings())


@lru_cache()
def get_auto_release_runner() -> AutoReleaseRunner:
    """Get cached AutoReleaseRunner instance."""
    return AutoReleaseRunner(get_store(), get_release_manager(), get_settings())


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Get cached RateLimiter instance."""
    return build_rate_limiter(get_settings())


def enforce_rate_limit(
    request: Request,
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> None:
    """Count the request against the caller's window; raises RateLimitExceeded when exhausted."""
    client = request.client.host if request.client else "anonymous"
    limiter.check(f"{client}:{request.url.path}")
