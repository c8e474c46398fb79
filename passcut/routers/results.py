"""
Results Router - Pass-Cut Platform
passcut/routers/results.py

Per-submission statistics and prediction, plus exam-wide distribution and
correct-rate analysis.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from passcut.core.dependencies import get_prediction_service, get_statistics_service
from passcut.models.enumerations import ExamType
from passcut.models.prediction import PredictionResult
from passcut.models.statistics import (
    CorrectRateReport,
    QuestionCorrectRate,
    ScoreDistribution,
    StatisticsResult,
)
from passcut.routers.errors import ErrorResponse
from passcut.scoring.prediction import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT
from passcut.services.prediction_service import PredictionService
from passcut.services.statistics_service import StatisticsService

router = APIRouter(prefix="/api/v1", tags=["Results"])


@router.get(
    "/submissions/{submission_id}/statistics",
    response_model=StatisticsResult,
    responses={404: {"model": ErrorResponse, "description": "Submission not found"}},
    summary="Rank and percentile statistics",
)
def get_statistics(
    submission_id: int,
    user_id: Optional[int] = Query(default=None, ge=1),
    service: StatisticsService = Depends(get_statistics_service),
) -> StatisticsResult:
    return service.get_statistics(submission_id, user_id)


@router.get(
    "/submissions/{submission_id}/prediction",
    response_model=PredictionResult,
    responses={
        400: {"model": ErrorResponse, "description": "Region has no recruit quota"},
        404: {"model": ErrorResponse, "description": "Submission not found"},
        409: {"model": ErrorResponse, "description": "Submission has a failed subject"},
    },
    summary="Personal pass prediction",
)
def get_prediction(
    submission_id: int,
    user_id: Optional[int] = Query(default=None, ge=1),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    service: PredictionService = Depends(get_prediction_service),
) -> PredictionResult:
    return service.get_prediction(submission_id, user_id, page=page, limit=limit)


@router.get(
    "/exams/{exam_id}/distribution",
    response_model=ScoreDistribution,
    summary="Score distribution",
    description="totalScore histogram; buckets stay empty while the population is still collecting.",
)
def get_distribution(
    exam_id: int,
    exam_type: ExamType = Query(...),
    submission_id: Optional[int] = Query(default=None, ge=1),
    service: StatisticsService = Depends(get_statistics_service),
) -> ScoreDistribution:
    return service.get_distribution(exam_id, exam_type, submission_id)


@router.get(
    "/exams/{exam_id}/correct-rates",
    response_model=CorrectRateReport,
    summary="Per-question correct rates",
)
def get_correct_rates(
    exam_id: int,
    exam_type: ExamType = Query(...),
    service: StatisticsService = Depends(get_statistics_service),
) -> CorrectRateReport:
    return service.get_correct_rates(exam_id, exam_type)


@router.get(
    "/exams/{exam_id}/wrong-rate-top",
    response_model=List[QuestionCorrectRate],
    summary="Most missed questions",
)
def get_wrong_rate_top(
    exam_id: int,
    exam_type: ExamType = Query(...),
    limit: int = Query(default=10, ge=1, le=50),
    service: StatisticsService = Depends(get_statistics_service),
) -> List[QuestionCorrectRate]:
    return service.get_wrong_rate_top(exam_id, exam_type, limit)
