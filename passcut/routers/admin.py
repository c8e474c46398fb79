"""
Admin Router - Pass-Cut Platform
passcut/routers/admin.py

Answer-key correction, rescoring, release publication and auto-release.
Authentication is handled in front of this service.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from passcut.core.dependencies import (
    get_answer_key_service,
    get_auto_release_runner,
    get_release_manager,
    get_rescoring_service,
)
from passcut.models.enumerations import ExamType, ThresholdProfile
from passcut.models.exam import AnswerKey, AnswerKeyChangeLog
from passcut.models.pass_cut import (
    AutoReleaseRunRequest,
    AutoReleaseRunResult,
    PassCutRelease,
    ReleaseCreateRequest,
    ReleaseEvaluation,
)
from passcut.models.rescore import (
    AnswerKeyCorrectionRequest,
    AnswerKeyCorrectionResult,
    RescoreRequest,
    RescoreResult,
)
from passcut.routers.errors import ErrorResponse
from passcut.services.answer_key_service import AnswerKeyService, parse_answer_key_csv
from passcut.services.release_service import AutoReleaseRunner, ReleaseManager
from passcut.services.rescoring_service import RescoringService

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])



#  Schemas


class AnswerKeyCsvRequest(BaseModel):
    exam_id: int = Field(..., ge=1)
    exam_type: ExamType
    admin_id: int = Field(..., ge=1)
    csv: str = Field(..., min_length=1, description="subject,question,answer per line")
    rescore: bool = True
    reason: Optional[str] = Field(default=None, max_length=500)



#  Answer Keys


@router.get(
    "/answer-keys",
    response_model=List[AnswerKey],
    summary="Current answer key",
)
def get_answer_keys(
    exam_id: int = Query(..., ge=1),
    exam_type: ExamType = Query(...),
    service: AnswerKeyService = Depends(get_answer_key_service),
) -> List[AnswerKey]:
    return service.get_answer_keys(exam_id, exam_type)


@router.put(
    "/answer-keys",
    response_model=AnswerKeyCorrectionResult,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid answer-key rows"},
        404: {"model": ErrorResponse, "description": "Exam not found"},
    },
    summary="Correct answer key",
    description="Save full or partial answer-key rows, log each change and optionally rescore.",
)
def correct_answer_keys(
    request: AnswerKeyCorrectionRequest,
    service: AnswerKeyService = Depends(get_answer_key_service),
) -> AnswerKeyCorrectionResult:
    return service.correct(request)


@router.post(
    "/answer-keys/csv",
    response_model=AnswerKeyCorrectionResult,
    responses={400: {"model": ErrorResponse, "description": "Malformed CSV or invalid rows"}},
    summary="Correct answer key from CSV",
)
def correct_answer_keys_csv(
    request: AnswerKeyCsvRequest,
    service: AnswerKeyService = Depends(get_answer_key_service),
) -> AnswerKeyCorrectionResult:
    return service.correct(
        AnswerKeyCorrectionRequest(
            exam_id=request.exam_id,
            exam_type=request.exam_type,
            admin_id=request.admin_id,
            answers=parse_answer_key_csv(request.csv),
            rescore=request.rescore,
            reason=request.reason,
        )
    )


@router.get(
    "/answer-keys/logs",
    response_model=List[AnswerKeyChangeLog],
    summary="Answer-key change log",
)
def list_answer_key_logs(
    exam_id: int = Query(..., ge=1),
    exam_type: ExamType = Query(...),
    service: AnswerKeyService = Depends(get_answer_key_service),
) -> List[AnswerKeyChangeLog]:
    return service.list_change_logs(exam_id, exam_type)



#  Rescoring


@router.post(
    "/rescore",
    response_model=RescoreResult,
    responses={
        404: {"model": ErrorResponse, "description": "Exam not found"},
        409: {"model": ErrorResponse, "description": "No answer-key change since the last rescore"},
    },
    summary="Rescore submissions",
)
def rescore(
    request: RescoreRequest,
    service: RescoringService = Depends(get_rescoring_service),
) -> RescoreResult:
    return service.rescore(request)



#  Releases


@router.get(
    "/releases/evaluation",
    response_model=ReleaseEvaluation,
    summary="Evaluate release readiness",
    description="Read-only readiness verdict of every row for a release number.",
)
def evaluate_release(
    exam_id: int = Query(..., ge=1),
    release_number: int = Query(..., ge=1, le=4),
    threshold_profile: Optional[ThresholdProfile] = Query(default=None),
    manager: ReleaseManager = Depends(get_release_manager),
) -> ReleaseEvaluation:
    return manager.evaluate(exam_id, release_number, threshold_profile)


@router.post(
    "/releases",
    response_model=PassCutRelease,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Release number outside 1..4"},
        404: {"model": ErrorResponse, "description": "Exam not found"},
        409: {"model": ErrorResponse, "description": "Release already published"},
    },
    summary="Publish pass-cut release",
)
def create_release(
    request: ReleaseCreateRequest,
    manager: ReleaseManager = Depends(get_release_manager),
) -> PassCutRelease:
    return manager.create_release(request)


@router.post(
    "/auto-release/run",
    response_model=AutoReleaseRunResult,
    summary="Run auto release",
    description="Publish the next release when enough regions are READY. Never raises for policy outcomes.",
)
def run_auto_release(
    request: AutoReleaseRunRequest,
    runner: AutoReleaseRunner = Depends(get_auto_release_runner),
) -> AutoReleaseRunResult:
    return runner.run(request)
