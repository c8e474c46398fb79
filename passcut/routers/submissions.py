"""
Submission Router - Pass-Cut Platform
passcut/routers/submissions.py

Answer-sheet submission, stored scoring result and exam-number check.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from passcut.core.dependencies import enforce_rate_limit, get_submission_service
from passcut.models.enumerations import ExamType
from passcut.models.submission import SubmissionRequest, SubmissionResponse
from passcut.routers.errors import ErrorResponse
from passcut.services.submission_service import SubmissionService

router = APIRouter(prefix="/api/v1", tags=["Submissions"])



#  Schemas


class ExamNumberCheckRequest(BaseModel):
    user_id: int = Field(..., ge=1)
    exam_id: int = Field(..., ge=1)
    region_id: int = Field(..., ge=1)
    exam_type: ExamType
    exam_number: str = Field(..., min_length=1, max_length=50)


class ExamNumberCheckResponse(BaseModel):
    available: bool
    reason: Optional[str] = None



#  Routes


@router.post(
    "/submissions",
    response_model=SubmissionResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(enforce_rate_limit)],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid answer sheet or candidate data"},
        404: {"model": ErrorResponse, "description": "Exam or region not found"},
        409: {"model": ErrorResponse, "description": "Edit limit reached or hero bonus cap exceeded"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
    },
    summary="Submit answer sheet",
    description="Score an answer sheet and create or replace the caller's submission for the exam track.",
)
def submit_answers(
    request: SubmissionRequest,
    service: SubmissionService = Depends(get_submission_service),
) -> SubmissionResponse:
    return service.submit(request)


@router.get(
    "/submissions/{submission_id}",
    response_model=SubmissionResponse,
    responses={404: {"model": ErrorResponse, "description": "Submission not found"}},
    summary="Get scoring result",
)
def get_submission_result(
    submission_id: int,
    user_id: Optional[int] = Query(default=None, ge=1, description="Restrict to the owner"),
    service: SubmissionService = Depends(get_submission_service),
) -> SubmissionResponse:
    return service.get_result(submission_id, user_id)


@router.post(
    "/exam-number/check",
    response_model=ExamNumberCheckResponse,
    dependencies=[Depends(enforce_rate_limit)],
    summary="Check exam number",
    description="Whether the exam number lies in the region's range and is not used by another candidate.",
)
def check_exam_number(
    request: ExamNumberCheckRequest,
    service: SubmissionService = Depends(get_submission_service),
) -> ExamNumberCheckResponse:
    available, reason = service.check_exam_number(
        user_id=request.user_id,
        exam_id=request.exam_id,
        region_id=request.region_id,
        exam_type=request.exam_type,
        exam_number=request.exam_number,
    )
    return ExamNumberCheckResponse(available=available, reason=reason)
