"""
Pass-Cut Router - Pass-Cut Platform
passcut/routers/pass_cut.py

Live pass-cut prediction rows, published releases and notices.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from passcut.core.dependencies import get_pass_cut_service, get_release_manager, get_store
from passcut.models.exam import Notice
from passcut.models.pass_cut import PassCutPredictionRow, PassCutRelease
from passcut.repositories.base import ExamDataStore
from passcut.routers.errors import ErrorResponse
from passcut.services.pass_cut_service import PassCutService
from passcut.services.release_service import ReleaseManager

router = APIRouter(prefix="/api/v1", tags=["Pass-Cut"])


@router.get(
    "/pass-cut",
    response_model=List[PassCutPredictionRow],
    responses={404: {"model": ErrorResponse, "description": "No such (or no active) exam"}},
    summary="Live pass-cut prediction",
    description="One row per region and exam type; defaults to the active exam.",
)
def get_pass_cut_rows(
    exam_id: Optional[int] = Query(default=None, ge=1),
    service: PassCutService = Depends(get_pass_cut_service),
) -> List[PassCutPredictionRow]:
    return service.get_rows(exam_id)


@router.get(
    "/exams/{exam_id}/releases",
    response_model=List[PassCutRelease],
    summary="Published pass-cut releases",
)
def list_releases(
    exam_id: int,
    manager: ReleaseManager = Depends(get_release_manager),
) -> List[PassCutRelease]:
    return manager.list_releases(exam_id)


@router.get(
    "/exams/{exam_id}/releases/{release_number}",
    response_model=PassCutRelease,
    responses={404: {"model": ErrorResponse, "description": "Release not published"}},
    summary="One published release",
)
def get_release(
    exam_id: int,
    release_number: int,
    manager: ReleaseManager = Depends(get_release_manager),
) -> PassCutRelease:
    return manager.get_release(exam_id, release_number)


@router.get(
    "/notices",
    response_model=List[Notice],
    summary="Active notices",
)
def list_notices(store: ExamDataStore = Depends(get_store)) -> List[Notice]:
    return [n for n in store.list_notices() if n.is_active]
