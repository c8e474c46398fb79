"""
Prediction Service - Pass-Cut Platform
passcut/services/prediction_service.py

Personal pass prediction for one submission inside its (exam, region, exam
type) population of non-suspicious, non-failing submissions.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from passcut.core.exceptions import BusinessConflictError, EntityNotFoundException, ValidationError
from passcut.models.prediction import PredictionResult
from passcut.repositories.base import ExamDataStore
from passcut.scoring.policy import DEFAULT_MULTIPLE_POLICY, MultiplePolicy
from passcut.scoring.prediction import DEFAULT_PAGE_LIMIT, PredictionCalculator
from passcut.services.pass_cut_service import pass_cut_population

logger = logging.getLogger(__name__)


class PredictionService:

    def __init__(self, store: ExamDataStore, multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY):
        self.store = store
        self.calculator = PredictionCalculator(multiples)

    def get_prediction(
        self,
        submission_id: int,
        user_id: Optional[int] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> PredictionResult:
        """
        Raises:
            EntityNotFoundException: submission (or its region) not found.
            BusinessConflictError: the submission has a failed subject.
            ValidationError: the region has no recruit quota for the track.
        """
        submission = self.store.get_submission(submission_id)
        if submission is None or (user_id is not None and submission.user_id != user_id):
            raise EntityNotFoundException("Submission", submission_id)

        if any(s.is_failed for s in self.store.get_subject_scores(submission.id)):
            raise BusinessConflictError(
                "과락으로 인해 합격예측을 제공할 수 없습니다.",
                details={"submission_id": submission.id},
            )

        region = self.store.get_region(submission.region_id)
        if region is None:
            raise EntityNotFoundException("Region", submission.region_id)
        quota = self.store.get_quota(submission.exam_id, submission.region_id)
        recruit_count = quota.recruit_count_for(submission.exam_type) if quota else 0
        if recruit_count < 1:
            raise ValidationError(
                "선발인원 정보가 올바르지 않습니다.",
                details={"region_id": region.id, "exam_type": submission.exam_type.value},
            )

        population = replace(
            pass_cut_population(submission.exam_id),
            exam_type=submission.exam_type,
            region_id=submission.region_id,
        )
        members = self.store.list_submissions(population)
        participants = [(s.id, s.final_score) for s in members]
        if submission.is_suspicious:
            participants.append((submission.id, submission.final_score))

        result = self.calculator.calculate(
            submission_id=submission.id,
            exam_id=submission.exam_id,
            exam_type=submission.exam_type,
            region_id=region.id,
            region_name=region.name,
            recruit_count=recruit_count,
            participants=participants,
            now=datetime.now(timezone.utc),
            page=page,
            limit=limit,
        )
        logger.info(
            "prediction_calculated",
            extra={
                "submission_id": submission.id,
                "rank": result.my_rank,
                "total": result.total_participants,
                "grade": result.grade.value,
            },
        )
        return result
