"""
Pass-Cut Service - Pass-Cut Platform
passcut/services/pass_cut_service.py

Live pass-cut prediction rows for every (region quota, exam type) of an exam.
Population: non-suspicious submissions with at least one subject score and
no failed subject, grouped by (region, exam type) into finalScore bands.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from passcut.config import Settings, get_settings
from passcut.core.exceptions import EntityNotFoundException
from passcut.models.enumerations import ExamType
from passcut.models.exam import Exam
from passcut.models.pass_cut import PassCutPredictionRow
from passcut.repositories.base import ExamDataStore, PopulationFilter, RowKey
from passcut.scoring.distribution import ScoreBand
from passcut.scoring.pass_cut_calculator import PassCutCalculator
from passcut.scoring.policy import DEFAULT_MULTIPLE_POLICY, MultiplePolicy

logger = logging.getLogger(__name__)


def pass_cut_population(
    exam_id: int,
    created_before: Optional[datetime] = None,
    created_since: Optional[datetime] = None,
) -> PopulationFilter:
    return PopulationFilter(
        exam_id=exam_id,
        exclude_suspicious=True,
        exclude_failed=True,
        require_subject_scores=True,
        created_before=created_before,
        created_since=created_since,
    )


class PassCutService:
    """Build PassCutPredictionRow lists from the store."""

    def __init__(
        self,
        store: ExamDataStore,
        settings: Optional[Settings] = None,
        multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.multiples = multiples
        self.calculator = PassCutCalculator(multiples)

    def resolve_exam(self, exam_id: Optional[int] = None) -> Exam:
        """The requested exam, or the active one when ``exam_id`` is None."""
        exam = self.store.get_exam(exam_id) if exam_id is not None else self.store.get_active_exam()
        if exam is None:
            raise EntityNotFoundException("Exam", exam_id if exam_id is not None else "active")
        return exam

    def exam_types(self) -> List[ExamType]:
        if self.settings.CAREER_EXAM_ENABLED:
            return [ExamType.PUBLIC, ExamType.CAREER]
        return [ExamType.PUBLIC]

    def current_bands(self, exam_id: int) -> Dict[RowKey, List[ScoreBand]]:
        return self.store.grouped_score_bands(pass_cut_population(exam_id))

    def build_rows(
        self,
        exam_id: int,
        bands: Optional[Dict[RowKey, List[ScoreBand]]] = None,
    ) -> List[PassCutPredictionRow]:
        """
        One row per quota and enabled exam type with recruit count ≥ 1,
        ordered by region id then exam type.
        """
        if bands is None:
            bands = self.current_bands(exam_id)

        rows: List[PassCutPredictionRow] = []
        for quota in self.store.list_quotas(exam_id):
            region = self.store.get_region(quota.region_id)
            region_name = region.name if region else str(quota.region_id)
            for exam_type in self.exam_types():
                recruit_count = quota.recruit_count_for(exam_type)
                if recruit_count < 1:
                    continue
                rows.append(
                    self.calculator.calculate(
                        region_id=quota.region_id,
                        region_name=region_name,
                        exam_type=exam_type,
                        recruit_count=recruit_count,
                        applicant_count=quota.applicant_count_for(exam_type),
                        bands=bands.get((quota.region_id, exam_type.value), []),
                    )
                )

        logger.info(
            "pass_cut_rows_built",
            extra={"exam_id": exam_id, "rows": len(rows), "groups_with_data": len(bands)},
        )
        return rows

    def get_rows(self, exam_id: Optional[int] = None) -> List[PassCutPredictionRow]:
        exam = self.resolve_exam(exam_id)
        return self.build_rows(exam.id)
