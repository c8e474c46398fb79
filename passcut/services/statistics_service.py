"""
Statistics Service - Pass-Cut Platform
passcut/services/statistics_service.py

Rank / percentile statistics for one submission, the score distribution
histogram and per-question correct rates. Everything is computed live from
the store; nothing is cached.
"""

import logging
from typing import List, Optional

from passcut.config import Settings, get_settings
from passcut.core.exceptions import EntityNotFoundException
from passcut.models.enumerations import ExamType, RankingBasis
from passcut.models.statistics import (
    CorrectRateReport,
    DistributionBucket,
    QuestionCorrectRate,
    ScoreDistribution,
    ScoreSummary,
    StatisticsResult,
    SubjectStatistics,
)
from passcut.models.submission import Submission
from passcut.repositories.base import ExamDataStore, PopulationFilter
from passcut.scoring.correct_rate import build_correct_rates, wrong_rate_top
from passcut.scoring.distribution import build_distribution
from passcut.scoring.ranking import RankSummary, summarize
from passcut.scoring.utils import round_score

logger = logging.getLogger(__name__)


def _summary(result: RankSummary) -> ScoreSummary:
    return ScoreSummary(
        total_participants=result.total_participants,
        rank=result.rank,
        percentile=result.percentile,
        top_percent=result.top_percent,
        average_score=result.average_score,
        highest_score=result.highest_score,
        lowest_score=result.lowest_score,
        top10_average=result.top10_average,
        top30_average=result.top30_average,
    )


class StatisticsService:
    """Read-only statistics over the comparison populations."""

    def __init__(self, store: ExamDataStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def _get_submission(self, submission_id: int, user_id: Optional[int]) -> Submission:
        submission = self.store.get_submission(submission_id)
        if submission is None or (user_id is not None and submission.user_id != user_id):
            raise EntityNotFoundException("Submission", submission_id)
        return submission

    def get_statistics(self, submission_id: int, user_id: Optional[int] = None) -> StatisticsResult:
        """
        Rank the submission inside (exam, region, exam type), non-suspicious.

        A submission with a failed subject is compared against everyone; one
        without is compared only against submissions without a failed subject.
        A suspicious target is ranked against the population it would have
        joined, with its own score added.
        """
        submission = self._get_submission(submission_id, user_id)
        precision = self.settings.SCORE_PRECISION
        subject_scores = self.store.get_subject_scores(submission.id)
        has_cutoff = any(s.is_failed for s in subject_scores)
        basis = RankingBasis.ALL_PARTICIPANTS if has_cutoff else RankingBasis.NON_CUTOFF_PARTICIPANTS

        population = PopulationFilter(
            exam_id=submission.exam_id,
            exam_type=submission.exam_type,
            region_id=submission.region_id,
            exclude_suspicious=True,
            exclude_failed=not has_cutoff,
        )

        totals = self.store.population_scores(population, "final_score")
        if submission.is_suspicious:
            totals.append(submission.final_score)
        total_summary = summarize(submission.final_score, totals, precision)

        subjects = {s.id: s for s in self.store.list_subjects(submission.exam_type)}
        subject_rows: List[SubjectStatistics] = []
        for row in subject_scores:
            subject = subjects.get(row.subject_id)
            if subject is None:
                continue
            scores = self.store.subject_population_scores(population, subject.id)
            if submission.is_suspicious:
                scores.append(row.raw_score)
            summary = summarize(row.raw_score, scores, precision)
            subject_rows.append(
                SubjectStatistics(
                    **_summary(summary).model_dump(),
                    subject_id=subject.id,
                    subject_name=subject.name,
                    my_score=round_score(row.raw_score, precision),
                    max_score=subject.max_score,
                    is_failed=row.is_failed,
                )
            )

        region = self.store.get_region(submission.region_id)
        return StatisticsResult(
            submission_id=submission.id,
            exam_id=submission.exam_id,
            exam_type=submission.exam_type,
            region_id=submission.region_id,
            region_name=region.name if region else "",
            ranking_basis=basis,
            my_score=round_score(submission.final_score, precision),
            has_cutoff=has_cutoff,
            is_suspicious=submission.is_suspicious,
            total=_summary(total_summary),
            subjects=subject_rows,
        )

    def get_distribution(
        self,
        exam_id: int,
        exam_type: ExamType,
        submission_id: Optional[int] = None,
    ) -> ScoreDistribution:
        """totalScore histogram of (exam, exam type), non-suspicious."""
        scores = self.store.population_scores(
            PopulationFilter(exam_id=exam_id, exam_type=exam_type, exclude_suspicious=True),
            "total_score",
        )
        my_score: Optional[float] = None
        if submission_id is not None:
            submission = self.store.get_submission(submission_id)
            if submission is not None and submission.exam_id == exam_id and submission.exam_type == exam_type:
                my_score = submission.total_score

        min_participants = self.settings.DISTRIBUTION_MIN_PARTICIPANTS
        result = build_distribution(
            scores,
            my_score=my_score,
            bucket_size=self.settings.DISTRIBUTION_BUCKET_SIZE,
            max_score=self.settings.DISTRIBUTION_MAX_SCORE,
            min_participants=min_participants,
        )
        return ScoreDistribution(
            exam_id=exam_id,
            exam_type=exam_type,
            total_participants=result.total_participants,
            min_participants=min_participants,
            is_collecting=result.is_collecting,
            my_score=result.my_score,
            my_bucket=result.my_bucket,
            buckets=[
                DistributionBucket(
                    index=b.index,
                    start=b.start,
                    end=b.end,
                    label=b.label,
                    count=b.count,
                    is_my_bucket=b.is_my_bucket,
                )
                for b in result.buckets
            ],
        )

    def get_correct_rates(self, exam_id: int, exam_type: ExamType) -> CorrectRateReport:
        population = PopulationFilter(exam_id=exam_id, exam_type=exam_type, exclude_suspicious=True)
        subjects = self.store.list_subjects(exam_type)
        rows = build_correct_rates(
            subjects,
            self.store.answer_tallies(population),
            self.store.get_answer_keys(exam_id, exam_type),
        )
        participants = len(self.store.population_scores(population, "total_score"))
        return CorrectRateReport(
            exam_id=exam_id,
            exam_type=exam_type,
            total_participants=participants,
            questions=rows,
        )

    def get_wrong_rate_top(self, exam_id: int, exam_type: ExamType, limit: int = 10) -> List[QuestionCorrectRate]:
        report = self.get_correct_rates(exam_id, exam_type)
        return wrong_rate_top(report.questions, limit)
