"""
scoring/pass_cut_calculator.py

Projects a region/track pass-cut from the partial live population.

For recruit count R, pass multiple P and likely multiple L:
    oneMultipleCut = sureMin = score_at_rank(R)
    likelyMaxRank  = max(1, floor(R × L))
    passCount      = ceil(R × P)
    likely window  = ranks R+1 .. likelyMaxRank
    possible window= ranks likelyMaxRank+1 .. passCount

Population: non-suspicious submissions with at least one subject score and
no failed subject. Scores are finalScore.
"""

import structlog
from typing import List, Optional

from passcut.models.enumerations import ExamType
from passcut.models.pass_cut import PassCutPredictionRow
from passcut.scoring.distribution import ScoreBand, score_at_rank, score_range
from passcut.scoring.policy import DEFAULT_MULTIPLE_POLICY, MultiplePolicy
from passcut.scoring.utils import round_score

logger = structlog.get_logger(__name__)


class PassCutCalculator:
    """Build one PassCutPredictionRow from score bands."""

    def __init__(self, multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY):
        self.multiples = multiples

    def calculate(
        self,
        region_id: int,
        region_name: str,
        exam_type: ExamType,
        recruit_count: int,
        applicant_count: Optional[int],
        bands: List[ScoreBand],
        average_score: Optional[float] = None,
    ) -> PassCutPredictionRow:
        """
        Args:
            recruit_count: Must be ≥ 1 (rows with no quota are skipped by the caller).
            applicant_count: Official applicant count, None when not yet published.
            bands: (finalScore, count) sorted by score descending.
            average_score: Population mean finalScore, if already aggregated.
        """
        if recruit_count < 1:
            raise ValueError(f"recruit_count must be >= 1, got {recruit_count}")

        participant_count = sum(band.count for band in bands)
        if average_score is None and participant_count:
            average_score = round_score(
                sum(band.score * band.count for band in bands) / participant_count
            )

        pass_multiple = self.multiples.pass_multiple(recruit_count)
        likely_multiple = self.multiples.likely_multiple(recruit_count)
        likely_max_rank = self.multiples.likely_max_rank(recruit_count)
        pass_count = self.multiples.pass_count(recruit_count)

        one_multiple_cut = score_at_rank(bands, recruit_count)
        likely = score_range(bands, recruit_count + 1, likely_max_rank)
        possible = score_range(bands, likely_max_rank + 1, pass_count)

        competition_rate = (
            round_score(applicant_count / recruit_count) if applicant_count is not None else None
        )

        logger.debug(
            "pass_cut_calculated",
            region_id=region_id,
            exam_type=exam_type.value,
            participant_count=participant_count,
            one_multiple_cut=one_multiple_cut,
            likely_min=likely.min_score,
            possible_min=possible.min_score,
        )

        return PassCutPredictionRow(
            region_id=region_id,
            region_name=region_name,
            exam_type=exam_type,
            recruit_count=recruit_count,
            applicant_count=applicant_count,
            estimated_applicants=applicant_count or 0,
            is_applicant_count_exact=applicant_count is not None,
            competition_rate=competition_rate,
            participant_count=participant_count,
            average_score=average_score,
            pass_multiple=round_score(pass_multiple, 4),
            likely_multiple=round_score(likely_multiple, 4),
            pass_count=pass_count,
            likely_max_rank=likely_max_rank,
            one_multiple_cut_score=one_multiple_cut,
            sure_min_score=one_multiple_cut,
            likely_max_score=likely.max_score,
            likely_min_score=likely.min_score,
            possible_max_score=possible.max_score,
            possible_min_score=possible.min_score,
        )
