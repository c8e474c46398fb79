"""
scoring/release_evaluator.py

Decides whether each pass-cut prediction row is publishable for a given
release number (1..4). Pure: the caller supplies the live rows, the score
bands as they stood 60 minutes ago and the last-hour inflow.

    targetParticipants = ceil(recruit × passMultiple)
    coverageRate       = participants / targetParticipants × 100

    stability = max(0, 100 − cutShiftPenalty − inflowPenalty − tiePenalty)
        cutShiftPenalty = min(40, |cut − cut60mAgo| × 20), 40 when unknown
        inflowPenalty   = min(30, lastHourInflow / target × 100 × 1.5)
        tiePenalty      = min(30, tiesAtCut / participants × 100 × 1.2)

Status (first match wins):
    applicant count unknown                  COLLECTING_MISSING_APPLICANT_COUNT
    participants < minSample or cut unknown  COLLECTING_INSUFFICIENT_SAMPLE
    coverage < threshold                     COLLECTING_LOW_PARTICIPATION
    stability < threshold                    COLLECTING_UNSTABLE
    otherwise                                READY
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from passcut.models.enumerations import SnapshotStatus, ThresholdProfile
from passcut.models.pass_cut import (
    EvaluatedPassCutRow,
    PassCutPredictionRow,
    ReleaseEvaluation,
    ReleaseThresholds,
)
from passcut.scoring.distribution import ScoreBand, score_at_rank
from passcut.scoring.policy import DEFAULT_MULTIPLE_POLICY, MultiplePolicy
from passcut.scoring.utils import ceil_product, round_score

logger = logging.getLogger(__name__)

MAX_RELEASE_NUMBER = 4
HISTORY_WINDOW_MINUTES = 60

CUT_SHIFT_PENALTY_CAP = 40.0
CUT_SHIFT_PENALTY_PER_POINT = 20.0
INFLOW_PENALTY_CAP = 30.0
INFLOW_PENALTY_FACTOR = 1.5
TIE_PENALTY_CAP = 30.0
TIE_PENALTY_FACTOR = 1.2


@dataclass(frozen=True)
class ThresholdBundle:
    coverage_by_release: Tuple[float, float, float, float]
    stability_by_release: Tuple[float, float, float, float]
    ready_ratio_by_release: Tuple[float, float, float, float]
    min_sample_count: int


PROFILES: Dict[ThresholdProfile, ThresholdBundle] = {
    ThresholdProfile.BALANCED: ThresholdBundle(
        coverage_by_release=(30, 50, 70, 90),
        stability_by_release=(45, 55, 65, 75),
        ready_ratio_by_release=(25, 45, 65, 85),
        min_sample_count=10,
    ),
    ThresholdProfile.CONSERVATIVE: ThresholdBundle(
        coverage_by_release=(40, 60, 80, 95),
        stability_by_release=(55, 65, 75, 85),
        ready_ratio_by_release=(35, 55, 75, 95),
        min_sample_count=15,
    ),
    ThresholdProfile.AGGRESSIVE: ThresholdBundle(
        coverage_by_release=(20, 35, 50, 70),
        stability_by_release=(35, 45, 55, 65),
        ready_ratio_by_release=(15, 30, 50, 70),
        min_sample_count=8,
    ),
}

STATUS_REASONS: Dict[SnapshotStatus, str] = {
    SnapshotStatus.COLLECTING_MISSING_APPLICANT_COUNT: "응시인원 미입력",
    SnapshotStatus.COLLECTING_INSUFFICIENT_SAMPLE: "표본 부족",
    SnapshotStatus.COLLECTING_LOW_PARTICIPATION: "참여율 부족",
    SnapshotStatus.COLLECTING_UNSTABLE: "안정도 부족",
}

RowKey = Tuple[int, str]  # (region_id, exam_type value)


def next_release_number(existing: List[int]) -> Optional[int]:
    """First release number in 1..4 not yet used, or None when all are published."""
    used = set(existing)
    for number in range(1, MAX_RELEASE_NUMBER + 1):
        if number not in used:
            return number
    return None


class ReleaseEvaluator:
    """Classify prediction rows into READY / COLLECTING_* for one release number."""

    def __init__(
        self,
        threshold_profile: ThresholdProfile = ThresholdProfile.BALANCED,
        ready_ratio_profile: Optional[ThresholdProfile] = None,
        multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY,
    ):
        self.threshold_profile = threshold_profile
        self.ready_ratio_profile = ready_ratio_profile or threshold_profile
        self.multiples = multiples

    def thresholds(self, release_number: int) -> ReleaseThresholds:
        bundle = PROFILES[self.threshold_profile]
        ratio_bundle = PROFILES[self.ready_ratio_profile]
        index = max(0, min(MAX_RELEASE_NUMBER - 1, release_number - 1))
        return ReleaseThresholds(
            release_number=release_number,
            coverage_rate=bundle.coverage_by_release[index],
            stability_score=bundle.stability_by_release[index],
            ready_ratio=ratio_bundle.ready_ratio_by_release[index],
            min_sample_count=bundle.min_sample_count,
        )

    def evaluate_row(
        self,
        row: PassCutPredictionRow,
        thresholds: ReleaseThresholds,
        current_bands: List[ScoreBand],
        history_bands: List[ScoreBand],
        recent_inflow_count: int,
    ) -> EvaluatedPassCutRow:
        target = ceil_product(row.recruit_count, self.multiples.pass_multiple(row.recruit_count))
        coverage_rate = round_score(row.participant_count / target * 100) if target > 0 else 0.0
        inflow_rate_pct = round_score(recent_inflow_count / target * 100) if target > 0 else 0.0

        cut = row.one_multiple_cut_score
        tie_count: Optional[int] = None
        if cut is not None:
            tie_count = sum(band.count for band in current_bands if abs(band.score - cut) < 1e-9)

        cut_60m_ago = score_at_rank(history_bands, row.recruit_count)
        cut_shift = (
            round_score(abs(cut - cut_60m_ago)) if cut is not None and cut_60m_ago is not None else None
        )

        cut_shift_penalty = (
            CUT_SHIFT_PENALTY_CAP
            if cut_shift is None
            else min(CUT_SHIFT_PENALTY_CAP, cut_shift * CUT_SHIFT_PENALTY_PER_POINT)
        )
        inflow_penalty = min(INFLOW_PENALTY_CAP, inflow_rate_pct * INFLOW_PENALTY_FACTOR)
        tie_rate_pct = (
            0.0
            if tie_count is None or row.participant_count < 1
            else tie_count / row.participant_count * 100
        )
        tie_penalty = min(TIE_PENALTY_CAP, tie_rate_pct * TIE_PENALTY_FACTOR)
        stability = round_score(max(0.0, 100 - cut_shift_penalty - inflow_penalty - tie_penalty))

        status, reason = self._classify(row, thresholds, coverage_rate, stability)
        is_ready = status == SnapshotStatus.READY

        return EvaluatedPassCutRow(
            region_id=row.region_id,
            region_name=row.region_name,
            exam_type=row.exam_type,
            status=status,
            status_reason=reason,
            participant_count=row.participant_count,
            recruit_count=row.recruit_count,
            applicant_count=row.applicant_count,
            target_participant_count=target,
            coverage_rate=coverage_rate,
            stability_score=stability,
            average_score=row.average_score,
            one_multiple_cut_score=cut if is_ready else None,
            sure_min_score=row.sure_min_score if is_ready else None,
            likely_min_score=row.likely_min_score if is_ready else None,
            possible_min_score=row.possible_min_score if is_ready else None,
            one_multiple_tie_count=tie_count,
            recent_inflow_count=recent_inflow_count,
            recent_inflow_rate_pct=inflow_rate_pct,
            cut_60m_ago=cut_60m_ago,
            cut_shift=cut_shift,
            cut_shift_penalty=round_score(cut_shift_penalty),
            inflow_penalty=round_score(inflow_penalty),
            tie_penalty=round_score(tie_penalty),
        )

    def evaluate(
        self,
        exam_id: int,
        release_number: int,
        rows: List[PassCutPredictionRow],
        current_bands: Dict[RowKey, List[ScoreBand]],
        history_bands: Dict[RowKey, List[ScoreBand]],
        recent_inflows: Dict[RowKey, int],
        now: datetime,
    ) -> ReleaseEvaluation:
        """
        Evaluate every row for ``release_number``.

        Args:
            current_bands / history_bands / recent_inflows: keyed by
                (region_id, exam_type value); missing keys mean no data.
            now: Evaluation timestamp recorded on the result.
        """
        thresholds = self.thresholds(release_number)
        evaluated = [
            self.evaluate_row(
                row,
                thresholds,
                current_bands.get((row.region_id, row.exam_type.value), []),
                history_bands.get((row.region_id, row.exam_type.value), []),
                recent_inflows.get((row.region_id, row.exam_type.value), 0),
            )
            for row in rows
        ]
        ready = sum(1 for row in evaluated if row.is_ready)
        ratio = round_score(ready / len(evaluated) * 100) if evaluated else 0.0

        logger.info(
            "release_evaluated",
            extra={
                "exam_id": exam_id,
                "release_number": release_number,
                "profile": self.threshold_profile.value,
                "eligible": len(evaluated),
                "ready": ready,
                "ready_ratio": ratio,
            },
        )

        return ReleaseEvaluation(
            exam_id=exam_id,
            release_number=release_number,
            thresholds=thresholds,
            rows=evaluated,
            eligible_region_count=len(evaluated),
            ready_region_count=ready,
            ready_region_ratio=ratio,
            evaluated_at=now,
        )

    @staticmethod
    def _classify(
        row: PassCutPredictionRow,
        thresholds: ReleaseThresholds,
        coverage_rate: float,
        stability: float,
    ) -> Tuple[SnapshotStatus, Optional[str]]:
        if row.applicant_count is None:
            status = SnapshotStatus.COLLECTING_MISSING_APPLICANT_COUNT
            return status, STATUS_REASONS[status]
        if row.participant_count < thresholds.min_sample_count or row.one_multiple_cut_score is None:
            status = SnapshotStatus.COLLECTING_INSUFFICIENT_SAMPLE
            return status, STATUS_REASONS[status]
        if coverage_rate < thresholds.coverage_rate:
            return (
                SnapshotStatus.COLLECTING_LOW_PARTICIPATION,
                f"참여율 부족 ({coverage_rate:.1f}% < {thresholds.coverage_rate:g}%)",
            )
        if stability < thresholds.stability_score:
            return (
                SnapshotStatus.COLLECTING_UNSTABLE,
                f"안정도 부족 ({stability:.1f} < {thresholds.stability_score:g})",
            )
        return SnapshotStatus.READY, None
