"""
scoring/prediction.py

Personal pass prediction for one submission: competition-style rank,
multiple (rank / recruit), grade and the five-level pyramid.

    grade   myMultiple ≤ 1          SURE
            ≤ likelyMultiple        LIKELY
            ≤ passMultiple          POSSIBLE
            otherwise               CHALLENGE
    pyramid SURE | LIKELY | POSSIBLE | CHALLENGE (≤ pass × 1.3) | BELOW_CHALLENGE
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from passcut.models.enumerations import ExamType, PredictionGrade, PyramidLevel
from passcut.models.prediction import (
    CompetitorPage,
    PredictionCompetitor,
    PredictionLevel,
    PredictionResult,
)
from passcut.scoring.policy import DEFAULT_MULTIPLE_POLICY, MultiplePolicy
from passcut.scoring.ranking import SCORE_EPSILON
from passcut.scoring.utils import floor_product, round_score

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 50


@dataclass
class RankedParticipant:
    submission_id: int
    score: float
    rank: int


def rank_participants(entries: Sequence[Tuple[int, float]]) -> List[RankedParticipant]:
    """Sort (submission_id, score) by score desc, id asc; equal scores share a rank."""
    ordered = sorted(entries, key=lambda entry: (-entry[1], entry[0]))
    ranked: List[RankedParticipant] = []
    current_rank = 0
    previous: Optional[float] = None
    for index, (submission_id, score) in enumerate(ordered):
        if previous is None or abs(score - previous) > SCORE_EPSILON:
            current_rank = index + 1
            previous = score
        ranked.append(RankedParticipant(submission_id, round_score(score), current_rank))
    return ranked


def classify_grade(my_multiple: float, likely_multiple: float, pass_multiple: float) -> PredictionGrade:
    if my_multiple <= 1:
        return PredictionGrade.SURE
    if my_multiple <= likely_multiple:
        return PredictionGrade.LIKELY
    if my_multiple <= pass_multiple:
        return PredictionGrade.POSSIBLE
    return PredictionGrade.CHALLENGE


class PredictionCalculator:
    """Build a PredictionResult from the ranked comparison population."""

    def __init__(self, multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY):
        self.multiples = multiples

    def calculate(
        self,
        submission_id: int,
        exam_id: int,
        exam_type: ExamType,
        region_id: int,
        region_name: str,
        recruit_count: int,
        participants: Sequence[Tuple[int, float]],
        now: datetime,
        page: int = 1,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> PredictionResult:
        """
        Args:
            participants: (submission_id, finalScore) of the population; must contain the target.

        Raises:
            ValueError: if the target is not part of ``participants``.
        """
        ranked = rank_participants(participants)
        mine = next((p for p in ranked if p.submission_id == submission_id), None)
        if mine is None:
            raise ValueError(f"submission {submission_id} is not in the comparison population")

        pass_multiple = self.multiples.pass_multiple(recruit_count)
        likely_multiple = self.multiples.likely_multiple(recruit_count)
        challenge_multiple = self.multiples.challenge_multiple(recruit_count)
        pass_count = self.multiples.pass_count(recruit_count)
        likely_max_rank = self.multiples.likely_max_rank(recruit_count)
        challenge_max_rank = max(1, floor_product(recruit_count, challenge_multiple))

        my_multiple = mine.rank / recruit_count
        grade = classify_grade(my_multiple, likely_multiple, pass_multiple)

        if my_multiple <= 1:
            my_level = PyramidLevel.SURE
        elif my_multiple <= likely_multiple:
            my_level = PyramidLevel.LIKELY
        elif my_multiple <= pass_multiple:
            my_level = PyramidLevel.POSSIBLE
        elif my_multiple <= challenge_multiple:
            my_level = PyramidLevel.CHALLENGE
        else:
            my_level = PyramidLevel.BELOW_CHALLENGE

        windows = [
            (PyramidLevel.SURE, 1, recruit_count, 0.0, 1.0),
            (PyramidLevel.LIKELY, recruit_count + 1, likely_max_rank, 1.0, likely_multiple),
            (PyramidLevel.POSSIBLE, likely_max_rank + 1, pass_count, likely_multiple, pass_multiple),
            (PyramidLevel.CHALLENGE, pass_count + 1, challenge_max_rank, pass_multiple, challenge_multiple),
            (PyramidLevel.BELOW_CHALLENGE, challenge_max_rank + 1, None, challenge_multiple, None),
        ]
        pyramid = []
        for level, low, high, min_multiple, max_multiple in windows:
            members = [p for p in ranked if p.rank >= low and (high is None or p.rank <= high)]
            pyramid.append(
                PredictionLevel(
                    level=level,
                    count=len(members),
                    max_score=members[0].score if members else None,
                    min_score=members[-1].score if members else None,
                    min_multiple=round_score(min_multiple),
                    max_multiple=round_score(max_multiple) if max_multiple is not None else None,
                    is_current=level == my_level,
                )
            )

        pass_members = [p for p in ranked if p.rank <= pass_count]

        page = page if page >= 1 else 1
        limit = DEFAULT_PAGE_LIMIT if limit < 1 else min(limit, MAX_PAGE_LIMIT)
        start = (page - 1) * limit
        items = [
            PredictionCompetitor(
                submission_id=p.submission_id,
                rank=p.rank,
                score=p.score,
                is_mine=p.submission_id == submission_id,
            )
            for p in ranked[start:start + limit]
        ]

        return PredictionResult(
            submission_id=submission_id,
            exam_id=exam_id,
            exam_type=exam_type,
            region_id=region_id,
            region_name=region_name,
            recruit_count=recruit_count,
            total_participants=len(ranked),
            my_score=mine.score,
            my_rank=mine.rank,
            my_multiple=round_score(my_multiple),
            pass_multiple=round_score(pass_multiple),
            likely_multiple=round_score(likely_multiple),
            challenge_multiple=round_score(challenge_multiple),
            pass_count=pass_count,
            pass_line_score=pass_members[-1].score if pass_members else None,
            grade=grade,
            pyramid=pyramid,
            competitors=CompetitorPage(
                page=page,
                limit=limit,
                total_count=len(ranked),
                total_pages=max(1, math.ceil(len(ranked) / limit)),
                items=items,
            ),
            updated_at=now,
        )
