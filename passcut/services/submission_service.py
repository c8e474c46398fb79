"""
Submission Service - Pass-Cut Platform
passcut/services/submission_service.py

Boundary checks, scoring, anomaly flagging and the transactional upsert of a
candidate's answer sheet:

  1. Exam / track / region / quota checks
  2. Exam number range and bonus eligibility
  3. ScoreCalculator → SubjectScores + UserAnswers
  4. Hero bonus pass cap (projected pass set)
  5. AnomalyDetector (flag only)
  6. Submission + children written in one unit of work
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from passcut.config import Settings, get_settings
from passcut.core.exceptions import (
    BusinessConflictError,
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationError,
)
from passcut.models.enumerations import BonusType, ExamType
from passcut.models.exam import Exam, ExamRegionQuota, Region
from passcut.models.submission import (
    Submission,
    SubjectScoreResponse,
    SubmissionRequest,
    SubmissionResponse,
)
from passcut.repositories.base import ExamDataStore, PopulationFilter
from passcut.scoring.anomaly_detector import AnomalyDetector
from passcut.scoring.policy import (
    DEFAULT_MULTIPLE_POLICY,
    MultiplePolicy,
    bonus_type_from_percent,
    scoring_policy_from_settings,
)
from passcut.scoring.score_calculator import ScoreCalculator, ScoringResult
from passcut.scoring.utils import ceil_product, floor_product, round_score

logger = logging.getLogger(__name__)


def _parse_exam_number(value: Optional[str]) -> Optional[int]:
    """"00123" → 123, anything non-numeric → None."""
    if value is None:
        return None
    value = value.strip()
    if not value.isdigit():
        return None
    return int(value)


def exam_number_in_range(exam_number: str, start: Optional[str], end: Optional[str]) -> bool:
    """
    Range check used for both tracks. Without a configured range every
    number is accepted; numeric compare when all three parse, string compare otherwise.
    """
    if not start or not end:
        return True
    number, low, high = _parse_exam_number(exam_number), _parse_exam_number(start), _parse_exam_number(end)
    if number is not None and low is not None and high is not None:
        return low <= number <= high
    return start <= exam_number <= end


class SubmissionService:
    """Create or replace a candidate's submission."""

    def __init__(
        self,
        store: ExamDataStore,
        settings: Optional[Settings] = None,
        detector: Optional[AnomalyDetector] = None,
        multiples: MultiplePolicy = DEFAULT_MULTIPLE_POLICY,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.calculator = ScoreCalculator(scoring_policy_from_settings(self.settings))
        self.detector = detector or AnomalyDetector()
        self.multiples = multiples

    # ------------------------------------------------------------------
    # Boundary checks
    # ------------------------------------------------------------------
    def _load_exam(self, exam_id: int) -> Exam:
        exam = self.store.get_exam(exam_id)
        if exam is None:
            raise EntityNotFoundException("Exam", exam_id)
        if not exam.is_active:
            raise ValidationError("현재 성적 입력이 가능한 시험이 아닙니다.", details={"exam_id": exam_id})
        return exam

    def _load_region(self, region_id: int) -> Region:
        region = self.store.get_region(region_id)
        if region is None:
            raise EntityNotFoundException("Region", region_id)
        if not region.is_active:
            raise ValidationError(
                "비활성화된 지역은 성적 입력이 불가능합니다.",
                details={"region_id": region_id},
            )
        return region

    def _recruit_count(self, exam_id: int, region: Region, exam_type: ExamType) -> Tuple[int, Optional[ExamRegionQuota]]:
        quota = self.store.get_quota(exam_id, region.id)
        recruit_count = quota.recruit_count_for(exam_type) if quota else 0
        if recruit_count < 1:
            message = (
                "선택한 지역의 경행경채 모집인원이 설정되지 않았습니다."
                if exam_type == ExamType.CAREER
                else "선택한 지역의 모집인원이 올바르지 않습니다."
            )
            raise ValidationError(message, details={"region_id": region.id, "exam_type": exam_type.value})
        return recruit_count, quota

    def _resolve_bonus_type(self, request: SubmissionRequest) -> BonusType:
        if request.bonus_type is not None:
            return request.bonus_type
        return bonus_type_from_percent(request.veteran_percent, request.hero_percent)

    def check_exam_number(
        self,
        user_id: int,
        exam_id: int,
        region_id: int,
        exam_type: ExamType,
        exam_number: str,
    ) -> Tuple[bool, Optional[str]]:
        """
        Whether ``exam_number`` is usable by ``user_id``: inside the quota's
        range and not already taken by another user in the same region.
        """
        exam_number = exam_number.strip()
        quota = self.store.get_quota(exam_id, region_id)
        if quota is not None:
            start, end = quota.exam_number_range_for(exam_type)
            if not exam_number_in_range(exam_number, start, end):
                return False, f"응시번호가 유효 범위({start}~{end}) 밖입니다."

        taken = self.store.list_submissions(
            PopulationFilter(exam_id=exam_id, region_id=region_id, exclude_suspicious=False)
        )
        if any(s.exam_number == exam_number and s.user_id != user_id for s in taken):
            return False, "이미 사용 중인 응시번호입니다."
        return True, None

    def _check_hero_pass_cap(
        self,
        request: SubmissionRequest,
        recruit_count: int,
        result: ScoringResult,
        submission_id: Optional[int],
    ) -> None:
        """
        Hero beneficiaries (inside the pass set by finalScore but not by
        totalScore) may not exceed floor(recruit × HERO_PASS_CAP_RATE).
        """
        if not result.bonus_type.is_hero or result.has_cutoff:
            return

        cap_count = floor_product(recruit_count, self.settings.HERO_PASS_CAP_RATE)
        if cap_count < 1:
            raise ValidationError(
                "의사상자 가산점 합격 상한(선발예정인원 10%)을 적용할 수 없는 모집단입니다.",
                details={"recruit_count": recruit_count},
            )
        pass_count = ceil_product(recruit_count, self.multiples.pass_multiple(recruit_count))

        existing = self.store.list_submissions(
            PopulationFilter(
                exam_id=request.exam_id,
                exam_type=request.exam_type,
                region_id=request.region_id,
                exclude_suspicious=False,
                exclude_failed=True,
                require_subject_scores=True,
            )
        )
        candidate_id = submission_id or max((s.id for s in existing), default=0) + 1
        rows = [
            (s.id, s.total_score, s.final_score, s.bonus_type)
            for s in existing
            if s.id != candidate_id
        ]
        rows.append((candidate_id, result.total_score, result.final_score, result.bonus_type))

        pass_by_final = sorted(rows, key=lambda r: (-r[2], r[0]))[:pass_count]
        raw_passers = {r[0] for r in sorted(rows, key=lambda r: (-r[1], r[0]))[:pass_count]}
        beneficiaries = [r for r in pass_by_final if r[3].is_hero and r[0] not in raw_passers]

        if len(beneficiaries) > cap_count:
            raise BusinessConflictError(
                f"의사상자 가산점으로 합격 가능한 인원 상한({cap_count}명, 선발예정인원의 10%)을 초과합니다.",
                details={"cap_count": cap_count, "beneficiaries": len(beneficiaries)},
            )

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------
    def submit(self, request: SubmissionRequest) -> SubmissionResponse:
        """
        Score and persist a submission, replacing the caller's previous one
        for the same (exam, exam type).

        Raises:
            EntityNotFoundException: exam or region does not exist.
            ValidationError: any boundary or answer-sheet rule fails.
            BusinessConflictError: edit limit reached or hero pass cap exceeded.
        """
        if request.exam_type == ExamType.CAREER and not self.settings.CAREER_EXAM_ENABLED:
            raise ValidationError("현재 경행경채 시험이 비활성화되어 제출할 수 없습니다.")

        exam = self._load_exam(request.exam_id)
        region = self._load_region(request.region_id)
        recruit_count, quota = self._recruit_count(exam.id, region, request.exam_type)

        if quota is not None:
            start, end = quota.exam_number_range_for(request.exam_type)
            if not exam_number_in_range(request.exam_number, start, end):
                raise ValidationError(
                    f"응시번호가 유효 범위({start}~{end}) 밖입니다.",
                    details={"exam_number": request.exam_number},
                )

        bonus_type = self._resolve_bonus_type(request)
        if bonus_type.is_hero and recruit_count < self.settings.HERO_MIN_RECRUIT_COUNT:
            raise ValidationError(
                f"의사상자 가산점은 모집인원 {self.settings.HERO_MIN_RECRUIT_COUNT}명 이상 지역에서만 선택 가능합니다.",
                details={"recruit_count": recruit_count},
            )

        subjects = self.store.list_subjects(request.exam_type)
        if not subjects:
            raise ValidationError(
                "채용유형에 해당하는 과목 정보가 없습니다.",
                details={"exam_type": request.exam_type.value},
            )
        answer_keys = self.store.get_answer_keys(exam.id, request.exam_type)
        result = self.calculator.calculate(request.exam_type, subjects, answer_keys, request.answers, bonus_type)

        anomaly = self.detector.detect(
            result.answer_sequence,
            result.total_score,
            result.max_score,
            request.submit_duration_ms,
        )

        try:
            with self.store.unit_of_work():
                existing = self.store.find_submission(request.user_id, exam.id, request.exam_type)
                if existing is not None:
                    limit = self.settings.SUBMISSION_EDIT_LIMIT
                    if limit is not None and existing.edit_count >= limit:
                        raise BusinessConflictError(
                            f"답안 수정 가능 횟수({limit}회)를 모두 사용했습니다.",
                            details={"edit_count": existing.edit_count, "limit": limit},
                        )

                self._check_hero_pass_cap(request, recruit_count, result, existing.id if existing else None)

                now = datetime.now(timezone.utc)
                submission = Submission(
                    id=existing.id if existing else None,
                    user_id=request.user_id,
                    exam_id=exam.id,
                    exam_type=request.exam_type,
                    region_id=region.id,
                    gender=request.gender,
                    exam_number=request.exam_number,
                    total_score=result.total_score,
                    final_score=result.final_score,
                    bonus_type=bonus_type,
                    bonus_rate=result.bonus_rate,
                    is_suspicious=anomaly.is_suspicious,
                    suspicious_reasons=anomaly.reasons,
                    edit_count=existing.edit_count + 1 if existing else 0,
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                )
                saved = self.store.save_submission(submission, result.subject_scores(), result.user_answers)
        except DuplicateEntityException as e:
            raise BusinessConflictError("이미 해당 시험에 제출한 기록이 있습니다.", details={"reason": str(e)})

        logger.info(
            "submission_saved",
            extra={
                "submission_id": saved.id,
                "exam_id": exam.id,
                "exam_type": request.exam_type.value,
                "region_id": region.id,
                "final_score": saved.final_score,
                "is_suspicious": saved.is_suspicious,
                "edit_count": saved.edit_count,
            },
        )
        return self.to_response(saved, result)

    @staticmethod
    def to_response(submission: Submission, result: ScoringResult) -> SubmissionResponse:
        return SubmissionResponse(
            submission_id=submission.id,
            exam_id=submission.exam_id,
            exam_type=submission.exam_type,
            region_id=submission.region_id,
            total_score=result.total_score,
            bonus_type=result.bonus_type,
            bonus_rate=result.bonus_rate,
            bonus_score=result.bonus_score,
            final_score=result.final_score,
            max_score=result.max_score,
            has_cutoff=result.has_cutoff,
            is_suspicious=submission.is_suspicious,
            suspicious_reasons=submission.suspicious_reasons,
            edit_count=submission.edit_count,
            subject_scores=[_subject_response(r) for r in result.subject_results],
        )

    def get_result(self, submission_id: int, user_id: Optional[int] = None) -> SubmissionResponse:
        """Stored scoring result of one submission (as of the last scoring or rescoring)."""
        submission = self.store.get_submission(submission_id)
        if submission is None or (user_id is not None and submission.user_id != user_id):
            raise EntityNotFoundException("Submission", submission_id)

        policy = self.calculator.policy
        subjects = {s.id: s for s in self.store.list_subjects(submission.exam_type)}
        correct_counts = {}
        for answer in self.store.get_user_answers(submission.id):
            correct_counts[answer.subject_id] = correct_counts.get(answer.subject_id, 0) + int(answer.is_correct)

        subject_scores: List[SubjectScoreResponse] = []
        for row in self.store.get_subject_scores(submission.id):
            subject = subjects.get(row.subject_id)
            if subject is None:
                continue
            subject_scores.append(
                SubjectScoreResponse(
                    subject_id=subject.id,
                    subject_name=subject.name,
                    question_count=subject.question_count,
                    correct_count=correct_counts.get(subject.id, 0),
                    raw_score=row.raw_score,
                    max_score=subject.max_score,
                    cutoff_score=round_score(policy.cutoff_score(subject.max_score), policy.precision),
                    is_failed=row.is_failed,
                )
            )

        return SubmissionResponse(
            submission_id=submission.id,
            exam_id=submission.exam_id,
            exam_type=submission.exam_type,
            region_id=submission.region_id,
            total_score=submission.total_score,
            bonus_type=submission.bonus_type,
            bonus_rate=submission.bonus_rate,
            bonus_score=round_score(submission.final_score - submission.total_score, policy.precision),
            final_score=submission.final_score,
            max_score=round_score(sum(s.max_score for s in subjects.values()), policy.precision),
            has_cutoff=any(s.is_failed for s in subject_scores),
            is_suspicious=submission.is_suspicious,
            suspicious_reasons=submission.suspicious_reasons,
            edit_count=submission.edit_count,
            subject_scores=subject_scores,
        )


def _subject_response(result) -> SubjectScoreResponse:
    return SubjectScoreResponse(
        subject_id=result.subject.id,
        subject_name=result.subject.name,
        question_count=result.subject.question_count,
        correct_count=result.correct_count,
        raw_score=result.raw_score,
        max_score=result.subject.max_score,
        cutoff_score=result.cutoff_score,
        is_failed=result.is_failed,
    )
