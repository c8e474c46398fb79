# passcut/scoring/score_calculator.py
"""
Score Calculator
-------------------------------
Scores one candidate's marked answers against the official answer key.

Per subject:
    rawScore  = correct × pointPerQuestion
    isFailed  = rawScore < cutoffRate × maxScore        (과락, default 40%)
Aggregate:
    totalScore = Σ rawScore
    bonusScore = totalScore × bonusRate                  (policy, see policy.py)
    finalScore = round(totalScore + bonusScore, 2)

Input validation is strict: unknown subject, question number outside
1..questionCount, answer outside 1..4, duplicate (subject, question),
incomplete answer sheet or missing answer-key rows all raise ValidationError
before anything is persisted.
"""
import structlog
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from passcut.core.exceptions import ValidationError
from passcut.models.enumerations import BonusType, ExamType
from passcut.models.exam import Subject
from passcut.models.submission import AnswerInput, SubjectScore, UserAnswer
from passcut.scoring.policy import DEFAULT_SCORING_POLICY, ScoringPolicy
from passcut.scoring.utils import normalize_subject_name, round_score

logger = structlog.get_logger(__name__)

MIN_ANSWER = 1
MAX_ANSWER = 4

QuestionKey = Tuple[int, int]  # (subject_id, question_number)


@dataclass
class SubjectResult:
    """Per-subject output of ScoreCalculator."""
    subject: Subject
    correct_count: int
    raw_score: float
    cutoff_score: float
    is_failed: bool


@dataclass
class ScoringResult:
    """Output of ScoreCalculator.calculate()."""
    exam_type: ExamType
    subject_results: List[SubjectResult]
    user_answers: List[UserAnswer]
    total_score: float
    max_score: float
    bonus_type: BonusType
    bonus_rate: float
    bonus_score: float
    final_score: float
    answer_sequence: List[int] = field(default_factory=list)

    @property
    def has_cutoff(self) -> bool:
        return any(result.is_failed for result in self.subject_results)

    def subject_scores(self) -> List[SubjectScore]:
        return [
            SubjectScore(
                subject_id=result.subject.id,
                raw_score=result.raw_score,
                is_failed=result.is_failed,
            )
            for result in self.subject_results
        ]


class ScoreCalculator:
    """Validate an answer sheet and compute subject, total and final scores."""

    def __init__(self, policy: ScoringPolicy = DEFAULT_SCORING_POLICY):
        self.policy = policy

    def resolve_answers(
        self,
        subjects: Sequence[Subject],
        answers: Iterable[AnswerInput],
    ) -> Dict[QuestionKey, int]:
        """
        Map submitted (subjectName, questionNumber, answer) rows onto subject ids.

        Raises:
            ValidationError: on the first invalid row, or when the sheet is incomplete.
        """
        by_name = {subject.normalized_name: subject for subject in subjects}
        marked: Dict[QuestionKey, int] = {}

        for row in answers:
            subject = by_name.get(normalize_subject_name(row.subject_name))
            if subject is None:
                raise ValidationError(
                    f"유효하지 않은 과목명입니다: {row.subject_name}",
                    details={"subject_name": row.subject_name},
                )
            if not 1 <= row.question_number <= subject.question_count:
                raise ValidationError(
                    f"{subject.name} 문항 번호가 올바르지 않습니다: {row.question_number}",
                    details={"subject_name": subject.name, "question_number": row.question_number},
                )
            if not MIN_ANSWER <= row.answer <= MAX_ANSWER:
                raise ValidationError(
                    f"{subject.name} {row.question_number}번 답안은 1~4 사이여야 합니다.",
                    details={"subject_name": subject.name, "question_number": row.question_number},
                )
            key = (subject.id, row.question_number)
            if key in marked:
                raise ValidationError(
                    f"{subject.name} {row.question_number}번 답안이 중복되었습니다.",
                    details={"subject_name": subject.name, "question_number": row.question_number},
                )
            marked[key] = row.answer

        expected = sum(subject.question_count for subject in subjects)
        if len(marked) != expected:
            raise ValidationError(
                f"모든 문항에 답안을 입력해야 합니다. (입력 {len(marked)} / 전체 {expected})",
                details={"submitted": len(marked), "expected": expected},
            )
        return marked

    def calculate(
        self,
        exam_type: ExamType,
        subjects: Sequence[Subject],
        answer_keys: Mapping[QuestionKey, int],
        answers: Iterable[AnswerInput],
        bonus_type: BonusType = BonusType.NONE,
    ) -> ScoringResult:
        marked = self.resolve_answers(subjects, answers)
        return self.score(exam_type, subjects, answer_keys, marked, bonus_type)

    def score(
        self,
        exam_type: ExamType,
        subjects: Sequence[Subject],
        answer_keys: Mapping[QuestionKey, int],
        marked: Mapping[QuestionKey, int],
        bonus_type: BonusType = BonusType.NONE,
    ) -> ScoringResult:
        """
        Score an already resolved answer sheet.

        Args:
            exam_type: Track being scored.
            subjects: Subjects of the track, in display order.
            answer_keys: (subject_id, question_number) → correct answer.
            marked: (subject_id, question_number) → selected answer.
            bonus_type: Selected bonus.

        Returns:
            ScoringResult with subject results, child answer rows and totals.
        """
        subject_results: List[SubjectResult] = []
        user_answers: List[UserAnswer] = []
        sequence: List[int] = []

        for subject in subjects:
            correct = 0
            for question_number in range(1, subject.question_count + 1):
                key = (subject.id, question_number)
                if key not in answer_keys:
                    raise ValidationError(
                        f"{subject.name} {question_number}번 정답이 등록되지 않았습니다.",
                        details={"subject_name": subject.name, "question_number": question_number},
                    )
                selected = marked.get(key)
                if selected is None:
                    raise ValidationError(
                        f"{subject.name} {question_number}번 답안이 누락되었습니다.",
                        details={"subject_name": subject.name, "question_number": question_number},
                    )
                is_correct = selected == answer_keys[key]
                correct += int(is_correct)
                sequence.append(selected)
                user_answers.append(
                    UserAnswer(
                        subject_id=subject.id,
                        question_number=question_number,
                        selected_answer=selected,
                        is_correct=is_correct,
                    )
                )

            raw_score = round_score(correct * subject.point_per_question, self.policy.precision)
            subject_results.append(
                SubjectResult(
                    subject=subject,
                    correct_count=correct,
                    raw_score=raw_score,
                    cutoff_score=round_score(self.policy.cutoff_score(subject.max_score), self.policy.precision),
                    is_failed=self.policy.is_failed(raw_score, subject.max_score),
                )
            )

        total_score = round_score(sum(r.raw_score for r in subject_results), self.policy.precision)
        max_score = round_score(sum(s.max_score for s in subjects), self.policy.precision)
        bonus_rate = self.policy.bonus_rate(bonus_type)
        bonus_score = self.policy.bonus_score(total_score, max_score, bonus_type)
        final_score = self.policy.final_score(total_score, max_score, bonus_type)

        logger.info(
            "submission_scored",
            exam_type=exam_type.value,
            total_score=total_score,
            bonus_type=bonus_type.value,
            final_score=final_score,
            failed_subjects=[r.subject.name for r in subject_results if r.is_failed],
        )

        return ScoringResult(
            exam_type=exam_type,
            subject_results=subject_results,
            user_answers=user_answers,
            total_score=total_score,
            max_score=max_score,
            bonus_type=bonus_type,
            bonus_rate=bonus_rate,
            bonus_score=bonus_score,
            final_score=final_score,
            answer_sequence=sequence,
        )
