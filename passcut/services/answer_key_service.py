"""
Answer Key Service - Pass-Cut Platform
passcut/services/answer_key_service.py

The audited mutation path for answer keys. Every changed row writes an
AnswerKeyChangeLog entry in the same unit of work; a correction can trigger
rescoring of the affected exam type inside that unit of work too.
"""

import csv
import io
import logging
from typing import Dict, List, Optional, Sequence

from passcut.core.exceptions import EntityNotFoundException, ValidationError
from passcut.models.enumerations import ExamType
from passcut.models.exam import AnswerKey, AnswerKeyChangeLog, Subject
from passcut.models.rescore import (
    AnswerKeyCorrectionRequest,
    AnswerKeyCorrectionResult,
    AnswerKeyInput,
    ChangedQuestion,
    RescoreRequest,
)
from passcut.repositories.base import ExamDataStore, PopulationFilter, QuestionKey
from passcut.scoring.utils import normalize_subject_name
from passcut.services.rescoring_service import RescoringService

logger = logging.getLogger(__name__)

CSV_HEADER_TOKENS = {"subject", "subjectname", "과목", "문항", "question", "answer", "정답"}


def parse_answer_key_csv(text: str) -> List[AnswerKeyInput]:
    """
    Parse ``subject,question,answer`` lines; a header line is detected and skipped.

    Raises:
        ValidationError: empty input or a non-numeric question/answer cell.
    """
    rows = [row for row in csv.reader(io.StringIO(text.strip())) if any(cell.strip() for cell in row)]
    if not rows:
        raise ValidationError("정답 데이터가 비어 있습니다.")

    first = {"".join(cell.split()).lower() for cell in rows[0]}
    if first & CSV_HEADER_TOKENS:
        rows = rows[1:]

    parsed: List[AnswerKeyInput] = []
    for line_number, row in enumerate(rows, start=1):
        if len(row) < 3:
            raise ValidationError(f"{line_number}번째 줄 형식이 올바르지 않습니다.", details={"line": line_number})
        subject_name, question, answer = (cell.strip() for cell in row[:3])
        try:
            parsed.append(
                AnswerKeyInput(
                    subject_name=subject_name,
                    question_number=int(question),
                    correct_answer=int(answer),
                )
            )
        except ValueError:
            raise ValidationError(f"{line_number}번째 줄 형식이 올바르지 않습니다.", details={"line": line_number})
    return parsed


def normalize_answer_rows(rows: Sequence[AnswerKeyInput], subjects: Sequence[Subject]) -> Dict[QuestionKey, int]:
    """
    Resolve subject names and validate every row.

    Raises:
        ValidationError: unknown subject, question out of range, answer not in
            1..4 or a duplicated (subject, question).
    """
    if not rows:
        raise ValidationError("정답 데이터가 비어 있습니다.")

    by_name = {subject.normalized_name: subject for subject in subjects}
    normalized: Dict[QuestionKey, int] = {}
    for row in rows:
        subject = by_name.get(normalize_subject_name(row.subject_name))
        if subject is None:
            raise ValidationError(
                "정답 데이터에 유효하지 않은 과목이 포함되어 있습니다.",
                details={"subject_name": row.subject_name},
            )
        if not 1 <= row.question_number <= subject.question_count:
            raise ValidationError(
                f"{subject.name} 과목 문항 번호가 올바르지 않습니다. (입력값: {row.question_number})",
                details={"subject_name": subject.name, "question_number": row.question_number},
            )
        if not 1 <= row.correct_answer <= 4:
            raise ValidationError(
                f"{subject.name} {row.question_number}번 문항 정답은 1~4 사이 값이어야 합니다.",
                details={"subject_name": subject.name, "question_number": row.question_number},
            )
        key = (subject.id, row.question_number)
        if key in normalized:
            raise ValidationError(
                f"{subject.name} {row.question_number}번 문항이 중복 입력되었습니다.",
                details={"subject_name": subject.name, "question_number": row.question_number},
            )
        normalized[key] = row.correct_answer
    return normalized


class AnswerKeyService:
    """Read and correct answer keys."""

    def __init__(self, store: ExamDataStore, rescoring: Optional[RescoringService] = None):
        self.store = store
        self.rescoring = rescoring or RescoringService(store)

    def get_answer_keys(self, exam_id: int, exam_type: ExamType) -> List[AnswerKey]:
        keys = self.store.get_answer_keys(exam_id, exam_type)
        return [
            AnswerKey(
                exam_id=exam_id,
                exam_type=exam_type,
                subject_id=subject_id,
                question_number=question_number,
                correct_answer=answer,
            )
            for (subject_id, question_number), answer in sorted(keys.items())
        ]

    def list_change_logs(self, exam_id: int, exam_type: ExamType) -> List[AnswerKeyChangeLog]:
        return self.store.list_answer_key_logs(exam_id, exam_type)

    def correct(self, request: AnswerKeyCorrectionRequest) -> AnswerKeyCorrectionResult:
        """
        Save the given (full or partial) key rows, logging each changed row,
        and rescore when requested and something changed.

        Raises:
            EntityNotFoundException: exam does not exist.
            ValidationError: any row is invalid; nothing is written.
        """
        exam = self.store.get_exam(request.exam_id)
        if exam is None:
            raise EntityNotFoundException("Exam", request.exam_id)

        subjects = self.store.list_subjects(request.exam_type)
        subject_by_id = {subject.id: subject for subject in subjects}
        incoming = normalize_answer_rows(request.answers, subjects)
        current = self.store.get_answer_keys(exam.id, request.exam_type)

        changed = {key: answer for key, answer in incoming.items() if current.get(key) != answer}
        changed_questions = [
            ChangedQuestion(
                subject_name=subject_by_id[subject_id].name,
                question_number=question_number,
                old_answer=current.get((subject_id, question_number)),
                new_answer=answer,
            )
            for (subject_id, question_number), answer in sorted(changed.items())
        ]

        rescore_result = None
        with self.store.unit_of_work():
            self.store.save_answer_keys(
                [
                    AnswerKey(
                        exam_id=exam.id,
                        exam_type=request.exam_type,
                        subject_id=subject_id,
                        question_number=question_number,
                        correct_answer=answer,
                    )
                    for (subject_id, question_number), answer in sorted(changed.items())
                ]
            )
            self.store.add_answer_key_logs(
                [
                    AnswerKeyChangeLog(
                        exam_id=exam.id,
                        exam_type=request.exam_type,
                        subject_id=subject_id,
                        subject_name=subject_by_id[subject_id].name,
                        question_number=question_number,
                        old_answer=current.get((subject_id, question_number)),
                        new_answer=answer,
                        changed_by=request.admin_id,
                    )
                    for (subject_id, question_number), answer in sorted(changed.items())
                ]
            )

            has_submissions = bool(
                self.store.list_submissions(
                    PopulationFilter(exam_id=exam.id, exam_type=request.exam_type, exclude_suspicious=False)
                )
            )
            if request.rescore and changed and has_submissions:
                rescore_result = self.rescoring.rescore(
                    RescoreRequest(
                        exam_id=exam.id,
                        exam_type=request.exam_type,
                        admin_id=request.admin_id,
                        reason=request.reason or "정답 수정",
                    )
                )

        logger.info(
            "answer_keys_corrected",
            extra={
                "exam_id": exam.id,
                "exam_type": request.exam_type.value,
                "saved": len(changed),
                "rescored": rescore_result.rescored_count if rescore_result else 0,
            },
        )

        return AnswerKeyCorrectionResult(
            exam_id=exam.id,
            exam_type=request.exam_type,
            saved_count=len(changed),
            changed_questions=changed_questions,
            rescore=rescore_result,
        )
