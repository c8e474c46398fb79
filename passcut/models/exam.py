from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from passcut.models.enumerations import ExamType
from passcut.scoring.utils import normalize_subject_name


class Exam(BaseModel):
    """
    Exam round (e.g. 2026년 제1차 경찰공무원 채용시험).
    """

    id: int
    name: str = Field(..., min_length=1, max_length=200)
    year: int = Field(..., ge=2000, le=2100)
    round: int = Field(default=1, ge=1)
    is_active: bool = True


class Subject(BaseModel):
    """
    Subject of one exam track.
    """

    id: int
    name: str = Field(..., min_length=1, max_length=50)
    exam_type: ExamType
    question_count: int = Field(..., ge=1, le=200)
    point_per_question: float = Field(..., gt=0)
    max_score: float = Field(..., gt=0)

    @property
    def normalized_name(self) -> str:
        return normalize_subject_name(self.name)


class Region(BaseModel):
    id: int
    name: str = Field(..., min_length=1, max_length=50)
    is_active: bool = True


class ExamRegionQuota(BaseModel):
    """
    Recruitment quota for one (exam, region), both tracks.
    """

    exam_id: int
    region_id: int
    recruit_count: int = Field(default=0, ge=0)
    recruit_count_career: int = Field(default=0, ge=0)
    applicant_count: Optional[int] = Field(default=None, ge=0)
    applicant_count_career: Optional[int] = Field(default=None, ge=0)
    exam_number_start: Optional[str] = None
    exam_number_end: Optional[str] = None
    exam_number_start_career: Optional[str] = None
    exam_number_end_career: Optional[str] = None

    def recruit_count_for(self, exam_type: ExamType) -> int:
        return self.recruit_count_career if exam_type == ExamType.CAREER else self.recruit_count

    def applicant_count_for(self, exam_type: ExamType) -> Optional[int]:
        return self.applicant_count_career if exam_type == ExamType.CAREER else self.applicant_count

    def exam_number_range_for(self, exam_type: ExamType) -> Tuple[Optional[str], Optional[str]]:
        if exam_type == ExamType.CAREER:
            return self.exam_number_start_career, self.exam_number_end_career
        return self.exam_number_start, self.exam_number_end


class AnswerKey(BaseModel):
    exam_id: int
    exam_type: ExamType
    subject_id: int
    question_number: int = Field(..., ge=1)
    correct_answer: int = Field(..., ge=1, le=4)


class AnswerKeyChangeLog(BaseModel):
    """
    Audit entry written for every corrected answer-key row.
    """

    id: Optional[int] = None
    exam_id: int
    exam_type: ExamType
    subject_id: int
    subject_name: str
    question_number: int
    old_answer: Optional[int] = None
    new_answer: int
    changed_by: int
    changed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Notice(BaseModel):
    id: Optional[int] = None
    title: str = Field(..., min_length=1, max_length=200)
    content: str
    priority: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        return value.strip()
