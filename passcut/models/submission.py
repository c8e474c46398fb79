from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from passcut.models.enumerations import BonusType, ExamType, Gender


class AnswerInput(BaseModel):
    """
    One marked answer. Range checks happen in the scoring engine so the
    caller receives the specific cause (unknown subject, question out of range...).
    """

    subject_name: str = Field(..., min_length=1, max_length=50)
    question_number: int
    answer: int


class SubmissionRequest(BaseModel):
    """
    Model for creating or replacing a candidate's submission.
    """

    user_id: int = Field(..., ge=1, description="Caller identity supplied by the auth layer")
    exam_id: int = Field(..., ge=1)
    exam_type: ExamType
    region_id: int = Field(..., ge=1)
    gender: Gender
    exam_number: str = Field(..., min_length=1, max_length=50)
    bonus_type: Optional[BonusType] = Field(
        default=None,
        description="Explicit bonus type; when omitted it is derived from the percent fields",
    )
    veteran_percent: int = Field(default=0, ge=0)
    hero_percent: int = Field(default=0, ge=0)
    answers: List[AnswerInput] = Field(..., min_length=1)
    submit_duration_ms: Optional[int] = Field(default=None, ge=0)

    @field_validator("exam_number")
    @classmethod
    def strip_exam_number(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("exam_number cannot be blank")
        return value


class Submission(BaseModel):
    """
    Stored submission header. Unique per (user_id, exam_id, exam_type).
    """

    id: Optional[int] = None
    user_id: int
    exam_id: int
    exam_type: ExamType
    region_id: int
    gender: Gender
    exam_number: str
    total_score: float
    final_score: float
    bonus_type: BonusType = BonusType.NONE
    bonus_rate: float = 0.0
    is_suspicious: bool = False
    suspicious_reasons: List[str] = Field(default_factory=list)
    edit_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SubjectScore(BaseModel):
    submission_id: Optional[int] = None
    subject_id: int
    raw_score: float
    is_failed: bool


class UserAnswer(BaseModel):
    submission_id: Optional[int] = None
    subject_id: int
    question_number: int
    selected_answer: int
    is_correct: bool


class SubjectScoreResponse(BaseModel):
    subject_id: int
    subject_name: str
    question_count: int
    correct_count: int
    raw_score: float
    max_score: float
    cutoff_score: float
    is_failed: bool


class SubmissionResponse(BaseModel):
    """
    Scoring result returned to the submitter (suspicious flags are visible to them).
    """

    submission_id: int
    exam_id: int
    exam_type: ExamType
    region_id: int
    total_score: float
    bonus_type: BonusType
    bonus_rate: float
    bonus_score: float
    final_score: float
    max_score: float
    has_cutoff: bool
    is_suspicious: bool
    suspicious_reasons: List[str]
    edit_count: int
    subject_scores: List[SubjectScoreResponse]
