from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from passcut.models.enumerations import ExamType


class ChangedQuestion(BaseModel):
    subject_name: str
    question_number: int
    old_answer: Optional[int] = None
    new_answer: int


class SubjectScoreChange(BaseModel):
    """One subject whose raw score or cutoff status moved in a rescore."""

    subject_id: int
    subject_name: str
    old_raw_score: float
    new_raw_score: float
    old_is_failed: bool
    new_is_failed: bool


class RescoreSummary(BaseModel):
    rescored_count: int = 0
    increased: int = 0
    decreased: int = 0
    unchanged: int = 0
    subject_only_changed: int = 0
    changed_questions: List[ChangedQuestion] = Field(default_factory=list)


class RescoreEvent(BaseModel):
    """
    Audit header of one rescoring run for one exam type. Immutable.
    """

    id: Optional[int] = None
    exam_id: int
    exam_type: ExamType
    admin_id: int
    reason: Optional[str] = None
    summary: RescoreSummary = Field(default_factory=RescoreSummary)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RescoreDetail(BaseModel):
    """
    Per-submission change record. Only ``is_read`` may change after insert.
    """

    id: Optional[int] = None
    rescore_event_id: int
    submission_id: int
    user_id: int
    old_total_score: float
    new_total_score: float
    old_final_score: float
    new_final_score: float
    old_rank: Optional[int] = None
    new_rank: Optional[int] = None
    score_delta: float
    subject_changes: List[SubjectScoreChange] = Field(default_factory=list)
    is_read: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RescoreRequest(BaseModel):
    exam_id: int = Field(..., ge=1)
    exam_type: Optional[ExamType] = None
    admin_id: int = Field(..., ge=1)
    reason: Optional[str] = Field(default=None, max_length=500)
    require_key_change: bool = False

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class RescoreResult(BaseModel):
    exam_id: int
    exam_types: List[ExamType]
    rescored_count: int
    increased: int
    decreased: int
    unchanged: int
    subject_only_changed: int = 0
    rescore_event_ids: List[int] = Field(default_factory=list)


class AnswerKeyInput(BaseModel):
    subject_name: str = Field(..., min_length=1, max_length=50)
    question_number: int
    correct_answer: int


class AnswerKeyCorrectionRequest(BaseModel):
    exam_id: int = Field(..., ge=1)
    exam_type: ExamType
    admin_id: int = Field(..., ge=1)
    answers: List[AnswerKeyInput] = Field(..., min_length=1)
    rescore: bool = True
    reason: Optional[str] = Field(default=None, max_length=500)


class AnswerKeyCorrectionResult(BaseModel):
    exam_id: int
    exam_type: ExamType
    saved_count: int
    changed_questions: List[ChangedQuestion]
    rescore: Optional[RescoreResult] = None


class RescoreNotification(BaseModel):
    id: int
    rescore_event_id: int
    exam_id: int
    exam_type: ExamType
    submission_id: int
    old_final_score: float
    new_final_score: float
    score_delta: float
    old_rank: Optional[int] = None
    new_rank: Optional[int] = None
    subject_changes: List[SubjectScoreChange] = Field(default_factory=list)
    impact_text: str
    is_read: bool
    created_at: datetime


class NotificationList(BaseModel):
    unread_count: int
    items: List[RescoreNotification]
