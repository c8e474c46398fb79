from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from passcut.models.enumerations import (
    AutoReleaseReason,
    AutoReleaseTrigger,
    ExamType,
    ReleaseSource,
    SnapshotStatus,
    ThresholdProfile,
)


class PassCutPredictionRow(BaseModel):
    """
    Live pass-cut projection for one (region, exam type).
    """

    region_id: int
    region_name: str
    exam_type: ExamType
    recruit_count: int
    applicant_count: Optional[int] = None
    estimated_applicants: int = 0
    is_applicant_count_exact: bool = False
    competition_rate: Optional[float] = None
    participant_count: int = 0
    average_score: Optional[float] = None
    pass_multiple: float
    likely_multiple: float
    pass_count: int
    likely_max_rank: int
    one_multiple_cut_score: Optional[float] = None
    sure_min_score: Optional[float] = None
    likely_max_score: Optional[float] = None
    likely_min_score: Optional[float] = None
    possible_max_score: Optional[float] = None
    possible_min_score: Optional[float] = None


class ReleaseThresholds(BaseModel):
    release_number: int
    coverage_rate: float
    stability_score: float
    ready_ratio: float
    min_sample_count: int


class EvaluatedPassCutRow(BaseModel):
    """
    Readiness verdict for one prediction row. Projected scores are only
    populated when status is READY.
    """

    region_id: int
    region_name: str
    exam_type: ExamType
    status: SnapshotStatus
    status_reason: Optional[str] = None
    participant_count: int
    recruit_count: int
    applicant_count: Optional[int] = None
    target_participant_count: int
    coverage_rate: float
    stability_score: float
    average_score: Optional[float] = None
    one_multiple_cut_score: Optional[float] = None
    sure_min_score: Optional[float] = None
    likely_min_score: Optional[float] = None
    possible_min_score: Optional[float] = None
    one_multiple_tie_count: Optional[int] = None
    recent_inflow_count: int = 0
    recent_inflow_rate_pct: float = 0.0
    cut_60m_ago: Optional[float] = None
    cut_shift: Optional[float] = None
    cut_shift_penalty: float = 0.0
    inflow_penalty: float = 0.0
    tie_penalty: float = 0.0

    @property
    def is_ready(self) -> bool:
        return self.status == SnapshotStatus.READY


class ReleaseEvaluation(BaseModel):
    exam_id: int
    release_number: int
    thresholds: ReleaseThresholds
    rows: List[EvaluatedPassCutRow]
    eligible_region_count: int
    ready_region_count: int
    ready_region_ratio: float
    evaluated_at: datetime


class PassCutSnapshot(BaseModel):
    """
    Immutable per-(region, exam type) record of a release.
    """

    id: Optional[int] = None
    release_id: Optional[int] = None
    region_id: int
    exam_type: ExamType
    status: SnapshotStatus
    status_reason: Optional[str] = None
    participant_count: int
    recruit_count: int
    applicant_count: Optional[int] = None
    target_participant_count: Optional[int] = None
    coverage_rate: Optional[float] = None
    stability_score: Optional[float] = None
    average_score: Optional[float] = None
    one_multiple_cut_score: Optional[float] = None
    sure_min_score: Optional[float] = None
    likely_min_score: Optional[float] = None
    possible_min_score: Optional[float] = None


class PassCutRelease(BaseModel):
    """
    Immutable published release. Unique per (exam_id, release_number).
    """

    id: Optional[int] = None
    exam_id: int
    release_number: int
    participant_count: int
    source: ReleaseSource = ReleaseSource.ADMIN
    memo: Optional[str] = None
    created_by: int
    released_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    snapshots: List[PassCutSnapshot] = Field(default_factory=list)


class ReleaseCreateRequest(BaseModel):
    exam_id: int = Field(..., ge=1)
    release_number: int = Field(..., description="1..4, validated by the release manager")
    admin_id: int = Field(..., ge=1)
    memo: Optional[str] = Field(default=None, max_length=500)
    auto_notice: bool = True
    threshold_profile: Optional[ThresholdProfile] = None

    @field_validator("memo")
    @classmethod
    def strip_memo(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class AutoReleaseRunRequest(BaseModel):
    exam_id: Optional[int] = Field(default=None, ge=1)
    trigger: AutoReleaseTrigger = AutoReleaseTrigger.CRON
    force: bool = False


class AutoReleaseRunResult(BaseModel):
    triggered: bool = False
    reason: AutoReleaseReason
    trigger: AutoReleaseTrigger
    exam_id: Optional[int] = None
    next_release_number: Optional[int] = None
    ready_region_ratio: float = 0.0
    required_ready_ratio: Optional[float] = None
    eligible_region_count: int = 0
    ready_region_count: int = 0
    release_id: Optional[int] = None
    rows: List[EvaluatedPassCutRow] = Field(default_factory=list)
