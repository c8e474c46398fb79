from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from passcut.models.enumerations import ExamType, PredictionGrade, PyramidLevel

PREDICTION_DISCLAIMER = "본 서비스는 참여자 데이터 기반 예측이며, 실제 합격 결과와 다를 수 있습니다."


class PredictionLevel(BaseModel):
    level: PyramidLevel
    count: int
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    min_multiple: Optional[float] = None
    max_multiple: Optional[float] = None
    is_current: bool = False


class PredictionCompetitor(BaseModel):
    submission_id: int
    rank: int
    score: float
    is_mine: bool


class CompetitorPage(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int
    items: List[PredictionCompetitor]


class PredictionResult(BaseModel):
    """
    Personal standing of one non-failing submission inside its region/track.
    """

    submission_id: int
    exam_id: int
    exam_type: ExamType
    region_id: int
    region_name: str
    recruit_count: int
    total_participants: int
    my_score: float
    my_rank: int
    my_multiple: float
    pass_multiple: float
    likely_multiple: float
    challenge_multiple: float
    pass_count: int
    pass_line_score: Optional[float] = None
    grade: PredictionGrade
    pyramid: List[PredictionLevel]
    competitors: CompetitorPage
    disclaimer: str = PREDICTION_DISCLAIMER
    updated_at: datetime
