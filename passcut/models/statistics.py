from typing import List, Optional

from pydantic import BaseModel

from passcut.models.enumerations import DifficultyLevel, ExamType, RankingBasis


class ScoreSummary(BaseModel):
    total_participants: int
    rank: int
    percentile: float
    top_percent: float
    average_score: float
    highest_score: float
    lowest_score: float
    top10_average: float
    top30_average: float


class SubjectStatistics(ScoreSummary):
    subject_id: int
    subject_name: str
    my_score: float
    max_score: float
    is_failed: bool


class StatisticsResult(BaseModel):
    """
    Rank and population statistics for one submission. ``ranking_basis``
    states which comparison population was used.
    """

    submission_id: int
    exam_id: int
    exam_type: ExamType
    region_id: int
    region_name: str
    ranking_basis: RankingBasis
    my_score: float
    has_cutoff: bool
    is_suspicious: bool
    total: ScoreSummary
    subjects: List[SubjectStatistics]


class DistributionBucket(BaseModel):
    index: int
    start: int
    end: int
    label: str
    count: int
    is_my_bucket: bool = False


class ScoreDistribution(BaseModel):
    exam_id: int
    exam_type: ExamType
    total_participants: int
    min_participants: int
    is_collecting: bool
    my_score: Optional[float] = None
    my_bucket: Optional[int] = None
    buckets: List[DistributionBucket]


class QuestionCorrectRate(BaseModel):
    subject_id: int
    subject_name: str
    question_number: int
    correct_answer: Optional[int] = None
    total_count: int
    correct_count: int
    correct_rate: float
    difficulty: DifficultyLevel


class CorrectRateReport(BaseModel):
    exam_id: int
    exam_type: ExamType
    total_participants: int
    questions: List[QuestionCorrectRate]
