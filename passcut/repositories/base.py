"""
Base Repository - Pass-Cut Platform
passcut/repositories/base.py

Storage abstraction used by every service. Population statistics are
expressed as aggregate operations over a PopulationFilter so a backend can
push them down to the database instead of loading whole tables.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from passcut.models.enumerations import ExamType
from passcut.models.exam import (
    AnswerKey,
    AnswerKeyChangeLog,
    Exam,
    ExamRegionQuota,
    Notice,
    Region,
    Subject,
)
from passcut.models.pass_cut import PassCutRelease
from passcut.models.rescore import RescoreDetail, RescoreEvent
from passcut.models.submission import Submission, SubjectScore, UserAnswer
from passcut.scoring.distribution import ScoreBand

QuestionKey = Tuple[int, int]  # (subject_id, question_number)
RowKey = Tuple[int, str]       # (region_id, exam_type value)


@dataclass(frozen=True)
class PopulationFilter:
    """
    Selects a comparison population of submissions.

    exclude_failed drops submissions with any failed subject;
    require_subject_scores drops submissions without subject rows;
    created_before is exclusive, created_since inclusive.
    """

    exam_id: int
    exam_type: Optional[ExamType] = None
    region_id: Optional[int] = None
    exclude_suspicious: bool = True
    exclude_failed: bool = False
    require_subject_scores: bool = False
    created_before: Optional[datetime] = None
    created_since: Optional[datetime] = None


class UnitOfWork(ABC):
    """
    Explicit transaction boundary.

    Usage:
        with store.unit_of_work():
            store.save_submission(...)

    The context manager commits on success and rolls back when the block raises.
    """

    @abstractmethod
    def begin(self) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    def __enter__(self) -> "UnitOfWork":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


class ExamDataStore(ABC):
    """Persistence contract for exams, submissions, rescoring and releases."""

    @abstractmethod
    def unit_of_work(self) -> UnitOfWork: ...

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------
    @abstractmethod
    def get_exam(self, exam_id: int) -> Optional[Exam]: ...

    @abstractmethod
    def get_active_exam(self) -> Optional[Exam]:
        """Most recent active exam (highest year, round, id)."""

    @abstractmethod
    def list_subjects(self, exam_type: ExamType) -> List[Subject]: ...

    @abstractmethod
    def get_region(self, region_id: int) -> Optional[Region]: ...

    @abstractmethod
    def get_quota(self, exam_id: int, region_id: int) -> Optional[ExamRegionQuota]: ...

    @abstractmethod
    def list_quotas(self, exam_id: int) -> List[ExamRegionQuota]: ...

    @abstractmethod
    def get_answer_keys(self, exam_id: int, exam_type: ExamType) -> Dict[QuestionKey, int]: ...

    @abstractmethod
    def save_answer_keys(self, rows: List[AnswerKey]) -> None:
        """Insert or overwrite answer-key rows."""

    @abstractmethod
    def add_answer_key_logs(self, logs: List[AnswerKeyChangeLog]) -> List[AnswerKeyChangeLog]: ...

    @abstractmethod
    def list_answer_key_logs(
        self,
        exam_id: int,
        exam_type: ExamType,
        since: Optional[datetime] = None,
    ) -> List[AnswerKeyChangeLog]:
        """Change logs ordered by time; ``since`` is exclusive."""

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    @abstractmethod
    def get_submission(self, submission_id: int) -> Optional[Submission]: ...

    @abstractmethod
    def find_submission(self, user_id: int, exam_id: int, exam_type: ExamType) -> Optional[Submission]: ...

    @abstractmethod
    def save_submission(
        self,
        submission: Submission,
        subject_scores: List[SubjectScore],
        user_answers: List[UserAnswer],
    ) -> Submission:
        """
        Insert (id is None) or overwrite a submission and replace its children.

        Raises:
            DuplicateEntityException: (user, exam, exam type) already has another submission.
        """

    @abstractmethod
    def get_subject_scores(self, submission_id: int) -> List[SubjectScore]: ...

    @abstractmethod
    def get_user_answers(self, submission_id: int) -> List[UserAnswer]: ...

    @abstractmethod
    def list_submissions(self, population: PopulationFilter) -> List[Submission]: ...

    @abstractmethod
    def list_submission_exam_types(self, exam_id: int) -> List[ExamType]:
        """Distinct exam types that have at least one submission."""

    # ------------------------------------------------------------------
    # Population aggregates
    # ------------------------------------------------------------------
    @abstractmethod
    def population_scores(self, population: PopulationFilter, score_field: str = "final_score") -> List[float]:
        """``final_score`` or ``total_score`` of every member."""

    @abstractmethod
    def subject_population_scores(self, population: PopulationFilter, subject_id: int) -> List[float]:
        """Raw scores of one subject across the population."""

    @abstractmethod
    def grouped_score_bands(self, population: PopulationFilter) -> Dict[RowKey, List[ScoreBand]]:
        """finalScore bands (descending) per (region, exam type)."""

    @abstractmethod
    def grouped_counts(self, population: PopulationFilter) -> Dict[RowKey, int]: ...

    @abstractmethod
    def answer_tallies(self, population: PopulationFilter) -> Dict[QuestionKey, Tuple[int, int]]:
        """(answered, correct) per question."""

    # ------------------------------------------------------------------
    # Rescoring
    # ------------------------------------------------------------------
    @abstractmethod
    def add_rescore_event(self, event: RescoreEvent) -> RescoreEvent: ...

    @abstractmethod
    def get_rescore_event(self, event_id: int) -> Optional[RescoreEvent]: ...

    @abstractmethod
    def latest_rescore_event(self, exam_id: int, exam_type: ExamType) -> Optional[RescoreEvent]: ...

    @abstractmethod
    def add_rescore_details(self, details: List[RescoreDetail]) -> List[RescoreDetail]:
        """
        Raises:
            DuplicateEntityException: (event, submission) already recorded.
        """

    @abstractmethod
    def list_rescore_details(self, user_id: int, limit: int = 20, unread_only: bool = False) -> List[RescoreDetail]:
        """Newest first."""

    @abstractmethod
    def count_unread_rescore_details(self, user_id: int) -> int: ...

    @abstractmethod
    def mark_rescore_details_read(self, user_id: int, detail_ids: Optional[List[int]] = None) -> int:
        """Mark the user's unread details (all, or only ``detail_ids``); returns rows updated."""

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------
    @abstractmethod
    def get_release(self, exam_id: int, release_number: int) -> Optional[PassCutRelease]: ...

    @abstractmethod
    def list_releases(self, exam_id: int) -> List[PassCutRelease]: ...

    @abstractmethod
    def add_release(self, release: PassCutRelease) -> PassCutRelease:
        """
        Persist a release with its snapshots.

        Raises:
            DuplicateEntityException: (exam, release number) already exists.
        """

    @abstractmethod
    def add_notice(self, notice: Notice) -> Notice: ...

    @abstractmethod
    def list_notices(self) -> List[Notice]: ...
