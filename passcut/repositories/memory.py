"""
In-Memory Repository - Pass-Cut Platform
passcut/repositories/memory.py

Process-local ExamDataStore used for development and tests. A re-entrant
lock serializes units of work; rollback restores a deep-copied snapshot of
every table.
"""

import copy
import logging
import threading
from collections import Counter, defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from passcut.core.exceptions import DuplicateEntityException, RepositoryException
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
from passcut.repositories.base import (
    ExamDataStore,
    PopulationFilter,
    QuestionKey,
    RowKey,
    UnitOfWork,
)
from passcut.scoring.distribution import ScoreBand, build_score_bands

logger = logging.getLogger(__name__)


def _empty_tables() -> Dict[str, Any]:
    return {
        "exams": {},
        "subjects": {},
        "regions": {},
        "quotas": {},           # (exam_id, region_id) -> quota
        "answer_keys": {},      # (exam_id, exam_type, subject_id, q) -> AnswerKey
        "answer_key_logs": [],
        "submissions": {},
        "subject_scores": {},   # submission_id -> [SubjectScore]
        "user_answers": {},     # submission_id -> [UserAnswer]
        "rescore_events": {},
        "rescore_details": {},
        "releases": {},
        "notices": {},
        "sequences": Counter(),
    }


class InMemoryUnitOfWork(UnitOfWork):
    """Joins an already open unit of work on the same store."""

    def __init__(self, store: "InMemoryExamDataStore"):
        self.store = store

    def begin(self) -> None:
        self.store._lock.acquire()
        if self.store._depth == 0:
            self.store._snapshot = copy.deepcopy(self.store._tables)
            self.store._rollback_only = False
        self.store._depth += 1

    def commit(self) -> None:
        try:
            self.store._depth -= 1
            if self.store._depth == 0:
                if self.store._rollback_only:
                    self.store._restore()
                    raise RepositoryException("Transaction was marked rollback-only")
                self.store._snapshot = None
        finally:
            self.store._lock.release()

    def rollback(self) -> None:
        try:
            self.store._depth -= 1
            if self.store._depth == 0:
                self.store._restore()
            else:
                self.store._rollback_only = True
        finally:
            self.store._lock.release()


class InMemoryExamDataStore(ExamDataStore):
    """Dictionary-backed store with unique-constraint checks."""

    def __init__(self):
        self._lock = threading.RLock()
        self._tables = _empty_tables()
        self._snapshot: Optional[Dict[str, Any]] = None
        self._depth = 0
        self._rollback_only = False

    def unit_of_work(self) -> UnitOfWork:
        return InMemoryUnitOfWork(self)

    def _restore(self) -> None:
        if self._snapshot is not None:
            self._tables = self._snapshot
            self._snapshot = None
            self._rollback_only = False
            logger.info("memory_store_rolled_back")

    def _next_id(self, table: str) -> int:
        self._tables["sequences"][table] += 1
        return self._tables["sequences"][table]

    # ------------------------------------------------------------------
    # Seeding (memory backend only)
    # ------------------------------------------------------------------
    def add_exam(self, exam: Exam) -> Exam:
        with self._lock:
            self._tables["exams"][exam.id] = exam.model_copy(deep=True)
            return exam

    def add_subject(self, subject: Subject) -> Subject:
        with self._lock:
            self._tables["subjects"][subject.id] = subject.model_copy(deep=True)
            return subject

    def add_region(self, region: Region) -> Region:
        with self._lock:
            self._tables["regions"][region.id] = region.model_copy(deep=True)
            return region

    def save_quota(self, quota: ExamRegionQuota) -> ExamRegionQuota:
        with self._lock:
            self._tables["quotas"][(quota.exam_id, quota.region_id)] = quota.model_copy(deep=True)
            return quota

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------
    def get_exam(self, exam_id: int) -> Optional[Exam]:
        with self._lock:
            exam = self._tables["exams"].get(exam_id)
            return exam.model_copy(deep=True) if exam else None

    def get_active_exam(self) -> Optional[Exam]:
        with self._lock:
            active = [e for e in self._tables["exams"].values() if e.is_active]
            if not active:
                return None
            return max(active, key=lambda e: (e.year, e.round, e.id)).model_copy(deep=True)

    def list_subjects(self, exam_type: ExamType) -> List[Subject]:
        with self._lock:
            subjects = [s for s in self._tables["subjects"].values() if s.exam_type == exam_type]
            return [s.model_copy(deep=True) for s in sorted(subjects, key=lambda s: s.id)]

    def get_region(self, region_id: int) -> Optional[Region]:
        with self._lock:
            region = self._tables["regions"].get(region_id)
            return region.model_copy(deep=True) if region else None

    def get_quota(self, exam_id: int, region_id: int) -> Optional[ExamRegionQuota]:
        with self._lock:
            quota = self._tables["quotas"].get((exam_id, region_id))
            return quota.model_copy(deep=True) if quota else None

    def list_quotas(self, exam_id: int) -> List[ExamRegionQuota]:
        with self._lock:
            quotas = [q for (e, _), q in self._tables["quotas"].items() if e == exam_id]
            return [q.model_copy(deep=True) for q in sorted(quotas, key=lambda q: q.region_id)]

    def get_answer_keys(self, exam_id: int, exam_type: ExamType) -> Dict[QuestionKey, int]:
        with self._lock:
            return {
                (row.subject_id, row.question_number): row.correct_answer
                for (e, t, _, _), row in self._tables["answer_keys"].items()
                if e == exam_id and t == exam_type
            }

    def save_answer_keys(self, rows: List[AnswerKey]) -> None:
        with self._lock:
            for row in rows:
                key = (row.exam_id, row.exam_type, row.subject_id, row.question_number)
                self._tables["answer_keys"][key] = row.model_copy(deep=True)

    def add_answer_key_logs(self, logs: List[AnswerKeyChangeLog]) -> List[AnswerKeyChangeLog]:
        with self._lock:
            saved = []
            for log in logs:
                record = log.model_copy(update={"id": self._next_id("answer_key_logs")}, deep=True)
                self._tables["answer_key_logs"].append(record)
                saved.append(record.model_copy(deep=True))
            return saved

    def list_answer_key_logs(
        self,
        exam_id: int,
        exam_type: ExamType,
        since: Optional[datetime] = None,
    ) -> List[AnswerKeyChangeLog]:
        with self._lock:
            logs = [
                log for log in self._tables["answer_key_logs"]
                if log.exam_id == exam_id
                and log.exam_type == exam_type
                and (since is None or log.changed_at > since)
            ]
            return [log.model_copy(deep=True) for log in sorted(logs, key=lambda l: (l.changed_at, l.id))]

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------
    def get_submission(self, submission_id: int) -> Optional[Submission]:
        with self._lock:
            submission = self._tables["submissions"].get(submission_id)
            return submission.model_copy(deep=True) if submission else None

    def find_submission(self, user_id: int, exam_id: int, exam_type: ExamType) -> Optional[Submission]:
        with self._lock:
            for submission in self._tables["submissions"].values():
                if (submission.user_id, submission.exam_id, submission.exam_type) == (user_id, exam_id, exam_type):
                    return submission.model_copy(deep=True)
            return None

    def save_submission(
        self,
        submission: Submission,
        subject_scores: List[SubjectScore],
        user_answers: List[UserAnswer],
    ) -> Submission:
        with self._lock:
            existing = self.find_submission(submission.user_id, submission.exam_id, submission.exam_type)
            if existing is not None and existing.id != submission.id:
                raise DuplicateEntityException(
                    f"UNIQUE violation: submission for user {submission.user_id}, "
                    f"exam {submission.exam_id}, {submission.exam_type.value} already exists"
                )
            if submission.id is None:
                record = submission.model_copy(update={"id": self._next_id("submissions")}, deep=True)
            else:
                if submission.id not in self._tables["submissions"]:
                    raise RepositoryException(f"Submission {submission.id} does not exist")
                record = submission.model_copy(deep=True)

            self._tables["submissions"][record.id] = record
            self._tables["subject_scores"][record.id] = [
                s.model_copy(update={"submission_id": record.id}, deep=True) for s in subject_scores
            ]
            self._tables["user_answers"][record.id] = [
                a.model_copy(update={"submission_id": record.id}, deep=True) for a in user_answers
            ]
            return record.model_copy(deep=True)

    def get_subject_scores(self, submission_id: int) -> List[SubjectScore]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._tables["subject_scores"].get(submission_id, [])]

    def get_user_answers(self, submission_id: int) -> List[UserAnswer]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._tables["user_answers"].get(submission_id, [])]

    def _members(self, population: PopulationFilter) -> List[Submission]:
        members = []
        for submission in self._tables["submissions"].values():
            if submission.exam_id != population.exam_id:
                continue
            if population.exam_type is not None and submission.exam_type != population.exam_type:
                continue
            if population.region_id is not None and submission.region_id != population.region_id:
                continue
            if population.exclude_suspicious and submission.is_suspicious:
                continue
            if population.created_before is not None and not submission.created_at < population.created_before:
                continue
            if population.created_since is not None and submission.created_at < population.created_since:
                continue
            scores = self._tables["subject_scores"].get(submission.id, [])
            if population.require_subject_scores and not scores:
                continue
            if population.exclude_failed and any(s.is_failed for s in scores):
                continue
            members.append(submission)
        return sorted(members, key=lambda s: s.id)

    def list_submissions(self, population: PopulationFilter) -> List[Submission]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._members(population)]

    def list_submission_exam_types(self, exam_id: int) -> List[ExamType]:
        with self._lock:
            found = {s.exam_type for s in self._tables["submissions"].values() if s.exam_id == exam_id}
            return [exam_type for exam_type in ExamType if exam_type in found]

    # ------------------------------------------------------------------
    # Population aggregates
    # ------------------------------------------------------------------
    def population_scores(self, population: PopulationFilter, score_field: str = "final_score") -> List[float]:
        if score_field not in ("final_score", "total_score"):
            raise ValueError(f"Unsupported score field: {score_field}")
        with self._lock:
            return [getattr(s, score_field) for s in self._members(population)]

    def subject_population_scores(self, population: PopulationFilter, subject_id: int) -> List[float]:
        with self._lock:
            scores = []
            for submission in self._members(population):
                for row in self._tables["subject_scores"].get(submission.id, []):
                    if row.subject_id == subject_id:
                        scores.append(row.raw_score)
            return scores

    def grouped_score_bands(self, population: PopulationFilter) -> Dict[RowKey, List[ScoreBand]]:
        with self._lock:
            grouped: Dict[RowKey, List[float]] = defaultdict(list)
            for submission in self._members(population):
                grouped[(submission.region_id, submission.exam_type.value)].append(submission.final_score)
            return {key: build_score_bands(scores) for key, scores in grouped.items()}

    def grouped_counts(self, population: PopulationFilter) -> Dict[RowKey, int]:
        with self._lock:
            counts: Dict[RowKey, int] = Counter(
                (s.region_id, s.exam_type.value) for s in self._members(population)
            )
            return dict(counts)

    def answer_tallies(self, population: PopulationFilter) -> Dict[QuestionKey, Tuple[int, int]]:
        with self._lock:
            answered: Counter = Counter()
            correct: Counter = Counter()
            for submission in self._members(population):
                for row in self._tables["user_answers"].get(submission.id, []):
                    key = (row.subject_id, row.question_number)
                    answered[key] += 1
                    correct[key] += int(row.is_correct)
            return {key: (answered[key], correct[key]) for key in answered}

    # ------------------------------------------------------------------
    # Rescoring
    # ------------------------------------------------------------------
    def add_rescore_event(self, event: RescoreEvent) -> RescoreEvent:
        with self._lock:
            record = event.model_copy(update={"id": self._next_id("rescore_events")}, deep=True)
            self._tables["rescore_events"][record.id] = record
            return record.model_copy(deep=True)

    def get_rescore_event(self, event_id: int) -> Optional[RescoreEvent]:
        with self._lock:
            event = self._tables["rescore_events"].get(event_id)
            return event.model_copy(deep=True) if event else None

    def latest_rescore_event(self, exam_id: int, exam_type: ExamType) -> Optional[RescoreEvent]:
        with self._lock:
            events = [
                e for e in self._tables["rescore_events"].values()
                if e.exam_id == exam_id and e.exam_type == exam_type
            ]
            if not events:
                return None
            return max(events, key=lambda e: (e.created_at, e.id)).model_copy(deep=True)

    def add_rescore_details(self, details: List[RescoreDetail]) -> List[RescoreDetail]:
        with self._lock:
            existing = {
                (d.rescore_event_id, d.submission_id) for d in self._tables["rescore_details"].values()
            }
            saved = []
            for detail in details:
                key = (detail.rescore_event_id, detail.submission_id)
                if key in existing:
                    raise DuplicateEntityException(
                        f"UNIQUE violation: rescore detail for event {key[0]}, submission {key[1]}"
                    )
                existing.add(key)
                record = detail.model_copy(update={"id": self._next_id("rescore_details")}, deep=True)
                self._tables["rescore_details"][record.id] = record
                saved.append(record.model_copy(deep=True))
            return saved

    def list_rescore_details(self, user_id: int, limit: int = 20, unread_only: bool = False) -> List[RescoreDetail]:
        with self._lock:
            details = [
                d for d in self._tables["rescore_details"].values()
                if d.user_id == user_id and not (unread_only and d.is_read)
            ]
            details.sort(key=lambda d: (d.created_at, d.id), reverse=True)
            return [d.model_copy(deep=True) for d in details[:limit]]

    def count_unread_rescore_details(self, user_id: int) -> int:
        with self._lock:
            return sum(
                1 for d in self._tables["rescore_details"].values()
                if d.user_id == user_id and not d.is_read
            )

    def mark_rescore_details_read(self, user_id: int, detail_ids: Optional[List[int]] = None) -> int:
        with self._lock:
            wanted = set(detail_ids) if detail_ids is not None else None
            updated = 0
            for detail in self._tables["rescore_details"].values():
                if detail.user_id != user_id or detail.is_read:
                    continue
                if wanted is not None and detail.id not in wanted:
                    continue
                detail.is_read = True
                updated += 1
            return updated

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------
    def get_release(self, exam_id: int, release_number: int) -> Optional[PassCutRelease]:
        with self._lock:
            for release in self._tables["releases"].values():
                if release.exam_id == exam_id and release.release_number == release_number:
                    return release.model_copy(deep=True)
            return None

    def list_releases(self, exam_id: int) -> List[PassCutRelease]:
        with self._lock:
            releases = [r for r in self._tables["releases"].values() if r.exam_id == exam_id]
            return [r.model_copy(deep=True) for r in sorted(releases, key=lambda r: (r.release_number, r.id))]

    def add_release(self, release: PassCutRelease) -> PassCutRelease:
        with self._lock:
            if self.get_release(release.exam_id, release.release_number) is not None:
                raise DuplicateEntityException(
                    f"UNIQUE violation: release {release.release_number} of exam {release.exam_id}"
                )
            seen = set()
            for snapshot in release.snapshots:
                key = (snapshot.region_id, snapshot.exam_type)
                if key in seen:
                    raise DuplicateEntityException(
                        f"UNIQUE violation: snapshot for region {key[0]}, {key[1].value}"
                    )
                seen.add(key)

            release_id = self._next_id("releases")
            snapshots = [
                s.model_copy(update={"id": self._next_id("snapshots"), "release_id": release_id}, deep=True)
                for s in release.snapshots
            ]
            record = release.model_copy(update={"id": release_id, "snapshots": snapshots}, deep=True)
            self._tables["releases"][release_id] = record
            return record.model_copy(deep=True)

    def add_notice(self, notice: Notice) -> Notice:
        with self._lock:
            record = notice.model_copy(update={"id": self._next_id("notices")}, deep=True)
            self._tables["notices"][record.id] = record
            return record.model_copy(deep=True)

    def list_notices(self) -> List[Notice]:
        with self._lock:
            notices = sorted(self._tables["notices"].values(), key=lambda n: (-n.priority, -n.id))
            return [n.model_copy(deep=True) for n in notices]
