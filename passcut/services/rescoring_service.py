"""
Rescoring Service - Pass-Cut Platform
passcut/services/rescoring_service.py

Recomputes stored submissions against the current answer key after a
correction. One unit of work covers every exam type of the run:

  1. Load subjects + answer key per exam type
  2. Rescore every submission from its stored answers
  3. Rank old and new finalScores per (region, exam type)
  4. Rewrite changed submissions and their children
  5. Write one RescoreEvent per exam type with changes and one
     RescoreDetail per changed submission

A change is |new finalScore − old finalScore| ≥ 0.01. A submission whose
finalScore is unchanged still gets a detail row when a subject raw score or
cutoff flag moved, since that moves it in or out of the ranked population.
Rerunning without a key change finds nothing to change and writes no event.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from passcut.config import Settings, get_settings
from passcut.core.exceptions import (
    BusinessConflictError,
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationError,
)
from passcut.models.enumerations import ExamType, ScoreChange
from passcut.models.exam import Subject
from passcut.models.rescore import (
    ChangedQuestion,
    RescoreDetail,
    RescoreEvent,
    RescoreRequest,
    RescoreResult,
    RescoreSummary,
    SubjectScoreChange,
)
from passcut.models.submission import Submission, SubjectScore
from passcut.repositories.base import ExamDataStore, PopulationFilter
from passcut.scoring.ranking import competition_rank
from passcut.scoring.policy import scoring_policy_from_settings
from passcut.scoring.score_calculator import ScoreCalculator, ScoringResult
from passcut.scoring.utils import round_score

logger = logging.getLogger(__name__)

CHANGE_EPSILON = 0.01


def classify_change(old_final: float, new_final: float) -> ScoreChange:
    delta = round_score(new_final - old_final)
    if abs(delta) < CHANGE_EPSILON:
        return ScoreChange.UNCHANGED
    return ScoreChange.INCREASED if delta > 0 else ScoreChange.DECREASED


def subject_score_changes(
    subjects: List[Subject],
    old_scores: List[SubjectScore],
    new_scores: List[SubjectScore],
) -> List[SubjectScoreChange]:
    """Subjects whose raw score or is_failed flag differ between two scorings."""
    names = {subject.id: subject.name for subject in subjects}
    old_by_subject = {score.subject_id: score for score in old_scores}
    changes = []
    for new in new_scores:
        old = old_by_subject.get(new.subject_id)
        if old is not None and old.raw_score == new.raw_score and old.is_failed == new.is_failed:
            continue
        changes.append(
            SubjectScoreChange(
                subject_id=new.subject_id,
                subject_name=names.get(new.subject_id, str(new.subject_id)),
                old_raw_score=old.raw_score if old is not None else 0.0,
                new_raw_score=new.raw_score,
                old_is_failed=old.is_failed if old is not None else False,
                new_is_failed=new.is_failed,
            )
        )
    return changes


def rank_within_groups(submissions: List[Submission], scores: Dict[int, float]) -> Dict[int, Optional[int]]:
    """
    Competition rank of each submission's score inside its region among
    non-suspicious submissions. Suspicious submissions have no rank.
    """
    groups: Dict[int, List[float]] = defaultdict(list)
    for submission in submissions:
        if not submission.is_suspicious:
            groups[submission.region_id].append(scores[submission.id])
    return {
        submission.id: (
            None
            if submission.is_suspicious
            else competition_rank(scores[submission.id], groups[submission.region_id])
        )
        for submission in submissions
    }


class RescoringService:
    """Admin-triggered batch rescoring with audit trail."""

    def __init__(self, store: ExamDataStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self.calculator = ScoreCalculator(scoring_policy_from_settings(self.settings))

    def _rescore_one(self, submission: Submission, exam_type: ExamType, subjects, answer_keys) -> ScoringResult:
        marked = {
            (a.subject_id, a.question_number): a.selected_answer
            for a in self.store.get_user_answers(submission.id)
        }
        return self.calculator.score(exam_type, subjects, answer_keys, marked, submission.bonus_type)

    def _changed_questions(self, exam_id: int, exam_type: ExamType, since: Optional[datetime]) -> List[ChangedQuestion]:
        latest: Dict[Tuple[str, int], ChangedQuestion] = {}
        for log in self.store.list_answer_key_logs(exam_id, exam_type, since=since):
            key = (log.subject_name, log.question_number)
            first = latest.get(key)
            latest[key] = ChangedQuestion(
                subject_name=log.subject_name,
                question_number=log.question_number,
                old_answer=first.old_answer if first else log.old_answer,
                new_answer=log.new_answer,
            )
        return list(latest.values())

    def _rescore_exam_type(
        self,
        exam_id: int,
        exam_type: ExamType,
        request: RescoreRequest,
        now: datetime,
    ) -> Tuple[Dict[ScoreChange, int], int, int, Optional[int]]:
        previous = self.store.latest_rescore_event(exam_id, exam_type)
        changed_questions = self._changed_questions(exam_id, exam_type, previous.created_at if previous else None)
        if request.require_key_change and not changed_questions:
            raise BusinessConflictError(
                "마지막 재채점 이후 변경된 정답이 없습니다.",
                details={"exam_id": exam_id, "exam_type": exam_type.value},
            )

        subjects = self.store.list_subjects(exam_type)
        answer_keys = self.store.get_answer_keys(exam_id, exam_type)
        submissions = self.store.list_submissions(
            PopulationFilter(exam_id=exam_id, exam_type=exam_type, exclude_suspicious=False)
        )

        results: Dict[int, ScoringResult] = {}
        for submission in submissions:
            results[submission.id] = self._rescore_one(submission, exam_type, subjects, answer_keys)

        old_ranks = rank_within_groups(submissions, {s.id: s.final_score for s in submissions})
        new_ranks = rank_within_groups(submissions, {s.id: results[s.id].final_score for s in submissions})

        counts = {change: 0 for change in ScoreChange}
        subject_only = 0
        details: List[RescoreDetail] = []
        for submission in submissions:
            result = results[submission.id]
            change = classify_change(submission.final_score, result.final_score)
            counts[change] += 1
            new_subject_scores = result.subject_scores()
            subject_changes = subject_score_changes(
                subjects, self.store.get_subject_scores(submission.id), new_subject_scores
            )
            scores_moved = (
                submission.total_score != result.total_score
                or submission.final_score != result.final_score
                or bool(subject_changes)
            )
            self.store.save_submission(
                submission.model_copy(
                    update={
                        "total_score": result.total_score,
                        "final_score": result.final_score,
                        "bonus_rate": result.bonus_rate,
                        "updated_at": now if scores_moved else submission.updated_at,
                    }
                ),
                new_subject_scores,
                result.user_answers,
            )
            if change == ScoreChange.UNCHANGED:
                if not subject_changes:
                    continue
                subject_only += 1
            details.append(
                RescoreDetail(
                    rescore_event_id=0,
                    submission_id=submission.id,
                    user_id=submission.user_id,
                    old_total_score=submission.total_score,
                    new_total_score=result.total_score,
                    old_final_score=submission.final_score,
                    new_final_score=result.final_score,
                    old_rank=old_ranks[submission.id],
                    new_rank=new_ranks[submission.id],
                    score_delta=round_score(result.final_score - submission.final_score),
                    subject_changes=subject_changes,
                    created_at=now,
                )
            )

        event_id: Optional[int] = None
        if details or self.settings.RESCORE_EMIT_EMPTY_EVENTS:
            event = self.store.add_rescore_event(
                RescoreEvent(
                    exam_id=exam_id,
                    exam_type=exam_type,
                    admin_id=request.admin_id,
                    reason=request.reason,
                    summary=RescoreSummary(
                        rescored_count=len(submissions),
                        increased=counts[ScoreChange.INCREASED],
                        decreased=counts[ScoreChange.DECREASED],
                        unchanged=counts[ScoreChange.UNCHANGED],
                        subject_only_changed=subject_only,
                        changed_questions=changed_questions,
                    ),
                    created_at=now,
                )
            )
            event_id = event.id
            self.store.add_rescore_details(
                [d.model_copy(update={"rescore_event_id": event.id}) for d in details]
            )

        return counts, len(submissions), subject_only, event_id

    def rescore(self, request: RescoreRequest) -> RescoreResult:
        """
        Rescore one exam type, or every exam type that has submissions.

        Raises:
            EntityNotFoundException: exam does not exist.
            BusinessConflictError: require_key_change is set and no key changed.
            ValidationError: a stored answer sheet no longer matches the key layout.
        """
        exam = self.store.get_exam(request.exam_id)
        if exam is None:
            raise EntityNotFoundException("Exam", request.exam_id)

        exam_types = (
            [request.exam_type]
            if request.exam_type is not None
            else self.store.list_submission_exam_types(exam.id)
        )

        now = datetime.now(timezone.utc)
        totals = {change: 0 for change in ScoreChange}
        rescored_count = 0
        subject_only_changed = 0
        event_ids: List[int] = []

        try:
            with self.store.unit_of_work():
                for exam_type in exam_types:
                    counts, count, subject_only, event_id = self._rescore_exam_type(exam.id, exam_type, request, now)
                    rescored_count += count
                    subject_only_changed += subject_only
                    for change, value in counts.items():
                        totals[change] += value
                    if event_id is not None:
                        event_ids.append(event_id)
        except DuplicateEntityException as e:
            raise BusinessConflictError("재채점 기록이 이미 존재합니다.", details={"reason": str(e)})
        except ValidationError:
            logger.exception("rescore_failed", extra={"exam_id": exam.id})
            raise

        logger.info(
            "rescore_completed",
            extra={
                "exam_id": exam.id,
                "exam_types": [t.value for t in exam_types],
                "rescored_count": rescored_count,
                "increased": totals[ScoreChange.INCREASED],
                "decreased": totals[ScoreChange.DECREASED],
                "unchanged": totals[ScoreChange.UNCHANGED],
                "subject_only_changed": subject_only_changed,
                "event_ids": event_ids,
            },
        )

        return RescoreResult(
            exam_id=exam.id,
            exam_types=exam_types,
            rescored_count=rescored_count,
            increased=totals[ScoreChange.INCREASED],
            decreased=totals[ScoreChange.DECREASED],
            unchanged=totals[ScoreChange.UNCHANGED],
            subject_only_changed=subject_only_changed,
            rescore_event_ids=event_ids,
        )
