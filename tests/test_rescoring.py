"""
Rescoring Tests - Pass-Cut Platform
tests/test_rescoring.py

Answer-key correction, batch rescoring, audit rows and the per-user
notifications that follow.
"""
import pytest

from passcut.core.exceptions import (
    BusinessConflictError,
    EntityNotFoundException,
    RepositoryException,
    ValidationError,
)
from passcut.models.enumerations import ExamType, Gender, ScoreChange
from passcut.models.rescore import (
    AnswerKeyCorrectionRequest,
    AnswerKeyInput,
    RescoreDetail,
    RescoreRequest,
    SubjectScoreChange,
)
from passcut.models.submission import Submission, SubjectScore
from passcut.repositories.seed import SUBJECTS
from passcut.services.answer_key_service import parse_answer_key_csv
from passcut.services.notification_service import build_impact_text
from passcut.services.rescoring_service import classify_change, rank_within_groups, subject_score_changes

from tests.conftest import EXAM_ID, SEOUL, build_answer_key, make_request, wrong_answer

OLD_ANSWER = build_answer_key(ExamType.PUBLIC)[(1, 20)]
NEW_ANSWER = wrong_answer(OLD_ANSWER)
OTHER_ANSWER = wrong_answer(NEW_ANSWER)


@pytest.fixture
def three_submissions(submission_service):
    """
    user 1: every answer correct (250)
    user 2: 헌법 20번 marked NEW_ANSWER (247.5)
    user 3: 헌법 20번 marked OTHER_ANSWER (247.5)
    """
    first = submission_service.submit(make_request(1))
    second = submission_service.submit(make_request(2, {"헌법": 19}))

    request = make_request(3, {"헌법": 19})
    answers = [
        a.model_copy(update={"answer": OTHER_ANSWER})
        if (a.subject_name, a.question_number) == ("헌법", 20) else a
        for a in request.answers
    ]
    third = submission_service.submit(request.model_copy(update={"answers": answers}))
    return first, second, third


def correction(answer: int = NEW_ANSWER, **overrides) -> AnswerKeyCorrectionRequest:
    data = dict(
        exam_id=EXAM_ID,
        exam_type=ExamType.PUBLIC,
        admin_id=99,
        answers=[AnswerKeyInput(subject_name="헌법", question_number=20, correct_answer=answer)],
    )
    data.update(overrides)
    return AnswerKeyCorrectionRequest(**data)


class TestAnswerKeyCorrection:
    """Audited answer-key writes."""

    def test_correction_logs_and_rescores(self, answer_key_service, three_submissions, store):
        result = answer_key_service.correct(correction(reason="  복수정답 인정  "))

        assert result.saved_count == 1
        assert result.changed_questions[0].old_answer == OLD_ANSWER
        assert result.changed_questions[0].new_answer == NEW_ANSWER
        assert result.rescore.rescored_count == 3
        assert (result.rescore.increased, result.rescore.decreased, result.rescore.unchanged) == (1, 1, 1)
        assert len(result.rescore.rescore_event_ids) == 1

        logs = answer_key_service.list_change_logs(EXAM_ID, ExamType.PUBLIC)
        assert [(log.subject_name, log.question_number, log.changed_by) for log in logs] == [("헌법", 20, 99)]
        assert store.get_answer_keys(EXAM_ID, ExamType.PUBLIC)[(1, 20)] == NEW_ANSWER

        event = store.get_rescore_event(result.rescore.rescore_event_ids[0])
        assert event.reason == "복수정답 인정"
        assert event.summary.changed_questions[0].question_number == 20

    def test_rescored_scores_are_stored(self, answer_key_service, submission_service, three_submissions):
        first, second, third = three_submissions
        answer_key_service.correct(correction())

        assert submission_service.get_result(first.submission_id).final_score == 247.5
        assert submission_service.get_result(second.submission_id).final_score == 250.0
        assert submission_service.get_result(third.submission_id).final_score == 247.5

    def test_unchanged_key_writes_nothing(self, answer_key_service, three_submissions):
        result = answer_key_service.correct(correction(OLD_ANSWER))
        assert result.saved_count == 0
        assert result.rescore is None
        assert answer_key_service.list_change_logs(EXAM_ID, ExamType.PUBLIC) == []

    def test_correction_without_rescore(self, answer_key_service, submission_service, three_submissions):
        first, _, _ = three_submissions
        result = answer_key_service.correct(correction(rescore=False))
        assert result.saved_count == 1
        assert result.rescore is None
        assert submission_service.get_result(first.submission_id).final_score == 250.0

    @pytest.mark.parametrize(
        "row",
        [
            AnswerKeyInput(subject_name="영어", question_number=1, correct_answer=1),
            AnswerKeyInput(subject_name="헌법", question_number=21, correct_answer=1),
            AnswerKeyInput(subject_name="헌법", question_number=1, correct_answer=0),
        ],
    )
    def test_invalid_rows_write_nothing(self, answer_key_service, store, row):
        before = store.get_answer_keys(EXAM_ID, ExamType.PUBLIC)
        with pytest.raises(ValidationError):
            answer_key_service.correct(correction(answers=[row]))
        assert store.get_answer_keys(EXAM_ID, ExamType.PUBLIC) == before
        assert answer_key_service.list_change_logs(EXAM_ID, ExamType.PUBLIC) == []

    def test_duplicate_rows_rejected(self, answer_key_service):
        rows = [
            AnswerKeyInput(subject_name="헌법", question_number=3, correct_answer=1),
            AnswerKeyInput(subject_name="헌 법", question_number=3, correct_answer=2),
        ]
        with pytest.raises(ValidationError):
            answer_key_service.correct(correction(answers=rows))

    def test_unknown_exam(self, answer_key_service):
        with pytest.raises(EntityNotFoundException):
            answer_key_service.correct(correction(exam_id=42))


class TestRescoring:
    """Batch rescoring and reruns."""

    def test_rerun_without_key_change_is_a_no_op(self, answer_key_service, rescoring_service, three_submissions, store):
        answer_key_service.correct(correction())
        events_before = store.latest_rescore_event(EXAM_ID, ExamType.PUBLIC)

        result = rescoring_service.rescore(RescoreRequest(exam_id=EXAM_ID, exam_type=ExamType.PUBLIC, admin_id=1))

        assert (result.increased, result.decreased, result.unchanged) == (0, 0, 3)
        assert result.rescore_event_ids == []
        assert store.latest_rescore_event(EXAM_ID, ExamType.PUBLIC).id == events_before.id

    def test_require_key_change_conflicts(self, answer_key_service, rescoring_service, three_submissions):
        answer_key_service.correct(correction())
        with pytest.raises(BusinessConflictError):
            rescoring_service.rescore(
                RescoreRequest(exam_id=EXAM_ID, exam_type=ExamType.PUBLIC, admin_id=1, require_key_change=True)
            )

    def test_all_exam_types_with_submissions(self, rescoring_service, submission_service):
        submission_service.submit(make_request(1))
        submission_service.submit(make_request(2, exam_type=ExamType.CAREER))
        result = rescoring_service.rescore(RescoreRequest(exam_id=EXAM_ID, admin_id=1))
        assert result.exam_types == [ExamType.PUBLIC, ExamType.CAREER]
        assert result.rescored_count == 2

    def test_unknown_exam(self, rescoring_service):
        with pytest.raises(EntityNotFoundException):
            rescoring_service.rescore(RescoreRequest(exam_id=42, admin_id=1))

    @pytest.mark.parametrize(
        "old,new,expected",
        [
            (100.0, 102.5, ScoreChange.INCREASED),
            (100.0, 97.5, ScoreChange.DECREASED),
            (100.0, 100.004, ScoreChange.UNCHANGED),
        ],
    )
    def test_classify_change(self, old, new, expected):
        assert classify_change(old, new) == expected

    def test_suspicious_submissions_have_no_rank(self):
        def submission(sid, region, suspicious=False):
            return Submission(
                id=sid, user_id=sid, exam_id=EXAM_ID, exam_type=ExamType.PUBLIC, region_id=region,
                gender=Gender.MALE, exam_number=str(sid), total_score=0, final_score=0,
                is_suspicious=suspicious,
            )

        submissions = [submission(1, SEOUL), submission(2, SEOUL), submission(3, SEOUL, True), submission(4, 2)]
        ranks = rank_within_groups(submissions, {1: 200.0, 2: 210.0, 3: 250.0, 4: 100.0})
        assert ranks == {1: 2, 2: 1, 3: None, 4: 1}


class TestSubjectScoreChanges:
    """Subject-level moves behind an unchanged final score."""

    @pytest.fixture
    def offsetting_correction(self):
        """
        Submission at 헌법 8/20 (20.0, exactly the cutoff) and 형사법 39/40.
        Correcting 헌법 1번 away from the marked answer and 형사법 40번 to the
        marked answer keeps the total at 217.5 but fails 헌법.
        """
        key = build_answer_key(ExamType.PUBLIC)
        return correction(
            answers=[
                AnswerKeyInput(subject_name="헌법", question_number=1, correct_answer=wrong_answer(key[(1, 1)])),
                AnswerKeyInput(subject_name="형사법", question_number=40, correct_answer=wrong_answer(key[(2, 40)])),
            ]
        )

    def test_cutoff_flip_is_recorded(self, answer_key_service, submission_service, store, offsetting_correction):
        submitted = submission_service.submit(make_request(1, {"헌법": 8, "형사법": 39}))
        assert submitted.final_score == 217.5

        result = answer_key_service.correct(offsetting_correction)

        rescore = result.rescore
        assert (rescore.increased, rescore.decreased, rescore.unchanged) == (0, 0, 1)
        assert rescore.subject_only_changed == 1
        assert len(rescore.rescore_event_ids) == 1
        assert store.get_rescore_event(rescore.rescore_event_ids[0]).summary.subject_only_changed == 1

        detail = store.list_rescore_details(1)[0]
        assert detail.score_delta == 0
        changes = {c.subject_name: c for c in detail.subject_changes}
        assert (changes["헌법"].old_raw_score, changes["헌법"].new_raw_score) == (20.0, 17.5)
        assert (changes["헌법"].old_is_failed, changes["헌법"].new_is_failed) == (False, True)
        assert changes["형사법"].new_raw_score == 100.0

        stored = submission_service.get_result(submitted.submission_id)
        assert stored.final_score == 217.5
        assert {s.subject_id: s.is_failed for s in store.get_subject_scores(submitted.submission_id)}[1] is True

    def test_user_is_notified(self, answer_key_service, notification_service, submission_service, offsetting_correction):
        submission_service.submit(make_request(1, {"헌법": 8, "형사법": 39}))
        answer_key_service.correct(offsetting_correction)

        notifications = notification_service.list_notifications(1)
        assert notifications.unread_count == 1
        impact = notifications.items[0].impact_text
        assert impact.startswith("점수 +0.00점")
        assert "헌법 과락" in impact
        assert "형사법 97.50점 → 100.00점" in impact
        assert [c.subject_name for c in notifications.items[0].subject_changes] == ["헌법", "형사법"]

    def test_rerun_after_subject_change_is_a_no_op(self, answer_key_service, rescoring_service, submission_service, offsetting_correction):
        submission_service.submit(make_request(1, {"헌법": 8, "형사법": 39}))
        answer_key_service.correct(offsetting_correction)

        result = rescoring_service.rescore(RescoreRequest(exam_id=EXAM_ID, exam_type=ExamType.PUBLIC, admin_id=1))
        assert result.subject_only_changed == 0
        assert result.rescore_event_ids == []

    def test_diff_per_subject(self):
        subjects = [s for s in SUBJECTS if s.exam_type == ExamType.PUBLIC]
        old = [
            SubjectScore(subject_id=1, raw_score=20.0, is_failed=False),
            SubjectScore(subject_id=2, raw_score=97.5, is_failed=False),
            SubjectScore(subject_id=3, raw_score=100.0, is_failed=False),
        ]
        new = [
            SubjectScore(subject_id=1, raw_score=17.5, is_failed=True),
            SubjectScore(subject_id=2, raw_score=100.0, is_failed=False),
            SubjectScore(subject_id=3, raw_score=100.0, is_failed=False),
        ]
        changes = subject_score_changes(subjects, old, new)
        assert [(c.subject_id, c.subject_name) for c in changes] == [(1, "헌법"), (2, "형사법")]
        assert subject_score_changes(subjects, old, old) == []

    def test_impact_text_lists_cutoff_release(self):
        detail = RescoreDetail(
            rescore_event_id=1, submission_id=1, user_id=1,
            old_total_score=210.0, new_total_score=212.5,
            old_final_score=210.0, new_final_score=212.5,
            old_rank=3, new_rank=2, score_delta=2.5,
            subject_changes=[
                SubjectScoreChange(
                    subject_id=1, subject_name="헌법",
                    old_raw_score=17.5, new_raw_score=20.0,
                    old_is_failed=True, new_is_failed=False,
                )
            ],
        )
        assert build_impact_text(detail) == "점수 +2.50점, 순위 3위 → 2위, 헌법 과락 해제"


class TestRollback:
    """A failed write inside a correction leaves no partial state."""

    def test_failed_event_write_restores_keys_logs_and_scores(self, answer_key_service, submission_service, store, three_submissions, monkeypatch):
        first, second, _ = three_submissions

        def fail(event):
            raise RepositoryException("event insert failed")

        monkeypatch.setattr(store, "add_rescore_event", fail)
        with pytest.raises(RepositoryException):
            answer_key_service.correct(correction())

        assert store.get_answer_keys(EXAM_ID, ExamType.PUBLIC)[(1, 20)] == OLD_ANSWER
        assert answer_key_service.list_change_logs(EXAM_ID, ExamType.PUBLIC) == []
        assert submission_service.get_result(first.submission_id).final_score == 250.0
        assert submission_service.get_result(second.submission_id).final_score == 247.5
        assert store.latest_rescore_event(EXAM_ID, ExamType.PUBLIC) is None
        assert store.list_rescore_details(2) == []


class TestNotifications:
    """Unread rescore notifications per user."""

    def test_user_sees_own_change(self, answer_key_service, notification_service, three_submissions):
        answer_key_service.correct(correction())

        gained = notification_service.list_notifications(2)
        assert gained.unread_count == 1
        assert gained.items[0].impact_text == "점수 +2.50점, 순위 2위 → 1위"
        assert gained.items[0].exam_type == ExamType.PUBLIC

        lost = notification_service.list_notifications(1)
        assert lost.items[0].impact_text == "점수 -2.50점, 순위 1위 → 2위"
        assert notification_service.list_notifications(3).unread_count == 0

    def test_mark_read(self, answer_key_service, notification_service, three_submissions):
        answer_key_service.correct(correction())

        assert notification_service.mark_read(2, detail_ids=[999]) == 0
        assert notification_service.mark_read(2) == 1
        after = notification_service.list_notifications(2)
        assert after.unread_count == 0
        assert after.items == []
        assert notification_service.mark_read(2) == 0

    def test_other_users_cannot_mark(self, answer_key_service, notification_service, three_submissions):
        answer_key_service.correct(correction())
        detail_id = notification_service.list_notifications(2).items[0].id
        assert notification_service.mark_read(1, detail_ids=[detail_id]) == 0
        assert notification_service.list_notifications(2).unread_count == 1

    def test_impact_text_without_rank(self, answer_key_service, notification_service, three_submissions):
        answer_key_service.correct(correction())
        detail = notification_service.store.list_rescore_details(2)[0]
        assert build_impact_text(detail.model_copy(update={"new_rank": None})) == "점수 +2.50점"


class TestAnswerKeyCsv:

    def test_header_is_skipped(self):
        rows = parse_answer_key_csv("과목,문항,정답\n헌법,1,3\n형 사 법,2,4\n\n")
        assert [(r.subject_name, r.question_number, r.correct_answer) for r in rows] == [
            ("헌법", 1, 3),
            ("형 사 법", 2, 4),
        ]

    def test_without_header(self):
        assert len(parse_answer_key_csv("헌법,1,3")) == 1

    @pytest.mark.parametrize("text", ["", "헌법,x,3", "헌법,1"])
    def test_malformed(self, text):
        with pytest.raises(ValidationError):
            parse_answer_key_csv(text)
