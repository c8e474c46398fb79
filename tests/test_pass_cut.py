"""
Pass-Cut Tests - Pass-Cut Platform
tests/test_pass_cut.py

Pass multiple curve, the per-row calculator and the live prediction rows.
"""
import pytest

from passcut.config import Settings
from passcut.core.exceptions import EntityNotFoundException
from passcut.models.enumerations import ExamType
from passcut.scoring.distribution import build_score_bands
from passcut.scoring.pass_cut_calculator import PassCutCalculator
from passcut.scoring.policy import MultiplePolicy
from passcut.services.pass_cut_service import PassCutService

from tests.conftest import EXAM_ID, SEJONG, make_request, submit_ranked


class TestMultiplePolicy:

    @pytest.mark.parametrize(
        "recruit,multiple",
        [(715, 1.5), (150, 1.5), (149, 1.6), (100, 1.6), (50, 1.7), (49, 1.8), (6, 1.8)],
    )
    def test_pass_multiple_curve(self, recruit, multiple):
        assert MultiplePolicy().pass_multiple(recruit) == multiple

    @pytest.mark.parametrize("recruit,pass_count", [(1, 3), (2, 6), (3, 8), (4, 9), (5, 10), (10, 18), (715, 1073)])
    def test_pass_count(self, recruit, pass_count):
        assert MultiplePolicy().pass_count(recruit) == pass_count

    def test_likely_multiple_never_below_one(self):
        policy = MultiplePolicy()
        assert policy.likely_multiple(10) == pytest.approx(1.44)
        assert policy.likely_max_rank(10) == 14
        assert policy.likely_multiple(5) == pytest.approx(1.6)
        assert MultiplePolicy(likely_ratio=0.5).likely_multiple(100) == 1.0


class TestPassCutCalculator:

    SCORES = [250 - i * 2.5 for i in range(20)]

    def test_windows(self):
        row = PassCutCalculator().calculate(
            SEJONG, "세종", ExamType.PUBLIC, 10, 120, build_score_bands(self.SCORES)
        )
        assert row.participant_count == 20
        assert row.competition_rate == 12.0
        assert row.is_applicant_count_exact is True
        assert row.one_multiple_cut_score == 227.5
        assert row.sure_min_score == 227.5
        assert (row.likely_max_score, row.likely_min_score) == (225.0, 217.5)
        assert (row.possible_max_score, row.possible_min_score) == (215.0, 207.5)
        assert row.average_score == 226.25

    def test_partial_population(self):
        row = PassCutCalculator().calculate(
            SEJONG, "세종", ExamType.PUBLIC, 10, None, build_score_bands(self.SCORES[:12])
        )
        assert row.one_multiple_cut_score == 227.5
        assert row.likely_max_score == 225.0
        assert row.likely_min_score is None
        assert row.possible_max_score is None
        assert row.competition_rate is None
        assert row.estimated_applicants == 0

    def test_empty_population(self):
        row = PassCutCalculator().calculate(SEJONG, "세종", ExamType.PUBLIC, 10, None, [])
        assert row.participant_count == 0
        assert row.average_score is None
        assert row.one_multiple_cut_score is None

    def test_recruit_count_must_be_positive(self):
        with pytest.raises(ValueError):
            PassCutCalculator().calculate(SEJONG, "세종", ExamType.PUBLIC, 0, None, [])


class TestPassCutService:

    def test_rows_for_every_quota(self, pass_cut_service):
        rows = pass_cut_service.get_rows()
        assert len(rows) == 37
        assert (rows[0].region_name, rows[0].exam_type) == ("서울", ExamType.PUBLIC)
        assert (rows[1].region_name, rows[1].exam_type) == ("서울", ExamType.CAREER)
        assert all(row.recruit_count >= 1 for row in rows)

    def test_public_only_when_career_disabled(self, store):
        service = PassCutService(store, Settings(_env_file=None, CAREER_EXAM_ENABLED=False))
        assert len(service.get_rows(EXAM_ID)) == 19

    def test_population_excludes_failed_and_suspicious(self, pass_cut_service, submission_service):
        submit_ranked(submission_service, 12)
        submission_service.submit(make_request(1, {"헌법": 6}, region_id=SEJONG))
        submission_service.submit(make_request(2, region_id=SEJONG, submit_duration_ms=1000))

        row = next(
            r for r in pass_cut_service.get_rows(EXAM_ID)
            if r.region_id == SEJONG and r.exam_type == ExamType.PUBLIC
        )
        assert row.participant_count == 12
        assert row.one_multiple_cut_score == 227.5

    def test_unknown_exam(self, pass_cut_service):
        with pytest.raises(EntityNotFoundException):
            pass_cut_service.get_rows(42)
