"""
Prediction Tests - Pass-Cut Platform
tests/test_prediction.py

Personal grade, pyramid and competitor paging inside 세종 (recruit 10,
pass multiple 1.8 → pass set 18).
"""
import pytest

from passcut.core.exceptions import BusinessConflictError, EntityNotFoundException
from passcut.models.enumerations import PredictionGrade, PyramidLevel
from passcut.scoring.prediction import classify_grade, rank_participants

from tests.conftest import SEJONG, make_request, submit_ranked


@pytest.fixture
def ranked(submission_service):
    """Twenty 세종 submissions: 250, 247.5, ... 202.5."""
    return submit_ranked(submission_service, 20)


class TestPrediction:

    @pytest.mark.parametrize(
        "index,grade,level",
        [
            (0, PredictionGrade.SURE, PyramidLevel.SURE),
            (9, PredictionGrade.SURE, PyramidLevel.SURE),
            (11, PredictionGrade.LIKELY, PyramidLevel.LIKELY),
            (15, PredictionGrade.POSSIBLE, PyramidLevel.POSSIBLE),
            (19, PredictionGrade.CHALLENGE, PyramidLevel.CHALLENGE),
        ],
    )
    def test_grade_by_rank(self, prediction_service, ranked, index, grade, level):
        result = prediction_service.get_prediction(ranked[index].submission_id)
        assert result.my_rank == index + 1
        assert result.grade == grade
        assert next(p for p in result.pyramid if p.is_current).level == level

    def test_pyramid_and_pass_line(self, prediction_service, ranked):
        result = prediction_service.get_prediction(ranked[0].submission_id)

        assert result.recruit_count == 10
        assert result.total_participants == 20
        assert result.pass_count == 18
        assert result.pass_multiple == 1.8
        assert result.likely_multiple == 1.44
        assert result.pass_line_score == 207.5
        assert [p.count for p in result.pyramid] == [10, 4, 4, 2, 0]
        assert result.pyramid[0].max_score == 250.0
        assert result.pyramid[0].min_score == 227.5
        assert result.pyramid[4].min_score is None

    def test_competitor_paging(self, prediction_service, ranked):
        result = prediction_service.get_prediction(ranked[7].submission_id, page=2, limit=5)
        page = result.competitors
        assert (page.page, page.limit, page.total_pages, page.total_count) == (2, 5, 4, 20)
        assert [c.rank for c in page.items] == [6, 7, 8, 9, 10]
        assert [c.is_mine for c in page.items] == [False, False, True, False, False]

    def test_limit_is_clamped(self, prediction_service, ranked):
        result = prediction_service.get_prediction(ranked[0].submission_id, page=0, limit=500)
        assert result.competitors.page == 1
        assert result.competitors.limit == 50
        assert len(result.competitors.items) == 20

    def test_failed_submission_has_no_prediction(self, prediction_service, submission_service):
        failed = submission_service.submit(make_request(1, {"헌법": 6}, region_id=SEJONG))
        with pytest.raises(BusinessConflictError):
            prediction_service.get_prediction(failed.submission_id)

    def test_suspicious_submission_is_ranked_with_own_score(self, prediction_service, submission_service, ranked):
        flagged = submission_service.submit(
            make_request(1, {"경찰학": 39}, region_id=SEJONG, submit_duration_ms=1000)
        )
        result = prediction_service.get_prediction(flagged.submission_id)
        assert result.total_participants == 21
        assert result.my_rank == 2

        others = prediction_service.get_prediction(ranked[0].submission_id)
        assert others.total_participants == 20

    def test_not_found_and_owner_check(self, prediction_service, ranked):
        with pytest.raises(EntityNotFoundException):
            prediction_service.get_prediction(9999)
        with pytest.raises(EntityNotFoundException):
            prediction_service.get_prediction(ranked[0].submission_id, user_id=1)


class TestPredictionHelpers:

    def test_rank_participants_ties(self):
        ranked = rank_participants([(3, 90.0), (1, 95.0), (2, 90.0), (4, 80.0)])
        assert [(p.submission_id, p.rank) for p in ranked] == [(1, 1), (2, 2), (3, 2), (4, 4)]

    @pytest.mark.parametrize(
        "multiple,expected",
        [
            (1.0, PredictionGrade.SURE),
            (1.44, PredictionGrade.LIKELY),
            (1.8, PredictionGrade.POSSIBLE),
            (1.81, PredictionGrade.CHALLENGE),
        ],
    )
    def test_classify_grade_boundaries(self, multiple, expected):
        assert classify_grade(multiple, 1.44, 1.8) == expected
