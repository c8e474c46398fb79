"""
Release Tests - Pass-Cut Platform
tests/test_release.py

ReleaseEvaluator readiness, ReleaseManager publishing and the
AutoReleaseRunner decision chain.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from passcut.config import Settings
from passcut.core.exceptions import (
    BusinessConflictError,
    EntityNotFoundException,
    RepositoryException,
    ValidationError,
)
from passcut.models.enumerations import (
    AutoReleaseReason,
    AutoReleaseTrigger,
    ExamType,
    ReleaseSource,
    SnapshotStatus,
    ThresholdProfile,
)
from passcut.models.exam import ExamRegionQuota, Region
from passcut.models.pass_cut import AutoReleaseRunRequest, ReleaseCreateRequest
from passcut.repositories.memory import InMemoryExamDataStore
from passcut.repositories.seed import DEMO_EXAM, SUBJECTS
from passcut.scoring.distribution import build_score_bands
from passcut.scoring.pass_cut_calculator import PassCutCalculator
from passcut.scoring.release_evaluator import ReleaseEvaluator, next_release_number
from passcut.services.pass_cut_service import PassCutService
from passcut.services.release_service import (
    ADMIN_NOTICE_PRIORITY,
    AUTO_NOTICE_PRIORITY,
    AutoReleaseRunner,
    ReleaseManager,
)
from passcut.services.submission_service import SubmissionService

from tests.conftest import EXAM_ID, SEJONG, save_answer_key, submit_ranked

LATER = datetime.now(timezone.utc) + timedelta(hours=2)


def auto_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        AUTO_RELEASE_ENABLED=True,
        AUTO_RELEASE_MODE="HYBRID",
        AUTO_RELEASE_ADMIN_ID=1,
        AUTO_RELEASE_CHECK_INTERVAL_SEC=300,
    )
    values.update(overrides)
    return Settings(**values)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def small_store():
    """One region (세종, recruit 10, 120 applicants) and 18 distinct public scores."""
    memory_store = InMemoryExamDataStore()
    memory_store.add_exam(DEMO_EXAM)
    for subject in SUBJECTS:
        memory_store.add_subject(subject)
    memory_store.add_region(Region(id=SEJONG, name="세종"))
    memory_store.save_quota(
        ExamRegionQuota(exam_id=EXAM_ID, region_id=SEJONG, recruit_count=10, applicant_count=120)
    )
    save_answer_key(memory_store, ExamType.PUBLIC)

    submit_ranked(SubmissionService(memory_store, Settings(_env_file=None)), 18)
    return memory_store


def build_runner(store, settings, clock=None):
    pass_cut = PassCutService(store, settings)
    manager = ReleaseManager(store, pass_cut, settings)
    return AutoReleaseRunner(store, manager, settings, clock=clock or FakeClock())


# =============================================================================
# EVALUATOR
# =============================================================================

class TestReleaseEvaluator:
    """Row readiness classification."""

    SCORES = [250 - i * 2.5 for i in range(18)]

    def _row(self, applicant_count=120, scores=None):
        bands = build_score_bands(self.SCORES if scores is None else scores)
        row = PassCutCalculator().calculate(SEJONG, "세종", ExamType.PUBLIC, 10, applicant_count, bands)
        return row, bands

    def test_missing_applicant_count(self):
        row, bands = self._row(applicant_count=None)
        evaluator = ReleaseEvaluator()
        result = evaluator.evaluate_row(row, evaluator.thresholds(1), bands, bands, 0)
        assert result.status == SnapshotStatus.COLLECTING_MISSING_APPLICANT_COUNT
        assert result.one_multiple_cut_score is None

    def test_insufficient_sample(self):
        row, bands = self._row(scores=self.SCORES[:9])
        evaluator = ReleaseEvaluator()
        result = evaluator.evaluate_row(row, evaluator.thresholds(1), bands, bands, 0)
        assert result.status == SnapshotStatus.COLLECTING_INSUFFICIENT_SAMPLE

    def test_ready_when_stable_and_covered(self):
        row, bands = self._row()
        evaluator = ReleaseEvaluator()
        result = evaluator.evaluate_row(row, evaluator.thresholds(4), bands, bands, 0)
        assert result.target_participant_count == 18
        assert result.coverage_rate == 100.0
        assert result.cut_shift == 0.0
        assert result.tie_penalty == 6.67
        assert result.stability_score == 93.33
        assert result.status == SnapshotStatus.READY
        assert result.one_multiple_cut_score == 227.5

    def test_unknown_history_is_unstable(self):
        row, bands = self._row()
        evaluator = ReleaseEvaluator()
        result = evaluator.evaluate_row(row, evaluator.thresholds(1), bands, [], 18)
        assert result.cut_shift_penalty == 40.0
        assert result.inflow_penalty == 30.0
        assert result.status == SnapshotStatus.COLLECTING_UNSTABLE
        assert result.sure_min_score is None

    def test_low_participation(self):
        row, bands = self._row()
        evaluator = ReleaseEvaluator(ThresholdProfile.CONSERVATIVE)
        thresholds = evaluator.thresholds(4).model_copy(update={"coverage_rate": 101.0})
        result = evaluator.evaluate_row(row, thresholds, bands, bands, 0)
        assert result.status == SnapshotStatus.COLLECTING_LOW_PARTICIPATION

    def test_thresholds_per_profile(self):
        balanced = ReleaseEvaluator().thresholds(2)
        assert (balanced.coverage_rate, balanced.stability_score, balanced.ready_ratio) == (50, 55, 45)
        mixed = ReleaseEvaluator(ThresholdProfile.AGGRESSIVE, ThresholdProfile.CONSERVATIVE).thresholds(3)
        assert (mixed.coverage_rate, mixed.ready_ratio, mixed.min_sample_count) == (50, 75, 8)

    def test_next_release_number(self):
        assert next_release_number([]) == 1
        assert next_release_number([1, 3]) == 2
        assert next_release_number([1, 2, 3, 4]) is None


# =============================================================================
# MANAGER
# =============================================================================

class TestReleaseManager:
    """Publishing releases and notices."""

    def test_create_release_writes_snapshots_and_notice(self, small_store):
        settings = Settings(_env_file=None)
        manager = ReleaseManager(small_store, PassCutService(small_store, settings), settings)
        evaluation = manager.evaluate(EXAM_ID, 1, now=LATER)

        release = manager.create_release(
            ReleaseCreateRequest(exam_id=EXAM_ID, release_number=1, admin_id=7, memo="  1차  "),
            evaluation=evaluation,
        )

        assert release.id is not None
        assert release.source == ReleaseSource.ADMIN
        assert release.memo == "1차"
        assert release.participant_count == 18
        assert [s.status for s in release.snapshots] == [SnapshotStatus.READY]
        assert manager.get_release(EXAM_ID, 1).id == release.id

        notices = small_store.list_notices()
        assert len(notices) == 1
        assert notices[0].priority == ADMIN_NOTICE_PRIORITY
        assert "1차 합격컷" in notices[0].title

    def test_release_number_out_of_range(self, small_store):
        settings = Settings(_env_file=None)
        manager = ReleaseManager(small_store, PassCutService(small_store, settings), settings)
        with pytest.raises(ValidationError):
            manager.create_release(ReleaseCreateRequest(exam_id=EXAM_ID, release_number=5, admin_id=1))
        assert small_store.list_releases(EXAM_ID) == []
        assert small_store.list_notices() == []

    def test_duplicate_release_conflicts_without_writing(self, small_store):
        settings = Settings(_env_file=None)
        manager = ReleaseManager(small_store, PassCutService(small_store, settings), settings)
        request = ReleaseCreateRequest(exam_id=EXAM_ID, release_number=2, admin_id=1)
        manager.create_release(request)

        with pytest.raises(BusinessConflictError):
            manager.create_release(request)
        assert len(small_store.list_releases(EXAM_ID)) == 1
        assert len(small_store.list_notices()) == 1

    def test_failed_notice_write_rolls_back_release(self, small_store, monkeypatch):
        settings = Settings(_env_file=None)
        manager = ReleaseManager(small_store, PassCutService(small_store, settings), settings)

        def fail(notice):
            raise RepositoryException("notice insert failed")

        monkeypatch.setattr(small_store, "add_notice", fail)
        with pytest.raises(RepositoryException):
            manager.create_release(ReleaseCreateRequest(exam_id=EXAM_ID, release_number=1, admin_id=1))

        assert small_store.list_releases(EXAM_ID) == []
        assert small_store.get_release(EXAM_ID, 1) is None
        assert small_store.list_notices() == []

    def test_missing_release(self, release_manager):
        with pytest.raises(EntityNotFoundException):
            release_manager.get_release(EXAM_ID, 3)

    def test_seeded_rows_collect_without_applicant_counts(self, release_manager):
        evaluation = release_manager.evaluate(EXAM_ID, 1)
        assert evaluation.eligible_region_count == 37
        assert evaluation.ready_region_count == 0
        assert {row.status for row in evaluation.rows} == {SnapshotStatus.COLLECTING_MISSING_APPLICANT_COUNT}


# =============================================================================
# AUTO RELEASE RUNNER
# =============================================================================

class TestAutoReleaseRunner:
    """Every outcome of AutoReleaseRunner.run()."""

    def test_disabled(self, auto_runner):
        result = auto_runner.run(AutoReleaseRunRequest())
        assert result.reason == AutoReleaseReason.AUTO_DISABLED
        assert result.triggered is False

    @pytest.mark.parametrize(
        "mode,trigger",
        [("CRON_ONLY", AutoReleaseTrigger.TRAFFIC), ("TRAFFIC_ONLY", AutoReleaseTrigger.CRON)],
    )
    def test_mode_blocked(self, store, mode, trigger):
        runner = build_runner(store, auto_settings(AUTO_RELEASE_MODE=mode))
        assert runner.run(AutoReleaseRunRequest(trigger=trigger)).reason == AutoReleaseReason.MODE_BLOCKED

    def test_no_active_exam(self, store):
        runner = build_runner(store, auto_settings())
        result = runner.run(AutoReleaseRunRequest(exam_id=99))
        assert result.reason == AutoReleaseReason.NO_ACTIVE_EXAM

    def test_traffic_runs_are_throttled(self, store):
        clock = FakeClock()
        runner = build_runner(store, auto_settings(), clock=clock)
        traffic = AutoReleaseRunRequest(trigger=AutoReleaseTrigger.TRAFFIC)

        assert runner.run(traffic).reason == AutoReleaseReason.THRESHOLD_NOT_REACHED
        clock.now += 299
        assert runner.run(traffic).reason == AutoReleaseReason.INTERVAL_THROTTLED
        forced = AutoReleaseRunRequest(trigger=AutoReleaseTrigger.TRAFFIC, force=True)
        assert runner.run(forced).reason == AutoReleaseReason.THRESHOLD_NOT_REACHED
        clock.now += 1
        assert runner.run(traffic).reason == AutoReleaseReason.THRESHOLD_NOT_REACHED

    def test_cron_runs_are_not_throttled(self, store):
        runner = build_runner(store, auto_settings())
        for _ in range(3):
            assert runner.run(AutoReleaseRunRequest()).reason == AutoReleaseReason.THRESHOLD_NOT_REACHED

    def test_threshold_not_reached(self, store):
        result = build_runner(store, auto_settings()).run(AutoReleaseRunRequest())
        assert result.next_release_number == 1
        assert result.ready_region_ratio == 0.0
        assert result.required_ready_ratio == 25
        assert store.list_releases(EXAM_ID) == []

    def test_no_target_rows(self):
        empty = InMemoryExamDataStore()
        empty.add_exam(DEMO_EXAM)
        result = build_runner(empty, auto_settings()).run(AutoReleaseRunRequest())
        assert result.reason == AutoReleaseReason.NO_TARGET_ROWS

    def test_no_admin_user(self, small_store):
        runner = build_runner(small_store, auto_settings(AUTO_RELEASE_ADMIN_ID=None))
        result = runner.run(AutoReleaseRunRequest(), now=LATER)
        assert result.reason == AutoReleaseReason.NO_ADMIN_USER
        assert small_store.list_releases(EXAM_ID) == []

    def test_release_created_with_notice(self, small_store):
        runner = build_runner(small_store, auto_settings())
        result = runner.run(AutoReleaseRunRequest(), now=LATER)

        assert result.triggered is True
        assert result.reason == AutoReleaseReason.RELEASE_CREATED
        assert result.ready_region_ratio == 100.0

        release = small_store.get_release(EXAM_ID, 1)
        assert release.id == result.release_id
        assert release.source == ReleaseSource.AUTO
        assert release.created_by == 1
        assert release.memo.startswith("AUTO 1차 발표")

        notice = small_store.list_notices()[0]
        assert notice.priority == AUTO_NOTICE_PRIORITY
        assert "충족 지역: 1/1 (100.0%)" in notice.content
        assert "세종-공채: 집계완료" in notice.content

    def test_all_releases_completed(self, small_store):
        runner = build_runner(small_store, auto_settings())
        for number in range(1, 5):
            assert runner.run(AutoReleaseRunRequest(), now=LATER).reason == AutoReleaseReason.RELEASE_CREATED
            assert small_store.get_release(EXAM_ID, number) is not None

        result = runner.run(AutoReleaseRunRequest(), now=LATER)
        assert result.reason == AutoReleaseReason.ALL_RELEASES_COMPLETED
        assert result.next_release_number is None
        assert result.required_ready_ratio == 85

    def test_concurrent_release_is_reported_as_duplicated(self, small_store):
        runner = build_runner(small_store, auto_settings())
        with patch.object(
            runner.manager, "create_release", side_effect=BusinessConflictError("이미 1차 합격컷 발표가 등록되어 있습니다.")
        ):
            result = runner.run(AutoReleaseRunRequest(), now=LATER)
        assert result.reason == AutoReleaseReason.DUPLICATED
        assert result.triggered is False
