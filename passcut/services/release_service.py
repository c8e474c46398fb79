"""
Release Service - Pass-Cut Platform
passcut/services/release_service.py

ReleaseManager publishes immutable pass-cut releases (1..4 per exam) with
one snapshot per (region, exam type). AutoReleaseRunner decides when the
next release may be published without an admin.

Evaluation is read-only; creation writes release, snapshots and the
optional notice in one unit of work.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from passcut.config import Settings, get_settings
from passcut.core.exceptions import (
    BusinessConflictError,
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationError,
)
from passcut.models.enumerations import (
    AutoReleaseMode,
    AutoReleaseReason,
    AutoReleaseTrigger,
    ExamType,
    ReleaseSource,
    SnapshotStatus,
    ThresholdProfile,
)
from passcut.models.exam import Exam, Notice
from passcut.models.pass_cut import (
    AutoReleaseRunRequest,
    AutoReleaseRunResult,
    EvaluatedPassCutRow,
    PassCutRelease,
    PassCutSnapshot,
    ReleaseCreateRequest,
    ReleaseEvaluation,
)
from passcut.repositories.base import ExamDataStore
from passcut.scoring.release_evaluator import (
    HISTORY_WINDOW_MINUTES,
    MAX_RELEASE_NUMBER,
    STATUS_REASONS,
    ReleaseEvaluator,
    next_release_number,
)
from passcut.services.pass_cut_service import PassCutService, pass_cut_population

logger = logging.getLogger(__name__)

ADMIN_NOTICE_PRIORITY = 100
AUTO_NOTICE_PRIORITY = 110
MIN_TRAFFIC_INTERVAL_SEC = 30

EXAM_TYPE_LABELS = {
    ExamType.PUBLIC: "공채",
    ExamType.CAREER: "경행경채",
}


def snapshot_from_row(row: EvaluatedPassCutRow) -> PassCutSnapshot:
    return PassCutSnapshot(
        region_id=row.region_id,
        exam_type=row.exam_type,
        status=row.status,
        status_reason=row.status_reason,
        participant_count=row.participant_count,
        recruit_count=row.recruit_count,
        applicant_count=row.applicant_count,
        target_participant_count=row.target_participant_count,
        coverage_rate=row.coverage_rate,
        stability_score=row.stability_score,
        average_score=row.average_score,
        one_multiple_cut_score=row.one_multiple_cut_score,
        sure_min_score=row.sure_min_score,
        likely_min_score=row.likely_min_score,
        possible_min_score=row.possible_min_score,
    )


def default_notice_title(release_number: int, source: ReleaseSource) -> str:
    if source == ReleaseSource.AUTO:
        return f"{release_number}차 합격컷 자동 발표 안내"
    return f"{release_number}차 합격컷 발표 안내"


def default_notice_content(exam: Exam, release_number: int, source: ReleaseSource) -> str:
    verb = "자동 발표되었습니다" if source == ReleaseSource.AUTO else "발표되었습니다"
    return f"{exam.year}년 {exam.round}차 {exam.name} {release_number}차 합격컷이 {verb}."


def auto_notice_content(evaluation: ReleaseEvaluation) -> str:
    """Per-row status board posted with an automatic release."""
    collecting = max(0, evaluation.eligible_region_count - evaluation.ready_region_count)
    lines = [
        f"{evaluation.release_number}차 합격컷이 자동 발표되었습니다.",
        f"충족 지역: {evaluation.ready_region_count}/{evaluation.eligible_region_count} "
        f"({evaluation.ready_region_ratio:.1f}%)",
        f"미집계 지역: {collecting}건",
        "",
        "[지역·직렬별 상태]",
    ]
    for row in sorted(evaluation.rows, key=lambda r: (r.region_name, r.exam_type.value)):
        if row.status == SnapshotStatus.READY:
            status_text = f"집계완료(1배수컷 {row.one_multiple_cut_score:.2f}점)"
        else:
            status_text = f"미집계({row.status_reason or STATUS_REASONS.get(row.status, '-')})"
        lines.append(
            f"- {row.region_name}-{EXAM_TYPE_LABELS[row.exam_type]}: {status_text}, "
            f"참여 {row.participant_count:,}명 / 목표 {row.target_participant_count:,}명 / "
            f"참여율 {row.coverage_rate:.1f}% / 안정도 {row.stability_score:.1f}"
        )
    return "\n".join(lines)


class ReleaseManager:
    """Evaluate and publish pass-cut releases."""

    def __init__(
        self,
        store: ExamDataStore,
        pass_cut_service: PassCutService,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.pass_cut_service = pass_cut_service
        self.settings = settings or get_settings()

    def evaluator(self, threshold_profile: Optional[ThresholdProfile] = None) -> ReleaseEvaluator:
        return ReleaseEvaluator(
            threshold_profile=threshold_profile or ThresholdProfile(self.settings.AUTO_RELEASE_THRESHOLD_PROFILE),
            ready_ratio_profile=ThresholdProfile(self.settings.AUTO_RELEASE_READY_RATIO_PROFILE),
            multiples=self.pass_cut_service.multiples,
        )

    def evaluate(
        self,
        exam_id: int,
        release_number: int,
        threshold_profile: Optional[ThresholdProfile] = None,
        now: Optional[datetime] = None,
    ) -> ReleaseEvaluation:
        """
        Evaluate every prediction row of the exam against the thresholds of
        ``release_number``. Reads only.

        Raises:
            EntityNotFoundException: exam does not exist.
        """
        exam_id = self.pass_cut_service.resolve_exam(exam_id).id
        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(minutes=HISTORY_WINDOW_MINUTES)

        current_bands = self.pass_cut_service.current_bands(exam_id)
        history_bands = self.store.grouped_score_bands(pass_cut_population(exam_id, created_before=window_start))
        recent_inflows = self.store.grouped_counts(pass_cut_population(exam_id, created_since=window_start))
        rows = self.pass_cut_service.build_rows(exam_id, bands=current_bands)

        return self.evaluator(threshold_profile).evaluate(
            exam_id=exam_id,
            release_number=release_number,
            rows=rows,
            current_bands=current_bands,
            history_bands=history_bands,
            recent_inflows=recent_inflows,
            now=now,
        )

    def list_releases(self, exam_id: int) -> List[PassCutRelease]:
        return self.store.list_releases(exam_id)

    def get_release(self, exam_id: int, release_number: int) -> PassCutRelease:
        release = self.store.get_release(exam_id, release_number)
        if release is None:
            raise EntityNotFoundException("PassCutRelease", f"{exam_id}/{release_number}")
        return release

    def create_release(
        self,
        request: ReleaseCreateRequest,
        source: ReleaseSource = ReleaseSource.ADMIN,
        evaluation: Optional[ReleaseEvaluation] = None,
        notice_title: Optional[str] = None,
        notice_content: Optional[str] = None,
    ) -> PassCutRelease:
        """
        Publish release ``request.release_number`` for the exam.

        Raises:
            ValidationError: release number outside 1..4.
            EntityNotFoundException: exam does not exist.
            BusinessConflictError: the release number is already published.
        """
        if not 1 <= request.release_number <= MAX_RELEASE_NUMBER:
            raise ValidationError(
                f"releaseNumber는 1~{MAX_RELEASE_NUMBER} 범위여야 합니다.",
                details={"release_number": request.release_number},
            )

        exam = self.store.get_exam(request.exam_id)
        if exam is None:
            raise EntityNotFoundException("Exam", request.exam_id)

        duplicated_message = f"이미 {request.release_number}차 합격컷 발표가 등록되어 있습니다."
        if self.store.get_release(exam.id, request.release_number) is not None:
            raise BusinessConflictError(
                duplicated_message,
                details={"exam_id": exam.id, "release_number": request.release_number},
            )

        if evaluation is None:
            evaluation = self.evaluate(exam.id, request.release_number, request.threshold_profile)
        snapshots = [snapshot_from_row(row) for row in evaluation.rows]

        release = PassCutRelease(
            exam_id=exam.id,
            release_number=request.release_number,
            participant_count=sum(s.participant_count for s in snapshots),
            source=source,
            memo=request.memo,
            created_by=request.admin_id,
            snapshots=snapshots,
        )

        try:
            with self.store.unit_of_work():
                created = self.store.add_release(release)
                if request.auto_notice:
                    self.store.add_notice(
                        Notice(
                            title=notice_title or default_notice_title(request.release_number, source),
                            content=notice_content
                            or default_notice_content(exam, request.release_number, source),
                            priority=AUTO_NOTICE_PRIORITY if source == ReleaseSource.AUTO else ADMIN_NOTICE_PRIORITY,
                        )
                    )
        except DuplicateEntityException as e:
            raise BusinessConflictError(
                duplicated_message,
                details={"exam_id": exam.id, "release_number": request.release_number, "reason": str(e)},
            )

        logger.info(
            "pass_cut_release_created",
            extra={
                "exam_id": exam.id,
                "release_id": created.id,
                "release_number": created.release_number,
                "source": source.value,
                "snapshots": len(created.snapshots),
                "ready": evaluation.ready_region_count,
            },
        )
        return created


class AutoReleaseRunner:
    """
    Publishes the next missing release once enough rows are READY.

    Traffic-triggered runs are throttled per exam by
    AUTO_RELEASE_CHECK_INTERVAL_SEC; the throttle lives in this process only.
    """

    def __init__(
        self,
        store: ExamDataStore,
        manager: ReleaseManager,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.manager = manager
        self.settings = settings or get_settings()
        self.clock = clock
        self._last_traffic_check: Dict[int, float] = {}

    def _mode_allows(self, trigger: AutoReleaseTrigger) -> bool:
        mode = AutoReleaseMode(self.settings.AUTO_RELEASE_MODE)
        if trigger == AutoReleaseTrigger.TRAFFIC:
            return mode in (AutoReleaseMode.HYBRID, AutoReleaseMode.TRAFFIC_ONLY)
        return mode in (AutoReleaseMode.HYBRID, AutoReleaseMode.CRON_ONLY)

    def _throttled(self, exam_id: int) -> bool:
        now = self.clock()
        interval = max(MIN_TRAFFIC_INTERVAL_SEC, self.settings.AUTO_RELEASE_CHECK_INTERVAL_SEC)
        previous = self._last_traffic_check.get(exam_id)
        if previous is not None and now - previous < interval:
            return True
        self._last_traffic_check[exam_id] = now
        return False

    def run(self, request: AutoReleaseRunRequest, now: Optional[datetime] = None) -> AutoReleaseRunResult:
        trigger = request.trigger

        if not self.settings.AUTO_RELEASE_ENABLED:
            return AutoReleaseRunResult(reason=AutoReleaseReason.AUTO_DISABLED, trigger=trigger)
        if not self._mode_allows(trigger):
            return AutoReleaseRunResult(reason=AutoReleaseReason.MODE_BLOCKED, trigger=trigger)

        exam = (
            self.store.get_exam(request.exam_id)
            if request.exam_id is not None
            else self.store.get_active_exam()
        )
        if exam is None:
            return AutoReleaseRunResult(reason=AutoReleaseReason.NO_ACTIVE_EXAM, trigger=trigger)

        if trigger == AutoReleaseTrigger.TRAFFIC and not request.force and self._throttled(exam.id):
            return AutoReleaseRunResult(
                reason=AutoReleaseReason.INTERVAL_THROTTLED,
                trigger=trigger,
                exam_id=exam.id,
            )

        existing = [r.release_number for r in self.store.list_releases(exam.id)]
        release_number = next_release_number(existing)

        evaluation = self.manager.evaluate(exam.id, release_number or MAX_RELEASE_NUMBER, now=now)
        result = AutoReleaseRunResult(
            reason=AutoReleaseReason.ALL_RELEASES_COMPLETED,
            trigger=trigger,
            exam_id=exam.id,
            next_release_number=release_number,
            ready_region_ratio=evaluation.ready_region_ratio,
            required_ready_ratio=evaluation.thresholds.ready_ratio,
            eligible_region_count=evaluation.eligible_region_count,
            ready_region_count=evaluation.ready_region_count,
            rows=evaluation.rows,
        )

        if release_number is None:
            return result
        if not evaluation.rows:
            return result.model_copy(update={"reason": AutoReleaseReason.NO_TARGET_ROWS})
        if evaluation.ready_region_ratio < evaluation.thresholds.ready_ratio:
            return result.model_copy(update={"reason": AutoReleaseReason.THRESHOLD_NOT_REACHED})

        admin_id = self.settings.AUTO_RELEASE_ADMIN_ID
        if admin_id is None:
            return result.model_copy(update={"reason": AutoReleaseReason.NO_ADMIN_USER})

        request_body = ReleaseCreateRequest(
            exam_id=exam.id,
            release_number=release_number,
            admin_id=admin_id,
            memo=(
                f"AUTO {release_number}차 발표 (충족 {evaluation.ready_region_count}/"
                f"{evaluation.eligible_region_count}, {evaluation.ready_region_ratio:.1f}%)"
            ),
            auto_notice=self.settings.AUTO_RELEASE_NOTICE,
        )
        try:
            release = self.manager.create_release(
                request_body,
                source=ReleaseSource.AUTO,
                evaluation=evaluation,
                notice_content=auto_notice_content(evaluation),
            )
        except BusinessConflictError:
            logger.info("auto_release_duplicated", extra={"exam_id": exam.id, "release_number": release_number})
            return result.model_copy(update={"reason": AutoReleaseReason.DUPLICATED})

        return result.model_copy(
            update={
                "triggered": True,
                "reason": AutoReleaseReason.RELEASE_CREATED,
                "release_id": release.id,
            }
        )
