# tests/conftest.py

"""
Pytest Fixtures - Shared stores, answer sheets and API client

SEED DATA ID REFERENCE (passcut/repositories/seed.py):
- Exam:     1 (2026년 제1차 경찰공무원(순경) 채용시험)
- Subjects: PUBLIC 1 헌법(20q, max 50), 2 형사법(40q), 3 경찰학(40q)
            CAREER 4 범죄학(20q, max 50), 5 형사법(40q), 6 경찰학(40q)
- Regions:  1 서울 (715/715) ... 9 세종 (10/10) ... 19 제주 (47/47)
"""

import random
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from passcut.config import Settings
from passcut.core import dependencies
from passcut.main import app
from passcut.models.enumerations import ExamType, Gender
from passcut.models.exam import AnswerKey
from passcut.models.submission import AnswerInput, SubmissionRequest
from passcut.repositories.memory import InMemoryExamDataStore
from passcut.repositories.seed import DEMO_EXAM, SUBJECTS, seed_demo_data
from passcut.services.answer_key_service import AnswerKeyService
from passcut.services.notification_service import NotificationService
from passcut.services.pass_cut_service import PassCutService
from passcut.services.prediction_service import PredictionService
from passcut.services.rate_limiter import InMemoryRateLimiter
from passcut.services.release_service import AutoReleaseRunner, ReleaseManager
from passcut.services.rescoring_service import RescoringService
from passcut.services.statistics_service import StatisticsService
from passcut.services.submission_service import SubmissionService

EXAM_ID = DEMO_EXAM.id
SEOUL = 1
SEJONG = 9
JEJU = 19


# =============================================================================
# ANSWER SHEET HELPERS
# =============================================================================

def build_answer_key(exam_type: ExamType, seed: int = 7) -> Dict[tuple, int]:
    """Deterministic, irregular answer key: (subject_id, question) -> answer."""
    rng = random.Random(seed)
    return {
        (subject.id, q): rng.randint(1, 4)
        for subject in SUBJECTS
        if subject.exam_type == exam_type
        for q in range(1, subject.question_count + 1)
    }


def wrong_answer(correct: int) -> int:
    return correct % 4 + 1


def build_answers(
    exam_type: ExamType,
    correct_counts: Dict[str, int],
    key: Optional[Dict[tuple, int]] = None,
) -> List[AnswerInput]:
    """
    Full answer sheet: the first ``correct_counts[subject]`` questions of each
    subject match the key, the rest are wrong. Unlisted subjects are all correct.
    """
    key = key or build_answer_key(exam_type)
    answers = []
    for subject in SUBJECTS:
        if subject.exam_type != exam_type:
            continue
        correct = correct_counts.get(subject.name, subject.question_count)
        for q in range(1, subject.question_count + 1):
            value = key[(subject.id, q)]
            answers.append(
                AnswerInput(
                    subject_name=subject.name,
                    question_number=q,
                    answer=value if q <= correct else wrong_answer(value),
                )
            )
    return answers


def make_request(
    user_id: int,
    correct_counts: Optional[Dict[str, int]] = None,
    exam_type: ExamType = ExamType.PUBLIC,
    region_id: int = SEOUL,
    **overrides,
) -> SubmissionRequest:
    data = dict(
        user_id=user_id,
        exam_id=EXAM_ID,
        exam_type=exam_type,
        region_id=region_id,
        gender=Gender.MALE,
        exam_number=f"{user_id:05d}",
        answers=build_answers(exam_type, correct_counts or {}),
    )
    data.update(overrides)
    return SubmissionRequest(**data)


def submit_ranked(service, count: int, region_id: int = SEJONG, first_user_id: int = 100) -> list:
    """
    ``count`` public submissions with distinct scores, best first:
    the i-th one misses i 경찰학 questions (250, 247.5, 245, ...).
    """
    return [
        service.submit(make_request(first_user_id + i, {"경찰학": 40 - i}, region_id=region_id))
        for i in range(count)
    ]


def save_answer_key(store: InMemoryExamDataStore, exam_type: ExamType, key: Optional[Dict[tuple, int]] = None) -> None:
    key = key or build_answer_key(exam_type)
    store.save_answer_keys(
        [
            AnswerKey(
                exam_id=EXAM_ID,
                exam_type=exam_type,
                subject_id=subject_id,
                question_number=q,
                correct_answer=answer,
            )
            for (subject_id, q), answer in key.items()
        ]
    )


# =============================================================================
# STORE AND SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, SEED_DEMO_DATA=True, AUTO_RELEASE_ENABLED=False)


@pytest.fixture
def store():
    """Seeded memory store with answer keys for both tracks."""
    memory_store = InMemoryExamDataStore()
    seed_demo_data(memory_store)
    save_answer_key(memory_store, ExamType.PUBLIC)
    save_answer_key(memory_store, ExamType.CAREER)
    return memory_store


@pytest.fixture
def submission_service(store, settings):
    return SubmissionService(store, settings)


@pytest.fixture
def statistics_service(store, settings):
    return StatisticsService(store, settings)


@pytest.fixture
def pass_cut_service(store, settings):
    return PassCutService(store, settings)


@pytest.fixture
def prediction_service(store):
    return PredictionService(store)


@pytest.fixture
def rescoring_service(store, settings):
    return RescoringService(store, settings)


@pytest.fixture
def answer_key_service(store, rescoring_service):
    return AnswerKeyService(store, rescoring_service)


@pytest.fixture
def notification_service(store):
    return NotificationService(store)


@pytest.fixture
def release_manager(store, pass_cut_service, settings):
    return ReleaseManager(store, pass_cut_service, settings)


@pytest.fixture
def auto_runner(store, release_manager, settings):
    return AutoReleaseRunner(store, release_manager, settings)


# =============================================================================
# FASTAPI TEST CLIENT FIXTURE
# =============================================================================

@pytest.fixture
def client(store, settings):
    """TestClient wired to a fresh seeded store."""
    submission = SubmissionService(store, settings)
    statistics = StatisticsService(store, settings)
    pass_cut = PassCutService(store, settings)
    prediction = PredictionService(store)
    rescoring = RescoringService(store, settings)
    answer_keys = AnswerKeyService(store, rescoring)
    notifications = NotificationService(store)
    manager = ReleaseManager(store, pass_cut, settings)
    runner = AutoReleaseRunner(store, manager, settings)
    limiter = InMemoryRateLimiter(limit=1000, window_seconds=60)

    app.dependency_overrides = {
        dependencies.get_store: lambda: store,
        dependencies.get_submission_service: lambda: submission,
        dependencies.get_statistics_service: lambda: statistics,
        dependencies.get_pass_cut_service: lambda: pass_cut,
        dependencies.get_prediction_service: lambda: prediction,
        dependencies.get_rescoring_service: lambda: rescoring,
        dependencies.get_answer_key_service: lambda: answer_keys,
        dependencies.get_notification_service: lambda: notifications,
        dependencies.get_release_manager: lambda: manager,
        dependencies.get_auto_release_runner: lambda: runner,
        dependencies.get_rate_limiter: lambda: limiter,
    }
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}
