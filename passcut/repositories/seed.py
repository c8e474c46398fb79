"""
Seed Data - Pass-Cut Platform
passcut/repositories/seed.py

Reference data for the police written exam (경찰공무원 순경 필기) used by the
memory backend: subjects per track, regions and per-region recruit quotas.
Answer keys are not seeded; they are entered through the audited
correction path.
"""

from typing import List, Tuple

from passcut.models.enumerations import ExamType
from passcut.models.exam import Exam, ExamRegionQuota, Region, Subject
from passcut.repositories.memory import InMemoryExamDataStore

DEMO_EXAM = Exam(id=1, name="2026년 제1차 경찰공무원(순경) 채용시험", year=2026, round=1)

SUBJECTS: List[Subject] = [
    Subject(id=1, name="헌법", exam_type=ExamType.PUBLIC, question_count=20, point_per_question=2.5, max_score=50),
    Subject(id=2, name="형사법", exam_type=ExamType.PUBLIC, question_count=40, point_per_question=2.5, max_score=100),
    Subject(id=3, name="경찰학", exam_type=ExamType.PUBLIC, question_count=40, point_per_question=2.5, max_score=100),
    Subject(id=4, name="범죄학", exam_type=ExamType.CAREER, question_count=20, point_per_question=2.5, max_score=50),
    Subject(id=5, name="형사법", exam_type=ExamType.CAREER, question_count=40, point_per_question=2.5, max_score=100),
    Subject(id=6, name="경찰학", exam_type=ExamType.CAREER, question_count=40, point_per_question=2.5, max_score=100),
]

# (region name, public recruit, career recruit)
REGION_QUOTAS: List[Tuple[str, int, int]] = [
    ("서울", 715, 715),
    ("101경비단", 40, 0),
    ("부산", 213, 213),
    ("대구", 92, 92),
    ("인천", 175, 175),
    ("광주", 37, 37),
    ("대전", 51, 51),
    ("울산", 22, 22),
    ("세종", 10, 10),
    ("경기남부", 609, 609),
    ("경기북부", 128, 128),
    ("강원", 140, 140),
    ("충북", 121, 121),
    ("충남", 152, 152),
    ("전북", 137, 137),
    ("전남", 176, 176),
    ("경북", 181, 181),
    ("경남", 196, 196),
    ("제주", 47, 47),
]


def seed_demo_data(store: InMemoryExamDataStore) -> None:
    """Load the demo exam, subjects, regions and quotas into ``store``."""
    store.add_exam(DEMO_EXAM)
    for subject in SUBJECTS:
        store.add_subject(subject)
    for region_id, (name, recruit, recruit_career) in enumerate(REGION_QUOTAS, start=1):
        store.add_region(Region(id=region_id, name=name))
        store.save_quota(
            ExamRegionQuota(
                exam_id=DEMO_EXAM.id,
                region_id=region_id,
                recruit_count=recruit,
                recruit_count_career=recruit_career,
            )
        )
