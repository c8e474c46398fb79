"""
scoring/correct_rate.py

Per-question correct rate and difficulty bucket.

    rate ≥ 80  EASY
    rate ≥ 60  NORMAL
    rate ≥ 40  HARD
    else       VERY_HARD
"""

from typing import List, Mapping, Sequence, Tuple

from passcut.models.enumerations import DifficultyLevel
from passcut.models.exam import Subject
from passcut.models.statistics import QuestionCorrectRate
from passcut.scoring.utils import round_score


def difficulty_level(correct_rate: float) -> DifficultyLevel:
    if correct_rate >= 80:
        return DifficultyLevel.EASY
    if correct_rate >= 60:
        return DifficultyLevel.NORMAL
    if correct_rate >= 40:
        return DifficultyLevel.HARD
    return DifficultyLevel.VERY_HARD


def build_correct_rates(
    subjects: Sequence[Subject],
    tallies: Mapping[Tuple[int, int], Tuple[int, int]],
    answer_keys: Mapping[Tuple[int, int], int],
) -> List[QuestionCorrectRate]:
    """
    Args:
        subjects: Track subjects in display order.
        tallies: (subject_id, question_number) → (answered, correct).
        answer_keys: (subject_id, question_number) → correct answer.

    Returns:
        One row per question of every subject, unanswered questions at 0%.
    """
    rows: List[QuestionCorrectRate] = []
    for subject in subjects:
        for question_number in range(1, subject.question_count + 1):
            key = (subject.id, question_number)
            total, correct = tallies.get(key, (0, 0))
            rate = round_score(correct / total * 100) if total else 0.0
            rows.append(
                QuestionCorrectRate(
                    subject_id=subject.id,
                    subject_name=subject.name,
                    question_number=question_number,
                    correct_answer=answer_keys.get(key),
                    total_count=total,
                    correct_count=correct,
                    correct_rate=rate,
                    difficulty=difficulty_level(rate),
                )
            )
    return rows


def wrong_rate_top(rows: Sequence[QuestionCorrectRate], limit: int = 10) -> List[QuestionCorrectRate]:
    """Answered questions sorted by correct rate ascending (most missed first)."""
    ordered = sorted(
        (row for row in rows if row.total_count > 0),
        key=lambda row: (row.correct_rate, row.subject_id, row.question_number),
    )
    return ordered[:limit]
