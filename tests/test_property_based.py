# tests/test_property_based.py
"""
Property-Based Tests - Pass-Cut Platform

Hypothesis properties for the scoring engine and the rank helpers:
  - totalScore is the sum of subject raw scores
  - finalScore = round(total + total × bonusRate, 2)
  - isFailed iff rawScore < 40% of maxScore
  - competition rank / score_at_rank agree with a sorted population
"""

import random

from hypothesis import given, settings
from hypothesis import strategies as st

from passcut.models.enumerations import BonusType, ExamType
from passcut.repositories.seed import SUBJECTS
from passcut.scoring.distribution import build_score_bands, score_at_rank
from passcut.scoring.policy import BONUS_RATES
from passcut.scoring.ranking import competition_rank, summarize
from passcut.scoring.score_calculator import ScoreCalculator
from passcut.scoring.utils import round_score

from tests.conftest import build_answer_key, build_answers

PUBLIC_SUBJECTS = [s for s in SUBJECTS if s.exam_type == ExamType.PUBLIC]
PUBLIC_KEY = build_answer_key(ExamType.PUBLIC)
CALCULATOR = ScoreCalculator()

# ---------------------------------------------------------------------------
# Shared strategies
# ---------------------------------------------------------------------------

correct_counts_st = st.fixed_dictionaries(
    {
        "헌법": st.integers(min_value=0, max_value=20),
        "형사법": st.integers(min_value=0, max_value=40),
        "경찰학": st.integers(min_value=0, max_value=40),
    }
)

score_st = st.floats(min_value=0.0, max_value=275.0, allow_nan=False, allow_infinity=False).map(round_score)
population_st = st.lists(score_st, min_size=1, max_size=60)


class TestScoringProperties:

    @given(counts=correct_counts_st, bonus_type=st.sampled_from(list(BonusType)))
    @settings(max_examples=200, deadline=None)
    def test_total_and_final_score(self, counts, bonus_type):
        result = CALCULATOR.calculate(
            ExamType.PUBLIC, PUBLIC_SUBJECTS, PUBLIC_KEY, build_answers(ExamType.PUBLIC, counts, PUBLIC_KEY), bonus_type
        )
        assert result.total_score == round_score(sum(r.raw_score for r in result.subject_results))
        assert result.total_score == round_score(sum(counts.values()) * 2.5)
        assert result.final_score == round_score(result.total_score + result.total_score * BONUS_RATES[bonus_type])
        assert result.final_score >= result.total_score

    @given(counts=correct_counts_st)
    @settings(max_examples=200, deadline=None)
    def test_cutoff_iff_below_forty_percent(self, counts):
        result = CALCULATOR.calculate(
            ExamType.PUBLIC, PUBLIC_SUBJECTS, PUBLIC_KEY, build_answers(ExamType.PUBLIC, counts, PUBLIC_KEY)
        )
        for subject_result in result.subject_results:
            expected = subject_result.raw_score < subject_result.subject.max_score * 0.4
            assert subject_result.is_failed is expected
        assert result.has_cutoff is any(r.is_failed for r in result.subject_results)

    @given(seed=st.integers(min_value=0, max_value=10_000))
    @settings(max_examples=50, deadline=None)
    def test_answer_order_does_not_matter(self, seed):
        answers = build_answers(ExamType.PUBLIC, {"헌법": 11, "형사법": 23}, PUBLIC_KEY)
        shuffled = list(answers)
        random.Random(seed).shuffle(shuffled)
        first = CALCULATOR.calculate(ExamType.PUBLIC, PUBLIC_SUBJECTS, PUBLIC_KEY, answers)
        second = CALCULATOR.calculate(ExamType.PUBLIC, PUBLIC_SUBJECTS, PUBLIC_KEY, shuffled)
        assert first.total_score == second.total_score
        assert first.final_score == second.final_score


class TestRankProperties:

    @given(population=population_st, data=st.data())
    @settings(max_examples=300, deadline=None)
    def test_rank_is_one_plus_strictly_higher(self, population, data):
        score = data.draw(st.sampled_from(population))
        rank = competition_rank(score, population)
        assert rank == 1 + sum(1 for s in population if s > score)
        assert 1 <= rank <= len(population)

    @given(population=population_st, data=st.data())
    @settings(max_examples=300, deadline=None)
    def test_percentile_and_top_percent_bounds(self, population, data):
        score = data.draw(st.sampled_from(population))
        summary = summarize(score, population)
        assert 0 < summary.percentile <= 100
        assert 0 < summary.top_percent <= 100
        assert summary.lowest_score <= summary.average_score <= summary.highest_score
        assert summary.top30_average <= summary.top10_average

    @given(population=population_st, data=st.data())
    @settings(max_examples=300, deadline=None)
    def test_score_at_rank_matches_sorted_population(self, population, data):
        bands = build_score_bands(population)
        ordered = sorted(population, reverse=True)
        k = data.draw(st.integers(min_value=1, max_value=len(population)))
        assert score_at_rank(bands, k) == ordered[k - 1]
        assert score_at_rank(bands, len(population) + 1) is None
        assert score_at_rank(bands, 0) is None
