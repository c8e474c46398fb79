"""
Anomaly Detector Tests - Pass-Cut Platform
tests/test_anomaly_detector.py

Flag-only heuristics: dominance, cycles, entropy, low score, duration.
"""
import random

import pytest

from passcut.scoring.anomaly_detector import AnomalyDetector


@pytest.fixture
def detector():
    return AnomalyDetector()


def plausible_answers(count: int = 100, seed: int = 3):
    rng = random.Random(seed)
    return [rng.randint(1, 4) for _ in range(count)]


class TestAnomalyDetector:

    def test_all_ones_is_suspicious_with_dominance_reason(self, detector):
        result = detector.detect([1] * 100, total_score=62.5, max_score=250)
        assert result.is_suspicious is True
        assert any("단일 답 편중" in reason for reason in result.reasons)
        assert any("엔트로피" in reason for reason in result.reasons)

    def test_plausible_sheet_at_60_percent_is_clean(self, detector):
        result = detector.detect(plausible_answers(), total_score=150, max_score=250, submit_duration_ms=900_000)
        assert result.is_suspicious is False
        assert result.reasons == []

    def test_repeating_cycle(self, detector):
        result = detector.detect([1, 2, 3, 4] * 25, total_score=150, max_score=250)
        assert result.is_suspicious is True
        assert "반복 패턴 감지: 1-2-3-4" in result.reasons

    def test_cycle_needs_minimum_length(self, detector):
        result = detector.detect([1, 2, 1, 2, 1, 2, 1, 2, 1], total_score=150, max_score=250)
        assert not any("반복 패턴" in reason for reason in result.reasons)

    def test_low_score(self, detector):
        result = detector.detect(plausible_answers(), total_score=20, max_score=250)
        assert result.is_suspicious is True
        assert any("저득점" in reason for reason in result.reasons)

    def test_short_duration(self, detector):
        result = detector.detect(plausible_answers(), total_score=150, max_score=250, submit_duration_ms=45_000)
        assert result.is_suspicious is True
        assert any("45초" in reason for reason in result.reasons)

    def test_unknown_duration_is_ignored(self, detector):
        result = detector.detect(plausible_answers(), total_score=150, max_score=250, submit_duration_ms=None)
        assert result.is_suspicious is False

    def test_empty_answers_never_raise(self, detector):
        result = detector.detect([], total_score=0, max_score=0)
        assert result.is_suspicious is False
