"""
scoring/anomaly_detector.py

Flags implausible answer sheets. Flag-only: the result never blocks a
submission and the detector never raises. Suspicious submissions are kept
out of every ranking, statistics and prediction population.

Heuristics (any hit → suspicious, all reasons collected):
    dominance   one answer value ≥ 85% of all answers
    cycle       sequence repeats a 2..5 long cycle ≥ 80% of positions (≥ 10 answers)
    entropy     Shannon entropy of answer values < 0.8 bits
    score       totalScore < 10% of maxScore
    duration    submit duration < 120 s (when known)
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class AnomalyResult:
    """Output of AnomalyDetector.detect()."""
    is_suspicious: bool
    reasons: List[str] = field(default_factory=list)


class AnomalyDetector:
    """Heuristic detector for answer-sheet abuse."""

    DOMINANCE_THRESHOLD: float = 0.85
    CYCLE_MIN_LENGTH: int = 2
    CYCLE_MAX_LENGTH: int = 5
    CYCLE_MIN_ANSWERS: int = 10
    CYCLE_MATCH_THRESHOLD: float = 0.8
    ENTROPY_THRESHOLD: float = 0.8
    LOW_SCORE_RATIO: float = 0.1
    MIN_DURATION_MS: int = 120_000

    def detect(
        self,
        answers: Sequence[int],
        total_score: float,
        max_score: float,
        submit_duration_ms: Optional[int] = None,
    ) -> AnomalyResult:
        """
        Args:
            answers: Flattened answer values (subjects in track order).
            total_score: Raw total before bonus.
            max_score: Track maximum.
            submit_duration_ms: Time spent on the answer sheet, if the client reported it.

        Returns:
            AnomalyResult with every matched reason.
        """
        reasons: List[str] = []

        if answers:
            value, count = Counter(answers).most_common(1)[0]
            ratio = count / len(answers)
            if ratio >= self.DOMINANCE_THRESHOLD:
                reasons.append(f"단일 답 편중: {value}번 {ratio * 100:.0f}%")

            cycle = self._detect_cycle(answers)
            if cycle is not None:
                reasons.append(f"반복 패턴 감지: {cycle}")

            entropy = self._entropy(answers)
            if entropy < self.ENTROPY_THRESHOLD:
                reasons.append(f"답안 분포 엔트로피 낮음 ({entropy:.2f})")

        if max_score > 0 and total_score / max_score < self.LOW_SCORE_RATIO:
            reasons.append(f"비정상 저득점 ({total_score}/{max_score})")

        if submit_duration_ms is not None and 0 < submit_duration_ms < self.MIN_DURATION_MS:
            reasons.append(f"제출 소요 시간 과소 ({submit_duration_ms / 1000:.0f}초)")

        if reasons:
            logger.info(
                "submission_flagged_suspicious",
                extra={"reasons": reasons, "answer_count": len(answers)},
            )

        return AnomalyResult(is_suspicious=bool(reasons), reasons=reasons)

    def _detect_cycle(self, answers: Sequence[int]) -> Optional[str]:
        """Return the cycle literal (e.g. "1-2-3-4") of the first matching length, else None."""
        if len(answers) < self.CYCLE_MIN_ANSWERS:
            return None

        for length in range(self.CYCLE_MIN_LENGTH, self.CYCLE_MAX_LENGTH + 1):
            pattern = answers[:length]
            matches = sum(
                1 for index, value in enumerate(answers) if value == pattern[index % length]
            )
            if matches / len(answers) >= self.CYCLE_MATCH_THRESHOLD:
                return "-".join(str(value) for value in pattern)
        return None

    @staticmethod
    def _entropy(answers: Sequence[int]) -> float:
        total = len(answers)
        return -sum(
            (count / total) * math.log2(count / total) for count in Counter(answers).values()
        )
