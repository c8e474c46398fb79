"""
Scoring Policy
passcut/scoring/policy.py

Explicit, swappable policy objects for the rules that are business
decisions rather than arithmetic:

    ScoringPolicy   bonus rates, bonus basis, subject cutoff, rounding
    MultiplePolicy  pass / likely / challenge multiples per recruit count

Pass multiple curve (recruit count → multiple):
    >= 150  1.5
    >= 100  1.6
    >=  50  1.7
    >=   6  1.8
    1..5    fixed pass counts 3 / 6 / 8 / 9 / 10
"""

from dataclasses import dataclass, field
from typing import Dict, Literal, Optional

from passcut.core.exceptions import ValidationError
from passcut.models.enumerations import BonusType
from passcut.scoring.utils import ceil_product, floor_product, round_score

BONUS_RATES: Dict[BonusType, float] = {
    BonusType.NONE: 0.0,
    BonusType.VETERAN_5: 0.05,
    BonusType.VETERAN_10: 0.10,
    BonusType.HERO_3: 0.03,
    BonusType.HERO_5: 0.05,
}

_VETERAN_BY_PERCENT = {0: BonusType.NONE, 5: BonusType.VETERAN_5, 10: BonusType.VETERAN_10}
_HERO_BY_PERCENT = {0: BonusType.NONE, 3: BonusType.HERO_3, 5: BonusType.HERO_5}


def bonus_type_from_percent(veteran_percent: int = 0, hero_percent: int = 0) -> BonusType:
    """Derive the single bonus type from the two percentage selectors."""
    if veteran_percent not in _VETERAN_BY_PERCENT:
        raise ValidationError("취업지원대상자 가산점은 0%, 5%, 10%만 선택할 수 있습니다.")
    if hero_percent not in _HERO_BY_PERCENT:
        raise ValidationError("의사상자 가산점은 0%, 3%, 5%만 선택할 수 있습니다.")
    if veteran_percent > 0 and hero_percent > 0:
        raise ValidationError("취업지원대상자 가산점과 의사상자 가산점은 중복 적용할 수 없습니다.")
    if veteran_percent > 0:
        return _VETERAN_BY_PERCENT[veteran_percent]
    return _HERO_BY_PERCENT[hero_percent]


@dataclass(frozen=True)
class ScoringPolicy:
    """Bonus and cutoff rules applied by the scoring engine."""

    cutoff_rate: float = 0.4
    bonus_basis: Literal["total_score", "max_score"] = "total_score"
    precision: int = 2
    bonus_rates: Dict[BonusType, float] = field(default_factory=lambda: dict(BONUS_RATES))

    def bonus_rate(self, bonus_type: BonusType) -> float:
        return self.bonus_rates.get(bonus_type, 0.0)

    def cutoff_score(self, max_score: float) -> float:
        return max_score * self.cutoff_rate

    def is_failed(self, raw_score: float, max_score: float) -> bool:
        return raw_score < self.cutoff_score(max_score)

    def bonus_score(self, total_score: float, max_total_score: float, bonus_type: BonusType) -> float:
        """
        Bonus points for a candidate.

        total_score basis: totalScore × rate (default).
        max_score basis:   track max score × rate, as some notices publish it.
        """
        return round_score(self._raw_bonus(total_score, max_total_score, bonus_type), self.precision)

    def final_score(self, total_score: float, max_total_score: float, bonus_type: BonusType) -> float:
        return round_score(
            total_score + self._raw_bonus(total_score, max_total_score, bonus_type),
            self.precision,
        )

    def _raw_bonus(self, total_score: float, max_total_score: float, bonus_type: BonusType) -> float:
        base = total_score if self.bonus_basis == "total_score" else max_total_score
        return base * self.bonus_rate(bonus_type)


@dataclass(frozen=True)
class MultiplePolicy:
    """Pass multiple curve and the multiples derived from it."""

    small_quota_pass_counts: Dict[int, int] = field(
        default_factory=lambda: {1: 3, 2: 6, 3: 8, 4: 9, 5: 10}
    )
    likely_ratio: float = 0.8
    challenge_ratio: float = 1.3

    def pass_multiple(self, recruit_count: int) -> float:
        if recruit_count >= 150:
            return 1.5
        if recruit_count >= 100:
            return 1.6
        if recruit_count >= 50:
            return 1.7
        if recruit_count >= 6:
            return 1.8
        pass_count: Optional[int] = self.small_quota_pass_counts.get(recruit_count)
        if pass_count is None:
            return 1.8
        return pass_count / recruit_count

    def likely_multiple(self, recruit_count: int) -> float:
        return max(1.0, self.pass_multiple(recruit_count) * self.likely_ratio)

    def challenge_multiple(self, recruit_count: int) -> float:
        return self.pass_multiple(recruit_count) * self.challenge_ratio

    def pass_count(self, recruit_count: int) -> int:
        if recruit_count in self.small_quota_pass_counts:
            return self.small_quota_pass_counts[recruit_count]
        return ceil_product(recruit_count, self.pass_multiple(recruit_count))

    def likely_max_rank(self, recruit_count: int) -> int:
        return max(1, floor_product(recruit_count, self.likely_multiple(recruit_count)))


DEFAULT_SCORING_POLICY = ScoringPolicy()
DEFAULT_MULTIPLE_POLICY = MultiplePolicy()


def scoring_policy_from_settings(settings) -> ScoringPolicy:
    return ScoringPolicy(
        cutoff_rate=settings.SUBJECT_CUTOFF_RATE,
        bonus_basis=settings.BONUS_BASIS,
        precision=settings.SCORE_PRECISION,
    )
