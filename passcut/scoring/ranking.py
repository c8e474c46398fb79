"""
scoring/ranking.py

Rank and population statistics for one score inside a comparison population.

    rank        = 1 + |{ s ∈ population : s > score }|     (ties share a rank)
    topPercent  = rank / total × 100
    percentile  = (total − rank + 1) / total × 100
    top10Average, top30Average = mean of the top ceil(10%) / ceil(30%) scores
"""

from dataclasses import dataclass
from typing import List, Sequence

from passcut.scoring.utils import average, ceil_product, round_score

SCORE_EPSILON = 1e-9


@dataclass
class RankSummary:
    """Output of summarize()."""
    total_participants: int
    rank: int
    percentile: float
    top_percent: float
    average_score: float
    highest_score: float
    lowest_score: float
    top10_average: float
    top30_average: float


def competition_rank(score: float, population: Sequence[float]) -> int:
    """1 + number of strictly higher scores."""
    return 1 + sum(1 for value in population if value > score + SCORE_EPSILON)


def top_average(sorted_desc: Sequence[float], ratio: float, places: int = 2) -> float:
    """Mean of the top ceil(n × ratio) scores of a descending list (at least one)."""
    count = max(1, ceil_product(len(sorted_desc), ratio))
    return average(sorted_desc[:count], places)


def summarize(score: float, population: Sequence[float], places: int = 2) -> RankSummary:
    """
    Args:
        score: The target's score. It must already be a member of ``population``.
        population: Every score in the comparison population.
        places: Rounding precision for the float outputs.

    Raises:
        ValueError: if the population is empty.
    """
    if not population:
        raise ValueError("population must contain at least the target score")

    ordered: List[float] = sorted(population, reverse=True)
    total = len(ordered)
    rank = competition_rank(score, ordered)

    return RankSummary(
        total_participants=total,
        rank=rank,
        percentile=round_score((total - rank + 1) / total * 100, places),
        top_percent=round_score(rank / total * 100, places),
        average_score=average(ordered, places),
        highest_score=round_score(ordered[0], places),
        lowest_score=round_score(ordered[-1], places),
        top10_average=top_average(ordered, 0.1, places),
        top30_average=top_average(ordered, 0.3, places),
    )
