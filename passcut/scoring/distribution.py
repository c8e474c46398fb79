"""
scoring/distribution.py

Score bands and histogram helpers used by the pass-cut predictor and the
distribution view.

score_at_rank(bands, K):
    bands are (score, count) sorted by score descending; walk the cumulative
    count and return the first band score whose cumulative count ≥ K.
    K < 1, a non-integer K or K > population → None.

score_range(bands, start, end):
    (max, min) of the rank window [start, end] = (score_at_rank(start),
    score_at_rank(end)); an invalid window (start < 1 or start > end) → (None, None).
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from passcut.scoring.utils import round_score


@dataclass(frozen=True)
class ScoreBand:
    score: float
    count: int


@dataclass(frozen=True)
class ScoreRange:
    max_score: Optional[float] = None
    min_score: Optional[float] = None


@dataclass
class Bucket:
    index: int
    start: int
    end: int
    label: str
    count: int
    is_my_bucket: bool = False


@dataclass
class Distribution:
    """Output of build_distribution()."""
    total_participants: int
    is_collecting: bool
    buckets: List[Bucket] = field(default_factory=list)
    my_score: Optional[float] = None
    my_bucket: Optional[int] = None


def build_score_bands(scores: Iterable[float], places: int = 2) -> List[ScoreBand]:
    counts = Counter(round_score(score, places) for score in scores)
    return [ScoreBand(score=score, count=counts[score]) for score in sorted(counts, reverse=True)]


def score_at_rank(bands: List[ScoreBand], rank) -> Optional[float]:
    if not isinstance(rank, int) or isinstance(rank, bool) or rank < 1:
        return None

    cumulative = 0
    for band in bands:
        cumulative += band.count
        if cumulative >= rank:
            return band.score
    return None


def score_range(bands: List[ScoreBand], start_rank: int, end_rank: int) -> ScoreRange:
    if start_rank < 1 or start_rank > end_rank:
        return ScoreRange()
    return ScoreRange(
        max_score=score_at_rank(bands, start_rank),
        min_score=score_at_rank(bands, end_rank),
    )


def bucket_index(score: float, bucket_size: int = 10, max_score: int = 250) -> int:
    """Bin index; negatives clamp to the first bin, ≥ last start goes to the top bin."""
    bucket_count = -(-max_score // bucket_size)
    safe = max(0.0, min(float(max_score), score))
    return min(bucket_count - 1, int(safe // bucket_size))


def build_distribution(
    scores: Iterable[float],
    my_score: Optional[float] = None,
    bucket_size: int = 10,
    max_score: int = 250,
    min_participants: int = 10,
) -> Distribution:
    """
    Histogram of totalScores over [0, max_score].

    While fewer than ``min_participants`` scores exist the view is marked
    collecting and no buckets are returned.
    """
    values = list(scores)
    my_bucket = bucket_index(my_score, bucket_size, max_score) if my_score is not None else None
    result = Distribution(
        total_participants=len(values),
        is_collecting=len(values) < min_participants,
        my_score=round_score(my_score) if my_score is not None else None,
        my_bucket=my_bucket,
    )
    if result.is_collecting:
        return result

    bucket_count = -(-max_score // bucket_size)
    counts = Counter(bucket_index(value, bucket_size, max_score) for value in values)
    for index in range(bucket_count):
        start = index * bucket_size
        end = max_score if index == bucket_count - 1 else start + bucket_size
        result.buckets.append(
            Bucket(
                index=index,
                start=start,
                end=end,
                label=f"{start}~{end}",
                count=counts.get(index, 0),
                is_my_bucket=index == my_bucket,
            )
        )
    return result
