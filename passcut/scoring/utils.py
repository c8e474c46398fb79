"""
Decimal Utilities
passcut/scoring/utils.py

Precision-safe rounding and small numeric helpers shared by the calculators.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional


def to_decimal(value: float, places: int = 4) -> Decimal:
    """Convert float to Decimal with explicit precision."""
    return Decimal(str(value)).quantize(
        Decimal(10) ** -places, rounding=ROUND_HALF_UP
    )


def round_score(value: float, places: int = 2) -> float:
    """Round half-up to ``places`` decimals and return a plain float."""
    return float(to_decimal(value, places))


def ceil_product(count: int, multiple: float) -> int:
    """ceil(count × multiple) without binary float drift (10 × 1.7 == 17)."""
    return math.ceil(Decimal(str(count)) * Decimal(str(multiple)))


def floor_product(count: int, multiple: float) -> int:
    """floor(count × multiple) without binary float drift."""
    return math.floor(Decimal(str(count)) * Decimal(str(multiple)))


def average(values: Iterable[float], places: int = 2) -> Optional[float]:
    """Rounded arithmetic mean, or None for an empty population."""
    items: List[float] = list(values)
    if not items:
        return None
    return round_score(sum(items) / len(items), places)


def normalize_subject_name(name: str) -> str:
    """Subject names compare whitespace-insensitively ("형 사 법" == "형사법")."""
    return "".join(name.split())
