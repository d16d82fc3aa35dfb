"""
Driver statistics and badges.

Everything here is derived from the orders and ratings tables on demand;
nothing is stored, so the numbers cannot drift from the source records.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DriverStats:
    completed_orders: int = 0
    total_ratings: int = 0
    average_rating: float = 0.0


@dataclass(frozen=True)
class AdminStats:
    total_orders: int = 0
    completed_orders: int = 0
    active_drivers: int = 0
    pending_orders: int = 0
    average_rating: float = 0.0


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def average_rating(total_stars: float, count: int) -> float:
    if count <= 0:
        return 0.0
    return round_half_up(total_stars / count)


def clamp_stars(stars: float) -> int:
    return min(5, max(1, math.floor(stars)))


# (label, predicate) in display order
BADGE_RULES = (
    ("⭐ Top driver", lambda s: s.average_rating >= 4.8),
    ("🏆 Legend", lambda s: s.completed_orders >= 100),
    ("🔥 Active", lambda s: s.completed_orders >= 50),
    (
        "💎 Premium",
        lambda s: s.completed_orders >= 20 and s.average_rating >= 4.5,
    ),
    (
        "⚡ Perfect",
        lambda s: s.total_ratings >= 50 and s.average_rating == 5.0,
    ),
)


def badges_for(stats: DriverStats) -> Optional[str]:
    """Space-joined badge labels earned by *stats*, or ``None``."""
    earned = [label for label, rule in BADGE_RULES if rule(stats)]
    return " ".join(earned) if earned else None
