"""
Tariff Pricing Engine  (Strategy Pattern)
=========================================

Formula
-------
Price = Base_Price[type] + ceil(Per_Km[type] x Distance)

* The tariff table is keyed by ``OrderType``; the admin can override
  individual rows, the rest fall back to configured defaults.
* A client-supplied explicit price always wins over the tariff.
* Driver bids are normalised with ``ceil`` and must sit inside a
  configured ``[min, max]`` band.

Complexity: O(1) per price calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

from .enums import OrderType


@dataclass(frozen=True)
class Tariff:
    order_type: OrderType
    base_price: float
    per_km: float


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, distance_km: float, tariff: Tariff) -> float: ...


class TariffPricing(PricingStrategy):
    def calculate(self, distance_km: float, tariff: Tariff) -> float:
        return tariff.base_price + math.ceil(tariff.per_km * distance_km)


# ── Engine facade ─────────────────────────────────────────────────────


def default_tariffs(
    table: Mapping[str, tuple[float, float]],
) -> dict[OrderType, Tariff]:
    """Build the fallback tariff table from ``settings.default_tariffs``."""
    return {
        OrderType(key): Tariff(OrderType(key), base, per_km)
        for key, (base, per_km) in table.items()
    }


class PricingEngine:
    """High-level API used by the lifecycle engine and the API layer."""

    def __init__(self, strategy: PricingStrategy | None = None):
        self.strategy = strategy or TariffPricing()

    def quote(
        self,
        tariff: Tariff,
        distance_km: Optional[float] = None,
        explicit_price: Optional[float] = None,
    ) -> float:
        """
        Price for a new order.

        An explicit positive price wins; a known distance is priced by the
        tariff; otherwise the order starts at ``0`` and is priced later
        (late distance confirmation or a driver bid).
        """
        if explicit_price:
            return float(explicit_price)
        if distance_km is not None and distance_km > 0:
            return float(self.strategy.calculate(distance_km, tariff))
        return 0.0

    @staticmethod
    def normalise_bid(
        price: float, min_price: float, max_price: float
    ) -> Optional[float]:
        """Round a bid up to a whole amount; ``None`` if it is out of band."""
        normalised = math.ceil(price)
        if normalised < min_price or normalised > max_price:
            return None
        return float(normalised)
