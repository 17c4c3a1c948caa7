"""
rate_oracle.py - Anchor rate sources for the bond pool

Provides in-process implementations of the RateOracle protocol (core.py).

Classes:
- StaticRateOracle: A fixed anchor rate that is never stale
- ManualRateOracle: A pushed anchor rate with a staleness window

Rates are annualized Decimals (Decimal("0.05") == 5%). Rates published as
1e18 fixed-point integers can be pushed with update_rate_wad().
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional
import logging

from .core import ORACLE_MAX_AGE, from_wad, to_decimal

logger = logging.getLogger(__name__)


class StaticRateOracle:
    """
    Rate source with a constant anchor rate.

    Never stale. Useful for simulations and as a deterministic test double.
    """

    def __init__(self, rate):
        """
        Args:
            rate: Annualized anchor rate
        """
        self.rate = to_decimal(rate)

    def get_rate(self, as_of: datetime) -> Decimal:
        """Return the static rate (as_of is ignored)."""
        return self.rate

    def is_stale(self, as_of: datetime) -> bool:
        return False

    def update_rate(self, rate) -> None:
        """Replace the rate."""
        self.rate = to_decimal(rate)

    def __repr__(self):
        return f"StaticRateOracle({self.rate})"


class ManualRateOracle:
    """
    Rate source fed by explicit updates.

    The feed is stale once the last update is older than max_age, or when
    it has never been updated. While stale the last rate is still returned;
    callers decide whether to proceed.
    """

    def __init__(
        self,
        rate=None,
        updated_at: Optional[datetime] = None,
        max_age: timedelta = ORACLE_MAX_AGE,
    ):
        """
        Initialize the oracle.

        Args:
            rate: Optional initial rate. If given, updated_at is required.
            updated_at: Time of the initial observation
            max_age: Age beyond which the feed is considered stale

        Examples:
            # Empty initialization, stale until the first update
            oracle = ManualRateOracle()
            oracle.update_rate("0.05", datetime(2025, 1, 1))

            # Seeded
            oracle = ManualRateOracle("0.05", datetime(2025, 1, 1))
        """
        if max_age <= timedelta(0):
            raise ValueError("max_age must be positive")
        if rate is not None and updated_at is None:
            raise ValueError("updated_at is required when an initial rate is given")
        self.max_age = max_age
        self._rate: Optional[Decimal] = to_decimal(rate) if rate is not None else None
        self._updated_at: Optional[datetime] = updated_at if rate is not None else None

    @property
    def updated_at(self) -> Optional[datetime]:
        return self._updated_at

    def update_rate(self, rate, timestamp: datetime) -> None:
        """
        Record a new rate observation.

        Args:
            rate: Annualized anchor rate
            timestamp: Time of the observation; must not precede the previous one

        Raises:
            ValueError: if timestamp goes backwards
        """
        if self._updated_at is not None and timestamp < self._updated_at:
            raise ValueError(
                f"Cannot move oracle time backwards: {timestamp} < {self._updated_at}"
            )
        self._rate = to_decimal(rate)
        self._updated_at = timestamp
        logger.debug("Anchor rate updated to %s at %s", self._rate, timestamp)

    def update_rate_wad(self, raw: int, timestamp: datetime) -> None:
        """Record a rate published as a 1e18 fixed-point integer."""
        self.update_rate(from_wad(raw), timestamp)

    def get_rate(self, as_of: datetime) -> Decimal:
        """
        Return the last observed rate.

        Raises:
            LookupError: if no rate was ever published
        """
        if self._rate is None:
            raise LookupError("no rate has been published")
        return self._rate

    def is_stale(self, as_of: datetime) -> bool:
        if self._updated_at is None:
            return True
        return as_of - self._updated_at > self.max_age

    def __repr__(self):
        return f"ManualRateOracle({self._rate}, updated_at={self._updated_at}, max_age={self.max_age})"
