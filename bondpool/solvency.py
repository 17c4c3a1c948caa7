"""
solvency.py - Solvency Guard

    solvent  <=>  cash + net_liabilities >= threshold * initial_cash

Read-only predicates over a PoolState. Nothing here mutates state, so the
guard can be evaluated at any time, including on a tentative post-state
that the engine has not committed yet.
"""

from __future__ import annotations
from decimal import Decimal

from .core import SOLVENCY_THRESHOLD, PoolState, SolvencyError


def solvency_floor(state: PoolState, threshold: Decimal = SOLVENCY_THRESHOLD) -> Decimal:
    """Minimum equity the pool must retain."""
    return threshold * state.initial_cash


def solvency_margin(state: PoolState, threshold: Decimal = SOLVENCY_THRESHOLD) -> Decimal:
    """Signed surplus of equity over the floor. Negative means insolvent."""
    return state.cash + state.net_liabilities - solvency_floor(state, threshold)


def check_solvency(state: PoolState, threshold: Decimal = SOLVENCY_THRESHOLD) -> bool:
    """True when cash + net_liabilities >= threshold * initial_cash."""
    return solvency_margin(state, threshold) >= 0


def assert_solvent(state: PoolState, threshold: Decimal = SOLVENCY_THRESHOLD) -> None:
    """
    Raises:
        SolvencyError: with the (negative) margin attached, if the state is insolvent
    """
    margin = solvency_margin(state, threshold)
    if margin < 0:
        raise SolvencyError(
            f"pool equity {state.cash + state.net_liabilities} below floor "
            f"{solvency_floor(state, threshold)} (margin {margin})",
            margin=margin,
        )
