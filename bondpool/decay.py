"""
decay.py - Liability Time-Decay for Outstanding Borrows

Outstanding borrow obligations are booked at present value. As time passes
that present value grows toward face value; this module advances it.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*, grown_liability, reduce_liabilities):
   - Take every input explicitly (state, rate, staleness flag, timestamps)
   - No oracle access, no hidden state

2. ADAPTER FUNCTION (apply_liability_decay):
   - Reads the oracle once, then delegates to calculate_liability_decay()
   - Invoked by the engine as the first step of every mutating operation

Key Formulas:
    growth          = exp(rate(X, y, r*) * elapsed_years)
    L'              = L * growth
    grown_liability = initial_pv * exp(rate * (now - created_at)_years)

Both formulas use the pool's CURRENT blended rate as a stand-in for the
average rate over the window. This is an approximation, not a path-exact
integral: when the rate moved during the window the result is off by the
difference between the current and the time-averaged rate.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
import logging

from .core import (
    KAPPA, LIABILITY_DUST,
    PoolState, RateOracle, quantize_wad,
)
from .invariant_math import growth_factor, rate, year_fraction

logger = logging.getLogger(__name__)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_liability_decay(
    state: PoolState,
    now: datetime,
    anchor_rate: Decimal,
    oracle_stale: bool,
    kappa: Decimal = KAPPA,
) -> PoolState:
    """
    Advance net liabilities from state.last_update_time to now.

    PURE FUNCTION - All inputs explicit, returns a new PoolState.

    Cases:
        - no time elapsed: state returned unchanged
        - net_liabilities == 0: nothing to compound, only the timestamp moves,
          so a later borrow does not compound over a window with no liability
        - oracle stale: the timestamp moves without compounding; growth for the
          stale window is dropped, not caught up on the next fresh update
        - otherwise: L *= exp(rate * elapsed_years)

    Raises:
        PoolArithmeticError: if the blended rate is undefined (X or y <= 0)
    """
    if now <= state.last_update_time:
        return state

    if state.net_liabilities == 0:
        return replace(state, last_update_time=now)

    if oracle_stale:
        logger.debug(
            "Oracle stale, skipping liability growth from %s to %s",
            state.last_update_time, now,
        )
        return replace(state, last_update_time=now)

    elapsed = year_fraction(state.last_update_time, now)
    blended = rate(state.pv_bonds, state.cash, anchor_rate, kappa)
    grown = quantize_wad(state.net_liabilities * growth_factor(blended, elapsed))

    logger.debug(
        "Liability decay: %s -> %s over %s years at rate %s",
        state.net_liabilities, grown, elapsed, blended,
    )
    return replace(state, net_liabilities=grown, last_update_time=now)


def grown_liability(
    initial_pv: Decimal,
    created_at: datetime,
    now: datetime,
    blended_rate: Decimal,
) -> Decimal:
    """
    Reconstruct what one position's booked present value has grown to.

    PURE FUNCTION.

        grown = initial_pv * exp(blended_rate * (now - created_at)_years)

    Uses the current blended rate as the proxy average since creation.
    """
    years = year_fraction(created_at, now)
    if years < 0:
        years = Decimal("0")
    return quantize_wad(initial_pv * growth_factor(blended_rate, years))


def reduce_liabilities(net_liabilities: Decimal, released: Decimal) -> Decimal:
    """
    Remove one position's grown liability from the pooled figure.

    The pooled figure and the per-position reconstruction are both
    approximations and can disagree. The pooled figure never goes negative:
    any excess is dropped, with a warning when it exceeds rounding dust.
    """
    remaining = net_liabilities - released
    if remaining >= 0:
        return remaining
    if -remaining > LIABILITY_DUST:
        logger.warning(
            "Released liability %s exceeds pooled liabilities %s; flooring at zero",
            released, net_liabilities,
        )
    return Decimal("0")


# ============================================================================
# ADAPTER FUNCTION
# ============================================================================

def apply_liability_decay(
    state: PoolState,
    oracle: RateOracle,
    now: datetime,
    kappa: Decimal = KAPPA,
) -> PoolState:
    """
    Read the oracle once and advance liabilities to now.

    The oracle is only consulted when there is something to compound.
    """
    if now <= state.last_update_time or state.net_liabilities == 0:
        return calculate_liability_decay(state, now, Decimal("0"), False, kappa)
    stale = oracle.is_stale(now)
    anchor = Decimal("0") if stale else oracle.get_rate(now)
    return calculate_liability_decay(state, now, anchor, stale, kappa)
