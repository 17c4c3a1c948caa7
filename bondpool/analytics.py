"""
analytics.py - Curve and Verification Analytics for the Bond Pool

Float (numpy) counterparts of the Decimal invariant math, for work that
spans many tenors or many snapshots at once. Nothing here books amounts;
the pool itself only ever uses invariant_math.py.

Provides:
- Discount curve over tenors (discount_curve)
- Quote curve for one cash amount across tenors (quote_curve)
- Independent root-finding solution of the invariant (solve_face_value_numeric),
  used to cross-check the closed-form delta_face_value
- Invariant drift across a sequence of pool snapshots (invariant_drift)

Convention (as in invariant_math.py):
- Tenors in years on a 365-day year
- Rates annualized, continuously compounded
- Public functions take and return Decimal; _*_float helpers take floats
  or numpy arrays
"""

from __future__ import annotations
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
from scipy.optimize import brentq

from .core import KAPPA, PoolState, TradeDirection, PoolArithmeticError

Numeric = Union[float, np.ndarray]

# Quantization applied when float results are handed back as Decimal.
_FLOAT_QUANTUM = Decimal("0.000000000001")


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(float(value))).quantize(_FLOAT_QUANTUM, rounding=ROUND_HALF_EVEN)


def _validate_tenors(tenors: np.ndarray) -> None:
    if not np.all(np.isfinite(tenors)) or np.any(tenors < 0):
        raise ValueError("tenors must be finite and non-negative")


# ============================================================================
# INVARIANT TERMS (float)
# ============================================================================

def _alpha_float(t: Numeric, kappa: float) -> Numeric:
    return 1.0 / (1.0 + kappa * np.asarray(t, dtype=float))


def _k_factor_float(t: Numeric, anchor_rate: float, kappa: float) -> Numeric:
    t = np.asarray(t, dtype=float)
    return np.exp(-t * anchor_rate * _alpha_float(t, kappa))


def _invariant_float(x: Numeric, y: Numeric, t: Numeric, anchor_rate: float, kappa: float) -> Numeric:
    a = _alpha_float(t, kappa)
    return _k_factor_float(t, anchor_rate, kappa) * np.power(x, a) + np.power(y, a)


def _rate_float(x: float, y: float, anchor_rate: float, kappa: float) -> float:
    if x <= 0 or y <= 0:
        raise PoolArithmeticError(f"rate undefined for X={x}, y={y}")
    return kappa * np.log(x / y) + anchor_rate


# ============================================================================
# DISCOUNT CURVE
# ============================================================================

def _discount_curve_float(r: float, tenors: np.ndarray) -> np.ndarray:
    """exp(-r*t) capped at par, vectorized over tenors."""
    return np.minimum(np.exp(-r * tenors), 1.0)


def discount_curve(r: Decimal, tenors: Sequence[Decimal]) -> List[Decimal]:
    """
    Bond prices for a unit of face value at each tenor.

    Args:
        r: Annualized rate (typically the pool's blended rate)
        tenors: Years to maturity

    Returns:
        One price per tenor, each in (0, 1]
    """
    t = np.asarray([float(x) for x in tenors], dtype=float)
    _validate_tenors(t)
    return [_to_decimal(p) for p in _discount_curve_float(float(r), t)]


# ============================================================================
# QUOTE CURVE
# ============================================================================

def _face_value_float(
    x: float,
    y: float,
    cash_amount: float,
    tenors: np.ndarray,
    anchor_rate: float,
    direction: TradeDirection,
    kappa: float,
) -> np.ndarray:
    """Closed-form face value delta, vectorized over tenors."""
    a = _alpha_float(tenors, kappa)
    k = _k_factor_float(tenors, anchor_rate, kappa)
    c = k * np.power(x, a) + np.power(y, a)
    y_new = y + cash_amount if direction is TradeDirection.LEND else y - cash_amount
    if y_new < 0:
        raise PoolArithmeticError(f"cash delta {cash_amount} exceeds pool cash {y}")
    residual = c - np.power(y_new, a)
    if np.any(residual <= 0):
        raise PoolArithmeticError(f"trade of {cash_amount} exceeds invariant depth")
    x_new = np.power(residual / k, 1.0 / a)
    return x - x_new if direction is TradeDirection.LEND else x_new - x


def quote_curve(
    state: PoolState,
    anchor_rate: Decimal,
    cash_amount: Decimal,
    tenors: Sequence[Decimal],
    direction: TradeDirection = TradeDirection.LEND,
    kappa: Decimal = KAPPA,
) -> Dict[str, np.ndarray]:
    """
    Price the same cash amount at every tenor against one pool state.

    Returns:
        Dict of float arrays aligned with tenors:
        - 'tenor': years to maturity
        - 'face_value': face value delta
        - 'price': discount factor at the blended pool rate
        - 'present_value': face_value * price
        - 'yield': continuously compounded ln(face_value / cash_amount) / tenor
          (nan at tenor 0)
    """
    t = np.asarray([float(x) for x in tenors], dtype=float)
    _validate_tenors(t)
    x, y = float(state.pv_bonds), float(state.cash)
    amount, r_star, k = float(cash_amount), float(anchor_rate), float(kappa)
    if amount <= 0:
        raise ValueError("cash_amount must be positive")

    face = _face_value_float(x, y, amount, t, r_star, direction, k)
    prices = _discount_curve_float(_rate_float(x, y, r_star, k), t)
    with np.errstate(divide='ignore', invalid='ignore'):
        implied = np.where(t > 0, np.log(face / amount) / t, np.nan)
    return {
        'tenor': t,
        'face_value': face,
        'price': prices,
        'present_value': face * prices,
        'yield': implied,
    }


# ============================================================================
# NUMERIC SOLVER
# ============================================================================

def solve_face_value_numeric(
    x: Decimal,
    y: Decimal,
    cash_amount: Decimal,
    t: Decimal,
    anchor_rate: Decimal,
    direction: TradeDirection,
    kappa: Decimal = KAPPA,
) -> Decimal:
    """
    Solve K*x'^alpha + y'^alpha = C for x' by bracketing root search.

    Independent of the closed form in invariant_math.delta_face_value;
    the two agree to float precision on any trade inside the invariant's
    domain. Returns the same positive magnitude.

    Raises:
        PoolArithmeticError: if no root exists in the bracket
    """
    xf, yf, amount = float(x), float(y), float(cash_amount)
    tf, r_star, k = float(t), float(anchor_rate), float(kappa)
    if xf <= 0 or amount <= 0:
        raise PoolArithmeticError("bond side and cash delta must be positive")

    a = float(_alpha_float(tf, k))
    kf = float(_k_factor_float(tf, r_star, k))
    c = kf * xf ** a + yf ** a
    y_new = yf + amount if direction is TradeDirection.LEND else yf - amount
    if y_new < 0:
        raise PoolArithmeticError(f"cash delta {cash_amount} exceeds pool cash {y}")

    def residual(x_new: float) -> float:
        return kf * x_new ** a + y_new ** a - c

    if direction is TradeDirection.LEND:
        lower, upper = 0.0, xf
    else:
        lower, upper = xf, (c / kf) ** (1.0 / a)
    if residual(lower) * residual(upper) > 0:
        raise PoolArithmeticError(f"trade of {cash_amount} exceeds invariant depth")

    root = brentq(residual, lower, upper, xtol=1e-12, rtol=1e-15, maxiter=200)
    delta = xf - root if direction is TradeDirection.LEND else root - xf
    return _to_decimal(delta)


# ============================================================================
# INVARIANT DRIFT
# ============================================================================

def invariant_drift(
    snapshots: Sequence[Tuple[Decimal, Decimal]],
    t: Decimal,
    anchor_rate: Decimal,
    kappa: Decimal = KAPPA,
) -> np.ndarray:
    """
    Relative drift of C across pool snapshots, at one reference tenor.

    Args:
        snapshots: (pv_bonds, cash) pairs in chronological order
        t: Reference time to maturity in years

    Returns:
        Array of |C_i - C_0| / C_0, one per snapshot (first element 0)
    """
    if not snapshots:
        raise ValueError("at least one snapshot required")
    xs = np.asarray([float(s[0]) for s in snapshots], dtype=float)
    ys = np.asarray([float(s[1]) for s in snapshots], dtype=float)
    if np.any(xs <= 0) or np.any(ys < 0):
        raise PoolArithmeticError("snapshots must have positive pv_bonds and non-negative cash")
    c = _invariant_float(xs, ys, float(t), float(anchor_rate), float(kappa))
    return np.abs(c - c[0]) / c[0]
