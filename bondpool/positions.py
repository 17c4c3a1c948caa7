"""
positions.py - Position Lifecycle: Lend, Borrow, Redeem, Repay, Liquidate

This module implements the position state machine as pure functions. Each
compute_* function takes the (already decayed) pool state and explicit
inputs, checks preconditions, and returns a PoolTransition describing the
complete effect of the operation. Nothing is mutated here; PoolEngine
commits a transition only when every transfer settled and every
postcondition held.

STATE MACHINE:
==============

    (none) --lend-->   ACTIVE_LEND   --redeem-------> CLOSED
    (none) --borrow--> ACTIVE_BORROW --repay--------> CLOSED
                                     --liquidate----> CLOSED

CLOSED is terminal. The initial state is fixed by the operation that
created the position.

Key Formulas:
    lend:      deltaX = X - x'(y + amount),  deltaPV = deltaX * price
               cash += amount, X -= deltaPV
    borrow:    deltaX = x'(y - amount) - X,  deltaPV = deltaX * price
               cash -= amount, X += deltaPV, L += deltaPV
    redeem:    cash -= face, X += face
    repay:     repay = face (matured) or face * price(ttm, rate)
               cash += repay, X -= repay, L -= grown_liability
    liquidate: cash += collateral, X -= face, L -= grown_liability

where price = exp(-rate * ttm) with rate the blended pool rate before the
trade, and grown_liability = initial_pv * exp(rate * age_years).
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    PoolConfig, PoolState, Position, Transfer, PoolEvent,
    TradeDirection, TransferKind, EventType,
    ValidationError, AuthorizationError, OracleUnavailable, LiquidityError,
    PositionNotActive, PoolArithmeticError,
    quantize_wad, to_decimal,
)
from .decay import grown_liability, reduce_liabilities
from .invariant_math import delta_face_value, price, rate, time_to_maturity


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class TradeQuote:
    """
    Priced prospective trade against the pool.

    face_value is the amount owed at maturity, present_value the amount
    booked into the pool today.
    """
    direction: TradeDirection
    cash_amount: Decimal
    face_value: Decimal
    present_value: Decimal
    price: Decimal
    rate: Decimal
    time_to_maturity: Decimal
    maturity: datetime


@dataclass(frozen=True, slots=True)
class PoolTransition:
    """
    Complete, uncommitted effect of one pool operation.

    Attributes:
        state: Post-operation pool state
        position: The created or closed position (None for initialization)
        transfers: Asset transfers to settle, in order
        event: Event to emit once the operation commits
        enforce_solvency: Whether the solvency guard is a postcondition
    """
    state: PoolState
    position: Optional[Position]
    transfers: Tuple[Transfer, ...]
    event: PoolEvent
    enforce_solvency: bool = False


# ============================================================================
# PRECONDITIONS
# ============================================================================

def _require_account(account: str, role: str) -> None:
    if not account or not account.strip():
        raise ValidationError(f"{role} cannot be empty")


def _require_positive(value, name: str) -> Decimal:
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise ValidationError(f"{name}: {e}") from e
    if amount <= 0:
        raise ValidationError(f"{name} must be positive, got {amount}")
    return amount


def validate_maturity(now: datetime, maturity: datetime, config: PoolConfig) -> None:
    """
    Maturity must fall in [now + min_maturity, now + max_maturity], both inclusive.

    Raises:
        ValidationError: if maturity is outside the window
    """
    earliest = now + config.min_maturity
    latest = now + config.max_maturity
    if maturity < earliest:
        raise ValidationError(f"maturity {maturity} before earliest allowed {earliest}")
    if maturity > latest:
        raise ValidationError(f"maturity {maturity} after latest allowed {latest}")


def _require_active(position: Position) -> None:
    if not position.is_active:
        raise PositionNotActive(f"position {position.position_id} is not active")


def _require_direction(position: Position, direction: TradeDirection) -> None:
    if position.direction is not direction:
        raise ValidationError(
            f"position {position.position_id} is a {position.direction.value}, "
            f"not a {direction.value}"
        )


def _require_owner(position: Position, caller: str) -> None:
    if caller != position.owner:
        raise AuthorizationError(
            f"{caller} is not the owner of position {position.position_id}"
        )


def _require_fresh_oracle(oracle_stale: bool) -> None:
    if oracle_stale:
        raise OracleUnavailable("rate oracle is stale")


# ============================================================================
# QUOTING
# ============================================================================

def quote_trade(
    state: PoolState,
    config: PoolConfig,
    direction: TradeDirection,
    cash_amount: Decimal,
    maturity: datetime,
    now: datetime,
    anchor_rate: Decimal,
) -> TradeQuote:
    """
    Price a trade of cash_amount at maturity against state.

    PURE FUNCTION - the quote is only valid for exactly this state.

    Raises:
        ValidationError: if the trade rounds to nothing at fixed-point scale
        PoolArithmeticError: if the trade is outside the invariant's domain
    """
    t = time_to_maturity(now, maturity)
    current = rate(state.pv_bonds, state.cash, anchor_rate, config.kappa)
    face = quantize_wad(delta_face_value(
        state.pv_bonds, state.cash, cash_amount, t, anchor_rate, direction, config.kappa,
    ))
    p = price(t, current)
    present = quantize_wad(face * p)
    if face <= 0 or present <= 0:
        raise ValidationError(f"trade of {cash_amount} is below fixed-point resolution")
    return TradeQuote(
        direction=direction,
        cash_amount=cash_amount,
        face_value=face,
        present_value=present,
        price=p,
        rate=current,
        time_to_maturity=t,
        maturity=maturity,
    )


# ============================================================================
# INITIALIZATION
# ============================================================================

def compute_initialize(
    caller: str,
    initial_cash,
    now: datetime,
    initial_pv_bonds=None,
) -> PoolTransition:
    """
    Seed the pool with cash and an equal (or given) bond present value.

    With pv_bonds == cash the blended rate starts exactly at the anchor.
    """
    _require_account(caller, "caller")
    cash = _require_positive(initial_cash, "initial_cash")
    pv_bonds = cash if initial_pv_bonds is None else _require_positive(initial_pv_bonds, "initial_pv_bonds")
    cash = quantize_wad(cash)
    pv_bonds = quantize_wad(pv_bonds)

    state = PoolState(
        cash=cash,
        pv_bonds=pv_bonds,
        net_liabilities=Decimal("0"),
        initial_cash=cash,
        last_update_time=now,
    )
    event = PoolEvent(
        event_type=EventType.POOL_INITIALIZED,
        timestamp=now,
        account=caller,
        data={'initial_cash': cash, 'pv_bonds': pv_bonds},
    )
    return PoolTransition(
        state=state,
        position=None,
        transfers=(Transfer(TransferKind.PULL, caller, cash, "initialize"),),
        event=event,
    )


# ============================================================================
# ENTRY OPERATIONS
# ============================================================================

def compute_lend(
    state: PoolState,
    config: PoolConfig,
    owner: str,
    amount,
    maturity: datetime,
    now: datetime,
    anchor_rate: Decimal,
    oracle_stale: bool,
) -> PoolTransition:
    """
    Open an ACTIVE_LEND position.

    Preconditions (checked in order): owner, amount > 0, maturity window,
    fresh oracle. The solvency guard is a postcondition of this operation.

    Raises:
        ValidationError, OracleUnavailable, PoolArithmeticError
    """
    _require_account(owner, "owner")
    amount = quantize_wad(_require_positive(amount, "amount"))
    validate_maturity(now, maturity, config)
    _require_fresh_oracle(oracle_stale)

    quote = quote_trade(state, config, TradeDirection.LEND, amount, maturity, now, anchor_rate)
    position_id = state.next_position_id

    new_state = replace(
        state,
        cash=state.cash + amount,
        pv_bonds=state.pv_bonds - quote.present_value,
        next_position_id=position_id + 1,
    )
    position = Position(
        position_id=position_id,
        owner=owner,
        direction=TradeDirection.LEND,
        face_value=quote.face_value,
        maturity=maturity,
        collateral=Decimal("0"),
        initial_pv=quote.present_value,
        created_at=now,
    )
    event = PoolEvent(
        event_type=EventType.LEND_OPENED,
        timestamp=now,
        account=owner,
        position_id=position_id,
        data={
            'amount': amount,
            'face_value': quote.face_value,
            'present_value': quote.present_value,
            'price': quote.price,
            'rate': quote.rate,
        },
    )
    return PoolTransition(
        state=new_state,
        position=position,
        transfers=(Transfer(TransferKind.PULL, owner, amount, f"lend #{position_id}"),),
        event=event,
        enforce_solvency=True,
    )


def compute_borrow(
    state: PoolState,
    config: PoolConfig,
    owner: str,
    amount,
    collateral,
    maturity: datetime,
    now: datetime,
    anchor_rate: Decimal,
    oracle_stale: bool,
) -> PoolTransition:
    """
    Open an ACTIVE_BORROW position.

    Preconditions (checked in order): owner, amount > 0,
    collateral >= collateral_ratio * amount, maturity window, fresh oracle,
    pool cash >= amount. Solvency is not a postcondition of borrow.

    A borrow of exactly all pool cash passes the liquidity check but would
    leave the blended rate undefined (ln of X/0), so it fails closed.

    Raises:
        ValidationError, OracleUnavailable, LiquidityError, PoolArithmeticError
    """
    _require_account(owner, "owner")
    amount = quantize_wad(_require_positive(amount, "amount"))
    collateral = quantize_wad(_require_positive(collateral, "collateral"))
    required = config.collateral_ratio * amount
    if collateral < required:
        raise ValidationError(f"collateral {collateral} below required {required}")
    validate_maturity(now, maturity, config)
    _require_fresh_oracle(oracle_stale)
    if state.cash < amount:
        raise LiquidityError(f"pool cash {state.cash} cannot cover borrow of {amount}")
    if state.cash == amount:
        raise PoolArithmeticError("borrow would drain pool cash and leave the rate undefined")

    quote = quote_trade(state, config, TradeDirection.BORROW, amount, maturity, now, anchor_rate)
    position_id = state.next_position_id

    new_state = replace(
        state,
        cash=state.cash - amount,
        pv_bonds=state.pv_bonds + quote.present_value,
        net_liabilities=state.net_liabilities + quote.present_value,
        collateral_held=state.collateral_held + collateral,
        next_position_id=position_id + 1,
    )
    position = Position(
        position_id=position_id,
        owner=owner,
        direction=TradeDirection.BORROW,
        face_value=quote.face_value,
        maturity=maturity,
        collateral=collateral,
        initial_pv=quote.present_value,
        created_at=now,
    )
    event = PoolEvent(
        event_type=EventType.BORROW_OPENED,
        timestamp=now,
        account=owner,
        position_id=position_id,
        data={
            'amount': amount,
            'collateral': collateral,
            'face_value': quote.face_value,
            'present_value': quote.present_value,
            'price': quote.price,
            'rate': quote.rate,
        },
    )
    transfers = (
        Transfer(TransferKind.PULL, owner, collateral, f"borrow #{position_id} collateral"),
        Transfer(TransferKind.PUSH, owner, amount, f"borrow #{position_id} proceeds"),
    )
    return PoolTransition(new_state, position, transfers, event)


# ============================================================================
# EXIT OPERATIONS
# ============================================================================
#
# Exit operations never consult oracle staleness: they must stay available
# during a feed outage. Repay and liquidate still read the last known rate.

def compute_redeem(
    state: PoolState,
    position: Position,
    caller: str,
    now: datetime,
) -> PoolTransition:
    """
    Close an ACTIVE_LEND at or after maturity, paying exactly face value.

    The price at maturity is exactly 1, so payout == face_value and
    pv_bonds rises by exactly face_value. A payout equal to all pool cash
    is refused, since y == 0 leaves the blended rate undefined for every
    later operation.

    Raises:
        PositionNotActive, ValidationError, AuthorizationError, LiquidityError
    """
    _require_active(position)
    _require_direction(position, TradeDirection.LEND)
    _require_owner(position, caller)
    if now < position.maturity:
        raise ValidationError(
            f"position {position.position_id} matures at {position.maturity}, now {now}"
        )

    payout = position.face_value
    if state.cash < payout:
        raise LiquidityError(f"pool cash {state.cash} cannot cover redemption of {payout}")
    if state.cash == payout:
        raise LiquidityError(
            f"redemption of {payout} would drain pool cash and leave the rate undefined"
        )

    new_state = replace(
        state,
        cash=state.cash - payout,
        pv_bonds=state.pv_bonds + position.face_value,
    )
    event = PoolEvent(
        event_type=EventType.REDEEMED,
        timestamp=now,
        account=caller,
        position_id=position.position_id,
        data={'payout': payout, 'face_value': position.face_value},
    )
    return PoolTransition(
        state=new_state,
        position=position.close(now),
        transfers=(Transfer(TransferKind.PUSH, caller, payout, f"redeem #{position.position_id}"),),
        event=event,
    )


def compute_repay(
    state: PoolState,
    config: PoolConfig,
    position: Position,
    caller: str,
    now: datetime,
    anchor_rate: Decimal,
) -> PoolTransition:
    """
    Close an ACTIVE_BORROW by paying its present value (face value once matured).

    The full collateral is refunded whatever the repay size.

    Raises:
        PositionNotActive, ValidationError, AuthorizationError, PoolArithmeticError
    """
    _require_active(position)
    _require_direction(position, TradeDirection.BORROW)
    _require_owner(position, caller)

    blended = rate(state.pv_bonds, state.cash, anchor_rate, config.kappa)
    if now >= position.maturity:
        repay_amount = position.face_value
    else:
        ttm = time_to_maturity(now, position.maturity)
        repay_amount = quantize_wad(position.face_value * price(ttm, blended))
    current_pv = repay_amount
    released = grown_liability(position.initial_pv, position.created_at, now, blended)

    new_state = replace(
        state,
        cash=state.cash + repay_amount,
        pv_bonds=state.pv_bonds - current_pv,
        net_liabilities=reduce_liabilities(state.net_liabilities, released),
        collateral_held=state.collateral_held - position.collateral,
    )
    event = PoolEvent(
        event_type=EventType.REPAID,
        timestamp=now,
        account=caller,
        position_id=position.position_id,
        data={
            'repay_amount': repay_amount,
            'collateral_returned': position.collateral,
            'released_liability': released,
            'rate': blended,
        },
    )
    transfers = (
        Transfer(TransferKind.PULL, caller, repay_amount, f"repay #{position.position_id}"),
        Transfer(TransferKind.PUSH, caller, position.collateral, f"repay #{position.position_id} collateral"),
    )
    return PoolTransition(new_state, position.close(now), transfers, event)


def compute_liquidate(
    state: PoolState,
    config: PoolConfig,
    position: Position,
    caller: str,
    now: datetime,
    anchor_rate: Decimal,
) -> PoolTransition:
    """
    Seize the collateral of an ACTIVE_BORROW left unpaid past its grace period.

    Anyone may liquidate, strictly after maturity + grace_period. The
    penalty and total_owed are reported in the event only; nothing beyond
    the collateral is collected from anyone.

    Raises:
        PositionNotActive, ValidationError, PoolArithmeticError
    """
    _require_account(caller, "caller")
    _require_active(position)
    _require_direction(position, TradeDirection.BORROW)
    deadline = position.maturity + config.grace_period
    if now <= deadline:
        raise ValidationError(
            f"position {position.position_id} cannot be liquidated until after {deadline}"
        )

    blended = rate(state.pv_bonds, state.cash, anchor_rate, config.kappa)
    debt = position.face_value
    penalty = quantize_wad(debt * config.liquidation_penalty)
    seized = position.collateral
    released = grown_liability(position.initial_pv, position.created_at, now, blended)

    new_state = replace(
        state,
        cash=state.cash + seized,
        collateral_held=state.collateral_held - seized,
        pv_bonds=state.pv_bonds - position.face_value,
        net_liabilities=reduce_liabilities(state.net_liabilities, released),
    )
    event = PoolEvent(
        event_type=EventType.LIQUIDATED,
        timestamp=now,
        account=caller,
        position_id=position.position_id,
        data={
            'debt': debt,
            'penalty': penalty,
            'total_owed': debt + penalty,
            'collateral_seized': seized,
            'released_liability': released,
        },
    )
    return PoolTransition(new_state, position.close(now), (), event)
