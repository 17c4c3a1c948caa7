"""
Core types and pure helpers for the bond pool.

This module provides the foundational data structures and protocols for the pool:
1. Protocols: RateOracle and FungibleAsset, the two injected collaborators
2. Immutable data structures: PoolConfig, PoolState, Position, Transfer, PoolEvent
3. Exceptions: PoolError and the domain-specific error taxonomy
4. Fixed-point helpers: Decimal conversion and 1e18 (WAD) scaling

All functions in this module are pure. Nothing here mutates pool state;
the only mutable references live in PoolEngine (pool.py).
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, Mapping, Optional, Protocol, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Pool arithmetic requires deterministic Decimal results. The global context
# is configured once at import time.
#
#   - prec=50: enough headroom for 18 fractional digits on balances up to 1e30
#   - rounding=ROUND_HALF_EVEN: banker's rounding (unbiased)
#   - InvalidOperation, DivisionByZero and Overflow stay trapped so that
#     domain errors raise instead of producing NaN or Infinity
#
_POOL_DECIMAL_CONTEXT = getcontext()
_POOL_DECIMAL_CONTEXT.prec = 50
_POOL_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale: every booked amount carries 18 fractional digits.
FIXED_POINT_SCALE = 10 ** 18
WAD = Decimal(1).scaleb(-18)

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)

# Annualized rate sensitivity of the invariant.
KAPPA = Decimal("0.02")

MIN_MATURITY = timedelta(days=30)
MAX_MATURITY = timedelta(days=365)
COLLATERAL_RATIO = Decimal("1.5")
SOLVENCY_THRESHOLD = Decimal("0.99")
GRACE_PERIOD = timedelta(hours=24)
LIQUIDATION_PENALTY = Decimal("0.05")
ORACLE_MAX_AGE = timedelta(hours=1)

# Account identities used by the pool and by asset issuance.
POOL_ACCOUNT = "pool"
SYSTEM_ACCOUNT = "system"

# Liability mismatches below this are rounding noise and are not reported.
LIABILITY_DUST = Decimal("1e-9")


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PoolError(Exception):
    """Base exception for all pool-related errors."""
    pass


class ValidationError(PoolError):
    """Raised when an amount, maturity, identity or position is invalid. No side effects."""
    pass


class PositionNotFound(ValidationError):
    """Raised when a position id was never issued by the pool."""
    pass


class PositionNotActive(ValidationError):
    """Raised when a terminal operation targets a position that is already closed."""
    pass


class AuthorizationError(PoolError):
    """Raised for a wrong caller, or an uninitialized / already-initialized pool."""
    pass


class OracleUnavailable(PoolError):
    """Raised when the rate feed is stale. Blocks lend and borrow only."""
    pass


class LiquidityError(PoolError):
    """Raised when the pool does not hold enough cash for a payout."""
    pass


class SolvencyError(PoolError):
    """Raised when the solvency postcondition fails after a lend."""

    def __init__(self, message: str, margin: Optional[Decimal] = None):
        self.margin = margin
        super().__init__(message)


class PoolArithmeticError(PoolError, ArithmeticError):
    """Raised on overflow, underflow or invalid domain input. Fails closed, never clamps."""
    pass


class TransferError(PoolError):
    """Raised by the fungible-asset collaborator when a transfer cannot settle."""
    pass


class InsufficientFunds(TransferError):
    """Raised when a transfer would take an account balance below zero."""
    pass


class AccountNotRegistered(TransferError):
    """Raised when a transfer names an account unknown to the asset ledger."""
    pass


class ReentrancyError(PoolError):
    """Raised when a call enters the engine while another of its operations is running."""
    pass


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def to_decimal(value: Any) -> Decimal:
    """
    Convert a number to Decimal via its string form.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion. NaN and infinities are rejected.
    """
    if isinstance(value, bool):
        raise ValueError("boolean is not a numeric amount")
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    if not value.is_finite():
        raise ValueError(f"amount must be finite, got {value}")
    return value


def quantize_wad(value: Decimal) -> Decimal:
    """Round a value to the 1e18 fixed-point grid (ROUND_HALF_EVEN)."""
    try:
        return value.quantize(WAD, rounding=ROUND_HALF_EVEN)
    except InvalidOperation as e:
        raise PoolArithmeticError(f"value {value} exceeds fixed-point range") from e


def to_wad(value: Any) -> int:
    """Scale a Decimal amount to a 1e18 fixed-point integer."""
    return int(quantize_wad(to_decimal(value)).scaleb(18))


def from_wad(raw: int) -> Decimal:
    """Convert a 1e18 fixed-point integer back to a Decimal amount."""
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"fixed-point value must be int, got {type(raw).__name__}")
    return Decimal(raw).scaleb(-18)


# ============================================================================
# ENUMS
# ============================================================================

class TradeDirection(Enum):
    """
    Side of a trade against the pool.

    LEND:   cash flows into the pool, bond present value leaves it.
    BORROW: cash flows out of the pool, bond present value and liability enter it.
    """
    LEND = "lend"
    BORROW = "borrow"


class PositionStatus(Enum):
    """Lifecycle state of a position. CLOSED is terminal."""
    ACTIVE_LEND = "active_lend"
    ACTIVE_BORROW = "active_borrow"
    CLOSED = "closed"


class TransferKind(Enum):
    """PULL moves funds from a counterparty into the pool, PUSH pays them out."""
    PULL = "pull"
    PUSH = "push"


class EventType(Enum):
    """One member per successful pool operation."""
    POOL_INITIALIZED = "PoolInitialized"
    LEND_OPENED = "LendOpened"
    BORROW_OPENED = "BorrowOpened"
    REDEEMED = "Redeemed"
    REPAID = "Repaid"
    LIQUIDATED = "Liquidated"


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolConfig:
    """
    Fixed pool parameters, set once when the engine is built.

    There is no setter: governance of parameters is out of scope, so a
    running engine always sees the values it was constructed with.
    """
    kappa: Decimal = KAPPA
    min_maturity: timedelta = MIN_MATURITY
    max_maturity: timedelta = MAX_MATURITY
    collateral_ratio: Decimal = COLLATERAL_RATIO
    solvency_threshold: Decimal = SOLVENCY_THRESHOLD
    grace_period: timedelta = GRACE_PERIOD
    liquidation_penalty: Decimal = LIQUIDATION_PENALTY
    oracle_max_age: timedelta = ORACLE_MAX_AGE

    def __post_init__(self):
        for name in ('kappa', 'collateral_ratio', 'solvency_threshold', 'liquidation_penalty'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

        if self.kappa <= 0:
            raise ValueError(f"kappa must be positive, got {self.kappa}")
        if self.min_maturity <= timedelta(0):
            raise ValueError("min_maturity must be positive")
        if self.max_maturity < self.min_maturity:
            raise ValueError("max_maturity must not be shorter than min_maturity")
        if self.collateral_ratio < 1:
            raise ValueError(f"collateral_ratio must be at least 1, got {self.collateral_ratio}")
        if self.solvency_threshold <= 0:
            raise ValueError(f"solvency_threshold must be positive, got {self.solvency_threshold}")
        if self.grace_period < timedelta(0):
            raise ValueError("grace_period cannot be negative")
        if self.liquidation_penalty < 0:
            raise ValueError(f"liquidation_penalty cannot be negative, got {self.liquidation_penalty}")
        if self.oracle_max_age <= timedelta(0):
            raise ValueError("oracle_max_age must be positive")


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Snapshot of the pool singleton.

    Attributes:
        cash: Liquid balance of the underlying asset (y).
        pv_bonds: Present value of all bond claims outstanding (X), > 0.
        net_liabilities: Present value of outstanding borrow obligations (L).
        initial_cash: Capitalization at initialization (y0), used only for solvency.
        last_update_time: When liability decay was last applied.
        next_position_id: Next id to issue. Monotonic, never reused.
        collateral_held: Borrower collateral held by the pool outside of cash.

    Each operation produces a NEW instance; the engine swaps its reference
    only when the whole operation commits.
    """
    cash: Decimal
    pv_bonds: Decimal
    net_liabilities: Decimal
    initial_cash: Decimal
    last_update_time: datetime
    next_position_id: int = 1
    collateral_held: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ('cash', 'pv_bonds', 'net_liabilities', 'initial_cash', 'collateral_held'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))

    @property
    def equity(self) -> Decimal:
        """cash + net_liabilities, the quantity the solvency guard inspects."""
        return self.cash + self.net_liabilities


@dataclass(frozen=True, slots=True)
class Position:
    """
    A single lend or borrow, immutable except for one terminal transition.

    Attributes:
        position_id: Id issued by the pool.
        owner: Opaque identity controlling the position.
        direction: LEND or BORROW.
        face_value: Amount owed at maturity (x).
        maturity: When face_value falls due.
        collateral: Amount held against a borrow (0 for lends).
        initial_pv: Present value booked into the pool at creation.
        created_at: Creation time, used to reconstruct liability growth.
        is_active: True until redeem, repay or liquidate.
        closed_at: When the terminal transition happened.
    """
    position_id: int
    owner: str
    direction: TradeDirection
    face_value: Decimal
    maturity: datetime
    collateral: Decimal
    initial_pv: Decimal
    created_at: datetime
    is_active: bool = True
    closed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.owner or not self.owner.strip():
            raise ValueError("Position owner cannot be empty")
        for name in ('face_value', 'collateral', 'initial_pv'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, to_decimal(value))
        if self.face_value <= 0:
            raise ValueError(f"face_value must be positive, got {self.face_value}")
        if self.initial_pv <= 0:
            raise ValueError(f"initial_pv must be positive, got {self.initial_pv}")
        if self.collateral < 0:
            raise ValueError(f"collateral cannot be negative, got {self.collateral}")
        if self.direction is TradeDirection.LEND and self.collateral != 0:
            raise ValueError("lend positions carry no collateral")

    @property
    def is_borrow(self) -> bool:
        return self.direction is TradeDirection.BORROW

    @property
    def status(self) -> PositionStatus:
        if not self.is_active:
            return PositionStatus.CLOSED
        if self.is_borrow:
            return PositionStatus.ACTIVE_BORROW
        return PositionStatus.ACTIVE_LEND

    def close(self, at: datetime) -> Position:
        """Return the closed version of this position. A closed position never reopens."""
        if not self.is_active:
            raise PositionNotActive(f"position {self.position_id} is not active")
        return replace(self, is_active=False, closed_at=at)

    def __repr__(self) -> str:
        return (
            f"Position(#{self.position_id} {self.direction.value} {self.face_value} "
            f"@ {self.maturity.isoformat()} owner={self.owner} {self.status.value})"
        )


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    Instruction to move the underlying asset between a counterparty and the pool.

    Attributes:
        kind: PULL (counterparty -> pool) or PUSH (pool -> counterparty).
        account: The counterparty.
        amount: Exact amount, strictly positive.
        memo: Short label for the transfer log.
    """
    kind: TransferKind
    account: str
    amount: Decimal
    memo: str

    def __post_init__(self):
        if not self.account or not self.account.strip():
            raise ValueError("Transfer account cannot be empty")
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', to_decimal(self.amount))
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")

    def __repr__(self) -> str:
        arrow = "->pool" if self.kind is TransferKind.PULL else "pool->"
        return f"Transfer({self.amount} {arrow} {self.account}: {self.memo})"


@dataclass(frozen=True, slots=True)
class PoolEvent:
    """
    Observational record of one successful operation.

    Events never feed back into control flow. data holds the operation's
    economically relevant deltas keyed by name.
    """
    event_type: EventType
    timestamp: datetime
    account: str
    position_id: Optional[int] = None
    data: Mapping[str, Decimal] = field(default_factory=dict)

    def __repr__(self) -> str:
        target = f"#{self.position_id}" if self.position_id is not None else "pool"
        return f"PoolEvent({self.event_type.value} {target} by {self.account} at {self.timestamp.isoformat()})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class RateOracle(Protocol):
    """
    Source of the anchor rate r*.

    Implementations must keep returning their last rate while stale; the
    engine decides which operations may proceed on a stale feed.
    """

    def get_rate(self, as_of: datetime) -> Decimal:
        """Return the anchor rate (annualized, e.g. Decimal("0.05") for 5%)."""
        ...

    def is_stale(self, as_of: datetime) -> bool:
        """Return True once the last update is older than the allowed age."""
        ...


@runtime_checkable
class FungibleAsset(Protocol):
    """
    Exact-amount transfer interface for the underlying asset.

    Any failure must raise (TransferError) and leave balances untouched.
    """

    def transfer_from(self, payer: str, pool: str, amount: Decimal) -> None:
        """Move amount from payer into the pool account."""
        ...

    def transfer(self, pool: str, payee: str, amount: Decimal) -> None:
        """Move amount from the pool account to payee."""
        ...
