"""
bondpool - Single-Pool Fixed-Income Market Maker

Lenders deposit cash for a bond of fixed face value at a chosen maturity;
borrowers post collateral and receive cash against a fixed repayment. All
maturities share one pool that conserves present value.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from bondpool import PoolEngine, AssetLedger, StaticRateOracle

    usd = AssetLedger("USD")
    for account in ("pool", "admin", "alice"):
        usd.register_account(account)
    usd.mint("admin", Decimal("100000"))
    usd.mint("alice", Decimal("10000"))

    engine = PoolEngine(usd, StaticRateOracle("0.05"), admin="admin",
                        initial_time=datetime(2025, 1, 1))
    engine.initialize("admin", Decimal("100000"))

    # Lend for 90 days
    position_id = engine.lend("alice", Decimal("10000"), datetime(2025, 4, 1))

    # Redeem at maturity
    engine.advance_time(datetime(2025, 4, 1))
    payout = engine.redeem("alice", position_id)
"""

# Core types
from .core import (
    PoolConfig,
    PoolState,
    Position,
    Transfer,
    PoolEvent,
    TradeDirection,
    PositionStatus,
    TransferKind,
    EventType,
    RateOracle,
    FungibleAsset,
    PoolError,
    ValidationError,
    PositionNotFound,
    PositionNotActive,
    AuthorizationError,
    OracleUnavailable,
    LiquidityError,
    SolvencyError,
    PoolArithmeticError,
    TransferError,
    InsufficientFunds,
    AccountNotRegistered,
    ReentrancyError,
    to_decimal,
    quantize_wad,
    to_wad,
    from_wad,
    FIXED_POINT_SCALE,
    WAD,
    SECONDS_PER_YEAR,
    KAPPA,
    MIN_MATURITY,
    MAX_MATURITY,
    COLLATERAL_RATIO,
    SOLVENCY_THRESHOLD,
    GRACE_PERIOD,
    LIQUIDATION_PENALTY,
    ORACLE_MAX_AGE,
    POOL_ACCOUNT,
    SYSTEM_ACCOUNT,
)

# Invariant math
from .invariant_math import (
    year_fraction,
    time_to_maturity,
    alpha,
    k_factor,
    invariant_constant,
    relative_drift,
    rate,
    price,
    delta_face_value,
)

# Liability decay
from .decay import (
    calculate_liability_decay,
    apply_liability_decay,
    grown_liability,
)

# Solvency guard
from .solvency import (
    check_solvency,
    solvency_margin,
    assert_solvent,
)

# Position lifecycle
from .positions import (
    TradeQuote,
    PoolTransition,
    quote_trade,
    compute_initialize,
    compute_lend,
    compute_borrow,
    compute_redeem,
    compute_repay,
    compute_liquidate,
)

# Engine
from .pool import PoolEngine

# Collaborators
from .asset_ledger import AssetLedger, AssetMove, TransferRecord
from .rate_oracle import StaticRateOracle, ManualRateOracle

# Analytics
from .analytics import (
    discount_curve,
    quote_curve,
    solve_face_value_numeric,
    invariant_drift,
)

__version__ = "0.1.0"
