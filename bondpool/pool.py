"""
pool.py - Pool State Engine

The PoolEngine is the externally callable surface of the bond pool and the
only object that holds mutable pool state.

Key responsibilities:
    - Owns the PoolState singleton and the id-keyed Position table
    - Serializes every mutating call under one exclusive lock
    - Runs liability decay first, then the pure lifecycle computation
    - Settles asset transfers through a journal, compensating on failure
    - Enforces postconditions (solvency where required, positive pv_bonds)
    - Commits state, position and event together, or nothing at all

Operation pipeline:

    lock -> decay (working copy) -> compute_* (validation + trade math)
         -> settle transfers -> postconditions -> commit -> emit event

Any exception before commit leaves the committed state untouched; transfers
already issued for the operation are reversed in the opposite order.
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import logging
import threading

from .core import (
    POOL_ACCOUNT,
    PoolConfig, PoolState, Position, Transfer, PoolEvent,
    TradeDirection, TransferKind,
    RateOracle, FungibleAsset,
    PoolError, ValidationError, AuthorizationError, OracleUnavailable,
    PositionNotFound, PoolArithmeticError, ReentrancyError, TransferError,
    to_decimal,
)
from .decay import apply_liability_decay
from .invariant_math import rate
from .positions import (
    PoolTransition, TradeQuote,
    compute_initialize, compute_lend, compute_borrow,
    compute_redeem, compute_repay, compute_liquidate,
    quote_trade,
)
from .solvency import assert_solvent, check_solvency, solvency_margin

logger = logging.getLogger(__name__)

EventListener = Callable[[PoolEvent], None]


class PoolEngine:
    """
    Single-pool fixed-income market maker.

    Lenders deposit cash for a bond of fixed face value at a chosen maturity;
    borrowers post collateral and receive cash against a fixed repayment.
    All maturities share one pool that conserves present value.

    Thread Safety:
        Mutating calls hold an exclusive lock for their whole duration and
        run one at a time. A call that re-enters the engine from inside a
        running operation (for example from an asset callback) raises
        ReentrancyError instead of deadlocking.

    Example:
        usd = AssetLedger("USD")
        for account in ("pool", "admin", "alice"):
            usd.register_account(account)
        usd.mint("admin", Decimal("100000"))
        usd.mint("alice", Decimal("10000"))

        engine = PoolEngine(usd, StaticRateOracle("0.05"), admin="admin",
                            initial_time=datetime(2025, 1, 1))
        engine.initialize("admin", Decimal("100000"))
        position_id = engine.lend("alice", Decimal("10000"), datetime(2025, 4, 1))
    """

    def __init__(
        self,
        asset: FungibleAsset,
        oracle: RateOracle,
        config: Optional[PoolConfig] = None,
        admin: str = "admin",
        pool_account: str = POOL_ACCOUNT,
        initial_time: Optional[datetime] = None,
    ):
        """
        Create an uninitialized pool.

        Args:
            asset: Fungible-asset collaborator for the underlying
            oracle: Anchor rate source
            config: Fixed pool parameters (default: PoolConfig())
            admin: The only identity allowed to initialize the pool
            pool_account: Account holding pool cash and collateral
            initial_time: Starting logical time (default: 1970-01-01)
        """
        if not admin or not admin.strip():
            raise ValueError("admin cannot be empty")
        if not pool_account or not pool_account.strip():
            raise ValueError("pool_account cannot be empty")
        self.asset = asset
        self.oracle = oracle
        self.config = config or PoolConfig()
        self.admin = admin
        self.pool_account = pool_account
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._state: Optional[PoolState] = None
        self._positions: Dict[int, Position] = {}
        self.event_log: List[PoolEvent] = []
        self._listeners: List[EventListener] = []
        self._lock = threading.Lock()
        self._lock_owner: Optional[int] = None

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the pool."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the pool's logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._exclusive():
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # EXCLUSIVE ACCESS
    # ========================================================================

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold the engine lock; fail fast on re-entry from the owning thread."""
        me = threading.get_ident()
        if self._lock_owner == me:
            raise ReentrancyError("pool operation already in progress")
        self._lock.acquire()
        self._lock_owner = me
        try:
            yield
        finally:
            self._lock_owner = None
            self._lock.release()

    # ========================================================================
    # QUERY SURFACE (read-only)
    # ========================================================================

    @property
    def is_initialized(self) -> bool:
        return self._state is not None

    def get_pool_state(self) -> PoolState:
        """
        Committed pool state. PoolState is frozen, so the snapshot is safe to keep.

        Raises:
            AuthorizationError: if the pool is not initialized
        """
        return self._require_state()

    def get_position(self, position_id: int) -> Position:
        """
        Raises:
            PositionNotFound: if the id was never issued
        """
        try:
            return self._positions[position_id]
        except KeyError:
            raise PositionNotFound(f"position {position_id} does not exist") from None

    def positions_of(self, owner: str) -> List[Position]:
        """All positions (active and closed) owned by owner, in id order."""
        return [p for _, p in sorted(self._positions.items()) if p.owner == owner]

    def active_positions(self) -> List[Position]:
        return [p for _, p in sorted(self._positions.items()) if p.is_active]

    def get_current_rate(self) -> Decimal:
        """Blended pool rate: kappa * ln(pv_bonds / cash) + anchor."""
        state = self._require_state()
        return rate(state.pv_bonds, state.cash, self._anchor_rate(), self.config.kappa)

    def check_solvency(self) -> bool:
        """cash + net_liabilities >= solvency_threshold * initial_cash on committed state."""
        return check_solvency(self._require_state(), self.config.solvency_threshold)

    def solvency_margin(self) -> Decimal:
        return solvency_margin(self._require_state(), self.config.solvency_threshold)

    def reconcile(self) -> Dict[str, Decimal]:
        """
        Compare the pool account's asset balance with booked cash + collateral.

        Requires an asset collaborator exposing get_balance(account).

        Returns:
            Dict with 'expected', 'actual' and 'difference'
        """
        state = self._require_state()
        expected = state.cash + state.collateral_held
        actual = self.asset.get_balance(self.pool_account)
        return {'expected': expected, 'actual': actual, 'difference': actual - expected}

    def quote_lend(self, amount, maturity: datetime) -> TradeQuote:
        """Price a lend against the current (decayed) state without committing anything."""
        return self._quote(TradeDirection.LEND, amount, maturity)

    def quote_borrow(self, amount, maturity: datetime) -> TradeQuote:
        """Price a borrow against the current (decayed) state without committing anything."""
        return self._quote(TradeDirection.BORROW, amount, maturity)

    def _quote(self, direction: TradeDirection, amount, maturity: datetime) -> TradeQuote:
        with self._exclusive():
            state = self._decayed_state()
            try:
                cash_amount = to_decimal(amount)
            except ValueError as e:
                raise ValidationError(str(e)) from e
            if cash_amount <= 0:
                raise ValidationError(f"amount must be positive, got {cash_amount}")
            quote = quote_trade(
                state, self.config, direction, cash_amount, maturity,
                self._current_time, self._anchor_rate(),
            )
            logger.debug("Quote %s: %s", direction.value, quote)
            return quote

    # ========================================================================
    # EVENTS
    # ========================================================================

    def subscribe(self, listener: EventListener) -> None:
        """Register a callable invoked with every event after its operation commits."""
        self._listeners.append(listener)

    def _emit(self, event: PoolEvent) -> None:
        self.event_log.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed for %r", event)

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def initialize(self, caller: str, initial_cash, initial_pv_bonds=None) -> PoolState:
        """
        Seed the pool, pulling initial_cash from caller.

        Raises:
            AuthorizationError: if caller is not the admin or the pool is already initialized
        """
        def operation() -> PoolTransition:
            if caller != self.admin:
                raise AuthorizationError(f"{caller} is not allowed to initialize the pool")
            if self._state is not None:
                raise AuthorizationError("pool already initialized")
            return compute_initialize(caller, initial_cash, self._current_time, initial_pv_bonds)

        transition = self._run("initialize", operation)
        return transition.state

    def lend(self, caller: str, amount, maturity: datetime) -> int:
        """
        Deposit amount for a bond maturing at maturity.

        Returns:
            The new position id
        """
        def operation() -> PoolTransition:
            state = self._decayed_state()
            stale = self.oracle.is_stale(self._current_time)
            anchor = Decimal("0") if stale else self._anchor_rate()
            return compute_lend(
                state, self.config, caller, amount, maturity,
                self._current_time, anchor, stale,
            )

        return self._run("lend", operation).position.position_id

    def borrow(self, caller: str, amount, collateral, maturity: datetime) -> int:
        """
        Post collateral and receive amount, owing face value at maturity.

        Returns:
            The new position id
        """
        def operation() -> PoolTransition:
            state = self._decayed_state()
            stale = self.oracle.is_stale(self._current_time)
            anchor = Decimal("0") if stale else self._anchor_rate()
            return compute_borrow(
                state, self.config, caller, amount, collateral, maturity,
                self._current_time, anchor, stale,
            )

        return self._run("borrow", operation).position.position_id

    def redeem(self, caller: str, position_id: int) -> Decimal:
        """
        Close a matured lend. Returns the payout (exactly face value).
        """
        def operation() -> PoolTransition:
            state = self._decayed_state()
            position = self.get_position(position_id)
            return compute_redeem(state, position, caller, self._current_time)

        return self._run("redeem", operation).event.data['payout']

    def repay(self, caller: str, position_id: int) -> Decimal:
        """
        Close a borrow, refunding its collateral. Returns the amount repaid.
        """
        def operation() -> PoolTransition:
            state = self._decayed_state()
            position = self.get_position(position_id)
            return compute_repay(
                state, self.config, position, caller,
                self._current_time, self._anchor_rate(),
            )

        return self._run("repay", operation).event.data['repay_amount']

    def liquidate(self, caller: str, position_id: int) -> Decimal:
        """
        Seize the collateral of a borrow past maturity + grace period.
        Returns the collateral moved into pool cash.
        """
        def operation() -> PoolTransition:
            state = self._decayed_state()
            position = self.get_position(position_id)
            return compute_liquidate(
                state, self.config, position, caller,
                self._current_time, self._anchor_rate(),
            )

        return self._run("liquidate", operation).event.data['collateral_seized']

    # ========================================================================
    # PIPELINE
    # ========================================================================

    def _require_state(self) -> PoolState:
        if self._state is None:
            raise AuthorizationError("pool not initialized")
        return self._state

    def _anchor_rate(self) -> Decimal:
        try:
            return to_decimal(self.oracle.get_rate(self._current_time))
        except LookupError as e:
            raise OracleUnavailable(f"no anchor rate available: {e}") from e

    def _decayed_state(self) -> PoolState:
        """Working copy of the state with liabilities advanced to now. Not committed."""
        try:
            return apply_liability_decay(
                self._require_state(), self.oracle, self._current_time, self.config.kappa,
            )
        except LookupError as e:
            raise OracleUnavailable(f"no anchor rate available: {e}") from e

    def _check_bounds(self, state: PoolState) -> None:
        """Postconditions every committed state must satisfy."""
        if state.pv_bonds <= 0:
            raise PoolArithmeticError(f"pv_bonds must stay positive, got {state.pv_bonds}")
        if state.cash < 0:
            raise PoolArithmeticError(f"cash cannot go negative, got {state.cash}")
        if state.net_liabilities < 0:
            raise PoolArithmeticError(f"net_liabilities cannot go negative, got {state.net_liabilities}")
        if state.collateral_held < 0:
            raise PoolArithmeticError(f"collateral_held cannot go negative, got {state.collateral_held}")

    def _settle(self, transfers: Tuple[Transfer, ...]) -> List[Transfer]:
        """
        Issue transfers in order and return the journal of those that settled.

        On failure the settled prefix is compensated before re-raising.
        """
        journal: List[Transfer] = []
        for transfer in transfers:
            try:
                if transfer.kind is TransferKind.PULL:
                    self.asset.transfer_from(transfer.account, self.pool_account, transfer.amount)
                else:
                    self.asset.transfer(self.pool_account, transfer.account, transfer.amount)
            except Exception as e:
                self._compensate(journal)
                if isinstance(e, PoolError):
                    raise
                raise TransferError(f"{transfer!r} failed: {e}") from e
            journal.append(transfer)
        return journal

    def _compensate(self, journal: List[Transfer]) -> None:
        """Reverse settled transfers, most recent first."""
        for transfer in reversed(journal):
            try:
                if transfer.kind is TransferKind.PULL:
                    self.asset.transfer(self.pool_account, transfer.account, transfer.amount)
                else:
                    self.asset.transfer_from(transfer.account, self.pool_account, transfer.amount)
            except Exception:
                logger.exception("Failed to reverse %r; asset balances need manual repair", transfer)
                raise

    def _run(
        self,
        name: str,
        operation: Callable[[], PoolTransition],
    ) -> PoolTransition:
        """
        Execute one operation atomically.

        operation() computes the full transition from a decayed working copy.
        Nothing is committed until transfers have settled and postconditions
        hold; the lock is held throughout.
        """
        with self._exclusive():
            try:
                transition = operation()
                self._check_bounds(transition.state)
                journal = self._settle(transition.transfers)
                try:
                    if transition.enforce_solvency:
                        assert_solvent(transition.state, self.config.solvency_threshold)
                except PoolError:
                    self._compensate(journal)
                    raise
            except PoolError as e:
                logger.warning("%s rejected: %s", name, e)
                raise

            self._state = transition.state
            if transition.position is not None:
                self._positions[transition.position.position_id] = transition.position
            logger.info(
                "%s committed: position=%s cash=%s pv_bonds=%s net_liabilities=%s",
                name,
                transition.position.position_id if transition.position else None,
                transition.state.cash, transition.state.pv_bonds, transition.state.net_liabilities,
            )
            self._emit(transition.event)
            return transition
