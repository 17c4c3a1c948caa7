"""
asset_ledger.py - Single-Asset Double-Entry Ledger

The AssetLedger is the in-process fungible-asset collaborator for the pool.
It implements the FungibleAsset protocol (transfer_from / transfer) on top
of a small double-entry ledger for one underlying asset.

Key responsibilities:
    - Maintains account balances for the underlying asset
    - Executes moves atomically (all moves succeed or all fail)
    - Exact-amount transfers: no fees, no partial fills
    - Issuance from the system account (mint), which is exempt from balance checks
    - Keeps an append-only transfer log with monotonic sequence numbers
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from .core import (
    SYSTEM_ACCOUNT,
    TransferError, InsufficientFunds, AccountNotRegistered,
    to_decimal,
)

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AssetMove:
    """
    A single transfer of the asset between two accounts.

    Attributes:
        quantity: The amount to transfer (finite, strictly positive).
        source: Account debited.
        dest: Account credited.
        memo: Free-form label kept in the transfer log.
    """
    quantity: Decimal
    source: str
    dest: str
    memo: str = ""

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("AssetMove source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("AssetMove dest cannot be empty")
        if not isinstance(self.quantity, Decimal):
            object.__setattr__(self, 'quantity', to_decimal(self.quantity))
        if not self.quantity.is_finite():
            raise ValueError(f"AssetMove quantity must be finite, got {self.quantity}")
        if self.quantity <= 0:
            raise ValueError(f"AssetMove quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"AssetMove({self.quantity}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class TransferRecord:
    """
    An executed, immutable entry of the transfer log.

    Attributes:
        moves: Moves applied together
        exec_id: Unique execution identifier (ledger + sequence + time)
        execution_time: Ledger time when applied
        sequence_number: Monotonic within the ledger
    """
    moves: Tuple[AssetMove, ...]
    exec_id: str
    execution_time: datetime
    sequence_number: int


# ============================================================================
# LEDGER
# ============================================================================

class AssetLedger:
    """
    Double-entry ledger for a single fungible asset.

    Implements the FungibleAsset protocol, so it can be injected into
    PoolEngine directly.

    Thread Safety:
        Not thread-safe on its own. PoolEngine serializes its calls.

    Example:
        usd = AssetLedger("USD")
        usd.register_account("pool")
        usd.register_account("alice")
        usd.mint("alice", Decimal("1000"))
        usd.transfer_from("alice", "pool", Decimal("250"))
    """

    def __init__(
        self,
        symbol: str = "USD",
        decimal_places: Optional[int] = 18,
        initial_time: Optional[datetime] = None,
    ):
        """
        Create a ledger.

        Args:
            symbol: Asset symbol, used in log messages and exec ids
            decimal_places: Rounding precision for balances (None = no rounding)
            initial_time: Starting time for the ledger (default: 1970-01-01)
        """
        if not symbol or not symbol.strip():
            raise ValueError("symbol cannot be empty")
        self.symbol = symbol
        self.decimal_places = decimal_places
        self.balances: Dict[str, Decimal] = {SYSTEM_ACCOUNT: Decimal("0")}
        self.transfer_log: List[TransferRecord] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0

    # ========================================================================
    # READ-ONLY METHODS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def is_registered(self, account: str) -> bool:
        return account in self.balances

    def list_accounts(self) -> Set[str]:
        """List all registered accounts, including the system account."""
        return set(self.balances)

    def get_balance(self, account: str) -> Decimal:
        """
        Raises:
            AccountNotRegistered: If the account is not registered
        """
        if account not in self.balances:
            raise AccountNotRegistered(f"Account {account} not registered")
        return self.balances[account]

    def total_supply(self) -> Decimal:
        """
        Sum of all balances, system account included.

        Always zero for a ledger whose balances only changed through moves,
        since issuance debits the system account. Accounts are summed in
        sorted order for a deterministic accumulation.
        """
        return sum((self.balances[a] for a in sorted(self.balances)), Decimal("0"))

    def circulating_supply(self) -> Decimal:
        """Sum of balances outside the system account."""
        return sum(
            (b for a, b in sorted(self.balances.items()) if a != SYSTEM_ACCOUNT),
            Decimal("0"),
        )

    def verify_conservation(
        self,
        expected_circulating: Optional[Decimal] = None,
        tolerance: Decimal = Decimal("1e-9"),
    ) -> Dict[str, Any]:
        """
        Verify that double-entry conservation holds.

        Args:
            expected_circulating: Optional expected circulating supply.
            tolerance: Maximum allowed difference for comparisons.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all checks hold
            - 'total_supply': Decimal - sum of every balance (should be 0)
            - 'circulating': Decimal - sum outside the system account
            - 'discrepancies': List[Dict] - details of any violation
        """
        total = self.total_supply()
        circulating = self.circulating_supply()
        discrepancies = []

        if abs(total) > tolerance:
            discrepancies.append({'check': 'total_supply', 'expected': Decimal("0"), 'actual': total})
        if expected_circulating is not None:
            difference = abs(circulating - expected_circulating)
            if difference > tolerance:
                discrepancies.append({
                    'check': 'circulating',
                    'expected': expected_circulating,
                    'actual': circulating,
                    'difference': difference,
                })

        return {
            'valid': len(discrepancies) == 0,
            'total_supply': total,
            'circulating': circulating,
            'discrepancies': discrepancies,
        }

    def round(self, value: Decimal) -> Decimal:
        """Round a value to the ledger's precision (ROUND_HALF_EVEN)."""
        if self.decimal_places is None:
            return value
        return value.quantize(Decimal(10) ** -self.decimal_places, rounding=ROUND_HALF_EVEN)

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_account(self, account: str) -> str:
        """
        Register a new account with a zero balance.

        Raises:
            ValueError: If the account is empty or already registered
        """
        if not account or not account.strip():
            raise ValueError("account cannot be empty")
        if account in self.balances:
            raise ValueError(f"Account {account} already registered")
        self.balances[account] = Decimal("0")
        return account

    # ========================================================================
    # EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.symbol}:{sequence:012d}:{micros}"

    def _validate(self, moves: Tuple[AssetMove, ...]) -> None:
        """
        Validate moves against registration and balance constraints.

        The system account is exempt from balance validation.

        Raises:
            AccountNotRegistered, InsufficientFunds
        """
        net: Dict[str, Decimal] = {}
        for move in moves:
            if move.source not in self.balances:
                raise AccountNotRegistered(f"Account {move.source} not registered")
            if move.dest not in self.balances:
                raise AccountNotRegistered(f"Account {move.dest} not registered")
            net[move.source] = self.round(net.get(move.source, Decimal("0")) - move.quantity)
            net[move.dest] = self.round(net.get(move.dest, Decimal("0")) + move.quantity)

        for account, delta in net.items():
            if account == SYSTEM_ACCOUNT:
                continue
            proposed = self.round(self.balances[account] + delta)
            if proposed < 0:
                raise InsufficientFunds(
                    f"{account} {self.symbol}: balance {self.balances[account]} "
                    f"cannot cover {-delta}"
                )

    def execute(self, moves: Tuple[AssetMove, ...]) -> TransferRecord:
        """
        Apply moves atomically.

        All moves are validated before any balance changes, so either all
        of them are applied or none are.

        Returns:
            The TransferRecord appended to the log

        Raises:
            TransferError: if validation fails (nothing is applied)
        """
        moves = tuple(moves)
        if not moves:
            raise TransferError("nothing to execute")
        try:
            self._validate(moves)
        except TransferError as e:
            logger.warning("%s transfer rejected: %s", self.symbol, e)
            raise

        for move in moves:
            self.balances[move.source] = self.round(self.balances[move.source] - move.quantity)
            self.balances[move.dest] = self.round(self.balances[move.dest] + move.quantity)

        sequence = self._next_sequence
        self._next_sequence += 1
        record = TransferRecord(
            moves=moves,
            exec_id=self._generate_exec_id(sequence),
            execution_time=self._current_time,
            sequence_number=sequence,
        )
        self.transfer_log.append(record)
        logger.debug("%s applied %s", self.symbol, moves)
        return record

    def mint(self, account: str, amount) -> TransferRecord:
        """Issue new units to an account from the system account."""
        return self.execute((AssetMove(to_decimal(amount), SYSTEM_ACCOUNT, account, "mint"),))

    # ========================================================================
    # FungibleAsset PROTOCOL
    # ========================================================================

    def transfer_from(self, payer: str, pool: str, amount: Decimal) -> None:
        """Pull exactly amount from payer into pool."""
        self.execute((AssetMove(to_decimal(amount), payer, pool, "transfer_from"),))

    def transfer(self, pool: str, payee: str, amount: Decimal) -> None:
        """Push exactly amount from pool to payee."""
        self.execute((AssetMove(to_decimal(amount), pool, payee, "transfer"),))

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> AssetLedger:
        """
        Create an independent copy of this ledger.

        Cloned state includes balances, the transfer log, the sequence
        counter and the current time.
        """
        cloned = AssetLedger.__new__(AssetLedger)
        cloned.symbol = self.symbol
        cloned.decimal_places = self.decimal_places
        cloned.balances = dict(self.balances)
        cloned.transfer_log = list(self.transfer_log)
        cloned._current_time = self._current_time
        cloned._next_sequence = self._next_sequence
        return cloned

    def __repr__(self) -> str:
        return f"AssetLedger({self.symbol}, {len(self.balances)} accounts, {len(self.transfer_log)} transfers)"
