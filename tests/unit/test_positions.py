"""
test_positions.py - Unit tests for the pure lifecycle functions in positions.py

Tests:
- Maturity window (inclusive bounds)
- quote_trade pricing
- compute_initialize / compute_lend / compute_borrow effects and transfers
- Precondition ordering for each operation
- compute_redeem / compute_repay / compute_liquidate effects
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from bondpool import (
    PoolConfig, PoolState, Position,
    TradeDirection, TransferKind, EventType, PositionStatus,
    ValidationError, AuthorizationError, OracleUnavailable, LiquidityError,
    PositionNotActive, PoolArithmeticError,
    quote_trade, compute_initialize, compute_lend, compute_borrow,
    compute_redeem, compute_repay, compute_liquidate,
    price,
)
from bondpool.positions import validate_maturity


T0 = datetime(2025, 1, 1)
M90 = T0 + timedelta(days=90)
R = Decimal("0.05")
CONFIG = PoolConfig()


@pytest.fixture
def state():
    return compute_initialize("admin", Decimal("100000"), T0).state


def lend(state, amount="10000", maturity=M90, owner="alice", stale=False):
    return compute_lend(state, CONFIG, owner, Decimal(amount), maturity, T0, R, stale)


def borrow(state, amount="10000", collateral="15000", maturity=M90, owner="bob", stale=False):
    return compute_borrow(
        state, CONFIG, owner, Decimal(amount), Decimal(collateral), maturity, T0, R, stale,
    )


# ============================================================================
# MATURITY WINDOW
# ============================================================================

class TestMaturityWindow:

    def test_bounds_inclusive(self):
        validate_maturity(T0, T0 + timedelta(days=30), CONFIG)
        validate_maturity(T0, T0 + timedelta(days=365), CONFIG)

    def test_one_second_outside_rejected(self):
        with pytest.raises(ValidationError):
            validate_maturity(T0, T0 + timedelta(days=30) - timedelta(seconds=1), CONFIG)
        with pytest.raises(ValidationError):
            validate_maturity(T0, T0 + timedelta(days=365, seconds=1), CONFIG)


# ============================================================================
# QUOTING AND INITIALIZATION
# ============================================================================

class TestQuoteTrade:

    def test_quote_fields(self, state):
        quote = quote_trade(state, CONFIG, TradeDirection.LEND, Decimal("10000"), M90, T0, R)
        assert quote.rate == R
        assert quote.price == price(quote.time_to_maturity, R)
        assert quote.face_value > Decimal("10000")
        assert abs(quote.present_value - Decimal("10000")) < Decimal("100")

    def test_quote_is_on_fixed_point_grid(self, state):
        quote = quote_trade(state, CONFIG, TradeDirection.BORROW, Decimal("1234.5"), M90, T0, R)
        assert quote.face_value.as_tuple().exponent == -18
        assert quote.present_value.as_tuple().exponent == -18


class TestInitialize:

    def test_initial_state(self, state):
        assert state.cash == Decimal("100000")
        assert state.pv_bonds == Decimal("100000")
        assert state.net_liabilities == 0
        assert state.initial_cash == Decimal("100000")
        assert state.next_position_id == 1

    def test_transfer_and_event(self):
        transition = compute_initialize("admin", Decimal("5000"), T0, Decimal("6000"))
        assert transition.state.pv_bonds == Decimal("6000")
        (transfer,) = transition.transfers
        assert transfer.kind is TransferKind.PULL
        assert transfer.account == "admin"
        assert transfer.amount == Decimal("5000")
        assert transition.event.event_type is EventType.POOL_INITIALIZED
        assert transition.position is None

    def test_non_positive_cash_rejected(self):
        with pytest.raises(ValidationError):
            compute_initialize("admin", Decimal("0"), T0)


# ============================================================================
# LEND
# ============================================================================

class TestComputeLend:

    def test_effects(self, state):
        transition = lend(state)
        new, position = transition.state, transition.position
        assert new.cash == Decimal("110000")
        assert new.pv_bonds == state.pv_bonds - position.initial_pv
        assert new.net_liabilities == 0
        assert new.next_position_id == 2
        assert position.position_id == 1
        assert position.status is PositionStatus.ACTIVE_LEND
        assert position.collateral == 0
        assert transition.enforce_solvency

    def test_pull_transfer(self, state):
        (transfer,) = lend(state).transfers
        assert (transfer.kind, transfer.account, transfer.amount) == (TransferKind.PULL, "alice", Decimal("10000"))

    def test_input_state_not_mutated(self, state):
        lend(state)
        assert state.cash == Decimal("100000")

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_non_positive_amount(self, state, amount):
        with pytest.raises(ValidationError):
            lend(state, amount=amount)

    def test_empty_owner(self, state):
        with pytest.raises(ValidationError):
            lend(state, owner="")

    def test_maturity_checked_before_oracle(self, state):
        with pytest.raises(ValidationError):
            lend(state, maturity=T0 + timedelta(days=5), stale=True)

    def test_stale_oracle(self, state):
        with pytest.raises(OracleUnavailable):
            lend(state, stale=True)


# ============================================================================
# BORROW
# ============================================================================

class TestComputeBorrow:

    def test_effects(self, state):
        transition = borrow(state)
        new, position = transition.state, transition.position
        assert new.cash == Decimal("90000")
        assert new.pv_bonds == state.pv_bonds + position.initial_pv
        assert new.net_liabilities == position.initial_pv
        assert new.collateral_held == Decimal("15000")
        assert position.is_borrow
        assert not transition.enforce_solvency

    def test_transfers_pull_collateral_then_push_proceeds(self, state):
        first, second = borrow(state).transfers
        assert (first.kind, first.amount) == (TransferKind.PULL, Decimal("15000"))
        assert (second.kind, second.amount) == (TransferKind.PUSH, Decimal("10000"))

    def test_collateral_ratio_exact_accepted(self, state):
        borrow(state, collateral="15000")

    def test_insufficient_collateral(self, state):
        with pytest.raises(ValidationError):
            borrow(state, collateral="14999.99")

    def test_collateral_checked_before_maturity(self, state):
        with pytest.raises(ValidationError, match="collateral"):
            borrow(state, collateral="1", maturity=T0)

    def test_stale_oracle(self, state):
        with pytest.raises(OracleUnavailable):
            borrow(state, stale=True)

    def test_more_than_cash(self, state):
        with pytest.raises(LiquidityError):
            borrow(state, amount="150000", collateral="225000")

    def test_exactly_all_cash_fails_closed(self, state):
        with pytest.raises(PoolArithmeticError):
            borrow(state, amount="100000", collateral="150000")


# ============================================================================
# REDEEM
# ============================================================================

class TestComputeRedeem:

    def test_pays_face_value(self, state):
        opened = lend(state)
        position = opened.position
        transition = compute_redeem(opened.state, position, "alice", M90)
        assert transition.event.data['payout'] == position.face_value
        assert transition.state.cash == opened.state.cash - position.face_value
        assert transition.state.pv_bonds == opened.state.pv_bonds + position.face_value
        assert transition.position.status is PositionStatus.CLOSED
        (transfer,) = transition.transfers
        assert (transfer.kind, transfer.amount) == (TransferKind.PUSH, position.face_value)

    def test_before_maturity(self, state):
        opened = lend(state)
        with pytest.raises(ValidationError):
            compute_redeem(opened.state, opened.position, "alice", M90 - timedelta(seconds=1))

    def test_wrong_owner(self, state):
        opened = lend(state)
        with pytest.raises(AuthorizationError):
            compute_redeem(opened.state, opened.position, "bob", M90)

    def test_borrow_position_rejected(self, state):
        opened = borrow(state)
        with pytest.raises(ValidationError):
            compute_redeem(opened.state, opened.position, "bob", M90)

    def test_closed_checked_first(self, state):
        opened = lend(state)
        closed = opened.position.close(M90)
        with pytest.raises(PositionNotActive):
            compute_redeem(opened.state, closed, "bob", T0)

    def test_insufficient_cash(self, state):
        opened = lend(state)
        drained = PoolState(
            cash=Decimal("1"), pv_bonds=opened.state.pv_bonds, net_liabilities=Decimal("0"),
            initial_cash=Decimal("100000"), last_update_time=M90,
        )
        with pytest.raises(LiquidityError):
            compute_redeem(drained, opened.position, "alice", M90)

    def test_exactly_all_cash_refused(self, state):
        opened = lend(state)
        face = opened.position.face_value
        exact = PoolState(
            cash=face, pv_bonds=opened.state.pv_bonds, net_liabilities=Decimal("0"),
            initial_cash=Decimal("100000"), last_update_time=M90,
        )
        with pytest.raises(LiquidityError, match="drain pool cash"):
            compute_redeem(exact, opened.position, "alice", M90)

    def test_one_unit_of_cash_left_accepted(self, state):
        opened = lend(state)
        face = opened.position.face_value
        spare = PoolState(
            cash=face + Decimal("1e-18"), pv_bonds=opened.state.pv_bonds,
            net_liabilities=Decimal("0"), initial_cash=Decimal("100000"), last_update_time=M90,
        )
        transition = compute_redeem(spare, opened.position, "alice", M90)
        assert transition.state.cash == Decimal("1e-18")


# ============================================================================
# REPAY
# ============================================================================

class TestComputeRepay:

    def test_at_maturity_repays_face(self, state):
        opened = borrow(state)
        position = opened.position
        transition = compute_repay(opened.state, CONFIG, position, "bob", M90, R)
        assert transition.event.data['repay_amount'] == position.face_value
        assert transition.state.cash == opened.state.cash + position.face_value
        assert transition.state.collateral_held == 0
        pull, push = transition.transfers
        assert (pull.kind, pull.amount) == (TransferKind.PULL, position.face_value)
        assert (push.kind, push.amount) == (TransferKind.PUSH, Decimal("15000"))

    def test_early_repay_is_discounted(self, state):
        opened = borrow(state)
        early = compute_repay(opened.state, CONFIG, opened.position, "bob", T0 + timedelta(days=30), R)
        assert early.event.data['repay_amount'] < opened.position.face_value

    def test_wrong_owner(self, state):
        opened = borrow(state)
        with pytest.raises(AuthorizationError):
            compute_repay(opened.state, CONFIG, opened.position, "alice", M90, R)

    def test_lend_position_rejected(self, state):
        opened = lend(state)
        with pytest.raises(ValidationError):
            compute_repay(opened.state, CONFIG, opened.position, "alice", M90, R)


# ============================================================================
# LIQUIDATE
# ============================================================================

class TestComputeLiquidate:

    def test_grace_period_is_strict(self, state):
        opened = borrow(state)
        deadline = M90 + CONFIG.grace_period
        with pytest.raises(ValidationError):
            compute_liquidate(opened.state, CONFIG, opened.position, "keeper", deadline, R)

    def test_seizes_collateral_without_transfers(self, state):
        opened = borrow(state)
        position = opened.position
        now = M90 + CONFIG.grace_period + timedelta(seconds=1)
        transition = compute_liquidate(opened.state, CONFIG, position, "keeper", now, R)
        assert transition.transfers == ()
        assert transition.state.cash == opened.state.cash + Decimal("15000")
        assert transition.state.collateral_held == 0
        assert transition.state.pv_bonds == opened.state.pv_bonds - position.face_value
        data = transition.event.data
        assert data['penalty'] == (position.face_value * Decimal("0.05")).quantize(Decimal("1e-18"))
        assert data['total_owed'] == data['debt'] + data['penalty']
        assert data['collateral_seized'] == Decimal("15000")

    def test_lend_position_rejected(self, state):
        opened = lend(state)
        with pytest.raises(ValidationError):
            compute_liquidate(opened.state, CONFIG, opened.position, "keeper", M90 + timedelta(days=2), R)
