"""
test_asset_ledger.py - Unit tests for asset_ledger.py

Tests:
- Account registration
- Issuance from the system account
- FungibleAsset transfers (exact amounts, failures leave balances untouched)
- Atomic multi-move execution
- Conservation and the transfer log
- Time management and cloning
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from bondpool import (
    AssetLedger, AssetMove, SYSTEM_ACCOUNT,
    TransferError, InsufficientFunds, AccountNotRegistered,
)


@pytest.fixture
def ledger():
    usd = AssetLedger("USD", initial_time=datetime(2025, 1, 1))
    for account in ("pool", "alice", "bob"):
        usd.register_account(account)
    usd.mint("alice", Decimal("1000"))
    return usd


class TestRegistration:

    def test_system_account_exists(self):
        assert AssetLedger("USD").is_registered(SYSTEM_ACCOUNT)

    def test_register(self, ledger):
        assert ledger.list_accounts() == {SYSTEM_ACCOUNT, "pool", "alice", "bob"}
        assert ledger.get_balance("bob") == 0

    def test_duplicate_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_account("alice")

    def test_empty_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.register_account("")

    def test_unknown_balance(self, ledger):
        with pytest.raises(AccountNotRegistered):
            ledger.get_balance("mallory")


class TestTransfers:

    def test_transfer_from_and_transfer(self, ledger):
        ledger.transfer_from("alice", "pool", Decimal("250"))
        ledger.transfer("pool", "bob", Decimal("100"))
        assert ledger.get_balance("alice") == Decimal("750")
        assert ledger.get_balance("pool") == Decimal("150")
        assert ledger.get_balance("bob") == Decimal("100")

    def test_insufficient_funds_leaves_balances(self, ledger):
        with pytest.raises(InsufficientFunds):
            ledger.transfer_from("alice", "pool", Decimal("1000.01"))
        assert ledger.get_balance("alice") == Decimal("1000")
        assert ledger.get_balance("pool") == 0

    def test_unregistered_counterparty(self, ledger):
        with pytest.raises(AccountNotRegistered):
            ledger.transfer("pool", "mallory", Decimal("1"))

    def test_exact_balance_can_be_moved(self, ledger):
        ledger.transfer_from("alice", "pool", Decimal("1000"))
        assert ledger.get_balance("alice") == 0

    def test_invalid_amounts(self, ledger):
        with pytest.raises(ValueError):
            ledger.transfer_from("alice", "pool", Decimal("0"))
        with pytest.raises(ValueError):
            ledger.transfer_from("alice", "pool", Decimal("-1"))


class TestExecute:

    def test_multi_move_is_atomic(self, ledger):
        moves = (
            AssetMove(Decimal("500"), "alice", "bob"),
            AssetMove(Decimal("600"), "bob", "pool"),
            AssetMove(Decimal("200"), "bob", "pool"),
        )
        with pytest.raises(InsufficientFunds):
            ledger.execute(moves)
        assert ledger.get_balance("alice") == Decimal("1000")
        assert ledger.get_balance("bob") == 0
        assert ledger.transfer_log[-1].moves[0].memo == "mint"

    def test_netting_within_execution(self, ledger):
        ledger.execute((
            AssetMove(Decimal("500"), "alice", "bob"),
            AssetMove(Decimal("400"), "bob", "pool"),
        ))
        assert ledger.get_balance("bob") == Decimal("100")
        assert ledger.get_balance("pool") == Decimal("400")

    def test_empty_execution_rejected(self, ledger):
        with pytest.raises(TransferError):
            ledger.execute(())

    def test_same_source_and_dest_rejected(self):
        with pytest.raises(ValueError):
            AssetMove(Decimal("1"), "alice", "alice")


class TestConservation:

    def test_total_supply_is_zero(self, ledger):
        ledger.transfer_from("alice", "pool", Decimal("300"))
        assert ledger.total_supply() == 0
        assert ledger.circulating_supply() == Decimal("1000")

    def test_verify_conservation(self, ledger):
        result = ledger.verify_conservation(expected_circulating=Decimal("1000"))
        assert result['valid']
        assert result['discrepancies'] == []

    def test_verify_conservation_reports_mismatch(self, ledger):
        result = ledger.verify_conservation(expected_circulating=Decimal("999"))
        assert not result['valid']
        assert result['discrepancies'][0]['check'] == 'circulating'

    def test_log_sequence_is_monotonic(self, ledger):
        ledger.transfer_from("alice", "pool", Decimal("1"))
        ledger.transfer("pool", "bob", Decimal("1"))
        sequences = [record.sequence_number for record in ledger.transfer_log]
        assert sequences == [0, 1, 2]
        assert len({record.exec_id for record in ledger.transfer_log}) == 3


class TestTimeAndClone:

    def test_time_moves_forward_only(self, ledger):
        ledger.advance_time(datetime(2025, 2, 1))
        assert ledger.current_time == datetime(2025, 2, 1)
        with pytest.raises(ValueError):
            ledger.advance_time(datetime(2025, 1, 15))

    def test_execution_time_recorded(self, ledger):
        ledger.advance_time(datetime(2025, 3, 1))
        record = ledger.transfer_log[-1]
        ledger.transfer_from("alice", "pool", Decimal("1"))
        assert ledger.transfer_log[-1].execution_time == datetime(2025, 3, 1)
        assert record.execution_time == datetime(2025, 1, 1)

    def test_clone_is_independent(self, ledger):
        copy = ledger.clone()
        copy.transfer_from("alice", "pool", Decimal("100"))
        assert ledger.get_balance("alice") == Decimal("1000")
        assert copy.get_balance("alice") == Decimal("900")
        assert len(copy.transfer_log) == len(ledger.transfer_log) + 1

    def test_rounding_to_precision(self):
        usd = AssetLedger("USD", decimal_places=2)
        usd.register_account("alice")
        usd.mint("alice", Decimal("1.005"))
        assert usd.get_balance("alice") == Decimal("1.00")
