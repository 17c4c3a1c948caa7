"""
test_solvency.py - Unit tests for solvency.py
"""

import pytest
from datetime import datetime
from decimal import Decimal

from bondpool import PoolState, SolvencyError, check_solvency, solvency_margin, assert_solvent
from bondpool.solvency import solvency_floor


def make_state(cash, liabilities="0", initial="100000") -> PoolState:
    return PoolState(
        cash=Decimal(cash),
        pv_bonds=Decimal("100000"),
        net_liabilities=Decimal(liabilities),
        initial_cash=Decimal(initial),
        last_update_time=datetime(2025, 1, 1),
    )


class TestSolvencyGuard:

    def test_floor_is_99_percent(self):
        assert solvency_floor(make_state("100000")) == Decimal("99000")

    def test_exactly_at_floor_is_solvent(self):
        assert check_solvency(make_state("99000"))
        assert solvency_margin(make_state("99000")) == 0

    def test_below_floor_is_insolvent(self):
        assert not check_solvency(make_state("98999.99"))

    def test_liabilities_count_toward_equity(self):
        state = make_state("90000", liabilities="9500")
        assert check_solvency(state)
        assert state.equity == Decimal("99500")

    def test_custom_threshold(self):
        assert not check_solvency(make_state("110000"), Decimal("1.2"))
        assert check_solvency(make_state("120000"), Decimal("1.2"))

    def test_assert_solvent_carries_margin(self):
        with pytest.raises(SolvencyError) as exc_info:
            assert_solvent(make_state("98000"))
        assert exc_info.value.margin == Decimal("-1000")

    def test_assert_solvent_passes(self):
        assert_solvent(make_state("150000"))
