"""
conftest.py - Shared pytest fixtures for bondpool tests

Provides common fixtures used across unit, conformance and functional tests:
- A funded USD asset ledger with the usual accounts
- Static and manual rate oracles
- Uninitialized and initialized pool engines (100,000 cash at 5%)
"""

import pytest
from datetime import timedelta

from bondpool import PoolConfig, StaticRateOracle, ManualRateOracle

from tests.fakes import START, ANCHOR_RATE, make_asset, make_engine


@pytest.fixture
def start():
    return START


@pytest.fixture
def usd():
    """Funded USD ledger (1,000,000 per account, pool empty)."""
    return make_asset()


@pytest.fixture
def oracle():
    return StaticRateOracle(ANCHOR_RATE)


@pytest.fixture
def manual_oracle():
    """Manual feed fresh at START, stale after one hour."""
    return ManualRateOracle(ANCHOR_RATE, START)


@pytest.fixture
def config():
    return PoolConfig()


@pytest.fixture
def fresh_engine(usd, oracle):
    """Engine that has not been initialized."""
    return make_engine(usd, oracle, initialize=False)


@pytest.fixture
def engine(usd, oracle):
    """Engine initialized with 100,000 cash, pv_bonds == cash, 5% anchor."""
    return make_engine(usd, oracle)


@pytest.fixture
def maturity_90d():
    return START + timedelta(days=90)
