"""
Reentrancy and Serialization Conformance Tests

INVARIANT: The engine is a serialized single writer.

    - A call into the engine from inside one of its own running
      operations fails immediately with ReentrancyError
    - Calls from several threads run one at a time, never interleaved
"""

import threading
import pytest
from datetime import timedelta
from decimal import Decimal

from bondpool import ReentrancyError, StaticRateOracle
from tests.fakes import START, ReentrantAsset, make_asset, make_engine


M90 = START + timedelta(days=90)


class TestReentrancy:

    def test_nested_lend_from_asset_callback(self):
        usd = make_asset()
        asset = ReentrantAsset(usd)
        engine = make_engine(asset, StaticRateOracle("0.05"))
        before = engine.get_pool_state()

        asset.callback = lambda: engine.lend("bob", Decimal("500"), M90)
        with pytest.raises(ReentrancyError):
            engine.lend("alice", Decimal("1000"), M90)

        assert isinstance(asset.errors[0], ReentrancyError)
        assert engine.get_pool_state() == before
        assert engine.active_positions() == []

    def test_nested_advance_time_rejected(self):
        usd = make_asset()
        asset = ReentrantAsset(usd)
        engine = make_engine(asset, StaticRateOracle("0.05"))

        asset.callback = lambda: engine.advance_time(START + timedelta(days=1))
        with pytest.raises(ReentrancyError):
            engine.borrow("bob", Decimal("1000"), Decimal("1500"), M90)
        assert engine.current_time == START

    def test_read_only_queries_allowed_from_callback(self):
        usd = make_asset()
        asset = ReentrantAsset(usd)
        engine = make_engine(asset, StaticRateOracle("0.05"))
        seen = []

        asset.callback = lambda: seen.append(engine.get_pool_state().cash)
        engine.lend("alice", Decimal("1000"), M90)
        assert seen == [Decimal("100000")]

    def test_engine_usable_after_reentrancy_failure(self):
        usd = make_asset()
        asset = ReentrantAsset(usd)
        engine = make_engine(asset, StaticRateOracle("0.05"))
        asset.callback = lambda: engine.lend("bob", Decimal("500"), M90)
        with pytest.raises(ReentrancyError):
            engine.lend("alice", Decimal("1000"), M90)
        assert engine.lend("alice", Decimal("1000"), M90) == 1


class TestSerialization:

    def test_concurrent_lends_all_commit(self):
        engine = make_engine()
        ids = []
        errors = []
        lock = threading.Lock()

        def worker():
            try:
                position_id = engine.lend("alice", Decimal("100"), M90)
            except Exception as e:
                errors.append(e)
                return
            with lock:
                ids.append(position_id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(ids) == list(range(1, 9))
        state = engine.get_pool_state()
        assert state.cash == Decimal("100800")
        assert engine.reconcile()['difference'] == 0
