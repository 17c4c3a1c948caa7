#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Bond Pool Step by Step

This is a pedagogical demonstration of the single-pool fixed-income market
maker. Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:   Foundation   - The asset ledger, the rate oracle, pool initialization
  4-6:   Entry        - Quotes, lending, borrowing against collateral
  7-9:   Exit         - Redemption, repayment, liquidation after grace
  10-11: Safety       - Rollback on failure, reconciliation and conservation
  12:    Curves       - Quote curve across tenors

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from bondpool import (
    PoolEngine, PoolConfig, AssetLedger, ManualRateOracle,
    PoolError, SolvencyError,
    invariant_constant, relative_drift, year_fraction,
    quote_curve,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    anchor_rate: Decimal = Decimal("0.05")

    # Funding
    seed_cash: Decimal = Decimal("100000")
    participant_balance: Decimal = Decimal("50000")

    # Trades
    lend_amount: Decimal = Decimal("10000")
    borrow_amount: Decimal = Decimal("10000")
    borrow_collateral: Decimal = Decimal("15000")
    tenor_days: int = 90


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_state(engine: PoolEngine):
    state = engine.get_pool_state()
    print(f"  cash            = {state.cash:,.2f}")
    print(f"  pv_bonds        = {state.pv_bonds:,.2f}")
    print(f"  net_liabilities = {state.net_liabilities:,.2f}")
    print(f"  collateral_held = {state.collateral_held:,.2f}")
    print(f"  rate            = {engine.get_current_rate():.6f}")
    print(f"  solvent         = {engine.check_solvency()}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_asset_ledger():
    """Create the underlying asset and fund the participants."""
    step_header(1, "The Asset Ledger",
        "The pool moves one fungible asset. Every unit is issued from 'system'.")

    usd = AssetLedger("USD", initial_time=CONFIG.start_time)
    for account in ("pool", "admin", "alice", "bob", "keeper"):
        usd.register_account(account)
    usd.mint("admin", CONFIG.seed_cash)
    for account in ("alice", "bob"):
        usd.mint(account, CONFIG.participant_balance)

    print(">>> usd = AssetLedger('USD')")
    print(">>> usd.register_account('pool'); usd.mint('alice', 50_000) ...")
    for account in sorted(usd.list_accounts()):
        print(f"  {account:<8} {usd.get_balance(account):>14,.2f}")
    print(f"\nTotal supply (system included): {usd.total_supply()}")
    return usd


def step_02_oracle():
    """Publish the anchor rate."""
    step_header(2, "The Rate Oracle",
        "The anchor rate r* steers pricing. A feed older than one hour is stale.")

    oracle = ManualRateOracle()
    print(f"Before any update: stale={oracle.is_stale(CONFIG.start_time)}")
    oracle.update_rate(CONFIG.anchor_rate, CONFIG.start_time)
    print(f">>> oracle.update_rate({CONFIG.anchor_rate}, {CONFIG.start_time})")
    print(f"After update: stale={oracle.is_stale(CONFIG.start_time)}")
    later = CONFIG.start_time + timedelta(hours=2)
    print(f"Two hours later: stale={oracle.is_stale(later)}")
    return oracle


def step_03_initialize(usd: AssetLedger, oracle: ManualRateOracle):
    """Seed the pool."""
    step_header(3, "Initialize the Pool",
        "With pv_bonds == cash the blended rate equals the anchor exactly.")

    engine = PoolEngine(usd, oracle, PoolConfig(), admin="admin",
                        initial_time=CONFIG.start_time)
    engine.initialize("admin", CONFIG.seed_cash)
    print(f">>> engine.initialize('admin', {CONFIG.seed_cash})")
    show_state(engine)
    return engine


# ============================================================================
# PHASE 2: ENTRY (Steps 4-6)
# ============================================================================

def step_04_quote(engine: PoolEngine, maturity: datetime):
    """Preview a lend without committing anything."""
    step_header(4, "Quotes",
        "A quote prices a trade against the current state and changes nothing.")

    quote = engine.quote_lend(CONFIG.lend_amount, maturity)
    print(f"Lend {CONFIG.lend_amount:,} until {maturity.date()}:")
    print(f"  face value     = {quote.face_value:,.6f}")
    print(f"  present value  = {quote.present_value:,.6f}")
    print(f"  price          = {quote.price:.8f}")
    print(f"  years to mat.  = {quote.time_to_maturity:.6f}")


def step_05_lend(engine: PoolEngine, maturity: datetime):
    """Lend cash for a fixed face value."""
    step_header(5, "Lend",
        "Cash goes in, bond present value comes out. Solvency is checked after.")

    t = year_fraction(engine.current_time, maturity)
    state = engine.get_pool_state()
    before = invariant_constant(state.pv_bonds, state.cash, t, CONFIG.anchor_rate)

    lend_id = engine.lend("alice", CONFIG.lend_amount, maturity)
    position = engine.get_position(lend_id)
    print(f">>> engine.lend('alice', {CONFIG.lend_amount}, {maturity.date()})")
    print(f"  {position}")
    show_state(engine)

    state = engine.get_pool_state()
    after = invariant_constant(state.pv_bonds, state.cash, t, CONFIG.anchor_rate)
    print(f"\nInvariant drift: {relative_drift(before, after):.6%} (tolerance 1%)")
    return lend_id


def step_06_borrow(engine: PoolEngine, maturity: datetime):
    """Borrow against collateral."""
    step_header(6, "Borrow",
        "Collateral of at least 150% is pulled first, then the loan is paid out.")

    borrow_id = engine.borrow("bob", CONFIG.borrow_amount, CONFIG.borrow_collateral, maturity)
    print(f">>> engine.borrow('bob', {CONFIG.borrow_amount}, {CONFIG.borrow_collateral}, ...)")
    print(f"  {engine.get_position(borrow_id)}")
    show_state(engine)

    section_header("Undercollateralized Attempt")
    try:
        engine.borrow("bob", Decimal("1000"), Decimal("1000"), maturity)
    except PoolError as e:
        print(f"Rejected: {type(e).__name__}: {e}")
    return borrow_id


# ============================================================================
# PHASE 3: EXIT (Steps 7-9)
# ============================================================================

def step_07_redeem(engine: PoolEngine, oracle: ManualRateOracle, lend_id: int, maturity: datetime):
    """Redeem the lend at maturity."""
    step_header(7, "Redeem",
        "At maturity the price is exactly 1, so the lender receives face value.")

    engine.advance_time(maturity)
    oracle.update_rate(CONFIG.anchor_rate, maturity)
    payout = engine.redeem("alice", lend_id)
    print(f">>> engine.redeem('alice', {lend_id})  ->  {payout:,.6f}")
    show_state(engine)


def step_08_repay(engine: PoolEngine, borrow_id: int):
    """Repay the borrow and receive the collateral back."""
    step_header(8, "Repay",
        "Repaying at maturity costs face value and refunds the full collateral.")

    repaid = engine.repay("bob", borrow_id)
    print(f">>> engine.repay('bob', {borrow_id})  ->  {repaid:,.6f}")
    show_state(engine)

    section_header("Repay Twice")
    try:
        engine.repay("bob", borrow_id)
    except PoolError as e:
        print(f"Rejected: {type(e).__name__}: {e}")


def step_09_liquidate(engine: PoolEngine):
    """Let a borrow default and liquidate it."""
    step_header(9, "Liquidation",
        "Anyone may seize collateral strictly after maturity plus 24 hours.")

    now = engine.current_time
    maturity = now + timedelta(days=30)
    borrow_id = engine.borrow("bob", Decimal("2000"), Decimal("3000"), maturity)
    print(f"Opened borrow #{borrow_id} maturing {maturity}")

    engine.advance_time(maturity + timedelta(hours=24))
    try:
        engine.liquidate("keeper", borrow_id)
    except PoolError as e:
        print(f"At maturity + 24h: {type(e).__name__}: {e}")

    engine.advance_time(maturity + timedelta(hours=24, seconds=1))
    seized = engine.liquidate("keeper", borrow_id)
    event = engine.event_log[-1]
    print(f"At maturity + 24h + 1s: seized {seized:,.2f}")
    print(f"  debt={event.data['debt']:,.4f} penalty={event.data['penalty']:,.4f} "
          f"total_owed={event.data['total_owed']:,.4f} (reported only)")
    show_state(engine)


# ============================================================================
# PHASE 4: SAFETY (Steps 10-11)
# ============================================================================

def step_10_rollback():
    """A lend that breaks solvency leaves no trace."""
    step_header(10, "Rollback",
        "A failed postcondition reverses transfers already made. Nothing is observable.")

    usd = AssetLedger("USD", initial_time=CONFIG.start_time)
    for account in ("pool", "admin", "alice"):
        usd.register_account(account)
    usd.mint("admin", CONFIG.seed_cash)
    usd.mint("alice", CONFIG.participant_balance)
    oracle = ManualRateOracle(CONFIG.anchor_rate, CONFIG.start_time)

    strict = PoolEngine(usd, oracle, PoolConfig(solvency_threshold=Decimal("1.2")),
                        admin="admin", initial_time=CONFIG.start_time)
    strict.initialize("admin", CONFIG.seed_cash)
    try:
        strict.lend("alice", CONFIG.lend_amount, CONFIG.start_time + timedelta(days=90))
    except SolvencyError as e:
        print(f"Rejected: {e}")
    print(f"alice balance: {usd.get_balance('alice'):,.2f} (unchanged)")
    print(f"events: {[e.event_type.value for e in strict.event_log]}")
    print(f"transfer log: {len(usd.transfer_log)} entries (pull and refund both recorded)")


def step_11_reconcile(engine: PoolEngine, usd: AssetLedger):
    """Asset balances agree with the pool's books."""
    step_header(11, "Reconciliation",
        "The pool account always holds exactly cash + collateral_held.")

    result = engine.reconcile()
    print(f"expected={result['expected']:,.6f} actual={result['actual']:,.6f} "
          f"difference={result['difference']}")
    conservation = usd.verify_conservation()
    print(f"asset conservation valid: {conservation['valid']} "
          f"(total supply {conservation['total_supply']})")
    print(f"events emitted: {len(engine.event_log)}")


# ============================================================================
# PHASE 5: CURVES (Step 12)
# ============================================================================

def step_12_curve(engine: PoolEngine):
    """Price one lend across tenors."""
    step_header(12, "Quote Curve",
        "The same cash buys a different face value at every tenor.")

    tenors = [Decimal(d) / Decimal(365) for d in (30, 90, 180, 365)]
    curve = quote_curve(engine.get_pool_state(), CONFIG.anchor_rate, CONFIG.lend_amount, tenors)
    print(f"{'tenor':>8} {'face':>14} {'price':>10} {'yield':>8}")
    for t, face, p, y in zip(curve['tenor'], curve['face_value'], curve['price'], curve['yield']):
        print(f"{t:8.4f} {face:14,.4f} {p:10.6f} {y:8.4%}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       BONDPOOL - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    usd = step_01_asset_ledger()
    wait_for_enter()

    oracle = step_02_oracle()
    wait_for_enter()

    engine = step_03_initialize(usd, oracle)
    maturity = CONFIG.start_time + timedelta(days=CONFIG.tenor_days)
    wait_for_enter()

    step_04_quote(engine, maturity)
    wait_for_enter()

    lend_id = step_05_lend(engine, maturity)
    wait_for_enter()

    borrow_id = step_06_borrow(engine, maturity)
    wait_for_enter()

    step_07_redeem(engine, oracle, lend_id, maturity)
    wait_for_enter()

    step_08_repay(engine, borrow_id)
    wait_for_enter()

    step_09_liquidate(engine)
    wait_for_enter()

    step_10_rollback()
    wait_for_enter()

    step_11_reconcile(engine, usd)
    wait_for_enter()

    step_12_curve(engine)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See bondpool/invariant_math.py for the pricing invariant
      - See bondpool/positions.py for the position state machine
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
