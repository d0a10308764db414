#!/usr/bin/env python3
"""
demo.py - Walkthrough: One Market From Funding to Liquidation

Each step drives the engine with verbose=True so every applied mutation and
every rejection is printed as it happens.

WHAT YOU'LL SEE:
  1-2: Setup        - Engine, oracle, funding, liquidity providers
  3-5: Trading      - Opening, valuing, and a rejected open
  6-7: Time         - Borrowing fees charged on the next touch, partial close
  8-9: Settlement   - Liquidation, closing, withdrawing liquidity
  10:  Solvency     - Every invariant checked on the final state

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from perps import (
    PerpsEngine, LiquidityVault, StaticPriceFeed,
    TokenConfig, PerpsError, SYSTEM_WALLET, POOL_WALLET,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    btc_price: int = 50_000
    rally_price: int = 55_000
    crash_price: int = 58_000

    pool_liquidity: int = 1_000_000
    trader_funds: int = 100_000


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

BTC = 10 ** 8
USD = 10 ** 6


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def dollars(amount: int) -> str:
    """Format USDC native units as dollars."""
    return f"${amount / USD:,.2f}"


def oracle(price: int) -> int:
    """Raw 8-decimal oracle answer."""
    return price * 10 ** 8


def show_position(engine: PerpsEngine, trader: str):
    if not engine.has_position(trader):
        print(f"{trader:>8}: no position")
        return
    position = engine.get_position(trader)
    valuation = engine.value_position(trader)
    side = "LONG" if position.is_long else "SHORT"
    print(f"{trader:>8}: {side:<5} {position.size / BTC:g} BTC  "
          f"collateral {dollars(position.collateral)}  pnl {dollars(valuation.pnl)}  "
          f"fee {dollars(valuation.pending_fee)}  leverage {valuation.leverage:.2f}x"
          f"{'  LIQUIDATABLE' if valuation.liquidatable else ''}")


def show_pool(engine: PerpsEngine):
    pool = engine.pool
    print(f"Pool balance:       {dollars(engine.pool_balance())}")
    print(f"Escrowed collateral:{dollars(pool.total_collateral):>14}")
    print(f"Net pool assets:    {dollars(engine.net_pool_assets())}")
    print(f"Open interest:      long {dollars(pool.open_interest_long)} / short {dollars(pool.open_interest_short)}")
    print(f"Utilization:        {engine.utilization():.2%}")


# ============================================================================
# SETUP
# ============================================================================

def step_01_engine():
    step_header(1, "The Engine",
        "One index token, one collateral token, one oracle and a logical clock.")

    feed = StaticPriceFeed({"WBTC": oracle(CONFIG.btc_price), "USDC": oracle(1)})
    engine = PerpsEngine(
        "btc-usdc",
        feed,
        index_token=TokenConfig("WBTC", decimals=8, feed_decimals=8),
        collateral_token=TokenConfig("USDC", decimals=6, feed_decimals=8),
        initial_time=CONFIG.start_time,
        verbose=True,
    )
    print(engine)
    print(f"\nMax leverage:       {engine.config.max_leverage}x")
    print(f"Max utilization:    {engine.config.max_utilization_bps / 100:g}%")
    print(f"Liquidation reward: {engine.config.liquidation_reward_bps / 100:g}%")
    wait_for_enter()
    return engine, feed


def step_02_liquidity(engine: PerpsEngine):
    step_header(2, "Funding and Liquidity",
        "Tokens enter through the system wallet; LPs receive pool shares.")

    vault = LiquidityVault(engine)
    engine.fund("lp", CONFIG.pool_liquidity * USD)
    shares = vault.add_liquidity("lp", CONFIG.pool_liquidity * USD)
    for trader in ("alice", "bob", "carol"):
        engine.fund(trader, CONFIG.trader_funds * USD)

    section_header("After Funding")
    print(f"LP shares:          {shares:,} {vault.share_symbol}")
    print(f"System wallet:      {dollars(engine.get_balance(SYSTEM_WALLET, 'USDC'))}")
    show_pool(engine)
    wait_for_enter()
    return vault


# ============================================================================
# TRADING
# ============================================================================

def step_03_open(engine: PerpsEngine):
    step_header(3, "Opening Positions",
        "Collateral is escrowed into the pool; open interest is reserved.")

    engine.open_position("alice", size=2 * BTC, collateral=20_000 * USD, is_long=True)
    engine.open_position("bob", size=5 * BTC, collateral=30_000 * USD, is_long=False)

    section_header("Positions")
    show_position(engine, "alice")
    show_position(engine, "bob")
    show_pool(engine)
    wait_for_enter()


def step_04_price_move(engine: PerpsEngine, feed: StaticPriceFeed):
    step_header(4, "The Price Moves",
        "Valuations follow the oracle; nothing is settled until a mutation.")

    feed.update_answer("WBTC", oracle(CONFIG.rally_price))
    print(f"WBTC: ${CONFIG.btc_price:,} -> ${CONFIG.rally_price:,}\n")
    show_position(engine, "alice")
    show_position(engine, "bob")
    wait_for_enter()


def step_05_rejection(engine: PerpsEngine):
    step_header(5, "A Rejected Open",
        "Reserved liquidity may not exceed the utilization bound.")

    print(f"Available liquidity: {dollars(engine.available_liquidity())}\n")
    try:
        engine.open_position("carol", size=15 * BTC, collateral=60_000 * USD, is_long=True)
    except PerpsError as exc:
        print(f"\nRejected with {type(exc).__name__}")

    section_header("Nothing Changed")
    print(f"carol has position: {engine.has_position('carol')}")
    print(f"carol balance:      {dollars(engine.get_balance('carol', 'USDC'))}")
    wait_for_enter()


# ============================================================================
# TIME
# ============================================================================

def step_06_fees(engine: PerpsEngine):
    step_header(6, "Borrowing Fees",
        "Fees accrue with time and are charged on the next mutation.")

    engine.advance_time(CONFIG.start_time + timedelta(days=30))
    print(f"Time advanced to {engine.current_time}\n")
    show_position(engine, "alice")

    section_header("alice tops up collateral")
    engine.increase_position("alice", collateral_increase=1_000 * USD)
    print(f"Fee charged: {dollars(engine.events()[-1].fee)}")
    show_position(engine, "alice")
    wait_for_enter()


def step_07_partial_close(engine: PerpsEngine):
    step_header(7, "Partial Close",
        "Decreasing size realizes the pro-rata PnL; profit is paid from the pool.")

    before = engine.get_balance("alice", "USDC")
    engine.decrease_position("alice", size_decrease=BTC)
    event = engine.events()[-1]
    print(f"Realized PnL:   {dollars(event.realized_pnl)}")
    print(f"Paid to alice:  {dollars(engine.get_balance('alice', 'USDC') - before)}")
    show_position(engine, "alice")
    wait_for_enter()


# ============================================================================
# SETTLEMENT
# ============================================================================

def step_08_liquidation(engine: PerpsEngine, feed: StaticPriceFeed):
    step_header(8, "Liquidation",
        "Anyone but the trader may close a position beyond max leverage.")

    feed.update_answer("WBTC", oracle(CONFIG.crash_price))
    print(f"WBTC -> ${CONFIG.crash_price:,}\n")
    show_position(engine, "bob")
    print()

    engine.liquidate("keeper", "bob")
    print(f"\nkeeper reward: {dollars(engine.get_balance('keeper', 'USDC'))}")
    print(f"bob residual:  {dollars(engine.events()[-1].amount)}")
    wait_for_enter()


def step_09_close_and_withdraw(engine: PerpsEngine, vault: LiquidityVault):
    step_header(9, "Closing Out",
        "The last position closes and the LP redeems every share.")

    engine.close_position("alice")
    print()
    show_pool(engine)

    section_header("LP withdraws")
    shares = vault.shares_of("lp")
    assets = vault.remove_liquidity("lp", shares)
    print(f"Redeemed {shares:,} {vault.share_symbol} for {dollars(assets)} "
          f"(deposited {dollars(CONFIG.pool_liquidity * USD)})")
    wait_for_enter()


# ============================================================================
# SOLVENCY
# ============================================================================

def step_10_solvency(engine: PerpsEngine):
    step_header(10, "Solvency",
        "Escrow, reservation and conservation hold after every mutation.")

    result = engine.verify_solvency()
    print(f"Valid:          {result['valid']}")
    print(f"Discrepancies:  {result['discrepancies']}")
    print(f"Mutations:      {len(engine.mutation_log)}")
    print(f"Pool residue:   {dollars(engine.get_balance(POOL_WALLET, 'USDC'))}")

    section_header("Final balances")
    for wallet in ("alice", "bob", "carol", "keeper", "lp", SYSTEM_WALLET):
        print(f"{wallet:>8}: {dollars(engine.get_balance(wallet, 'USDC'))}")


def main():
    print("=" * 70)
    print("       PERPS - WALKTHROUGH")
    print("=" * 70)

    engine, feed = step_01_engine()
    vault = step_02_liquidity(engine)
    step_03_open(engine)
    step_04_price_move(engine, feed)
    step_05_rejection(engine)
    step_06_fees(engine)
    step_07_partial_close(engine)
    step_08_liquidation(engine, feed)
    step_09_close_and_withdraw(engine, vault)
    step_10_solvency(engine)


if __name__ == "__main__":
    main()
