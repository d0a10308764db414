"""
engine.py - Stateful perpetuals accounting engine

PerpsEngine is the central state manager of the accounting core.
It is the only class that mutates positions, pool aggregates and balances.

Key responsibilities:
    - Implements the EngineView protocol for read-only access by pure functions
    - Executes pending mutations transactionally: apply tentatively, run the
      post-condition checks, then commit everything or nothing
    - Serializes every mutation behind one lock
    - Fetches exactly one price snapshot per operation
    - Always validates and always logs
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from threading import RLock
from typing import Dict, List, Optional, Any

from .core import (
    # Types
    EngineConfig, TokenConfig, TokenPair, Position, PoolState, PriceSnapshot,
    PendingMutation, Mutation, PositionEvent,
    # Constants
    POOL_WALLET,
    # Exceptions
    PerpsError, InsufficientLiquidity, MaxLeverageExceeded, StaleState,
)
from .price_feed import PriceFeed
from .conversion import fetch_prices
from .positions import PositionBook
from .custody import AssetLedger
from .accrual import PositionValuation, value_position
from .lifecycle import compute_open, compute_increase, compute_decrease, compute_liquidation
from . import reservation


class PerpsEngine:
    """
    Single-market leveraged trading accounting core.

    Implements the EngineView protocol, so the engine itself can be passed to
    the pure lifecycle and vault functions.

    Design Principles:
        - Always validates: every mutation is checked against stale state,
          the leverage bound, the liquidity reservation guard and balances
          before anything is applied.
        - Always logs: every applied mutation is recorded in mutation_log.

    Thread Safety:
        All mutations and snapshot reads hold one re-entrant lock, so
        mutations execute strictly one at a time.

    Example:
        feed = StaticPriceFeed({"WBTC": 50_000 * 10**8, "USDC": 10**8})
        engine = PerpsEngine(
            "btc-usdc", feed,
            index_token=TokenConfig("WBTC", 8, 8),
            collateral_token=TokenConfig("USDC", 6, 8),
        )
        vault = LiquidityVault(engine)
        engine.fund("lp", 1_000_000 * 10**6)
        vault.add_liquidity("lp", 1_000_000 * 10**6)
        engine.fund("alice", 10_000 * 10**6)
        engine.open_position("alice", size=10**8, collateral=10_000 * 10**6, is_long=True)
    """

    def __init__(
        self,
        name: str,
        feed: PriceFeed,
        index_token: TokenConfig,
        collateral_token: TokenConfig,
        config: Optional[EngineConfig] = None,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        share_symbol: str = "PLP",
    ):
        """
        Create an engine.

        Args:
            name: Engine identifier (used in exec_ids)
            feed: Price oracle
            index_token: Precision of the traded asset
            collateral_token: Precision of the pool's reserve asset
            config: Risk parameters (default: EngineConfig())
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print applied and rejected mutations (default: True)
            share_symbol: Custody symbol of liquidity-provider shares
        """
        if share_symbol in (index_token.symbol, collateral_token.symbol):
            raise ValueError(f"share_symbol {share_symbol} collides with a token symbol")
        self.name = name
        self.feed = feed
        self._tokens = TokenPair(index_token, collateral_token)
        self._config = config or EngineConfig()
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self.share_symbol = share_symbol

        self.positions = PositionBook()
        self.custody = AssetLedger(name, [collateral_token.symbol, share_symbol])
        self._pool = PoolState()
        self.mutation_log: List[Mutation] = []
        self._next_sequence: int = 0
        self._lock = RLock()

    @property
    def lock(self) -> RLock:
        """Re-entrant lock serializing every mutation and snapshot read. Hold it to compose several."""
        return self._lock

    # ========================================================================
    # EngineView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the engine."""
        return self._current_time

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tokens(self) -> TokenPair:
        return self._tokens

    @property
    def pool(self) -> PoolState:
        """Current pool aggregates (immutable snapshot)."""
        return self._pool

    def get_position(self, trader: str) -> Optional[Position]:
        with self._lock:
            return self.positions.get(trader)

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        with self._lock:
            return self.custody.get_balance(wallet_id, symbol)

    def total_supply(self, symbol: str) -> int:
        with self._lock:
            return self.custody.total_supply(symbol)

    def pool_balance(self) -> int:
        """Collateral-token balance of the pool wallet (LP assets plus escrow)."""
        return self.get_balance(POOL_WALLET, self._tokens.collateral.symbol)

    def net_pool_assets(self) -> int:
        """
        Pool assets available to liquidity providers.

        Escrowed trader collateral is segregated and excluded.
        """
        with self._lock:
            return self.pool_balance() - self._pool.total_collateral

    # ========================================================================
    # QUERIES
    # ========================================================================

    def has_position(self, trader: str) -> bool:
        with self._lock:
            return self.positions.exists(trader)

    def current_prices(self) -> PriceSnapshot:
        """Fetch a fresh price snapshot at the engine's current time."""
        return fetch_prices(self.feed, self._tokens, self._current_time, self._config.max_price_age)

    def value_position(self, trader: str, prices: Optional[PriceSnapshot] = None) -> PositionValuation:
        """
        Valuation of a trader's position at the given or current prices.

        Raises:
            PositionDoesNotExist: if the trader has no position
        """
        with self._lock:
            position = self.positions.require(trader)
            prices = prices or self.current_prices()
            return value_position(position, prices, self._current_time, self._tokens, self._config)

    def utilization(self) -> Decimal:
        with self._lock:
            return reservation.utilization(self._pool, self.net_pool_assets())

    def available_liquidity(self) -> int:
        """Open interest that can still be added before the guard trips."""
        with self._lock:
            return reservation.available_liquidity(
                self._pool, self.net_pool_assets(), self._config.max_utilization_bps
            )

    def events(self) -> List[PositionEvent]:
        """All notifications emitted so far, in execution order."""
        with self._lock:
            return [event for m in self.mutation_log for event in m.events]

    def verify_solvency(self) -> Dict[str, Any]:
        """
        Verify the accounting invariants of the current state.

        Checks:
            - reserved liquidity <= max utilization of net pool assets
            - total_collateral equals the sum of all position collateral
            - the pool wallet holds at least total_collateral
            - custody balances sum to zero per asset

        Returns:
            Dict with keys:
            - 'valid': bool - True if every invariant holds
            - 'reserved_liquidity': int
            - 'max_utilization': int
            - 'discrepancies': List[Dict] - one entry per violated invariant
        """
        with self._lock:
            net = self.net_pool_assets()
            discrepancies = []

            if not reservation.is_within_limit(self._pool, net, self._config.max_utilization_bps):
                discrepancies.append({
                    'check': 'liquidity_reservation',
                    'reserved': self._pool.reserved_liquidity,
                    'max_utilization': reservation.max_utilization(net, self._config.max_utilization_bps),
                })

            book_collateral = self.positions.total_collateral()
            if book_collateral != self._pool.total_collateral:
                discrepancies.append({
                    'check': 'total_collateral',
                    'expected': book_collateral,
                    'actual': self._pool.total_collateral,
                })

            if net < 0:
                discrepancies.append({
                    'check': 'escrow_coverage',
                    'pool_balance': self.pool_balance(),
                    'total_collateral': self._pool.total_collateral,
                })

            custody = self.custody.verify_double_entry()
            for item in custody['discrepancies']:
                discrepancies.append({'check': 'double_entry', **item})

            return {
                'valid': not discrepancies,
                'reserved_liquidity': self._pool.reserved_liquidity,
                'max_utilization': reservation.max_utilization(net, self._config.max_utilization_bps),
                'discrepancies': discrepancies,
            }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the engine's logical clock. Time only moves forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # CUSTODY (Mutating)
    # ========================================================================

    def fund(self, wallet_id: str, amount: int, symbol: Optional[str] = None) -> None:
        """Issue collateral tokens (or another registered asset) to a wallet."""
        with self._lock:
            transfer = self.custody.issue(wallet_id, symbol or self._tokens.collateral.symbol, amount)
            if self.verbose:
                print(f"📝 Funded: {transfer!r}")

    # ========================================================================
    # POSITION LIFECYCLE (Mutating)
    # ========================================================================

    def open_position(self, trader: str, size: int, collateral: int, is_long: bool) -> Mutation:
        """Open a new position for trader. See lifecycle.compute_open."""
        with self._lock:
            return self._run(lambda prices: compute_open(self, trader, size, collateral, is_long, prices))

    def increase_position(self, trader: str, size_increase: int = 0, collateral_increase: int = 0) -> Mutation:
        """Add size and/or collateral. See lifecycle.compute_increase."""
        with self._lock:
            return self._run(
                lambda prices: compute_increase(self, trader, size_increase, collateral_increase, prices)
            )

    def decrease_position(self, trader: str, size_decrease: int = 0, collateral_decrease: int = 0) -> Mutation:
        """Remove size and/or collateral, paying out to trader. See lifecycle.compute_decrease."""
        with self._lock:
            return self._run(
                lambda prices: compute_decrease(self, trader, size_decrease, collateral_decrease, prices)
            )

    def close_position(self, trader: str) -> Mutation:
        """Decrease the full size of trader's position."""
        with self._lock:
            position = self.positions.require(trader)
            return self.decrease_position(trader, size_decrease=position.size)

    def liquidate(self, liquidator: str, trader: str) -> Mutation:
        """Liquidate trader's over-leveraged position. See lifecycle.compute_liquidation."""
        with self._lock:
            return self._run(lambda prices: compute_liquidation(self, liquidator, trader, prices))

    def _run(self, compute) -> Mutation:
        try:
            pending = compute(self.current_prices())
        except (PerpsError, ValueError) as exc:
            if self.verbose:
                print(f"✗ REJECTED: {type(exc).__name__}: {exc}")
            raise
        return self.execute(pending)

    # ========================================================================
    # MUTATION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Format: exec:{engine_name}:{sequence:012d}:{timestamp_micros}
        Unique and monotonically increasing within an engine.
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingMutation) -> Mutation:
        """
        Execute a PendingMutation transactionally.

        The mutation is applied to a tentative copy of the aggregates and
        validated; only if every check passes are the positions, pool
        aggregates and balances committed and the transfers executed.

        Raises:
            StaleState: the mutation was built against different state or time
            MaxLeverageExceeded: a surviving position is above the leverage bound
            InsufficientLiquidity: the guard trips or the pool cannot pay out
            InsufficientBalance: a wallet cannot cover its transfers
        """
        with self._lock:
            try:
                self._validate(pending)
            except PerpsError as exc:
                if self.verbose:
                    print(f"✗ REJECTED: {pending.action} by {pending.initiator}: "
                          f"{type(exc).__name__}: {exc}")
                raise

            sequence = self._next_sequence
            self._next_sequence += 1
            mutation = Mutation(
                action=pending.action,
                initiator=pending.initiator,
                timestamp=pending.timestamp,
                prices=pending.prices,
                pool_before=pending.pool_before,
                pool_after=pending.pool_after,
                position_changes=pending.position_changes,
                transfers=pending.transfers,
                events=pending.events,
                exec_id=self._generate_exec_id(sequence),
                engine_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
            )

            # Everything below was validated; no step can fail
            for change in pending.position_changes:
                self.positions.apply(change)
            self._pool = pending.pool_after
            self.custody.execute(pending.transfers)

            self.mutation_log.append(mutation)
            if self.verbose:
                print(f"{mutation!r}\n ✓ APPLIED")
            return mutation

    def _validate(self, pending: PendingMutation) -> None:
        """
        Run every check of a pending mutation against a tentative state.

        Checks performed:
        1. Timestamp and stale-state (the mutation was built on current state)
        2. Escrow coverage (pool assets after transfers cover total_collateral)
        3. Leverage bound on surviving positions, when requested
        4. Liquidity reservation guard, when requested
        5. Transfer balances
        """
        if pending.timestamp != self._current_time:
            raise StaleState(
                f"Mutation built at {pending.timestamp}, engine time is {self._current_time}"
            )
        if pending.pool_before != self._pool:
            raise StaleState("Pool aggregates changed since the mutation was built")
        for change in pending.position_changes:
            self.positions.check(change)

        collateral_symbol = self._tokens.collateral.symbol
        net_changes = self.custody.net_changes(pending.transfers)
        pool_balance_after = self.pool_balance() + net_changes.get((POOL_WALLET, collateral_symbol), 0)
        net_assets_after = pool_balance_after - pending.pool_after.total_collateral
        if net_assets_after < 0:
            raise InsufficientLiquidity(
                f"Pool balance {pool_balance_after} cannot cover escrowed collateral "
                f"{pending.pool_after.total_collateral}"
            )

        if pending.check_leverage:
            if pending.prices is None:
                raise ValueError("Leverage check requires a price snapshot")
            for change in pending.position_changes:
                if change.new is None:
                    continue
                valuation = value_position(
                    change.new, pending.prices, self._current_time, self._tokens, self._config
                )
                if valuation.liquidatable:
                    raise MaxLeverageExceeded(
                        f"Leverage of {change.trader} would be {valuation.leverage:.4f}, "
                        f"max is {self._config.max_leverage}"
                    )

        if pending.check_liquidity:
            reservation.check_liquidity(
                pending.pool_after, net_assets_after, self._config.max_utilization_bps
            )

        self.custody.validate(pending.transfers)

    # ========================================================================
    # ENGINE OPERATIONS
    # ========================================================================

    def clone(self) -> PerpsEngine:
        """
        Create an independent copy of this engine.

        Positions, pool aggregates, balances, the mutation log and the clock
        are copied; the price feed is shared.
        """
        with self._lock:
            cloned = PerpsEngine.__new__(PerpsEngine)
            cloned.name = self.name
            cloned.feed = self.feed
            cloned._tokens = self._tokens
            cloned._config = self._config
            cloned._current_time = self._current_time
            cloned.verbose = self.verbose
            cloned.share_symbol = self.share_symbol
            cloned.positions = self.positions.copy()
            cloned.custody = self.custody.clone()
            cloned._pool = self._pool
            cloned.mutation_log = list(self.mutation_log)
            cloned._next_sequence = self._next_sequence
            cloned._lock = RLock()
            return cloned

    def __repr__(self):
        return (f"PerpsEngine({self.name}, {len(self.positions)} positions, "
                f"reserved={self._pool.reserved_liquidity}, time={self._current_time})")
