"""
fake_view.py - Test Helper for EngineView

Provides a minimal EngineView implementation for testing the pure lifecycle
and vault functions without requiring a full PerpsEngine instance.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Optional

from perps import EngineConfig, TokenPair, Position, PoolState, POOL_WALLET


class FakeView:
    """
    Minimal EngineView implementation for testing compute functions.

    Example:
        view = FakeView(
            tokens=TOKENS,
            positions={'alice': Position(10**8, 10_000 * 10**6, price, t0, True)},
            pool=PoolState(open_interest_long=50_000 * 10**6, total_collateral=10_000 * 10**6),
            balances={'pool': {'USDC': 1_010_000 * 10**6}},
            time=t0,
        )

        compute_increase(view, 'alice', 10**8, 0, prices)
    """

    def __init__(
        self,
        tokens: TokenPair,
        positions: Optional[Dict[str, Position]] = None,
        pool: Optional[PoolState] = None,
        balances: Optional[Dict[str, Dict[str, int]]] = None,
        time: Optional[datetime] = None,
        config: Optional[EngineConfig] = None,
    ):
        self._tokens = tokens
        self._positions = dict(positions or {})
        self._pool = pool or PoolState()
        self._balances = balances or {}
        self._time = time or datetime(2025, 1, 1)
        self._config = config or EngineConfig()

    @property
    def current_time(self) -> datetime:
        return self._time

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def tokens(self) -> TokenPair:
        return self._tokens

    @property
    def pool(self) -> PoolState:
        return self._pool

    def get_position(self, trader: str) -> Optional[Position]:
        return self._positions.get(trader)

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        return self._balances.get(wallet_id, {}).get(symbol, 0)

    def total_supply(self, symbol: str) -> int:
        return sum(
            bals.get(symbol, 0)
            for wallet, bals in self._balances.items()
            if wallet != "system"
        )

    def net_pool_assets(self) -> int:
        return self.get_balance(POOL_WALLET, self._tokens.collateral.symbol) - self._pool.total_collateral
