"""
vault.py - Liquidity-provider share accounting

The pool's liquidity providers hold shares of the net pool assets, i.e. the
collateral-token balance of the pool wallet minus the collateral escrowed
for open positions. Conversion follows the ERC-4626 convention with floor
rounding in favour of the pool:

    total_assets          = pool balance - total_collateral
    convert_to_shares(a)  = a                               (no shares outstanding)
                          = a * total_shares // total_assets
    convert_to_assets(s)  = s * total_assets // total_shares

Only add_liquidity and remove_liquidity move value. The generic
deposit / mint / withdraw / redeem entry points are disabled.

The compute_* functions are pure and return a PendingMutation; the engine
executes it like any position mutation, so removals are subject to the
liquidity reservation guard evaluated on the post-withdrawal state.
"""

from __future__ import annotations
from typing import Protocol, runtime_checkable

from .core import (
    EngineView, PendingMutation, PositionEvent, EventType, Transfer, PerpsError,
    POOL_WALLET, SYSTEM_WALLET,
    InsufficientBalance, InsufficientLiquidity, UnsupportedOperation,
    build_mutation, require_account, _require_int,
)


# ============================================================================
# SHARE CONVERSION (pure)
# ============================================================================

def convert_to_shares(assets: int, total_assets: int, total_shares: int) -> int:
    if total_shares == 0:
        return assets
    if total_assets <= 0:
        raise InsufficientLiquidity("Pool has no assets backing its outstanding shares")
    return assets * total_shares // total_assets


def convert_to_assets(shares: int, total_assets: int, total_shares: int) -> int:
    if total_shares == 0:
        return shares
    return max(0, total_assets) * shares // total_shares


def compute_add_liquidity(view: EngineView, provider: str, amount: int, share_symbol: str) -> PendingMutation:
    """
    Pull `amount` collateral from provider into the pool and mint shares.

    Raises:
        ValueError: amount not positive, or too small to mint a share
        ReservedAccount: provider is a custody-reserved wallet
        InsufficientLiquidity: shares are outstanding but back no assets
    """
    require_account(provider)
    _require_int("amount", amount)
    if amount <= 0:
        raise ValueError(f"Liquidity amount must be positive, got {amount}")

    shares = convert_to_shares(amount, view.net_pool_assets(), view.total_supply(share_symbol))
    if shares <= 0:
        raise ValueError(f"Amount {amount} is too small to mint a share")

    transfers = [
        Transfer(amount, view.tokens.collateral.symbol, provider, POOL_WALLET, "liquidity_deposit"),
        Transfer(shares, share_symbol, SYSTEM_WALLET, provider, "mint"),
    ]
    event = PositionEvent(
        event_type=EventType.LIQUIDITY_ADDED,
        account=provider,
        amount=amount,
        shares=shares,
    )
    return build_mutation(
        view, "add_liquidity", provider, view.pool,
        transfers=transfers,
        events=[event],
    )


def compute_remove_liquidity(view: EngineView, provider: str, shares: int, share_symbol: str) -> PendingMutation:
    """
    Burn provider's shares and pay out their value in collateral.

    The engine checks the liquidity reservation guard after the withdrawal.

    Raises:
        ValueError: shares not positive, or worth nothing
        InsufficientBalance: provider holds fewer shares
        ReservedAccount: provider is a custody-reserved wallet
    """
    require_account(provider)
    _require_int("shares", shares)
    if shares <= 0:
        raise ValueError(f"Shares to remove must be positive, got {shares}")
    held = view.get_balance(provider, share_symbol)
    if shares > held:
        raise InsufficientBalance(f"{provider} holds {held} {share_symbol}, cannot remove {shares}")

    amount = convert_to_assets(shares, view.net_pool_assets(), view.total_supply(share_symbol))
    if amount <= 0:
        raise ValueError(f"{shares} shares redeem for no assets")

    transfers = [
        Transfer(shares, share_symbol, provider, SYSTEM_WALLET, "burn"),
        Transfer(amount, view.tokens.collateral.symbol, POOL_WALLET, provider, "liquidity_withdrawal"),
    ]
    event = PositionEvent(
        event_type=EventType.LIQUIDITY_REMOVED,
        account=provider,
        amount=amount,
        shares=shares,
    )
    return build_mutation(
        view, "remove_liquidity", provider, view.pool,
        transfers=transfers,
        events=[event],
        check_liquidity=True,
    )


# ============================================================================
# CAPABILITY
# ============================================================================

@runtime_checkable
class LiquidityCapability(Protocol):
    """The only ways liquidity providers may move value in or out of the pool."""

    def add_liquidity(self, provider: str, amount: int) -> int:
        ...

    def remove_liquidity(self, provider: str, shares: int) -> int:
        ...


class LiquidityVault:
    """
    Share accounting bound to one PerpsEngine.

    Shares live in the engine's custody ledger under engine.share_symbol, so
    the vault itself holds no state.
    """

    def __init__(self, engine):
        self.engine = engine

    @property
    def share_symbol(self) -> str:
        return self.engine.share_symbol

    def total_assets(self) -> int:
        return self.engine.net_pool_assets()

    def total_shares(self) -> int:
        return self.engine.total_supply(self.share_symbol)

    def shares_of(self, provider: str) -> int:
        return self.engine.get_balance(provider, self.share_symbol)

    def convert_to_shares(self, assets: int) -> int:
        with self.engine.lock:
            return convert_to_shares(assets, self.total_assets(), self.total_shares())

    def convert_to_assets(self, shares: int) -> int:
        with self.engine.lock:
            return convert_to_assets(shares, self.total_assets(), self.total_shares())

    def add_liquidity(self, provider: str, amount: int) -> int:
        """Deposit collateral, returning the shares minted."""
        with self.engine.lock:
            pending = self._compute(compute_add_liquidity, provider, amount)
            self.engine.execute(pending)
            return pending.events[0].shares

    def remove_liquidity(self, provider: str, shares: int) -> int:
        """Redeem shares, returning the collateral paid out."""
        with self.engine.lock:
            pending = self._compute(compute_remove_liquidity, provider, shares)
            self.engine.execute(pending)
            return pending.events[0].amount

    def _compute(self, compute, provider: str, value: int) -> PendingMutation:
        try:
            return compute(self.engine, provider, value, self.share_symbol)
        except (PerpsError, ValueError) as exc:
            if self.engine.verbose:
                print(f"✗ REJECTED: {type(exc).__name__}: {exc}")
            raise

    # Generic pool entry points are disabled

    def deposit(self, assets: int, receiver: str) -> int:
        raise UnsupportedOperation("deposit is disabled, use add_liquidity")

    def mint(self, shares: int, receiver: str) -> int:
        raise UnsupportedOperation("mint is disabled, use add_liquidity")

    def withdraw(self, assets: int, receiver: str, owner: str) -> int:
        raise UnsupportedOperation("withdraw is disabled, use remove_liquidity")

    def redeem(self, shares: int, receiver: str, owner: str) -> int:
        raise UnsupportedOperation("redeem is disabled, use remove_liquidity")

    def __repr__(self):
        return f"LiquidityVault({self.engine.name}, shares={self.total_shares()}, assets={self.total_assets()})"
