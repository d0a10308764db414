"""
Core types and pure helpers for the perpetuals accounting core.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point precision, leverage and utilization limits, fee schedule
2. Enums: Token identity, event types
3. Exceptions: PerpsError and the precondition/postcondition error kinds
4. Immutable data structures: TokenConfig, Position, PoolState, PriceSnapshot,
   Transfer, PositionChange, PositionEvent, PendingMutation, Mutation
5. Protocols: EngineView for read-only engine access

All amounts are Python ints in fixed point: native token units for token
amounts, USD_PRECISION (10**30) for prices and USD values.
No function in this module mutates engine state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import (
    List, Optional, Any, Protocol, Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Canonical USD fixed point: 30 decimal digits.
USD_DECIMALS = 30
USD_PRECISION = 10 ** USD_DECIMALS

# Basis points denominator for all ratio parameters.
BPS = 10_000

# Positions whose leverage exceeds this are rejected (open/increase/decrease)
# or liquidatable.
MAX_LEVERAGE = 15

# Open interest may reserve at most 75% of net pool assets.
MAX_UTILIZATION_BPS = 7_500

# 10% of notional per 365-day year: fee = notional * elapsed / rate_seconds
SECONDS_PER_YEAR = 365 * 86_400
BORROWING_FEE_RATE_SECONDS = SECONDS_PER_YEAR * 10

# Share of a liquidated position's collateral paid to the liquidator.
LIQUIDATION_REWARD_BPS = 500

# Reserved wallet for issuance and burning. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Wallet holding LP deposits and escrowed trader collateral.
POOL_WALLET = "pool"

RESERVED_WALLETS = frozenset({SYSTEM_WALLET, POOL_WALLET})


# ============================================================================
# ENUMS
# ============================================================================

class Token(Enum):
    """The two assets of the market: the traded index and the pool's reserve."""
    INDEX = "index"
    COLLATERAL = "collateral"


class EventType(Enum):
    """Notifications emitted by applied mutations."""
    OPENED = "opened"
    INCREASED = "increased"
    DECREASED = "decreased"
    CLOSED = "closed"
    LIQUIDATED = "liquidated"
    LIQUIDITY_ADDED = "liquidity_added"
    LIQUIDITY_REMOVED = "liquidity_removed"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PerpsError(Exception):
    """Base exception for all accounting-core errors."""
    pass


class InsufficientSize(PerpsError):
    """Raised when a size is zero on open, or a decrease exceeds the position size."""
    pass


class InsufficientCollateral(PerpsError):
    """Raised when collateral is zero on open, or a decrease exceeds the position collateral."""
    pass


class TraderHasOpenPosition(PerpsError):
    """Raised when open is called for a trader that already has a position."""
    pass


class PositionDoesNotExist(PerpsError):
    """Raised when querying or mutating a trader with no open position."""
    pass


class NoIncrease(PerpsError):
    """Raised when increase is called with both deltas zero."""
    pass


class NoDecrease(PerpsError):
    """Raised when decrease is called with both deltas zero."""
    pass


class MaxLeverageExceeded(PerpsError):
    """Raised when a mutation would leave a position above the leverage bound."""
    pass


class InsufficientLiquidity(PerpsError):
    """Raised when reserved liquidity would exceed max utilization, or the pool cannot pay out."""
    pass


class PositionNotLiquidatable(PerpsError):
    """Raised when liquidate is called on a position within the leverage bound."""
    pass


class SelfLiquidationProhibited(PerpsError):
    """Raised when a trader tries to liquidate their own position."""
    pass


class UnsupportedOperation(PerpsError):
    """Raised by the generic pool entry points that are disabled for direct use."""
    pass


class StaleOrInvalidPrice(PerpsError):
    """Raised when an oracle answer is missing, non-positive, or too old."""
    pass


class StaleState(PerpsError):
    """Raised when a pending mutation was built against state that has since changed."""
    pass


class InsufficientBalance(PerpsError):
    """Raised when an asset transfer would overdraw a wallet."""
    pass


class ReservedAccount(PerpsError):
    """Raised when a trader, liquidator or provider uses a custody-reserved wallet id."""
    pass


# ============================================================================
# HELPERS
# ============================================================================

def div_toward_zero(numerator: int, denominator: int) -> int:
    """
    Integer division truncating toward zero.

    Python's // floors, which would round losses away from zero.
    """
    if denominator == 0:
        raise ZeroDivisionError("division by zero")
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator > 0) else -quotient


def _require_int(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")


def require_account(account: str) -> None:
    """Reject account ids that name one of the engine's own custody wallets."""
    if account in RESERVED_WALLETS:
        raise ReservedAccount(f"{account!r} is a reserved wallet and cannot act as an account")


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class TokenConfig:
    """
    Precision description of one token, fixed at engine construction.

    Attributes:
        symbol: Asset symbol used in custody balances (e.g., "WBTC", "USDC").
        decimals: Decimal places of the native unit.
        feed_decimals: Decimal places of the oracle's quote.
    """
    symbol: str
    decimals: int
    feed_decimals: int

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("TokenConfig symbol cannot be empty")
        _require_int("decimals", self.decimals)
        _require_int("feed_decimals", self.feed_decimals)
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")
        if not 0 <= self.feed_decimals <= USD_DECIMALS:
            raise ValueError(
                f"feed_decimals must be between 0 and {USD_DECIMALS}, got {self.feed_decimals}"
            )

    @property
    def native_precision(self) -> int:
        """10**decimals: one whole token in native units."""
        return 10 ** self.decimals

    @property
    def price_scale(self) -> int:
        """Factor lifting an oracle answer to USD_PRECISION."""
        return 10 ** (USD_DECIMALS - self.feed_decimals)


@dataclass(frozen=True, slots=True)
class TokenPair:
    """The index token and the collateral token of the single market."""
    index: TokenConfig
    collateral: TokenConfig

    def __post_init__(self):
        if self.index.symbol == self.collateral.symbol:
            raise ValueError("index and collateral tokens must have different symbols")

    def config(self, token: Token) -> TokenConfig:
        return self.index if token is Token.INDEX else self.collateral

    @staticmethod
    def other(token: Token) -> Token:
        return Token.COLLATERAL if token is Token.INDEX else Token.INDEX


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable risk parameters of an engine instance.

    Defaults are the module constants. All values are fixed for the life
    of the engine.
    """
    max_leverage: int = MAX_LEVERAGE
    max_utilization_bps: int = MAX_UTILIZATION_BPS
    borrowing_fee_rate_seconds: int = BORROWING_FEE_RATE_SECONDS
    liquidation_reward_bps: int = LIQUIDATION_REWARD_BPS
    max_price_age: Optional[timedelta] = None

    def __post_init__(self):
        for name in ("max_leverage", "max_utilization_bps", "borrowing_fee_rate_seconds"):
            value = getattr(self, name)
            _require_int(name, value)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        _require_int("liquidation_reward_bps", self.liquidation_reward_bps)
        if not 0 <= self.liquidation_reward_bps <= BPS:
            raise ValueError(
                f"liquidation_reward_bps must be between 0 and {BPS}, got {self.liquidation_reward_bps}"
            )
        if self.max_utilization_bps > BPS:
            raise ValueError(f"max_utilization_bps cannot exceed {BPS}")
        if self.max_price_age is not None and self.max_price_age <= timedelta(0):
            raise ValueError("max_price_age must be positive")


# ============================================================================
# STATE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    One trader's open leveraged exposure.

    Attributes:
        size: Index-asset exposure in index native units (> 0).
        collateral: Margin posted in collateral native units (> 0).
        average_price: Volume-weighted entry price of the index, USD_PRECISION.
        last_updated: Time of the last fee accrual or mutation.
        is_long: Direction. Immutable for the life of the position.

    A closed position has no record at all; absence is represented by None
    in the position book, never by a zeroed record.
    """
    size: int
    collateral: int
    average_price: int
    last_updated: datetime
    is_long: bool

    def __post_init__(self):
        _require_int("size", self.size)
        _require_int("collateral", self.collateral)
        _require_int("average_price", self.average_price)
        if self.size <= 0:
            raise ValueError(f"Position size must be positive, got {self.size}")
        if self.collateral <= 0:
            raise ValueError(f"Position collateral must be positive, got {self.collateral}")
        if self.average_price <= 0:
            raise ValueError(f"Position average_price must be positive, got {self.average_price}")
        if not isinstance(self.is_long, bool):
            raise ValueError("Position is_long must be bool")

    @property
    def side(self) -> str:
        return "LONG" if self.is_long else "SHORT"


@dataclass(frozen=True, slots=True)
class PoolState:
    """
    Pool-level aggregates shared by all traders.

    open_interest_long / open_interest_short are running aggregates in
    collateral native units, converted at the prices of each update.
    total_collateral is all margin currently escrowed for open positions.
    """
    open_interest_long: int = 0
    open_interest_short: int = 0
    total_collateral: int = 0

    def __post_init__(self):
        for name in ("open_interest_long", "open_interest_short", "total_collateral"):
            value = getattr(self, name)
            _require_int(name, value)
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")

    @property
    def reserved_liquidity(self) -> int:
        return self.open_interest_long + self.open_interest_short

    def open_interest(self, is_long: bool) -> int:
        return self.open_interest_long if is_long else self.open_interest_short

    def adjust(
        self,
        is_long: bool = True,
        open_interest_delta: int = 0,
        collateral_delta: int = 0,
    ) -> PoolState:
        """
        Return a new PoolState with the deltas applied.

        Open interest saturates at zero: it is a running aggregate converted
        at each update's prices, so a reduction can exceed what was recorded.
        """
        oi_long, oi_short = self.open_interest_long, self.open_interest_short
        if is_long:
            oi_long = max(0, oi_long + open_interest_delta)
        else:
            oi_short = max(0, oi_short + open_interest_delta)
        return PoolState(
            open_interest_long=oi_long,
            open_interest_short=oi_short,
            total_collateral=self.total_collateral + collateral_delta,
        )


@dataclass(frozen=True, slots=True)
class PriceSnapshot:
    """
    One consistent pair of USD prices (USD_PRECISION) used for a whole mutation.
    """
    index_price: int
    collateral_price: int
    timestamp: datetime

    def __post_init__(self):
        _require_int("index_price", self.index_price)
        _require_int("collateral_price", self.collateral_price)
        if self.index_price <= 0 or self.collateral_price <= 0:
            raise ValueError("PriceSnapshot prices must be positive")

    def price_of(self, token: Token) -> int:
        return self.index_price if token is Token.INDEX else self.collateral_price


# ============================================================================
# MUTATION RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single movement of an asset between two wallets.

    Attributes:
        amount: Native units to move (positive).
        symbol: Asset symbol.
        source: Wallet debited.
        dest: Wallet credited.
        reason: Short tag describing why (e.g., "escrow", "payout").
    """
    amount: int
    symbol: str
    source: str
    dest: str
    reason: str

    def __post_init__(self):
        _require_int("amount", self.amount)
        if self.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {self.amount}")
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Transfer symbol cannot be empty")
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Transfer({self.amount} {self.symbol}: {self.source}→{self.dest} [{self.reason}])"


@dataclass(frozen=True, slots=True)
class PositionChange:
    """
    Before/after record of one trader's position.

    old=None means the position is created; new=None means it is deleted.
    """
    trader: str
    old: Optional[Position]
    new: Optional[Position]

    def __post_init__(self):
        if self.old is None and self.new is None:
            raise ValueError("PositionChange must have an old or a new position")


@dataclass(frozen=True, slots=True)
class PositionEvent:
    """
    Notification emitted by an applied mutation.

    Fields that do not apply to an event type are left at their zero default.
    Signed fields (size_delta, collateral_delta, realized_pnl) are from the
    account's point of view.
    """
    event_type: EventType
    account: str
    size_delta: int = 0
    collateral_delta: int = 0
    amount: int = 0
    shares: int = 0
    realized_pnl: int = 0
    fee: int = 0
    price: int = 0
    is_long: Optional[bool] = None
    counterparty: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PendingMutation:
    """
    A candidate state transition before execution - represents INTENT.

    Built by the pure lifecycle and vault functions against a read-only view
    and submitted to the engine, which applies it tentatively, runs the
    post-condition checks, and commits or discards it as a whole.

    Attributes:
        action: Operation name ("open", "increase", "decrease", "liquidate", ...)
        initiator: Address that called the operation
        timestamp: Engine time the mutation was computed at
        prices: Price snapshot used throughout (None for price-free operations)
        pool_before: Pool aggregates the mutation was computed from
        pool_after: Pool aggregates after the mutation
        position_changes: Position records created, updated or deleted
        transfers: Asset movements executed after all checks pass
        events: Notifications emitted on commit
        check_leverage: Whether surviving positions must be within the leverage bound
        check_liquidity: Whether the liquidity reservation guard applies
    """
    action: str
    initiator: str
    timestamp: datetime
    prices: Optional[PriceSnapshot]
    pool_before: PoolState
    pool_after: PoolState
    position_changes: Tuple[PositionChange, ...] = ()
    transfers: Tuple[Transfer, ...] = ()
    events: Tuple[PositionEvent, ...] = ()
    check_leverage: bool = False
    check_liquidity: bool = False

    def __repr__(self) -> str:
        return (
            f"PendingMutation({self.action} by {self.initiator}, "
            f"{len(self.position_changes)} position changes, {len(self.transfers)} transfers)"
        )


def build_mutation(
    view: EngineView,
    action: str,
    initiator: str,
    pool_after: PoolState,
    prices: Optional[PriceSnapshot] = None,
    position_changes: Optional[List[PositionChange]] = None,
    transfers: Optional[List[Transfer]] = None,
    events: Optional[List[PositionEvent]] = None,
    check_leverage: bool = False,
    check_liquidity: bool = False,
) -> PendingMutation:
    """
    Build a PendingMutation from the view's current pool and time.

    This is the standard way to create mutations.
    """
    return PendingMutation(
        action=action,
        initiator=initiator,
        timestamp=view.current_time,
        prices=prices,
        pool_before=view.pool,
        pool_after=pool_after,
        position_changes=tuple(position_changes or ()),
        transfers=tuple(transfers or ()),
        events=tuple(events or ()),
        check_leverage=check_leverage,
        check_liquidity=check_liquidity,
    )


@dataclass(frozen=True, slots=True)
class Mutation:
    """
    An applied, immutable record of a state transition - represents FACT.

    Created by the engine when a PendingMutation passes every check.
    """
    action: str
    initiator: str
    timestamp: datetime
    prices: Optional[PriceSnapshot]
    pool_before: PoolState
    pool_after: PoolState
    position_changes: Tuple[PositionChange, ...]
    transfers: Tuple[Transfer, ...]
    events: Tuple[PositionEvent, ...]
    exec_id: str
    engine_name: str
    execution_time: datetime
    sequence_number: int

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Mutation: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   action         : ' + self.action)}│",
            f"│{pad('   initiator      : ' + self.initiator)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
        ]
        if self.prices is not None:
            lines.append(f"│{pad('   index_price    : ' + str(self.prices.index_price))}│")
            lines.append(f"│{pad('   collat_price   : ' + str(self.prices.collateral_price))}│")
        lines.append(f"├{bar}┤")
        for name in ("open_interest_long", "open_interest_short", "total_collateral"):
            before = getattr(self.pool_before, name)
            after = getattr(self.pool_after, name)
            if before != after:
                lines.append(f"│{pad(f'   {name}: {before} → {after}')}│")
        if self.position_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Positions (' + str(len(self.position_changes)) + '):')}│")
            for pc in self.position_changes:
                if pc.new is None:
                    desc = "deleted"
                else:
                    desc = (f"{pc.new.side} size={pc.new.size} collateral={pc.new.collateral} "
                            f"avg={pc.new.average_price}")
                lines.append(f"│{pad('   [' + pc.trader + '] ' + desc)}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Transfers (' + str(len(self.transfers)) + '):')}│")
        for i, t in enumerate(self.transfers):
            lines.append(f"│{pad(f'   [{i}] {t.amount} {t.symbol}: {t.source} → {t.dest} ({t.reason})')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class EngineView(Protocol):
    """
    Read-only interface to engine state.

    Lifecycle and vault functions accept an EngineView to declare that they
    only read. The PerpsEngine implements this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the engine."""
        ...

    @property
    def config(self) -> EngineConfig:
        ...

    @property
    def tokens(self) -> TokenPair:
        ...

    @property
    def pool(self) -> PoolState:
        """Return the current pool aggregates."""
        ...

    def get_position(self, trader: str) -> Optional[Position]:
        """Return the trader's position, or None if there is none."""
        ...

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        """Return a wallet's balance of an asset (0 if never funded)."""
        ...

    def total_supply(self, symbol: str) -> int:
        """Return the amount of an asset held outside the system wallet."""
        ...

    def net_pool_assets(self) -> int:
        """Pool wallet's collateral balance minus escrowed total_collateral."""
        ...
