"""
price_feed.py - Oracle collaborators for the accounting core

Provides the "latest answer" side of the price oracle boundary.

Classes:
- Quote: One raw oracle answer (signed fixed-point int) and when it was published
- PriceFeed: Protocol defining the oracle interface
- StaticPriceFeed: Time-independent answers, updated explicitly
- TimeSeriesPriceFeed: Time-varying answers with historical data

Answers are raw integers in the feed's own decimals (e.g., 50_000 * 10**8
for an 8-decimal BTC/USD feed). Validation and scaling to USD_PRECISION
happen in conversion.price(), never here.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Protocol, runtime_checkable
from bisect import bisect_right


@dataclass(frozen=True, slots=True)
class Quote:
    """A raw oracle answer. updated_at=None means published at query time."""
    answer: int
    updated_at: Optional[datetime] = None


@runtime_checkable
class PriceFeed(Protocol):
    """
    Protocol for price oracles.

    Implementations return the latest quote for a symbol as of a timestamp,
    or None if the oracle has no answer.
    """

    def latest_quote(self, symbol: str, timestamp: datetime) -> Optional[Quote]:
        ...


class StaticPriceFeed:
    """
    Oracle with static answers (time-independent).

    Answers remain constant until update_answer() is called.
    """

    def __init__(self, answers: Dict[str, int]):
        """
        Initialize with a static answer map.

        Args:
            answers: Dictionary mapping symbols to raw oracle answers
        """
        self.answers: Dict[str, int] = dict(answers)
        self.updated_at: Dict[str, Optional[datetime]] = {symbol: None for symbol in answers}

    def latest_quote(self, symbol: str, timestamp: datetime) -> Optional[Quote]:
        if symbol not in self.answers:
            return None
        return Quote(self.answers[symbol], self.updated_at.get(symbol))

    def update_answer(self, symbol: str, answer: int, updated_at: Optional[datetime] = None):
        """Update the answer for a symbol, optionally recording its publish time."""
        self.answers[symbol] = answer
        self.updated_at[symbol] = updated_at

    def update_answers(self, answers: Dict[str, int], updated_at: Optional[datetime] = None):
        """Update multiple answers at once."""
        for symbol, answer in answers.items():
            self.update_answer(symbol, answer, updated_at)

    def __repr__(self):
        return f"StaticPriceFeed({len(self.answers)} answers)"


class TimeSeriesPriceFeed:
    """
    Oracle with time-varying answers.

    Stores historical answers and returns the most recent one at or before
    the requested timestamp, stamped with the time it was published.
    """

    def __init__(self, answer_paths: Optional[Dict[str, List[Tuple[datetime, int]]]] = None):
        """
        Initialize the feed.

        Args:
            answer_paths: Optional dict mapping symbols to lists of
                          (timestamp, answer) tuples.

        Examples:
            feed = TimeSeriesPriceFeed()
            feed.add_answer('WBTC', datetime(2025, 1, 15), 50_000 * 10**8)

            feed = TimeSeriesPriceFeed({
                'WBTC': [(t0, 50_000 * 10**8), (t1, 60_000 * 10**8)],
                'USDC': [(t0, 10**8)],
            })
        """
        self.history: Dict[str, List[Tuple[datetime, int]]] = {}

        if answer_paths:
            for symbol, path in answer_paths.items():
                if not path:
                    continue
                self.history[symbol] = sorted(path, key=lambda x: x[0])

    def add_answer(self, symbol: str, timestamp: datetime, answer: int):
        """Add an answer for a symbol published at a specific time."""
        if symbol not in self.history:
            self.history[symbol] = []
        self.history[symbol].append((timestamp, answer))
        self.history[symbol].sort(key=lambda x: x[0])

    def add_answers(self, answers: Dict[str, int], timestamp: datetime):
        """Add multiple answers published at the same timestamp."""
        for symbol, answer in answers.items():
            self.add_answer(symbol, timestamp, answer)

    def latest_quote(self, symbol: str, timestamp: datetime) -> Optional[Quote]:
        """
        Get the quote at or before the specified timestamp.

        Returns None if no answer was published before the timestamp.
        Uses binary search for O(log n) lookup.
        """
        history = self.history.get(symbol)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None

        published, answer = history[idx - 1]
        return Quote(answer, published)

    def __repr__(self):
        total = sum(len(h) for h in self.history.values())
        return f"TimeSeriesPriceFeed({len(self.history)} symbols, {total} observations)"
