"""
positions.py - Position book

Keyed store of one Position per trader. Presence is explicit: a trader
either has a Position record or get() returns None. The engine is the only
owner of a PositionBook; everything else reads positions through EngineView.
"""

from __future__ import annotations
from typing import Dict, Iterator, List, Optional, Tuple

from .core import (
    Position, PositionChange,
    PositionDoesNotExist, TraderHasOpenPosition, StaleState,
)


class PositionBook:
    """Mutable mapping trader -> Position with lifecycle-aware operations."""

    def __init__(self, positions: Optional[Dict[str, Position]] = None):
        self._positions: Dict[str, Position] = dict(positions or {})

    def get(self, trader: str) -> Optional[Position]:
        return self._positions.get(trader)

    def require(self, trader: str) -> Position:
        """Return the trader's position or raise PositionDoesNotExist."""
        position = self._positions.get(trader)
        if position is None:
            raise PositionDoesNotExist(f"Trader {trader} has no open position")
        return position

    def exists(self, trader: str) -> bool:
        return trader in self._positions

    def create(self, trader: str, position: Position) -> None:
        if trader in self._positions:
            raise TraderHasOpenPosition(f"Trader {trader} already has an open position")
        self._positions[trader] = position

    def update(self, trader: str, position: Position) -> None:
        current = self.require(trader)
        if current.is_long != position.is_long:
            raise ValueError(f"Cannot flip side of {trader}'s position")
        self._positions[trader] = position

    def delete(self, trader: str) -> Position:
        position = self.require(trader)
        del self._positions[trader]
        return position

    def check(self, change: PositionChange) -> None:
        """Raise StaleState unless change.old matches the stored record."""
        current = self._positions.get(change.trader)
        if current != change.old:
            raise StaleState(
                f"Position of {change.trader} changed since the mutation was built"
            )

    def apply(self, change: PositionChange) -> None:
        """Apply one before/after record."""
        self.check(change)
        if change.old is None:
            self.create(change.trader, change.new)
        elif change.new is None:
            self.delete(change.trader)
        else:
            self.update(change.trader, change.new)

    def traders(self) -> List[str]:
        return sorted(self._positions)

    def items(self) -> List[Tuple[str, Position]]:
        return sorted(self._positions.items())

    def total_collateral(self) -> int:
        return sum(p.collateral for p in self._positions.values())

    def copy(self) -> PositionBook:
        # Position records are frozen, a shallow copy is independent
        return PositionBook(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, trader: str) -> bool:
        return trader in self._positions

    def __iter__(self) -> Iterator[str]:
        return iter(self.traders())

    def __repr__(self):
        return f"PositionBook({len(self._positions)} positions)"
