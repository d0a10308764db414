"""
custody.py - Asset custody ledger

Holds per-wallet balances of every asset the engine touches (the collateral
token and LP shares) and moves them in atomic batches.

Key responsibilities:
    - Validates a whole batch of transfers against balances before applying any
    - Applies batches all-or-nothing
    - Issues and burns through SYSTEM_WALLET, which is exempt from validation
    - Verifies that every asset's balances sum to zero including SYSTEM_WALLET
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple, Any

from .core import Transfer, SYSTEM_WALLET, InsufficientBalance


class AssetLedger:
    """
    Double-entry balance book for native-unit asset amounts.

    Thread Safety:
        Not thread-safe on its own. PerpsEngine serializes all access.
    """

    def __init__(self, name: str, symbols: Iterable[str] = ()):
        self.name = name
        self.symbols: Set[str] = set()
        self.balances: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for symbol in symbols:
            self.register_symbol(symbol)

    def register_symbol(self, symbol: str) -> None:
        if symbol in self.symbols:
            raise ValueError(f"Asset {symbol} already registered")
        self.symbols.add(symbol)

    def _require_symbol(self, symbol: str) -> None:
        if symbol not in self.symbols:
            raise ValueError(f"Asset {symbol} not registered")

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        """Balance of an asset in a wallet (0 if the wallet never held it)."""
        self._require_symbol(symbol)
        if wallet_id not in self.balances:
            return 0
        return self.balances[wallet_id].get(symbol, 0)

    def total_supply(self, symbol: str) -> int:
        """Amount held outside SYSTEM_WALLET, i.e. everything issued and not burned."""
        self._require_symbol(symbol)
        return sum(
            bals.get(symbol, 0)
            for wallet, bals in sorted(self.balances.items())
            if wallet != SYSTEM_WALLET
        )

    def wallets(self) -> List[str]:
        return sorted(self.balances)

    def net_changes(self, transfers: Iterable[Transfer]) -> Dict[Tuple[str, str], int]:
        """Net balance change per (wallet, symbol) for a batch."""
        net: Dict[Tuple[str, str], int] = {}
        for t in transfers:
            self._require_symbol(t.symbol)
            net[(t.source, t.symbol)] = net.get((t.source, t.symbol), 0) - t.amount
            net[(t.dest, t.symbol)] = net.get((t.dest, t.symbol), 0) + t.amount
        return net

    def validate(self, transfers: Iterable[Transfer]) -> None:
        """
        Check that a batch can be applied.

        Balances are checked on the net effect of the whole batch, so a wallet
        may receive and pass on an amount within one batch.

        Raises:
            InsufficientBalance: if any non-system wallet would go negative
            ValueError: if an asset is not registered
        """
        for (wallet, symbol), delta in self.net_changes(transfers).items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.get_balance(wallet, symbol) + delta
            if proposed < 0:
                raise InsufficientBalance(
                    f"{wallet} {symbol}: balance {self.get_balance(wallet, symbol)} "
                    f"cannot cover {-delta}"
                )

    def execute(self, transfers: Iterable[Transfer]) -> None:
        """Validate and apply a batch of transfers atomically."""
        transfers = list(transfers)
        self.validate(transfers)
        for t in transfers:
            self.balances[t.source][t.symbol] -= t.amount
            self.balances[t.dest][t.symbol] += t.amount

    def issue(self, wallet_id: str, symbol: str, amount: int, reason: str = "issue") -> Transfer:
        """Create `amount` of an asset in a wallet out of SYSTEM_WALLET."""
        transfer = Transfer(amount, symbol, SYSTEM_WALLET, wallet_id, reason)
        self.execute([transfer])
        return transfer

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that each asset's balances sum to zero across all wallets.

        SYSTEM_WALLET carries the negative of everything issued, so any
        non-zero sum means value was created or destroyed outside a transfer.

        Returns:
            Dict with 'valid' (bool), 'supplies' (per-asset circulating
            supply) and 'discrepancies' (list of {'symbol', 'sum'}).
        """
        supplies = {}
        discrepancies = []
        for symbol in sorted(self.symbols):
            supplies[symbol] = self.total_supply(symbol)
            total = sum(bals.get(symbol, 0) for bals in self.balances.values())
            if total != 0:
                discrepancies.append({'symbol': symbol, 'sum': total})
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    def clone(self) -> AssetLedger:
        cloned = AssetLedger(self.name, self.symbols)
        for wallet, bals in self.balances.items():
            cloned.balances[wallet] = defaultdict(int, bals)
        return cloned

    def __repr__(self):
        return f"AssetLedger({self.name}, {len(self.symbols)} assets, {len(self.balances)} wallets)"
