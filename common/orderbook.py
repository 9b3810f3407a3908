"""
Two-sided L2 order book mirrored from the exchange's `l2Book` snapshots.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class OrderbookLevel:
    price: float
    size: float


@dataclass
class Orderbook:
    """Full book state for one coin.

    `bids` are highest-first and `asks` lowest-first, in the order the
    feed delivers them; the book is replaced wholesale on every snapshot
    and never re-sorted locally.
    """
    coin: str
    bids: List[OrderbookLevel] = field(default_factory=list)
    asks: List[OrderbookLevel] = field(default_factory=list)

    def update_from_stream(self, bids: Iterable[Tuple[float, float]], asks: Iterable[Tuple[float, float]]) -> None:
        """Replace both sides from raw (price, size) pairs."""
        self.bids = [OrderbookLevel(price, size) for price, size in bids]
        self.asks = [OrderbookLevel(price, size) for price, size in asks]

    def best_bid(self) -> Optional[OrderbookLevel]:
        return self.bids[0] if self.bids else None

    def best_ask(self) -> Optional[OrderbookLevel]:
        return self.asks[0] if self.asks else None

    def mid(self) -> Optional[float]:
        bid, ask = self.best_bid(), self.best_ask()
        if bid is None or ask is None:
            return None
        return (bid.price + ask.price) / 2.0

    def spread(self) -> Optional[float]:
        bid, ask = self.best_bid(), self.best_ask()
        if bid is None or ask is None:
            return None
        return ask.price - bid.price

    def copy(self) -> "Orderbook":
        # levels are frozen, so sharing them is safe
        return Orderbook(coin=self.coin, bids=list(self.bids), asks=list(self.asks))


NameToOrderbookMap = Dict[str, Orderbook]


def parse_levels(raw_levels: Any) -> List[Tuple[float, float]]:
    """Parse wire levels (`{"px": "...", "sz": "...", "n": ...}`) into (price, size).

    Levels whose price or size does not parse are dropped.
    """
    if not isinstance(raw_levels, (list, tuple)):
        return []

    levels: List[Tuple[float, float]] = []
    for level in raw_levels:
        if not isinstance(level, dict):
            continue
        try:
            price = float(level["px"])
            size = float(level["sz"])
        except (KeyError, TypeError, ValueError):
            continue
        levels.append((price, size))
    return levels
