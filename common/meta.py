"""
Per-instrument metadata for Hyperliquid spot pairs and perpetuals.

Metadata is immutable once built and shared by reference between every
Price of the same instrument for the lifetime of one catalog snapshot.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class MarketKind(str, Enum):
    """Market type, carrying the exchange's maximum price decimals."""

    SPOT = "spot"
    PERP = "perp"

    @property
    def max_decimals(self) -> int:
        return 8 if self is MarketKind.SPOT else 6


@dataclass(frozen=True, slots=True)
class AssetMeta:
    """A spot token descriptor from `spotMeta.tokens`."""
    sz_decimals: int
    wei_decimals: int
    name: str
    index: int


@dataclass(frozen=True, slots=True)
class SpotMeta:
    """Spot pair: `base` is the traded token, `quote` the pricing token."""
    name: str
    base: AssetMeta
    quote: AssetMeta

    kind = MarketKind.SPOT

    @property
    def sz_decimals(self) -> int:
        return self.base.sz_decimals

    @property
    def pair(self) -> str:
        return f"{self.base.name}/{self.quote.name}"


@dataclass(frozen=True, slots=True)
class PerpMeta:
    name: str
    sz_decimals: int
    max_leverage: int
    only_isolated: Optional[bool] = None
    is_delisted: Optional[bool] = None

    kind = MarketKind.PERP


Meta = Union[SpotMeta, PerpMeta]


def is_spot(meta: Meta) -> bool:
    return isinstance(meta, SpotMeta)


def is_perp(meta: Meta) -> bool:
    return isinstance(meta, PerpMeta)
