"""
Asset-aware price values.

A price is one of three closed variants: `NoPrice`, `SpotPrice` or
`PerpPrice`. Spot and perp prices carry their instrument metadata and are
always stored rounded to the exchange's tick rules: five significant
digits, never more than `max_decimals - sz_decimals` decimal places
(8 for spot, 6 for perps). A raw price of 0.0 is kept as-is and means
"not priced yet".
"""

import math
from typing import Dict

from common.meta import MarketKind, Meta, PerpMeta, SpotMeta
from feed.errors import MetaMismatchError

SIGNIFICANT_DIGITS = 5


def round_price(price: float, max_decimals: int, sz_decimals: int) -> float:
    """Round a raw price to five significant digits, capped at the instrument's precision.

    Zero and non-finite input is returned unchanged.
    """
    if price == 0.0 or not math.isfinite(price):
        return price

    order_of_magnitude = math.floor(math.log10(abs(price)))
    needed_decimals = max(0, SIGNIFICANT_DIGITS - order_of_magnitude - 1)
    max_decimal_places = max(0, max_decimals - sz_decimals)

    return round(price, min(needed_decimals, max_decimal_places))


def round_size(size: float, sz_decimals: int) -> float:
    return round(size, sz_decimals)


class Price:
    """Base of the price variants. Use `Price.from_meta` or the variant constructors."""

    __slots__ = ()

    @staticmethod
    def from_meta(price: float, meta: Meta) -> "Price":
        if isinstance(meta, SpotMeta):
            return SpotPrice(price, meta)
        if isinstance(meta, PerpMeta):
            return PerpPrice(price, meta)
        raise MetaMismatchError(f"Unsupported metadata type: {type(meta).__name__}")

    def value(self) -> float:
        raise NotImplementedError

    def value_after_slippage(self, slippage: float, is_buy: bool) -> float:
        raise NotImplementedError

    def true_size(self, size: float) -> float:
        raise NotImplementedError

    def true_price_for_asset(self, price: float) -> float:
        raise NotImplementedError

    def asset_denominated_size(self, usdc_size: float) -> float:
        """Convert a USDC notional into asset units at the current price.

        Buying 100 USDC of ETH at 3230.2 gives 0.030957... before the size
        is rounded to the asset's `sz_decimals`. Raises ZeroDivisionError
        while the price is still the 0.0 sentinel.
        """
        return self.true_size(usdc_size / self.value())

    def asset_denominated_size_at_price(self, usdc_size: float, price: float) -> float:
        return self.true_size(usdc_size / price)

    def update(self, new_price: float) -> None:
        raise NotImplementedError

    def with_price(self, new_price: float) -> "Price":
        raise NotImplementedError

    def copy(self) -> "Price":
        raise NotImplementedError

    @property
    def meta(self) -> Meta:
        raise NotImplementedError

    def __str__(self) -> str:
        return repr(self.value())


class NoPrice(Price):
    """No price known for the instrument."""

    __slots__ = ()

    def value(self) -> float:
        return 0.0

    def value_after_slippage(self, slippage: float, is_buy: bool) -> float:
        return 0.0

    def true_size(self, size: float) -> float:
        return 0.0

    def true_price_for_asset(self, price: float) -> float:
        return 0.0

    def asset_denominated_size(self, usdc_size: float) -> float:
        return 0.0

    def asset_denominated_size_at_price(self, usdc_size: float, price: float) -> float:
        return 0.0

    def update(self, new_price: float) -> None:
        return None

    def with_price(self, new_price: float) -> "Price":
        return NoPrice()

    def copy(self) -> "Price":
        return NoPrice()

    @property
    def meta(self) -> Meta:
        raise LookupError("NoPrice carries no metadata")

    def __eq__(self, other: object) -> bool:
        return isinstance(other, NoPrice)

    def __hash__(self) -> int:
        return hash(NoPrice)

    def __repr__(self) -> str:
        return "NoPrice()"


class _InstrumentPrice(Price):
    __slots__ = ("_price", "_meta")

    _kind: MarketKind
    _meta_type: type

    def __init__(self, price: float, meta: Meta):
        if not isinstance(meta, self._meta_type):
            raise MetaMismatchError(
                f"{type(self).__name__} requires {self._meta_type.__name__}, got {type(meta).__name__}"
            )
        self._meta = meta
        self._price = self._round(price)

    @classmethod
    def new(cls, price: float, meta: Meta):
        return cls(price, meta)

    def _round(self, price: float) -> float:
        return round_price(price, self._kind.max_decimals, self._meta.sz_decimals)

    @property
    def meta(self) -> Meta:
        return self._meta

    @property
    def kind(self) -> MarketKind:
        return self._kind

    @property
    def sz_decimals(self) -> int:
        return self._meta.sz_decimals

    def value(self) -> float:
        return self._price

    def value_after_slippage(self, slippage: float, is_buy: bool) -> float:
        if is_buy:
            after_slippage = self._price * (1.0 + slippage)
        else:
            after_slippage = self._price * (1.0 - slippage)
        return self._round(after_slippage)

    def true_size(self, size: float) -> float:
        return round_size(size, self._meta.sz_decimals)

    def true_price_for_asset(self, price: float) -> float:
        return self._round(price)

    def update(self, new_price: float) -> None:
        self._price = self._round(new_price)

    def with_price(self, new_price: float) -> "Price":
        return type(self)(new_price, self._meta)

    def copy(self) -> "Price":
        clone = object.__new__(type(self))
        clone._meta = self._meta
        clone._price = self._price
        return clone

    def __eq__(self, other: object) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._price == other._price and self._meta == other._meta

    def __hash__(self) -> int:
        return hash((type(self), self._price, self._meta))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(price={self._price!r}, meta={self._meta.name!r})"


class SpotPrice(_InstrumentPrice):
    __slots__ = ()
    _kind = MarketKind.SPOT
    _meta_type = SpotMeta


class PerpPrice(_InstrumentPrice):
    __slots__ = ()
    _kind = MarketKind.PERP
    _meta_type = PerpMeta


def new_spot(price: float, meta: Meta) -> SpotPrice:
    return SpotPrice(price, meta)


def new_perp(price: float, meta: Meta) -> PerpPrice:
    return PerpPrice(price, meta)


NameToPriceMap = Dict[str, Price]


def snapshot_table(table: NameToPriceMap) -> NameToPriceMap:
    """Copy a table for publishing; metadata stays shared."""
    return {name: price.copy() for name, price in table.items()}
