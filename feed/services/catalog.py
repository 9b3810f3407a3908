"""
Metadata catalog: builds per-instrument Meta from `/info` snapshots and
seeds the initial price table.

Catalog and price snapshot are assumed consistent at fetch time; any
disagreement raises CatalogInconsistencyError instead of being papered over.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from common.meta import AssetMeta, MarketKind, Meta, PerpMeta, SpotMeta
from common.price import NameToPriceMap, Price
from feed.errors import CatalogInconsistencyError
from feed.protocols import RequestFn
from feed.schemas.info import (
    PerpMetaResponse,
    PerpSnapshotResponse,
    SpotMetaResponse,
    SpotSnapshotResponse,
)

logger = logging.getLogger("catalog")

Catalog = Dict[str, Meta]
RawPriceMap = Dict[str, float]
CoinToOiValueMap = Dict[str, float]

_META_REQUEST = {MarketKind.SPOT: "spotMeta", MarketKind.PERP: "meta"}
_SNAPSHOT_REQUEST = {MarketKind.SPOT: "spotMetaAndAssetCtxs", MarketKind.PERP: "metaAndAssetCtxs"}


@dataclass
class MarketSnapshot:
    """One consistent metadata + price read for a market kind."""
    kind: MarketKind
    catalog: Catalog
    prices: RawPriceMap
    open_interest: CoinToOiValueMap = field(default_factory=dict)


def build_spot_catalog(meta: SpotMetaResponse) -> Catalog:
    tokens = {
        t.index: AssetMeta(sz_decimals=t.sz_decimals, wei_decimals=t.wei_decimals, name=t.name, index=t.index)
        for t in meta.tokens
    }

    catalog: Catalog = {}
    for entry in meta.universe:
        if len(entry.tokens) != 2:
            raise CatalogInconsistencyError(
                f"Spot pair {entry.name} lists {len(entry.tokens)} tokens, expected 2",
                details={"name": entry.name, "tokens": list(entry.tokens)},
            )
        base_idx, quote_idx = entry.tokens
        missing = [i for i in (base_idx, quote_idx) if i not in tokens]
        if missing:
            raise CatalogInconsistencyError(
                f"Spot pair {entry.name} references unknown token index {missing[0]}",
                details={"name": entry.name, "missing": missing},
            )
        catalog[entry.name] = SpotMeta(name=entry.name, base=tokens[base_idx], quote=tokens[quote_idx])
    return catalog


def build_perp_catalog(meta: PerpMetaResponse) -> Catalog:
    return {
        entry.name: PerpMeta(
            name=entry.name,
            sz_decimals=entry.sz_decimals,
            max_leverage=entry.max_leverage,
            only_isolated=entry.only_isolated,
            is_delisted=entry.is_delisted,
        )
        for entry in meta.universe
    }


async def fetch_catalog(fetch: RequestFn, kind: MarketKind) -> Catalog:
    """Fetch `spotMeta` or `meta` and build the catalog for that market."""
    payload = await fetch(_META_REQUEST[kind])
    if kind is MarketKind.SPOT:
        catalog = build_spot_catalog(SpotMetaResponse.model_validate(payload))
    else:
        catalog = build_perp_catalog(PerpMetaResponse.model_validate(payload))
    logger.info(f"[catalog] Loaded {len(catalog)} {kind.value} instruments")
    return catalog


def _pick_price(mid_px: float, mark_px: float) -> float:
    return mid_px if mid_px != 0.0 else mark_px


def parse_spot_snapshot(payload: Any) -> MarketSnapshot:
    snapshot = SpotSnapshotResponse.from_payload(payload)
    catalog = build_spot_catalog(snapshot.meta)
    prices = {ctx.coin: _pick_price(ctx.mid_px, ctx.mark_px) for ctx in snapshot.ctxs}
    return MarketSnapshot(kind=MarketKind.SPOT, catalog=catalog, prices=prices)


def parse_perp_snapshot(payload: Any) -> MarketSnapshot:
    snapshot = PerpSnapshotResponse.from_payload(payload)
    universe = snapshot.meta.universe
    if len(universe) != len(snapshot.ctxs):
        raise CatalogInconsistencyError(
            f"Perp universe has {len(universe)} entries but {len(snapshot.ctxs)} asset contexts",
            details={"universe": len(universe), "ctxs": len(snapshot.ctxs)},
        )

    catalog = build_perp_catalog(snapshot.meta)
    prices: RawPriceMap = {}
    open_interest: CoinToOiValueMap = {}
    # contexts are positional: ctxs[i] belongs to universe[i]
    for entry, ctx in zip(universe, snapshot.ctxs):
        prices[entry.name] = _pick_price(ctx.mid_px, ctx.mark_px)
        open_interest[entry.name] = ctx.open_interest
    return MarketSnapshot(kind=MarketKind.PERP, catalog=catalog, prices=prices, open_interest=open_interest)


async def fetch_snapshot(fetch: RequestFn, kind: MarketKind) -> MarketSnapshot:
    """Fetch metadata and current prices for one market in a single request."""
    payload = await fetch(_SNAPSHOT_REQUEST[kind])
    if kind is MarketKind.SPOT:
        return parse_spot_snapshot(payload)
    return parse_perp_snapshot(payload)


def seed_table(catalog: Mapping[str, Meta], raw_prices: Mapping[str, float]) -> NameToPriceMap:
    """Join raw prices against the catalog into a fully-populated price table.

    Every catalog instrument gets an entry; instruments without a price
    start at the 0.0 sentinel. A priced key the catalog does not know is
    an inconsistency.
    """
    unknown = sorted(set(raw_prices) - set(catalog))
    if unknown:
        raise CatalogInconsistencyError(
            f"{len(unknown)} priced instruments missing from catalog (first: {unknown[0]})",
            details={"unknown": unknown[:20]},
        )
    return {name: Price.from_meta(raw_prices.get(name, 0.0), meta) for name, meta in catalog.items()}
