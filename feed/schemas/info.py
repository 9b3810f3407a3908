"""
Hyperliquid `/info` payload schemas using Pydantic for validation.

Numeric fields arrive as strings or null: null/absent parses to 0.0, a
malformed string fails validation of the whole payload.
"""

from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _parse_decimal(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError("expected a numeric string, got a boolean")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value)
    raise ValueError(f"expected a numeric string or null, got {type(value).__name__}")


DecimalStr = Annotated[float, BeforeValidator(_parse_decimal)]


class _InfoModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class PerpUniverseEntry(_InfoModel):
    """One perpetual in `meta.universe`."""
    name: str
    sz_decimals: int = Field(alias="szDecimals")
    max_leverage: int = Field(default=0, alias="maxLeverage")
    only_isolated: Optional[bool] = Field(default=None, alias="onlyIsolated")
    is_delisted: Optional[bool] = Field(default=None, alias="isDelisted")


class PerpMetaResponse(_InfoModel):
    universe: List[PerpUniverseEntry]


class SpotToken(_InfoModel):
    """One token in `spotMeta.tokens`."""
    name: str
    sz_decimals: int = Field(alias="szDecimals")
    wei_decimals: int = Field(alias="weiDecimals")
    index: int
    token_id: Optional[str] = Field(default=None, alias="tokenId")
    is_canonical: Optional[bool] = Field(default=None, alias="isCanonical")


class SpotUniverseEntry(_InfoModel):
    """One spot pair in `spotMeta.universe`; `tokens` is [base, quote] by token index."""
    name: str
    tokens: List[int]
    index: int
    is_canonical: Optional[bool] = Field(default=None, alias="isCanonical")


class SpotMetaResponse(_InfoModel):
    universe: List[SpotUniverseEntry]
    tokens: List[SpotToken]


class PerpAssetCtx(_InfoModel):
    """Per-perp market context, positionally aligned with `meta.universe`."""
    funding: DecimalStr = 0.0
    open_interest: DecimalStr = Field(default=0.0, alias="openInterest")
    prev_day_px: DecimalStr = Field(default=0.0, alias="prevDayPx")
    day_ntl_vlm: DecimalStr = Field(default=0.0, alias="dayNtlVlm")
    premium: DecimalStr = 0.0
    oracle_px: DecimalStr = Field(default=0.0, alias="oraclePx")
    mark_px: DecimalStr = Field(default=0.0, alias="markPx")
    mid_px: DecimalStr = Field(default=0.0, alias="midPx")
    impact_pxs: Optional[List[str]] = Field(default=None, alias="impactPxs")


class SpotAssetCtx(_InfoModel):
    """Per-pair market context keyed by `coin` (the spot universe name)."""
    coin: str
    prev_day_px: DecimalStr = Field(default=0.0, alias="prevDayPx")
    day_ntl_vlm: DecimalStr = Field(default=0.0, alias="dayNtlVlm")
    mark_px: DecimalStr = Field(default=0.0, alias="markPx")
    mid_px: DecimalStr = Field(default=0.0, alias="midPx")
    circulating_supply: DecimalStr = Field(default=0.0, alias="circulatingSupply")


class PerpSnapshotResponse(_InfoModel):
    """`metaAndAssetCtxs`: a two-element array [meta, ctxs]."""
    meta: PerpMetaResponse
    ctxs: List[PerpAssetCtx]

    @classmethod
    def from_payload(cls, payload: Any) -> "PerpSnapshotResponse":
        meta, ctxs = _split_pair(payload, "metaAndAssetCtxs")
        return cls.model_validate({"meta": meta, "ctxs": ctxs})


class SpotSnapshotResponse(_InfoModel):
    """`spotMetaAndAssetCtxs`: a two-element array [spotMeta, ctxs]."""
    meta: SpotMetaResponse
    ctxs: List[SpotAssetCtx]

    @classmethod
    def from_payload(cls, payload: Any) -> "SpotSnapshotResponse":
        meta, ctxs = _split_pair(payload, "spotMetaAndAssetCtxs")
        return cls.model_validate({"meta": meta, "ctxs": ctxs})


def _split_pair(payload: Any, request_type: str):
    if not isinstance(payload, (list, tuple)) or len(payload) != 2:
        raise ValueError(f"{request_type} response must be a [meta, ctxs] pair")
    return payload[0], payload[1]
