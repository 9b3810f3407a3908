"""
Pytest configuration: fakes for the subscription source and request
function, canned `/info` payloads, and metric/task cleanup.
"""

import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional

import pytest

from common.meta import AssetMeta, PerpMeta, SpotMeta
from feed.observability.metrics import metrics
from feed.util.async_tools import shutdown_supervised_tasks


class FakeSource:
    """Scripted subscription source.

    `messages` are returned in order; an exception instance is raised
    instead of returned. Once the script is exhausted `on_exhausted` is
    called and None (no data) is returned.
    """

    def __init__(self, messages=(), on_exhausted: Optional[Callable[[], None]] = None):
        self.messages = list(messages)
        self.on_exhausted = on_exhausted
        self.calls: List[tuple] = []
        self.closed = False
        self._next_id = 0

    async def subscribe(self, subscription) -> int:
        self._next_id += 1
        self.calls.append(("subscribe", subscription))
        return self._next_id

    async def unsubscribe(self, subscription_id: int) -> None:
        self.calls.append(("unsubscribe", subscription_id))

    async def next_message(self):
        if self.messages:
            item = self.messages.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.on_exhausted is not None:
            self.on_exhausted()
        return None

    async def close(self) -> None:
        self.closed = True
        self.calls.append(("close",))


class SourceFactory:
    """Hands out prepared sources one per session."""

    def __init__(self, sources: List[FakeSource]):
        self.sources = list(sources)
        self.created: List[FakeSource] = []

    def __call__(self) -> FakeSource:
        if not self.sources:
            raise RuntimeError("no more fake sources")
        source = self.sources.pop(0)
        self.created.append(source)
        return source


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self, hook: Optional[Callable[[float], None]] = None, limit: int = 200):
        self.calls: List[float] = []
        self.hook = hook
        self.limit = limit

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.hook is not None:
            self.hook(seconds)
        if len(self.calls) > self.limit:
            raise AssertionError("sleep limit reached; stream never stopped")
        await asyncio.sleep(0)


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class FakeInfo:
    """Request function returning canned payloads per request type.

    A PayloadSequence value yields one entry per call; exception entries are raised.
    """

    def __init__(self, payloads: Dict[str, Any]):
        self.payloads = payloads
        self.requests: List[str] = []

    async def __call__(self, request_type: str) -> Any:
        self.requests.append(request_type)
        value = self.payloads[request_type]
        if isinstance(value, PayloadSequence):
            value = value.next()
        if isinstance(value, BaseException):
            raise value
        return copy.deepcopy(value)


class PayloadSequence:
    """Payloads returned on successive calls; the last one repeats."""

    def __init__(self, *payloads):
        self.payloads = list(payloads)

    def next(self):
        if len(self.payloads) > 1:
            return self.payloads.pop(0)
        return self.payloads[0]


def all_mids(mids: Dict[str, Any]) -> Dict[str, Any]:
    return {"channel": "allMids", "data": {"mids": mids}}


def l2_book(coin: str, bids, asks) -> Dict[str, Any]:
    return {
        "channel": "l2Book",
        "data": {
            "coin": coin,
            "time": 1700000000000,
            "levels": [
                [{"px": px, "sz": sz, "n": 1} for px, sz in bids],
                [{"px": px, "sz": sz, "n": 1} for px, sz in asks],
            ],
        },
    }


def perp_ctx(mid_px=None, mark_px=None, open_interest="0.0") -> Dict[str, Any]:
    return {
        "funding": "0.0000125",
        "openInterest": open_interest,
        "prevDayPx": "1.0",
        "dayNtlVlm": "1000.0",
        "premium": None,
        "oraclePx": mark_px,
        "markPx": mark_px,
        "midPx": mid_px,
        "impactPxs": None,
    }


def make_perp_snapshot(ctxs: Dict[str, Dict[str, Any]], sz_decimals: Optional[Dict[str, int]] = None) -> list:
    sz_decimals = sz_decimals or {}
    universe = [
        {"name": name, "szDecimals": sz_decimals.get(name, 5 if name == "BTC" else 4), "maxLeverage": 40}
        for name in ctxs
    ]
    return [{"universe": universe}, list(ctxs.values())]


SPOT_META = {
    "universe": [
        {"name": "PURR/USDC", "tokens": [1, 0], "index": 0, "isCanonical": True},
        {"name": "@1", "tokens": [2, 0], "index": 1, "isCanonical": False},
    ],
    "tokens": [
        {"name": "USDC", "szDecimals": 8, "weiDecimals": 8, "index": 0,
         "tokenId": "0x6d1e7cde53ba9467b783cb7c530ce054", "isCanonical": True},
        {"name": "PURR", "szDecimals": 0, "weiDecimals": 5, "index": 1,
         "tokenId": "0xc1fb593aeffbeb02f85e0308e9956a90", "isCanonical": True},
        {"name": "HFUN", "szDecimals": 2, "weiDecimals": 8, "index": 2,
         "tokenId": "0xbaf265ef389da684513d98d68edf4eae", "isCanonical": False},
    ],
}

SPOT_SNAPSHOT = [
    SPOT_META,
    [
        {"coin": "PURR/USDC", "prevDayPx": "0.2", "dayNtlVlm": "1000.0", "markPx": "0.21",
         "midPx": "0.21234", "circulatingSupply": "596000000.0"},
        {"coin": "@1", "prevDayPx": "12.0", "dayNtlVlm": "50.0", "markPx": "12.5",
         "midPx": None, "circulatingSupply": "990000.0"},
    ],
]

PERP_META = {
    "universe": [
        {"name": "BTC", "szDecimals": 5, "maxLeverage": 40},
        {"name": "ETH", "szDecimals": 4, "maxLeverage": 25, "onlyIsolated": False},
        {"name": "MATIC", "szDecimals": 1, "maxLeverage": 20, "isDelisted": True},
    ]
}

PERP_SNAPSHOT = [
    PERP_META,
    [
        perp_ctx(mid_px="103020.32323", mark_px="103010.0", open_interest="1000.5"),
        perp_ctx(mid_px=None, mark_px="3230.2", open_interest="20000.0"),
        perp_ctx(mid_px=None, mark_px=None),
    ],
]


@pytest.fixture
def btc_meta() -> PerpMeta:
    return PerpMeta(name="BTC", sz_decimals=5, max_leverage=40)


@pytest.fixture
def eth_meta() -> PerpMeta:
    return PerpMeta(name="ETH", sz_decimals=4, max_leverage=25)


@pytest.fixture
def usdc() -> AssetMeta:
    return AssetMeta(sz_decimals=8, wei_decimals=8, name="USDC", index=0)


@pytest.fixture
def purr_meta(usdc) -> SpotMeta:
    return SpotMeta(name="PURR/USDC", base=AssetMeta(sz_decimals=0, wei_decimals=5, name="PURR", index=1), quote=usdc)


@pytest.fixture
def fake_info():
    return FakeInfo({
        "metaAndAssetCtxs": PERP_SNAPSHOT,
        "spotMetaAndAssetCtxs": SPOT_SNAPSHOT,
        "meta": PERP_META,
        "spotMeta": SPOT_META,
    })


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics().reset()
    yield
    metrics().reset()


@pytest.fixture
async def supervised_cleanup():
    yield
    await shutdown_supervised_tasks()


# Pytest configuration
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests that touch the network")
