"""
Price ingestion pipeline: seeding, streaming, resubscription and restarts.
"""

import pytest

from common.meta import MarketKind
from common.price import PerpPrice
from feed.errors import CatalogInconsistencyError, ChannelClosedError, NetworkError, ProtocolError
from feed.observability.metrics import metrics
from feed.services.last_value import channel
from feed.services.price_stream import PriceStream, start_price_stream_task
from feed.services.stream_base import RestartPolicy, SessionPolicy, StreamState

from conftest import (
    PERP_SNAPSHOT,
    FakeClock,
    FakeInfo,
    FakeSource,
    PayloadSequence,
    SleepRecorder,
    SourceFactory,
    all_mids,
    make_perp_snapshot,
    perp_ctx,
)

ALL_MIDS_SUB = ("subscribe", {"type": "allMids"})


def _make_stream(kind, info, sources, sleep, **kwargs):
    sender, receiver = channel({}, name=f"prices.{kind.value}")
    factory = SourceFactory(sources)
    stream = PriceStream(kind, info, factory, sender, sleep=sleep, **kwargs)
    return stream, receiver, factory


class TestSeedAndStream:

    async def test_batch_rounds_into_seeded_table(self):
        info = FakeInfo({"metaAndAssetCtxs": make_perp_snapshot({"BTC": perp_ctx()})})
        source = FakeSource([all_mids({"BTC": "103020.32323"})])
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(MarketKind.PERP, info, [source], sleep)
        source.on_exhausted = stream.stop

        await stream.run()

        btc = receiver.borrow()["BTC"]
        assert isinstance(btc, PerpPrice)
        assert btc.meta.sz_decimals == 5
        # five significant digits leave no decimals at this magnitude
        assert btc.value() == 103020.0
        assert stream.state is StreamState.STOPPED

    async def test_unmatched_keys_ignored_and_missing_keys_retained(self, fake_info):
        source = FakeSource([
            all_mids({"ETH": "3300.5", "PURR/USDC": "0.2", "@1": "12.0"}),
            all_mids({"BTC": "98765.4321"}),
        ])
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(MarketKind.PERP, fake_info, [source], sleep, tick_interval_s=0.8)
        source.on_exhausted = stream.stop

        await stream.run()

        table = receiver.borrow()
        assert set(table) == {"BTC", "ETH", "MATIC"}
        assert table["ETH"].value() == 3300.5
        assert table["BTC"].value() == 98765.0
        assert table["MATIC"].value() == 0.0
        # seed + two batches + final no-data tick
        assert receiver.version == 4
        assert sleep.calls == [0.8, 0.8, 0.8]
        assert source.calls == [ALL_MIDS_SUB, ("unsubscribe", 1), ("close",)]

    async def test_published_tables_are_snapshots(self, fake_info):
        published = []
        source = FakeSource([all_mids({"ETH": "3300.5"}), all_mids({"ETH": "3400.5"})])
        stream, receiver, _ = _make_stream(
            MarketKind.PERP, fake_info, [source],
            SleepRecorder(hook=lambda s: published.append(receiver.borrow())),
        )
        source.on_exhausted = stream.stop

        await stream.run()

        assert [t["ETH"].value() for t in published] == [3300.5, 3400.5, 3400.5]

    async def test_spot_stream_seeds_spot_prices(self, fake_info):
        source = FakeSource([all_mids({"PURR/USDC": "0.21234567", "BTC": "100000.0"})])
        stream, receiver, _ = _make_stream(MarketKind.SPOT, fake_info, [source], SleepRecorder())
        source.on_exhausted = stream.stop

        await stream.run()

        assert fake_info.requests == ["spotMetaAndAssetCtxs"]
        table = receiver.borrow()
        assert set(table) == {"PURR/USDC", "@1"}
        assert table["PURR/USDC"].value() == 0.21235
        assert table["@1"].value() == 12.5

    async def test_no_data_and_unrecognized_publish_unchanged(self, fake_info):
        ack = {"channel": "subscriptionResponse", "data": {"method": "subscribe"}}
        source = FakeSource([ack, None, all_mids({})])
        stream, receiver, _ = _make_stream(MarketKind.PERP, fake_info, [source], SleepRecorder())
        source.on_exhausted = stream.stop

        await stream.run()

        assert receiver.version == 5
        assert receiver.borrow()["ETH"].value() == 3230.2
        assert metrics().counter_value("feed_events", {"stream": "price_stream.perp", "kind": "unrecognized"}) == 1

    async def test_non_finite_mid_does_not_restart(self, fake_info):
        source = FakeSource([
            all_mids({"ETH": "NaN", "BTC": "inf"}),
            all_mids({"ETH": "3300.5"}),
        ])
        stream, receiver, factory = _make_stream(MarketKind.PERP, fake_info, [source], SleepRecorder())
        source.on_exhausted = stream.stop

        await stream.run()

        assert stream.restarts == 0
        assert stream.last_error is None
        assert len(factory.created) == 1
        table = receiver.borrow()
        assert table["BTC"].value() == 0.0
        assert table["ETH"].value() == 3300.5


class TestRestart:

    async def test_protocol_error_restarts_and_keeps_last_table(self, fake_info):
        first = FakeSource([all_mids({"ETH": "3300.5"}), {"channel": "error", "data": "boom"}])
        second = FakeSource([all_mids({"ETH": "3400.5"})])
        during_backoff = []

        def on_sleep(seconds):
            if seconds == 5.0:
                during_backoff.append(receiver.borrow()["ETH"].value())

        stream, receiver, factory = _make_stream(
            MarketKind.PERP, fake_info, [first, second], SleepRecorder(hook=on_sleep),
            restart_policy=RestartPolicy(delay_s=5.0),
        )
        second.on_exhausted = stream.stop

        await stream.run()

        assert during_backoff == [3300.5]
        assert first.calls == [ALL_MIDS_SUB, ("unsubscribe", 1), ("close",)]
        assert factory.created == [first, second]
        assert isinstance(stream.last_error, ProtocolError)
        assert stream.restarts == 1
        assert receiver.borrow()["ETH"].value() == 3400.5
        assert fake_info.requests == ["metaAndAssetCtxs", "metaAndAssetCtxs"]

    async def test_unsubscribe_failure_during_teardown_is_ignored(self, fake_info):
        first = FakeSource([{"channel": "error", "data": "boom"}])

        async def broken_unsubscribe(subscription_id):
            raise ConnectionError("socket gone")

        first.unsubscribe = broken_unsubscribe
        second = FakeSource()
        stream, receiver, _ = _make_stream(MarketKind.PERP, fake_info, [first, second], SleepRecorder())
        second.on_exhausted = stream.stop

        await stream.run()

        assert first.closed
        assert stream.restarts == 1

    async def test_channel_without_receivers_restarts(self, fake_info):
        source = FakeSource()
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(MarketKind.PERP, fake_info, [source], sleep)
        sleep.hook = lambda s: stream.stop()
        receiver.close()

        await stream.run()

        assert isinstance(stream.last_error, ChannelClosedError)
        assert sleep.calls == [5.0]
        assert source.calls == [ALL_MIDS_SUB, ("unsubscribe", 1), ("close",)]

    async def test_catalog_inconsistency_fails_session(self, caplog):
        payload = make_perp_snapshot({"BTC": perp_ctx(mid_px="1.0"), "ETH": perp_ctx(mid_px="2.0")})
        payload[1].pop()
        info = FakeInfo({"metaAndAssetCtxs": payload})
        source = FakeSource()
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(MarketKind.PERP, info, [source], sleep)
        sleep.hook = lambda s: stream.stop()

        await stream.run()

        assert isinstance(stream.last_error, CatalogInconsistencyError)
        # never subscribed, so teardown only closes
        assert source.calls == [("close",)]
        assert receiver.version == 0
        assert "Catalog inconsistency" in caplog.text

    async def test_exponential_backoff_with_cap(self):
        info = FakeInfo({"metaAndAssetCtxs": NetworkError("down")})
        sources = [FakeSource() for _ in range(4)]
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(
            MarketKind.PERP, info, sources, sleep,
            restart_policy=RestartPolicy(delay_s=5.0, factor=2.0, max_delay_s=15.0),
        )
        sleep.hook = lambda s: stream.stop() if len(sleep.calls) == 4 else None

        await stream.run()

        assert sleep.calls == [5.0, 10.0, 15.0, 15.0]
        assert stream.consecutive_failures == 4

    async def test_recovery_resets_backoff(self):
        info = FakeInfo({"metaAndAssetCtxs": PayloadSequence(NetworkError("down"), PERP_SNAPSHOT)})
        first = FakeSource()
        second = FakeSource([all_mids({"ETH": "3300.5"}), {"channel": "error", "data": "boom"}])
        third = FakeSource()
        sleep = SleepRecorder()
        stream, receiver, _ = _make_stream(
            MarketKind.PERP, info, [first, second, third], sleep,
            tick_interval_s=0.8,
            restart_policy=RestartPolicy(delay_s=1.0, factor=3.0, max_delay_s=60.0),
        )
        third.on_exhausted = stream.stop

        await stream.run()

        assert sleep.calls == [1.0, 0.8, 1.0, 0.8]


class TestResubscribe:

    async def test_tick_bound_triggers_single_resubscribe(self, fake_info):
        source = FakeSource([
            all_mids({"ETH": "3300.5"}),
            all_mids({"ETH": "3301.5"}),
            all_mids({"ETH": "3302.5"}),
        ])
        versions = []
        sleep = SleepRecorder(hook=lambda s: versions.append((s, receiver.version)))
        stream, receiver, _ = _make_stream(
            MarketKind.PERP, fake_info, [source], sleep,
            tick_interval_s=0.8,
            resubscribe_pause_s=1.0,
            session_policy=SessionPolicy(max_ticks=2, max_age_seconds=3600.0),
        )
        source.on_exhausted = stream.stop

        await stream.run()

        assert source.calls[:3] == [ALL_MIDS_SUB, ("unsubscribe", 1), ALL_MIDS_SUB]
        assert source.calls[3:] == [("unsubscribe", 2), ("close",)]
        assert stream.resubscribes == 1
        # publishing continues in sequence across the boundary
        assert versions == [(0.8, 2), (0.8, 3), (1.0, 3), (0.8, 4), (0.8, 5)]

    async def test_session_age_triggers_resubscribe(self, fake_info):
        clock = FakeClock()
        source = FakeSource([all_mids({"ETH": "3300.5"}), all_mids({"ETH": "3301.5"})])

        def advance(seconds):
            clock.now += 6.0

        stream, receiver, _ = _make_stream(
            MarketKind.PERP, fake_info, [source], SleepRecorder(hook=advance),
            clock=clock,
            session_policy=SessionPolicy(max_ticks=100_000, max_age_seconds=10.0),
        )
        source.on_exhausted = stream.stop

        await stream.run()

        assert stream.resubscribes == 1
        assert metrics().counter_value("stream_resubscribes", {"stream": "price_stream.perp"}) == 1


async def test_start_price_stream_task_returns_live_receiver(fake_info, supervised_cleanup):
    source = FakeSource([all_mids({"ETH": "3300.5"})])
    receiver = start_price_stream_task(
        MarketKind.PERP, fake_info, SourceFactory([source]),
        sleep=SleepRecorder(), tick_interval_s=0.0,
    )

    table = await receiver.changed(timeout=1.0)
    assert set(table) == {"BTC", "ETH", "MATIC"}
    value = await receiver.changed(timeout=1.0)
    assert value["ETH"].value() == 3300.5
