import asyncio
from typing import AsyncIterator

from src.signal_engine.candles import CandleAggregator
from src.signal_engine.config import Config
from src.signal_engine.models import BarUpdate, Candle, HistoricalSeed, StrategyConfig
from src.signal_engine.pipeline import SignalPipeline
from src.signal_engine.registry import StreamRegistry, build_registry
from src.signal_engine.strategies import MacdCrossStrategy, MovingAverageCrossStrategy


def _candle(index: int, close: float, is_final: bool = True) -> Candle:
    return Candle(
        time=(index + 1) * 60,
        open=close,
        high=close,
        low=close,
        close=close,
        volume=1.0,
        is_final=is_final,
    )


class QueueSource:
    """Upstream feed driven by the test through per-key queues."""

    def __init__(self, seed_closes: list[float]) -> None:
        self.seed_closes = seed_closes
        self.fetches: list[tuple[str, str]] = []
        self.streams: dict[tuple[str, str], asyncio.Queue] = {}

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> HistoricalSeed:
        self.fetches.append((symbol, interval))
        candles = [_candle(i, c) for i, c in enumerate(self.seed_closes)]
        return HistoricalSeed(symbol=symbol, interval=interval, candles=candles[-limit:])

    def queue(self, symbol: str, interval: str) -> asyncio.Queue:
        return self.streams.setdefault((symbol, interval), asyncio.Queue())

    async def stream_bar_updates(self, symbol: str, interval: str) -> AsyncIterator[BarUpdate]:
        queue = self.queue(symbol, interval)
        while True:
            yield await queue.get()


def _factory(key, aggregator: CandleAggregator) -> SignalPipeline:
    return SignalPipeline(
        key=key,
        aggregator=aggregator,
        strategy=MovingAverageCrossStrategy(StrategyConfig(fast_period=2, slow_period=3)),
        warmup_bars=2,
    )


async def _drain(subscription, count: int) -> list[dict]:
    return [await asyncio.wait_for(subscription.next_event(), timeout=1.0) for _ in range(count)]


def test_one_upstream_fans_out_to_every_subscriber() -> None:
    async def _run() -> None:
        source = QueueSource([10, 9, 8])
        registry = StreamRegistry(source, _factory, aggregator=CandleAggregator(max_size=10))

        first = await registry.subscribe("btcusdt", "1m")
        second = await registry.subscribe("BTCUSDT", "1m")
        assert first.key == second.key == ("BTCUSDT", "1m")
        assert source.fetches == [("BTCUSDT", "1m")]

        source.queue("BTCUSDT", "1m").put_nowait(
            BarUpdate(symbol="BTCUSDT", interval="1m", candle=_candle(3, 11))
        )
        events_a = await _drain(first, 3)
        events_b = await _drain(second, 3)

        assert [e["event"] for e in events_a] == ["kline", "indicatorUpdate", "signal"]
        assert events_a == events_b
        assert events_a[2]["data"]["type"] == "BUY"

        snapshot = registry.snapshot()
        assert snapshot["streams"][0]["subscribers"] == 2
        assert snapshot["streams"][0]["position"]["status"] == "LONG"

        await registry.unsubscribe(first)
        assert registry.feed(("BTCUSDT", "1m")) is not None

        await registry.unsubscribe(second)
        assert registry.feed(("BTCUSDT", "1m")) is None
        assert registry.aggregator.candles(("BTCUSDT", "1m")) == []

    asyncio.run(_run())


def test_keys_are_processed_independently() -> None:
    async def _run() -> None:
        source = QueueSource([10, 9, 8])
        registry = StreamRegistry(source, _factory, aggregator=CandleAggregator(max_size=10))

        one_minute = await registry.subscribe("BTCUSDT", "1m")
        five_minute = await registry.subscribe("BTCUSDT", "5m")

        source.queue("BTCUSDT", "5m").put_nowait(
            BarUpdate(symbol="BTCUSDT", interval="5m", candle=_candle(3, 7))
        )
        events = await _drain(five_minute, 2)

        assert [e["event"] for e in events] == ["kline", "indicatorUpdate"]
        assert one_minute.queue.empty()
        assert len(registry.aggregator.candles(("BTCUSDT", "1m"))) == 3
        assert len(registry.aggregator.candles(("BTCUSDT", "5m"))) == 4

        await registry.close()
        assert registry.snapshot() == {"streams": []}

    asyncio.run(_run())


def test_buffer_stays_bounded_under_live_updates() -> None:
    async def _run() -> None:
        bound, k = 5, 4
        source = QueueSource([])
        registry = StreamRegistry(source, _factory, aggregator=CandleAggregator(max_size=bound))
        subscription = await registry.subscribe("ETHUSDT", "1m")

        queue = source.queue("ETHUSDT", "1m")
        for i in range(bound + k):
            queue.put_nowait(BarUpdate(symbol="ETHUSDT", interval="1m", candle=_candle(i, 100.0 + i)))

        # wait until the final bar has been rendered
        while True:
            event = await asyncio.wait_for(subscription.next_event(), timeout=1.0)
            if event["event"] == "kline" and event["data"]["time"] == (bound + k) * 60:
                break

        candles = registry.aggregator.candles(("ETHUSDT", "1m"))
        assert len(candles) == bound
        assert candles[0].time == (k + 1) * 60

        await registry.unsubscribe(subscription)

    asyncio.run(_run())


def test_duplicate_macd_delivery_emits_one_signal() -> None:
    async def _run() -> None:
        def factory(key, aggregator: CandleAggregator) -> SignalPipeline:
            return SignalPipeline(
                key=key,
                aggregator=aggregator,
                strategy=MacdCrossStrategy(StrategyConfig(fast_period=3, slow_period=7, signal_period=3)),
                warmup_bars=2,
            )

        source = QueueSource([10, 10, 10, 10, 10, 9, 8, 7, 6, 5])
        registry = StreamRegistry(source, factory, aggregator=CandleAggregator(max_size=50))
        subscription = await registry.subscribe("BTCUSDT", "1m")

        final_bar = BarUpdate(symbol="BTCUSDT", interval="1m", candle=_candle(10, 10))
        queue = source.queue("BTCUSDT", "1m")
        queue.put_nowait(final_bar)
        queue.put_nowait(final_bar)

        events = await _drain(subscription, 5)

        assert [e["event"] for e in events] == ["kline", "indicatorUpdate", "signal", "kline", "indicatorUpdate"]
        assert events[2]["data"]["type"] == "BUY"
        await asyncio.sleep(0)
        assert subscription.queue.empty()

        await registry.close()

    asyncio.run(_run())


class BlockingSeedSource(QueueSource):
    """Holds the seed for one interval until the test releases it."""

    def __init__(self, blocked_interval: str) -> None:
        super().__init__([10, 9, 8])
        self.blocked_interval = blocked_interval
        self.release = asyncio.Event()

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> HistoricalSeed:
        if interval == self.blocked_interval:
            await self.release.wait()
        return await super().fetch_klines(symbol, interval, limit)


class FailingStreamSource(QueueSource):
    async def stream_bar_updates(self, symbol: str, interval: str) -> AsyncIterator[BarUpdate]:
        yield BarUpdate(symbol=symbol, interval=interval, candle=_candle(3, 11))
        raise RuntimeError("exchange closed the stream")


def test_slow_seed_does_not_block_other_keys() -> None:
    async def _run() -> None:
        source = BlockingSeedSource("1m")
        registry = StreamRegistry(source, _factory, aggregator=CandleAggregator(max_size=10))

        slow = asyncio.create_task(registry.subscribe("BTCUSDT", "1m"))
        await asyncio.sleep(0)
        waiting = asyncio.create_task(registry.subscribe("BTCUSDT", "1m"))

        other = await asyncio.wait_for(registry.subscribe("ETHUSDT", "5m"), timeout=0.5)
        assert other.key == ("ETHUSDT", "5m")
        assert not slow.done()
        assert not waiting.done()

        source.release.set()
        first = await asyncio.wait_for(slow, timeout=1.0)
        second = await asyncio.wait_for(waiting, timeout=1.0)

        assert first.key == second.key == ("BTCUSDT", "1m")
        assert source.fetches.count(("BTCUSDT", "1m")) == 1
        assert len(registry.aggregator.candles(("BTCUSDT", "1m"))) == 3
        assert registry.feed(("BTCUSDT", "1m")).subscriber_count == 2

        await registry.close()

    asyncio.run(_run())


def test_failed_upstream_notifies_subscribers_and_drops_stream() -> None:
    async def _run() -> None:
        source = FailingStreamSource([10, 9, 8])
        registry = StreamRegistry(source, _factory, aggregator=CandleAggregator(max_size=10))
        subscription = await registry.subscribe("BTCUSDT", "1m")

        events = await _drain(subscription, 4)

        assert [e["event"] for e in events] == ["kline", "indicatorUpdate", "signal", "error"]
        assert events[3]["data"] == {"detail": "upstream stopped"}
        assert registry.feed(("BTCUSDT", "1m")) is None
        assert registry.aggregator.candles(("BTCUSDT", "1m")) == []

        await registry.unsubscribe(subscription)
        resubscribed = await registry.subscribe("BTCUSDT", "1m")
        assert source.fetches == [("BTCUSDT", "1m"), ("BTCUSDT", "1m")]

        await registry.unsubscribe(resubscribed)
        assert registry.snapshot() == {"streams": []}

    asyncio.run(_run())


def test_build_registry_wires_configured_strategy(tmp_path) -> None:
    config = Config(
        binance_rest_url="https://api.binance.com",
        binance_ws_url="wss://stream.binance.com:9443/ws",
        default_symbol="BTCUSDT",
        default_interval="1m",
        candle_buffer_size=120,
        history_seed_limit=50,
        warmup_bars=30,
        live_strategy="ma_cross",
        ma_fast_period=5,
        ma_slow_period=20,
        macd_fast_period=12,
        macd_slow_period=26,
        macd_signal_period=9,
        initial_capital=5000.0,
        ws_ping_interval_seconds=15,
        api_port=10000,
        signal_log_enabled=True,
        signal_log_path=str(tmp_path / "signals.jsonl"),
    )

    registry = build_registry(config, source=QueueSource([]))
    pipeline = registry.pipeline_factory(("BTCUSDT", "1m"), registry.aggregator)

    assert registry.aggregator.max_size == 120
    assert registry.seed_limit == 50
    assert pipeline.strategy.name == "ma_cross"
    assert pipeline.warmup_bars == 30
    assert pipeline.position.initial_capital == 5000.0
    assert pipeline.signal_logger is not None
