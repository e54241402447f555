from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Protocol

import httpx

from .candles import CandleAggregator, StreamKey
from .config import Config
from .feed import BinanceKlineClient
from .models import BarUpdate, HistoricalSeed
from .pipeline import PipelineOutput, SignalPipeline
from .signal_log import SignalLogger
from .strategies import build_strategy

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[StreamKey, CandleAggregator], SignalPipeline]


class KlineSource(Protocol):
    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> HistoricalSeed: ...

    def stream_bar_updates(self, symbol: str, interval: str) -> AsyncIterator[BarUpdate]: ...


@dataclass
class Subscription:
    key: StreamKey
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)

    async def next_event(self) -> dict:
        return await self.queue.get()


class KeyFeed:
    """State bundle for one (symbol, interval) plus its subscriber queues."""

    def __init__(self, key: StreamKey, pipeline: SignalPipeline, queue_size: int = 1000) -> None:
        self.key = key
        self.pipeline = pipeline
        self.queue_size = queue_size
        self.task: asyncio.Task | None = None
        self.ready = asyncio.Event()
        self._lock = threading.Lock()
        self._subscribers: list[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_subscriber(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.append(queue)
        return queue

    def remove_subscriber(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, update: BarUpdate) -> PipelineOutput:
        with self._lock:
            output = self.pipeline.on_bar(update.candle)
        for event in output.events():
            self.broadcast(event)
        return output

    def broadcast(self, event: dict) -> None:
        for queue in list(self._subscribers):
            self._offer(queue, event)

    def _offer(self, queue: asyncio.Queue, event: dict) -> None:
        if queue.full():
            queue.get_nowait()
            logger.warning("Slow subscriber on %s %s; dropped oldest event", *self.key)
        queue.put_nowait(event)

    def snapshot(self) -> dict:
        with self._lock:
            payload = self.pipeline.snapshot()
        payload["subscribers"] = self.subscriber_count
        return payload


class StreamRegistry:
    def __init__(
        self,
        source: KlineSource,
        pipeline_factory: PipelineFactory,
        *,
        aggregator: CandleAggregator | None = None,
        seed_limit: int = 200,
        queue_size: int = 1000,
    ) -> None:
        self.source = source
        self.pipeline_factory = pipeline_factory
        self.aggregator = aggregator or CandleAggregator()
        self.seed_limit = seed_limit
        self.queue_size = queue_size
        self._feeds: dict[StreamKey, KeyFeed] = {}
        self._lock = asyncio.Lock()

    def feed(self, key: StreamKey) -> KeyFeed | None:
        return self._feeds.get(key)

    async def subscribe(self, symbol: str, interval: str) -> Subscription:
        key = (symbol.upper(), interval)
        async with self._lock:
            feed = self._feeds.get(key)
            created = feed is None
            if created:
                feed = KeyFeed(key, self.pipeline_factory(key, self.aggregator), self.queue_size)
                self._feeds[key] = feed
            subscription = Subscription(key=key, queue=feed.add_subscriber())

        if not created:
            # Later subscribers only wait on their own key's seed.
            await feed.ready.wait()
            return subscription

        try:
            await self._seed(feed)
        except BaseException:
            await self.unsubscribe(subscription)
            raise
        finally:
            feed.ready.set()
            self._start_upstream(feed)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            feed = self._feeds.get(subscription.key)
            if feed is None:
                return
            feed.remove_subscriber(subscription.queue)
            if feed.subscriber_count == 0:
                await self._destroy(feed)

    async def close(self) -> None:
        async with self._lock:
            for feed in list(self._feeds.values()):
                await self._destroy(feed)

    def publish(self, update: BarUpdate) -> PipelineOutput | None:
        feed = self._feeds.get((update.symbol.upper(), update.interval))
        if feed is None:
            return None
        return feed.publish(update)

    def snapshot(self) -> dict:
        return {
            "streams": [feed.snapshot() for feed in list(self._feeds.values())],
        }

    async def _seed(self, feed: KeyFeed) -> None:
        symbol, interval = feed.key
        try:
            seed = await self.source.fetch_klines(symbol, interval, limit=self.seed_limit)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Seeding %s %s failed: %s; starting empty", symbol, interval, exc)
            return
        count = feed.pipeline.seed(seed.candles)
        logger.info("Loaded %s candles for %s %s", count, symbol, interval)

    def _start_upstream(self, feed: KeyFeed) -> None:
        if self._feeds.get(feed.key) is not feed:
            # Closed while seeding.
            if feed.key not in self._feeds:
                self.aggregator.discard(feed.key)
            return
        feed.task = asyncio.create_task(self._run_upstream(feed))
        feed.task.add_done_callback(lambda task: self._on_upstream_done(feed, task))
        logger.info("Started stream %s %s", *feed.key)

    async def _run_upstream(self, feed: KeyFeed) -> None:
        symbol, interval = feed.key
        async for update in self.source.stream_bar_updates(symbol, interval):
            if update.symbol.upper() != symbol or update.interval != interval:
                continue
            feed.publish(update)

    def _on_upstream_done(self, feed: KeyFeed, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Upstream for %s %s failed: %r", feed.key[0], feed.key[1], exc)
        else:
            logger.warning("Upstream for %s %s ended", *feed.key)

        if self._feeds.get(feed.key) is feed:
            del self._feeds[feed.key]
            self.aggregator.discard(feed.key)
        feed.broadcast({"event": "error", "data": {"detail": "upstream stopped"}})

    async def _destroy(self, feed: KeyFeed) -> None:
        if self._feeds.get(feed.key) is feed:
            del self._feeds[feed.key]
            self.aggregator.discard(feed.key)
        if feed.task is not None:
            feed.task.cancel()
            # A failure was already reported by _on_upstream_done.
            await asyncio.gather(feed.task, return_exceptions=True)
        logger.info("Stopped stream %s %s", *feed.key)


def build_registry(config: Config, source: KlineSource | None = None) -> StreamRegistry:
    signal_logger = SignalLogger(config.signal_log_path) if config.signal_log_enabled else None
    strategy_config = config.strategy_config()

    def pipeline_factory(key: StreamKey, aggregator: CandleAggregator) -> SignalPipeline:
        return SignalPipeline(
            key=key,
            aggregator=aggregator,
            strategy=build_strategy(config.live_strategy, strategy_config),
            warmup_bars=config.warmup_bars,
            signal_logger=signal_logger,
        )

    if source is None:
        source = BinanceKlineClient(
            rest_url=config.binance_rest_url,
            ws_url=config.binance_ws_url,
            ping_interval_seconds=config.ws_ping_interval_seconds,
        )
    return StreamRegistry(
        source,
        pipeline_factory,
        aggregator=CandleAggregator(config.candle_buffer_size),
        seed_limit=config.history_seed_limit,
    )
