from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterable

from .models import Candle

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 300

StreamKey = tuple[str, str]


def parse_interval_seconds(interval: str) -> int:
    value = interval.strip()
    if not value:
        raise ValueError("interval must not be empty")

    unit = value[-1]
    try:
        number = int(value[:-1])
    except ValueError as exc:
        raise ValueError(f"invalid interval: {interval}") from exc
    if number <= 0:
        raise ValueError("interval must be > 0")

    # "m" is minutes and "M" is months, as in exchange kline intervals.
    factors = {
        "s": 1,
        "m": 60,
        "h": 3600,
        "d": 86400,
        "w": 604800,
        "M": 2592000,
    }
    if unit not in factors:
        raise ValueError(f"unsupported interval unit: {unit}")
    return number * factors[unit]


class CandleBuffer:
    """Time-ordered, bounded candle history for a single stream."""

    def __init__(self, max_size: int = DEFAULT_BUFFER_SIZE) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        self.max_size = max_size
        self._candles: Deque[Candle] = deque()

    def __len__(self) -> int:
        return len(self._candles)

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def ingest(self, candle: Candle) -> bool:
        """Merge or append ``candle``; returns False if it was rejected.

        A bar with the same open time as the tail replaces it. Older bars are
        never written over interior entries.
        """
        last = self.last
        if last is None or candle.time > last.time:
            self._candles.append(candle)
        elif candle.time == last.time:
            self._candles[-1] = candle
        else:
            logger.warning(
                "Dropping out-of-order bar time=%s (last=%s)",
                candle.time,
                last.time,
            )
            return False

        while len(self._candles) > self.max_size:
            self._candles.popleft()
        return True

    def replace(self, candles: Iterable[Candle]) -> None:
        self._candles.clear()
        for candle in candles:
            self.ingest(candle)

    def snapshot(self) -> list[Candle]:
        return list(self._candles)


class CandleAggregator:
    def __init__(self, max_size: int = DEFAULT_BUFFER_SIZE) -> None:
        self.max_size = max_size
        self._buffers: dict[StreamKey, CandleBuffer] = {}

    def _buffer(self, key: StreamKey) -> CandleBuffer:
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = CandleBuffer(self.max_size)
            self._buffers[key] = buffer
        return buffer

    def ingest(self, key: StreamKey, candle: Candle) -> tuple[list[Candle], bool]:
        buffer = self._buffer(key)
        accepted = buffer.ingest(candle)
        return buffer.snapshot(), accepted and candle.is_final

    def seed(self, key: StreamKey, candles: Iterable[Candle]) -> list[Candle]:
        buffer = self._buffer(key)
        buffer.replace(candles)
        return buffer.snapshot()

    def candles(self, key: StreamKey) -> list[Candle]:
        buffer = self._buffers.get(key)
        return buffer.snapshot() if buffer is not None else []

    def discard(self, key: StreamKey) -> None:
        self._buffers.pop(key, None)

    def keys(self) -> list[StreamKey]:
        return list(self._buffers)
