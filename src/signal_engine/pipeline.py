from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .backtest import PositionSimulator
from .candles import CandleAggregator, StreamKey
from .crossover import detect_crossover
from .models import Candle, IndicatorUpdate, SignalEvent, SignalType
from .signal_log import SignalLogger
from .strategies import CrossoverStrategy

logger = logging.getLogger(__name__)

DEFAULT_WARMUP_BARS = 50


@dataclass(frozen=True)
class PipelineOutput:
    """Everything one bar update produced, in emission order."""

    bar: Candle
    indicator: IndicatorUpdate | None = None
    signal: SignalEvent | None = None
    accepted: bool = True

    def events(self) -> list[dict]:
        if not self.accepted:
            return []
        items = [{"event": "kline", "data": self.bar.to_dict()}]
        if self.indicator is not None:
            items.append({"event": "indicatorUpdate", "data": self.indicator.to_dict()})
        if self.signal is not None:
            items.append({"event": "signal", "data": self.signal.to_dict()})
        return items


@dataclass
class SignalPipeline:
    key: StreamKey
    aggregator: CandleAggregator
    strategy: CrossoverStrategy
    warmup_bars: int = DEFAULT_WARMUP_BARS
    paper_history_limit: int = 500
    signal_logger: SignalLogger | None = None
    last_signal: SignalType | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.position = PositionSimulator(
            self.strategy.config.initial_capital,
            history_limit=self.paper_history_limit,
        )

    def seed(self, candles: list[Candle]) -> int:
        return len(self.aggregator.seed(self.key, candles))

    def on_bar(self, candle: Candle) -> PipelineOutput:
        candles, is_final = self.aggregator.ingest(self.key, candle)
        if not candles or candles[-1].time != candle.time:
            return PipelineOutput(bar=candle, accepted=False)
        if not is_final or len(candles) <= self.warmup_bars:
            return PipelineOutput(bar=candle)

        indicator = self._evaluate(candles)
        if indicator is None:
            return PipelineOutput(bar=candle)

        signal = None
        if indicator.signal_type is not None and indicator.signal_type != self.last_signal:
            self.last_signal = indicator.signal_type
            signal = SignalEvent(type=indicator.signal_type, time=candle.time, price=candle.close)
            logger.info(
                "%s | %s %s | strategy=%s price=%s time=%s",
                signal.type,
                self.key[0],
                self.key[1],
                self.strategy.name,
                signal.price,
                signal.time,
            )
            if self.signal_logger is not None:
                self.signal_logger.record(self.key, self.strategy.name, signal)

        # Re-delivery of the last finalized bar must not double-count it.
        if not self.position.equity_curve or self.position.equity_curve[-1].time != candle.time:
            self.position.step(candle, signal.type if signal is not None else None)

        return PipelineOutput(bar=candle, indicator=indicator, signal=signal)

    def _evaluate(self, candles: list[Candle]) -> IndicatorUpdate | None:
        closes = [c.close for c in candles]
        fast, slow = self.strategy.lines(closes)
        last = len(candles) - 1
        fast_value, slow_value = fast[last], slow[last]
        if fast_value is None or slow_value is None:
            return None
        return IndicatorUpdate(
            time=candles[last].time,
            fast_value=fast_value,
            slow_value=slow_value,
            delta=fast_value - slow_value,
            signal_type=detect_crossover(fast, slow, last),
        )

    def snapshot(self) -> dict:
        return {
            "symbol": self.key[0],
            "interval": self.key[1],
            "strategy": self.strategy.name,
            "candles": len(self.aggregator.candles(self.key)),
            "last_signal": self.last_signal,
            "position": self.position.snapshot(),
        }
