from __future__ import annotations

from typing import Sequence

from ..indicators import MacdSeries, macd
from ..models import StrategyConfig
from .base import CrossoverStrategy, Series

DEFAULT_SIGNAL_PERIOD = 9


class MacdCrossStrategy(CrossoverStrategy):
    name = "macd"

    def __init__(self, config: StrategyConfig) -> None:
        if config.fast_period >= config.slow_period:
            raise ValueError("fast_period must be < slow_period")
        super().__init__(config)

    @property
    def signal_period(self) -> int:
        return self.config.signal_period or DEFAULT_SIGNAL_PERIOD

    def series(self, closes: Sequence[float]) -> MacdSeries:
        return macd(
            closes,
            fast=self.config.fast_period,
            slow=self.config.slow_period,
            signal=self.signal_period,
        )

    def lines(self, closes: Sequence[float]) -> tuple[Series, Series]:
        result = self.series(closes)
        return list(result.macd_line), list(result.signal_line)
