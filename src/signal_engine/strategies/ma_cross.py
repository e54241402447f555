from __future__ import annotations

from typing import Sequence

from ..indicators import sma
from ..models import StrategyConfig
from .base import CrossoverStrategy, Series


class MovingAverageCrossStrategy(CrossoverStrategy):
    name = "ma_cross"

    def __init__(self, config: StrategyConfig) -> None:
        if config.fast_period >= config.slow_period:
            raise ValueError("fast_period must be < slow_period")
        super().__init__(config)

    def lines(self, closes: Sequence[float]) -> tuple[Series, Series]:
        return sma(closes, self.config.fast_period), sma(closes, self.config.slow_period)
