from __future__ import annotations

from ..models import StrategyConfig
from .base import CrossoverStrategy
from .ma_cross import MovingAverageCrossStrategy
from .macd_cross import MacdCrossStrategy

STRATEGIES: dict[str, type[CrossoverStrategy]] = {
    MovingAverageCrossStrategy.name: MovingAverageCrossStrategy,
    MacdCrossStrategy.name: MacdCrossStrategy,
}


def build_strategy(name: str, config: StrategyConfig) -> CrossoverStrategy:
    try:
        strategy_cls = STRATEGIES[name]
    except KeyError:
        raise ValueError(f"unknown strategy: {name}") from None
    return strategy_cls(config)


__all__ = [
    "CrossoverStrategy",
    "MovingAverageCrossStrategy",
    "MacdCrossStrategy",
    "STRATEGIES",
    "build_strategy",
]
