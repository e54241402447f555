from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from ..models import StrategyConfig

Series = list[float | None]


class CrossoverStrategy(ABC):
    """A pair of indicator lines whose crossings drive BUY/SELL signals."""

    name: str

    def __init__(self, config: StrategyConfig) -> None:
        self.config = config

    @abstractmethod
    def lines(self, closes: Sequence[float]) -> tuple[Series, Series]:
        raise NotImplementedError
