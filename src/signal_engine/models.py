from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

SignalType = Literal["BUY", "SELL"]
PositionStatus = Literal["FLAT", "LONG"]


@dataclass(frozen=True)
class Candle:
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    is_final: bool = False

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "isFinal": self.is_final,
        }


@dataclass(frozen=True)
class BarUpdate:
    symbol: str
    interval: str
    candle: Candle


@dataclass(frozen=True)
class HistoricalSeed:
    symbol: str
    interval: str
    candles: list[Candle]


@dataclass(frozen=True)
class SignalEvent:
    type: SignalType
    time: int
    price: float

    def to_dict(self) -> dict:
        return {"type": self.type, "time": self.time, "price": self.price}


@dataclass(frozen=True)
class IndicatorUpdate:
    time: int
    fast_value: float
    slow_value: float
    delta: float
    signal_type: SignalType | None

    def to_dict(self) -> dict:
        return {
            "time": self.time,
            "fastValue": self.fast_value,
            "slowValue": self.slow_value,
            "delta": self.delta,
            "signalType": self.signal_type,
        }


@dataclass(frozen=True)
class Trade:
    type: SignalType
    time: int
    price: float
    profit: float | None = None

    def to_dict(self) -> dict:
        payload: dict = {"type": self.type, "time": self.time, "price": self.price}
        if self.profit is not None:
            payload["profit"] = self.profit
        return payload


@dataclass(frozen=True)
class EquityPoint:
    time: int
    value: float

    def to_dict(self) -> dict:
        return {"time": self.time, "value": self.value}


@dataclass(frozen=True)
class StrategyConfig:
    fast_period: int
    slow_period: int
    signal_period: int | None = None
    initial_capital: float = 10_000.0
