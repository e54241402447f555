from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Sequence

from .crossover import detect_crossover
from .models import Candle, EquityPoint, PositionStatus, SignalType, Trade
from .strategies import CrossoverStrategy


class PositionInvariantError(AssertionError):
    """Raised when a position transition is requested from the wrong state."""


@dataclass(frozen=True)
class BacktestSummary:
    initial_capital: float
    final_capital: float
    total_return_pct: float
    trade_count: int
    win_rate_pct: float

    def to_dict(self) -> dict:
        return {
            "initialCapital": self.initial_capital,
            "finalCapital": self.final_capital,
            "totalReturnPct": self.total_return_pct,
            "tradeCount": self.trade_count,
            "winRatePct": self.win_rate_pct,
        }


@dataclass(frozen=True)
class BacktestResult:
    trades: list[Trade]
    equity_curve: list[EquityPoint]
    summary: BacktestSummary

    def to_dict(self) -> dict:
        return {
            "trades": [t.to_dict() for t in self.trades],
            "equityCurve": [p.to_dict() for p in self.equity_curve],
            "summary": self.summary.to_dict(),
        }


class PositionSimulator:
    """Long-only, all-in position that is either FLAT or LONG."""

    def __init__(self, initial_capital: float, history_limit: int | None = None) -> None:
        if initial_capital <= 0:
            raise ValueError("initial_capital must be > 0")
        self.initial_capital = float(initial_capital)
        self.capital = float(initial_capital)
        self.status: PositionStatus = "FLAT"
        self.entry_price = 0.0
        self.trades: Deque[Trade] = deque(maxlen=history_limit)
        self.equity_curve: Deque[EquityPoint] = deque(maxlen=history_limit)
        self._closed = 0
        self._wins = 0

    def mark_to_market(self, price: float) -> float:
        if self.status == "LONG":
            return self.capital / self.entry_price * price
        return self.capital

    def open_long(self, time_: int, price: float) -> Trade:
        if self.status != "FLAT":
            raise PositionInvariantError(f"BUY at {time_} while {self.status}")
        self.status = "LONG"
        self.entry_price = price
        trade = Trade(type="BUY", time=time_, price=price)
        self.trades.append(trade)
        return trade

    def close_long(self, time_: int, price: float) -> Trade:
        if self.status != "LONG":
            raise PositionInvariantError(f"SELL at {time_} while {self.status}")
        exit_value = self.capital / self.entry_price * price
        profit = exit_value - self.capital
        trade = Trade(type="SELL", time=time_, price=price, profit=profit)
        self.trades.append(trade)
        self.capital = exit_value
        self.status = "FLAT"
        self.entry_price = 0.0
        self._closed += 1
        if profit > 0:
            self._wins += 1
        return trade

    def step(self, candle: Candle, signal: SignalType | None) -> Trade | None:
        """Apply ``signal`` at ``candle``'s close and record the bar's equity.

        Signals that do not apply to the current state are ignored.
        """
        trade = None
        if signal == "BUY" and self.status == "FLAT":
            trade = self.open_long(candle.time, candle.close)
        elif signal == "SELL" and self.status == "LONG":
            trade = self.close_long(candle.time, candle.close)
        self.equity_curve.append(EquityPoint(time=candle.time, value=self.mark_to_market(candle.close)))
        return trade

    def close_out(self, candle: Candle) -> Trade | None:
        if self.status != "LONG":
            return None
        return self.close_long(candle.time, candle.close)

    def summary(self) -> BacktestSummary:
        final_capital = self.capital
        return BacktestSummary(
            initial_capital=self.initial_capital,
            final_capital=final_capital,
            total_return_pct=(final_capital - self.initial_capital) / self.initial_capital * 100,
            trade_count=self._closed,
            win_rate_pct=(self._wins / self._closed * 100) if self._closed else 0.0,
        )

    def snapshot(self) -> dict:
        return {
            "status": self.status,
            "entry_price": self.entry_price if self.status == "LONG" else None,
            "capital": self.capital,
            "trades": [t.to_dict() for t in self.trades],
            "equity": self.equity_curve[-1].value if self.equity_curve else self.capital,
            "summary": self.summary().to_dict(),
        }


def run_backtest(candles: Sequence[Candle], strategy: CrossoverStrategy) -> BacktestResult:
    simulator = PositionSimulator(strategy.config.initial_capital)
    if not candles:
        return BacktestResult(trades=[], equity_curve=[], summary=simulator.summary())

    closes = [c.close for c in candles]
    fast, slow = strategy.lines(closes)
    for i, candle in enumerate(candles):
        simulator.step(candle, detect_crossover(fast, slow, i))
    simulator.close_out(candles[-1])

    return BacktestResult(
        trades=list(simulator.trades),
        equity_curve=list(simulator.equity_curve),
        summary=simulator.summary(),
    )
