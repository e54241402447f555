from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .candles import parse_interval_seconds
from .models import StrategyConfig


@dataclass(frozen=True)
class Config:
    binance_rest_url: str
    binance_ws_url: str
    default_symbol: str
    default_interval: str
    candle_buffer_size: int
    history_seed_limit: int
    warmup_bars: int
    live_strategy: str
    ma_fast_period: int
    ma_slow_period: int
    macd_fast_period: int
    macd_slow_period: int
    macd_signal_period: int
    initial_capital: float
    ws_ping_interval_seconds: int
    api_port: int
    signal_log_enabled: bool
    signal_log_path: str

    def strategy_config(self, name: str | None = None) -> StrategyConfig:
        name = name or self.live_strategy
        if name == "ma_cross":
            return StrategyConfig(
                fast_period=self.ma_fast_period,
                slow_period=self.ma_slow_period,
                initial_capital=self.initial_capital,
            )
        return StrategyConfig(
            fast_period=self.macd_fast_period,
            slow_period=self.macd_slow_period,
            signal_period=self.macd_signal_period,
            initial_capital=self.initial_capital,
        )



def _bool_from_env(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}



def load_config() -> Config:
    load_dotenv()

    default_interval = os.getenv("DEFAULT_INTERVAL", "1m").strip()
    parse_interval_seconds(default_interval)

    live_strategy = os.getenv("LIVE_STRATEGY", "macd").strip().lower()
    if live_strategy not in {"macd", "ma_cross"}:
        raise ValueError(f"LIVE_STRATEGY must be 'macd' or 'ma_cross', got '{live_strategy}'")

    candle_buffer_size = int(os.getenv("CANDLE_BUFFER_SIZE", "300"))
    if candle_buffer_size <= 0:
        raise ValueError("CANDLE_BUFFER_SIZE must be > 0")

    warmup_bars = int(os.getenv("WARMUP_BARS", "50"))
    if warmup_bars >= candle_buffer_size:
        raise ValueError("WARMUP_BARS must be smaller than CANDLE_BUFFER_SIZE")

    ma_fast_period = int(os.getenv("MA_FAST_PERIOD", "10"))
    ma_slow_period = int(os.getenv("MA_SLOW_PERIOD", "20"))
    if not 0 < ma_fast_period < ma_slow_period:
        raise ValueError("MA_FAST_PERIOD must be > 0 and < MA_SLOW_PERIOD")

    macd_fast_period = int(os.getenv("MACD_FAST_PERIOD", "12"))
    macd_slow_period = int(os.getenv("MACD_SLOW_PERIOD", "26"))
    macd_signal_period = int(os.getenv("MACD_SIGNAL_PERIOD", "9"))
    if not 0 < macd_fast_period < macd_slow_period:
        raise ValueError("MACD_FAST_PERIOD must be > 0 and < MACD_SLOW_PERIOD")
    if macd_signal_period <= 0:
        raise ValueError("MACD_SIGNAL_PERIOD must be > 0")

    initial_capital = float(os.getenv("INITIAL_CAPITAL", "10000"))
    if initial_capital <= 0:
        raise ValueError("INITIAL_CAPITAL must be > 0")

    return Config(
        binance_rest_url=os.getenv("BINANCE_REST_URL", "https://api.binance.com").strip(),
        binance_ws_url=os.getenv("BINANCE_WS_URL", "wss://stream.binance.com:9443/ws").strip(),
        default_symbol=os.getenv("DEFAULT_SYMBOL", "BTCUSDT").strip().upper(),
        default_interval=default_interval,
        candle_buffer_size=candle_buffer_size,
        history_seed_limit=int(os.getenv("HISTORY_SEED_LIMIT", "200")),
        warmup_bars=warmup_bars,
        live_strategy=live_strategy,
        ma_fast_period=ma_fast_period,
        ma_slow_period=ma_slow_period,
        macd_fast_period=macd_fast_period,
        macd_slow_period=macd_slow_period,
        macd_signal_period=macd_signal_period,
        initial_capital=initial_capital,
        ws_ping_interval_seconds=int(os.getenv("WS_PING_INTERVAL_SECONDS", "15")),
        api_port=int(os.getenv("API_PORT", "10000")),
        signal_log_enabled=_bool_from_env(os.getenv("SIGNAL_LOG_ENABLED"), True),
        signal_log_path=os.getenv("SIGNAL_LOG_PATH", "logs/signals.jsonl").strip(),
    )
