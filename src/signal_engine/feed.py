from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import AsyncIterator

import httpx
import websockets

from .models import BarUpdate, Candle, HistoricalSeed

logger = logging.getLogger(__name__)

DEFAULT_REST_URL = "https://api.binance.com"
DEFAULT_WS_URL = "wss://stream.binance.com:9443/ws"


class BinanceKlineClient:
    def __init__(
        self,
        rest_url: str = DEFAULT_REST_URL,
        ws_url: str = DEFAULT_WS_URL,
        ping_interval_seconds: int = 15,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.rest_url = rest_url.rstrip("/")
        self.ws_url = ws_url.rstrip("/")
        self.ping_interval_seconds = ping_interval_seconds
        self.timeout_seconds = timeout_seconds

    async def fetch_klines(self, symbol: str, interval: str, limit: int = 500) -> HistoricalSeed:
        params = {"symbol": symbol.upper(), "interval": interval, "limit": limit}
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(f"{self.rest_url}/api/v3/klines", params=params)
            response.raise_for_status()
            payload = response.json()

        if not isinstance(payload, list):
            raise ValueError("unexpected klines payload")

        now_ms = int(time.time() * 1000)
        candles = []
        for row in payload:
            candle = self._parse_rest_kline(row, now_ms)
            if candle is None:
                logger.warning("[KLINES] Dropping malformed row: %s", row)
                continue
            candles.append(candle)
        return HistoricalSeed(symbol=symbol.upper(), interval=interval, candles=candles)

    async def stream_bar_updates(self, symbol: str, interval: str) -> AsyncIterator[BarUpdate]:
        target_url = self._resolve_ws_url(symbol, interval)
        while True:
            try:
                logger.info("[KLINE WS] Connecting: %s %s", symbol, interval)
                async with websockets.connect(
                    target_url,
                    ping_interval=self.ping_interval_seconds,
                ) as ws:
                    logger.info("[KLINE WS] Connected: %s", target_url)
                    async for raw in ws:
                        update = self._parse(raw)
                        if update is None:
                            continue
                        yield update
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("[KLINE WS] Error: %s; reconnecting in 1s", exc)
                await asyncio.sleep(1.0)

    def _resolve_ws_url(self, symbol: str, interval: str) -> str:
        return f"{self.ws_url}/{symbol.lower()}@kline_{interval}"

    def _parse_rest_kline(self, row: object, now_ms: int) -> Candle | None:
        # [open_time, open, high, low, close, volume, close_time, ...]
        if not isinstance(row, list) or len(row) < 7:
            return None
        try:
            return Candle(
                time=int(row[0]) // 1000,
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
                is_final=int(row[6]) < now_ms,
            )
        except (TypeError, ValueError):
            return None

    def _parse(self, raw: str | bytes) -> BarUpdate | None:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("[KLINE WS] Dropping non-JSON message")
            return None
        if not isinstance(data, dict) or data.get("e") != "kline":
            return None

        k = data.get("k")
        if not isinstance(k, dict):
            return None

        symbol = str(data.get("s") or k.get("s") or "").strip().upper()
        interval = str(k.get("i", "")).strip()
        if not symbol or not interval:
            logger.warning("[KLINE WS] Dropping kline without symbol/interval: %s", data)
            return None

        try:
            candle = Candle(
                time=int(k["t"]) // 1000,
                open=float(k["o"]),
                high=float(k["h"]),
                low=float(k["l"]),
                close=float(k["c"]),
                volume=float(k["v"]),
                is_final=bool(k.get("x", False)),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("[KLINE WS] Dropping malformed kline: %s", k)
            return None

        return BarUpdate(symbol=symbol, interval=interval, candle=candle)
