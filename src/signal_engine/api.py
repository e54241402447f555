from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .backtest import run_backtest
from .candles import parse_interval_seconds
from .config import Config, load_config
from .crossover import crossovers
from .models import Candle, StrategyConfig
from .registry import StreamRegistry, Subscription, build_registry
from .strategies import MacdCrossStrategy, MovingAverageCrossStrategy

logger = logging.getLogger(__name__)


class CandleIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    is_final: bool = Field(default=True, alias="isFinal")

    def to_candle(self) -> Candle:
        return Candle(
            time=self.time,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            is_final=self.is_final,
        )


class BacktestRequest(BaseModel):
    candles: list[CandleIn] | None = None
    symbol: str | None = None
    interval: str = "1m"
    limit: int = Field(default=500, ge=1, le=1000)
    fast: int = Field(default=10, gt=0)
    slow: int = Field(default=20, gt=0)
    initial_capital: float = Field(
        default=10_000.0,
        gt=0,
        validation_alias=AliasChoices("initialCapital", "initial_capital"),
    )


class MacdBacktestRequest(BacktestRequest):
    fast: int = Field(default=12, gt=0)
    slow: int = Field(default=26, gt=0)
    signal_period: int = Field(
        default=9,
        gt=0,
        validation_alias=AliasChoices("signal", "signalPeriod", "signal_period"),
    )


def get_config(request: Request) -> Config:
    config = getattr(request.app.state, "config", None)
    if config is None:
        config = load_config()
        request.app.state.config = config
    return config


def get_registry(request: Request) -> StreamRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        registry = build_registry(get_config(request))
        request.app.state.registry = registry
    return registry


async def _resolve_candles(payload: BacktestRequest, registry: StreamRegistry) -> list[Candle]:
    if payload.candles is not None:
        return [c.to_candle() for c in payload.candles]
    if not payload.symbol:
        raise HTTPException(status_code=400, detail="candles or symbol is required")
    try:
        parse_interval_seconds(payload.interval)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        seed = await registry.source.fetch_klines(payload.symbol, payload.interval, limit=payload.limit)
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Error fetching klines for backtest: %s", exc)
        raise HTTPException(status_code=502, detail="failed to fetch klines") from exc
    return seed.candles


def create_app(registry: StreamRegistry | None = None, config: Config | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        active = getattr(app.state, "registry", None)
        if active is not None:
            await active.close()

    app = FastAPI(title="Kline Signal Engine API", version="0.1.0", lifespan=lifespan)
    app.state.registry = registry
    app.state.config = config

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"ok": True}

    @app.get("/status")
    async def status(registry: StreamRegistry = Depends(get_registry)) -> dict:
        return registry.snapshot()

    @app.get("/api/klines")
    async def klines(
        symbol: str = Query(default="BTCUSDT"),
        interval: str = Query(default="1m"),
        limit: int = Query(default=500, ge=1, le=1000),
        registry: StreamRegistry = Depends(get_registry),
    ) -> dict:
        try:
            seed = await registry.source.fetch_klines(symbol.upper(), interval, limit=limit)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error /api/klines: %s", exc)
            raise HTTPException(status_code=502, detail="failed to fetch klines") from exc
        return {
            "symbol": seed.symbol,
            "interval": seed.interval,
            "candles": [c.to_dict() for c in seed.candles],
        }

    @app.post("/api/backtest")
    async def backtest(
        payload: BacktestRequest,
        registry: StreamRegistry = Depends(get_registry),
    ) -> dict:
        candles = await _resolve_candles(payload, registry)
        try:
            strategy = MovingAverageCrossStrategy(
                StrategyConfig(
                    fast_period=payload.fast,
                    slow_period=payload.slow,
                    initial_capital=payload.initial_capital,
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return run_backtest(candles, strategy).to_dict()

    @app.post("/api/backtest-macd")
    async def backtest_macd(
        payload: MacdBacktestRequest,
        registry: StreamRegistry = Depends(get_registry),
    ) -> dict:
        candles = await _resolve_candles(payload, registry)
        try:
            strategy = MacdCrossStrategy(
                StrategyConfig(
                    fast_period=payload.fast,
                    slow_period=payload.slow,
                    signal_period=payload.signal_period,
                    initial_capital=payload.initial_capital,
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        series = strategy.series([c.close for c in candles])
        signals = [
            {"type": signal_type, "time": candles[i].time, "price": candles[i].close}
            for i, signal_type in crossovers(series.macd_line, series.signal_line)
        ]
        return {
            "symbol": payload.symbol,
            "interval": payload.interval,
            "candles": [c.to_dict() for c in candles],
            "macd": {
                "macdLine": series.macd_line,
                "signalLine": series.signal_line,
                "delta": series.histogram,
                "signals": signals,
            },
            **run_backtest(candles, strategy).to_dict(),
        }

    @app.websocket("/ws/klines")
    async def stream_klines(
        websocket: WebSocket,
        symbol: str = Query(default="BTCUSDT"),
        interval: str = Query(default="1m"),
    ) -> None:
        await websocket.accept()
        try:
            parse_interval_seconds(interval)
        except ValueError as exc:
            logger.warning("Rejecting /ws/klines subscription: %s", exc)
            await websocket.close(code=1008, reason=str(exc))
            return

        registry = getattr(websocket.app.state, "registry", None)
        if registry is None:
            registry = build_registry(getattr(websocket.app.state, "config", None) or load_config())
            websocket.app.state.registry = registry

        subscription = await registry.subscribe(symbol, interval)
        logger.info("Client subscribed to %s %s", *subscription.key)
        try:
            await _pump(websocket, subscription)
        finally:
            await registry.unsubscribe(subscription)
            logger.info("Client unsubscribed from %s %s", *subscription.key)

    return app


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    async def send_events() -> None:
        while True:
            event = await subscription.next_event()
            await websocket.send_json(event)
            if event["event"] == "error":
                return

    async def wait_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    tasks = [asyncio.create_task(send_events()), asyncio.create_task(wait_disconnect())]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                if not isinstance(exc, WebSocketDisconnect):
                    raise exc
    finally:
        for task in tasks:
            task.cancel()


app = create_app()
