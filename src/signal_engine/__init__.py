"""Candle aggregation, indicator crossovers and backtests for kline streams."""
