import pytest

from src.signal_engine.candles import CandleAggregator, CandleBuffer, parse_interval_seconds
from src.signal_engine.models import Candle


def _bar(ts: int, close: float, is_final: bool = True) -> Candle:
    return Candle(time=ts, open=close, high=close, low=close, close=close, volume=1.0, is_final=is_final)


def test_parse_interval_seconds_for_common_intervals() -> None:
    assert parse_interval_seconds("1m") == 60
    assert parse_interval_seconds("15m") == 900
    assert parse_interval_seconds("4h") == 14400
    assert parse_interval_seconds("1w") == 604800
    assert parse_interval_seconds("1M") == 2592000


def test_parse_interval_seconds_rejects_invalid_unit() -> None:
    with pytest.raises(ValueError, match="unsupported interval unit"):
        parse_interval_seconds("10x")


def test_parse_interval_seconds_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_interval_seconds("m")
    with pytest.raises(ValueError):
        parse_interval_seconds("")


def test_ingest_appends_newer_bar() -> None:
    agg = CandleAggregator(max_size=10)
    key = ("BTCUSDT", "1m")

    candles, final = agg.ingest(key, _bar(60, 100.0))
    assert final is True
    candles, final = agg.ingest(key, _bar(120, 101.0, is_final=False))

    assert [c.time for c in candles] == [60, 120]
    assert final is False


def test_ingest_replaces_in_progress_tail() -> None:
    agg = CandleAggregator(max_size=10)
    key = ("BTCUSDT", "1m")
    agg.ingest(key, _bar(60, 100.0))
    agg.ingest(key, _bar(120, 101.0, is_final=False))

    candles, final = agg.ingest(key, _bar(120, 103.0, is_final=False))
    assert len(candles) == 2
    assert candles[-1].close == 103.0
    assert final is False

    candles, final = agg.ingest(key, _bar(120, 102.5, is_final=True))
    assert len(candles) == 2
    assert candles[-1].close == 102.5
    assert final is True


def test_ingest_never_rewrites_interior_bars() -> None:
    agg = CandleAggregator(max_size=10)
    key = ("BTCUSDT", "1m")
    agg.ingest(key, _bar(60, 100.0))
    agg.ingest(key, _bar(120, 101.0))

    candles, final = agg.ingest(key, _bar(60, 999.0))

    assert [c.close for c in candles] == [100.0, 101.0]
    assert final is False


def test_buffer_evicts_oldest_beyond_bound() -> None:
    bound, k = 5, 3
    agg = CandleAggregator(max_size=bound)
    key = ("ETHUSDT", "5m")

    for i in range(1, bound + k + 1):
        candles, _ = agg.ingest(key, _bar(i * 300, float(i)))

    assert len(candles) == bound
    # first element is the (k+1)-th injected bar once k bars were evicted
    assert candles[0].time == (k + 1) * 300
    assert candles[-1].time == (bound + k) * 300


def test_keys_are_independent() -> None:
    agg = CandleAggregator(max_size=3)
    agg.ingest(("BTCUSDT", "1m"), _bar(60, 1.0))
    agg.ingest(("BTCUSDT", "5m"), _bar(300, 2.0))

    assert [c.close for c in agg.candles(("BTCUSDT", "1m"))] == [1.0]
    assert [c.close for c in agg.candles(("BTCUSDT", "5m"))] == [2.0]

    agg.discard(("BTCUSDT", "1m"))
    assert agg.candles(("BTCUSDT", "1m")) == []
    assert agg.keys() == [("BTCUSDT", "5m")]


def test_seed_keeps_only_newest_bars() -> None:
    agg = CandleAggregator(max_size=3)

    candles = agg.seed(("BTCUSDT", "1m"), [_bar(i * 60, float(i)) for i in range(1, 6)])

    assert [c.time for c in candles] == [180, 240, 300]


def test_candle_buffer_rejects_non_positive_size() -> None:
    with pytest.raises(ValueError, match="max_size"):
        CandleBuffer(0)
