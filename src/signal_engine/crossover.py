from __future__ import annotations

from typing import Iterator, Sequence

from .models import SignalType


def detect_crossover(
    a: Sequence[float | None],
    b: Sequence[float | None],
    i: int,
) -> SignalType | None:
    """Classify the transition of ``a`` against ``b`` between ``i - 1`` and ``i``.

    The prior sample is compared non-strictly so a touch counts as "not yet
    crossed"; the current sample must be strictly on the other side.
    """
    if i < 1 or i >= len(a) or i >= len(b):
        return None

    prev_a, prev_b = a[i - 1], b[i - 1]
    cur_a, cur_b = a[i], b[i]
    if prev_a is None or prev_b is None or cur_a is None or cur_b is None:
        return None

    if prev_a <= prev_b and cur_a > cur_b:
        return "BUY"
    if prev_a >= prev_b and cur_a < cur_b:
        return "SELL"
    return None


def crossovers(
    a: Sequence[float | None],
    b: Sequence[float | None],
) -> Iterator[tuple[int, SignalType]]:
    for i in range(1, min(len(a), len(b))):
        signal = detect_crossover(a, b, i)
        if signal is not None:
            yield i, signal
