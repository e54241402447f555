from __future__ import annotations

import json
import threading
import time
from pathlib import Path

from .candles import StreamKey
from .models import SignalEvent


class SignalLogger:
    """Appends every emitted live signal to a JSONL file, one object per line."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, key: StreamKey, strategy: str, signal: SignalEvent) -> None:
        symbol, interval = key
        line = json.dumps(
            {
                "logged_at": round(time.time(), 3),
                "symbol": symbol,
                "interval": interval,
                "strategy": strategy,
                **signal.to_dict(),
            },
            separators=(",", ":"),
        )
        with self._lock, self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
