from __future__ import annotations

import asyncio
import logging

from .config import load_config
from .registry import StreamRegistry, build_registry


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run(registry: StreamRegistry | None = None) -> None:
    config = load_config()
    owns_registry = registry is None
    registry = registry or build_registry(config)

    logger.info(
        "Watching %s %s with strategy=%s",
        config.default_symbol,
        config.default_interval,
        config.live_strategy,
    )
    subscription = await registry.subscribe(config.default_symbol, config.default_interval)
    try:
        while True:
            event = await subscription.next_event()
            if event["event"] == "indicatorUpdate":
                logger.debug("Indicator update %s", event["data"])
            elif event["event"] == "signal":
                data = event["data"]
                logger.info(
                    "Signal %s | %s %s | price=%s time=%s",
                    data["type"],
                    config.default_symbol,
                    config.default_interval,
                    data["price"],
                    data["time"],
                )
            elif event["event"] == "error":
                logger.warning("Stream stopped: %s", event["data"]["detail"])
                return
    finally:
        await registry.unsubscribe(subscription)
        if owns_registry:
            await registry.close()


if __name__ == "__main__":
    asyncio.run(run())
