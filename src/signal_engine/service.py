from __future__ import annotations

import asyncio

import uvicorn

from .api import create_app
from .config import load_config
from .main import run
from .registry import build_registry


async def serve() -> None:
    config = load_config()
    registry = build_registry(config)
    app = create_app(registry=registry, config=config)

    server = uvicorn.Server(
        uvicorn.Config(
            app=app,
            host="0.0.0.0",
            port=config.api_port,
            log_level="info",
        )
    )

    try:
        async with asyncio.TaskGroup() as tg:
            tg.create_task(run(registry))
            tg.create_task(server.serve())
    finally:
        await registry.close()


if __name__ == "__main__":
    asyncio.run(serve())
