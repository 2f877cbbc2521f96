"""
Command Server Main Entry Point

Starts:
- JSON order history and maps directory
- FastAPI server (WebSocket command protocol, stats, order upload)
- Periodic liveness stats logging

Usage:
    python -m placebot.server.main
"""

import asyncio
import logging
import os
import signal

import uvicorn

from ..config import load_config, setup_logging
from .api import create_app

logger = logging.getLogger(__name__)

DEFAULTS = {
    "host": "0.0.0.0",
    "port": 3987,
    "data_path": "data/data.json",
    "maps_dir": "data/maps",
    "static_dir": "static",
    "password": "",
    "log_level": "INFO",
    "stats_interval_seconds": 300,
}

ENV_MAPPINGS = {
    "HOST": "host",
    "PORT": "port",
    "DATA_PATH": "data_path",
    "MAPS_DIR": "maps_dir",
    "STATIC_DIR": "static_dir",
    "PASSWORD": "password",
    "LOG_LEVEL": "log_level",
}


async def run_service():
    """Run the command server."""
    config = load_config(
        os.environ.get("PLACEBOT_CONFIG", "config/server.yaml"), DEFAULTS, ENV_MAPPINGS
    )
    setup_logging(config["log_level"])

    logger.info("=" * 60)
    logger.info("placebot Command Server Starting")
    logger.info("=" * 60)
    logger.info(f"Data Path: {config['data_path']}")
    logger.info(f"Maps Dir: {config['maps_dir']}")
    logger.info(f"API Port: {config['port']}")
    if not config["password"]:
        logger.warning("No PASSWORD configured, order submission is disabled")

    app = create_app(
        data_path=config["data_path"],
        maps_dir=config["maps_dir"],
        static_dir=config["static_dir"],
        password=config["password"] or None,
    )
    registry = app.state.registry

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    uvicorn_config = uvicorn.Config(
        app,
        host=config["host"],
        port=config["port"],
        log_level=config["log_level"].lower(),
    )
    server = uvicorn.Server(uvicorn_config)

    async def run_api():
        try:
            await server.serve()
        finally:
            # uvicorn may consume the signal itself
            shutdown_event.set()

    async def watch_shutdown():
        await shutdown_event.wait()
        server.should_exit = True

    async def periodic_stats():
        """Log liveness statistics periodically."""
        while not shutdown_event.is_set():
            snapshot = registry.snapshot
            logger.info(
                f"Stats: {registry.raw_count} sockets, "
                f"{snapshot.connection_count} active agents, "
                f"brands={snapshot.brand_usage}"
            )
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(), timeout=config["stats_interval_seconds"]
                )
            except TimeoutError:
                continue

    try:
        await asyncio.gather(
            run_api(),
            watch_shutdown(),
            periodic_stats(),
        )
    except asyncio.CancelledError:
        logger.info("Service tasks cancelled")
    finally:
        logger.info("placebot Command Server stopped")


def main() -> None:
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
