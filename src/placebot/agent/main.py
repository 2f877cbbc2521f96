"""
Placement Agent Main Entry Point

Order of startup:
- Fetch the painting service access token
- Connect to the command server (getmap + brand handshake)
- Run the placement loop, token refresh and command connection together

Usage:
    python -m placebot.agent.main
"""

import asyncio
import logging
import os
import signal

import aiohttp

from ..config import load_config, setup_logging
from .auth import DEFAULT_PAGE_URL, TokenError, TokenProvider
from .canvas import DEFAULT_REALTIME_URL, CanvasAssembler, RemoteTileSource
from .command import DEFAULT_BRAND, DEFAULT_COMMAND_URL, CommandClient
from .order import OrderTracker
from .placement import DEFAULT_GQL_URL, PlacementClient
from .scheduler import PlacementScheduler

logger = logging.getLogger(__name__)

DEFAULTS = {
    "command_url": DEFAULT_COMMAND_URL,
    "maps_url": "http://localhost:3987/maps",
    "brand": DEFAULT_BRAND,
    "place_page_url": DEFAULT_PAGE_URL,
    "gql_url": DEFAULT_GQL_URL,
    "realtime_url": DEFAULT_REALTIME_URL,
    "ping_interval_seconds": 5.0,
    "token_refresh_seconds": 1800.0,
    "token_retry_seconds": 10.0,
    "reconnect_delay_seconds": 1.0,
    "log_level": "INFO",
}

ENV_MAPPINGS = {
    "COMMAND_URL": "command_url",
    "MAPS_URL": "maps_url",
    "BRAND": "brand",
    "PLACE_PAGE_URL": "place_page_url",
    "LOG_LEVEL": "log_level",
}


async def _initial_token(tokens: TokenProvider, retry_seconds: float) -> None:
    while True:
        try:
            await tokens.refresh()
            return
        except TokenError as e:
            logger.error(f"Could not get access token: {e}. Retrying in {retry_seconds}s...")
            await asyncio.sleep(retry_seconds)


async def run_agent():
    """Run one placement agent."""
    config = load_config(
        os.environ.get("PLACEBOT_AGENT_CONFIG", "config/agent.yaml"), DEFAULTS, ENV_MAPPINGS
    )
    setup_logging(config["log_level"])

    logger.info("=" * 60)
    logger.info("placebot Agent Starting")
    logger.info("=" * 60)
    logger.info(f"Command server: {config['command_url']}")
    logger.info(f"Brand: {config['brand']}")

    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        loop.call_soon_threadsafe(main_task.cancel)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    async with aiohttp.ClientSession() as session:
        tokens = TokenProvider(
            session,
            page_url=config["place_page_url"],
            refresh_seconds=config["token_refresh_seconds"],
        )
        orders = OrderTracker(session, config["maps_url"])
        command = CommandClient(
            url=config["command_url"],
            brand=config["brand"],
            on_map=orders.announce,
            reconnect_delay=config["reconnect_delay_seconds"],
            ping_interval=config["ping_interval_seconds"],
        )
        scheduler = PlacementScheduler(
            orders=orders,
            assembler=CanvasAssembler(
                RemoteTileSource(session, tokens, realtime_url=config["realtime_url"])
            ),
            placer=PlacementClient(session, tokens, gql_url=config["gql_url"]),
            reporter=command,
        )

        try:
            logger.info("Getting access token...")
            await _initial_token(tokens, config["token_retry_seconds"])
            await asyncio.gather(
                tokens.run_refresh_loop(),
                command.connect(),
                scheduler.run(),
            )
        except asyncio.CancelledError:
            logger.info("Agent tasks cancelled")
        finally:
            logger.info("Cleaning up...")
            await orders.close()
            await command.disconnect()
            logger.info(f"placebot Agent stopped ({scheduler.get_stats()})")


def main() -> None:
    asyncio.run(run_agent())


if __name__ == "__main__":
    main()
