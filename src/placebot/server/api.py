"""
FastAPI application for the command server.

Endpoints:
- /health        - Health check
- /api/ws        - WebSocket command protocol for agents
- /api/stats     - Connection, liveness and order history statistics
- /updateorders  - Order submission (multipart: image, reason, password)
- /maps/{file}   - Stored order images (CORS open)
- /              - Static front page, if a static directory is configured
"""

import asyncio
import hmac
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from ..models import SEED_ORDER_FILE, Order, now_ms
from ..protocol import MapMessage, encode
from .broadcaster import OrderBroadcaster
from .handler import CommandHandler
from .registry import ConnectionRegistry, LivenessMonitor
from .storage import HistoryStore, ensure_seed_image
from .validator import validate_order

logger = logging.getLogger(__name__)

INVALID_PASSWORD = "Invalid password!"
NOT_A_PNG = "File has to be a PNG!"


def create_app(
    data_path: str = "data/data.json",
    maps_dir: str = "data/maps",
    static_dir: str | None = None,
    password: str | None = None,
    registry: ConnectionRegistry | None = None,
) -> FastAPI:
    """
    Create FastAPI application.

    Args:
        data_path: Path to the JSON order history
        maps_dir: Directory holding order images
        static_dir: Optional directory served at /
        password: Shared secret for order submission; None disables it
        registry: Connection registry (injectable for tests)

    Returns:
        FastAPI application instance
    """
    start_time = datetime.now(timezone.utc)

    maps_path = Path(maps_dir)
    maps_path.mkdir(parents=True, exist_ok=True)

    store = HistoryStore(data_path)
    store.load()
    ensure_seed_image(maps_path / SEED_ORDER_FILE)
    if not (maps_path / store.current().file).exists():
        logger.warning(f"Current order image {store.current().file} missing from {maps_path}")

    registry = registry or ConnectionRegistry()
    broadcaster = OrderBroadcaster(registry)
    liveness = LivenessMonitor(registry)
    handler = CommandHandler(registry, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        broadcaster.start()
        liveness.start()
        logger.info(f"Command server ready, current map: {store.current().file}")

        yield

        broadcaster.stop()
        await liveness.stop()
        logger.info("Command server stopped")

    app = FastAPI(
        title="placebot command server",
        description="Order distribution and agent liveness for collaborative canvas painting",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.registry = registry
    app.state.broadcaster = broadcaster

    @app.middleware("http")
    async def open_maps_cors(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/maps"):
            response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": "placebot-server",
            "version": "1.0.0",
            "uptime_seconds": (datetime.now(timezone.utc) - start_time).total_seconds(),
            "connections": registry.raw_count,
            "broadcaster": broadcaster.get_stats(),
        }

    @app.get("/api/stats")
    async def get_stats():
        snapshot = registry.snapshot
        history = store.snapshot()
        return {
            "rawConnectionCount": registry.raw_count,
            "connectionCount": snapshot.connection_count,
            "currentOrder": history.current_map,
            "history": [order.model_dump() for order in history.map_history],
            "brandUsage": snapshot.brand_usage,
            "date": now_ms(),
        }

    @app.post("/updateorders")
    async def update_orders(
        image: UploadFile | None = File(default=None),
        reason: str | None = Form(default=None),
        password_field: str | None = Form(default=None, alias="password"),
    ):
        """Validate, store, commit and broadcast a new order."""
        if not image or not reason or not password_field or not _password_ok(password_field, password):
            return PlainTextResponse(INVALID_PASSWORD, status_code=403)

        if image.content_type != "image/png":
            return PlainTextResponse(NOT_A_PNG, status_code=400)

        data = await image.read()
        rejection = await asyncio.to_thread(validate_order, data)
        if rejection is not None:
            logger.info(f"Order rejected: {rejection.reason}")
            return PlainTextResponse(rejection.reason, status_code=400)

        file = _unique_map_name(maps_path)
        target = maps_path / file
        await asyncio.to_thread(target.write_bytes, data)

        try:
            store.commit(Order(file=file, reason=reason, date=now_ms()))
        except Exception:
            target.unlink(missing_ok=True)
            logger.exception("Order commit failed")
            return PlainTextResponse("Failed to save order!", status_code=500)

        broadcaster.broadcast(MapMessage(data=file, reason=reason))
        return RedirectResponse("/", status_code=303)

    @app.websocket("/api/ws")
    async def command_socket(websocket: WebSocket):
        """Command protocol. Replies go only to the sending agent."""
        await websocket.accept()
        conn = registry.add(websocket)

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                # Binary frames carry the same JSON as text frames
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                reply = handler.handle(conn.id, raw)
                if reply is not None:
                    await websocket.send_text(encode(reply))
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"WebSocket error on client {conn.id}: {e}")
        finally:
            registry.remove(conn.id)

    app.mount("/maps", StaticFiles(directory=str(maps_path)), name="maps")

    # Mount static files LAST (catch-all path matching)
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def _password_ok(given: str, expected: str | None) -> bool:
    if not expected:
        return False
    return hmac.compare_digest(given.encode(), expected.encode())


def _unique_map_name(maps_path: Path) -> str:
    """Timestamp-derived image name not yet present in the maps directory."""
    stamp = now_ms()
    while (maps_path / f"{stamp}.png").exists():
        stamp += 1
    return f"{stamp}.png"
