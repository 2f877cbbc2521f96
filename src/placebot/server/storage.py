"""
HistoryStore - append-only order log persisted as one JSON document.

Schema:
    {"currentMap": "<file>", "mapHistory": [{"file", "reason", "date"}, ...]}

The whole history is an immutable OrderHistory value. A commit writes the
new value to disk (temp file + rename) and only then swaps the in-memory
reference, so readers see either the old or the new history, never a mix.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path

from PIL import Image
from pydantic import ValidationError

from ..models import Order, OrderHistory
from ..palette import CANVAS_SIZE

logger = logging.getLogger(__name__)


def ensure_seed_image(path: Path) -> None:
    """Create a fully transparent canvas-sized image if `path` is missing.

    Transparent pixels carry no painting intent, so agents idle on it.
    """
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGBA", (CANVAS_SIZE, CANVAS_SIZE), (0, 0, 0, 0)).save(path, format="PNG")
    logger.info(f"Created blank order image {path}")


class HistoryStore:
    """Durable order history with a current-order pointer."""

    def __init__(self, data_path: str | Path):
        """
        Initialize store.

        Args:
            data_path: Path to the JSON data file
        """
        self._path = Path(data_path)
        self._lock = threading.Lock()
        self._state = OrderHistory.seeded()

        # Ensure parent directory exists
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> OrderHistory:
        """Load persisted history, or keep the seed entry if none exists."""
        if not self._path.exists():
            logger.info(f"No history at {self._path}, starting from seed order")
            return self._state

        try:
            state = OrderHistory.model_validate_json(self._path.read_text())
        except (OSError, ValidationError) as e:
            raise RuntimeError(f"Corrupt history file {self._path}: {e}") from e

        if not state.map_history:
            raise RuntimeError(f"History file {self._path} has no orders")

        with self._lock:
            self._state = state
        logger.info(
            f"Loaded {len(state.map_history)} orders, current map: {state.current_map}"
        )
        return state

    def commit(self, order: Order) -> None:
        """Append an order and make it current.

        The file is written before the in-memory pointer moves, so a failed
        write leaves the previous order authoritative.
        """
        with self._lock:
            new_state = self._state.append(order)
            self._write(new_state)
            self._state = new_state
        logger.info(f"Committed order {order.file} ({order.reason!r})")

    def current(self) -> Order:
        """The most recently committed order."""
        return self._state.map_history[-1]

    def history(self) -> list[Order]:
        """All orders in commit order."""
        return list(self._state.map_history)

    def snapshot(self) -> OrderHistory:
        return self._state

    def _write(self, state: OrderHistory) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=".history-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(state.to_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
