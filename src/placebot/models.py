"""
Pydantic models for orders and their persisted history.

Field names follow the persisted JSON schema:
    {"currentMap": "<file>", "mapHistory": [{"file", "reason", "date"}, ...]}
"""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

SEED_ORDER_FILE = "blank.png"
SEED_ORDER_REASON = "First orders"
SEED_ORDER_DATE = 1648890843309


def now_ms() -> int:
    """Wall clock in milliseconds since the epoch."""
    return int(time.time() * 1000)


class Order(BaseModel):
    """A committed painting target. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    file: str = Field(description="Stored image name under the maps directory")
    reason: str = Field(description="Free-text reason given by the submitter")
    date: int = Field(description="Unix ms when the order was committed")

    @classmethod
    def seed(cls) -> Order:
        return cls(file=SEED_ORDER_FILE, reason=SEED_ORDER_REASON, date=SEED_ORDER_DATE)


class OrderHistory(BaseModel):
    """Persisted order log plus pointer to the current order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    current_map: str = Field(alias="currentMap")
    map_history: tuple[Order, ...] = Field(alias="mapHistory")

    @classmethod
    def seeded(cls) -> OrderHistory:
        seed = Order.seed()
        return cls(current_map=seed.file, map_history=(seed,))

    def append(self, order: Order) -> OrderHistory:
        """Return a new history with `order` appended and made current."""
        return OrderHistory(
            current_map=order.file,
            map_history=(*self.map_history, order),
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
