"""Tests for cooldown parsing and the placement scheduler."""

import random
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from placebot.agent.canvas import TileFetchError
from placebot.agent.order import CurrentOrder
from placebot.agent.placement import PlacementError
from placebot.agent.scheduler import (
    ASSEMBLY_RETRY_MS,
    FALLBACK_DELAY_MS,
    IDLE_DELAY_MS,
    ORDER_WAIT_MS,
    CooldownParseError,
    PlacementScheduler,
    cooldown_delay_ms,
    parse_cooldown,
)
from placebot.palette import to_index

from .conftest import make_raster

NOW = 1_648_900_000_000


def success(ts):
    return {"data": {"act": {"data": [{"data": {"nextAvailablePixelTimestamp": ts}}]}}}


def rate_limited(ts):
    return {"errors": [{"message": "Ratelimited", "extensions": {"nextAvailablePixelTs": ts}}]}


class TestCooldownParsing:
    """Test both known response shapes."""

    def test_success_shape(self):
        cooldown = parse_cooldown(success(NOW + 300_000))
        assert cooldown.next_allowed_at == NOW + 303_000
        assert not cooldown.rate_limited

    def test_rate_limited_shape(self):
        cooldown = parse_cooldown(rate_limited(NOW + 60_000))
        assert cooldown.next_allowed_at == NOW + 63_000
        assert cooldown.rate_limited

    def test_delay_adds_margin(self):
        assert cooldown_delay_ms(success(NOW + 300_000), NOW) == 303_000

    def test_delay_never_negative(self):
        assert cooldown_delay_ms(success(NOW - 60_000), NOW) == 0

    def test_string_timestamp(self):
        assert cooldown_delay_ms(rate_limited(str(NOW)), NOW) == 3000

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            None,
            {"data": {"act": {"data": []}}},
            {"errors": [{"message": "no extensions"}]},
            success(None),
            success(True),
            success("nan"),
            success("inf"),
            rate_limited(float("nan")),
            rate_limited(float("inf")),
            rate_limited("1e400"),
            rate_limited(10**400),
        ],
    )
    def test_unparseable_falls_back(self, payload):
        with pytest.raises(CooldownParseError):
            parse_cooldown(payload)
        assert cooldown_delay_ms(payload, NOW) == FALLBACK_DELAY_MS


class FakeAssembler:
    def __init__(self, canvas=None, error=None):
        self.canvas = canvas
        self.error = error

    async def assemble(self):
        if self.error:
            raise self.error
        return self.canvas.copy()


def order_source(raster):
    return SimpleNamespace(order=CurrentOrder.from_raster("order.png", "test", raster))


def make_scheduler(orders, assembler, response=None, reporter=None):
    placer = AsyncMock()
    placer.place.return_value = response if response is not None else success(NOW + 300_000)
    scheduler = PlacementScheduler(
        orders,
        assembler,
        placer,
        reporter=reporter,
        clock=lambda: NOW,
        rng=random.Random(0),
    )
    return scheduler, placer


class TestPlacementScheduler:
    """Test one placement attempt at a time."""

    @pytest.mark.asyncio
    async def test_waits_for_order(self):
        scheduler, placer = make_scheduler(SimpleNamespace(order=None), FakeAssembler())
        assert await scheduler.attempt() == ORDER_WAIT_MS
        placer.place.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_assembly_failure_retries_later(self):
        scheduler, placer = make_scheduler(
            order_source(make_raster()), FakeAssembler(error=TileFetchError("down"))
        )
        assert await scheduler.attempt() == ASSEMBLY_RETRY_MS
        placer.place.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idle_when_complete(self):
        raster = make_raster()
        scheduler, placer = make_scheduler(order_source(raster), FakeAssembler(raster))
        assert await scheduler.attempt() == IDLE_DELAY_MS
        placer.place.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_places_the_pending_pixel(self):
        order = make_raster()
        canvas = order.copy()
        canvas[1500, 20] = (0, 0, 0, 255)
        reporter = AsyncMock()

        scheduler, placer = make_scheduler(
            order_source(order), FakeAssembler(canvas), reporter=reporter
        )
        delay = await scheduler.attempt()

        assert delay == 303_000
        placer.place.assert_awaited_once_with(20, 1500, 31)
        reporter.send_place_pixel.assert_awaited_once_with(20, 1500, 31)
        assert scheduler.get_stats() == {"attempts": 1, "last_delay_ms": 303_000}

    @pytest.mark.asyncio
    async def test_rate_limited_response(self):
        order = make_raster()
        canvas = make_raster(color=(0, 0, 0, 255))
        scheduler, _ = make_scheduler(
            order_source(order), FakeAssembler(canvas), response=rate_limited(NOW + 1000)
        )
        assert await scheduler.attempt() == 4000
        assert scheduler.get_stats() == {"attempts": 1, "last_delay_ms": 4000}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [{"unexpected": True}, rate_limited(float("nan")), success(float("inf"))],
    )
    async def test_unparseable_response_falls_back(self, response):
        order = make_raster()
        canvas = make_raster(color=(0, 0, 0, 255))
        scheduler, _ = make_scheduler(
            order_source(order), FakeAssembler(canvas), response=response
        )
        assert await scheduler.attempt() == FALLBACK_DELAY_MS

    @pytest.mark.asyncio
    async def test_placement_error_falls_back(self):
        order = make_raster()
        canvas = make_raster(color=(0, 0, 0, 255))
        scheduler, placer = make_scheduler(order_source(order), FakeAssembler(canvas))
        placer.place.side_effect = PlacementError("connection reset")
        assert await scheduler.attempt() == FALLBACK_DELAY_MS

    @pytest.mark.asyncio
    async def test_off_palette_order_pixel_skipped(self):
        order = make_raster(color=(1, 2, 3, 255))
        canvas = make_raster()
        scheduler, placer = make_scheduler(order_source(order), FakeAssembler(canvas))
        assert await scheduler.attempt() == FALLBACK_DELAY_MS
        placer.place.assert_not_awaited()

    def test_choose_stays_within_pending(self):
        import numpy as np

        scheduler, _ = make_scheduler(SimpleNamespace(order=None), FakeAssembler())
        work = np.array([to_index(1, 1), to_index(2, 2), to_index(3, 3)])
        for _ in range(20):
            assert scheduler.choose(work) in work.tolist()
