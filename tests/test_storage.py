"""Tests for the JSON order history store."""

import json
import threading
from unittest.mock import patch

import pytest

from placebot.models import SEED_ORDER_FILE, Order
from placebot.server.storage import HistoryStore, ensure_seed_image


class TestHistoryStore:
    """Test HistoryStore commit and read semantics."""

    @pytest.fixture
    def store(self, data_dir):
        store = HistoryStore(data_dir / "data.json")
        store.load()
        return store

    def test_seeded_when_no_file(self, store):
        assert store.current().file == SEED_ORDER_FILE
        assert store.current().reason == "First orders"
        assert len(store.history()) == 1

    def test_commit_updates_current_and_history(self, store):
        order = Order(file="1700000000000.png", reason="test", date=1700000000000)
        store.commit(order)

        assert store.current() == order
        assert store.history()[-1] == order
        assert len(store.history()) == 2

    def test_history_grows_by_one_per_commit(self, store):
        for i in range(3):
            store.commit(Order(file=f"{i}.png", reason=f"r{i}", date=i))
        assert [o.file for o in store.history()] == [SEED_ORDER_FILE, "0.png", "1.png", "2.png"]

    def test_persisted_schema(self, store):
        store.commit(Order(file="a.png", reason="why", date=5))
        data = json.loads(store.path.read_text())

        assert data["currentMap"] == "a.png"
        assert data["mapHistory"][-1] == {"file": "a.png", "reason": "why", "date": 5}

    def test_survives_restart(self, store):
        store.commit(Order(file="a.png", reason="why", date=5))

        reloaded = HistoryStore(store.path)
        reloaded.load()
        assert reloaded.current().file == "a.png"
        assert reloaded.history() == store.history()

    def test_loads_existing_file(self, data_dir):
        path = data_dir / "data.json"
        path.write_text(
            json.dumps(
                {
                    "currentMap": "b.png",
                    "mapHistory": [
                        {"file": "blank.png", "reason": "First orders", "date": 1},
                        {"file": "b.png", "reason": "second", "date": 2},
                    ],
                }
            )
        )
        store = HistoryStore(path)
        store.load()
        assert store.current().file == "b.png"
        assert store.snapshot().current_map == "b.png"

    def test_corrupt_file_raises(self, data_dir):
        path = data_dir / "data.json"
        path.write_text("{broken")
        with pytest.raises(RuntimeError):
            HistoryStore(path).load()

    def test_failed_write_keeps_previous_order(self, store):
        before = store.current()
        with patch("placebot.server.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.commit(Order(file="lost.png", reason="x", date=1))

        assert store.current() == before
        assert len(store.history()) == 1
        assert not list(store.path.parent.glob(".history-*"))

    def test_readers_never_see_torn_state(self, store):
        """current() is always the last element of history() while commits run."""
        errors = []
        stop = threading.Event()

        def reader():
            while not stop.is_set():
                snapshot = store.snapshot()
                if snapshot.current_map != snapshot.map_history[-1].file:
                    errors.append(snapshot)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for i in range(50):
                store.commit(Order(file=f"{i}.png", reason="r", date=i))
        finally:
            stop.set()
            thread.join()

        assert errors == []


class TestSeedImage:
    """Test blank seed image creation."""

    def test_creates_transparent_canvas(self, tmp_path):
        from PIL import Image

        path = tmp_path / "maps" / "blank.png"
        ensure_seed_image(path)

        with Image.open(path) as img:
            assert img.size == (2000, 2000)
            assert img.convert("RGBA").getpixel((0, 0)) == (0, 0, 0, 0)

    def test_keeps_existing_file(self, tmp_path):
        path = tmp_path / "blank.png"
        path.write_bytes(b"existing")
        ensure_seed_image(path)
        assert path.read_bytes() == b"existing"
