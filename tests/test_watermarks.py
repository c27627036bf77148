"""Tests for the incremental-run watermark store."""

from __future__ import annotations

import json
from pathlib import Path

from asset_pipeline.watermarks import WatermarkStore


class TestWatermarkStore:
    def test_in_memory_store(self):
        store = WatermarkStore()
        assert store.get("images") is None
        store.record("images", 100.0)
        assert store.get("images") == 100.0

    def test_persisted_as_json(self, tmp_path: Path):
        path = tmp_path / "state" / "watermarks.json"
        WatermarkStore(path).record("images", 1700000000.5)

        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["tasks"]["images"]["started_at"] == 1700000000.5
        assert data["tasks"]["images"]["started_at_iso"].startswith("2023-11-14T")

        assert WatermarkStore(path).get("images") == 1700000000.5

    def test_clear_one_and_all(self, tmp_path: Path):
        path = tmp_path / "watermarks.json"
        store = WatermarkStore(path)
        store.record("images", 1.0)
        store.record("sprites", 2.0)

        store.clear("images")
        assert WatermarkStore(path).get("images") is None
        assert WatermarkStore(path).get("sprites") == 2.0

        store.clear()
        assert WatermarkStore(path).to_dict()["tasks"] == {}

    def test_unreadable_file_starts_empty(self, tmp_path: Path):
        path = tmp_path / "watermarks.json"
        path.write_text("{not json")
        assert WatermarkStore(path).get("images") is None

    def test_bad_entries_are_ignored(self, tmp_path: Path):
        path = tmp_path / "watermarks.json"
        path.write_text(json.dumps({"tasks": {"images": {"started_at": "yesterday"}, "sprites": {"started_at": 5}}}))
        store = WatermarkStore(path)
        assert store.get("images") is None
        assert store.get("sprites") == 5.0
