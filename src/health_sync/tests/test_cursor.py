"""Tests for change token persistence."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from src.health_sync.sync.cursor import (
    InMemoryChangeTokenStore,
    JsonFileChangeTokenStore,
    SyncCursor,
)


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_save_load_clear(self) -> None:
        store = InMemoryChangeTokenStore()
        assert await store.load("user-1") is None

        saved = await store.save("user-1", "42")
        assert saved.updated_at is not None
        assert (await store.load("user-1")).change_token == "42"

        await store.clear("user-1")
        assert await store.load("user-1") is None


class TestJsonFileStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "state" / "tokens.json"
        await JsonFileChangeTokenStore(path).save("user-1", "abc")
        await JsonFileChangeTokenStore(path).save("user-2", "def")

        reopened = JsonFileChangeTokenStore(path)
        assert (await reopened.load("user-1")).change_token == "abc"
        assert (await reopened.load("user-2")).change_token == "def"
        assert not path.with_suffix(".json.tmp").exists()

    @pytest.mark.asyncio
    async def test_missing_file_means_no_cursor(self, tmp_path: Path) -> None:
        assert await JsonFileChangeTokenStore(tmp_path / "none.json").load("user-1") is None

    @pytest.mark.asyncio
    async def test_clear_removes_only_that_user(self, tmp_path: Path) -> None:
        store = JsonFileChangeTokenStore(tmp_path / "tokens.json")
        await store.save("user-1", "1")
        await store.save("user-2", "2")

        await store.clear("user-1")

        assert await store.load("user-1") is None
        assert (await store.load("user-2")).change_token == "2"

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "tokens.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError, match="Corrupt change token file"):
            await JsonFileChangeTokenStore(path).load("user-1")

    @pytest.mark.asyncio
    async def test_file_io_runs_in_worker_thread(self, tmp_path: Path) -> None:
        store = JsonFileChangeTokenStore(tmp_path / "tokens.json")

        with patch.object(asyncio, "to_thread", wraps=asyncio.to_thread) as to_thread:
            await store.save("user-1", "7")
            cursor = await store.load("user-1")

        assert cursor.change_token == "7"
        offloaded = [c.args[0].__name__ for c in to_thread.call_args_list]
        assert offloaded == ["_read_all", "_write_all", "_read_all"]


class TestSyncCursor:
    def test_json_round_trip(self) -> None:
        cursor = SyncCursor.from_json(
            {"change_token": "7", "updated_at": "2026-02-23T08:00:00+00:00"}
        )
        assert cursor.change_token == "7"
        assert cursor.updated_at.hour == 8
        assert SyncCursor.from_json(cursor.to_json()) == cursor

    def test_bad_timestamp_ignored(self) -> None:
        cursor = SyncCursor.from_json({"change_token": "7", "updated_at": "yesterday"})
        assert cursor.updated_at is None
