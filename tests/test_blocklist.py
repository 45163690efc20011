"""Tests for the hot-reloaded blocklist."""

from __future__ import annotations

import asyncio
import json

import pytest

from gatehouse.core.exceptions import MalformedBlocklistFile
from gatehouse.security.blocklist import (
    BlocklistStore,
    normalize_entries,
    normalize_entry,
    parse_blocklist,
)


def write_blocklist(path, entries) -> None:
    path.write_text(json.dumps(entries), encoding="utf-8")


class TestNormalization:
    """Tests for entry normalization."""

    def test_trailing_slash_and_case(self):
        assert normalize_entry("Evil.Example/") == "evil.example"
        assert normalize_entry("evil.example") == "evil.example"

    def test_only_one_slash_stripped(self):
        assert normalize_entry("a.example//") == "a.example/"

    def test_empty_entries_dropped(self):
        """An empty entry would match every request, so it is discarded."""
        assert normalize_entries(["", "/", "x.example"]) == ("x.example",)


class TestParseBlocklist:
    """Tests for parse_blocklist."""

    def test_valid_array(self):
        assert parse_blocklist('["A.example/", "b.example"]') == ("a.example", "b.example")

    def test_invalid_json(self):
        with pytest.raises(MalformedBlocklistFile):
            parse_blocklist("[not json")

    def test_not_an_array(self):
        with pytest.raises(MalformedBlocklistFile, match="JSON array"):
            parse_blocklist('{"a": 1}')

    def test_non_string_entry(self):
        with pytest.raises(MalformedBlocklistFile, match="entry 1"):
            parse_blocklist('["a.example", 5]')


class TestMatching:
    """Tests for substring matching."""

    def test_substring_case_insensitive(self):
        store = BlocklistStore.from_entries(["Bad.Example/"])
        assert store.is_blocked("https://WWW.BAD.EXAMPLE/path") is True
        assert store.match("https://www.bad.example/path") == "bad.example"

    def test_not_blocked(self):
        store = BlocklistStore.from_entries(["bad.example"])
        assert store.is_blocked("https://good.example/") is False
        assert store.match("https://good.example/") is None

    def test_empty_store_blocks_nothing(self):
        store = BlocklistStore.from_entries([])
        assert len(store) == 0
        assert store.is_blocked("anything") is False

    def test_combined_candidate(self):
        """Host and referer are part of the candidate string."""
        store = BlocklistStore.from_entries(["tracker.example"])
        assert store.is_blocked("/page localhost:8080 https://tracker.example/x") is True


class TestLoading:
    """Tests for loading and reloading the backing file."""

    def test_load(self, tmp_path):
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example", "b.example/"])
        store = BlocklistStore(path)

        assert store.load() == 2
        assert store.entries == ("a.example", "b.example")

    def test_missing_file_is_empty(self, tmp_path):
        store = BlocklistStore(tmp_path / "missing.json")
        assert store.load() == 0
        assert len(store) == 0

    def test_missing_file_not_ok(self, tmp_path):
        store = BlocklistStore(tmp_path / "missing.json")
        with pytest.raises(MalformedBlocklistFile):
            store.load(missing_ok=False)

    def test_malformed_file_on_load_raises(self, tmp_path):
        path = tmp_path / "blocklist.json"
        path.write_text("{broken", encoding="utf-8")
        with pytest.raises(MalformedBlocklistFile):
            BlocklistStore(path).load()

    def test_reload_picks_up_changes(self, tmp_path):
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example"])
        store = BlocklistStore(path)
        store.load()

        write_blocklist(path, ["a.example", "new.example"])
        assert store.check_for_changes() is True
        assert store.is_blocked("new.example") is True

    def test_unchanged_file_not_reloaded(self, tmp_path):
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example"])
        store = BlocklistStore(path)
        store.load()

        assert store.check_for_changes() is False

    def test_malformed_reload_keeps_previous(self, tmp_path):
        """A bad write leaves the previous blocklist enforced."""
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example"])
        store = BlocklistStore(path)
        store.load()

        path.write_text('["a.example", "b.exa', encoding="utf-8")
        assert store.reload() is False
        assert store.entries == ("a.example",)

        # The same bad file is not parsed again on the next poll.
        assert store.check_for_changes() is False

    def test_deleted_file_keeps_previous(self, tmp_path):
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example"])
        store = BlocklistStore(path)
        store.load()

        path.unlink()
        assert store.reload() is False
        assert store.is_blocked("a.example") is True

    def test_replace(self):
        store = BlocklistStore.from_entries(["a.example"])
        store.replace(["B.example/"])
        assert store.entries == ("b.example",)


class TestWatcher:
    """Tests for the background watcher task."""

    @pytest.mark.asyncio
    async def test_watcher_applies_new_file(self, tmp_path):
        path = tmp_path / "blocklist.json"
        write_blocklist(path, ["a.example"])
        store = BlocklistStore(path, poll_interval=0.05)
        store.load()

        await store.start()
        try:
            write_blocklist(path, ["a.example", "watched.example"])
            for _ in range(100):
                if store.is_blocked("watched.example"):
                    break
                await asyncio.sleep(0.05)
            assert store.is_blocked("watched.example") is True
        finally:
            await store.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, tmp_path):
        store = BlocklistStore(tmp_path / "blocklist.json")
        await store.stop()
