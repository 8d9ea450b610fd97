"""Tests for cmdguard.stores: in-memory collaborators."""

from __future__ import annotations

from datetime import timedelta

import pytest

from cmdguard.stores import (
    CommandTransport,
    FavoriteStore,
    HistoryStore,
    InMemoryFavoriteStore,
    InMemoryHistoryStore,
    RecordingTransport,
)
from schemas.entities import FavoriteEntry, HistoryEntry


class TestInMemoryHistoryStore:

    def test_newest_first(self, now):
        store = InMemoryHistoryStore(
            [
                HistoryEntry(user_input="", command="old", timestamp=now - timedelta(days=1)),
                HistoryEntry(user_input="", command="new", timestamp=now),
            ]
        )
        assert [e.command for e in store.get_history()] == ["new", "old"]

    def test_add_prepends_and_assigns_id(self, now):
        store = InMemoryHistoryStore()
        entry = HistoryEntry(user_input="list", command="ls", timestamp=now)
        store.add(entry)
        assert store.get_history()[0] is entry
        assert entry.id

    def test_capped(self, now):
        store = InMemoryHistoryStore(max_entries=3)
        for i in range(5):
            store.add(HistoryEntry(user_input="", command=f"cmd{i}", timestamp=now))
        assert [e.command for e in store.get_history()] == ["cmd4", "cmd3", "cmd2"]
        assert len(store) == 3

    def test_returns_copy(self, now):
        store = InMemoryHistoryStore([HistoryEntry(user_input="", command="ls", timestamp=now)])
        store.get_history().clear()
        assert len(store) == 1

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryHistoryStore(), HistoryStore)


class TestInMemoryFavoriteStore:

    def test_save_and_remove(self):
        store = InMemoryFavoriteStore()
        fav = store.save(FavoriteEntry(name="disk", command="df -h"))
        assert fav.id
        assert store.get_favorites() == [fav]
        store.remove(fav.id)
        assert store.get_favorites() == []

    def test_remove_missing_is_noop(self):
        InMemoryFavoriteStore().remove("nope")

    def test_mark_used(self):
        store = InMemoryFavoriteStore([FavoriteEntry(name="disk", command="df -h", id="f1")])
        store.mark_used("f1")
        fav = store.get_favorites()[0]
        assert fav.usage_count == 1
        assert fav.updated_at is not None

    def test_satisfies_protocol(self):
        assert isinstance(InMemoryFavoriteStore(), FavoriteStore)


class TestRecordingTransport:

    @pytest.mark.asyncio
    async def test_records_commands(self):
        transport = RecordingTransport()
        await transport.execute("ls", "s1")
        assert transport.executed == [("ls", "s1")]

    def test_connected_sessions(self):
        transport = RecordingTransport(connected_sessions={"s1"})
        assert transport.is_connected("s1") is True
        assert transport.is_connected("s2") is False

    def test_satisfies_protocol(self):
        assert isinstance(RecordingTransport(), CommandTransport)
