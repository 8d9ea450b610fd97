from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from schemas.entities import FavoriteEntry, HistoryEntry

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 1000


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class HistoryStore(Protocol):
    def get_history(self) -> list[HistoryEntry]:
        """Return past executions, newest first."""
        ...

    def add(self, entry: HistoryEntry) -> None: ...


@runtime_checkable
class FavoriteStore(Protocol):
    def get_favorites(self) -> list[FavoriteEntry]: ...


@runtime_checkable
class CommandTransport(Protocol):
    """Whatever actually runs a vetted command on the remote host."""

    def is_connected(self, session_id: str) -> bool: ...

    async def execute(self, command: str, session_id: str) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryHistoryStore:
    """Bounded execution history, newest entry first."""

    def __init__(self, entries: list[HistoryEntry] | None = None, max_entries: int = MAX_HISTORY_ENTRIES):
        self._max_entries = max_entries
        self._lock = threading.Lock()
        ordered = sorted(entries or [], key=lambda e: e.timestamp, reverse=True)
        self._entries: list[HistoryEntry] = ordered[:max_entries]

    def get_history(self) -> list[HistoryEntry]:
        with self._lock:
            return list(self._entries)

    def add(self, entry: HistoryEntry) -> None:
        if not entry.id:
            entry.id = uuid.uuid4().hex
        with self._lock:
            self._entries.insert(0, entry)
            del self._entries[self._max_entries :]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryFavoriteStore:
    """Saved commands keyed by id."""

    def __init__(self, favorites: list[FavoriteEntry] | None = None):
        self._lock = threading.Lock()
        self._favorites: dict[str, FavoriteEntry] = {}
        for fav in favorites or []:
            self.save(fav)

    def get_favorites(self) -> list[FavoriteEntry]:
        with self._lock:
            return list(self._favorites.values())

    def save(self, favorite: FavoriteEntry) -> FavoriteEntry:
        if not favorite.id:
            favorite.id = uuid.uuid4().hex
        with self._lock:
            self._favorites[favorite.id] = favorite
        return favorite

    def remove(self, favorite_id: str) -> None:
        with self._lock:
            self._favorites.pop(favorite_id, None)

    def mark_used(self, favorite_id: str) -> None:
        with self._lock:
            fav = self._favorites.get(favorite_id)
            if fav is None:
                return
            fav.usage_count += 1
            fav.updated_at = datetime.now(timezone.utc)


class RecordingTransport:
    """Transport that records commands instead of running them.

    Used by the CLI dry-run path and by tests.
    """

    def __init__(self, connected_sessions: set[str] | None = None):
        # None means every session counts as connected.
        self._connected = connected_sessions
        self.executed: list[tuple[str, str]] = []

    def is_connected(self, session_id: str) -> bool:
        return self._connected is None or session_id in self._connected

    async def execute(self, command: str, session_id: str) -> None:
        logger.info("Dry-run execution for session %s", session_id)
        self.executed.append((command, session_id))
