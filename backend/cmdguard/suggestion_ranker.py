from __future__ import annotations

import logging
import re
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

from cmdguard.stores import FavoriteStore, HistoryStore
from schemas.entities import CommandContext, Suggestion

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 5
CACHE_TTL_SECONDS = 60.0
RESPONSE_BUDGET_MS = 500.0

# ---------------------------------------------------------------------------
# Scoring tables
# ---------------------------------------------------------------------------

SOURCE_WEIGHTS: dict[str, int] = {
    "favorite": 100,
    "context": 50,
    "history": 25,
}

EXACT = "exact"
PREFIX = "prefix"
SUBSTRING = "substring"
SUBSEQUENCE = "subsequence"

MATCH_BONUS: dict[str, int] = {
    EXACT: 50,
    PREFIX: 30,
    SUBSTRING: 10,
    SUBSEQUENCE: 0,
}
_MATCH_ORDER = (EXACT, PREFIX, SUBSTRING, SUBSEQUENCE)

USAGE_POINTS_PER_USE = 2
USAGE_BONUS_CAP = 50

# (max age, bonus); anything older gets nothing
RECENCY_BUCKETS: tuple[tuple[timedelta, int], ...] = (
    (timedelta(days=1), 40),
    (timedelta(days=7), 20),
    (timedelta(days=30), 10),
)

_CD_RE = re.compile(r"\bcd\s+(.+)")
_PATH_ARG_RE = re.compile(r"([/~]\S+)")


# ---------------------------------------------------------------------------
# Matching helpers
# ---------------------------------------------------------------------------


def match_quality(text: str | None, query: str | None) -> str | None:
    """Best fuzzy-match tier of *query* against *text*, or None for no match."""
    if not text or not query:
        return None
    haystack = text.lower()
    needle = query.lower()

    if haystack == needle:
        return EXACT
    if haystack.startswith(needle):
        return PREFIX
    if needle in haystack:
        return SUBSTRING

    pos = 0
    for char in needle:
        pos = haystack.find(char, pos)
        if pos == -1:
            return None
        pos += 1
    return SUBSEQUENCE


def best_match(query: str, *texts: str | None) -> str | None:
    tiers = [q for q in (match_quality(t, query) for t in texts) if q is not None]
    if not tiers:
        return None
    return min(tiers, key=_MATCH_ORDER.index)


def extract_directory(command: str) -> str | None:
    """Guess the directory a command operated on: a ``cd`` target or a path argument."""
    cd = _CD_RE.search(command)
    if cd:
        return cd.group(1).strip()

    path = _PATH_ARG_RE.search(command)
    if path:
        value = path.group(1)
        last_slash = value.rfind("/")
        return value[:last_slash] if last_slash > 0 else value
    return None


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Usage aggregate
# ---------------------------------------------------------------------------


@dataclass
class UsageRecord:
    """How often and where a command has been run."""

    command: str
    count: int = 0
    last_used: datetime | None = None
    directories: set[str] = field(default_factory=set)

    def touch(self, when: datetime, directory: str | None = None) -> None:
        self.count += 1
        when = _as_utc(when)
        if self.last_used is None or when > self.last_used:
            self.last_used = when
        if directory:
            self.directories.add(directory)


@dataclass
class _CacheEntry:
    expires_at: float
    suggestions: list[Suggestion]


# ---------------------------------------------------------------------------
# Ranker
# ---------------------------------------------------------------------------


class SuggestionRanker:
    """Merges favorites, history and directory context into a short ranked list.

    Only ``suggest`` and ``record_usage`` touch shared state (the usage map
    and the result cache); both go through ``self._lock``. Collaborator
    stores are read outside the lock, and a result computed while
    ``record_usage`` ran concurrently is returned but not cached.
    """

    def __init__(
        self,
        history_store: HistoryStore | None = None,
        favorite_store: FavoriteStore | None = None,
        limit: int = MAX_SUGGESTIONS,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
        budget_ms: float = RESPONSE_BUDGET_MS,
        now: Callable[[], datetime] = _utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._history_store = history_store
        self._favorite_store = favorite_store
        self._limit = limit
        self._cache_ttl = cache_ttl_seconds
        self._budget_ms = budget_ms
        self._now = now
        self._monotonic = monotonic

        self._lock = threading.RLock()
        self._usage: dict[str, UsageRecord] = {}
        self._cache: dict[tuple[str, str, str], _CacheEntry] = {}
        self._generation = 0
        self.slow_generations = 0

        self.load_usage()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def suggest(self, partial_input: str, context: CommandContext) -> list[Suggestion]:
        if not partial_input or not partial_input.strip():
            return []

        key = (partial_input, context.current_directory, context.device.os)
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None:
                if self._monotonic() < entry.expires_at:
                    logger.debug("Suggestion cache hit")
                    return [replace(s) for s in entry.suggestions]
                del self._cache[key]
            generation = self._generation
            usage = {cmd: self._copy_record(rec) for cmd, rec in self._usage.items()}

        started = time.perf_counter()
        candidates = self._collect(partial_input, context, usage)
        ranked = sorted(self._deduplicate(candidates), key=lambda s: s.score, reverse=True)[: self._limit]
        elapsed_ms = (time.perf_counter() - started) * 1000

        if elapsed_ms > self._budget_ms:
            with self._lock:
                self.slow_generations += 1
            logger.warning(
                "Suggestion generation took %.1f ms (budget %.0f ms)", elapsed_ms, self._budget_ms
            )

        with self._lock:
            if generation == self._generation:
                self._cache[key] = _CacheEntry(self._monotonic() + self._cache_ttl, [replace(s) for s in ranked])
        return ranked

    def record_usage(self, command: str, context: CommandContext) -> None:
        if not command or not command.strip():
            return
        with self._lock:
            record = self._usage.get(command)
            if record is None:
                record = self._usage[command] = UsageRecord(command=command)
            record.touch(self._now(), context.current_directory)
            self._generation += 1
            self._cache.clear()
        logger.debug("Recorded usage (count=%d)", record.count)

    def load_usage(self) -> int:
        """Rebuild the usage map from the history store. Returns the number of distinct commands."""
        usage: dict[str, UsageRecord] = {}
        for entry in self._read_history():
            if not entry.command:
                continue
            record = usage.get(entry.command)
            if record is None:
                record = usage[entry.command] = UsageRecord(command=entry.command)
            record.touch(entry.timestamp, entry.directory or extract_directory(entry.command))

        with self._lock:
            self._usage = usage
            self._generation += 1
            self._cache.clear()
        logger.info("Loaded %d command usage records", len(usage))
        return len(usage)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def usage_stats(self) -> dict:
        with self._lock:
            counts = [(cmd, rec.count) for cmd, rec in self._usage.items()]
        counts.sort(key=lambda item: item[1], reverse=True)
        return {
            "total_commands": len(counts),
            "total_usages": sum(count for _, count in counts),
            "most_used_commands": [{"command": cmd, "count": count} for cmd, count in counts[:10]],
        }

    # ------------------------------------------------------------------
    # Candidate sources
    # ------------------------------------------------------------------

    def _collect(
        self, query: str, context: CommandContext, usage: dict[str, UsageRecord]
    ) -> list[Suggestion]:
        return (
            self._from_favorites(query)
            + self._from_history(query, usage)
            + self._from_context(query, context, usage)
        )

    def _from_favorites(self, query: str) -> list[Suggestion]:
        if self._favorite_store is None:
            return []
        try:
            favorites = self._favorite_store.get_favorites()
        except Exception:
            logger.exception("Favorite store failed; skipping favorites")
            return []

        results = []
        for fav in favorites:
            # Name and description decide inclusion only.
            if best_match(query, fav.command, fav.name, fav.description) is None:
                continue
            results.append(
                self._scored(
                    command=fav.command,
                    description=fav.description or fav.name,
                    source="favorite",
                    quality=match_quality(fav.command, query),
                    usage_count=fav.usage_count,
                    last_used=_as_utc(fav.updated_at) if fav.updated_at else None,
                )
            )
        return results

    def _from_history(self, query: str, usage: dict[str, UsageRecord]) -> list[Suggestion]:
        results: dict[str, Suggestion] = {}
        for entry in self._read_history():
            if best_match(query, entry.command, entry.user_input) is None:
                continue
            record = usage.get(entry.command)
            candidate = self._scored(
                command=entry.command,
                description=entry.user_input or "From history",
                source="history",
                quality=match_quality(entry.command, query),
                usage_count=record.count if record else 1,
                last_used=_as_utc(entry.timestamp),
            )
            existing = results.get(entry.command)
            if existing is None or self._prefer(candidate, existing):
                results[entry.command] = candidate
        return list(results.values())

    def _from_context(
        self, query: str, context: CommandContext, usage: dict[str, UsageRecord]
    ) -> list[Suggestion]:
        directory = context.current_directory
        results = []
        for command, record in usage.items():
            if directory not in record.directories:
                continue
            quality = match_quality(command, query)
            if quality is None:
                continue
            results.append(
                self._scored(
                    command=command,
                    description=f"Frequently used in {directory}",
                    source="context",
                    quality=quality,
                    usage_count=record.count,
                    last_used=record.last_used,
                )
            )
        return results

    def _read_history(self):
        if self._history_store is None:
            return []
        try:
            return self._history_store.get_history()
        except Exception:
            logger.exception("History store failed; skipping history")
            return []

    # ------------------------------------------------------------------
    # Scoring and deduplication
    # ------------------------------------------------------------------

    def _scored(
        self,
        command: str,
        description: str,
        source: str,
        quality: str | None,
        usage_count: int,
        last_used: datetime | None,
    ) -> Suggestion:
        score = (
            SOURCE_WEIGHTS[source]
            + MATCH_BONUS.get(quality, 0)
            + min(usage_count * USAGE_POINTS_PER_USE, USAGE_BONUS_CAP)
            + self._recency_bonus(last_used)
        )
        return Suggestion(
            command=command,
            description=description,
            score=float(score),
            source=source,
            usage_count=usage_count,
            last_used=last_used,
        )

    def _recency_bonus(self, last_used: datetime | None) -> int:
        if last_used is None:
            return 0
        age = _as_utc(self._now()) - last_used
        for max_age, bonus in RECENCY_BUCKETS:
            if age < max_age:
                return bonus
        return 0

    @staticmethod
    def _prefer(candidate: Suggestion, existing: Suggestion) -> bool:
        """True when *candidate* should replace *existing* for the same command."""
        if candidate.usage_count != existing.usage_count:
            return candidate.usage_count > existing.usage_count
        if candidate.last_used != existing.last_used:
            if candidate.last_used is None:
                return False
            return existing.last_used is None or candidate.last_used > existing.last_used
        # Full tie: keep the stronger provenance.
        return candidate.score > existing.score

    def _deduplicate(self, suggestions: list[Suggestion]) -> list[Suggestion]:
        seen: dict[str, Suggestion] = {}
        for suggestion in suggestions:
            existing = seen.get(suggestion.command)
            if existing is None or self._prefer(suggestion, existing):
                seen[suggestion.command] = suggestion
        return list(seen.values())

    @staticmethod
    def _copy_record(record: UsageRecord) -> UsageRecord:
        return UsageRecord(
            command=record.command,
            count=record.count,
            last_used=record.last_used,
            directories=set(record.directories),
        )
