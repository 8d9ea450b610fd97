from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

PATH = "path"
IP = "ip"
SECRET = "secret"
API_KEY = "api_key"
EMAIL = "email"

CATEGORIES: tuple[str, ...] = (PATH, IP, SECRET, API_KEY, EMAIL)

# Characters allowed to follow a token without being part of it.
_TAIL = r"(?=[\s,;:'\")\]!?|&<>]|\.(?:\s|$)|$)"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class SensitiveSpan:
    """A single sensitive occurrence in the source text."""

    category: str
    value: str
    start: int
    end: int


@dataclass(frozen=True)
class SensitiveMatcher:
    """One regex for one category. The sensitive value is the ``value`` group."""

    category: str
    pattern: re.Pattern[str]


# ---------------------------------------------------------------------------
# Default matchers, in evaluation order
# ---------------------------------------------------------------------------

_SECRET_KEYS = r"(?<![A-Za-z])(?:password|passwd|pwd|pass)"

DEFAULT_MATCHERS: tuple[SensitiveMatcher, ...] = (
    # Unix absolute paths: /home/user/file.txt
    SensitiveMatcher(PATH, re.compile(r"(?<![^\s\"'=(|&<>])(?P<value>/(?:[\w.\-]+/)*[\w.\-]+/?)" + _TAIL)),
    # Home-relative paths: ~/documents/file.pdf
    SensitiveMatcher(PATH, re.compile(r"(?<![^\s\"'=(|&<>])(?P<value>~/(?:[\w.\-]+/)*[\w.\-]+/?)" + _TAIL)),
    # Windows paths: C:\Users\user\file.txt
    SensitiveMatcher(PATH, re.compile(r"(?<![^\s\"'=(|&<>])(?P<value>[A-Za-z]:\\(?:[\w.\-]+\\)*[\w.\-]+)" + _TAIL)),
    # IPv4
    SensitiveMatcher(IP, re.compile(r"(?<![\w.])(?P<value>\d{1,3}(?:\.\d{1,3}){3})(?!\.?\d)")),
    # IPv6, full and compressed
    SensitiveMatcher(IP, re.compile(r"(?<![\w:])(?P<value>(?:[0-9A-Fa-f]{1,4}:){7}[0-9A-Fa-f]{1,4})(?![\w:])")),
    SensitiveMatcher(
        IP,
        re.compile(
            r"(?<![\w:])(?P<value>(?:[0-9A-Fa-f]{1,4}:){0,7}:(?:[0-9A-Fa-f]{1,4}(?::[0-9A-Fa-f]{1,4}){0,6})?)(?![\w:])"
        ),
    ),
    # password="my pass" / password=secret / --password secret
    SensitiveMatcher(SECRET, re.compile(_SECRET_KEYS + r"\s*[=:]\s*[\"'](?P<value>[^\"']+)[\"']", re.IGNORECASE)),
    SensitiveMatcher(SECRET, re.compile(_SECRET_KEYS + r"\s*[=:]\s*(?P<value>[^\s'\"]+)", re.IGNORECASE)),
    SensitiveMatcher(SECRET, re.compile(r"--" + _SECRET_KEYS + r"[\s=]+[\"'](?P<value>[^\"']+)[\"']", re.IGNORECASE)),
    SensitiveMatcher(SECRET, re.compile(r"--" + _SECRET_KEYS + r"[\s=]+(?P<value>[^\s'\"]+)", re.IGNORECASE)),
    # Prefixed tokens: sk-..., pk_..., ghp_..., AKIA...
    SensitiveMatcher(
        API_KEY,
        re.compile(r"(?<![^\s\"'=:])(?P<value>(?:sk|pk|api|token|gh[pousr])[-_][A-Za-z0-9_\-]{20,})" + _TAIL, re.IGNORECASE),
    ),
    SensitiveMatcher(API_KEY, re.compile(r"(?<![A-Za-z0-9])(?P<value>AKIA[0-9A-Z]{16})(?![A-Za-z0-9])")),
    # api_key=..., token: ..., secret=...
    SensitiveMatcher(
        API_KEY,
        re.compile(r"(?:api[-_]?key|token|secret)\s*[=:]\s*['\"]?(?P<value>[A-Za-z0-9_\-]{20,})['\"]?", re.IGNORECASE),
    ),
    # user@example.com
    SensitiveMatcher(
        EMAIL,
        re.compile(r"(?<![\w.%+-])(?P<value>[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})" + _TAIL),
    ),
)

_URL_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class SensitiveDetector:
    """Regex scanner for paths, IP addresses, secrets, API keys and emails.

    Stateless after construction, so one instance can be shared freely
    across concurrent callers.
    """

    def __init__(self, matchers: tuple[SensitiveMatcher, ...] | list[SensitiveMatcher] = DEFAULT_MATCHERS) -> None:
        self._matchers = tuple(matchers)

    @property
    def matchers(self) -> tuple[SensitiveMatcher, ...]:
        return self._matchers

    def detect(self, text: str) -> list[SensitiveSpan]:
        """Run every matcher and return merged, non-overlapping spans."""
        if not text or not text.strip():
            return []

        spans: list[SensitiveSpan] = []
        for matcher in self._matchers:
            for match in matcher.pattern.finditer(text):
                value = match.group("value")
                if not value or not _is_valid(matcher.category, value):
                    continue
                spans.append(
                    SensitiveSpan(
                        category=matcher.category,
                        value=value,
                        start=match.start("value"),
                        end=match.end("value"),
                    )
                )
        return self._merge_spans(spans)

    # -- Merge / deduplicate -------------------------------------------------

    @staticmethod
    def _merge_spans(spans: list[SensitiveSpan]) -> list[SensitiveSpan]:
        """Keep the earliest, outermost span of every overlapping group.

        Spans are ordered by start offset, then by length descending; the sort
        is stable so matcher order breaks any remaining tie.
        """
        ordered = sorted(spans, key=lambda s: (s.start, -(s.end - s.start)))

        merged: list[SensitiveSpan] = []
        for span in ordered:
            if any(span.start < kept.end and span.end > kept.start for kept in merged):
                continue
            merged.append(span)
        return merged


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_valid(category: str, value: str) -> bool:
    """Filter false positives a bare regex cannot rule out."""
    if category == PATH:
        return len(value) > 3 and ("/" in value or "\\" in value) and not _URL_RE.match(value)
    if category == IP:
        if "." in value:
            parts = value.split(".")
            return len(parts) == 4 and all(p.isdigit() and 0 <= int(p) <= 255 for p in parts)
        # A bare "::" is punctuation far more often than an address.
        if not value.strip(":"):
            return False
        try:
            ipaddress.IPv6Address(value)
        except ValueError:
            return False
        return True
    if category == SECRET:
        return len(value) >= 3
    if category == API_KEY:
        return len(value) >= 20
    if category == EMAIL:
        return "@" in value and "." in value.rsplit("@", 1)[-1]
    return True
