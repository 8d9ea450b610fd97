from __future__ import annotations

import re
from dataclasses import dataclass, field

from cmdguard.sensitive_detector import API_KEY, EMAIL, IP, PATH, SECRET, SensitiveDetector, SensitiveSpan

# category -> placeholder tag, e.g. the third path becomes <FILE_3>
PLACEHOLDER_TAGS: dict[str, str] = {
    PATH: "FILE",
    IP: "IP",
    SECRET: "SECRET",
    API_KEY: "KEY",
    EMAIL: "EMAIL",
}


@dataclass
class SanitizedText:
    """Masked text plus the placeholder -> original value mapping."""

    sanitized: str
    mapping: dict[str, str] = field(default_factory=dict)
    detected_types: list[str] = field(default_factory=list)


class Sanitizer:
    """Reversible masking of sensitive substrings around an external call.

    ``sanitize`` swaps every detected value for a placeholder such as
    ``<IP_1>``; ``restore`` puts the original values back. The mapping never
    leaves the process and is meant to be consumed by exactly one restore.
    """

    def __init__(self, detector: SensitiveDetector | None = None) -> None:
        self._detector = detector or SensitiveDetector()

    def detect(self, text: str) -> list[SensitiveSpan]:
        return self._detector.detect(text)

    def sanitize(self, text: str) -> SanitizedText:
        if not text or not text.strip():
            return SanitizedText(sanitized=text)

        spans = self._detector.detect(text)
        if not spans:
            return SanitizedText(sanitized=text)

        # Number placeholders in reading order.
        counters: dict[str, int] = {}
        placeholders: list[str] = []
        for span in spans:
            placeholders.append(self._next_placeholder(span.category, counters, text))

        mapping: dict[str, str] = {}
        detected_types: list[str] = []
        result = text
        # Splice from the end so earlier offsets stay valid.
        for span, placeholder in sorted(zip(spans, placeholders), key=lambda p: p[0].start, reverse=True):
            result = result[: span.start] + placeholder + result[span.end :]
            mapping[placeholder] = span.value

        for span in spans:
            if span.category not in detected_types:
                detected_types.append(span.category)

        return SanitizedText(sanitized=result, mapping=mapping, detected_types=detected_types)

    @staticmethod
    def restore(text: str, mapping: dict[str, str] | None) -> str:
        """Replace every known placeholder in *text* with its original value.

        Unknown placeholders are left as they are. Replacement is a single
        literal pass, so restored values are never themselves re-scanned.
        """
        if not text or not mapping:
            return text

        # Longest placeholder first: <IP_10> before <IP_1>.
        keys = sorted(mapping, key=len, reverse=True)
        pattern = re.compile("|".join(re.escape(k) for k in keys))
        return pattern.sub(lambda m: mapping[m.group(0)], text)

    @staticmethod
    def _next_placeholder(category: str, counters: dict[str, int], text: str) -> str:
        tag = PLACEHOLDER_TAGS.get(category, category.upper())
        while True:
            counters[category] = counters.get(category, 0) + 1
            placeholder = f"<{tag}_{counters[category]}>"
            # Skip tags already present in the input.
            if placeholder not in text:
                return placeholder
