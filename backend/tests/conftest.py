from __future__ import annotations

from datetime import datetime, timezone

import pytest

from schemas.entities import CommandContext, DeviceInfo

FIXED_NOW = datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def linux_context() -> CommandContext:
    """A typical request context on a Linux target."""
    return CommandContext(
        current_directory="/home/alice/project",
        device=DeviceInfo(id="dev-1", name="build box", os="linux", shell="bash"),
    )
