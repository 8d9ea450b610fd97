from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class DeviceInfo:
    """Target machine the generated command will run on."""
    id: str = "unknown"
    name: str = "unknown"
    os: str = "linux"      # "linux", "macos", "windows"
    shell: str = "bash"    # "bash", "zsh", "sh", "powershell"
    username: str = "user"
    hostname: str = "localhost"


@dataclass
class Message:
    """A single conversational turn."""
    role: str  # "user", "assistant", "system"
    content: str
    timestamp: datetime | None = None


@dataclass
class CommandContext:
    """Ambient state supplied by the caller for one request (read-only)."""
    current_directory: str = "~"
    device: DeviceInfo = field(default_factory=DeviceInfo)
    recent_commands: list[str] = field(default_factory=list)
    conversation_history: list[Message] = field(default_factory=list)


@dataclass
class HistoryEntry:
    """A past execution record supplied by the history store."""
    user_input: str
    command: str
    timestamp: datetime
    directory: str | None = None
    id: str = ""
    device_id: str = ""
    is_dangerous: bool = False


@dataclass
class FavoriteEntry:
    """A saved command supplied by the favorites store."""
    name: str
    command: str
    description: str = ""
    usage_count: int = 0
    updated_at: datetime | None = None
    id: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class Suggestion:
    """A ranked candidate command."""
    command: str
    description: str
    score: float
    source: str  # "favorite", "history", "context"
    usage_count: int = 0
    last_used: datetime | None = None


@dataclass
class RequestOptions:
    """Options handed to a reasoning backend alongside the masked prompt."""
    timeout_seconds: float = 30.0
    max_tokens: int | None = None
    temperature: float | None = None
    conversation_history: list[Message] = field(default_factory=list)
    context: CommandContext | None = None


@dataclass
class ReasoningResponse:
    """Normalised reply from a reasoning backend adapter."""
    command: str
    explanation: str = ""
    confidence: float = 0.5
    raw_response: str = ""


@dataclass
class ExecutionResult:
    """Outcome of handing a vetted command to the transport."""
    success: bool
    command: str = ""
    session_id: str = ""
    error: str | None = None
