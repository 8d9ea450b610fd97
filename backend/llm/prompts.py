"""System prompt and chat message assembly for reasoning backends.

``build_system_prompt(context)`` describes the target shell, OS and working
directory and pins the reply format. ``build_messages`` wraps it with the
trimmed conversation history and the (already sanitized) user prompt.
"""

from __future__ import annotations

from schemas.entities import CommandContext, Message

BASE_PROMPT = (
    "You are a shell command assistant for {os} ({shell}).\n"
    "Current directory: {cwd}\n\n"
    "CRITICAL: You MUST respond with ONLY a JSON object. No other text.\n\n"
    "JSON format (required):\n"
    '{{"command": "the shell command", "explanation": "brief explanation", "confidence": 0.95}}\n\n'
    "Examples:\n"
    'User: "list files"\n'
    'Response: {{"command": "ls -la", "explanation": "List all files including hidden ones", "confidence": 0.95}}\n\n'
    'User: "show disk usage"\n'
    'Response: {{"command": "df -h", "explanation": "Display disk usage in human-readable format", "confidence": 0.9}}\n\n'
    "Rules:\n"
    "- ALWAYS respond with JSON only\n"
    "- Use appropriate commands for {shell}\n"
    "- Consider the current directory for relative paths\n"
    "- Set confidence < 0.7 if uncertain\n"
    "- Tokens such as <FILE_1>, <IP_1>, <SECRET_1>, <KEY_1> or <EMAIL_1> stand for "
    "private values. Copy them into the command exactly as written; never guess "
    "or invent their contents and never create new tokens of that form."
)

OS_HINTS: dict[str, str] = {
    "macos": (
        "\n- To open GUI applications on macOS use: open -a \"AppName\" "
        "(app names are not shell commands)."
    ),
    "windows": (
        "\n- Prefer PowerShell cmdlets; use Windows path separators."
    ),
}

CHAT_ROLES = ("user", "assistant")


def build_system_prompt(context: CommandContext | None) -> str:
    context = context or CommandContext()
    device = context.device
    prompt = BASE_PROMPT.format(os=device.os, shell=device.shell, cwd=context.current_directory)
    return prompt + OS_HINTS.get(device.os, "")


def build_messages(
    prompt: str,
    context: CommandContext | None,
    history: list[Message] | None = None,
) -> list[dict[str, str]]:
    """OpenAI-style role/content list: system, prior turns, then *prompt*."""
    messages = [{"role": "system", "content": build_system_prompt(context)}]
    for msg in history or []:
        if msg.role in CHAT_ROLES:
            messages.append({"role": msg.role, "content": msg.content})
    messages.append({"role": "user", "content": prompt})
    return messages
