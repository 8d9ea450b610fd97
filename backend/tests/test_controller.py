"""Tests for cmdguard.controller: the interpret pipeline, cancellation and gated execution."""

from __future__ import annotations

import asyncio
import time

import pytest

from cmdguard.controller import (
    ABORTED,
    DONE,
    FAILED,
    IDLE,
    MediationController,
)
from cmdguard.stores import InMemoryHistoryStore, RecordingTransport
from cmdguard.suggestion_ranker import SuggestionRanker
from llm.errors import (
    BackendTimeoutError,
    InvalidCredentialError,
    MalformedResponseError,
    QuotaExceededError,
)
from llm.providers import ReasoningBackend
from schemas.entities import CommandContext, Message, ReasoningResponse, RequestOptions


class ScriptedBackend(ReasoningBackend):
    """Backend that records prompts and answers from a script.

    Each script item is a ReasoningResponse, an exception to raise, or an
    ``asyncio.Event`` to block on until set (or cancelled).
    """

    provider_name = "scripted"

    def __init__(self, *script):
        super().__init__()
        self.script = list(script)
        self.prompts: list[str] = []
        self.options: list[RequestOptions] = []
        self.cancelled = 0

    @property
    def model_name(self) -> str:
        return "scripted-1"

    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        self.prompts.append(prompt)
        self.options.append(options)
        step = self.script.pop(0) if self.script else ReasoningResponse(command="true")
        if isinstance(step, asyncio.Event):
            try:
                await step.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
            return ReasoningResponse(command="echo late")
        if isinstance(step, BaseException):
            raise step
        return step

    async def is_available(self) -> bool:
        return True


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def ranker(history_store: InMemoryHistoryStore) -> SuggestionRanker:
    return SuggestionRanker(history_store=history_store)


def _controller(backend=None, **kwargs) -> MediationController:
    return MediationController(backend=backend, **kwargs)


# -----------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   "])
    async def test_empty_input(self, text):
        backend = ScriptedBackend()
        controller = _controller(backend)

        result = await controller.interpret(text)

        assert result.success is False
        assert result.failure_reason == "empty_input"
        assert controller.state == IDLE
        assert backend.prompts == []

    @pytest.mark.asyncio
    async def test_no_backend(self):
        controller = _controller()
        result = await controller.interpret("list files")
        assert result.failure_reason == "no_backend"
        assert controller.state == IDLE

    @pytest.mark.asyncio
    async def test_set_backend(self):
        controller = _controller()
        backend = ScriptedBackend(ReasoningResponse(command="ls"))
        controller.set_backend(backend)
        assert controller.backend is backend
        assert (await controller.interpret("list files")).success is True


# -----------------------------------------------------------------------
# Happy path
# -----------------------------------------------------------------------


class TestInterpret:

    @pytest.mark.asyncio
    async def test_sanitizes_before_backend_and_restores_after(self, linux_context):
        backend = ScriptedBackend(
            ReasoningResponse(command="ping -c 4 <IP_1>", explanation="Ping <IP_1> four times", confidence=0.9)
        )
        controller = _controller(backend)

        result = await controller.interpret("ping 192.168.1.10", linux_context)

        assert backend.prompts == ["ping <IP_1>"]
        assert result.success is True
        assert result.command == "ping -c 4 192.168.1.10"
        assert result.explanation == "Ping 192.168.1.10 four times"
        assert result.confidence == 0.9
        assert result.detected_types == ["ip"]
        assert result.is_dangerous is False
        assert result.severity == "none"
        assert controller.state == DONE

    @pytest.mark.asyncio
    async def test_dangerous_command_flagged(self, linux_context):
        backend = ScriptedBackend(ReasoningResponse(command="sudo rm -rf <FILE_1>"))
        controller = _controller(backend)

        result = await controller.interpret("wipe /home/alice/tmp as root", linux_context)

        assert result.command == "sudo rm -rf /home/alice/tmp"
        assert result.is_dangerous is True
        assert result.severity == "critical"
        assert result.requires_confirmation is True
        assert result.verdict is not None
        assert set(result.verdict.matched_ids) == {"rm-rf", "sudo"}

    @pytest.mark.asyncio
    async def test_history_trimmed_to_recent_turns(self):
        backend = ScriptedBackend(ReasoningResponse(command="ls"))
        controller = _controller(backend, conversation_turns=10)
        history = [Message(role="user", content=f"turn {i}") for i in range(15)]

        await controller.interpret("list", CommandContext(conversation_history=history))

        sent = backend.options[0].conversation_history
        assert [m.content for m in sent] == [f"turn {i}" for i in range(5, 15)]

    @pytest.mark.asyncio
    async def test_options_carry_timeout_and_context(self, linux_context):
        backend = ScriptedBackend(ReasoningResponse(command="ls"))
        controller = _controller(backend, timeout_seconds=12.0, max_tokens=300, temperature=0.2)

        await controller.interpret("list", linux_context)

        options = backend.options[0]
        assert options.timeout_seconds == 12.0
        assert options.max_tokens == 300
        assert options.temperature == 0.2
        assert options.context is linux_context


# -----------------------------------------------------------------------
# Backend failures
# -----------------------------------------------------------------------


class TestBackendFailures:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, reason, state",
        [
            (QuotaExceededError("quota"), "quota_exceeded", FAILED),
            (InvalidCredentialError("bad key"), "invalid_credential", FAILED),
            (MalformedResponseError("garbage"), "malformed_response", FAILED),
            (BackendTimeoutError("slow"), "timeout", ABORTED),
            (RuntimeError("kaboom"), "backend_error", FAILED),
        ],
    )
    async def test_error_becomes_structured_failure(self, error, reason, state):
        controller = _controller(ScriptedBackend(error))

        result = await controller.interpret("list files")

        assert result.success is False
        assert result.failure_reason == reason
        assert result.command == ""
        assert controller.state == state

    @pytest.mark.asyncio
    async def test_empty_command_is_malformed(self):
        controller = _controller(ScriptedBackend(ReasoningResponse(command="  ")))
        result = await controller.interpret("list files")
        assert result.failure_reason == "malformed_response"

    @pytest.mark.asyncio
    async def test_failure_never_returns_partial_command(self):
        controller = _controller(ScriptedBackend(QuotaExceededError("quota")))
        result = await controller.interpret("ping 10.0.0.1")
        assert result.command == ""
        assert result.verdict is None


# -----------------------------------------------------------------------
# Timeout and cancellation
# -----------------------------------------------------------------------


class TestCancellation:

    @pytest.mark.asyncio
    async def test_timeout_resolves_promptly(self):
        backend = ScriptedBackend(asyncio.Event())
        controller = _controller(backend, timeout_seconds=0.05)

        started = time.monotonic()
        result = await asyncio.wait_for(controller.interpret("list files"), timeout=2.0)

        assert time.monotonic() - started < 1.0
        assert result.success is False
        assert result.failure_reason == "timeout"
        assert controller.state == ABORTED
        assert controller.busy is False

    @pytest.mark.asyncio
    async def test_explicit_cancel(self):
        backend = ScriptedBackend(asyncio.Event())
        controller = _controller(backend)

        pending = asyncio.create_task(controller.interpret("list files"))
        await asyncio.sleep(0.01)
        assert controller.busy is True
        assert controller.cancel() is True

        result = await asyncio.wait_for(pending, timeout=1.0)
        assert result.failure_reason == "timeout"
        assert result.error == "Request was cancelled"
        assert controller.state == ABORTED
        assert backend.cancelled == 1

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self):
        assert _controller(ScriptedBackend()).cancel() is False

    @pytest.mark.asyncio
    async def test_new_request_supersedes_outstanding_one(self):
        backend = ScriptedBackend(asyncio.Event(), ReasoningResponse(command="uptime"))
        controller = _controller(backend)

        first = asyncio.create_task(controller.interpret("slow request"))
        await asyncio.sleep(0.01)
        second = await controller.interpret("fast request")
        first_result = await asyncio.wait_for(first, timeout=1.0)

        assert second.success is True
        assert second.command == "uptime"
        assert first_result.failure_reason == "timeout"
        assert controller.state == DONE
        assert backend.cancelled == 1

    @pytest.mark.asyncio
    async def test_usable_after_timeout(self):
        backend = ScriptedBackend(asyncio.Event(), ReasoningResponse(command="ls"))
        controller = _controller(backend, timeout_seconds=0.05)

        await controller.interpret("first")
        result = await controller.interpret("second")

        assert result.success is True
        assert controller.state == DONE

    @pytest.mark.asyncio
    async def test_caller_cancellation_cancels_backend_call(self):
        backend = ScriptedBackend(asyncio.Event())
        controller = _controller(backend)

        pending = asyncio.create_task(controller.interpret("list files"))
        await asyncio.sleep(0.01)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        await asyncio.sleep(0)

        assert controller.busy is False
        assert backend.cancelled == 1


# -----------------------------------------------------------------------
# Suggestions and execution
# -----------------------------------------------------------------------


class TestExecute:

    @pytest.mark.asyncio
    async def test_safe_command_runs(self, linux_context, history_store, transport, ranker):
        controller = _controller(history_store=history_store, transport=transport, ranker=ranker)

        result = await controller.execute("ls -la", "s1", linux_context, user_input="list files")

        assert result.success is True
        assert transport.executed == [("ls -la", "s1")]
        entry = history_store.get_history()[0]
        assert entry.command == "ls -la"
        assert entry.user_input == "list files"
        assert entry.directory == linux_context.current_directory
        assert ranker.usage_stats()["total_usages"] == 1

    @pytest.mark.asyncio
    async def test_dangerous_command_needs_confirmation(self, linux_context, transport):
        controller = _controller(transport=transport)

        result = await controller.execute("sudo reboot", "s1", linux_context)

        assert result.success is False
        assert result.error == "confirmation_required"
        assert transport.executed == []

    @pytest.mark.asyncio
    async def test_confirmed_dangerous_command_runs(self, linux_context, history_store, transport):
        controller = _controller(history_store=history_store, transport=transport)

        result = await controller.execute("sudo reboot", "s1", linux_context, confirmed=True)

        assert result.success is True
        assert history_store.get_history()[0].is_dangerous is True

    @pytest.mark.asyncio
    async def test_disconnected_session(self, linux_context):
        controller = _controller(transport=RecordingTransport(connected_sessions=set()))
        result = await controller.execute("ls", "s1", linux_context)
        assert result.error == "not_connected"

    @pytest.mark.asyncio
    async def test_no_transport(self, linux_context):
        result = await _controller().execute("ls", "s1", linux_context)
        assert result.error == "not_connected"

    @pytest.mark.asyncio
    async def test_transport_failure(self, linux_context, history_store):
        class FailingTransport(RecordingTransport):
            async def execute(self, command: str, session_id: str) -> None:
                raise ConnectionError("socket closed")

        controller = _controller(transport=FailingTransport(), history_store=history_store)
        result = await controller.execute("ls", "s1", linux_context)

        assert result.error == "execution_failed"
        assert history_store.get_history() == []

    @pytest.mark.asyncio
    async def test_empty_command(self, transport):
        result = await _controller(transport=transport).execute(" ", "s1")
        assert result.error == "empty_input"


class TestSuggest:

    def test_delegates_to_ranker(self, linux_context, ranker):
        ranker.record_usage("git status", linux_context)
        controller = _controller(ranker=ranker)
        assert [s.command for s in controller.suggest("git", linux_context)] == ["git status"]

    def test_without_ranker(self, linux_context):
        assert _controller().suggest("git", linux_context) == []
