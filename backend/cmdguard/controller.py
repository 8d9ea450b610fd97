from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cmdguard.risk_classifier import SEVERITY_NONE, RiskClassifier, SecurityVerdict
from cmdguard.sanitizer import Sanitizer
from cmdguard.stores import CommandTransport, HistoryStore
from cmdguard.suggestion_ranker import SuggestionRanker
from llm.errors import BackendError
from llm.providers import ReasoningBackend
from schemas.entities import (
    CommandContext,
    ExecutionResult,
    HistoryEntry,
    RequestOptions,
    Suggestion,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONVERSATION_TURNS = 10

# ---------------------------------------------------------------------------
# Request states
# ---------------------------------------------------------------------------

IDLE = "idle"
SANITIZING = "sanitizing"
AWAITING_BACKEND = "awaiting-backend"
RESTORING = "restoring"
CLASSIFYING = "classifying"
DONE = "done"
ABORTED = "aborted"
FAILED = "failed"

# ---------------------------------------------------------------------------
# Failure reasons
# ---------------------------------------------------------------------------

EMPTY_INPUT = "empty_input"
NO_BACKEND = "no_backend"
TIMEOUT = "timeout"
MALFORMED_RESPONSE = "malformed_response"
BACKEND_FAILURE = "backend_error"
CONFIRMATION_REQUIRED = "confirmation_required"
NOT_CONNECTED = "not_connected"
EXECUTION_FAILED = "execution_failed"


@dataclass
class InterpretResult:
    """Outcome of one interpret request. Never carries a partial command."""

    success: bool
    command: str = ""
    explanation: str = ""
    confidence: float = 0.0
    is_dangerous: bool = False
    severity: str = SEVERITY_NONE
    requires_confirmation: bool = False
    warnings: list[str] = field(default_factory=list)
    verdict: SecurityVerdict | None = None
    detected_types: list[str] = field(default_factory=list)
    failure_reason: str | None = None
    error: str | None = None

    @classmethod
    def failure(cls, reason: str, error: str, detected_types: list[str] | None = None) -> InterpretResult:
        return cls(success=False, failure_reason=reason, error=error, detected_types=detected_types or [])


class MediationController:
    """Sequences sanitize -> backend -> restore -> classify for one request.

    At most one backend call is outstanding per instance; starting a new
    ``interpret`` cancels the previous one. Only the backend wait suspends,
    the local stages run synchronously around it.
    """

    def __init__(
        self,
        classifier: RiskClassifier | None = None,
        sanitizer: Sanitizer | None = None,
        ranker: SuggestionRanker | None = None,
        backend: ReasoningBackend | None = None,
        history_store: HistoryStore | None = None,
        transport: CommandTransport | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        conversation_turns: int = DEFAULT_CONVERSATION_TURNS,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> None:
        self._classifier = classifier or RiskClassifier()
        self._sanitizer = sanitizer or Sanitizer()
        self._ranker = ranker
        self._backend = backend
        self._history_store = history_store
        self._transport = transport
        self._timeout = timeout_seconds
        self._turns = conversation_turns
        self._max_tokens = max_tokens
        self._temperature = temperature

        self._inflight: asyncio.Task | None = None
        self._request_seq = 0
        self._state = IDLE

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def backend(self) -> ReasoningBackend | None:
        return self._backend

    def set_backend(self, backend: ReasoningBackend | None) -> None:
        self._backend = backend
        if backend is not None:
            logger.info("Reasoning backend set to %s", getattr(backend, "provider_name", type(backend).__name__))

    @property
    def state(self) -> str:
        """State of the most recent request."""
        return self._state

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    # ------------------------------------------------------------------
    # Interpret
    # ------------------------------------------------------------------

    async def interpret(self, text: str, context: CommandContext | None = None) -> InterpretResult:
        if not text or not text.strip():
            return InterpretResult.failure(EMPTY_INPUT, "Input is empty")
        backend = self._backend
        if backend is None:
            return InterpretResult.failure(NO_BACKEND, "No reasoning backend configured")

        context = context or CommandContext()
        self.cancel()
        self._request_seq += 1
        request_id = self._request_seq

        self._transition(request_id, SANITIZING)
        masked = self._sanitizer.sanitize(text)
        if masked.mapping:
            logger.info("Masked %d sensitive value(s): %s", len(masked.mapping), ", ".join(masked.detected_types))

        options = RequestOptions(
            timeout_seconds=self._timeout,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            conversation_history=self._recent_turns(context),
            context=context,
        )

        self._transition(request_id, AWAITING_BACKEND)
        task = asyncio.ensure_future(backend.send(masked.sanitized, options))
        self._inflight = task
        try:
            done, _ = await asyncio.wait({task}, timeout=self._timeout)
        finally:
            # Also reached when the awaiting caller itself is cancelled.
            if not task.done():
                task.cancel()
            if self._inflight is task:
                self._inflight = None

        if not done:
            self._transition(request_id, ABORTED)
            logger.warning("Backend call timed out after %.1fs", self._timeout)
            return InterpretResult.failure(TIMEOUT, "Backend did not respond in time", masked.detected_types)
        if task.cancelled():
            self._transition(request_id, ABORTED)
            logger.info("Backend call cancelled")
            return InterpretResult.failure(TIMEOUT, "Request was cancelled", masked.detected_types)

        exc = task.exception()
        if exc is not None:
            if isinstance(exc, BackendError):
                reason = exc.reason
                logger.warning("Backend call failed (%s): %s", reason, exc)
            else:
                reason = BACKEND_FAILURE
                logger.error("Unexpected backend failure", exc_info=exc)
            self._transition(request_id, ABORTED if reason == TIMEOUT else FAILED)
            return InterpretResult.failure(reason, str(exc) or reason, masked.detected_types)

        response = task.result()
        if response is None or not response.command or not response.command.strip():
            self._transition(request_id, FAILED)
            return InterpretResult.failure(MALFORMED_RESPONSE, "Backend returned no command", masked.detected_types)

        self._transition(request_id, RESTORING)
        command = self._sanitizer.restore(response.command, masked.mapping)
        explanation = self._sanitizer.restore(response.explanation, masked.mapping)

        self._transition(request_id, CLASSIFYING)
        verdict = self._classifier.classify(command)

        self._transition(request_id, DONE)
        if verdict.is_dangerous:
            logger.info("Command flagged %s by %s", verdict.severity, ", ".join(verdict.matched_ids))
        return InterpretResult(
            success=True,
            command=command,
            explanation=explanation,
            confidence=response.confidence,
            is_dangerous=verdict.is_dangerous,
            severity=verdict.severity,
            requires_confirmation=verdict.requires_confirmation,
            warnings=list(verdict.warnings),
            verdict=verdict,
            detected_types=masked.detected_types,
        )

    def cancel(self) -> bool:
        """Cancel the outstanding backend call, if any. Returns True if one was cancelled."""
        task = self._inflight
        if task is None or task.done():
            return False
        task.cancel()
        return True

    # ------------------------------------------------------------------
    # Suggestions and execution
    # ------------------------------------------------------------------

    def suggest(self, partial_input: str, context: CommandContext | None = None) -> list[Suggestion]:
        if self._ranker is None:
            return []
        return self._ranker.suggest(partial_input, context or CommandContext())

    async def execute(
        self,
        command: str,
        session_id: str,
        context: CommandContext | None = None,
        confirmed: bool = False,
        user_input: str = "",
    ) -> ExecutionResult:
        """Hand a vetted command to the transport, gated on confirmation."""
        if not command or not command.strip():
            return ExecutionResult(success=False, command=command, session_id=session_id, error=EMPTY_INPUT)

        verdict = self._classifier.classify(command)
        if verdict.requires_confirmation and not confirmed:
            logger.info("Execution blocked pending confirmation (%s)", verdict.severity)
            return ExecutionResult(
                success=False, command=command, session_id=session_id, error=CONFIRMATION_REQUIRED
            )

        if self._transport is None or not self._transport.is_connected(session_id):
            return ExecutionResult(success=False, command=command, session_id=session_id, error=NOT_CONNECTED)

        try:
            await self._transport.execute(command, session_id)
        except Exception:
            logger.exception("Transport failed to execute command for session %s", session_id)
            return ExecutionResult(success=False, command=command, session_id=session_id, error=EXECUTION_FAILED)

        context = context or CommandContext()
        if self._history_store is not None:
            self._history_store.add(
                HistoryEntry(
                    user_input=user_input,
                    command=command,
                    timestamp=datetime.now(timezone.utc),
                    directory=context.current_directory,
                    device_id=context.device.id,
                    is_dangerous=verdict.is_dangerous,
                )
            )
        if self._ranker is not None:
            self._ranker.record_usage(command, context)
        return ExecutionResult(success=True, command=command, session_id=session_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _recent_turns(self, context: CommandContext) -> list:
        if self._turns <= 0:
            return []
        return list(context.conversation_history[-self._turns :])

    def _transition(self, request_id: int, state: str) -> None:
        # A superseded request must not overwrite the newer request's state.
        if request_id != self._request_seq:
            return
        logger.debug("Request %d -> %s", request_id, state)
        self._state = state
