"""Reasoning backend abstraction layer.

Supports multiple backends:
  - OpenAI (chat completions, JSON response format)
  - SiliconFlow (OpenAI-compatible endpoint)
  - Anthropic (messages API)
  - Gemini (generateContent)
  - Ollama (local)

All providers implement the same interface so the controller doesn't need
to know which backend is active. Privacy guarantee: the sanitizer still
runs *before* any provider sees the prompt; providers only ever receive
masked text.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from llm.errors import (
    BackendError,
    BackendTimeoutError,
    InvalidCredentialError,
    MalformedResponseError,
    QuotaExceededError,
)
from llm.prompts import build_messages, build_system_prompt
from llm.response_parser import parse_reasoning_output
from schemas.entities import ReasoningResponse, RequestOptions

__all__ = [
    "AnthropicProvider",
    "BackendError",
    "BackendTimeoutError",
    "GeminiProvider",
    "InvalidCredentialError",
    "MalformedResponseError",
    "OllamaProvider",
    "OpenAIProvider",
    "QuotaExceededError",
    "ReasoningBackend",
    "SiliconFlowProvider",
    "create_provider",
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 500
DEFAULT_TEMPERATURE = 0.3

_CREDENTIAL_MARKERS = ("invalid_api_key", "authentication_error", "api_key_invalid", "permission_denied")
_QUOTA_MARKERS = ("insufficient_quota", "rate_limit", "resource_exhausted", "quota")


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------

class ReasoningBackend(ABC):
    """Abstract base class for all reasoning providers."""

    provider_name: str = "base"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        # Tests inject httpx.MockTransport here.
        self._transport = transport

    @abstractmethod
    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        """Send a masked prompt and return the normalised reply.

        Raises a ``BackendError`` subclass on failure.
        """
        ...

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if the provider is reachable and the credential is accepted."""
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the current model identifier."""
        ...

    # -- shared HTTP plumbing ------------------------------------------------

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def _post_json(
        self,
        url: str,
        payload: dict,
        timeout: float,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict:
        try:
            async with self._client(timeout) as client:
                response = await client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException as exc:
            raise BackendTimeoutError(f"{self.provider_name} did not respond in time") from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{self.provider_name} request failed: {exc.__class__.__name__}") from exc

        _raise_for_status(self.provider_name, response)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"{self.provider_name} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(f"{self.provider_name} returned an unexpected body")
        return data

    async def _probe(self, method: str, url: str, **kwargs) -> bool:
        try:
            async with self._client(10.0) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError:
            return False
        return response.status_code == 200


def _raise_for_status(provider: str, response: httpx.Response) -> None:
    """Translate an HTTP error response into the typed failure family."""
    if response.is_success:
        return

    status = response.status_code
    body = response.text.lower()
    if status in (401, 403) or any(m in body for m in _CREDENTIAL_MARKERS):
        raise InvalidCredentialError(f"{provider} rejected the API key", status_code=status)
    if status == 429 or any(m in body for m in _QUOTA_MARKERS):
        raise QuotaExceededError(f"{provider} quota exceeded", status_code=status)
    raise BackendError(f"{provider} returned HTTP {status}", status_code=status)


def _options_or_defaults(options: RequestOptions) -> tuple[int, float]:
    max_tokens = options.max_tokens if options.max_tokens is not None else DEFAULT_MAX_TOKENS
    temperature = options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
    return max_tokens, temperature


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

class OpenAIProvider(ReasoningBackend):
    """OpenAI chat completions (GPT-4o, GPT-4, etc.)."""

    provider_name = "openai"
    default_base_url = "https://api.openai.com/v1"
    json_mode = True

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(transport)
        self._api_key = api_key
        self._model = model
        self.base_url = (base_url or self.default_base_url).rstrip("/")

    @property
    def model_name(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        max_tokens, temperature = _options_or_defaults(options)
        payload: dict = {
            "model": self._model,
            "messages": build_messages(prompt, options.context, options.conversation_history),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._post_json(
            f"{self.base_url}/chat/completions",
            payload,
            timeout=options.timeout_seconds,
            headers=self._headers(),
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError(f"{self.provider_name} response has no message content") from exc
        return parse_reasoning_output(content or "")

    async def is_available(self) -> bool:
        if not self._api_key:
            return False
        return await self._probe("GET", f"{self.base_url}/models", headers=self._headers())


class SiliconFlowProvider(OpenAIProvider):
    """SiliconFlow's OpenAI-compatible endpoint (Qwen, DeepSeek, etc.)."""

    provider_name = "siliconflow"
    default_base_url = "https://api.siliconflow.cn/v1"
    # Not every hosted model honours response_format.
    json_mode = False

    def __init__(
        self,
        api_key: str,
        model: str = "Qwen/Qwen2.5-7B-Instruct",
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(api_key, model=model, base_url=base_url, transport=transport)


# ---------------------------------------------------------------------------
# Anthropic (Claude)
# ---------------------------------------------------------------------------

class AnthropicProvider(ReasoningBackend):
    """Anthropic messages API (Claude Sonnet, Claude Haiku, etc.)."""

    provider_name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        base_url: str = "https://api.anthropic.com/v1",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(transport)
        self._api_key = api_key
        self._model = model
        self.base_url = base_url.rstrip("/")

    @property
    def model_name(self) -> str:
        return self._model

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }

    def _convert_messages(
        self, messages: list[dict[str, str]]
    ) -> tuple[str, list[dict[str, str]]]:
        """Separate system prompt from messages for Anthropic's API format."""
        system = ""
        user_messages = []
        for msg in messages:
            if msg["role"] == "system":
                system += msg["content"] + "\n"
            else:
                user_messages.append({"role": msg["role"], "content": msg["content"]})
        return system.strip(), user_messages

    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        max_tokens, temperature = _options_or_defaults(options)
        system, messages = self._convert_messages(
            build_messages(prompt, options.context, options.conversation_history)
        )
        payload: dict = {
            "model": self._model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            payload["system"] = system

        data = await self._post_json(
            f"{self.base_url}/messages",
            payload,
            timeout=options.timeout_seconds,
            headers=self._headers(),
        )
        for block in data.get("content", []):
            if block.get("type") == "text":
                return parse_reasoning_output(block.get("text", ""))
        raise MalformedResponseError("anthropic response has no text block")

    async def is_available(self) -> bool:
        if not self._api_key:
            return False
        # Light check: just verify the key works
        return await self._probe(
            "POST",
            f"{self.base_url}/messages",
            headers=self._headers(),
            json={
                "model": self._model,
                "max_tokens": 1,
                "messages": [{"role": "user", "content": "hi"}],
            },
        )


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------

class GeminiProvider(ReasoningBackend):
    """Google Gemini generateContent endpoint."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(transport)
        self._api_key = api_key
        self._model = model
        self.base_url = base_url.rstrip("/")

    @property
    def model_name(self) -> str:
        return self._model

    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        max_tokens, temperature = _options_or_defaults(options)
        contents = []
        for msg in options.conversation_history:
            if msg.role in ("user", "assistant"):
                role = "model" if msg.role == "assistant" else "user"
                contents.append({"role": role, "parts": [{"text": msg.content}]})
        contents.append({"role": "user", "parts": [{"text": prompt}]})

        payload = {
            "systemInstruction": {"parts": [{"text": build_system_prompt(options.context)}]},
            "contents": contents,
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
                "responseMimeType": "application/json",
            },
        }
        data = await self._post_json(
            f"{self.base_url}/models/{self._model}:generateContent",
            payload,
            timeout=options.timeout_seconds,
            params={"key": self._api_key},
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError("gemini response has no candidates") from exc
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        return parse_reasoning_output(text)

    async def is_available(self) -> bool:
        if not self._api_key:
            return False
        return await self._probe("GET", f"{self.base_url}/models", params={"key": self._api_key})


# ---------------------------------------------------------------------------
# Ollama (local)
# ---------------------------------------------------------------------------

class OllamaProvider(ReasoningBackend):
    """Ollama running locally: no data leaves the machine."""

    provider_name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(transport)
        self.base_url = base_url.rstrip("/")
        self._model = model

    @property
    def model_name(self) -> str:
        return self._model

    async def send(self, prompt: str, options: RequestOptions) -> ReasoningResponse:
        max_tokens, temperature = _options_or_defaults(options)
        payload = {
            "model": self._model,
            "messages": build_messages(prompt, options.context, options.conversation_history),
            "stream": False,
            "format": "json",
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        data = await self._post_json(
            f"{self.base_url}/api/chat",
            payload,
            timeout=options.timeout_seconds,
        )
        return parse_reasoning_output(data.get("message", {}).get("content", ""))

    async def is_available(self) -> bool:
        try:
            async with self._client(5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                models = response.json().get("models", [])
                return any(m.get("name", "").startswith(self._model) for m in models)
        except (httpx.HTTPError, ValueError):
            return False


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_provider(
    provider: str,
    model: str | None = None,
    *,
    openai_api_key: str = "",
    openai_model: str = "gpt-4o-mini",
    siliconflow_api_key: str = "",
    siliconflow_model: str = "Qwen/Qwen2.5-7B-Instruct",
    anthropic_api_key: str = "",
    anthropic_model: str = "claude-sonnet-4-5-20250929",
    gemini_api_key: str = "",
    gemini_model: str = "gemini-2.0-flash",
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    ollama_base_url: str = "http://localhost:11434",
    ollama_model: str = "llama3",
    transport: httpx.AsyncBaseTransport | None = None,
) -> ReasoningBackend:
    """Create a reasoning backend instance.

    Parameters
    ----------
    provider : str
        One of "openai", "siliconflow", "anthropic", "gemini", "ollama".
    model : str | None
        Override model ID. If None, uses the default for the provider.
    """
    if provider == "openai":
        if not openai_api_key:
            raise ValueError("OpenAI API key is required")
        return OpenAIProvider(api_key=openai_api_key, model=model or openai_model, transport=transport)
    elif provider == "siliconflow":
        if not siliconflow_api_key:
            raise ValueError("SiliconFlow API key is required")
        return SiliconFlowProvider(
            api_key=siliconflow_api_key, model=model or siliconflow_model, transport=transport
        )
    elif provider == "anthropic":
        if not anthropic_api_key:
            raise ValueError("Anthropic API key is required")
        return AnthropicProvider(api_key=anthropic_api_key, model=model or anthropic_model, transport=transport)
    elif provider == "gemini":
        if not gemini_api_key:
            raise ValueError("Gemini API key is required")
        return GeminiProvider(
            api_key=gemini_api_key,
            model=model or gemini_model,
            base_url=gemini_base_url,
            transport=transport,
        )
    elif provider == "ollama":
        return OllamaProvider(base_url=ollama_base_url, model=model or ollama_model, transport=transport)
    else:
        raise ValueError(f"Unknown provider: {provider}")
