"""
Provider gateway.

Uniform async interface to the configured text-completion providers.
No retries and no caching here - retry policy belongs to callers.
An empty completion is a valid result.
"""

import asyncio
import logging
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

from reviewpilot.config import EngineConfig

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base exception for provider errors."""
    pass


class ProviderUnavailable(ProviderError):
    """Requested provider was never configured."""
    pass


class ProviderCallFailed(ProviderError):
    """Remote call errored or returned a non-success status."""
    pass


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class CompletionOptions(BaseModel):
    provider: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.3


def _sanitize_error(error: str) -> str:
    """Strip credentials from an error message and cap its length."""
    sanitized = re.sub(r'sk-[a-zA-Z0-9_-]+', '[REDACTED_KEY]', error)
    sanitized = re.sub(r'AIza[a-zA-Z0-9_-]+', '[REDACTED_KEY]', sanitized)
    sanitized = re.sub(r'Bearer\s+[a-zA-Z0-9_.-]+', 'Bearer [REDACTED]', sanitized)
    if len(sanitized) > 500:
        sanitized = sanitized[:500] + "... (truncated)"
    return sanitized


# ── Backends ────────────────────────────────────────────────────────────────
# Any object with ``async complete(messages, options) -> str`` works as a
# backend, which is how tests swap in fakes.

class OpenAIBackend:
    """OpenAI chat completions."""

    def __init__(self, api_key: str, model: str, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> str:
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)

        payload = []
        if options.system_prompt:
            payload.append({"role": "system", "content": options.system_prompt})
        payload.extend({"role": m.role, "content": m.content} for m in messages)

        response = await client.chat.completions.create(
            model=self.model,
            messages=payload,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class AnthropicBackend:
    """Anthropic via the LangChain integration."""

    def __init__(self, api_key: str, model: str, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> str:
        from langchain_anthropic import ChatAnthropic
        from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

        llm = ChatAnthropic(
            model=self.model,
            api_key=self.api_key,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            timeout=self.timeout,
        )

        history = []
        if options.system_prompt:
            history.append(SystemMessage(content=options.system_prompt))
        for m in messages:
            if m.role == "assistant":
                history.append(AIMessage(content=m.content))
            else:
                history.append(HumanMessage(content=m.content))

        response = await llm.ainvoke(history)
        content = response.content
        if isinstance(content, str):
            return content
        # Content blocks: keep the text parts only
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )


class GoogleBackend:
    """Google Gemini. The SDK is synchronous, so it runs in a worker thread."""

    def __init__(self, api_key: str, model: str, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> str:
        import google.generativeai as genai

        genai.configure(api_key=self.api_key)
        model = genai.GenerativeModel(
            self.model,
            system_instruction=options.system_prompt,
            generation_config={
                "max_output_tokens": options.max_tokens,
                "temperature": options.temperature,
            },
        )
        chat = model.start_chat(history=[
            {"role": "user" if m.role == "user" else "model", "parts": [m.content]}
            for m in messages[:-1]
        ])
        last = messages[-1].content if messages else ""

        response = await asyncio.to_thread(
            chat.send_message, last, request_options={"timeout": self.timeout}
        )
        return response.text or ""


class LocalBackend:
    """Local OpenAI-compatible server (e.g., Ollama, vLLM)."""

    def __init__(self, endpoint: str, model: str, timeout: float = 30.0):
        self.endpoint = endpoint
        self.model = model
        self.timeout = timeout

    def _post(self, payload: dict) -> str:
        import requests

        response = requests.post(self.endpoint, json=payload, timeout=self.timeout)
        response.raise_for_status()
        choices = response.json().get("choices") or []
        if not choices:
            return ""
        return choices[0].get("message", {}).get("content") or ""

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> str:
        payload_messages = []
        if options.system_prompt:
            payload_messages.append({"role": "system", "content": options.system_prompt})
        payload_messages.extend({"role": m.role, "content": m.content} for m in messages)

        return await asyncio.to_thread(self._post, {
            "model": self.model,
            "messages": payload_messages,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        })


def build_backends(config: EngineConfig) -> Dict[str, object]:
    """Instantiate one backend per configured provider."""
    backends = {}
    for name, settings in config.providers.items():
        if name == "openai":
            backends[name] = OpenAIBackend(settings.api_key, settings.model, config.request_timeout)
        elif name == "anthropic":
            backends[name] = AnthropicBackend(settings.api_key, settings.model, config.request_timeout)
        elif name == "google":
            backends[name] = GoogleBackend(settings.api_key, settings.model, config.request_timeout)
        elif name == "local":
            backends[name] = LocalBackend(settings.endpoint, settings.model, config.request_timeout)
    return backends


# ── Gateway ─────────────────────────────────────────────────────────────────

class ProviderGateway:
    """Dispatches completion requests to configured providers."""

    def __init__(self, config: EngineConfig, backends: Optional[Dict[str, object]] = None):
        self.config = config
        self.backends = build_backends(config) if backends is None else dict(backends)

    @classmethod
    def from_env(cls) -> "ProviderGateway":
        return cls(EngineConfig.from_env())

    async def complete(self, messages: List[ChatMessage], options: Optional[CompletionOptions] = None) -> str:
        """
        Send a conversation to a provider and return the response text.

        Failure modes:
        - Provider not configured → raises ProviderUnavailable
        - Remote error / non-success status → raises ProviderCallFailed

        Cancellation is not intercepted.
        """
        options = options or CompletionOptions()
        provider = options.provider or self.config.default_provider

        backend = self.backends.get(provider) if provider else None
        if backend is None:
            raise ProviderUnavailable(f"Provider not configured: {provider}")

        try:
            text = await backend.complete(messages, options)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderCallFailed(f"{provider} call failed: {_sanitize_error(str(e))}") from e

        logger.debug(f"{provider} returned {len(text or '')} characters")
        return text or ""

    def provider_for_task(self, task: str) -> Optional[str]:
        """Get the provider routed for a specific task."""
        return self.config.provider_for_task(task)

    def is_provider_available(self, provider: str) -> bool:
        return provider in self.backends

    def available_providers(self) -> List[str]:
        return list(self.backends)
