"""
Tests for the provider gateway and engine configuration.

Run with: pytest tests/
"""

import pytest
import requests

from reviewpilot.config import EngineConfig, ProviderSettings
from reviewpilot.providers import (
    ChatMessage,
    CompletionOptions,
    LocalBackend,
    ProviderCallFailed,
    ProviderGateway,
    ProviderUnavailable,
)

from conftest import FakeBackend, make_gateway

HELLO = [ChatMessage(role="user", content="hello")]


@pytest.mark.asyncio
async def test_complete_routes_to_requested_provider():
    """Should call the backend named in the options."""
    openai = FakeBackend(lambda prompt: "from openai")
    local = FakeBackend(lambda prompt: "from local")
    gateway = make_gateway({"openai": openai, "local": local})

    text = await gateway.complete(HELLO, CompletionOptions(provider="local", system_prompt="sys"))

    assert text == "from local"
    assert len(local.calls) == 1
    assert local.calls[0][1].system_prompt == "sys"
    assert openai.calls == []


@pytest.mark.asyncio
async def test_complete_uses_default_provider():
    """Without a provider the configured default is used."""
    backend = FakeBackend(lambda prompt: "ok")
    gateway = make_gateway({"openai": backend})
    assert await gateway.complete(HELLO) == "ok"


@pytest.mark.asyncio
async def test_unconfigured_provider_raises_unavailable():
    """Requesting a provider that was never configured fails fast."""
    gateway = make_gateway({"openai": FakeBackend()})
    with pytest.raises(ProviderUnavailable):
        await gateway.complete(HELLO, CompletionOptions(provider="anthropic"))


@pytest.mark.asyncio
async def test_backend_error_raises_call_failed_with_detail():
    """Remote errors are wrapped, keeping the detail but not the key."""
    backend = FakeBackend(lambda prompt: RuntimeError("401 bad key sk-abcdef123456"))
    gateway = make_gateway({"openai": backend})

    with pytest.raises(ProviderCallFailed) as excinfo:
        await gateway.complete(HELLO)

    message = str(excinfo.value)
    assert "401 bad key" in message
    assert "sk-abcdef123456" not in message


@pytest.mark.asyncio
async def test_empty_text_is_valid():
    """An empty completion is returned, not raised."""
    gateway = make_gateway({"openai": FakeBackend(lambda prompt: "")})
    assert await gateway.complete(HELLO) == ""


@pytest.mark.asyncio
async def test_local_backend_non_success_status(monkeypatch):
    """A non-2xx status from the local server surfaces as ProviderCallFailed."""

    class FakeResponse:
        status_code = 503

        def raise_for_status(self):
            raise requests.HTTPError("503 Server Error: Service Unavailable")

    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: FakeResponse())
    backend = LocalBackend("http://localhost:8000/v1/chat/completions", "llama3")
    gateway = make_gateway({"local": backend})

    with pytest.raises(ProviderCallFailed) as excinfo:
        await gateway.complete(HELLO)
    assert "503" in str(excinfo.value)


@pytest.mark.asyncio
async def test_local_backend_parses_choices(monkeypatch):
    """The local backend returns the first choice's content."""
    captured = {}

    class FakeResponse:
        def raise_for_status(self):
            pass

        def json(self):
            return {"choices": [{"message": {"content": "[]"}}]}

    def fake_post(url, json=None, timeout=None):
        captured.update(json)
        return FakeResponse()

    monkeypatch.setattr(requests, "post", fake_post)
    backend = LocalBackend("http://localhost:8000/v1/chat/completions", "llama3")

    text = await backend.complete(HELLO, CompletionOptions(system_prompt="sys", max_tokens=10))

    assert text == "[]"
    assert captured["messages"][0] == {"role": "system", "content": "sys"}
    assert captured["max_tokens"] == 10


def test_provider_for_task_falls_back_to_default():
    """Unrouted tasks use the default provider."""
    gateway = make_gateway(
        {"anthropic": FakeBackend(), "openai": FakeBackend()},
        routing={"code_review": "openai"},
    )
    assert gateway.provider_for_task("code_review") == "openai"
    assert gateway.provider_for_task("risk_assessment") == "anthropic"
    assert gateway.is_provider_available("openai")
    assert not gateway.is_provider_available("google")
    assert sorted(gateway.available_providers()) == ["anthropic", "openai"]


def test_routing_to_unconfigured_provider_rejected():
    """Task routing is validated against configured providers."""
    with pytest.raises(ValueError):
        EngineConfig(
            providers={"openai": ProviderSettings(model="gpt-4o", api_key="k")},
            routing={"code_review": "anthropic"},
        )


def test_unknown_task_rejected():
    config = EngineConfig(providers={"openai": ProviderSettings(model="gpt-4o", api_key="k")})
    with pytest.raises(ValueError):
        config.provider_for_task("translate")


def test_config_from_env(monkeypatch):
    """Should build providers and routing from environment variables."""
    for name in ("ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "REVIEW_DEFAULT_PROVIDER"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("LOCAL_LLM_ENDPOINT", "http://localhost:11434/v1/chat/completions")
    monkeypatch.setenv("REVIEW_ROUTE_RISK_ASSESSMENT", "local")
    monkeypatch.setenv("REVIEW_MAX_CONCURRENCY", "2")

    config = EngineConfig.from_env()

    assert set(config.providers) == {"openai", "local"}
    assert config.default_provider == "openai"
    assert config.provider_for_task("risk_assessment") == "local"
    assert config.max_concurrency == 2


def test_gateway_builds_backends_from_config():
    """Each configured provider gets a backend."""
    config = EngineConfig(providers={
        "openai": ProviderSettings(model="gpt-4o", api_key="k"),
        "local": ProviderSettings(model="llama3", endpoint="http://localhost:8000"),
    })
    gateway = ProviderGateway(config)
    assert sorted(gateway.available_providers()) == ["local", "openai"]


def test_reserved_tasks_can_be_routed():
    """Summarization and suggestions resolve like any other task."""
    gateway = make_gateway(
        {"openai": FakeBackend(), "local": FakeBackend()},
        routing={"summarization": "local"},
    )
    assert gateway.provider_for_task("summarization") == "local"
    assert gateway.provider_for_task("suggestions") == "openai"
