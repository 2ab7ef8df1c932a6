"""Shared test doubles - no test talks to a real provider."""

import asyncio

import pytest

from reviewpilot.config import EngineConfig, ProviderSettings
from reviewpilot.providers import ProviderGateway


class FakeBackend:
    """Backend that answers from a function of the prompt."""

    def __init__(self, respond=None, delay=0.0):
        self.respond = respond or (lambda prompt: "[]")
        self.delay = delay
        self.calls = []

    async def complete(self, messages, options):
        self.calls.append((messages, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.respond(messages[-1].content)
        if isinstance(result, Exception):
            raise result
        return result


def make_gateway(backends, routing=None, **config_kwargs):
    config = EngineConfig(
        providers={name: ProviderSettings(model="fake-model") for name in backends},
        routing=routing or {},
        **config_kwargs,
    )
    return ProviderGateway(config, backends=backends)


@pytest.fixture
def fake_backend():
    return FakeBackend()
