"""
Engine configuration.

Providers are configured from environment variables (the CLI loads a .env
file first). Each review task is routed to exactly one configured provider;
the mapping is checked when the config is built, so a typo fails fast
instead of at the first review.
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

from reviewpilot.models import TaskName

# Order matters: the first configured provider becomes the default.
PROVIDER_ORDER = ["anthropic", "openai", "google", "local"]

TASKS = ["code_review", "summarization", "suggestions", "risk_assessment"]

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "google": "gemini-2.0-flash",
    "local": "llama3",
}


class ProviderSettings(BaseModel):
    """Credentials and model for one provider."""

    model: str
    api_key: Optional[str] = None
    endpoint: Optional[str] = Field(None, description="Chat completions URL for the local provider")


class EngineConfig(BaseModel):
    """Configured providers, task routing and request limits."""

    providers: Dict[str, ProviderSettings] = Field(default_factory=dict)
    default_provider: Optional[str] = None
    routing: Dict[TaskName, str] = Field(default_factory=dict)
    max_concurrency: int = Field(4, ge=1)
    request_timeout: float = Field(30.0, gt=0)

    @model_validator(mode="after")
    def _check_routing(self) -> "EngineConfig":
        for name in self.providers:
            if name not in PROVIDER_ORDER:
                raise ValueError(f"Unsupported provider: {name}")

        if self.default_provider is None:
            configured = [p for p in PROVIDER_ORDER if p in self.providers]
            self.default_provider = configured[0] if configured else None
        elif self.default_provider not in self.providers:
            raise ValueError(f"Default provider '{self.default_provider}' is not configured")

        for task, provider in self.routing.items():
            if provider not in self.providers:
                raise ValueError(f"Task '{task}' routed to unconfigured provider '{provider}'")
        return self

    def provider_for_task(self, task: str) -> Optional[str]:
        """Provider id for a task, falling back to the default provider."""
        if task not in TASKS:
            raise ValueError(f"Unknown task: {task}")
        return self.routing.get(task, self.default_provider)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from environment variables."""
        providers = {}

        for name in ("anthropic", "openai", "google"):
            api_key = os.getenv(f"{name.upper()}_API_KEY")
            if api_key:
                providers[name] = ProviderSettings(
                    model=os.getenv(f"{name.upper()}_MODEL", DEFAULT_MODELS[name]),
                    api_key=api_key,
                )

        endpoint = os.getenv("LOCAL_LLM_ENDPOINT")
        if endpoint:
            providers["local"] = ProviderSettings(
                model=os.getenv("LOCAL_LLM_MODEL", DEFAULT_MODELS["local"]),
                endpoint=endpoint,
            )

        routing = {}
        for task in TASKS:
            provider = os.getenv(f"REVIEW_ROUTE_{task.upper()}")
            if provider:
                routing[task] = provider.lower()

        default_provider = os.getenv("REVIEW_DEFAULT_PROVIDER")

        return cls(
            providers=providers,
            default_provider=default_provider.lower() if default_provider else None,
            routing=routing,
            max_concurrency=int(os.getenv("REVIEW_MAX_CONCURRENCY", "4")),
            request_timeout=float(os.getenv("REVIEW_TIMEOUT_SECONDS", "30")),
        )
