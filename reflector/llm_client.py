"""
Classifier client for the reflector.

Thin async wrapper around the Anthropic SDKs:
- Direct Anthropic API (ANTHROPIC_API_KEY / ANTHROPIC_AUTH_TOKEN)
- Google Vertex AI (ANTHROPIC_VERTEX_PROJECT_ID)
- AWS Bedrock

Every call is paced, bounded by a per-attempt deadline and retried with
exponential backoff on transient failures only (rate limiting, overload,
timeouts, dropped connections). Anything else fails immediately.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anthropic
from dotenv import load_dotenv
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .config import ClientConfig, Provider
from .errors import ClassifierError
from .session_schema import TokenUsage

logger = logging.getLogger(__name__)

# Auto-load .env from the working directory
_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


TRANSIENT_STATUS_CODES = frozenset({429, 529})

MODEL_ALIASES: dict[Provider, dict[str, str]] = {
    "anthropic": {
        "haiku": "claude-haiku-4-5-20251001",
        "sonnet": "claude-sonnet-4-20250514",
    },
    "vertex": {
        "haiku": "claude-haiku-4-5@20251001",
        "sonnet": "claude-sonnet-4@20250514",
    },
    "bedrock": {
        "haiku": "anthropic.claude-haiku-4-5-20251001-v1:0",
        "sonnet": "anthropic.claude-sonnet-4-20250514-v1:0",
    },
}


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input_per_million: float
    output_per_million: float


HAIKU_PRICING = ModelPricing(input_per_million=1.0, output_per_million=5.0)
SONNET_PRICING = ModelPricing(input_per_million=3.0, output_per_million=15.0)
DEFAULT_PRICING = SONNET_PRICING

MODEL_PRICING: dict[str, ModelPricing] = {}
for _aliases in MODEL_ALIASES.values():
    MODEL_PRICING[_aliases["haiku"]] = HAIKU_PRICING
    MODEL_PRICING[_aliases["sonnet"]] = SONNET_PRICING


def resolve_model(name_or_id: str, provider: Provider) -> str:
    """Map a "haiku"/"sonnet" alias to the provider's model id; pass ids through."""
    return MODEL_ALIASES.get(provider, {}).get(name_or_id, name_or_id)


def get_model_pricing(model: str, provider: Provider = "anthropic") -> ModelPricing:
    return MODEL_PRICING.get(resolve_model(model, provider), DEFAULT_PRICING)


def estimate_cost(usage: TokenUsage, model: str, provider: Provider = "anthropic") -> float:
    """Estimated USD cost of the given token usage."""
    pricing = get_model_pricing(model, provider)
    return (
        usage.input_tokens / 1_000_000 * pricing.input_per_million
        + usage.output_tokens / 1_000_000 * pricing.output_per_million
    )


def is_transient_error(error: BaseException) -> bool:
    """Whether a failed attempt is worth retrying."""
    if isinstance(error, anthropic.APIStatusError):
        return error.status_code in TRANSIENT_STATUS_CODES
    # APITimeoutError is a subclass of APIConnectionError
    return isinstance(error, (anthropic.APIConnectionError, asyncio.TimeoutError))


@dataclass
class ClassifierResponse:
    """Text and usage from one successful classifier call."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(input_tokens=self.input_tokens, output_tokens=self.output_tokens)


def create_sdk_client(config: ClientConfig) -> Any:
    """
    Build the async SDK client for the configured provider.

    SDK-level retries are disabled; retrying is owned by ClassifierClient.

    Raises:
        ClassifierError: If required credentials are missing
    """
    if config.provider == "vertex":
        if not config.vertex_project_id:
            raise ClassifierError("Vertex provider requires ANTHROPIC_VERTEX_PROJECT_ID.")
        return anthropic.AsyncAnthropicVertex(
            project_id=config.vertex_project_id,
            region=config.region or "us-east5",
            max_retries=0,
        )
    if config.provider == "bedrock":
        kwargs: dict[str, Any] = {"max_retries": 0}
        if config.region:
            kwargs["aws_region"] = config.region
        return anthropic.AsyncAnthropicBedrock(**kwargs)

    if not config.api_key:
        raise ClassifierError(
            "Anthropic API key required. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN environment variable."
        )
    client_kwargs: dict[str, Any] = {"api_key": config.api_key, "max_retries": 0}
    if config.base_url:
        client_kwargs["base_url"] = config.base_url
    return anthropic.AsyncAnthropic(**client_kwargs)


class ClassifierClient:
    """
    Single-turn text completion against a classifier model.

    The SDK client may be injected for tests; otherwise it is built lazily
    from the config on first use.
    """

    def __init__(self, config: ClientConfig | None = None, sdk_client: Any | None = None):
        self.config = config or ClientConfig()
        self._sdk_client = sdk_client

    @property
    def provider(self) -> Provider:
        return self.config.provider

    @property
    def sdk_client(self) -> Any:
        if self._sdk_client is None:
            self._sdk_client = create_sdk_client(self.config)
        return self._sdk_client

    def ensure_ready(self) -> None:
        """Build the SDK client now so missing credentials surface before any session work."""
        _ = self.sdk_client

    def resolve_model(self, model: str) -> str:
        return resolve_model(model, self.provider)

    def estimate_cost(self, usage: TokenUsage, model: str) -> float:
        return estimate_cost(usage, model, self.provider)

    def _retrying(self) -> AsyncRetrying:
        cfg = self.config
        return AsyncRetrying(
            stop=stop_after_attempt(cfg.max_attempts),
            wait=wait_exponential(
                multiplier=cfg.initial_backoff_seconds,
                min=cfg.initial_backoff_seconds,
                max=cfg.max_backoff_seconds,
            ),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def complete(self, system: str, user_message: str, model: str, max_tokens: int = 4096) -> ClassifierResponse:
        """
        Send one system + user message exchange and return the text reply.

        Raises:
            ClassifierError: On a non-transient failure, when transient
                failures exhaust all attempts, or when the reply has no text
        """
        model_id = self.resolve_model(model)

        if self.config.call_delay_seconds > 0:
            await asyncio.sleep(self.config.call_delay_seconds)

        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await asyncio.wait_for(
                        self.sdk_client.messages.create(
                            model=model_id,
                            max_tokens=max_tokens,
                            temperature=self.config.temperature,
                            system=system,
                            messages=[{"role": "user", "content": user_message}],
                        ),
                        timeout=self.config.call_timeout_seconds,
                    )
        except asyncio.TimeoutError as e:
            raise ClassifierError(
                f"{model_id} did not respond within {self.config.call_timeout_seconds:.0f}s"
            ) from e
        except (anthropic.APIError, RetryError) as e:
            raise ClassifierError(f"{model_id} call failed: {e}") from e

        text_blocks = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not text_blocks:
            raise ClassifierError(f"No text response from {model_id}")

        return ClassifierResponse(
            text=text_blocks[0],
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=model_id,
        )


__all__ = [
    "MODEL_ALIASES",
    "ClassifierClient",
    "ClassifierResponse",
    "ModelPricing",
    "create_sdk_client",
    "estimate_cost",
    "get_model_pricing",
    "is_transient_error",
    "resolve_model",
]
