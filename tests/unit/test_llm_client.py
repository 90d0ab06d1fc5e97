"""Tests for ClassifierClient retry, deadline and pricing behavior."""

import asyncio

import anthropic
import httpx
import pytest

from helpers import FakeSDK, fast_client_config, make_client, sdk_response
from reflector.errors import ClassifierError
from reflector.llm_client import (
    ClassifierClient,
    create_sdk_client,
    estimate_cost,
    get_model_pricing,
    is_transient_error,
    resolve_model,
)
from reflector.session_schema import TokenUsage

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def status_error(status):
    return anthropic.APIStatusError(
        f"status {status}", response=httpx.Response(status, request=REQUEST), body=None
    )


class TestErrorClassification:
    @pytest.mark.parametrize("status", [429, 529])
    def test_rate_limit_and_overload_are_transient(self, status):
        assert is_transient_error(status_error(status))

    @pytest.mark.parametrize("status", [400, 401, 404, 500])
    def test_other_statuses_are_not(self, status):
        assert not is_transient_error(status_error(status))

    def test_timeouts_and_connection_errors_are_transient(self):
        assert is_transient_error(anthropic.APITimeoutError(request=REQUEST))
        assert is_transient_error(anthropic.APIConnectionError(request=REQUEST))
        assert is_transient_error(asyncio.TimeoutError())

    def test_plain_errors_are_not(self):
        assert not is_transient_error(ValueError("bad"))


class TestComplete:
    """Tests for ClassifierClient.complete."""

    @pytest.mark.asyncio
    async def test_returns_text_and_usage(self):
        client = make_client([sdk_response("[]", input_tokens=1234, output_tokens=56)])

        response = await client.complete("sys", "user", model="haiku")

        assert response.text == "[]"
        assert response.usage == TokenUsage(input_tokens=1234, output_tokens=56)
        assert response.model == "claude-haiku-4-5-20251001"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 529])
    async def test_retries_transient_status(self, status):
        client = make_client([status_error(status), status_error(status), "[]"])

        response = await client.complete("sys", "user", model="haiku")

        assert response.text == "[]"
        assert len(client.sdk_client.messages.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        client = make_client(default=status_error(429), max_attempts=3)

        with pytest.raises(ClassifierError) as exc_info:
            await client.complete("sys", "user", model="haiku")

        assert isinstance(exc_info.value.__cause__, anthropic.APIStatusError)
        assert len(client.sdk_client.messages.calls) == 3

    @pytest.mark.asyncio
    async def test_no_retry_on_bad_request(self):
        client = make_client([status_error(400), "[]"])

        with pytest.raises(ClassifierError):
            await client.complete("sys", "user", model="haiku")

        assert len(client.sdk_client.messages.calls) == 1

    @pytest.mark.asyncio
    async def test_no_retry_on_unexpected_error(self):
        client = make_client([RuntimeError("boom"), "[]"])

        with pytest.raises(RuntimeError):
            await client.complete("sys", "user", model="haiku")

        assert len(client.sdk_client.messages.calls) == 1

    @pytest.mark.asyncio
    async def test_deadline_expiry_is_retried_then_surfaced(self):
        class SlowMessages:
            def __init__(self):
                self.calls = 0

            async def create(self, **kwargs):
                self.calls += 1
                await asyncio.sleep(10)

        sdk = FakeSDK()
        sdk.messages = SlowMessages()
        client = ClassifierClient(fast_client_config(call_timeout_seconds=0.01, max_attempts=2), sdk_client=sdk)

        with pytest.raises(ClassifierError, match="did not respond"):
            await client.complete("sys", "user", model="haiku")

        assert sdk.messages.calls == 2

    @pytest.mark.asyncio
    async def test_deadline_then_success(self):
        attempts = []

        async def flaky(**kwargs):
            attempts.append(kwargs)
            if len(attempts) == 1:
                await asyncio.sleep(10)
            return sdk_response("[]")

        sdk = FakeSDK()
        sdk.messages.create = flaky
        client = ClassifierClient(fast_client_config(call_timeout_seconds=0.01), sdk_client=sdk)

        response = await client.complete("sys", "user", model="haiku")

        assert response.text == "[]"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_no_text_block_is_an_error(self):
        client = make_client([sdk_response(None)])

        with pytest.raises(ClassifierError, match="No text response"):
            await client.complete("sys", "user", model="haiku")

    @pytest.mark.asyncio
    async def test_request_shape(self):
        client = make_client(["[]"], temperature=0.0)

        await client.complete("the system", "the user", model="claude-custom-model", max_tokens=123)

        (call,) = client.sdk_client.messages.calls
        assert call == {
            "model": "claude-custom-model",
            "max_tokens": 123,
            "temperature": 0.0,
            "system": "the system",
            "messages": [{"role": "user", "content": "the user"}],
        }


class TestModelsAndPricing:
    def test_aliases_per_provider(self):
        assert resolve_model("sonnet", "anthropic") == "claude-sonnet-4-20250514"
        assert resolve_model("haiku", "vertex") == "claude-haiku-4-5@20251001"
        assert resolve_model("sonnet", "bedrock") == "anthropic.claude-sonnet-4-20250514-v1:0"
        assert resolve_model("some-full-id", "vertex") == "some-full-id"

    def test_pricing(self):
        assert get_model_pricing("haiku").input_per_million == 1.0
        assert get_model_pricing("anthropic.claude-haiku-4-5-20251001-v1:0", "bedrock").output_per_million == 5.0
        assert get_model_pricing("unknown-model").output_per_million == 15.0

    def test_estimate_cost(self):
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=200_000)

        assert estimate_cost(usage, "haiku") == pytest.approx(1.0 + 1.0)
        assert estimate_cost(usage, "sonnet") == pytest.approx(3.0 + 3.0)


class TestCreateSdkClient:
    def test_missing_api_key_is_setup_error(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("ANTHROPIC_AUTH_TOKEN", raising=False)
        config = fast_client_config(api_key=None)
        config.api_key = None

        with pytest.raises(ClassifierError, match="API key required"):
            create_sdk_client(config)

    def test_vertex_requires_project(self):
        config = fast_client_config(provider="vertex")
        config.vertex_project_id = None

        with pytest.raises(ClassifierError, match="ANTHROPIC_VERTEX_PROJECT_ID"):
            create_sdk_client(config)

    def test_anthropic_client_disables_sdk_retries(self):
        sdk = create_sdk_client(fast_client_config(api_key="sk-test"))

        assert isinstance(sdk, anthropic.AsyncAnthropic)
        assert sdk.max_retries == 0

    def test_ensure_ready_surfaces_missing_credentials(self):
        config = fast_client_config()
        config.api_key = None
        client = ClassifierClient(config)

        with pytest.raises(ClassifierError):
            client.ensure_ready()
