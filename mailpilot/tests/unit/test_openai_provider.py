from __future__ import annotations

import json

import httpx
import pytest

from mailpilot.core.errors import ProviderAuthError, ProviderConfigError, ProviderError, ValidationError
from mailpilot.domain.schemas import EmailSubjectGeneration
from mailpilot.providers.llm.openai_chat import OpenAIChatProvider
from mailpilot.services.telemetry import external_latency_by_integration


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _provider(monkeypatch, handler) -> OpenAIChatProvider:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm.test/v1")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIChatProvider(client=client)


@pytest.mark.asyncio
async def test_structured_generation_sends_schema_and_parses(monkeypatch) -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        payload = {"subject": "Quarterly update", "confidence": 0.9, "reasoning": "ok", "alternatives": []}
        return httpx.Response(200, json=_completion(json.dumps(payload)))

    provider = _provider(monkeypatch, handler)
    result = await provider.generate_structured(
        model="gpt-4o-mini",
        schema=EmailSubjectGeneration,
        prompt="Write a subject",
        temperature=0.3,
        max_tokens=100,
    )

    assert result.subject == "Quarterly update"
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["max_tokens"] == 100
    assert seen["body"]["response_format"]["json_schema"]["name"] == "EmailSubjectGeneration"
    assert "llm.openai" in external_latency_by_integration(60)
    await provider.aclose()


@pytest.mark.asyncio
async def test_schema_mismatch_raises_validation_error(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion('{"subject": "missing fields"}'))

    provider = _provider(monkeypatch, handler)
    with pytest.raises(ValidationError) as exc_info:
        await provider.generate_structured(
            model="gpt-4o-mini", schema=EmailSubjectGeneration, prompt="p", temperature=0.3
        )
    assert "missing fields" in exc_info.value.payload


@pytest.mark.asyncio
async def test_subject_length_limit_comes_from_validation_context(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        payload = {"subject": "x" * 30, "confidence": 0.5, "reasoning": "r", "alternatives": []}
        return httpx.Response(200, json=_completion(json.dumps(payload)))

    provider = _provider(monkeypatch, handler)
    with pytest.raises(ValidationError):
        await provider.generate_structured(
            model="gpt-4o-mini",
            schema=EmailSubjectGeneration,
            prompt="p",
            temperature=0.3,
            validation_context={"max_subject_length": 20},
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 403])
async def test_auth_failures(monkeypatch, status: int) -> None:
    provider = _provider(monkeypatch, lambda request: httpx.Response(status, json={}))
    with pytest.raises(ProviderAuthError) as exc_info:
        await provider.generate_text(model="gpt-4o-mini", prompt="p", temperature=0.3)
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_server_error_carries_status(monkeypatch) -> None:
    provider = _provider(monkeypatch, lambda request: httpx.Response(503, text="busy"))
    with pytest.raises(ProviderError) as exc_info:
        await provider.generate_text(model="gpt-4o-mini", prompt="p", temperature=0.3)
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(monkeypatch) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = _provider(monkeypatch, handler)
    with pytest.raises(ProviderError):
        await provider.generate_text(model="gpt-4o-mini", prompt="p", temperature=0.3)


@pytest.mark.asyncio
async def test_missing_api_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIChatProvider(client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
    with pytest.raises(ProviderConfigError):
        await provider.generate_text(model="gpt-4o-mini", prompt="p", temperature=0.3)
