from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from mailpilot.core.config import get_settings
from mailpilot.core.errors import ProviderAuthError, ProviderConfigError, ProviderError, ValidationError
from mailpilot.providers.llm.base import SchemaT, parse_structured
from mailpilot.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

STRUCTURED_SYSTEM_PROMPT = "Respond strictly in JSON complying with the provided schema."


class OpenAIChatProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the OpenAI provider")
        return {"Authorization": f"Bearer {api_key}"}

    async def _complete(self, payload: dict[str, Any]) -> str:
        headers = self._headers()
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"
        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            record_external_call(
                integration="llm.openai",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("openai_request_failed model=%s", payload.get("model"), exc_info=exc)
            raise ProviderError("OpenAI request failed.") from exc

        latency_ms = (time.monotonic() - start) * 1000.0
        if response.status_code in {401, 403}:
            record_external_call(integration="llm.openai", latency_ms=latency_ms, success=False)
            raise ProviderAuthError(
                "OpenAI auth error: check OPENAI_API_KEY.", status_code=response.status_code
            )
        if response.status_code >= 400:
            record_external_call(integration="llm.openai", latency_ms=latency_ms, success=False)
            raise ProviderError(
                f"OpenAI error: {response.status_code}", status_code=response.status_code
            )

        record_external_call(integration="llm.openai", latency_ms=latency_ms, success=True)
        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError("OpenAI returned an unexpected response shape.") from exc
        if not isinstance(content, str):
            raise ProviderError("OpenAI returned an empty completion.")
        return content

    async def generate_structured(
        self,
        *,
        model: str,
        schema: type[SchemaT],
        prompt: str,
        temperature: float,
        max_tokens: int | None = None,
        validation_context: dict[str, Any] | None = None,
    ) -> SchemaT:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": STRUCTURED_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(),
                },
            },
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        content = await self._complete(payload)
        try:
            return parse_structured(schema, content, validation_context)
        except ValidationError:
            logger.warning("openai_schema_mismatch model=%s schema=%s", model, schema.__name__)
            raise

    async def generate_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return await self._complete(payload)
