from __future__ import annotations

import json
import logging
import time
from typing import Any

from mailpilot.core.config import get_settings
from mailpilot.core.errors import ProviderAuthError, ProviderConfigError, ProviderError
from mailpilot.providers.llm.base import SchemaT, parse_structured
from mailpilot.services.telemetry import record_external_call

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    def __init__(self) -> None:
        self._settings = get_settings()
        self._initialized = False

    def _validate_config(self) -> tuple[str, str]:
        # Fail fast to avoid confusing downstream SDK errors.
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if missing:
            raise ProviderConfigError(
                f"Vertex config missing: set {', '.join(missing)} in .env."
            )
        return project, location

    async def _generate(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int | None,
        response_mime_type: str | None,
    ) -> str:
        project, location = self._validate_config()

        try:
            from vertexai import init
            from vertexai.generative_models import GenerationConfig, GenerativeModel
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
            from google.api_core.exceptions import PermissionDenied, Unauthenticated
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install google-cloud-aiplatform."
            ) from exc

        start = time.monotonic()
        try:
            if not self._initialized:
                init(project=project, location=location)
                self._initialized = True
            config_kwargs: dict[str, Any] = {"temperature": temperature}
            if max_tokens:
                config_kwargs["max_output_tokens"] = max_tokens
            if response_mime_type:
                config_kwargs["response_mime_type"] = response_mime_type
            logger.info("vertex_generate_start model=%s", model)
            response = await GenerativeModel(model).generate_content_async(
                prompt,
                generation_config=GenerationConfig(**config_kwargs),
            )
        except (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated) as exc:
            record_external_call(
                integration="llm.vertex", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            logger.warning("vertex_generate_auth_error model=%s", model)
            raise ProviderAuthError(
                "Vertex auth error: run `gcloud auth application-default login`."
            ) from exc
        except Exception as exc:
            record_external_call(
                integration="llm.vertex", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            logger.error("vertex_generate_error model=%s", model)
            raise ProviderError("Vertex AI request failed. Check credentials and model access.") from exc

        record_external_call(
            integration="llm.vertex", latency_ms=(time.monotonic() - start) * 1000.0, success=True
        )
        text = getattr(response, "text", None)
        if not text:
            raise ProviderError("Vertex AI returned an empty response.")
        return text

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
        # Gemini has no strict schema mode here; the schema travels in the prompt.
        schema_prompt = (
            f"{prompt}\n\nRespond with a single JSON object matching this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema())}"
        )
        text = await self._generate(
            model=model,
            prompt=schema_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            response_mime_type="application/json",
        )
        return parse_structured(schema, text, validation_context)

    async def generate_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        return await self._generate(
            model=model,
            prompt=prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            response_mime_type=None,
        )
