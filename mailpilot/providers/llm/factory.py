from __future__ import annotations

from mailpilot.core.config import get_settings
from mailpilot.core.errors import ProviderConfigError
from mailpilot.providers.llm.fake import FakeLLMProvider
from mailpilot.providers.llm.gemini_vertex import GeminiVertexProvider
from mailpilot.providers.llm.openai_chat import OpenAIChatProvider


def get_llm_provider():
    settings = get_settings()
    provider = (settings.llm_provider or "openai").lower()

    if provider == "fake":
        return FakeLLMProvider()
    if provider == "openai":
        return OpenAIChatProvider()
    if provider == "vertex":
        return GeminiVertexProvider()

    raise ProviderConfigError(f"Unsupported LLM provider: {provider}")
