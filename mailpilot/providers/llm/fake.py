from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any

from mailpilot.providers.llm.base import SchemaT, parse_structured


@dataclass(frozen=True)
class FakeCall:
    kind: str
    model: str
    prompt: str
    temperature: float
    max_tokens: int | None


class FakeLLMProvider:
    """
    Deterministic provider for tests and offline development.

    Queue responses with ``enqueue``: dicts/strings are returned (validated against the
    requested schema), exceptions are raised. When the queue is empty the default
    payloads are used.
    """

    def __init__(
        self,
        *,
        structured_default: dict[str, Any] | None = None,
        text_default: str = "Subject: Hello\nThis is a fake response.",
    ) -> None:
        self._queue: deque[Any] = deque()
        self._structured_default = structured_default
        self._text_default = text_default
        self.calls: list[FakeCall] = []

    def enqueue(self, *responses: Any) -> None:
        self._queue.extend(responses)

    def _next(self, default: Any) -> Any:
        item = self._queue.popleft() if self._queue else default
        if isinstance(item, BaseException):
            raise item
        return item

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
        self.calls.append(FakeCall("structured", model, prompt, temperature, max_tokens))
        payload = self._next(self._structured_default)
        if payload is None:
            raise RuntimeError(f"FakeLLMProvider has no response queued for {schema.__name__}")
        return parse_structured(schema, payload, validation_context)

    async def generate_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        self.calls.append(FakeCall("text", model, prompt, temperature, max_tokens))
        return str(self._next(self._text_default))
