from __future__ import annotations

from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mailpilot.core.errors import ValidationError


SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_structured(
    schema: type[SchemaT],
    raw: str | dict[str, Any],
    validation_context: dict[str, Any] | None = None,
) -> SchemaT:
    # Normalize every provider's schema mismatch into the pipeline ValidationError.
    try:
        if isinstance(raw, str):
            return schema.model_validate_json(raw, context=validation_context)
        return schema.model_validate(raw, context=validation_context)
    except PydanticValidationError as exc:
        excerpt = raw if isinstance(raw, str) else repr(raw)
        raise ValidationError(
            f"Model output did not match {schema.__name__}: {exc.error_count()} error(s)",
            payload=excerpt,
        ) from exc


class LLMProvider(Protocol):
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
        ...

    async def generate_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_tokens: int | None = None,
    ) -> str:
        ...
