from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator


# Defaults mirror Settings; validation context carries operator overrides.
MAX_SUBJECT_LENGTH = 200
MAX_BODY_LENGTH = 10000

SubjectTone = Literal["professional", "friendly", "urgent", "formal"]
BodyTone = Literal["professional", "friendly", "formal", "casual", "urgent"]


class Capability(str, Enum):
    SUBJECT = "subject"
    BODY = "body"
    TEMPLATE = "template"
    PERSONALIZE = "personalize"


def _context_limit(info: ValidationInfo, key: str, default: int) -> int:
    context = info.context or {}
    value = context.get(key)
    return int(value) if value is not None else default


class GenerationOptions(BaseModel):
    tenant_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=0)
    # Optional per-call deadline covering every attempt and backoff sleep.
    timeout_ms: int | None = Field(default=None, gt=0)


class SubjectContext(BaseModel):
    purpose: str = Field(min_length=1)
    audience: str = Field(min_length=1)
    tone: SubjectTone = "professional"
    keywords: list[str] = Field(default_factory=list)
    existing_content: str | None = None


class BodyConstraints(BaseModel):
    max_length: int | None = Field(default=None, gt=0)
    include_disclaimer: bool = False
    must_include: list[str] = Field(default_factory=list)
    must_avoid: list[str] = Field(default_factory=list)


class BodyContext(BaseModel):
    subject: str
    purpose: str = Field(min_length=1)
    audience: str = Field(min_length=1)
    tone: BodyTone = "professional"
    key_points: list[str] = Field(default_factory=list)
    call_to_action: str | None = None
    constraints: BodyConstraints = Field(default_factory=BodyConstraints)


class TargetMetrics(BaseModel):
    open_rate: float | None = None
    click_rate: float | None = None
    conversion_rate: float | None = None


class TemplateContext(BaseModel):
    html: str
    text: str | None = None
    purpose: str = Field(min_length=1)
    target_metrics: TargetMetrics = Field(default_factory=TargetMetrics)


class RecipientProfile(BaseModel):
    email: str
    name: str | None = None
    company: str | None = None
    industry: str | None = None
    interests: list[str] = Field(default_factory=list)
    previous_interactions: list[str] = Field(default_factory=list)


class PersonalizationTemplate(BaseModel):
    subject: str
    body_template: str
    purpose: str = Field(min_length=1)


class PersonalizationContext(BaseModel):
    recipient: RecipientProfile
    template: PersonalizationTemplate


GenerationContext = Union[SubjectContext, BodyContext, TemplateContext, PersonalizationContext]

CONTEXT_TYPES: dict[Capability, type[BaseModel]] = {
    Capability.SUBJECT: SubjectContext,
    Capability.BODY: BodyContext,
    Capability.TEMPLATE: TemplateContext,
    Capability.PERSONALIZE: PersonalizationContext,
}


class GenerationRequest(BaseModel):
    capability: Capability
    context: GenerationContext
    options: GenerationOptions

    @model_validator(mode="before")
    @classmethod
    def _coerce_context(cls, data: Any) -> Any:
        # Resolve the context model from the discriminator instead of union guessing.
        if not isinstance(data, dict):
            return data
        capability = data.get("capability")
        context = data.get("context")
        try:
            context_type = CONTEXT_TYPES[Capability(capability)]
        except (ValueError, KeyError):
            return data
        if isinstance(context, dict):
            return {**data, "context": context_type.model_validate(context)}
        return data

    @model_validator(mode="after")
    def _check_context_type(self) -> "GenerationRequest":
        expected = CONTEXT_TYPES[self.capability]
        if not isinstance(self.context, expected):
            raise ValueError(
                f"context for capability '{self.capability.value}' must be {expected.__name__}"
            )
        return self


class EmailSubjectGeneration(BaseModel):
    subject: str
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    alternatives: list[str] = Field(default_factory=list, max_length=3)

    @field_validator("subject")
    @classmethod
    def _bound_subject(cls, value: str, info: ValidationInfo) -> str:
        limit = _context_limit(info, "max_subject_length", MAX_SUBJECT_LENGTH)
        if len(value) > limit:
            raise ValueError(f"subject exceeds {limit} characters")
        return value


class EmailBodyGeneration(BaseModel):
    body: str
    tone: BodyTone
    confidence: float = Field(ge=0, le=1)
    reasoning: str
    # Model-reported value is replaced by the classifier score before returning.
    safety_score: float = Field(ge=0, le=1)

    @field_validator("body")
    @classmethod
    def _bound_body(cls, value: str, info: ValidationInfo) -> str:
        limit = _context_limit(info, "max_body_length", MAX_BODY_LENGTH)
        if len(value) > limit:
            raise ValueError(f"body exceeds {limit} characters")
        return value


class TemplateStructure(BaseModel):
    header: str
    body: str
    footer: str
    cta: str | None = None


class EmailTemplateOptimization(BaseModel):
    template: str
    variables: list[str] = Field(default_factory=list)
    structure: TemplateStructure
    confidence: float = Field(ge=0, le=1)
    recommendations: list[str] = Field(default_factory=list)


class PersonalizedEmail(BaseModel):
    subject: str
    body: str
    personalization_score: float = Field(ge=0, le=1)


GenerationResult = Union[
    EmailSubjectGeneration,
    EmailBodyGeneration,
    EmailTemplateOptimization,
    PersonalizedEmail,
]
