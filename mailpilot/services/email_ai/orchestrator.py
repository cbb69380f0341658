from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from mailpilot.core.errors import (
    GenerationTimeoutError,
    MailPilotError,
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    SafetyViolationError,
    ValidationError,
)
from mailpilot.domain.schemas import (
    BodyContext,
    Capability,
    EmailBodyGeneration,
    EmailSubjectGeneration,
    EmailTemplateOptimization,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    PersonalizationContext,
    PersonalizedEmail,
    SubjectContext,
    TemplateContext,
)
from mailpilot.services.constraints import validate_constraints
from mailpilot.services.email_ai.context import PipelineContext
from mailpilot.services.email_ai.prompts import (
    build_body_prompt,
    build_personalization_prompt,
    build_subject_prompt,
    build_template_prompt,
)
from mailpilot.services.gates import (
    AI_EMAIL_BODY_COMPOSITION,
    AI_EMAIL_ENABLED,
    AI_EMAIL_SUBJECT_GENERATION,
    AI_EMAIL_TEMPLATE_OPTIMIZATION,
    Actor,
    enforce_gates,
)
from mailpilot.services.personalization import parse_personalized_output, score_personalization
from mailpilot.services.resilience import with_retry
from mailpilot.services.safety import SafetyAssessment
from mailpilot.services.telemetry import record_generation


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Configuration and credential failures do not heal between attempts.
PERMANENT_PROVIDER_ERRORS = (ProviderConfigError, ProviderAuthError)


@dataclass(frozen=True)
class CapabilityProfile:
    capability: Capability
    feature: str
    gate_key: str
    temperature: float
    max_tokens: int


SUBJECT_PROFILE = CapabilityProfile(
    Capability.SUBJECT, "email_subject_generation", AI_EMAIL_SUBJECT_GENERATION, 0.3, 100
)
BODY_PROFILE = CapabilityProfile(
    Capability.BODY, "email_body_composition", AI_EMAIL_BODY_COMPOSITION, 0.4, 2000
)
TEMPLATE_PROFILE = CapabilityProfile(
    Capability.TEMPLATE, "email_template_optimization", AI_EMAIL_TEMPLATE_OPTIMIZATION, 0.2, 1500
)
# Personalization is gated by the family key alone.
PERSONALIZE_PROFILE = CapabilityProfile(
    Capability.PERSONALIZE, "email_personalization", AI_EMAIL_ENABLED, 0.3, 1000
)


class EmailAIOrchestrator:
    """
    Runs the gated generation pipeline for each email capability.

    Every call goes through gates, the provider (inside the retry executor), safety and
    constraint checks, and leaves exactly one audit record whether it succeeds or not.
    """

    def __init__(self, context: PipelineContext) -> None:
        self._ctx = context

    @property
    def context(self) -> PipelineContext:
        return self._ctx

    async def generate(
        self, request: GenerationRequest, *, cancel_event: asyncio.Event | None = None
    ) -> GenerationResult:
        capability = request.capability
        if capability == Capability.SUBJECT:
            return await self.generate_email_subject(request.context, request.options, cancel_event=cancel_event)
        if capability == Capability.BODY:
            return await self.generate_email_body(request.context, request.options, cancel_event=cancel_event)
        if capability == Capability.TEMPLATE:
            return await self.optimize_email_template(request.context, request.options, cancel_event=cancel_event)
        return await self.generate_personalized_email(request.context, request.options, cancel_event=cancel_event)

    async def generate_email_subject(
        self,
        context: SubjectContext,
        options: GenerationOptions,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EmailSubjectGeneration:
        settings = self._ctx.settings
        model = settings.ai_email_subject_model
        prompt = build_subject_prompt(context, max_length=settings.ai_email_max_subject_length)

        async def _produce() -> EmailSubjectGeneration:
            generation = await self._structured(
                SUBJECT_PROFILE,
                options,
                model=model,
                schema=EmailSubjectGeneration,
                prompt=prompt,
                validation_context={"max_subject_length": settings.ai_email_max_subject_length},
                cancel_event=cancel_event,
            )
            self._require_safe(generation.subject, field="subject", label="Generated subject")
            alternatives = self._safe_alternatives(generation.alternatives, options)
            return generation.model_copy(update={"alternatives": alternatives})

        return await self._run(SUBJECT_PROFILE, options, model=model, prompt=prompt, produce=_produce)

    async def generate_email_body(
        self,
        context: BodyContext,
        options: GenerationOptions,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EmailBodyGeneration:
        settings = self._ctx.settings
        model = settings.ai_email_body_model
        constraints = context.constraints
        max_length = min(
            constraints.max_length or settings.ai_email_max_body_length,
            settings.ai_email_max_body_length,
        )
        prompt = build_body_prompt(context, max_length=max_length)

        async def _produce() -> EmailBodyGeneration:
            generation = await self._structured(
                BODY_PROFILE,
                options,
                model=model,
                schema=EmailBodyGeneration,
                prompt=prompt,
                validation_context={"max_body_length": settings.ai_email_max_body_length},
                cancel_event=cancel_event,
            )
            assessment = self._require_safe(generation.body, field="body", label="Generated email body")
            validate_constraints(
                generation.body,
                constraints.must_include,
                constraints.must_avoid,
                max_length=constraints.max_length,
                label="Generated email body",
            )
            # The classifier is authoritative over the model's self-reported score.
            return generation.model_copy(update={"safety_score": assessment.score})

        return await self._run(BODY_PROFILE, options, model=model, prompt=prompt, produce=_produce)

    async def optimize_email_template(
        self,
        context: TemplateContext,
        options: GenerationOptions,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> EmailTemplateOptimization:
        model = self._ctx.settings.ai_email_template_model
        prompt = build_template_prompt(context)

        async def _produce() -> EmailTemplateOptimization:
            optimization = await self._structured(
                TEMPLATE_PROFILE,
                options,
                model=model,
                schema=EmailTemplateOptimization,
                prompt=prompt,
                cancel_event=cancel_event,
            )
            self._require_safe(optimization.template, field="template", label="Optimized template")
            return optimization

        return await self._run(TEMPLATE_PROFILE, options, model=model, prompt=prompt, produce=_produce)

    async def generate_personalized_email(
        self,
        context: PersonalizationContext,
        options: GenerationOptions,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> PersonalizedEmail:
        settings = self._ctx.settings
        model = settings.ai_email_model
        prompt = build_personalization_prompt(context)
        max_subject_length = settings.ai_email_max_subject_length

        async def _attempt() -> tuple[str, str]:
            text = await self._ctx.llm.generate_text(
                model=model,
                prompt=prompt,
                temperature=self._temperature(PERSONALIZE_PROFILE, options),
                max_tokens=self._max_tokens(PERSONALIZE_PROFILE, options),
            )
            subject, body = parse_personalized_output(text, context.template.subject)
            # Free-text output gets the same shape checks as structured output.
            if not body:
                raise ValidationError("Personalized output contained no body", payload=text)
            if len(subject) > max_subject_length:
                raise ValidationError(
                    f"Personalized subject exceeds {max_subject_length} characters", payload=text
                )
            return subject, body

        async def _produce() -> PersonalizedEmail:
            subject, body = await self._retry(
                _attempt, PERSONALIZE_PROFILE, options, cancel_event=cancel_event
            )
            self._require_safe(subject, field="subject", label="Personalized subject")
            self._require_safe(body, field="body", label="Personalized email body")
            return PersonalizedEmail(
                subject=subject,
                body=body,
                personalization_score=score_personalization(body, context.recipient),
            )

        return await self._run(PERSONALIZE_PROFILE, options, model=model, prompt=prompt, produce=_produce)

    async def _run(
        self,
        profile: CapabilityProfile,
        options: GenerationOptions,
        *,
        model: str,
        prompt: str,
        produce: Callable[[], Awaitable[T]],
    ) -> T:
        start = time.monotonic()
        actor = Actor(
            tenant_id=options.tenant_id,
            user_id=options.user_id,
            custom={"feature": profile.feature},
        )
        result: T | None = None
        error: str | None = None
        success = False
        try:
            await enforce_gates(self._ctx.gates, actor, AI_EMAIL_ENABLED, profile.gate_key)
            result = await self._with_deadline(produce, options, profile)
            success = True
            return result
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            raise
        finally:
            # Also reached on task cancellation so the attempt is never left unrecorded.
            if not success and error is None:
                error = "cancelled"
            duration_ms = (time.monotonic() - start) * 1000.0
            await self._ctx.audit.record(
                tenant_id=options.tenant_id,
                user_id=options.user_id,
                capability=profile.feature,
                model=model,
                prompt=prompt,
                response=result,
                success=success,
                duration_ms=duration_ms,
                error=error,
            )
            record_generation(capability=profile.capability.value, duration_ms=duration_ms, success=success)
            if success:
                logger.info(
                    "ai_email_generation_complete capability=%s tenant_id=%s duration_ms=%.1f",
                    profile.capability.value,
                    options.tenant_id,
                    duration_ms,
                )
            else:
                logger.warning(
                    "ai_email_generation_failed capability=%s tenant_id=%s duration_ms=%.1f error=%s",
                    profile.capability.value,
                    options.tenant_id,
                    duration_ms,
                    error,
                )

    async def _with_deadline(
        self,
        produce: Callable[[], Awaitable[T]],
        options: GenerationOptions,
        profile: CapabilityProfile,
    ) -> T:
        if options.timeout_ms is None:
            return await produce()
        try:
            return await asyncio.wait_for(produce(), timeout=options.timeout_ms / 1000.0)
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"{profile.feature} did not complete within {options.timeout_ms}ms"
            ) from exc

    async def _structured(
        self,
        profile: CapabilityProfile,
        options: GenerationOptions,
        *,
        model: str,
        schema: type[T],
        prompt: str,
        validation_context: dict[str, Any] | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        async def _attempt() -> T:
            return await self._ctx.llm.generate_structured(
                model=model,
                schema=schema,
                prompt=prompt,
                temperature=self._temperature(profile, options),
                max_tokens=self._max_tokens(profile, options),
                validation_context=validation_context,
            )

        return await self._retry(_attempt, profile, options, cancel_event=cancel_event)

    async def _retry(
        self,
        operation: Callable[[], Awaitable[T]],
        profile: CapabilityProfile,
        options: GenerationOptions,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> T:
        settings = self._ctx.settings
        max_retries = settings.ai_email_max_retries if options.retries is None else options.retries
        try:
            return await with_retry(
                operation,
                max_retries=max_retries,
                base_delay_ms=settings.ai_email_retry_base_delay_ms,
                jitter_ms=settings.ai_email_retry_jitter_ms,
                retryable=self._is_retryable,
                cancel_event=cancel_event,
                label=profile.feature,
            )
        except MailPilotError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"Model provider failed for {profile.feature} after {max_retries + 1} attempt(s): {exc}"
            ) from exc

    def _is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, PERMANENT_PROVIDER_ERRORS):
            return False
        if isinstance(exc, ValidationError):
            return self._ctx.settings.ai_email_retry_on_validation_error
        return True

    def _require_safe(self, text: str, *, field: str, label: str) -> SafetyAssessment:
        assessment = self._ctx.safety.assess(text)
        if not assessment.safe:
            raise SafetyViolationError(
                f"{label} failed safety check: {', '.join(assessment.issues)}",
                field=field,
                assessment=assessment,
            )
        return assessment

    def _safe_alternatives(self, alternatives: list[str], options: GenerationOptions) -> list[str]:
        kept: list[str] = []
        for alternative in alternatives:
            assessment = self._ctx.safety.assess(alternative)
            if assessment.safe:
                kept.append(alternative)
                continue
            logger.warning(
                "subject_alternative_dropped tenant_id=%s score=%.3f issues=%s",
                options.tenant_id,
                assessment.score,
                "; ".join(assessment.issues),
            )
        return kept

    @staticmethod
    def _temperature(profile: CapabilityProfile, options: GenerationOptions) -> float:
        return profile.temperature if options.temperature is None else options.temperature

    @staticmethod
    def _max_tokens(profile: CapabilityProfile, options: GenerationOptions) -> int:
        return profile.max_tokens if options.max_tokens is None else options.max_tokens
