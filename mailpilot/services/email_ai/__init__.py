from __future__ import annotations

# Re-export the email generation pipeline for centralized imports.

from mailpilot.services.email_ai.context import PipelineContext, build_pipeline_context
from mailpilot.services.email_ai.orchestrator import CapabilityProfile, EmailAIOrchestrator
from mailpilot.services.email_ai.prompts import (
    build_body_prompt,
    build_personalization_prompt,
    build_subject_prompt,
    build_template_prompt,
)

__all__ = [
    "PipelineContext",
    "build_pipeline_context",
    "CapabilityProfile",
    "EmailAIOrchestrator",
    "build_body_prompt",
    "build_personalization_prompt",
    "build_subject_prompt",
    "build_template_prompt",
]
