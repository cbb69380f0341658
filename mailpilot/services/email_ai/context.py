from __future__ import annotations

from dataclasses import dataclass, field

from mailpilot.core.config import Settings, get_settings
from mailpilot.providers.llm.base import LLMProvider
from mailpilot.services.audit import AuditLogger
from mailpilot.services.gates import GateChecker
from mailpilot.services.safety import HeuristicSafetyClassifier, SafetyClassifier


def _default_classifier() -> SafetyClassifier:
    return HeuristicSafetyClassifier(threshold=get_settings().ai_email_safety_threshold)


@dataclass
class PipelineContext:
    # Every collaborator the orchestrator touches; swap any of them for a fake in tests.
    gates: GateChecker
    llm: LLMProvider
    audit: AuditLogger
    safety: SafetyClassifier = field(default_factory=_default_classifier)
    settings: Settings = field(default_factory=get_settings)


def build_pipeline_context(settings: Settings | None = None) -> PipelineContext:
    """Wire the production collaborators from settings; build once per process."""
    # Deferred so importing the orchestrator does not create a DB engine.
    from mailpilot.persistence.db import SessionLocal
    from mailpilot.providers.llm.factory import get_llm_provider
    from mailpilot.services.audit import SqlAuditSink
    from mailpilot.services.rollouts import RolloutGateChecker

    settings = settings or get_settings()
    return PipelineContext(
        gates=RolloutGateChecker(SessionLocal),
        llm=get_llm_provider(),
        audit=AuditLogger(SqlAuditSink(SessionLocal), provider_id=settings.ai_email_provider_id),
        safety=HeuristicSafetyClassifier(threshold=settings.ai_email_safety_threshold),
        settings=settings,
    )
