from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from mailpilot.core.errors import CapabilityDisabledError, FamilyDisabledError, KillSwitchError


logger = logging.getLogger(__name__)

KILL_AI_EMAIL_SYSTEM = "kill_ai_email_system"
AI_EMAIL_ENABLED = "ai_email_enabled"
AI_EMAIL_SUBJECT_GENERATION = "ai_email_subject_generation"
AI_EMAIL_BODY_COMPOSITION = "ai_email_body_composition"
AI_EMAIL_TEMPLATE_OPTIMIZATION = "ai_email_template_optimization"

AI_EMAIL_SYSTEM_NAME = "AI email system"
AI_EMAIL_FAMILY_NAME = "AI email"


@dataclass(frozen=True)
class Actor:
    # Identity descriptor handed to the gate oracle.
    tenant_id: str
    user_id: str
    custom: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GateDecision:
    # None marks checks skipped after an earlier check failed.
    kill_switch_active: bool
    family_enabled: bool | None = None
    capability_enabled: bool | None = None

    @property
    def allowed(self) -> bool:
        return (
            not self.kill_switch_active
            and self.family_enabled is True
            and self.capability_enabled is True
        )


class GateChecker(Protocol):
    async def initialize(self) -> None:
        ...

    async def check_gate(self, actor: Actor, gate_key: str) -> bool:
        ...


class StaticGateChecker:
    """In-memory gate map for local development and tests."""

    def __init__(self, gates: Mapping[str, bool] | None = None, *, default: bool = False) -> None:
        self._gates = dict(gates or {})
        self._default = default
        self.initialized = False
        self.checks: list[str] = []

    async def initialize(self) -> None:
        self.initialized = True

    async def check_gate(self, actor: Actor, gate_key: str) -> bool:
        self.checks.append(gate_key)
        return self._gates.get(gate_key, self._default)

    def set_gate(self, gate_key: str, enabled: bool) -> None:
        self._gates[gate_key] = enabled


async def evaluate_gates(
    checker: GateChecker,
    actor: Actor,
    family_key: str,
    capability_key: str,
    *,
    kill_switch_key: str = KILL_AI_EMAIL_SYSTEM,
) -> GateDecision:
    # Kill switch is always consulted first so one flag halts every tenant.
    await checker.initialize()
    if await checker.check_gate(actor, kill_switch_key):
        return GateDecision(kill_switch_active=True)
    if not await checker.check_gate(actor, family_key):
        return GateDecision(kill_switch_active=False, family_enabled=False)
    capability_enabled = await checker.check_gate(actor, capability_key)
    return GateDecision(
        kill_switch_active=False,
        family_enabled=True,
        capability_enabled=capability_enabled,
    )


async def enforce_gates(
    checker: GateChecker,
    actor: Actor,
    family_key: str,
    capability_key: str,
    *,
    kill_switch_key: str = KILL_AI_EMAIL_SYSTEM,
    system_name: str = AI_EMAIL_SYSTEM_NAME,
    family_name: str = AI_EMAIL_FAMILY_NAME,
) -> GateDecision:
    decision = await evaluate_gates(
        checker,
        actor,
        family_key,
        capability_key,
        kill_switch_key=kill_switch_key,
    )
    if decision.kill_switch_active:
        logger.warning("gate_denied reason=kill_switch tenant_id=%s key=%s", actor.tenant_id, kill_switch_key)
        raise KillSwitchError(f"{system_name} is temporarily disabled")
    if not decision.family_enabled:
        logger.info("gate_denied reason=family tenant_id=%s key=%s", actor.tenant_id, family_key)
        raise FamilyDisabledError(f"{family_name} functionality is not enabled for this user")
    if not decision.capability_enabled:
        logger.info("gate_denied reason=capability tenant_id=%s key=%s", actor.tenant_id, capability_key)
        raise CapabilityDisabledError(f"Specific feature '{capability_key}' is not enabled")
    return decision
