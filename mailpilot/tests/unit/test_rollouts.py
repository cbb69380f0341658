from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mailpilot.core.config import get_settings
from mailpilot.core.errors import FamilyDisabledError
from mailpilot.domain.models import Plan, PlanFeature, TenantPlanAssignment
from mailpilot.domain.schemas import GenerationOptions, SubjectContext
from mailpilot.services import rollouts
from mailpilot.services.gates import AI_EMAIL_ENABLED, KILL_AI_EMAIL_SYSTEM, Actor
from mailpilot.tests.utils.pipeline import build_orchestrator, subject_payload


class StubRedis:
    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values = dict(values or {})

    async def get(self, key: str):
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value


def _patch_redis(monkeypatch, redis) -> None:
    async def _stub_redis():
        return redis

    monkeypatch.setattr(rollouts, "get_resilience_redis", _stub_redis)


@pytest.mark.asyncio
async def test_kill_switch_redis_overrides_env(monkeypatch) -> None:
    monkeypatch.setenv("KILL_AI_EMAIL", "false")
    get_settings.cache_clear()
    _patch_redis(monkeypatch, StubRedis({"mailpilot:rollout:kill:kill_ai_email_system": "true"}))
    assert await rollouts.resolve_kill_switch(KILL_AI_EMAIL_SYSTEM) is True


@pytest.mark.asyncio
async def test_kill_switch_falls_back_to_settings_without_redis(monkeypatch) -> None:
    monkeypatch.setenv("KILL_AI_EMAIL", "true")
    get_settings.cache_clear()
    _patch_redis(monkeypatch, None)
    assert await rollouts.get_kill_switches() == {KILL_AI_EMAIL_SYSTEM: True}


@pytest.mark.asyncio
async def test_set_kill_switches_writes_redis(monkeypatch) -> None:
    redis = StubRedis()
    _patch_redis(monkeypatch, redis)
    await rollouts.set_kill_switches({KILL_AI_EMAIL_SYSTEM: True})
    assert redis.values["mailpilot:rollout:kill:kill_ai_email_system"] == "true"
    state = await rollouts.get_rollout_state()
    assert state.kill_switches[KILL_AI_EMAIL_SYSTEM] is True


@pytest.mark.asyncio
async def test_set_kill_switches_rejects_unknown_keys(monkeypatch) -> None:
    _patch_redis(monkeypatch, StubRedis())
    with pytest.raises(KeyError):
        await rollouts.set_kill_switches({"kill_everything": True})


@pytest.mark.asyncio
async def test_gate_checker_resolves_entitlements(monkeypatch, session_factory) -> None:
    _patch_redis(monkeypatch, StubRedis())
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        session.add(Plan(id="pro", name="Pro", is_active=True))
        session.add(PlanFeature(plan_id="pro", feature_key=AI_EMAIL_ENABLED, enabled=True))
        session.add(
            TenantPlanAssignment(
                tenant_id="t-pro",
                plan_id="pro",
                effective_from=now - timedelta(minutes=5),
                effective_to=None,
                is_active=True,
            )
        )
        await session.commit()

    checker = rollouts.RolloutGateChecker(session_factory)
    await checker.initialize()
    assert await checker.check_gate(Actor("t-pro", "u1"), KILL_AI_EMAIL_SYSTEM) is False
    assert await checker.check_gate(Actor("t-pro", "u1"), AI_EMAIL_ENABLED) is True
    assert await checker.check_gate(Actor("t-free", "u1"), AI_EMAIL_ENABLED) is False


@pytest.mark.asyncio
async def test_gate_checker_fails_closed_on_db_errors(monkeypatch, tmp_path) -> None:
    from mailpilot.persistence.db import build_engine, build_session_factory

    _patch_redis(monkeypatch, StubRedis())
    # No tables were created, so every entitlement query raises.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    try:
        checker = rollouts.RolloutGateChecker(build_session_factory(engine))
        assert await checker.check_gate(Actor("t1", "u1"), AI_EMAIL_ENABLED) is False
    finally:
        await engine.dispose()


class _UnreachableSession:
    async def __aenter__(self):
        raise ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 5432)")

    async def __aexit__(self, *exc_info) -> None:
        return None


class _DroppedConnectionSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    async def execute(self, *args, **kwargs):
        raise OSError("connection reset by peer")


@pytest.mark.asyncio
@pytest.mark.parametrize("session_cls", [_UnreachableSession, _DroppedConnectionSession])
async def test_gate_checker_fails_closed_on_connection_errors(monkeypatch, session_cls) -> None:
    _patch_redis(monkeypatch, None)
    checker = rollouts.RolloutGateChecker(session_cls)
    assert await checker.check_gate(Actor("t-offline", "u1"), AI_EMAIL_ENABLED) is False


@pytest.mark.asyncio
async def test_unreachable_entitlements_block_generation(monkeypatch) -> None:
    _patch_redis(monkeypatch, None)
    orchestrator, llm, sink = build_orchestrator()
    orchestrator.context.gates = rollouts.RolloutGateChecker(_UnreachableSession)
    llm.enqueue(subject_payload())

    with pytest.raises(FamilyDisabledError):
        await orchestrator.generate_email_subject(
            SubjectContext(purpose="Launch", audience="Customers"),
            GenerationOptions(tenant_id="t-offline", user_id="u1"),
        )
    assert llm.calls == []
    assert sink.records[0].success is False
