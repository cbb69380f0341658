from __future__ import annotations

import json
import types
from datetime import datetime, timedelta, timezone

import pytest

from mailpilot.core.config import get_settings
from mailpilot.domain.models import Plan, PlanFeature, TenantFeatureOverride, TenantPlanAssignment
from mailpilot.services import rollouts
from mailpilot.services.gates import AI_EMAIL_ENABLED, AI_EMAIL_TEMPLATE_OPTIMIZATION, KILL_AI_EMAIL_SYSTEM
import scripts.ai_email_gates as ai_email_gates


class StubRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}

    async def get(self, key: str):
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self.values[key] = value


def _patch_redis(monkeypatch, redis) -> None:
    async def _stub_redis():
        return redis

    monkeypatch.setattr(rollouts, "get_resilience_redis", _stub_redis)


def test_parser_requires_boolean_active_flag() -> None:
    parser = ai_email_gates._build_parser()
    args = parser.parse_args(["kill-switch", "--active", "on"])
    assert args.name == KILL_AI_EMAIL_SYSTEM
    assert args.active is True
    with pytest.raises(SystemExit):
        parser.parse_args(["kill-switch", "--active", "maybe"])


@pytest.mark.asyncio
async def test_kill_switch_command_persists_and_reports(monkeypatch, capsys) -> None:
    redis = StubRedis()
    _patch_redis(monkeypatch, redis)

    args = types.SimpleNamespace(command="kill-switch", name=KILL_AI_EMAIL_SYSTEM, active=True)
    assert await ai_email_gates._run(args) == 0

    assert redis.values["mailpilot:rollout:kill:kill_ai_email_system"] == "true"
    output = json.loads(capsys.readouterr().out)
    assert output == {"kill_switches": {KILL_AI_EMAIL_SYSTEM: True}}


@pytest.mark.asyncio
async def test_kill_switch_command_fails_without_redis(monkeypatch, capsys) -> None:
    monkeypatch.setenv("KILL_AI_EMAIL", "false")
    get_settings.cache_clear()
    _patch_redis(monkeypatch, None)

    args = types.SimpleNamespace(command="kill-switch", name=KILL_AI_EMAIL_SYSTEM, active=True)
    assert await ai_email_gates._run(args) == 2
    assert "KILL_SWITCH_NOT_PERSISTED" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_show_command_prints_settings_default(monkeypatch, capsys) -> None:
    monkeypatch.setenv("KILL_AI_EMAIL", "true")
    get_settings.cache_clear()
    _patch_redis(monkeypatch, None)

    assert await ai_email_gates._run(types.SimpleNamespace(command="show")) == 0
    assert json.loads(capsys.readouterr().out)["kill_switches"][KILL_AI_EMAIL_SYSTEM] is True


@pytest.mark.asyncio
async def test_entitlements_command_includes_override_config(monkeypatch, capsys, session_factory) -> None:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        session.add(Plan(id="growth", name="Growth", is_active=True))
        session.add(PlanFeature(plan_id="growth", feature_key=AI_EMAIL_ENABLED, enabled=True))
        session.add(
            TenantPlanAssignment(
                tenant_id="t-growth",
                plan_id="growth",
                effective_from=now - timedelta(minutes=5),
                effective_to=None,
                is_active=True,
            )
        )
        session.add(
            TenantFeatureOverride(
                tenant_id="t-growth",
                feature_key=AI_EMAIL_TEMPLATE_OPTIMIZATION,
                enabled=True,
                config_json={"max_variants": 3},
            )
        )
        await session.commit()
    monkeypatch.setattr(ai_email_gates, "SessionLocal", session_factory)

    args = types.SimpleNamespace(command="entitlements", tenant="t-growth")
    assert await ai_email_gates._run(args) == 0

    report = json.loads(capsys.readouterr().out)
    assert report["tenant_id"] == "t-growth"
    assert report["entitlements"][AI_EMAIL_ENABLED] == {"enabled": True, "config": None}
    assert report["entitlements"][AI_EMAIL_TEMPLATE_OPTIMIZATION] == {
        "enabled": True,
        "config": {"max_variants": 3},
    }
