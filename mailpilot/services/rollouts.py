from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailpilot.core.config import get_settings
from mailpilot.services.entitlements import is_feature_enabled
from mailpilot.services.gates import KILL_AI_EMAIL_SYSTEM, Actor
from mailpilot.services.resilience import get_resilience_redis


logger = logging.getLogger(__name__)

KILL_SWITCH_KEYS = {
    KILL_AI_EMAIL_SYSTEM: "kill_ai_email",
}


@dataclass(frozen=True)
class RolloutState:
    # Snapshot kill switch configuration for ops tooling.
    kill_switches: dict[str, bool]


def _kill_key(name: str) -> str:
    settings = get_settings()
    return f"{settings.rollout_redis_prefix}:kill:{name}"


async def _get_bool(key: str, default: bool) -> bool:
    redis = await get_resilience_redis()
    if redis is None:
        return default
    try:
        raw = await redis.get(key)
    except Exception as exc:  # noqa: BLE001 - fall back to env defaults
        logger.warning("rollout_redis_read_failed key=%s", key, exc_info=exc)
        return default
    if raw is None:
        return default
    return str(raw).lower() in {"1", "true", "yes", "on"}


async def get_kill_switches() -> dict[str, bool]:
    settings = get_settings()
    results: dict[str, bool] = {}
    for name, attr in KILL_SWITCH_KEYS.items():
        default = bool(getattr(settings, attr))
        results[name] = await _get_bool(_kill_key(name), default)
    return results


async def set_kill_switches(updates: dict[str, bool]) -> dict[str, bool]:
    unknown = set(updates) - set(KILL_SWITCH_KEYS)
    if unknown:
        raise KeyError(f"Unknown kill switch: {', '.join(sorted(unknown))}")
    redis = await get_resilience_redis()
    if redis is None:
        logger.warning("kill_switch_update_skipped reason=redis_unavailable names=%s", ",".join(updates))
        return updates
    for name, enabled in updates.items():
        await redis.set(_kill_key(name), "true" if enabled else "false")
        logger.warning("kill_switch_updated name=%s active=%s", name, enabled)
    return updates


async def get_rollout_state() -> RolloutState:
    return RolloutState(kill_switches=await get_kill_switches())


async def resolve_kill_switch(name: str) -> bool:
    # Resolve kill switches with Redis override, fallback to env defaults.
    settings = get_settings()
    attr = KILL_SWITCH_KEYS[name]
    default = bool(getattr(settings, attr))
    return await _get_bool(_kill_key(name), default)


class RolloutGateChecker:
    """
    Production gate oracle.

    Kill switches come from Redis overrides with settings defaults; every other gate key
    is a tenant entitlement resolved from the plan/override tables.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        # Open the shared Redis client up front so the first request does not pay for it.
        redis = await get_resilience_redis()
        if redis is None:
            logger.warning("gate_checker_redis_unavailable using_settings_defaults=true")
        self._initialized = True

    async def check_gate(self, actor: Actor, gate_key: str) -> bool:
        if gate_key in KILL_SWITCH_KEYS:
            return await resolve_kill_switch(gate_key)
        try:
            async with self._session_factory() as session:
                return await is_feature_enabled(session, actor.tenant_id, gate_key)
        except Exception as exc:  # noqa: BLE001 - driver and network errors vary by backend
            # Fail closed: an unreadable entitlement never grants access.
            logger.error(
                "gate_lookup_failed tenant_id=%s key=%s", actor.tenant_id, gate_key, exc_info=exc
            )
            return False
