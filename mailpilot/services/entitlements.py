from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import asyncio
import logging
import time
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailpilot.core.config import get_settings
from mailpilot.domain.models import PlanFeature, TenantFeatureOverride, TenantPlanAssignment
from mailpilot.services.gates import (
    AI_EMAIL_BODY_COMPOSITION,
    AI_EMAIL_ENABLED,
    AI_EMAIL_SUBJECT_GENERATION,
    AI_EMAIL_TEMPLATE_OPTIMIZATION,
)


logger = logging.getLogger(__name__)

DEFAULT_PLAN_ID = "free"

FEATURE_KEYS = {
    AI_EMAIL_ENABLED,
    AI_EMAIL_SUBJECT_GENERATION,
    AI_EMAIL_BODY_COMPOSITION,
    AI_EMAIL_TEMPLATE_OPTIMIZATION,
}


@dataclass(frozen=True)
class FeatureEntitlement:
    # Capture feature flags plus optional configuration payloads.
    enabled: bool
    config: dict[str, Any] | None = None


_entitlement_cache: dict[str, tuple[float, dict[str, FeatureEntitlement]]] = {}
_entitlement_cache_lock = asyncio.Lock()


async def get_effective_entitlements(
    session: AsyncSession,
    tenant_id: str,
) -> dict[str, FeatureEntitlement]:
    # Return effective entitlements with a short-lived cache to reduce DB load.
    now = time.time()
    cached = _entitlement_cache.get(tenant_id)
    if cached and cached[0] > now:
        return cached[1]

    entitlements = await _compute_entitlements(session, tenant_id)
    ttl = get_settings().entitlement_cache_ttl_s
    async with _entitlement_cache_lock:
        _entitlement_cache[tenant_id] = (now + ttl, entitlements)
    return entitlements


def invalidate_entitlements_cache(tenant_id: str) -> None:
    # Drop cached entitlements after plan/override updates.
    _entitlement_cache.pop(tenant_id, None)


def reset_entitlements_cache() -> None:
    # Clear cached entitlements for deterministic tests.
    _entitlement_cache.clear()


async def is_feature_enabled(session: AsyncSession, tenant_id: str, feature_key: str) -> bool:
    entitlements = await get_effective_entitlements(session, tenant_id)
    return entitlements.get(feature_key, FeatureEntitlement(False, None)).enabled


async def get_active_plan_assignment(
    session: AsyncSession, tenant_id: str
) -> TenantPlanAssignment | None:
    # Select the active plan assignment for the tenant if present.
    now = datetime.now(timezone.utc)
    result = await session.execute(
        select(TenantPlanAssignment)
        .where(
            TenantPlanAssignment.tenant_id == tenant_id,
            TenantPlanAssignment.is_active.is_(True),
            TenantPlanAssignment.effective_from <= now,
            or_(TenantPlanAssignment.effective_to.is_(None), TenantPlanAssignment.effective_to > now),
        )
        .order_by(TenantPlanAssignment.effective_from.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _compute_entitlements(
    session: AsyncSession, tenant_id: str
) -> dict[str, FeatureEntitlement]:
    plan_id = await _resolve_plan_id(session, tenant_id)
    plan_features = await _load_plan_features(session, plan_id)
    overrides = await _load_overrides(session, tenant_id)

    entitlements: dict[str, FeatureEntitlement] = {
        key: FeatureEntitlement(False, None) for key in FEATURE_KEYS
    }

    for feature in plan_features:
        entitlements[feature.feature_key] = FeatureEntitlement(
            enabled=bool(feature.enabled),
            config=feature.config_json,
        )

    for override in overrides:
        current = entitlements.get(override.feature_key, FeatureEntitlement(False, None))
        enabled = current.enabled if override.enabled is None else bool(override.enabled)
        config = current.config if override.config_json is None else override.config_json
        entitlements[override.feature_key] = FeatureEntitlement(enabled=enabled, config=config)

    return entitlements


async def _resolve_plan_id(session: AsyncSession, tenant_id: str) -> str:
    assignment = await get_active_plan_assignment(session, tenant_id)
    if assignment is None:
        return DEFAULT_PLAN_ID
    return assignment.plan_id


async def _load_plan_features(session: AsyncSession, plan_id: str) -> list[PlanFeature]:
    result = await session.execute(select(PlanFeature).where(PlanFeature.plan_id == plan_id))
    features = list(result.scalars().all())
    if features or plan_id == DEFAULT_PLAN_ID:
        return features
    # Fall back to the default plan when assignments reference missing plan ids.
    logger.warning("plan_features_missing plan_id=%s", plan_id)
    result = await session.execute(select(PlanFeature).where(PlanFeature.plan_id == DEFAULT_PLAN_ID))
    return list(result.scalars().all())


async def _load_overrides(session: AsyncSession, tenant_id: str) -> list[TenantFeatureOverride]:
    result = await session.execute(
        select(TenantFeatureOverride).where(TenantFeatureOverride.tenant_id == tenant_id)
    )
    return list(result.scalars().all())
