from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mailpilot.core.config import Settings, get_settings
from mailpilot.persistence.repos import ai_requests as ai_requests_repo
from mailpilot.persistence.repos.ai_requests import RequestStats
from mailpilot.services.gates import AI_EMAIL_ENABLED, Actor, GateChecker
from mailpilot.services.telemetry import counters_snapshot, external_latency_by_integration, generation_success_rate


logger = logging.getLogger(__name__)

Status = Literal["healthy", "degraded", "unhealthy"]

_TIMEFRAMES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIMEFRAME = "24h"
RECENT_ERROR_LIMIT = 20
DEGRADED_SUCCESS_RATE = 90.0
DEGRADED_MIN_REQUESTS = 5
_HEALTH_SCORES = {"healthy": 1.0, "degraded": 0.7, "unhealthy": 0.3}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _stats_payload(stats: RequestStats) -> dict[str, Any]:
    return {
        "total_requests": stats.total,
        "successful_requests": stats.successful,
        "failed_requests": stats.failed,
        "success_rate": stats.success_rate,
        "avg_duration_ms": stats.avg_duration_ms,
    }


async def get_generation_metrics(
    session: AsyncSession,
    *,
    timeframe: str = DEFAULT_TIMEFRAME,
    tenant_id: str | None = None,
    feature: str | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Summarize generation traffic from the audit table.

    Unknown timeframes fall back to 24h. ``feature`` narrows every section to one
    capability; ``tenant_id`` scopes the report to a single tenant.
    """
    settings = settings or get_settings()
    if timeframe not in _TIMEFRAMES:
        timeframe = DEFAULT_TIMEFRAME
    end = now or _utc_now()
    start = end - _TIMEFRAMES[timeframe]
    scope = {
        "provider_id": settings.ai_email_provider_id,
        "since": start,
        "tenant_id": tenant_id,
        "feature": feature,
    }

    overall = await ai_requests_repo.summarize(session, **scope)
    by_feature = await ai_requests_repo.summarize_by(session, group_by="feature", **scope)
    by_model = await ai_requests_repo.summarize_by(session, group_by="model", **scope)
    failures = await ai_requests_repo.list_recent_failures(session, limit=RECENT_ERROR_LIMIT, **scope)

    return {
        "timeframe": timeframe,
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "overview": {
            **_stats_payload(overall),
            "min_duration_ms": overall.min_duration_ms,
            "max_duration_ms": overall.max_duration_ms,
        },
        "features": [{"name": name, **_stats_payload(stats)} for name, stats in by_feature],
        "models": [
            {
                "name": name,
                "total_requests": stats.total,
                "success_rate": stats.success_rate,
                "avg_duration_ms": stats.avg_duration_ms,
            }
            for name, stats in by_model
        ],
        "recent_errors": [
            {
                "id": row.id,
                "feature": row.feature,
                "model": row.model,
                "error": row.error,
                "timestamp": row.created_at.isoformat() if row.created_at else None,
                "tenant_id": row.tenant_id,
                "user_id": row.user_id,
            }
            for row in failures
        ],
    }


@dataclass
class SystemStatus:
    status: Status = "healthy"
    details: dict[str, Any] = field(default_factory=dict)

    def degrade(self) -> None:
        # Degraded never masks an unhealthy verdict.
        if self.status == "healthy":
            self.status = "degraded"

    @property
    def health_score(self) -> float:
        return _HEALTH_SCORES.get(self.status, 0.0)


def _environment_check(settings: Settings) -> dict[str, bool]:
    provider = (settings.llm_provider or "").lower()
    if provider == "openai":
        provider_ready = bool(settings.openai_api_key)
    elif provider == "vertex":
        provider_ready = bool(settings.google_cloud_project and settings.google_cloud_location)
    else:
        provider_ready = provider == "fake"
    return {
        "llm_provider_configured": provider_ready,
        "database_url": bool(settings.database_url),
        "redis_url": bool(settings.redis_url),
    }


async def get_system_status(
    session: AsyncSession,
    checker: GateChecker,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> SystemStatus:
    settings = settings or get_settings()
    result = SystemStatus()

    environment = _environment_check(settings)
    result.details["environment"] = environment
    missing = [key for key, ok in environment.items() if not ok]
    if missing:
        result.status = "unhealthy"
        result.details["environment_issues"] = [f"Missing {key}" for key in missing]

    try:
        await checker.initialize()
        await checker.check_gate(Actor(tenant_id="system-check", user_id="system-check"), AI_EMAIL_ENABLED)
        result.details["feature_gates"] = {"status": "connected"}
    except Exception as exc:  # noqa: BLE001 - gate backends vary; any failure degrades status
        logger.warning("ai_email_status_gate_check_failed", exc_info=exc)
        result.degrade()
        result.details["feature_gates"] = {"status": "error", "error": str(exc)}

    try:
        stats = await ai_requests_repo.summarize(
            session,
            provider_id=settings.ai_email_provider_id,
            since=(now or _utc_now()) - timedelta(hours=1),
        )
    except SQLAlchemyError as exc:
        logger.warning("ai_email_status_db_check_failed", exc_info=exc)
        result.degrade()
        result.details["database"] = {"status": "error", "error": str(exc)}
        return result

    result.details["recent_performance"] = {
        "request_count": stats.total,
        "success_rate": stats.success_rate,
    }
    # This process only; the audit table above covers every worker.
    result.details["in_process"] = {
        "generation_success_rate": generation_success_rate(3600),
        "external_latency_ms": external_latency_by_integration(3600),
        "counters": counters_snapshot(),
    }
    if stats.success_rate < DEGRADED_SUCCESS_RATE and stats.total > DEGRADED_MIN_REQUESTS:
        result.degrade()
        result.details["performance_issue"] = f"Success rate is {stats.success_rate:.1f}%"
    return result


async def check_failure_alert(
    session: AsyncSession,
    *,
    threshold: int = 5,
    window_minutes: int = 15,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> bool:
    settings = settings or get_settings()
    since = (now or _utc_now()) - timedelta(minutes=window_minutes)
    try:
        failures = await ai_requests_repo.count_failures(
            session, provider_id=settings.ai_email_provider_id, since=since
        )
    except SQLAlchemyError as exc:
        logger.error("ai_email_failure_check_failed", exc_info=exc)
        return False
    if failures >= threshold:
        logger.error(
            "ai_email_failure_alert failures=%s window_minutes=%s threshold=%s",
            failures,
            window_minutes,
            threshold,
        )
        return True
    return False
