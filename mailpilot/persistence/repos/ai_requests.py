from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Select, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailpilot.domain.models import AIRequest


@dataclass(frozen=True)
class RequestStats:
    total: int
    successful: int
    failed: int
    avg_duration_ms: float
    min_duration_ms: float
    max_duration_ms: float

    @property
    def success_rate(self) -> float:
        # Percentage; an empty window reports 0 rather than dividing by zero.
        if self.total <= 0:
            return 0.0
        return round(self.successful / self.total * 100.0, 2)


def _stat_columns() -> list[Any]:
    successful = func.sum(case((AIRequest.success.is_(True), 1), else_=0))
    return [
        func.count(AIRequest.id),
        successful,
        func.avg(AIRequest.duration_ms),
        func.min(AIRequest.duration_ms),
        func.max(AIRequest.duration_ms),
    ]


def _scope(
    stmt: Select,
    *,
    provider_id: str,
    since: datetime,
    tenant_id: str | None,
    feature: str | None,
) -> Select:
    # Every monitoring query is bound to one provider id and a time window.
    stmt = stmt.where(AIRequest.provider_id == provider_id, AIRequest.created_at >= since)
    if tenant_id:
        stmt = stmt.where(AIRequest.tenant_id == tenant_id)
    if feature:
        stmt = stmt.where(AIRequest.feature == feature)
    return stmt


def _to_stats(total: Any, successful: Any, avg: Any, minimum: Any, maximum: Any) -> RequestStats:
    total = int(total or 0)
    successful = int(successful or 0)
    return RequestStats(
        total=total,
        successful=successful,
        failed=total - successful,
        avg_duration_ms=round(float(avg or 0.0), 2),
        min_duration_ms=float(minimum or 0.0),
        max_duration_ms=float(maximum or 0.0),
    )


async def summarize(
    session: AsyncSession,
    *,
    provider_id: str,
    since: datetime,
    tenant_id: str | None = None,
    feature: str | None = None,
) -> RequestStats:
    stmt = _scope(
        select(*_stat_columns()),
        provider_id=provider_id,
        since=since,
        tenant_id=tenant_id,
        feature=feature,
    )
    row = (await session.execute(stmt)).one()
    return _to_stats(*row)


async def summarize_by(
    session: AsyncSession,
    *,
    group_by: str,
    provider_id: str,
    since: datetime,
    tenant_id: str | None = None,
    feature: str | None = None,
) -> list[tuple[str, RequestStats]]:
    if group_by not in {"feature", "model"}:
        raise ValueError(f"Unsupported grouping: {group_by}")
    column = getattr(AIRequest, group_by)
    stmt = _scope(
        select(column, *_stat_columns()),
        provider_id=provider_id,
        since=since,
        tenant_id=tenant_id,
        feature=feature,
    )
    stmt = stmt.group_by(column).order_by(func.count(AIRequest.id).desc(), column)
    result = await session.execute(stmt)
    return [(name or "unknown", _to_stats(*values)) for name, *values in result.all()]


async def list_recent_failures(
    session: AsyncSession,
    *,
    provider_id: str,
    since: datetime,
    tenant_id: str | None = None,
    feature: str | None = None,
    limit: int = 20,
) -> list[AIRequest]:
    stmt = _scope(
        select(AIRequest),
        provider_id=provider_id,
        since=since,
        tenant_id=tenant_id,
        feature=feature,
    )
    stmt = stmt.where(AIRequest.success.is_(False))
    stmt = stmt.order_by(AIRequest.created_at.desc(), AIRequest.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_failures(
    session: AsyncSession,
    *,
    provider_id: str,
    since: datetime,
    tenant_id: str | None = None,
) -> int:
    stmt = _scope(
        select(func.count(AIRequest.id)),
        provider_id=provider_id,
        since=since,
        tenant_id=tenant_id,
        feature=None,
    ).where(AIRequest.success.is_(False))
    return int((await session.execute(stmt)).scalar_one() or 0)
