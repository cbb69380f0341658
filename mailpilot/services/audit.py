from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import json
import logging
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailpilot.core.config import get_settings
from mailpilot.domain.models import AIRequest


logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 1000
MAX_RESPONSE_CHARS = 2000
MAX_ERROR_CHARS = 500


@dataclass(frozen=True)
class AuditRecord:
    tenant_id: str
    user_id: str
    provider_id: str
    capability: str
    model: str
    prompt: str
    response: str | None
    success: bool
    duration_ms: float
    error: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditSink(Protocol):
    async def insert(self, record: AuditRecord) -> None:
        ...


class SqlAuditSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, record: AuditRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                AIRequest(
                    id=record.id,
                    tenant_id=record.tenant_id,
                    user_id=record.user_id,
                    provider_id=record.provider_id,
                    feature=record.capability,
                    model=record.model,
                    prompt=record.prompt,
                    response=record.response,
                    success=record.success,
                    duration_ms=record.duration_ms,
                    error=record.error,
                    created_at=record.created_at,
                )
            )
            try:
                await session.commit()
            except Exception:
                await session.rollback()
                raise


class InMemoryAuditSink:
    """Append-only list sink for local development and tests."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    async def insert(self, record: AuditRecord) -> None:
        self.records.append(record)


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def serialize_response(response: Any) -> str | None:
    # Store a JSON rendering so rows stay queryable regardless of result type.
    if response is None:
        return None
    if isinstance(response, BaseModel):
        payload: Any = response.model_dump(mode="json")
    elif hasattr(response, "__dataclass_fields__"):
        payload = asdict(response)
    else:
        payload = response
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str, ensure_ascii=False)


class AuditLogger:
    """
    Records one row per orchestrator call.

    Writes are best effort: a failing sink is logged and never replaces the caller's
    own result or error.
    """

    def __init__(self, sink: AuditSink, *, provider_id: str | None = None) -> None:
        self._sink = sink
        self._provider_id = provider_id or get_settings().ai_email_provider_id

    @property
    def sink(self) -> AuditSink:
        return self._sink

    async def record(
        self,
        *,
        tenant_id: str,
        user_id: str,
        capability: str,
        model: str,
        prompt: str,
        response: Any,
        success: bool,
        duration_ms: float,
        error: str | None = None,
    ) -> AuditRecord | None:
        try:
            record = AuditRecord(
                tenant_id=tenant_id,
                user_id=user_id,
                provider_id=self._provider_id,
                capability=capability,
                model=model,
                prompt=_truncate(prompt or "", MAX_PROMPT_CHARS) or "",
                response=_truncate(serialize_response(response), MAX_RESPONSE_CHARS),
                success=success,
                duration_ms=round(duration_ms, 3),
                error=_truncate(error, MAX_ERROR_CHARS),
            )
            await self._sink.insert(record)
        except Exception as exc:  # noqa: BLE001 - audit failures must not break generation
            logger.error(
                "ai_request_audit_failed tenant_id=%s capability=%s success=%s",
                tenant_id,
                capability,
                success,
                exc_info=exc,
            )
            return None
        return record
