from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from redis.asyncio import Redis

from mailpilot.core.config import get_settings
from mailpilot.core.errors import GenerationCancelledError
from mailpilot.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

T = TypeVar("T")


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_resilience_redis() -> Redis | None:
    # Reuse a shared Redis connection for kill switch coordination.
    settings = get_settings()
    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None
    global _redis_pool, _redis_loop
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            try:
                _redis_pool = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
                _redis_loop = current_loop
            except Exception as exc:  # noqa: BLE001 - Redis might be unavailable in dev
                logger.warning("resilience_redis_unavailable", exc_info=exc)
                return None
    return _redis_pool


@dataclass(frozen=True)
class RetryPolicy:
    # Centralize generation retry behavior so operators can tune it from settings.
    max_retries: int
    base_delay_ms: int
    jitter_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        max_retries=settings.ai_email_max_retries,
        base_delay_ms=settings.ai_email_retry_base_delay_ms,
        jitter_ms=settings.ai_email_retry_jitter_ms,
    )


def backoff_delay_ms(attempt: int, base_delay_ms: int, jitter_ms: int) -> float:
    # Exponential growth on the attempt index plus an additive random jitter.
    return base_delay_ms * (2 ** attempt) + random.uniform(0, max(jitter_ms, 0))


async def _pause(
    delay_s: float,
    sleep: Callable[[float], Awaitable[None]],
    cancel_event: asyncio.Event | None,
) -> None:
    # The injected sleep always runs; a cancel event only races it.
    if cancel_event is None:
        await sleep(delay_s)
        return
    sleeper = asyncio.ensure_future(sleep(delay_s))
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, waiter):
            task.cancel()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    base_delay_ms: int | None = None,
    *,
    jitter_ms: int | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    cancel_event: asyncio.Event | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` up to ``max_retries + 1`` times with exponential backoff.

    The executor does not classify errors: every failure is retried unless the caller
    passes a ``retryable`` predicate. After the last attempt the final error is
    re-raised unchanged. Setting ``cancel_event`` stops further attempts and cuts the
    pending backoff sleep short; the last attempt's error is raised, or
    ``GenerationCancelledError`` when no attempt ran.
    """
    policy = default_retry_policy()
    max_retries = policy.max_retries if max_retries is None else max(max_retries, 0)
    base_delay_ms = policy.base_delay_ms if base_delay_ms is None else base_delay_ms
    jitter_ms = policy.jitter_ms if jitter_ms is None else jitter_ms

    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        if cancel_event is not None and cancel_event.is_set():
            break
        try:
            return await operation()
        except Exception as exc:  # noqa: BLE001 - callers decide what is permanent
            last_error = exc
            if attempt >= max_retries or (retryable is not None and not retryable(exc)):
                raise

        delay_s = backoff_delay_ms(attempt, base_delay_ms, jitter_ms) / 1000.0
        # Track retry volume so operators can detect retry storms.
        increment_counter("ai_email_retries_total")
        logger.info(
            "retry_scheduled label=%s attempt=%s delay_ms=%.0f error=%s",
            label,
            attempt + 1,
            delay_s * 1000.0,
            type(last_error).__name__,
        )
        await _pause(delay_s, sleep, cancel_event)

    logger.info("retry_cancelled label=%s", label)
    if last_error is not None:
        raise last_error
    raise GenerationCancelledError(f"{label} cancelled before the first attempt")
