from __future__ import annotations

import pytest

from mailpilot.core.config import get_settings
from mailpilot.persistence.db import build_engine, build_session_factory, create_all
from mailpilot.services.entitlements import reset_entitlements_cache
from mailpilot.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def isolate_process_state():
    # Settings, counters and entitlement caches are process-wide; reset them per test.
    get_settings.cache_clear()
    reset_telemetry()
    reset_entitlements_cache()
    yield
    get_settings.cache_clear()
    reset_telemetry()
    reset_entitlements_cache()


@pytest.fixture
async def session_factory(tmp_path):
    # File-backed SQLite keeps the schema visible across sessions of one test.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'mailpilot.db'}")
    await create_all(engine)
    yield build_session_factory(engine)
    await engine.dispose()
