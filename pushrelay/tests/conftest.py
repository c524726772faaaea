from __future__ import annotations

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from pushrelay.core.config import get_settings
from pushrelay.domain.models import Base
from pushrelay.persistence.db import build_session_factory
from pushrelay.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings are cached and telemetry is module-global; isolate both per test.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()
    reset_telemetry()


@pytest.fixture
async def session_factory(tmp_path):
    # File-backed sqlite so separate sessions see each other's commits.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pushrelay.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()
