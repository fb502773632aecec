"""
Unit tests for database engine setup.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.pool import NullPool

from frontsync.storage import db

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_session_requires_init():
    with patch.object(db, "_session_factory", None):
        with pytest.raises(RuntimeError, match="engine is not initialized"):
            async with db.get_db_session():
                pass


@pytest.mark.asyncio
async def test_init_db_pool_modes(monkeypatch):
    monkeypatch.setenv("DB_POOL_MODE", "null")
    with patch.object(db, "create_async_engine", MagicMock()) as create_engine:
        await db.init_db()
    assert create_engine.call_args.kwargs["poolclass"] is NullPool

    db.get_settings.cache_clear()
    monkeypatch.setenv("DB_POOL_MODE", "queue")
    monkeypatch.setenv("DB_POOL_SIZE", "0")
    with patch.object(db, "create_async_engine", MagicMock()) as create_engine:
        await db.init_db()
    kwargs = create_engine.call_args.kwargs
    assert kwargs["pool_size"] == 1
    assert kwargs["pool_pre_ping"] is True
    assert "poolclass" not in kwargs

    db._engine = None
    db._session_factory = None
