"""Integration test configuration"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from src.api.deps import get_storage_provider, get_worker_client
from src.config.settings import get_settings
from src.main import create_app
from src.services.catalog import get_catalog
from src.services.signing import get_signer


def _clear_caches():
    for cached in (get_settings, get_signer, get_worker_client, get_storage_provider, get_catalog):
        cached.cache_clear()


@pytest.fixture
def worker_client():
    """モックワーカークライアント"""
    client = MagicMock()
    client.is_configured = True
    client.dispatch = AsyncMock(return_value="ext-123")
    client.close = AsyncMock()
    return client


@pytest.fixture
def client(tmp_path, monkeypatch, worker_client):
    """Test client for FastAPI app (ファイル SQLite)"""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/test.db")
    monkeypatch.setenv("WORKER_HMAC_SECRET", "test-secret")
    monkeypatch.setenv("WORKER_URL", "")
    monkeypatch.setenv("ENVIRONMENT", "test")
    _clear_caches()

    app = create_app()
    app.dependency_overrides[get_worker_client] = lambda: worker_client

    with TestClient(app) as test_client:
        yield test_client

    _clear_caches()
