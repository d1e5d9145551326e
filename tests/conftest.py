"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_sync.config import Settings, get_settings
from catalog_sync.infrastructure.database.models import Base
from catalog_sync.infrastructure.erp.client import ErpClient
from catalog_sync.main import create_app
from catalog_sync.services.reconciliation import SyncEngine
from catalog_sync.services.store import CatalogStore

WEBHOOK_SECRET = "s3cret"


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        erp_api_base_url="http://erp.test/api/index.php",
        erp_api_key="test-key",
        erp_webhook_secret=WEBHOOK_SECRET,
        cdn_base_url="https://cdn.test/img-cache/",
        sync_page_size=100,
        database_url_override="sqlite+aiosqlite:///:memory:",
    )


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> CatalogStore:
    return CatalogStore(session_factory)


@pytest.fixture
def erp() -> AsyncMock:
    """ERP client double answering with an empty catalog by default."""
    client = AsyncMock(spec=ErpClient)
    client.fetch_categories.return_value = []
    client.fetch_products.return_value = []
    client.fetch_product_by_id.return_value = {"photos": []}
    client.fetch_product_variants.return_value = []
    client.fetch_product_stock.return_value = {}
    client.fetch_product_categories.return_value = []
    return client


@pytest.fixture
def engine(erp: AsyncMock, store: CatalogStore, test_settings: Settings) -> SyncEngine:
    return SyncEngine(erp, store, test_settings)


@pytest.fixture
def app(test_settings: Settings) -> Any:
    """Create test application."""
    # Override settings
    def get_test_settings() -> Settings:
        return test_settings

    app = create_app()
    app.dependency_overrides[get_settings] = get_test_settings
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)


@pytest.fixture
def sample_category() -> dict:
    """Dolibarr category payload."""
    return {
        "id": "3",
        "label": "Chairs",
        "description": "Seating",
        "fk_parent": "0",
        "date_creation": 1700000000,
        "tms": 1700003600,
    }


@pytest.fixture
def sample_product() -> dict:
    """Dolibarr product payload."""
    return {
        "id": "99",
        "ref": "CHAIR-01",
        "label": "Oak chair",
        "description": "Solid oak chair",
        "note_public": "Hand finished",
        "price": "120.00",
        "status_tosell": "1",
        "barcode": "4006381333931",
        "array_options": {"options_material": "oak"},
        "date_creation": 1700000000,
        "tms": 1700003600,
    }
