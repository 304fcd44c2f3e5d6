"""Test configuration"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from src.database.connection import Base
# Import all models to ensure they are registered
from src.models.blueprint import UserBlueprint, UserBlueprintVersion
from src.models.lora import LoraDataset, LoraJob, LoraModel, LoraVersion, UserActiveLora
from src.models.prompt import GeneratedPrompt, PromptVersion
from src.services.catalog import CatalogSnapshot, load_catalog_data
from src.services.signing import PayloadSigner


@pytest.fixture
async def test_db():
    """テスト用データベースセッション"""
    # インメモリ SQLite
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def snapshot():
    """組み込みプリセットのカタログ"""
    return CatalogSnapshot.build(load_catalog_data())


@pytest.fixture
def signer():
    """テスト用の署名インスタンス"""
    return PayloadSigner("test-secret")
