"""
API 共通の依存関係
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.logging import get_logger
from src.database.connection import get_session
from src.services.catalog import TemplateCatalog, get_catalog
from src.services.error_handler import ApplicationError
from src.services.signing import PayloadSigner
from src.services.signing import get_signer as _get_signer
from src.services.storage_provider import LocalStorageProvider, StorageProvider
from src.services.worker_client import TrainingWorkerClient

logger = get_logger(__name__)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """データベースセッションを取得"""
    async for session in get_session():
        yield session


async def get_user_id(x_user_id: str = Header(default="anonymous", max_length=64)) -> str:
    """リクエストヘッダーからユーザー ID を取得

    認証は上流のゲートウェイが担い、ここでは X-User-Id をそのまま信頼する。
    """
    return x_user_id


@lru_cache()
def get_worker_client() -> TrainingWorkerClient:
    """プロセス共通のワーカークライアント"""
    return TrainingWorkerClient()


@lru_cache()
def get_storage_provider() -> StorageProvider:
    return LocalStorageProvider()


def get_signer() -> PayloadSigner:
    return _get_signer()


def get_template_catalog() -> TemplateCatalog:
    return get_catalog()


def to_http_exception(e: ApplicationError) -> HTTPException:
    """ApplicationError をエラーコードに応じた HTTPException に変換"""
    if e.status_code >= 500:
        logger.error(f"Application error: {e.code.value} - {e.message}")
    else:
        logger.warning(f"Application error: {e.code.value} - {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.message)
