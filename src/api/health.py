"""
ヘルスチェックエンドポイント
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.deps import get_template_catalog, get_worker_client
from src.services.catalog import TemplateCatalog
from src.services.worker_client import TrainingWorkerClient

router = APIRouter()


class HealthResponse(BaseModel):
    """ヘルスチェックレスポンス"""

    status: str
    timestamp: datetime
    version: str = "0.1.0"
    worker_configured: bool
    catalog_profiles: int


@router.get("/health", response_model=HealthResponse)
async def health_check(
    worker_client: TrainingWorkerClient = Depends(get_worker_client),
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> HealthResponse:
    """ヘルスチェック

    Returns:
        HealthResponse: ヘルスチェック結果（ワーカー未設定はモックモード）
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        worker_configured=worker_client.is_configured,
        catalog_profiles=len(catalog.snapshot.profiles),
    )


@router.get("/")
async def root() -> dict[str, str]:
    """ルートエンドポイント

    Returns:
        dict: API情報
    """
    return {"name": "Vectra Engine API", "version": "0.1.0"}
