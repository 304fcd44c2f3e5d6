"""
テンプレートカタログ API エンドポイント
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.deps import get_template_catalog, to_http_exception
from src.config.logging import get_logger
from src.services.catalog import CatalogSnapshot, TemplateCatalog
from src.services.error_handler import ApplicationError

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Catalog"])


class CatalogResponse(BaseModel):
    """カタログレスポンススキーマ"""

    profiles: list[dict[str, Any]] = Field(description="プロファイル")
    blueprints: list[dict[str, Any]] = Field(description="システムブループリント")
    blocks: list[dict[str, Any]] = Field(description="ブロック")
    filters: list[dict[str, Any]] = Field(description="フィルター")
    base_models: list[dict[str, Any]] = Field(description="学習用ベースモデル")


class CatalogRefreshResponse(BaseModel):
    """カタログ再読み込みレスポンススキーマ"""

    profiles: int
    blueprints: int
    blocks: int
    filters: int
    base_models: int


def _catalog_response(snapshot: CatalogSnapshot) -> CatalogResponse:
    return CatalogResponse(
        profiles=[p.model_dump(mode="json") for p in snapshot.profiles.values()],
        blueprints=[b.model_dump(mode="json") for b in snapshot.blueprints.values()],
        blocks=[b.model_dump(mode="json") for b in snapshot.blocks.values()],
        filters=[f.model_dump(mode="json", by_alias=True) for f in snapshot.filters.values()],
        base_models=[m.model_dump(mode="json") for m in snapshot.base_models.values()],
    )


@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog_snapshot(catalog: TemplateCatalog = Depends(get_template_catalog)):
    """現在のカタログを取得"""
    try:
        return _catalog_response(catalog.snapshot)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.post("/catalog/refresh", response_model=CatalogRefreshResponse)
async def refresh_catalog(catalog: TemplateCatalog = Depends(get_template_catalog)):
    """カタログを再読み込み

    検証に失敗した場合は既存のスナップショットを維持してエラーを返す。
    """
    try:
        logger.info("POST /catalog/refresh")
        snapshot = catalog.refresh()
        return CatalogRefreshResponse(
            profiles=len(snapshot.profiles),
            blueprints=len(snapshot.blueprints),
            blocks=len(snapshot.blocks),
            filters=len(snapshot.filters),
            base_models=len(snapshot.base_models),
        )
    except ApplicationError as e:
        raise to_http_exception(e) from e
