"""
ユーザーブループリント API エンドポイント
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_template_catalog, get_user_id, to_http_exception
from src.config.logging import get_logger
from src.models.blueprint import UserBlueprint, UserBlueprintVersion
from src.services.blueprint_service import BlueprintService
from src.services.catalog import TemplateCatalog
from src.services.error_handler import ApplicationError

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Blueprints"])


class BlueprintInput(BaseModel):
    """ユーザーブループリント作成スキーマ"""

    name: str = Field(min_length=1, max_length=255, description="名前")
    category: str = Field(min_length=1, max_length=100, description="カテゴリ")
    description: str | None = Field(default=None, description="説明")
    tags: list[str] | None = Field(default=None, description="タグ")
    compatible_profiles: list[str] | None = Field(default=None, description="対応プロファイル")
    blocks: list[str] = Field(min_length=1, description="ブロックキー（順序付き）")
    constraints: list[str] = Field(default_factory=list, description="制約")


class BlueprintUpdateInput(BaseModel):
    """ユーザーブループリント更新スキーマ（指定した項目のみ更新）"""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    tags: list[str] | None = None
    compatible_profiles: list[str] | None = None
    is_active: bool | None = None
    blocks: list[str] | None = Field(default=None, description="指定時は新バージョンを作成")
    constraints: list[str] | None = Field(default=None, description="指定時は新バージョンを作成")


class BlueprintResponse(BaseModel):
    """ユーザーブループリントレスポンススキーマ"""

    blueprint_id: str
    name: str
    category: str
    description: str | None
    tags: list[str] | None
    compatible_profiles: list[str] | None
    is_active: bool
    version: int | None = Field(default=None, description="最新バージョン")
    blocks: list[str] | None = None
    constraints: list[str] | None = None
    created_at: str
    updated_at: str


def _blueprint_response(
    blueprint: UserBlueprint, version: UserBlueprintVersion | None = None
) -> BlueprintResponse:
    return BlueprintResponse(
        blueprint_id=blueprint.id,
        name=blueprint.name,
        category=blueprint.category,
        description=blueprint.description,
        tags=blueprint.tags,
        compatible_profiles=blueprint.compatible_profiles,
        is_active=blueprint.is_active,
        version=version.version if version else None,
        blocks=list(version.blocks) if version else None,
        constraints=list(version.constraints or []) if version else None,
        created_at=blueprint.created_at.isoformat(),
        updated_at=blueprint.updated_at.isoformat(),
    )


@router.get("/blueprints", response_model=list[BlueprintResponse])
async def list_blueprints(
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """ユーザーのブループリント一覧を取得"""
    service = BlueprintService(session)
    return [_blueprint_response(b) for b in await service.list_for_user(user_id)]


@router.post("/blueprints", response_model=BlueprintResponse, status_code=201)
async def create_blueprint(
    data: BlueprintInput,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
    catalog: TemplateCatalog = Depends(get_template_catalog),
):
    """ユーザーブループリントを作成

    Raises:
        HTTPException: カタログに存在しないブロックを含む場合
    """
    try:
        logger.info(f"POST /blueprints: name={data.name}", extra={"user_id": user_id})
        service = BlueprintService(session, snapshot=catalog.snapshot)
        blueprint, version = await service.create(
            user_id,
            name=data.name,
            category=data.category,
            blocks=data.blocks,
            constraints=data.constraints,
            description=data.description,
            tags=data.tags,
            compatible_profiles=data.compatible_profiles,
        )
        return _blueprint_response(blueprint, version)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/blueprints/{blueprint_id}", response_model=BlueprintResponse)
async def get_blueprint(
    blueprint_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """ユーザーブループリントを最新バージョンとともに取得"""
    try:
        service = BlueprintService(session)
        blueprint = await service.get(blueprint_id, user_id)
        version = await service.get_latest_version(blueprint_id)
        return _blueprint_response(blueprint, version)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.patch("/blueprints/{blueprint_id}", response_model=BlueprintResponse)
async def update_blueprint(
    blueprint_id: str,
    data: BlueprintUpdateInput,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
    catalog: TemplateCatalog = Depends(get_template_catalog),
):
    """ユーザーブループリントを更新"""
    try:
        logger.info(f"PATCH /blueprints/{blueprint_id}", extra={"user_id": user_id})
        service = BlueprintService(session, snapshot=catalog.snapshot)
        blueprint, version = await service.update(
            blueprint_id, user_id, **data.model_dump(exclude_unset=True)
        )
        return _blueprint_response(blueprint, version)
    except ApplicationError as e:
        raise to_http_exception(e) from e
