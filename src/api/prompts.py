"""
プロンプトコンパイル API エンドポイント
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import get_db_session, get_template_catalog, get_user_id, to_http_exception
from src.config.logging import get_logger
from src.models.prompt import GeneratedPrompt, PromptVersion
from src.services.catalog import TemplateCatalog
from src.services.error_handler import ApplicationError, ErrorCode
from src.services.prompt_compiler import CharacterPack, CompileMetadata, CompileRequest
from src.services.prompt_service import PromptService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Prompts"])


class CompilePromptInput(BaseModel):
    """プロンプトコンパイル入力スキーマ"""

    profile_id: str = Field(min_length=1, description="プロファイル ID")
    blueprint_id: str | None = Field(default=None, description="システムブループリント ID")
    user_blueprint_id: str | None = Field(
        default=None, description="ユーザーブループリント ID（blueprint_id より優先）"
    )
    filters: dict[str, str] = Field(default_factory=dict, description="フィルター選択")
    seed: str | None = Field(default=None, description="シード（省略時は毎回異なる）")
    subject: str = Field(default="", description="被写体")
    context: str = Field(default="", description="コンテキスト")
    items: str = Field(default="", description="アイテム")
    environment: str = Field(default="", description="環境")
    restrictions: str = Field(default="", description="除外したい要素")
    target_platform: str | None = Field(default=None, description="生成先プラットフォーム")

    # LoRA
    lora_version_id: str | None = Field(default=None, description="適用する LoRA バージョン ID")
    lora_weight: float | None = Field(default=None, ge=0.0, le=2.0, description="LoRA の重み")
    use_active_lora: bool = Field(default=False, description="アクティブ LoRA を適用するか")


class CompilePromptResponse(BaseModel):
    """プロンプトコンパイルレスポンススキーマ"""

    prompt_id: str = Field(description="履歴 ID")
    compiled_prompt: str = Field(description="コンパイル済みプロンプト")
    metadata: CompileMetadata = Field(description="メタデータ")
    score: int = Field(description="品質スコア (0-100)")
    warnings: list[str] = Field(description="警告")
    seed: str = Field(description="シード")
    lora_version_id: str | None = Field(description="適用した LoRA バージョン ID")
    character_pack: CharacterPack | None = Field(description="Character Pack")


class PromptHistoryResponse(BaseModel):
    """プロンプト履歴レスポンススキーマ"""

    prompt_id: str
    profile_id: str
    blueprint_id: str | None
    user_blueprint_id: str | None
    lora_version_id: str | None
    seed: str
    input: dict[str, Any]
    applied_filters: dict[str, Any] | None
    compiled_prompt: str
    metadata: dict[str, Any]
    score: int
    warnings: list[str]
    character_pack: dict[str, Any] | None
    created_at: str


class PromptVersionResponse(BaseModel):
    """プロンプトバージョンレスポンススキーマ"""

    version_id: str
    prompt_id: str
    version: int
    compiled_prompt: str
    metadata: dict[str, Any]
    created_at: str


def _history_response(record: GeneratedPrompt) -> PromptHistoryResponse:
    return PromptHistoryResponse(
        prompt_id=record.id,
        profile_id=record.profile_id,
        blueprint_id=record.blueprint_id,
        user_blueprint_id=record.user_blueprint_id,
        lora_version_id=record.lora_version_id,
        seed=record.seed,
        input=record.input,
        applied_filters=record.applied_filters,
        compiled_prompt=record.compiled_prompt,
        metadata=record.prompt_metadata,
        score=record.score,
        warnings=record.warnings or [],
        character_pack=record.character_pack,
        created_at=record.created_at.isoformat(),
    )


def _version_response(version: PromptVersion) -> PromptVersionResponse:
    return PromptVersionResponse(
        version_id=version.id,
        prompt_id=version.generated_prompt_id,
        version=version.version,
        compiled_prompt=version.compiled_prompt,
        metadata=version.version_metadata,
        created_at=version.created_at.isoformat(),
    )


@router.post("/prompts/compile", response_model=CompilePromptResponse)
async def compile_prompt(
    data: CompilePromptInput,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
    catalog: TemplateCatalog = Depends(get_template_catalog),
):
    """プロンプトをコンパイルして履歴に保存

    ポリシー違反は警告として返し、エラーにはしない。

    Raises:
        HTTPException: プロファイル・ブループリントが存在しない場合など
    """
    try:
        logger.info(
            f"POST /prompts/compile: profile={data.profile_id}, "
            f"blueprint={data.user_blueprint_id or data.blueprint_id}",
            extra={"user_id": user_id},
        )

        blueprint_id = data.user_blueprint_id or data.blueprint_id
        if not blueprint_id:
            raise ApplicationError(
                ErrorCode.VALIDATION_ERROR, "blueprint_id または user_blueprint_id が必要です"
            )

        request = CompileRequest(
            profile_id=data.profile_id,
            blueprint_id=blueprint_id,
            filters=data.filters,
            seed=data.seed,
            subject=data.subject,
            context=data.context,
            items=data.items,
            environment=data.environment,
            restrictions=data.restrictions,
            target_platform=data.target_platform,
        )

        service = PromptService(session, snapshot=catalog.snapshot)
        record, result = await service.compile_and_store(
            request,
            user_id,
            user_blueprint_id=data.user_blueprint_id,
            lora_version_id=data.lora_version_id,
            lora_weight=data.lora_weight,
            use_active_lora=data.use_active_lora,
        )

        return CompilePromptResponse(
            prompt_id=record.id,
            compiled_prompt=result.compiled_prompt,
            metadata=result.metadata,
            score=result.score,
            warnings=result.warnings,
            seed=result.seed,
            lora_version_id=record.lora_version_id,
            character_pack=result.character_pack,
        )

    except ApplicationError as e:
        raise to_http_exception(e) from e
    except Exception as e:
        logger.exception(f"Error compiling prompt: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.get("/prompts/history", response_model=list[PromptHistoryResponse])
async def list_prompt_history(
    limit: int | None = Query(None, ge=1, description="最大件数"),
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """ユーザーのプロンプト履歴を新しい順に取得"""
    service = PromptService(session)
    records = await service.list_history(user_id, limit)
    return [_history_response(record) for record in records]


@router.get("/prompts/{prompt_id}", response_model=PromptHistoryResponse)
async def get_prompt(
    prompt_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """プロンプト履歴を取得"""
    try:
        service = PromptService(session)
        return _history_response(await service.get_prompt(prompt_id, user_id))
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.post("/prompts/{prompt_id}/versions", response_model=PromptVersionResponse, status_code=201)
async def save_prompt_version(
    prompt_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """現在のコンパイル結果をバージョンとして保存"""
    try:
        logger.info(f"POST /prompts/{prompt_id}/versions", extra={"user_id": user_id})
        service = PromptService(session)
        return _version_response(await service.save_version(prompt_id, user_id))
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/prompts/{prompt_id}/versions", response_model=list[PromptVersionResponse])
async def list_prompt_versions(
    prompt_id: str,
    user_id: str = Depends(get_user_id),
    session: AsyncSession = Depends(get_db_session),
):
    """保存済みバージョン一覧を取得"""
    try:
        service = PromptService(session)
        versions = await service.list_versions(prompt_id, user_id)
        return [_version_response(version) for version in versions]
    except ApplicationError as e:
        raise to_http_exception(e) from e
