"""
プロンプト履歴サービス

コンパイル結果を履歴として保存し、バージョンのスナップショットを管理します。
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.logging import get_logger
from src.config.settings import get_settings
from src.models.prompt import GeneratedPrompt, PromptVersion
from src.services.blueprint_service import BlueprintService
from src.services.catalog import CatalogSnapshot, get_catalog
from src.services.error_handler import ForbiddenError, RecordNotFoundError
from src.services.lora_service import LoraService
from src.services.prompt_compiler import ActiveAdapter, CompileRequest, CompileResult, PromptCompiler

logger = get_logger(__name__)


class PromptService:
    """プロンプト履歴サービス"""

    def __init__(
        self,
        session: AsyncSession,
        snapshot: CatalogSnapshot | None = None,
        lora_service: LoraService | None = None,
    ):
        self.session = session
        self.settings = get_settings()
        self.snapshot = snapshot or get_catalog().snapshot
        self.lora_service = lora_service or LoraService(session, snapshot=self.snapshot)
        self.blueprint_service = BlueprintService(session, snapshot=self.snapshot)

    async def _resolve_adapter(
        self,
        user_id: str,
        lora_version_id: str | None,
        lora_weight: float | None,
        use_active_lora: bool,
    ) -> ActiveAdapter | None:
        if lora_version_id:
            return await self.lora_service.resolve_adapter(user_id, lora_version_id, lora_weight)
        if use_active_lora:
            adapter = await self.lora_service.resolve_active_adapter(user_id)
            if adapter is not None and lora_weight is not None:
                adapter = ActiveAdapter(
                    version_id=adapter.version_id,
                    model_name=adapter.model_name,
                    trigger_word=adapter.trigger_word,
                    weight=lora_weight,
                    preview_images=adapter.preview_images,
                )
            return adapter
        return None

    async def compile_and_store(
        self,
        request: CompileRequest,
        user_id: str,
        user_blueprint_id: str | None = None,
        lora_version_id: str | None = None,
        lora_weight: float | None = None,
        use_active_lora: bool = False,
    ) -> tuple[GeneratedPrompt, CompileResult]:
        """プロンプトをコンパイルして履歴に保存

        Args:
            request: コンパイル入力
            user_id: ユーザー ID
            user_blueprint_id: ユーザーブループリント ID（指定時は blueprint_id より優先）
            lora_version_id: 適用する LoRA バージョン ID
            lora_weight: LoRA の重み（省略時はデフォルトまたはアクティブ設定の重み）
            use_active_lora: アクティブ LoRA を適用するか

        Returns:
            (保存した履歴, コンパイル結果)

        Raises:
            RecordNotFoundError: プロファイル・ブループリント・LoRA バージョンが存在しない場合
            PreconditionFailedError: LoRA バージョンに学習済み成果物が無い場合
        """
        compiler = PromptCompiler(self.snapshot)

        if user_blueprint_id:
            definition = await self.blueprint_service.to_definition(user_blueprint_id, user_id)
            compiler.register_user_blueprint(definition)
            request = request.model_copy(update={"blueprint_id": definition.id})

        adapter = await self._resolve_adapter(user_id, lora_version_id, lora_weight, use_active_lora)
        result = compiler.compile(request, adapter=adapter)

        record = GeneratedPrompt(
            user_id=user_id,
            profile_id=request.profile_id,
            blueprint_id=None if user_blueprint_id else request.blueprint_id,
            user_blueprint_id=user_blueprint_id,
            lora_version_id=adapter.version_id if adapter else None,
            seed=result.seed,
            input=request.model_dump(exclude={"filters", "seed"}),
            applied_filters=dict(request.filters) or None,
            compiled_prompt=result.compiled_prompt,
            prompt_metadata=result.metadata.model_dump(),
            score=result.score,
            warnings=list(result.warnings),
            character_pack=result.character_pack.model_dump() if result.character_pack else None,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)

        logger.info(
            f"Prompt stored: {record.id} (score={record.score})", extra={"user_id": user_id}
        )
        return record, result

    async def get_prompt(self, prompt_id: str, user_id: str | None = None) -> GeneratedPrompt:
        """履歴を取得

        Raises:
            RecordNotFoundError: 存在しない場合
            ForbiddenError: 他ユーザーの履歴の場合
        """
        record = await self.session.get(GeneratedPrompt, prompt_id)
        if record is None:
            raise RecordNotFoundError("Prompt not found", details={"prompt_id": prompt_id})
        if user_id is not None and record.user_id != user_id:
            raise ForbiddenError("Prompt belongs to another user", details={"prompt_id": prompt_id})
        return record

    async def list_history(self, user_id: str, limit: int | None = None) -> list[GeneratedPrompt]:
        """新しい順に履歴を取得（最大 history_page_size 件）"""
        page_size = self.settings.history_page_size
        limit = page_size if limit is None else max(1, min(limit, page_size))

        stmt = (
            select(GeneratedPrompt)
            .where(GeneratedPrompt.user_id == user_id)
            .order_by(GeneratedPrompt.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save_version(self, prompt_id: str, user_id: str) -> PromptVersion:
        """現在のコンパイル結果をバージョンとして保存（連番）"""
        record = await self.get_prompt(prompt_id, user_id)

        count = await self.session.scalar(
            select(func.count())
            .select_from(PromptVersion)
            .where(PromptVersion.generated_prompt_id == prompt_id)
        )
        version = PromptVersion(
            generated_prompt_id=record.id,
            version=(count or 0) + 1,
            compiled_prompt=record.compiled_prompt,
            version_metadata={
                **record.prompt_metadata,
                "score": record.score,
                "seed": record.seed,
                "warnings": record.warnings or [],
            },
        )
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(version)

        logger.info(f"Prompt version saved: {prompt_id} v{version.version}", extra={"user_id": user_id})
        return version

    async def list_versions(self, prompt_id: str, user_id: str) -> list[PromptVersion]:
        await self.get_prompt(prompt_id, user_id)
        stmt = (
            select(PromptVersion)
            .where(PromptVersion.generated_prompt_id == prompt_id)
            .order_by(PromptVersion.version)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
