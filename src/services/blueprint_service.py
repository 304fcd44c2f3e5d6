"""
ユーザーブループリントサービス

ユーザー所有のブループリントの作成・更新・取得を提供します。
ブロック構成の変更は新しいバージョンとして追記されます。
"""

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.logging import get_logger
from src.models.blueprint import UserBlueprint, UserBlueprintVersion
from src.services.catalog import BlueprintDefinition, CatalogSnapshot, get_catalog
from src.services.error_handler import (
    ApplicationError,
    ErrorCode,
    ForbiddenError,
    RecordNotFoundError,
)

logger = get_logger(__name__)


class BlueprintService:
    """ユーザーブループリントサービス"""

    def __init__(self, session: AsyncSession, snapshot: CatalogSnapshot | None = None):
        self.session = session
        self._snapshot = snapshot

    @property
    def snapshot(self) -> CatalogSnapshot:
        if self._snapshot is None:
            self._snapshot = get_catalog().snapshot
        return self._snapshot

    def _validate_blocks(self, blocks: list[str]) -> None:
        if not blocks:
            raise ApplicationError(ErrorCode.VALIDATION_ERROR, "ブロックを 1 つ以上指定してください")
        missing = self.snapshot.missing_blocks(blocks)
        if missing:
            raise ApplicationError(
                ErrorCode.VALIDATION_ERROR,
                f"Unknown blocks: {', '.join(missing)}",
                details={"missing_blocks": missing},
            )

    async def create(
        self,
        user_id: str,
        name: str,
        category: str,
        blocks: list[str],
        constraints: list[str] | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        compatible_profiles: list[str] | None = None,
    ) -> tuple[UserBlueprint, UserBlueprintVersion]:
        """ブループリントとバージョン 1 を作成

        Raises:
            ApplicationError: ブロックがカタログに存在しない場合
        """
        self._validate_blocks(blocks)

        blueprint = UserBlueprint(
            user_id=user_id,
            name=name,
            description=description,
            category=category,
            tags=tags,
            compatible_profiles=compatible_profiles,
        )
        self.session.add(blueprint)
        await self.session.flush()

        version = UserBlueprintVersion(
            user_blueprint_id=blueprint.id,
            version=1,
            blocks=list(blocks),
            constraints=list(constraints or []),
        )
        self.session.add(version)
        await self.session.commit()
        await self.session.refresh(blueprint)
        await self.session.refresh(version)

        logger.info(f"User blueprint created: {blueprint.id}", extra={"user_id": user_id})
        return blueprint, version

    async def get(self, blueprint_id: str, user_id: str) -> UserBlueprint:
        """所有者のブループリントを取得

        Raises:
            RecordNotFoundError: 存在しない場合
            ForbiddenError: 他ユーザーのブループリントの場合
        """
        blueprint = await self.session.get(UserBlueprint, blueprint_id)
        if blueprint is None:
            raise RecordNotFoundError(
                "Blueprint not found", details={"blueprint_id": blueprint_id}
            )
        if blueprint.user_id != user_id:
            raise ForbiddenError(
                "Blueprint belongs to another user", details={"blueprint_id": blueprint_id}
            )
        return blueprint

    async def list_for_user(self, user_id: str, include_inactive: bool = False) -> list[UserBlueprint]:
        stmt = select(UserBlueprint).where(UserBlueprint.user_id == user_id)
        if not include_inactive:
            stmt = stmt.where(UserBlueprint.is_active.is_(True))
        result = await self.session.execute(stmt.order_by(UserBlueprint.updated_at.desc()))
        return list(result.scalars().all())

    async def get_latest_version(self, blueprint_id: str) -> UserBlueprintVersion:
        stmt = (
            select(UserBlueprintVersion)
            .where(UserBlueprintVersion.user_blueprint_id == blueprint_id)
            .order_by(UserBlueprintVersion.version.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        version = result.scalar_one_or_none()
        if version is None:
            raise RecordNotFoundError(
                "Blueprint has no versions", details={"blueprint_id": blueprint_id}
            )
        return version

    async def update(
        self,
        blueprint_id: str,
        user_id: str,
        name: str | None = None,
        description: str | None = None,
        category: str | None = None,
        tags: list[str] | None = None,
        compatible_profiles: list[str] | None = None,
        is_active: bool | None = None,
        blocks: list[str] | None = None,
        constraints: list[str] | None = None,
    ) -> tuple[UserBlueprint, UserBlueprintVersion]:
        """ブループリントを更新

        ヘッダー項目はその場で更新し、blocks / constraints の指定があれば
        新しいバージョンを追記する。
        """
        blueprint = await self.get(blueprint_id, user_id)
        latest = await self.get_latest_version(blueprint_id)

        if name is not None:
            blueprint.name = name
        if description is not None:
            blueprint.description = description
        if category is not None:
            blueprint.category = category
        if tags is not None:
            blueprint.tags = tags
        if compatible_profiles is not None:
            blueprint.compatible_profiles = compatible_profiles
        if is_active is not None:
            blueprint.is_active = is_active

        if blocks is not None or constraints is not None:
            new_blocks = list(blocks) if blocks is not None else list(latest.blocks)
            self._validate_blocks(new_blocks)

            count = await self.session.scalar(
                select(func.count())
                .select_from(UserBlueprintVersion)
                .where(UserBlueprintVersion.user_blueprint_id == blueprint_id)
            )
            latest = UserBlueprintVersion(
                user_blueprint_id=blueprint_id,
                version=(count or 0) + 1,
                blocks=new_blocks,
                constraints=list(constraints) if constraints is not None else list(latest.constraints),
            )
            self.session.add(latest)

        await self.session.commit()
        await self.session.refresh(blueprint)
        await self.session.refresh(latest)

        logger.info(
            f"User blueprint updated: {blueprint_id} (v{latest.version})", extra={"user_id": user_id}
        )
        return blueprint, latest

    async def to_definition(self, blueprint_id: str, user_id: str) -> BlueprintDefinition:
        """最新バージョンからコンパイル用のブループリント定義を作成"""
        blueprint = await self.get(blueprint_id, user_id)
        latest = await self.get_latest_version(blueprint_id)
        return BlueprintDefinition(
            id=blueprint.id,
            name=blueprint.name,
            category=blueprint.category,
            description=blueprint.description or "",
            blocks=list(latest.blocks),
            constraints=list(latest.constraints or []),
        )
