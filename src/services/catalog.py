"""
テンプレートカタログ

Profile / Blueprint / Block / Filter の静的データを保持します。
読み込み時にキーの整合性を検証し、不正なカタログはスナップショットとして採用しません。
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.config.logging import get_logger
from src.config.settings import get_settings
from src.services.error_handler import CatalogLoadError

logger = get_logger(__name__)


class BlockType(str, Enum):
    """ブロックの構造上の役割"""

    STYLE = "style"
    CAMERA = "camera"
    LAYOUT = "layout"
    CONSTRAINT = "constraint"
    POSTFX = "postfx"
    SUBJECT = "subject"


class ProfileDefinition(BaseModel):
    """レンダリング先プラットフォームのポリシー"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    base_prompt: str
    preferred_order: list[BlockType] = Field(default_factory=list)
    forbidden_patterns: list[str] = Field(default_factory=list)
    max_length: int = Field(default=2000, ge=1)
    capabilities: list[str] = Field(default_factory=list)


class BlueprintDefinition(BaseModel):
    """ブロックの順序付き組み合わせ"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    category: str
    description: str = ""
    blocks: list[str]
    constraints: list[str] = Field(default_factory=list)
    preview_description: str | None = None


class BlockDefinition(BaseModel):
    """再利用可能なテンプレート断片"""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    label: str
    template: str
    type: BlockType


class FilterSchema(BaseModel):
    """フィルターの入力スキーマ"""

    model_config = ConfigDict(frozen=True)

    type: str = "select"
    options: list[str] = Field(default_factory=list)
    min: float | None = None
    max: float | None = None


class FilterDefinition(BaseModel):
    """ユーザーが選択する軸と、値ごとの挿入テキスト"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str = Field(min_length=1)
    label: str
    value_schema: FilterSchema = Field(alias="schema")
    effect: dict[str, str]
    is_premium: bool = False


class BaseModelDefinition(BaseModel):
    """LoRA 学習のベースモデル"""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    lora_format: str = "safetensors"
    default_resolution: int = 1024
    is_active: bool = True


class CatalogData(BaseModel):
    """カタログ全体（JSON ファイルの形式）"""

    profiles: list[ProfileDefinition] = Field(default_factory=list)
    blueprints: list[BlueprintDefinition] = Field(default_factory=list)
    blocks: list[BlockDefinition] = Field(default_factory=list)
    filters: list[FilterDefinition] = Field(default_factory=list)
    base_models: list[BaseModelDefinition] = Field(default_factory=list)


def _index(items: list, attr: str, kind: str) -> dict:
    result = {}
    for item in items:
        key = getattr(item, attr)
        if key in result:
            raise CatalogLoadError(f"Duplicate {kind}: {key}", details={"kind": kind, "key": key})
        result[key] = item
    return result


@dataclass(frozen=True)
class CatalogSnapshot:
    """検証済みカタログの不変スナップショット"""

    profiles: dict[str, ProfileDefinition] = field(default_factory=dict)
    blueprints: dict[str, BlueprintDefinition] = field(default_factory=dict)
    blocks: dict[str, BlockDefinition] = field(default_factory=dict)
    filters: dict[str, FilterDefinition] = field(default_factory=dict)
    base_models: dict[str, BaseModelDefinition] = field(default_factory=dict)

    @classmethod
    def build(cls, data: CatalogData) -> "CatalogSnapshot":
        """CatalogData を検証してスナップショットを作成

        Raises:
            CatalogLoadError: 重複キー、未定義ブロック参照、スキーマ外のフィルター値
        """
        snapshot = cls(
            profiles=_index(data.profiles, "id", "profile"),
            blueprints=_index(data.blueprints, "id", "blueprint"),
            blocks=_index(data.blocks, "key", "block"),
            filters=_index(data.filters, "key", "filter"),
            base_models=_index(data.base_models, "name", "base model"),
        )

        for blueprint in data.blueprints:
            missing = [key for key in blueprint.blocks if key not in snapshot.blocks]
            if missing:
                raise CatalogLoadError(
                    f"Blueprint {blueprint.id} references unknown blocks: {', '.join(missing)}",
                    details={"blueprint": blueprint.id, "missing": missing},
                )

        for filter_def in data.filters:
            options = filter_def.value_schema.options
            unknown = [value for value in filter_def.effect if options and value not in options]
            if unknown:
                raise CatalogLoadError(
                    f"Filter {filter_def.key} has effects outside its options: {', '.join(unknown)}",
                    details={"filter": filter_def.key, "values": unknown},
                )

        return snapshot

    def missing_blocks(self, keys: list[str]) -> list[str]:
        """カタログに存在しないブロックキーを返す"""
        return [key for key in keys if key not in self.blocks]

    def active_base_models(self) -> list[BaseModelDefinition]:
        return [model for model in self.base_models.values() if model.is_active]


def load_catalog_data(path: Path | None = None) -> CatalogData:
    """カタログデータを読み込み

    Args:
        path: JSON ファイルパス（None の場合は組み込みプリセット）

    Raises:
        CatalogLoadError: ファイルが読めない、またはスキーマ不一致
    """
    if path is None:
        from src.services import presets

        return CatalogData(
            profiles=presets.DEFAULT_PROFILES,
            blueprints=presets.DEFAULT_BLUEPRINTS,
            blocks=presets.DEFAULT_BLOCKS,
            filters=presets.DEFAULT_FILTERS,
            base_models=presets.DEFAULT_BASE_MODELS,
        )

    try:
        return CatalogData.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise CatalogLoadError(f"Failed to read catalog file: {path}", original_error=e) from e
    except ValidationError as e:
        raise CatalogLoadError(
            f"Invalid catalog file: {path}", details={"errors": e.errors()}, original_error=e
        ) from e


class TemplateCatalog:
    """カタログのスナップショットを保持し、再読み込みを提供"""

    def __init__(self, source_path: Path | None = None):
        self.source_path = source_path
        self._snapshot: CatalogSnapshot | None = None

    @property
    def snapshot(self) -> CatalogSnapshot:
        """現在のスナップショット（未読み込みなら読み込む）"""
        if self._snapshot is None:
            self.refresh()
        return self._snapshot

    def refresh(self) -> CatalogSnapshot:
        """カタログを再読み込み

        検証に失敗した場合は例外を送出し、既存スナップショットを維持します。
        """
        snapshot = CatalogSnapshot.build(load_catalog_data(self.source_path))
        self._snapshot = snapshot
        logger.info(
            f"Catalog loaded: {len(snapshot.profiles)} profiles, "
            f"{len(snapshot.blueprints)} blueprints, {len(snapshot.blocks)} blocks, "
            f"{len(snapshot.filters)} filters"
        )
        return snapshot


@lru_cache()
def get_catalog() -> TemplateCatalog:
    """プロセス共通のカタログを取得（シングルトン）"""
    return TemplateCatalog(get_settings().catalog_path)
