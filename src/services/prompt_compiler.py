"""
プロンプトコンパイラ

Profile / Blueprint / Block / Filter のスナップショットと入力フィールドから、
スコアと警告付きの最終プロンプトを組み立てます。

コンパイラはリクエストごとに生成して使い捨てます。アクティブな LoRA は
compile() の引数として渡し、インスタンスには保持しません。
"""

import hashlib
import json
import re
import secrets
import time
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field

from src.config.logging import get_logger
from src.services.catalog import (
    BlockDefinition,
    BlockType,
    BlueprintDefinition,
    CatalogSnapshot,
    ProfileDefinition,
)
from src.services.error_handler import RecordNotFoundError
from src.services.presets import SYSTEM_PROMPT_CORE

logger = get_logger(__name__)

# LoRA 構文をそのまま解釈できるプラットフォーム（部分一致）
ADAPTER_CAPABLE_PLATFORMS = ("flux", "sdxl", "stable_diffusion", "sd1.5", "sd_1.5")

# 品質キーワード（いずれかを含むと加点）
QUALITY_KEYWORDS = ("lighting", "camera", "composition", "texture", "atmosphere", "detail")

# 意味的に矛盾するフィルターの組み合わせ
FILTER_CONFLICTS: tuple[tuple[tuple[str, str], tuple[str, str], str], ...] = (
    (
        ("ugc_realism", "phone"),
        ("camera_bias", "dslr"),
        "Filter conflict: UGC phone style may conflict with DSLR camera bias",
    ),
    (
        ("aesthetic_intensity", "extreme"),
        ("ugc_realism", "ugc"),
        "Filter conflict: Extreme aesthetic intensity may override UGC realism",
    ),
    (
        ("temporal_style", "y2k"),
        ("camera_bias", "modern"),
        "Filter conflict: Y2K temporal style may conflict with modern camera",
    ),
)

# 入力フィールドで置換するプレースホルダー
INPUT_PLACEHOLDERS = ("subject", "items", "environment")

_PLACEHOLDER_RE = re.compile(r"\{[A-Za-z0-9_]+\}")
_EDGE_SEPARATORS_RE = re.compile(r"^[\s,]+|[\s,]+$")


class CompileRequest(BaseModel):
    """コンパイル入力"""

    profile_id: str = Field(min_length=1)
    blueprint_id: str = Field(min_length=1)
    filters: dict[str, str] = Field(default_factory=dict)
    seed: str | None = None
    subject: str = ""
    context: str = ""
    items: str = ""
    environment: str = ""
    restrictions: str = ""
    target_platform: str | None = None


@dataclass(frozen=True)
class ActiveAdapter:
    """コンパイルに適用する学習済み LoRA"""

    version_id: str
    model_name: str
    trigger_word: str
    weight: float = 1.0
    preview_images: tuple[str, ...] = field(default_factory=tuple)


class CompileMetadata(BaseModel):
    """コンパイル結果のサマリー"""

    profile_name: str
    blueprint_name: str
    block_count: int
    filter_count: int


class CharacterPack(BaseModel):
    """LoRA 非対応プラットフォーム向けの代替記述"""

    model_config = ConfigDict(protected_namespaces=())

    platform: str
    model_name: str
    trigger_word: str
    weight: float
    identity: str
    style_descriptors: list[str] = Field(default_factory=list)
    camera_descriptors: list[str] = Field(default_factory=list)
    layout_descriptors: list[str] = Field(default_factory=list)
    filter_descriptors: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    negative_hints: list[str] = Field(default_factory=list)
    reference_images: list[str] = Field(default_factory=list)
    consistency_prompt: str


class CompileResult(BaseModel):
    """コンパイル結果"""

    compiled_prompt: str
    metadata: CompileMetadata
    score: int
    warnings: list[str] = Field(default_factory=list)
    seed: str
    character_pack: CharacterPack | None = None


@dataclass
class _RenderedBlock:
    block: BlockDefinition
    body: str
    trailing_effects: list[str]

    @property
    def text(self) -> str:
        if not self.trailing_effects:
            return self.body
        effects = ", ".join(self.trailing_effects)
        return f"{self.body}, {effects}" if self.body else effects


def platform_supports_adapter(target_platform: str | None) -> bool:
    """ターゲットプラットフォームが LoRA 構文を解釈できるか

    プラットフォーム未指定の場合は対応とみなす。
    """
    if not target_platform:
        return True
    platform = target_platform.lower()
    return any(name in platform for name in ADAPTER_CAPABLE_PLATFORMS)


def trigger_word_for(model_name: str | None) -> str:
    """LoRA モデル名からトリガーワードを生成"""
    if not model_name or not model_name.strip():
        return "custom_style"
    return re.sub(r"\s+", "_", model_name.strip().lower())


def format_weight(weight: float) -> str:
    return f"{weight:.2f}".rstrip("0").rstrip(".")


def redact(text: str, patterns: list[str]) -> tuple[str, list[str]]:
    """禁止パターンを大文字小文字を区別せずに除去

    除去によって新たな一致が生じなくなるまで繰り返す。

    Returns:
        (除去後のテキスト, 一致したパターンのリスト)
    """
    matched: list[str] = []
    regexes = [(p, re.compile(re.escape(p), re.IGNORECASE)) for p in patterns if p]

    changed = True
    while changed:
        changed = False
        for pattern, regex in regexes:
            if regex.search(text):
                text = regex.sub("", text)
                changed = True
                if pattern not in matched:
                    matched.append(pattern)

    return text, matched


def detect_filter_conflicts(filters: dict[str, str]) -> list[str]:
    """矛盾するフィルターの組み合わせを検出（フィルターは除去しない）"""
    conflicts = []
    for (key_a, value_a), (key_b, value_b), message in FILTER_CONFLICTS:
        if filters.get(key_a) == value_a and filters.get(key_b) == value_b:
            conflicts.append(message)
    return conflicts


def calculate_score(prompt: str, request: CompileRequest, warnings: list[str]) -> int:
    """プロンプトの品質スコアを計算（0-100）"""
    score = 100

    score -= len(warnings) * 5

    if not request.subject:
        score -= 15

    if len(prompt) < 100:
        score -= 10
    elif len(prompt) > 1500:
        score -= 5

    words = prompt.split()
    if words:
        unique_words = {word.lower() for word in words}
        if len(unique_words) / len(words) < 0.5:
            score -= 10

    lowered = prompt.lower()
    if any(keyword in lowered for keyword in QUALITY_KEYWORDS):
        score += 5

    if request.filters:
        score += min(len(request.filters) * 2, 10)

    return max(0, min(100, score))


class PromptCompiler:
    """ルールベースのプロンプトコンパイラ（リクエスト単位で生成）"""

    def __init__(self, snapshot: CatalogSnapshot):
        self.snapshot = snapshot
        # このインスタンス限りの仮想ブループリント（ユーザーブループリント）
        self._virtual_blueprints: dict[str, BlueprintDefinition] = {}

    def register_user_blueprint(self, blueprint: BlueprintDefinition) -> None:
        """ユーザーブループリントを仮想システムブループリントとして登録

        共有カタログには書き込まない。
        """
        self._virtual_blueprints[blueprint.id] = blueprint

    def get_profile(self, profile_id: str) -> ProfileDefinition:
        profile = self.snapshot.profiles.get(profile_id)
        if profile is None:
            raise RecordNotFoundError(
                f"Profile not found: {profile_id}", details={"profile_id": profile_id}
            )
        return profile

    def get_blueprint(self, blueprint_id: str) -> BlueprintDefinition:
        blueprint = self._virtual_blueprints.get(blueprint_id) or self.snapshot.blueprints.get(
            blueprint_id
        )
        if blueprint is None:
            raise RecordNotFoundError(
                f"Blueprint not found: {blueprint_id}", details={"blueprint_id": blueprint_id}
            )
        return blueprint

    @staticmethod
    def generate_seed(request: CompileRequest) -> str:
        """シードを決定

        明示的なシードはそのまま使用する。未指定の場合は時刻と乱数を含むため
        同じ入力でも毎回異なる値になる。
        """
        if request.seed:
            return request.seed

        data = json.dumps(
            {
                "profile": request.profile_id,
                "blueprint": request.blueprint_id,
                "filters": request.filters,
                "subject": request.subject,
                "timestamp": int(time.time() * 1000),
                "random": secrets.token_hex(8),
            },
            sort_keys=True,
        )
        return hashlib.sha256(data.encode("utf-8")).hexdigest()[:8]

    def order_blocks(self, block_keys: list[str], preferred_order: list[BlockType]) -> list[str]:
        """プロファイルの preferred_order に従ってブロックを並べ替え

        preferred_order に含まれないタイプ（およびカタログにないブロック）は
        すべての既知タイプの後ろに置く。同順位はブループリント内の順序を保つ。
        """
        rank = {block_type: index for index, block_type in enumerate(preferred_order)}
        unlisted = len(preferred_order)

        def block_rank(key: str) -> int:
            block = self.snapshot.blocks.get(key)
            if block is None:
                return unlisted
            return rank.get(block.type, unlisted)

        return sorted(block_keys, key=block_rank)

    def _resolve_filters(self, filters: dict[str, str]) -> tuple[dict[str, str], list[str]]:
        """選択されたフィルターを挿入テキストに解決"""
        effects: dict[str, str] = {}
        warnings: list[str] = []

        for key, value in filters.items():
            filter_def = self.snapshot.filters.get(key)
            if filter_def is None:
                warnings.append(f"Unknown filter ignored: {key}")
                continue
            effect = filter_def.effect.get(value)
            if not effect:
                warnings.append(f"Unknown value for filter {key} ignored: {value}")
                continue
            effects[key] = effect

        return effects, warnings

    def _render_block(
        self, block: BlockDefinition, request: CompileRequest, effects: dict[str, str]
    ) -> _RenderedBlock:
        body = block.template
        consumed: set[str] = set()

        for key, effect in effects.items():
            token = "{" + key + "}"
            if token in body:
                body = body.replace(token, effect)
                consumed.add(key)

        # 入力値は最後に埋め込む（ユーザー文中の波括弧を残す）
        body = _PLACEHOLDER_RE.sub(
            lambda m: m.group(0) if m.group(0)[1:-1] in INPUT_PLACEHOLDERS else "", body
        )
        for name in INPUT_PLACEHOLDERS:
            body = body.replace("{" + name + "}", getattr(request, name) or "")

        body = _EDGE_SEPARATORS_RE.sub("", body)

        trailing = [effect for key, effect in effects.items() if key not in consumed]
        return _RenderedBlock(block=block, body=body, trailing_effects=trailing)

    def compile(self, request: CompileRequest, adapter: ActiveAdapter | None = None) -> CompileResult:
        """プロンプトをコンパイル

        Args:
            request: コンパイル入力
            adapter: 適用する LoRA（任意）

        Returns:
            CompileResult

        Raises:
            RecordNotFoundError: プロファイルまたはブループリントが存在しない場合
        """
        profile = self.get_profile(request.profile_id)
        blueprint = self.get_blueprint(request.blueprint_id)

        warnings: list[str] = []
        seed = self.generate_seed(request)
        inline_adapter = adapter is not None and platform_supports_adapter(request.target_platform)

        parts: list[str] = [profile.base_prompt, SYSTEM_PROMPT_CORE]

        if request.subject:
            parts.append(f"Subject: {request.subject}")
        if request.environment:
            parts.append(f"Environment: {request.environment}")
        if request.context:
            parts.append(f"Context: {request.context}")

        if inline_adapter:
            weight = format_weight(adapter.weight)
            parts.append(f"Style adapter: <lora:{adapter.trigger_word}:{weight}>, {adapter.trigger_word}")

        effects, filter_warnings = self._resolve_filters(request.filters)
        warnings.extend(filter_warnings)

        rendered: list[_RenderedBlock] = []
        for key in self.order_blocks(blueprint.blocks, profile.preferred_order):
            block = self.snapshot.blocks.get(key)
            if block is None:
                warnings.append(f"Block not found: {key}")
                continue
            rendered_block = self._render_block(block, request, effects)
            rendered.append(rendered_block)
            parts.append(rendered_block.text)

        if blueprint.constraints:
            parts.append(f"Constraints: {', '.join(blueprint.constraints)}")

        if request.restrictions:
            parts.append(f"Avoid: {request.restrictions}")

        compiled_prompt = "\n\n".join(part for part in parts if part)

        compiled_prompt, matched = redact(compiled_prompt, profile.forbidden_patterns)
        for pattern in matched:
            warnings.append(f'Contains forbidden pattern: "{pattern}"')

        if len(compiled_prompt) > profile.max_length:
            warnings.append(
                f"Prompt exceeds max length ({len(compiled_prompt)}/{profile.max_length})"
            )
            compiled_prompt = compiled_prompt[: profile.max_length]

        warnings.extend(detect_filter_conflicts(request.filters))

        score = calculate_score(compiled_prompt, request, warnings)

        character_pack = None
        if adapter is not None and not inline_adapter:
            character_pack = self.build_character_pack(
                request, adapter, rendered, effects, blueprint, profile
            )

        logger.info(
            f"Prompt compiled: profile={profile.id}, blueprint={blueprint.id}, "
            f"blocks={len(rendered)}, score={score}, warnings={len(warnings)}",
            extra={"character_pack": character_pack is not None},
        )

        return CompileResult(
            compiled_prompt=compiled_prompt,
            metadata=CompileMetadata(
                profile_name=profile.name,
                blueprint_name=blueprint.name,
                block_count=len(rendered),
                filter_count=len(request.filters),
            ),
            score=score,
            warnings=warnings,
            seed=seed,
            character_pack=character_pack,
        )

    def build_character_pack(
        self,
        request: CompileRequest,
        adapter: ActiveAdapter,
        rendered: list[_RenderedBlock],
        effects: dict[str, str],
        blueprint: BlueprintDefinition,
        profile: ProfileDefinition,
    ) -> CharacterPack:
        """LoRA を使えないプラットフォーム向けの Character Pack を生成"""
        patterns = profile.forbidden_patterns

        def clean(items: list[str]) -> list[str]:
            result = []
            for item in items:
                text, _ = redact(item, patterns)
                text = _EDGE_SEPARATORS_RE.sub("", text)
                if text:
                    result.append(text)
            return result

        def bodies(*types: BlockType) -> list[str]:
            return clean([r.body for r in rendered if r.block.type in types])

        identity_parts = clean([request.subject or ""]) or [adapter.model_name]
        identity_parts.extend(bodies(BlockType.SUBJECT))
        identity = ", ".join(identity_parts)

        style = bodies(BlockType.STYLE, BlockType.POSTFX)
        camera = bodies(BlockType.CAMERA)
        layout = bodies(BlockType.LAYOUT)
        filter_descriptors = clean(list(effects.values()))

        consistency_parts = [
            f"Consistent character \"{adapter.model_name}\" ({identity})",
        ]
        if style:
            consistency_parts.append(f"Style: {'; '.join(style)}")
        if camera:
            consistency_parts.append(f"Camera: {'; '.join(camera)}")
        if filter_descriptors:
            consistency_parts.append(f"Look: {', '.join(filter_descriptors)}")
        consistency_parts.append(
            "Keep the same face, proportions, palette and styling in every image"
        )
        consistency_prompt, _ = redact(". ".join(consistency_parts), patterns)

        negative_hints = ["style drift", "inconsistent facial features", "changing proportions"]
        if request.restrictions:
            negative_hints[:0] = clean([request.restrictions])

        return CharacterPack(
            platform=request.target_platform or "",
            model_name=adapter.model_name,
            trigger_word=adapter.trigger_word,
            weight=adapter.weight,
            identity=identity,
            style_descriptors=style,
            camera_descriptors=camera,
            layout_descriptors=layout,
            filter_descriptors=filter_descriptors,
            constraints=clean(list(blueprint.constraints)),
            negative_hints=negative_hints,
            reference_images=list(adapter.preview_images),
            consistency_prompt=consistency_prompt,
        )
