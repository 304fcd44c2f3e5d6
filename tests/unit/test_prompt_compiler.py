"""
プロンプトコンパイラのユニットテスト
"""

import pytest

from src.services.catalog import BlockType, BlueprintDefinition
from src.services.error_handler import RecordNotFoundError
from src.services.prompt_compiler import (
    ActiveAdapter,
    CompileRequest,
    PromptCompiler,
    calculate_score,
    detect_filter_conflicts,
    platform_supports_adapter,
    redact,
    trigger_word_for,
)


@pytest.fixture
def compiler(snapshot):
    return PromptCompiler(snapshot)


@pytest.fixture
def adapter():
    return ActiveAdapter(
        version_id="version-1",
        model_name="My Character",
        trigger_word="my_character",
        weight=0.8,
        preview_images=("http://cdn/preview_1.png",),
    )


def _request(**kwargs) -> CompileRequest:
    data = {"profile_id": "midjourney_v6", "blueprint_id": "minecraft_food"}
    data.update(kwargs)
    return CompileRequest(**data)


def test_unknown_profile_raises_not_found(compiler):
    """存在しないプロファイルは NotFound"""
    with pytest.raises(RecordNotFoundError):
        compiler.compile(_request(profile_id="unknown_profile"))


def test_unknown_blueprint_raises_not_found(compiler):
    """存在しないブループリントは NotFound"""
    with pytest.raises(RecordNotFoundError):
        compiler.compile(_request(blueprint_id="unknown_blueprint"))


def test_compile_basic_structure(compiler):
    """基本的なコンパイル結果の構成テスト"""
    result = compiler.compile(
        _request(subject="golden apple", environment="kitchen", restrictions="text, watermark")
    )

    prompt = result.compiled_prompt
    assert prompt.startswith("Create a highly detailed")
    assert "Subject: golden apple" in prompt
    assert "Environment: kitchen" in prompt
    assert "golden apple, appetizing presentation" in prompt
    assert "Constraints: maintain_blocky_aesthetic, no_smooth_gradients" in prompt
    assert prompt.endswith("Avoid: text, watermark")
    assert result.metadata.profile_name == "Midjourney V6"
    assert result.metadata.blueprint_name == "Minecraft Style Food"
    assert result.metadata.block_count == 4
    assert result.character_pack is None


def test_explicit_seed_is_deterministic(compiler):
    """明示シードでは同じ入力から同じ出力"""
    request = _request(subject="golden apple", seed="abc12345", filters={"camera_bias": "dslr"})

    first = compiler.compile(request)
    second = PromptCompiler(compiler.snapshot).compile(request)

    assert first.compiled_prompt == second.compiled_prompt
    assert first.score == second.score
    assert first.warnings == second.warnings
    assert first.seed == second.seed == "abc12345"


def test_generated_seed_varies(compiler):
    """シード未指定では毎回異なるシード"""
    request = _request(subject="golden apple")
    seeds = {compiler.generate_seed(request) for _ in range(5)}
    assert len(seeds) == 5
    assert all(len(seed) == 8 for seed in seeds)


def test_blocks_follow_preferred_order(compiler):
    """ブロックがプロファイルの preferred_order 順に並ぶテスト"""
    ordered = compiler.order_blocks(
        ["pixelart_base", "food_subject", "minecraft_lighting", "game_ui_frame"],
        compiler.get_profile("midjourney_v6").preferred_order,
    )
    assert ordered == ["food_subject", "pixelart_base", "game_ui_frame", "minecraft_lighting"]


def test_order_is_stable_for_same_type(compiler):
    """同じタイプのブロックはブループリント内の順序を保つ"""
    keys = ["ornate_details", "gothic_pattern", "vehicle_surface", "dark_lighting"]
    ordered = compiler.order_blocks(keys, [BlockType.SUBJECT, BlockType.STYLE, BlockType.CAMERA])
    assert ordered == ["vehicle_surface", "ornate_details", "gothic_pattern", "dark_lighting"]


def test_unlisted_types_go_last(compiler):
    """preferred_order に無いタイプは末尾"""
    keys = ["dark_lighting", "vehicle_surface"]
    ordered = compiler.order_blocks(keys, [BlockType.SUBJECT])
    assert ordered == ["vehicle_surface", "dark_lighting"]


def test_filter_placeholder_substitution(compiler):
    """プレースホルダーにフィルター効果を挿入するテスト"""
    result = compiler.compile(
        _request(blueprint_id="weightless_phone_photo", subject="sneakers", filters={"camera_bias": "iphone"})
    )
    assert "casual framing, iPhone camera characteristics, portrait mode" in result.compiled_prompt
    assert "{camera_bias}" not in result.compiled_prompt


def test_unconsumed_filter_effect_appended(compiler):
    """プレースホルダーの無いフィルター効果はブロック末尾に追加"""
    result = compiler.compile(_request(subject="golden apple", filters={"aesthetic_intensity": "high"}))
    assert "strong aesthetic treatment" in result.compiled_prompt


def test_unresolved_placeholders_removed(compiler):
    """解決されないプレースホルダーは除去"""
    result = compiler.compile(_request(blueprint_id="cctv_detection", subject="cat"))
    assert "{" not in result.compiled_prompt


def test_braces_in_user_input_are_kept(compiler):
    """入力値内の波括弧はプレースホルダーとして除去しない"""
    result = compiler.compile(
        _request(blueprint_id="cctv_detection", subject="cat", items="a {gold} apple")
    )
    assert "bounding boxes around a {gold} apple" in result.compiled_prompt


def test_unknown_filter_lowers_score(compiler):
    """未定義フィルターの警告もスコアの減点対象"""
    plain = compiler.compile(_request(seed="s1"))
    with_unknown = compiler.compile(_request(seed="s1", filters={"unknown": "x"}))

    assert with_unknown.compiled_prompt == plain.compiled_prompt
    # 警告 -5、フィルター数 +2
    assert plain.score - with_unknown.score == 3


def test_unknown_filter_warns(compiler):
    """未定義フィルターは警告のみ"""
    result = compiler.compile(
        _request(subject="golden apple", filters={"unknown": "x", "camera_bias": "polaroid"})
    )
    assert "Unknown filter ignored: unknown" in result.warnings
    assert "Unknown value for filter camera_bias ignored: polaroid" in result.warnings


def test_forbidden_patterns_redacted(compiler):
    """禁止パターンは大文字小文字を区別せず除去され、警告が付く"""
    result = compiler.compile(_request(subject="GORE and Violence on a plate"))

    lowered = result.compiled_prompt.lower()
    assert "gore" not in lowered
    assert "violence" not in lowered
    assert 'Contains forbidden pattern: "gore"' in result.warnings
    assert 'Contains forbidden pattern: "violence"' in result.warnings


def test_redaction_reaches_fixpoint():
    """除去で新たに生じた一致も除去"""
    text, matched = redact("a nsnsfwfw b", ["nsfw"])
    assert "nsfw" not in text.lower()
    assert matched == ["nsfw"]


def test_redaction_treats_patterns_literally():
    """パターンは正規表現として解釈しない"""
    text, matched = redact("price is 5.00 or 5x00", ["5.00"])
    assert text == "price is  or 5x00"
    assert matched == ["5.00"]


def test_max_length_enforced(compiler):
    """max_length を超えるプロンプトは切り詰められ警告が付く"""
    result = compiler.compile(
        _request(profile_id="sdxl", subject="a very long subject description " * 80)
    )

    assert len(result.compiled_prompt) <= 1500
    assert any(w.startswith("Prompt exceeds max length") for w in result.warnings)


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"subject": "golden apple", "filters": {"camera_bias": "dslr", "ugc_realism": "phone"}},
        {"subject": "gore " * 500, "filters": {"x": "y", "z": "w", "a": "b"}},
        {"subject": "lighting camera composition", "filters": {"aesthetic_intensity": "high"}},
    ],
)
def test_score_in_range(compiler, kwargs):
    """スコアは常に 0-100"""
    result = compiler.compile(_request(**kwargs))
    assert 0 <= result.score <= 100


def test_score_clamped_with_many_warnings():
    """警告が多くても 0 未満にならない"""
    request = CompileRequest(profile_id="p", blueprint_id="b")
    assert calculate_score("short", request, ["w"] * 40) == 0


def test_filter_conflicts_detected(compiler):
    """矛盾するフィルターの組み合わせは警告（フィルターは除去しない）"""
    filters = {"ugc_realism": "phone", "camera_bias": "dslr", "temporal_style": "y2k"}
    assert len(detect_filter_conflicts(filters)) == 1

    result = compiler.compile(_request(subject="golden apple", filters=filters))

    assert "Filter conflict: UGC phone style may conflict with DSLR camera bias" in result.warnings
    assert "professional DSLR quality" in result.compiled_prompt
    assert "smartphone quality" in result.compiled_prompt


def test_y2k_modern_conflict(compiler):
    result = compiler.compile(
        _request(subject="golden apple", filters={"temporal_style": "y2k", "camera_bias": "modern"})
    )
    assert "Filter conflict: Y2K temporal style may conflict with modern camera" in result.warnings


@pytest.mark.parametrize(
    "platform, expected",
    [
        (None, True),
        ("", True),
        ("flux_dev", True),
        ("SDXL", True),
        ("stable_diffusion_webui", True),
        ("midjourney", False),
        ("dalle_3", False),
    ],
)
def test_platform_supports_adapter(platform, expected):
    assert platform_supports_adapter(platform) is expected


def test_trigger_word_for():
    assert trigger_word_for("My  Character") == "my_character"
    assert trigger_word_for("") == "custom_style"
    assert trigger_word_for(None) == "custom_style"


def test_adapter_inlined_for_capable_platform(compiler, adapter):
    """LoRA 対応プラットフォームでは LoRA 構文を挿入"""
    result = compiler.compile(_request(subject="golden apple", target_platform="sdxl"), adapter=adapter)

    assert "<lora:my_character:0.8>, my_character" in result.compiled_prompt
    assert result.character_pack is None


def test_adapter_inlined_without_platform(compiler, adapter):
    """プラットフォーム未指定では LoRA 構文を挿入"""
    result = compiler.compile(_request(subject="golden apple"), adapter=adapter)
    assert "<lora:my_character:0.8>" in result.compiled_prompt


def test_character_pack_for_incapable_platform(compiler, adapter):
    """LoRA 非対応プラットフォームでは Character Pack を生成"""
    result = compiler.compile(
        _request(subject="golden apple", target_platform="midjourney", restrictions="blurry"),
        adapter=adapter,
    )

    assert "<lora:" not in result.compiled_prompt
    pack = result.character_pack
    assert pack is not None
    assert pack.platform == "midjourney"
    assert pack.model_name == "My Character"
    assert pack.trigger_word == "my_character"
    assert pack.weight == 0.8
    assert pack.identity.startswith("golden apple")
    assert pack.style_descriptors == [
        "pixel art style, 8-bit aesthetic, visible blocky pixels",
        "flat shading, ambient occlusion, game-style lighting",
    ]
    assert pack.layout_descriptors == ["inventory slot frame, game interface border"]
    assert pack.constraints == ["maintain_blocky_aesthetic", "no_smooth_gradients"]
    assert pack.negative_hints[0] == "blurry"
    assert pack.reference_images == ["http://cdn/preview_1.png"]
    assert 'Consistent character "My Character"' in pack.consistency_prompt


def test_character_pack_redacts_every_field(snapshot, adapter):
    """Character Pack のどのフィールドにも禁止パターンが残らない"""
    compiler = PromptCompiler(snapshot)
    compiler.register_user_blueprint(
        BlueprintDefinition(
            id="bp-gore",
            name="Gore Blueprint",
            category="custom",
            blocks=["food_subject", "pixelart_base"],
            constraints=["no gore", "keep_it_simple"],
        )
    )

    result = compiler.compile(
        _request(
            blueprint_id="bp-gore",
            subject="gore monster",
            restrictions="nsfw stuff",
            target_platform="midjourney",
        ),
        adapter=adapter,
    )

    pack = result.character_pack
    assert pack is not None
    texts = [
        pack.identity,
        pack.consistency_prompt,
        *pack.style_descriptors,
        *pack.camera_descriptors,
        *pack.layout_descriptors,
        *pack.filter_descriptors,
        *pack.constraints,
        *pack.negative_hints,
    ]
    for text in texts:
        assert "gore" not in text.lower()
        assert "nsfw" not in text.lower()
    assert pack.identity.startswith("monster")
    assert pack.negative_hints[0] == "stuff"
    assert pack.constraints == ["no", "keep_it_simple"]


def test_character_pack_identity_falls_back_to_model_name(compiler, adapter):
    result = compiler.compile(
        _request(subject="gore", target_platform="midjourney"), adapter=adapter
    )
    assert result.character_pack.identity.startswith("My Character")


def test_no_adapter_state_between_calls(compiler, adapter):
    """前回の LoRA が次のコンパイルに残らない"""
    compiler.compile(_request(subject="golden apple"), adapter=adapter)
    result = compiler.compile(_request(subject="golden apple"))

    assert "<lora:" not in result.compiled_prompt
    assert result.character_pack is None


def test_user_blueprint_is_instance_local(snapshot):
    """ユーザーブループリントは登録したインスタンスだけで有効"""
    blueprint = BlueprintDefinition(
        id="user-bp-1",
        name="My Blueprint",
        category="custom",
        blocks=["food_subject", "soft_shadows"],
        constraints=["keep_it_simple"],
    )
    compiler = PromptCompiler(snapshot)
    compiler.register_user_blueprint(blueprint)

    result = compiler.compile(_request(blueprint_id="user-bp-1", subject="dumplings"))

    assert result.metadata.blueprint_name == "My Blueprint"
    assert "Constraints: keep_it_simple" in result.compiled_prompt
    assert "user-bp-1" not in snapshot.blueprints
    with pytest.raises(RecordNotFoundError):
        PromptCompiler(snapshot).compile(_request(blueprint_id="user-bp-1"))


def test_missing_block_warns(snapshot):
    """カタログに無いブロックは警告して無視"""
    compiler = PromptCompiler(snapshot)
    compiler.register_user_blueprint(
        BlueprintDefinition(id="bp", name="bp", category="c", blocks=["food_subject", "gone_block"])
    )

    result = compiler.compile(_request(blueprint_id="bp", subject="apple"))

    assert "Block not found: gone_block" in result.warnings
    assert result.metadata.block_count == 1
