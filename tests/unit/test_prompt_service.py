"""
プロンプト履歴サービスのユニットテスト
"""

from unittest.mock import MagicMock

import pytest

from src.services.blueprint_service import BlueprintService
from src.services.error_handler import (
    ForbiddenError,
    PreconditionFailedError,
    RecordNotFoundError,
)
from src.services.lora_service import LoraService, WebhookPayload
from src.services.prompt_compiler import CompileRequest
from src.services.prompt_service import PromptService
from src.services.storage_provider import LocalStorageProvider

USER = "user-1"


@pytest.fixture
def lora_service(test_db, signer, snapshot):
    worker_client = MagicMock()
    worker_client.is_configured = False
    return LoraService(
        test_db,
        worker_client=worker_client,
        storage_provider=LocalStorageProvider("http://storage.test"),
        signer=signer,
        snapshot=snapshot,
    )


@pytest.fixture
def service(test_db, snapshot, lora_service):
    return PromptService(test_db, snapshot=snapshot, lora_service=lora_service)


def _request(**kwargs) -> CompileRequest:
    data = {
        "profile_id": "flux_pro",
        "blueprint_id": "minecraft_food",
        "subject": "golden apple",
        "seed": "seed0001",
    }
    data.update(kwargs)
    return CompileRequest(**data)


async def _trained_version(lora_service, *, completed=True):
    model = await lora_service.create_model(USER, "My Character")
    dataset, _ = await lora_service.init_dataset(USER, model.id, 15)
    await lora_service.validate_dataset(dataset.id, USER)
    created = await lora_service.create_job(USER, model.id, dataset.id, "sdxl_1.0")
    if completed:
        await lora_service.handle_webhook(
            WebhookPayload(job_id=created.job.id, status="completed", artifact_url="http://cdn/a.safetensors")
        )
    return created.version


@pytest.mark.asyncio
async def test_compile_and_store(service):
    """コンパイル結果が履歴に保存されるテスト"""
    record, result = await service.compile_and_store(
        _request(filters={"camera_bias": "dslr"}), USER
    )

    assert record.id is not None
    assert record.user_id == USER
    assert record.compiled_prompt == result.compiled_prompt
    assert record.score == result.score
    assert record.seed == "seed0001"
    assert record.applied_filters == {"camera_bias": "dslr"}
    assert "filters" not in record.input
    assert record.input["subject"] == "golden apple"
    assert record.prompt_metadata["profile_name"] == result.metadata.profile_name
    assert record.lora_version_id is None
    assert record.character_pack is None


@pytest.mark.asyncio
async def test_compile_without_filters_stores_none(service):
    record, _ = await service.compile_and_store(_request(), USER)
    assert record.applied_filters is None


@pytest.mark.asyncio
async def test_compile_unknown_profile(service):
    with pytest.raises(RecordNotFoundError):
        await service.compile_and_store(_request(profile_id="missing"), USER)


@pytest.mark.asyncio
async def test_compile_with_user_blueprint(service, test_db, snapshot):
    """ユーザーブループリントでのコンパイルテスト"""
    blueprint, _ = await BlueprintService(test_db, snapshot=snapshot).create(
        USER, "My Blueprint", "custom", ["food_subject", "soft_shadows"], constraints=["keep_it_simple"]
    )

    record, result = await service.compile_and_store(
        _request(blueprint_id="minecraft_food"), USER, user_blueprint_id=blueprint.id
    )

    assert result.metadata.blueprint_name == "My Blueprint"
    assert "keep_it_simple" in result.compiled_prompt
    assert record.user_blueprint_id == blueprint.id
    assert record.blueprint_id is None
    assert blueprint.id not in snapshot.blueprints


@pytest.mark.asyncio
async def test_compile_with_other_users_blueprint(service, test_db, snapshot):
    blueprint, _ = await BlueprintService(test_db, snapshot=snapshot).create(
        "user-2", "Theirs", "custom", ["food_subject"]
    )

    with pytest.raises(ForbiddenError):
        await service.compile_and_store(_request(), USER, user_blueprint_id=blueprint.id)


@pytest.mark.asyncio
async def test_compile_with_explicit_lora(service, lora_service):
    """LoRA バージョン指定でのコンパイルテスト"""
    version = await _trained_version(lora_service)

    record, result = await service.compile_and_store(
        _request(), USER, lora_version_id=version.id, lora_weight=0.5
    )

    assert "<lora:my_character:0.5>" in result.compiled_prompt
    assert record.lora_version_id == version.id


@pytest.mark.asyncio
async def test_compile_with_untrained_lora(service, lora_service):
    """学習未完了の LoRA は使用できない"""
    version = await _trained_version(lora_service, completed=False)

    with pytest.raises(PreconditionFailedError):
        await service.compile_and_store(_request(), USER, lora_version_id=version.id)


@pytest.mark.asyncio
async def test_compile_with_active_lora_pack(service, lora_service):
    """アクティブ LoRA + 非対応プラットフォームでは Character Pack"""
    version = await _trained_version(lora_service)
    await lora_service.activate(USER, version.id, 0.7)

    record, result = await service.compile_and_store(
        _request(target_platform="midjourney"), USER, use_active_lora=True
    )

    assert "<lora:" not in result.compiled_prompt
    assert result.character_pack.weight == 0.7
    assert record.character_pack["trigger_word"] == "my_character"
    assert record.lora_version_id == version.id


@pytest.mark.asyncio
async def test_compile_use_active_without_binding(service):
    record, result = await service.compile_and_store(_request(), USER, use_active_lora=True)

    assert "<lora:" not in result.compiled_prompt
    assert record.lora_version_id is None


@pytest.mark.asyncio
async def test_history_is_per_user_and_limited(service):
    """履歴はユーザーごとに取得され件数制限がかかる"""
    for _ in range(3):
        await service.compile_and_store(_request(), USER)
    await service.compile_and_store(_request(), "user-2")

    history = await service.list_history(USER)
    limited = await service.list_history(USER, limit=2)

    assert len(history) == 3
    assert all(record.user_id == USER for record in history)
    assert len(limited) == 2


@pytest.mark.asyncio
async def test_get_prompt_checks_owner(service):
    record, _ = await service.compile_and_store(_request(), USER)

    assert (await service.get_prompt(record.id, USER)).id == record.id
    with pytest.raises(ForbiddenError):
        await service.get_prompt(record.id, "user-2")
    with pytest.raises(RecordNotFoundError):
        await service.get_prompt("missing", USER)


@pytest.mark.asyncio
async def test_save_versions_are_sequential(service):
    """保存したバージョンは 1 から連番"""
    record, _ = await service.compile_and_store(_request(), USER)

    v1 = await service.save_version(record.id, USER)
    v2 = await service.save_version(record.id, USER)
    versions = await service.list_versions(record.id, USER)

    assert [v1.version, v2.version] == [1, 2]
    assert [v.version for v in versions] == [1, 2]
    assert v1.compiled_prompt == record.compiled_prompt
    assert v1.version_metadata["score"] == record.score
    assert v1.version_metadata["seed"] == "seed0001"
