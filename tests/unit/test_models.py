"""Unit tests for models"""
import pytest
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from src.models.blueprint import UserBlueprint, UserBlueprintVersion
from src.models.lora import DatasetStatus, JobStatus, LoraDataset, LoraJob, LoraModel, LoraVersion, UserActiveLora
from src.models.prompt import GeneratedPrompt, PromptVersion


async def _create_model(test_db, user_id="user-1") -> LoraModel:
    model = LoraModel(user_id=user_id, name="My Character")
    test_db.add(model)
    await test_db.commit()
    await test_db.refresh(model)
    return model


@pytest.mark.asyncio
async def test_lora_model_creation(test_db):
    """LoraModel の作成テスト"""
    model = await _create_model(test_db)

    assert model.id is not None
    assert model.consent_given is False
    assert isinstance(model.created_at, datetime)


@pytest.mark.asyncio
async def test_lora_dataset_defaults(test_db):
    """LoraDataset のデフォルト値テスト"""
    model = await _create_model(test_db)

    dataset = LoraDataset(user_id="user-1", lora_model_id=model.id, image_count=12)
    test_db.add(dataset)
    await test_db.commit()
    await test_db.refresh(dataset)

    assert dataset.status == DatasetStatus.PENDING.value
    assert dataset.quality_report is None
    assert dataset.dataset_hash is None


@pytest.mark.asyncio
async def test_lora_version_and_job_creation(test_db):
    """LoraVersion と LoraJob の作成テスト"""
    model = await _create_model(test_db)

    version = LoraVersion(
        lora_model_id=model.id,
        base_model="sdxl_1.0",
        params={"steps": 1000},
        dataset_hash="0123456789abcdef",
    )
    test_db.add(version)
    await test_db.commit()
    await test_db.refresh(version)

    job = LoraJob(lora_version_id=version.id)
    test_db.add(job)
    await test_db.commit()
    await test_db.refresh(job)

    assert version.artifact_url is None
    assert job.status == JobStatus.PENDING.value
    assert job.provider == "webhook_worker"
    assert job.started_at is None
    assert job.finished_at is None


@pytest.mark.asyncio
async def test_user_active_lora_unique_per_user(test_db):
    """アクティブ LoRA は 1 ユーザー 1 件"""
    model = await _create_model(test_db)
    version = LoraVersion(lora_model_id=model.id, base_model="sdxl_1.0", dataset_hash="h")
    test_db.add(version)
    await test_db.commit()

    test_db.add(UserActiveLora(user_id="user-1", lora_version_id=version.id))
    await test_db.commit()

    test_db.add(UserActiveLora(user_id="user-1", lora_version_id=version.id))
    with pytest.raises(IntegrityError):
        await test_db.commit()
    await test_db.rollback()


@pytest.mark.asyncio
async def test_generated_prompt_and_versions(test_db):
    """GeneratedPrompt と PromptVersion の作成テスト"""
    prompt = GeneratedPrompt(
        user_id="user-1",
        profile_id="midjourney_v6",
        blueprint_id="minecraft_food",
        seed="abc12345",
        input={"subject": "apple"},
        compiled_prompt="test prompt",
        prompt_metadata={"block_count": 4},
        score=80,
    )
    test_db.add(prompt)
    await test_db.commit()
    await test_db.refresh(prompt)

    version = PromptVersion(
        generated_prompt_id=prompt.id,
        version=1,
        compiled_prompt=prompt.compiled_prompt,
        version_metadata={"score": 80},
    )
    test_db.add(version)
    await test_db.commit()
    await test_db.refresh(version)

    assert prompt.id is not None
    assert prompt.prompt_metadata == {"block_count": 4}
    assert version.version == 1

    test_db.add(
        PromptVersion(
            generated_prompt_id=prompt.id,
            version=1,
            compiled_prompt="dup",
            version_metadata={},
        )
    )
    with pytest.raises(IntegrityError):
        await test_db.commit()
    await test_db.rollback()


@pytest.mark.asyncio
async def test_user_blueprint_creation(test_db):
    """UserBlueprint の作成テスト"""
    blueprint = UserBlueprint(user_id="user-1", name="My Blueprint", category="custom")
    test_db.add(blueprint)
    await test_db.commit()
    await test_db.refresh(blueprint)

    version = UserBlueprintVersion(user_blueprint_id=blueprint.id, version=1, blocks=["food_subject"])
    test_db.add(version)
    await test_db.commit()
    await test_db.refresh(version)

    assert blueprint.is_active is True
    assert version.constraints == []
