"""
LoRA 学習パイプライン API エンドポイント
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.deps import (
    get_db_session,
    get_signer,
    get_storage_provider,
    get_template_catalog,
    get_user_id,
    get_worker_client,
    to_http_exception,
)
from src.config.logging import get_logger
from src.config.settings import get_settings
from src.models.lora import LoraDataset, LoraJob, LoraModel, LoraVersion
from src.services.catalog import TemplateCatalog
from src.services.error_handler import ApplicationError
from src.services.lora_service import LoraService, WebhookPayload
from src.services.prompt_compiler import trigger_word_for
from src.services.signing import PayloadSigner
from src.services.storage_provider import StorageProvider
from src.services.worker_client import TrainingWorkerClient

logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/lora", tags=["LoRA"])


# ----------------------------------------------------------------------
# スキーマ
# ----------------------------------------------------------------------


class LoraSchema(BaseModel):
    # model_id / model_name を使うため pydantic の保護名前空間を無効化
    model_config = ConfigDict(protected_namespaces=())


class LoraModelInput(LoraSchema):
    """LoRA モデル作成スキーマ"""

    name: str = Field(min_length=1, max_length=255, description="モデル名")
    description: str | None = Field(default=None, description="説明")
    consent: bool = Field(default=False, description="学習画像の利用同意")


class LoraModelResponse(LoraSchema):
    """LoRA モデルレスポンススキーマ"""

    model_id: str
    name: str
    description: str | None
    consent_given: bool
    created_at: str


class DatasetResponse(LoraSchema):
    """データセットレスポンススキーマ"""

    dataset_id: str
    model_id: str
    image_count: int
    status: str
    dataset_url: str | None
    dataset_hash: str | None
    quality_report: dict[str, Any] | None
    created_at: str


class VersionResponse(LoraSchema):
    """LoRA バージョンレスポンススキーマ"""

    version_id: str
    model_id: str
    dataset_id: str | None
    base_model: str
    params: dict[str, Any]
    dataset_hash: str
    artifact_url: str | None
    checksum: str | None
    preview_images: list[str]
    created_at: str


class LoraModelDetailResponse(LoraModelResponse):
    """LoRA モデル詳細レスポンススキーマ"""

    datasets: list[DatasetResponse]
    versions: list[VersionResponse]


class BaseModelResponse(LoraSchema):
    name: str
    display_name: str
    lora_format: str
    default_resolution: int


class DatasetInitInput(LoraSchema):
    """データセット初期化スキーマ"""

    model_id: str = Field(min_length=1, description="LoRA モデル ID")
    image_count: int = Field(ge=1, le=1000, description="画像枚数")


class DatasetInitResponse(LoraSchema):
    """データセット初期化レスポンススキーマ"""

    dataset_id: str
    upload_url: str = Field(description="アップロード先（署名付き）")
    dataset_url: str = Field(description="アップロード後の公開 URL")
    status: str


class JobInput(LoraSchema):
    """学習ジョブ作成スキーマ"""

    model_id: str = Field(min_length=1, description="LoRA モデル ID")
    dataset_id: str = Field(min_length=1, description="検証済みデータセット ID")
    base_model: str = Field(min_length=1, description="ベースモデル")
    params: dict[str, Any] = Field(default_factory=dict, description="学習パラメータ")


class JobResponse(LoraSchema):
    """学習ジョブレスポンススキーマ"""

    job_id: str
    status: str
    provider: str
    external_job_id: str | None
    logs_url: str | None
    error: str | None
    started_at: str | None
    finished_at: str | None
    version: VersionResponse


class WebhookResponse(LoraSchema):
    """Webhook 受信レスポンススキーマ"""

    received: bool = True
    job_id: str
    applied: bool = Field(description="ジョブに反映したか（完了済みジョブへの再送は False）")
    artifact_applied: bool


class ActivateInput(LoraSchema):
    """アクティブ LoRA 設定スキーマ"""

    version_id: str = Field(min_length=1, description="LoRA バージョン ID")
    weight: float | None = Field(default=None, ge=0.0, le=2.0, description="ブレンド重み")


class ActiveLoraResponse(LoraSchema):
    """アクティブ LoRA レスポンススキーマ"""

    active: bool
    version_id: str | None = None
    model_id: str | None = None
    model_name: str | None = None
    trigger_word: str | None = None
    weight: float | None = None
    artifact_url: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _model_response(model: LoraModel) -> LoraModelResponse:
    return LoraModelResponse(
        model_id=model.id,
        name=model.name,
        description=model.description,
        consent_given=model.consent_given,
        created_at=model.created_at.isoformat(),
    )


def _dataset_response(dataset: LoraDataset) -> DatasetResponse:
    return DatasetResponse(
        dataset_id=dataset.id,
        model_id=dataset.lora_model_id,
        image_count=dataset.image_count,
        status=dataset.status,
        dataset_url=dataset.dataset_url,
        dataset_hash=dataset.dataset_hash,
        quality_report=dataset.quality_report,
        created_at=dataset.created_at.isoformat(),
    )


def _version_response(version: LoraVersion) -> VersionResponse:
    return VersionResponse(
        version_id=version.id,
        model_id=version.lora_model_id,
        dataset_id=version.dataset_id,
        base_model=version.base_model,
        params=version.params or {},
        dataset_hash=version.dataset_hash,
        artifact_url=version.artifact_url,
        checksum=version.checksum,
        preview_images=version.preview_images or [],
        created_at=version.created_at.isoformat(),
    )


def _job_response(job: LoraJob, version: LoraVersion) -> JobResponse:
    return JobResponse(
        job_id=job.id,
        status=job.status,
        provider=job.provider,
        external_job_id=job.external_job_id,
        logs_url=job.logs_url,
        error=job.error,
        started_at=_iso(job.started_at),
        finished_at=_iso(job.finished_at),
        version=_version_response(version),
    )


def _service(
    session: AsyncSession = Depends(get_db_session),
    worker_client: TrainingWorkerClient = Depends(get_worker_client),
    storage_provider: StorageProvider = Depends(get_storage_provider),
    signer: PayloadSigner = Depends(get_signer),
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> LoraService:
    return LoraService(
        session,
        worker_client=worker_client,
        storage_provider=storage_provider,
        signer=signer,
        snapshot=catalog.snapshot,
    )


# ----------------------------------------------------------------------
# モデル
# ----------------------------------------------------------------------


@router.get("/models", response_model=list[LoraModelResponse])
async def list_models(
    user_id: str = Depends(get_user_id), service: LoraService = Depends(_service)
):
    """ユーザーの LoRA モデル一覧を取得"""
    return [_model_response(m) for m in await service.list_models(user_id)]


@router.post("/models", response_model=LoraModelResponse, status_code=201)
async def create_model(
    data: LoraModelInput,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """LoRA モデルを作成"""
    try:
        logger.info(f"POST /lora/models: name={data.name}", extra={"user_id": user_id})
        model = await service.create_model(user_id, data.name, data.description, data.consent)
        return _model_response(model)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/models/{model_id}", response_model=LoraModelDetailResponse)
async def get_model(
    model_id: str,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """LoRA モデルをデータセット・バージョンとともに取得"""
    try:
        model = await service.get_owned_model(model_id, user_id)
        datasets = await service.list_datasets(model_id)
        versions = await service.list_versions(model_id)
        return LoraModelDetailResponse(
            **_model_response(model).model_dump(),
            datasets=[_dataset_response(d) for d in datasets],
            versions=[_version_response(v) for v in versions],
        )
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/base-models", response_model=list[BaseModelResponse])
async def list_base_models(catalog: TemplateCatalog = Depends(get_template_catalog)):
    """学習に使用できるベースモデル一覧を取得"""
    return [
        BaseModelResponse(
            name=m.name,
            display_name=m.display_name,
            lora_format=m.lora_format,
            default_resolution=m.default_resolution,
        )
        for m in catalog.snapshot.active_base_models()
    ]


# ----------------------------------------------------------------------
# データセット
# ----------------------------------------------------------------------


@router.post("/datasets/init", response_model=DatasetInitResponse, status_code=201)
async def init_dataset(
    data: DatasetInitInput,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """データセットを作成し、アップロード先を発行"""
    try:
        logger.info(
            f"POST /lora/datasets/init: model={data.model_id}, images={data.image_count}",
            extra={"user_id": user_id},
        )
        dataset, upload = await service.init_dataset(user_id, data.model_id, data.image_count)
        return DatasetInitResponse(
            dataset_id=dataset.id,
            upload_url=upload.upload_url,
            dataset_url=upload.public_url,
            status=dataset.status,
        )
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.post("/datasets/{dataset_id}/validate", response_model=DatasetResponse)
async def validate_dataset(
    dataset_id: str,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """データセットを検証して品質レポートを返す

    品質不足は status=invalid として返し、エラーにはしない。
    """
    try:
        logger.info(f"POST /lora/datasets/{dataset_id}/validate", extra={"user_id": user_id})
        return _dataset_response(await service.validate_dataset(dataset_id, user_id))
    except ApplicationError as e:
        raise to_http_exception(e) from e


# ----------------------------------------------------------------------
# ジョブ
# ----------------------------------------------------------------------


@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(
    data: JobInput,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """学習ジョブを作成してワーカーへ送信

    ワーカーの拒否・到達不能はジョブの状態として返す。
    """
    try:
        logger.info(
            f"POST /lora/jobs: model={data.model_id}, dataset={data.dataset_id}, "
            f"base_model={data.base_model}",
            extra={"user_id": user_id},
        )
        result = await service.create_job(
            user_id, data.model_id, data.dataset_id, data.base_model, data.params
        )
        return _job_response(result.job, result.version)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """学習ジョブを取得"""
    try:
        job, version = await service.get_job(job_id)
        await service.get_owned_model(version.lora_model_id, user_id)
        return _job_response(job, version)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """pending のジョブを再送信"""
    try:
        logger.info(f"POST /lora/jobs/{job_id}/retry", extra={"user_id": user_id})
        result = await service.retry_job(job_id, user_id)
        return _job_response(result.job, result.version)
    except ApplicationError as e:
        raise to_http_exception(e) from e


# ----------------------------------------------------------------------
# Webhook
# ----------------------------------------------------------------------


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(
    request: Request,
    x_signature: str | None = Header(default=None),
    x_timestamp: str | None = Header(default=None),
    service: LoraService = Depends(_service),
):
    """学習ワーカーからのコールバックを受信

    署名は生の本文に対してスキーマ検証より先に確認する。
    """
    try:
        raw_body = await request.body()
        body = service.authenticate_webhook(x_signature, x_timestamp, raw_body)

        try:
            payload = WebhookPayload.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Invalid webhook payload: {e.error_count()} errors")
            raise HTTPException(status_code=400, detail="Invalid webhook payload") from e

        logger.info(
            f"POST /lora/webhook: status={payload.status}", extra={"job_id": payload.job_id}
        )
        result = await service.handle_webhook(payload)
        return WebhookResponse(
            job_id=result.job_id,
            applied=result.applied,
            artifact_applied=result.artifact_applied,
        )
    except HTTPException:
        raise
    except ApplicationError as e:
        raise to_http_exception(e) from e


# ----------------------------------------------------------------------
# アクティブ LoRA
# ----------------------------------------------------------------------


@router.post("/activate", response_model=ActiveLoraResponse)
async def activate(
    data: ActivateInput,
    user_id: str = Depends(get_user_id),
    service: LoraService = Depends(_service),
):
    """アクティブ LoRA を設定"""
    try:
        logger.info(f"POST /lora/activate: version={data.version_id}", extra={"user_id": user_id})
        weight = get_settings().default_lora_weight if data.weight is None else data.weight
        await service.activate(user_id, data.version_id, weight)
        return await _active_response(service, user_id)
    except ApplicationError as e:
        raise to_http_exception(e) from e


@router.get("/active", response_model=ActiveLoraResponse)
async def get_active(
    user_id: str = Depends(get_user_id), service: LoraService = Depends(_service)
):
    """アクティブ LoRA を取得"""
    return await _active_response(service, user_id)


@router.delete("/active", response_model=ActiveLoraResponse)
async def deactivate(
    user_id: str = Depends(get_user_id), service: LoraService = Depends(_service)
):
    """アクティブ LoRA を解除"""
    logger.info("DELETE /lora/active", extra={"user_id": user_id})
    await service.deactivate(user_id)
    return ActiveLoraResponse(active=False)


async def _active_response(service: LoraService, user_id: str) -> ActiveLoraResponse:
    info = await service.get_active(user_id)
    if info is None:
        return ActiveLoraResponse(active=False)
    return ActiveLoraResponse(
        active=True,
        version_id=info.version.id,
        model_id=info.model.id,
        model_name=info.model.name,
        trigger_word=trigger_word_for(info.model.name),
        weight=info.binding.weight,
        artifact_url=info.version.artifact_url,
    )
