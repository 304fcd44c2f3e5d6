"""
LoRA 学習パイプラインサービス

データセット・バージョン・ジョブの状態遷移、ワーカーへの署名付き送信、
Webhook の検証と反映、アクティブ LoRA の切り替えを提供します。
"""

import hashlib
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.logging import get_logger, get_logger_with_context
from src.config.settings import get_settings
from src.models.lora import (
    TERMINAL_JOB_STATUSES,
    DatasetStatus,
    JobStatus,
    LoraDataset,
    LoraJob,
    LoraModel,
    LoraVersion,
    UserActiveLora,
)
from src.services.catalog import CatalogSnapshot, get_catalog
from src.services.error_handler import (
    ApplicationError,
    DatasetValidationError,
    ErrorCode,
    ForbiddenError,
    PreconditionFailedError,
    RecordNotFoundError,
    SignatureInvalidError,
    WorkerRejectedError,
    WorkerUnavailableError,
)
from src.services.prompt_compiler import ActiveAdapter, trigger_word_for
from src.services.signing import PayloadSigner, get_signer
from src.services.storage_provider import LocalStorageProvider, PresignedUpload, StorageProvider
from src.services.worker_client import TrainingWorkerClient

logger = get_logger(__name__)

MOCK_MODE_ERROR = "No worker configured - job in mock mode"
WORKER_UNAVAILABLE_ERROR = "Worker unavailable - job queued"

# 品質レポートの基準値
BASE_QUALITY_SCORE = 85
MIN_RESOLUTION = {"width": 512, "height": 512}


class WebhookPayload(BaseModel):
    """ワーカーからのコールバック本文"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str = Field(min_length=1)
    status: Literal["processing", "completed", "failed"]
    logs_url: str | None = None
    error: str | None = None
    artifact_url: str | None = None
    checksum: str | None = None
    preview_images: list[str] | None = None


@dataclass
class JobCreationResult:
    """ジョブ作成結果"""

    job: LoraJob
    version: LoraVersion


@dataclass
class WebhookResult:
    """Webhook 反映結果"""

    job_id: str
    applied: bool
    artifact_applied: bool = False


@dataclass
class ActiveLoraInfo:
    """アクティブ LoRA とその参照先"""

    binding: UserActiveLora
    version: LoraVersion
    model: LoraModel


def build_quality_report(image_count: int, min_images: int, soft_max_images: int) -> dict[str, Any]:
    """画像枚数からデータセットの品質レポートを作成

    最小枚数未満は不合格、推奨最大枚数超過は警告のみ。
    """
    report: dict[str, Any] = {
        "valid": True,
        "imageCount": image_count,
        "minResolution": dict(MIN_RESOLUTION),
        "duplicatesFound": 0,
        "issues": [],
        "score": BASE_QUALITY_SCORE,
    }

    if image_count < min_images:
        report["valid"] = False
        report["issues"].append(
            f"Minimum {min_images} images required ({image_count} provided, "
            f"{min_images - image_count} short)"
        )
        report["score"] -= 30

    if image_count > soft_max_images:
        report["issues"].append(f"More than {soft_max_images} images may slow training")
        report["score"] -= 5

    return report


def compute_dataset_hash(dataset_id: str, image_count: int, now_ms: int | None = None) -> str:
    """データセットのバージョン識別用ハッシュ（画像内容のハッシュではない）"""
    ts = int(time.time() * 1000) if now_ms is None else now_ms
    return hashlib.sha256(f"{dataset_id}-{image_count}-{ts}".encode("utf-8")).hexdigest()[:16]


class LoraService:
    """LoRA 学習パイプラインサービス"""

    def __init__(
        self,
        session: AsyncSession,
        worker_client: TrainingWorkerClient | None = None,
        storage_provider: StorageProvider | None = None,
        signer: PayloadSigner | None = None,
        snapshot: CatalogSnapshot | None = None,
    ):
        self.session = session
        self.settings = get_settings()
        self.worker_client = worker_client or TrainingWorkerClient()
        self.storage_provider = storage_provider or LocalStorageProvider()
        self._signer = signer
        self._snapshot = snapshot

    @property
    def signer(self) -> PayloadSigner:
        if self._signer is None:
            self._signer = get_signer()
        return self._signer

    @property
    def snapshot(self) -> CatalogSnapshot:
        if self._snapshot is None:
            self._snapshot = get_catalog().snapshot
        return self._snapshot

    # ------------------------------------------------------------------
    # LoRA モデル
    # ------------------------------------------------------------------

    async def create_model(
        self, user_id: str, name: str, description: str | None = None, consent: bool = False
    ) -> LoraModel:
        """LoRA モデル（コンテナ）を作成"""
        if not name.strip():
            raise ApplicationError(ErrorCode.VALIDATION_ERROR, "モデル名が空です")

        model = LoraModel(
            user_id=user_id, name=name.strip(), description=description, consent_given=consent
        )
        self.session.add(model)
        await self.session.commit()
        await self.session.refresh(model)

        logger.info(f"LoRA model created: {model.id}", extra={"user_id": user_id})
        return model

    async def list_models(self, user_id: str) -> list[LoraModel]:
        stmt = (
            select(LoraModel)
            .where(LoraModel.user_id == user_id)
            .order_by(LoraModel.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_owned_model(self, model_id: str, user_id: str) -> LoraModel:
        """ユーザーが所有する LoRA モデルを取得

        Raises:
            RecordNotFoundError: モデルが存在しない場合
            ForbiddenError: 他ユーザーのモデルの場合
        """
        model = await self.session.get(LoraModel, model_id)
        if model is None:
            raise RecordNotFoundError("LoRA model not found", details={"model_id": model_id})
        if model.user_id != user_id:
            raise ForbiddenError("LoRA model belongs to another user", details={"model_id": model_id})
        return model

    async def list_datasets(self, model_id: str) -> list[LoraDataset]:
        stmt = (
            select(LoraDataset)
            .where(LoraDataset.lora_model_id == model_id)
            .order_by(LoraDataset.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_versions(self, model_id: str) -> list[LoraVersion]:
        stmt = (
            select(LoraVersion)
            .where(LoraVersion.lora_model_id == model_id)
            .order_by(LoraVersion.created_at)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # データセット
    # ------------------------------------------------------------------

    async def init_dataset(
        self, user_id: str, model_id: str, image_count: int
    ) -> tuple[LoraDataset, PresignedUpload]:
        """データセットを作成し、アップロード先 URL を発行

        発行した公開 URL はアップロード前から保存される。書き込み先であり、
        内容が存在する証拠ではない。
        """
        await self.get_owned_model(model_id, user_id)

        if image_count < 1:
            raise ApplicationError(
                ErrorCode.VALIDATION_ERROR,
                "画像枚数は 1 以上を指定してください",
                details={"image_count": image_count},
            )

        dataset = LoraDataset(
            user_id=user_id,
            lora_model_id=model_id,
            image_count=image_count,
            status=DatasetStatus.PENDING.value,
        )
        self.session.add(dataset)
        await self.session.flush()

        upload = await self.storage_provider.get_presigned_upload_url(
            f"datasets/{user_id}/{dataset.id}/images.zip"
        )
        dataset.dataset_url = upload.public_url

        await self.session.commit()
        await self.session.refresh(dataset)

        logger.info(
            f"Dataset initialized: {image_count} images",
            extra={"user_id": user_id, "dataset_id": dataset.id},
        )
        return dataset, upload

    async def get_dataset(self, dataset_id: str) -> LoraDataset:
        dataset = await self.session.get(LoraDataset, dataset_id)
        if dataset is None:
            raise RecordNotFoundError("Dataset not found", details={"dataset_id": dataset_id})
        return dataset

    async def validate_dataset(self, dataset_id: str, user_id: str) -> LoraDataset:
        """データセットを検証（pending からの一方向遷移）

        Raises:
            RecordNotFoundError: データセットが存在しない場合
            ForbiddenError: 他ユーザーのデータセットの場合
            PreconditionFailedError: 検証済みの場合
        """
        dataset = await self.get_dataset(dataset_id)
        if dataset.user_id != user_id:
            raise ForbiddenError("Dataset belongs to another user", details={"dataset_id": dataset_id})
        if dataset.status != DatasetStatus.PENDING.value:
            raise PreconditionFailedError(
                f"Dataset already {dataset.status}",
                details={"dataset_id": dataset_id, "status": dataset.status},
            )

        report = build_quality_report(
            dataset.image_count,
            self.settings.dataset_min_images,
            self.settings.dataset_soft_max_images,
        )

        dataset.quality_report = report
        if report["valid"]:
            dataset.status = DatasetStatus.VALIDATED.value
            dataset.dataset_hash = compute_dataset_hash(dataset.id, dataset.image_count)
        else:
            dataset.status = DatasetStatus.INVALID.value

        await self.session.commit()
        await self.session.refresh(dataset)

        logger.info(
            f"Dataset validated: status={dataset.status}, issues={len(report['issues'])}",
            extra={"user_id": user_id, "dataset_id": dataset.id},
        )
        return dataset

    # ------------------------------------------------------------------
    # 学習ジョブ
    # ------------------------------------------------------------------

    async def create_job(
        self,
        user_id: str,
        model_id: str,
        dataset_id: str,
        base_model: str,
        params: dict[str, Any] | None = None,
    ) -> JobCreationResult:
        """学習ジョブを作成してワーカーへ送信

        前提条件の検証はすべてネットワーク呼び出しの前に行う。

        Raises:
            RecordNotFoundError: モデル・データセットが存在しない場合
            ForbiddenError: 他ユーザーのモデルの場合
            DatasetValidationError: データセットが品質基準を満たさなかった場合
            PreconditionFailedError: データセットが未検証の場合
        """
        await self.get_owned_model(model_id, user_id)

        dataset = await self.get_dataset(dataset_id)
        if dataset.lora_model_id != model_id:
            raise RecordNotFoundError(
                "Dataset not found for this model",
                details={"dataset_id": dataset_id, "model_id": model_id},
            )
        if dataset.status == DatasetStatus.INVALID.value:
            raise DatasetValidationError(
                "Dataset failed validation; upload a new dataset",
                details={"dataset_id": dataset_id, "quality_report": dataset.quality_report},
            )
        if dataset.status != DatasetStatus.VALIDATED.value:
            raise PreconditionFailedError(
                "Dataset must be validated before training", details={"dataset_id": dataset_id}
            )
        if not dataset.dataset_hash:
            raise PreconditionFailedError("Dataset has no hash", details={"dataset_id": dataset_id})

        known_models = {m.name for m in self.snapshot.active_base_models()}
        if base_model not in known_models:
            raise ApplicationError(
                ErrorCode.VALIDATION_ERROR,
                f"Unknown base model: {base_model}",
                details={"base_model": base_model, "available": sorted(known_models)},
            )

        version = LoraVersion(
            lora_model_id=model_id,
            dataset_id=dataset.id,
            base_model=base_model,
            params=params or {},
            dataset_hash=dataset.dataset_hash,
        )
        self.session.add(version)
        await self.session.flush()

        job = LoraJob(lora_version_id=version.id, status=JobStatus.PENDING.value)
        self.session.add(job)
        await self.session.commit()
        await self.session.refresh(job)
        await self.session.refresh(version)

        logger.info(
            f"LoRA job created: version={version.id}",
            extra={"user_id": user_id, "job_id": job.id, "dataset_id": dataset.id},
        )

        await self._dispatch(job, version, dataset)
        return JobCreationResult(job=job, version=version)

    async def retry_job(self, job_id: str, user_id: str) -> JobCreationResult:
        """pending のまま残ったジョブを再送信

        Raises:
            PreconditionFailedError: ジョブが pending 以外の場合
        """
        job, version = await self.get_job(job_id)
        await self.get_owned_model(version.lora_model_id, user_id)

        if job.status != JobStatus.PENDING.value:
            raise PreconditionFailedError(
                f"Only pending jobs can be retried (current: {job.status})",
                details={"job_id": job_id, "status": job.status},
            )
        if version.dataset_id is None:
            raise PreconditionFailedError("Job has no dataset reference", details={"job_id": job_id})

        dataset = await self.get_dataset(version.dataset_id)
        await self._dispatch(job, version, dataset)
        return JobCreationResult(job=job, version=version)

    async def _set_job_if_pending(self, job: LoraJob, **values: Any) -> bool:
        """pending のジョブにだけ値を設定（先に届いた Webhook を上書きしない）"""
        result = await self.session.execute(
            update(LoraJob)
            .where(LoraJob.id == job.id, LoraJob.status == JobStatus.PENDING.value)
            .values(**values)
        )
        await self.session.commit()
        await self.session.refresh(job)
        return result.rowcount == 1

    async def _dispatch(self, job: LoraJob, version: LoraVersion, dataset: LoraDataset) -> None:
        """署名済みペイロードをワーカーへ送信し、結果をジョブに反映"""
        job_logger = get_logger_with_context(__name__, job_id=job.id)

        if not self.worker_client.is_configured:
            job_logger.warning("No worker configured, job left pending in mock mode")
            await self._set_job_if_pending(job, error=MOCK_MODE_ERROR)
            return

        signed = self.signer.create_job_payload(
            job.id,
            dataset.dataset_url or "",
            version.params or {},
            self.settings.webhook_callback_url,
        )

        try:
            external_job_id = await self.worker_client.dispatch(signed)
        except WorkerRejectedError as e:
            job_logger.error(f"Worker rejected job: {e.message}")
            await self._set_job_if_pending(
                job,
                status=JobStatus.FAILED.value,
                error=e.message,
                finished_at=datetime.utcnow(),
            )
            return
        except WorkerUnavailableError as e:
            job_logger.warning(f"Worker unavailable, job left pending: {e.message}")
            await self._set_job_if_pending(job, error=WORKER_UNAVAILABLE_ERROR)
            return

        await self._record_external_job_id(job, external_job_id)
        await self._set_job_if_pending(job, status=JobStatus.PROCESSING.value, error=None)
        job_logger.info(f"Job dispatched: status={job.status}, external_job_id={job.external_job_id}")

    async def _record_external_job_id(self, job: LoraJob, external_job_id: str | None) -> None:
        """外部ジョブ ID と開始時刻を未設定の場合にのみ書き込む

        ワーカーの processing Webhook が送信応答より先に届いていても書き込む。
        """
        now = datetime.utcnow()
        await self.session.execute(
            update(LoraJob)
            .where(LoraJob.id == job.id, LoraJob.external_job_id.is_(None))
            .values(external_job_id=external_job_id)
        )
        await self.session.execute(
            update(LoraJob)
            .where(LoraJob.id == job.id, LoraJob.started_at.is_(None))
            .values(started_at=now)
        )
        await self.session.commit()

    async def get_job(self, job_id: str) -> tuple[LoraJob, LoraVersion]:
        """ジョブとそのバージョンを取得"""
        job = await self.session.get(LoraJob, job_id)
        if job is None:
            raise RecordNotFoundError("Job not found", details={"job_id": job_id})
        version = await self.session.get(LoraVersion, job.lora_version_id)
        if version is None:
            raise RecordNotFoundError(
                "LoRA version not found", details={"version_id": job.lora_version_id}
            )
        return job, version

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    def authenticate_webhook(
        self, signature: str | None, timestamp: str | None, raw_body: bytes
    ) -> Any:
        """Webhook の署名を検証し、検証済みの JSON 本文を返す

        スキーマ検証はこの後に行う。

        Raises:
            SignatureInvalidError: ヘッダー欠落、タイムスタンプ範囲外、署名不一致
        """
        if not signature or not timestamp:
            raise SignatureInvalidError("Missing authentication headers")

        try:
            timestamp_ms = int(timestamp)
        except ValueError as e:
            raise SignatureInvalidError("Invalid timestamp header", original_error=e) from e

        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Rejected webhook with malformed body (potential forgery)")
            raise SignatureInvalidError("Malformed webhook body", original_error=e) from e

        result = self.signer.verify(signature, timestamp_ms, body)
        if not result.valid:
            logger.warning(
                f"Rejected webhook signature (potential forgery): {result.error}",
                extra={"timestamp": timestamp_ms},
            )
            raise SignatureInvalidError(result.error or "Signature verification failed")

        return body

    async def handle_webhook(self, payload: WebhookPayload) -> WebhookResult:
        """検証済み Webhook をジョブとバージョンに反映

        完了・失敗済みのジョブは二度と変更しない。artifact_url は未設定の
        場合にのみ書き込まれる。
        """
        job = await self.session.get(LoraJob, payload.job_id)
        if job is None:
            raise RecordNotFoundError("Job not found", details={"job_id": payload.job_id})

        job_id = job.id
        version_id = job.lora_version_id
        job_logger = get_logger_with_context(__name__, job_id=job_id)

        if job.status in TERMINAL_JOB_STATUSES:
            job_logger.info(
                f"Webhook ignored for finished job: current={job.status}, received={payload.status}"
            )
            return WebhookResult(job_id=job_id, applied=False)

        is_terminal = payload.status in TERMINAL_JOB_STATUSES
        values: dict[str, Any] = {"status": payload.status, "error": payload.error}
        if payload.logs_url is not None:
            values["logs_url"] = payload.logs_url
        if is_terminal:
            values["finished_at"] = datetime.utcnow()
        if job.started_at is None:
            values["started_at"] = datetime.utcnow()

        result = await self.session.execute(
            update(LoraJob)
            .where(LoraJob.id == job_id, LoraJob.status.not_in(TERMINAL_JOB_STATUSES))
            .values(**values)
        )
        if result.rowcount == 0:
            # 並行して届いた完了通知が先に反映済み
            await self.session.rollback()
            job_logger.info("Webhook lost race against a concurrent terminal update")
            return WebhookResult(job_id=job_id, applied=False)

        artifact_applied = False
        if payload.status == JobStatus.COMPLETED.value and payload.artifact_url:
            version_result = await self.session.execute(
                update(LoraVersion)
                .where(
                    LoraVersion.id == version_id,
                    LoraVersion.artifact_url.is_(None),
                )
                .values(
                    artifact_url=payload.artifact_url,
                    checksum=payload.checksum,
                    preview_images=payload.preview_images or [],
                )
            )
            artifact_applied = version_result.rowcount == 1
            if not artifact_applied:
                job_logger.warning("Version already has an artifact, new artifact URL ignored")

        await self.session.commit()
        await self.session.refresh(job)

        job_logger.info(
            f"Webhook applied: status={job.status}, artifact_applied={artifact_applied}"
        )
        return WebhookResult(job_id=job_id, applied=True, artifact_applied=artifact_applied)

    # ------------------------------------------------------------------
    # アクティブ LoRA
    # ------------------------------------------------------------------

    async def _get_trained_version(self, version_id: str, user_id: str) -> tuple[LoraVersion, LoraModel]:
        version = await self.session.get(LoraVersion, version_id)
        if version is None:
            raise RecordNotFoundError("LoRA version not found", details={"version_id": version_id})
        if not version.artifact_url:
            raise PreconditionFailedError(
                "LoRA version has no trained artifact", details={"version_id": version_id}
            )
        model = await self.session.get(LoraModel, version.lora_model_id)
        if model is None or model.user_id != user_id:
            raise ForbiddenError("LoRA version belongs to another user", details={"version_id": version_id})
        return version, model

    async def activate(self, user_id: str, version_id: str, weight: float) -> UserActiveLora:
        """アクティブ LoRA を切り替え（1 ユーザー 1 件、後勝ち）

        Raises:
            RecordNotFoundError: バージョンが存在しない場合
            PreconditionFailedError: 学習済み成果物が無い場合
            ForbiddenError: 他ユーザーのバージョンの場合
        """
        await self._get_trained_version(version_id, user_id)

        binding = await self._get_binding(user_id)
        if binding is None:
            binding = UserActiveLora(user_id=user_id, lora_version_id=version_id, weight=weight)
            self.session.add(binding)
            try:
                await self.session.commit()
            except IntegrityError:
                # 同一ユーザーの並行アクティベーション
                await self.session.rollback()
                binding = await self._get_binding(user_id)
                binding.lora_version_id = version_id
                binding.weight = weight
                await self.session.commit()
        else:
            binding.lora_version_id = version_id
            binding.weight = weight
            await self.session.commit()

        await self.session.refresh(binding)
        logger.info(
            f"LoRA activated: version={version_id}, weight={weight}", extra={"user_id": user_id}
        )
        return binding

    async def _get_binding(self, user_id: str) -> UserActiveLora | None:
        result = await self.session.execute(
            select(UserActiveLora).where(UserActiveLora.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: str) -> ActiveLoraInfo | None:
        """ユーザーのアクティブ LoRA を取得"""
        binding = await self._get_binding(user_id)
        if binding is None:
            return None
        version = await self.session.get(LoraVersion, binding.lora_version_id)
        model = await self.session.get(LoraModel, version.lora_model_id) if version else None
        if version is None or model is None:
            return None
        return ActiveLoraInfo(binding=binding, version=version, model=model)

    async def deactivate(self, user_id: str) -> bool:
        """アクティブ LoRA を解除

        Returns:
            解除したかどうか
        """
        binding = await self._get_binding(user_id)
        if binding is None:
            return False
        await self.session.delete(binding)
        await self.session.commit()
        logger.info("LoRA deactivated", extra={"user_id": user_id})
        return True

    async def resolve_adapter(
        self, user_id: str, version_id: str, weight: float | None = None
    ) -> ActiveAdapter:
        """コンパイル用の ActiveAdapter を作成"""
        version, model = await self._get_trained_version(version_id, user_id)
        return ActiveAdapter(
            version_id=version.id,
            model_name=model.name,
            trigger_word=trigger_word_for(model.name),
            weight=self.settings.default_lora_weight if weight is None else weight,
            preview_images=tuple(version.preview_images or ()),
        )

    async def resolve_active_adapter(self, user_id: str) -> ActiveAdapter | None:
        """アクティブ LoRA から ActiveAdapter を作成（未設定なら None）"""
        info = await self.get_active(user_id)
        if info is None or not info.version.artifact_url:
            return None
        return ActiveAdapter(
            version_id=info.version.id,
            model_name=info.model.name,
            trigger_word=trigger_word_for(info.model.name),
            weight=info.binding.weight,
            preview_images=tuple(info.version.preview_images or ()),
        )
