"""
LoRA 学習関連モデル

LoraModel, LoraDataset, LoraVersion, LoraJob, UserActiveLora
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.connection import Base


class DatasetStatus(str, Enum):
    """データセットステータス"""

    PENDING = "pending"
    VALIDATED = "validated"
    INVALID = "invalid"


class JobStatus(str, Enum):
    """学習ジョブステータス"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class LoraModel(Base):
    """ユーザー所有の LoRA コンテナ"""

    __tablename__ = "lora_models"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    consent_given: Mapped[bool] = mapped_column(nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)

    # リレーション
    datasets: Mapped[list["LoraDataset"]] = relationship(
        "LoraDataset", back_populates="model", cascade="all, delete-orphan"
    )
    versions: Mapped[list["LoraVersion"]] = relationship(
        "LoraVersion", back_populates="model", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<LoraModel(id={self.id}, name={self.name})>"


class LoraDataset(Base):
    """学習用データセット"""

    __tablename__ = "lora_datasets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    lora_model_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lora_models.id"), nullable=False, index=True
    )
    image_count: Mapped[int] = mapped_column(Integer, nullable=False)
    dataset_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DatasetStatus.PENDING.value)
    quality_report: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    dataset_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    model: Mapped["LoraModel"] = relationship("LoraModel", back_populates="datasets")

    def __repr__(self) -> str:
        return f"<LoraDataset(id={self.id}, status={self.status})>"


class LoraVersion(Base):
    """学習結果のバージョン"""

    __tablename__ = "lora_versions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lora_model_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lora_models.id"), nullable=False, index=True
    )
    dataset_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("lora_datasets.id"), nullable=True
    )
    base_model: Mapped[str] = mapped_column(String(100), nullable=False)
    params: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    dataset_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # 学習完了時に一度だけ設定
    artifact_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    checksum: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    preview_images: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)

    model: Mapped["LoraModel"] = relationship("LoraModel", back_populates="versions")
    jobs: Mapped[list["LoraJob"]] = relationship(
        "LoraJob", back_populates="version", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<LoraVersion(id={self.id}, trained={self.artifact_url is not None})>"


class LoraJob(Base):
    """学習ジョブ（1 回の学習試行）"""

    __tablename__ = "lora_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    lora_version_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lora_versions.id"), nullable=False, index=True
    )
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="webhook_worker")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.PENDING.value)
    external_job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    logs_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    version: Mapped["LoraVersion"] = relationship("LoraVersion", back_populates="jobs")

    def __repr__(self) -> str:
        return f"<LoraJob(id={self.id}, status={self.status})>"


class UserActiveLora(Base):
    """ユーザーごとのアクティブ LoRA（1 ユーザー 1 件）"""

    __tablename__ = "user_active_loras"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    lora_version_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("lora_versions.id"), nullable=False
    )
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<UserActiveLora(user={self.user_id}, version={self.lora_version_id})>"
