"""
プロンプト履歴関連モデル

GeneratedPrompt, PromptVersion
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.connection import Base


class GeneratedPrompt(Base):
    """コンパイル済みプロンプト（作成後は変更しない）"""

    __tablename__ = "generated_prompts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    profile_id: Mapped[str] = mapped_column(String(100), nullable=False)
    blueprint_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_blueprint_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    lora_version_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    seed: Mapped[str] = mapped_column(String(64), nullable=False)

    # 入力
    input: Mapped[dict] = mapped_column(JSON, nullable=False)
    applied_filters: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # 出力
    compiled_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    prompt_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    character_pack: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)

    # リレーション
    versions: Mapped[list["PromptVersion"]] = relationship(
        "PromptVersion",
        back_populates="generated_prompt",
        cascade="all, delete-orphan",
        order_by="PromptVersion.version",
    )

    def __repr__(self) -> str:
        return f"<GeneratedPrompt(id={self.id}, score={self.score})>"


class PromptVersion(Base):
    """ユーザーが明示的に保存したスナップショット"""

    __tablename__ = "prompt_versions"
    __table_args__ = (UniqueConstraint("generated_prompt_id", "version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    generated_prompt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("generated_prompts.id"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    compiled_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    version_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)

    generated_prompt: Mapped["GeneratedPrompt"] = relationship(
        "GeneratedPrompt", back_populates="versions"
    )

    def __repr__(self) -> str:
        return f"<PromptVersion(prompt={self.generated_prompt_id}, version={self.version})>"
