"""
ユーザーブループリント関連モデル

UserBlueprint, UserBlueprintVersion
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.database.connection import Base


class UserBlueprint(Base):
    """ユーザー所有のブループリント"""

    __tablename__ = "user_blueprints"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    compatible_profiles: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # リレーション（追記のみ）
    versions: Mapped[list["UserBlueprintVersion"]] = relationship(
        "UserBlueprintVersion",
        back_populates="blueprint",
        cascade="all, delete-orphan",
        order_by="UserBlueprintVersion.version",
    )

    def __repr__(self) -> str:
        return f"<UserBlueprint(id={self.id}, name={self.name})>"


class UserBlueprintVersion(Base):
    """ユーザーブループリントのバージョン（最新版がコンパイルに使われる）"""

    __tablename__ = "user_blueprint_versions"
    __table_args__ = (UniqueConstraint("user_blueprint_id", "version"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_blueprint_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("user_blueprints.id"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    blocks: Mapped[list] = mapped_column(JSON, nullable=False)
    constraints: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=datetime.utcnow)

    blueprint: Mapped["UserBlueprint"] = relationship("UserBlueprint", back_populates="versions")

    def __repr__(self) -> str:
        return f"<UserBlueprintVersion(blueprint={self.user_blueprint_id}, v={self.version})>"
