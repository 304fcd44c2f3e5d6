"""
設定管理モジュール

環境変数を読み込み、アプリケーション全体で使用する設定を提供します。
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """アプリケーション設定"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/database.db", description="データベース URL"
    )

    # Application Configuration
    log_level: str = Field(default="INFO", description="ログレベル")
    environment: str = Field(default="development", description="実行環境")
    public_base_url: str = Field(
        default="http://localhost:8000", description="外部から到達可能な API のベース URL"
    )

    # Training Worker Configuration
    worker_url: str = Field(default="", description="学習ワーカーのエンドポイント（空ならモックモード）")
    worker_timeout: float = Field(default=10.0, description="ワーカー呼び出しタイムアウト（秒）")
    worker_hmac_secret: str = Field(default="", description="ワーカー通信用 HMAC シークレット")
    signature_tolerance_seconds: int = Field(
        default=300, description="署名タイムスタンプの許容誤差（秒）"
    )

    # Storage Configuration
    storage_base_url: str = Field(
        default="http://localhost:8000", description="アップロード先ストレージのベース URL"
    )

    # Template Catalog
    catalog_path: Path | None = Field(
        default=None, description="カタログ JSON ファイル（未指定時は組み込みプリセット）"
    )

    # Dataset Validation
    dataset_min_images: int = Field(default=10, description="データセットの最小画像枚数")
    dataset_soft_max_images: int = Field(
        default=30, description="データセットの推奨最大画像枚数（超過は警告のみ）"
    )

    # Compile Defaults
    default_lora_weight: float = Field(default=1.0, description="デフォルト LoRA ブレンド重み")
    history_page_size: int = Field(default=50, description="履歴取得の最大件数")

    @property
    def webhook_callback_url(self) -> str:
        """ワーカーに渡すコールバック URL"""
        return f"{self.public_base_url.rstrip('/')}/api/v1/lora/webhook"


@lru_cache()
def get_settings() -> Settings:
    """設定インスタンスを取得（シングルトン）"""
    return Settings()
