"""
オブジェクトストレージプロバイダー

データセットのアップロード先 URL を発行します。
実際のアップロード処理は外部ストレージが担います。
"""

import secrets
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

from src.config.settings import get_settings


@dataclass(frozen=True)
class PresignedUpload:
    """署名付きアップロード先"""

    upload_url: str
    public_url: str


class StorageProvider(Protocol):
    """ストレージプロバイダーのインターフェース"""

    async def get_presigned_upload_url(
        self, key: str, expires_in: int = 3600
    ) -> PresignedUpload: ...


class LocalStorageProvider:
    """ローカル開発用のストレージプロバイダー（URL の発行のみ）"""

    def __init__(self, base_url: str | None = None):
        self.base_url = (base_url or get_settings().storage_base_url).rstrip("/")

    async def get_presigned_upload_url(
        self, key: str, expires_in: int = 3600
    ) -> PresignedUpload:
        token = secrets.token_hex(16)
        return PresignedUpload(
            upload_url=f"{self.base_url}/api/upload/{quote(key, safe='')}?token={token}&expires={expires_in}",
            public_url=f"{self.base_url}/uploads/{key}",
        )
