"""
ペイロード署名ユーティリティ

学習ワーカーとの通信を HMAC-SHA256 とタイムスタンプで認証します。
送信時は sign()、Webhook 受信時は verify() を使用します。
"""

import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from src.config.logging import get_logger
from src.config.settings import get_settings

logger = get_logger(__name__)

# デフォルトの許容誤差（5 分）
DEFAULT_TOLERANCE_MS = 5 * 60 * 1000


@dataclass(frozen=True)
class SignedPayload:
    """署名済みペイロード（永続化しない）"""

    signature: str
    timestamp: int
    payload: Any

    def headers(self) -> dict[str, str]:
        """送信用の認証ヘッダー"""
        return {"X-Signature": self.signature, "X-Timestamp": str(self.timestamp)}


@dataclass(frozen=True)
class VerificationResult:
    """署名検証結果"""

    valid: bool
    error: str | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def canonical_json(payload: Any, timestamp: int) -> bytes:
    """署名対象の JSON 文字列を生成

    キー順は payload, timestamp。区切り文字に空白を含めない。
    """
    return json.dumps(
        {"payload": payload, "timestamp": timestamp},
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


class PayloadSigner:
    """HMAC 署名・検証クラス"""

    def __init__(self, secret: str, tolerance_ms: int = DEFAULT_TOLERANCE_MS):
        if not secret:
            raise ValueError("HMAC secret must not be empty")
        self._key = secret.encode("utf-8")
        self.tolerance_ms = tolerance_ms

    def _digest(self, payload: Any, timestamp: int) -> str:
        return hmac.new(self._key, canonical_json(payload, timestamp), hashlib.sha256).hexdigest()

    def sign(self, payload: Any, timestamp: int | None = None) -> SignedPayload:
        """ペイロードに署名

        Args:
            payload: JSON シリアライズ可能なペイロード
            timestamp: エポックミリ秒（省略時は現在時刻）

        Returns:
            SignedPayload
        """
        ts = _now_ms() if timestamp is None else timestamp
        return SignedPayload(signature=self._digest(payload, ts), timestamp=ts, payload=payload)

    def verify(
        self, signature: str, timestamp: int, payload: Any, now_ms: int | None = None
    ) -> VerificationResult:
        """署名を検証

        Args:
            signature: 16 進文字列の署名
            timestamp: 署名時のエポックミリ秒
            payload: 受信したペイロード
            now_ms: 現在時刻（テスト用）

        Returns:
            VerificationResult
        """
        now = _now_ms() if now_ms is None else now_ms

        if abs(now - timestamp) > self.tolerance_ms:
            return VerificationResult(valid=False, error="Timestamp expired or invalid")

        expected = bytes.fromhex(self._digest(payload, timestamp))
        try:
            provided = bytes.fromhex(signature)
        except (ValueError, TypeError):
            return VerificationResult(valid=False, error="Signature verification failed")

        # 長さが異なるバッファは定数時間比較に渡さない
        if len(provided) != len(expected):
            return VerificationResult(valid=False, error="Invalid signature length")

        if not hmac.compare_digest(provided, expected):
            return VerificationResult(valid=False, error="Signature mismatch")

        return VerificationResult(valid=True)

    def create_job_payload(
        self, job_id: str, dataset_url: str, params: Any, callback_url: str
    ) -> SignedPayload:
        """ワーカー送信用のジョブペイロードを署名付きで生成"""
        payload = {
            "jobId": job_id,
            "datasetUrl": dataset_url,
            "params": params,
            "callbackUrl": callback_url,
        }
        return self.sign(payload)


@lru_cache()
def get_signer() -> PayloadSigner:
    """プロセス共通の署名インスタンスを取得（シングルトン）

    Raises:
        RuntimeError: 本番環境でシークレットが未設定の場合
    """
    settings = get_settings()
    secret = settings.worker_hmac_secret

    if not secret:
        if settings.environment == "production":
            raise RuntimeError("WORKER_HMAC_SECRET environment variable is required in production")
        # 開発環境ではプロセスごとのランダムなシークレットを使用（Webhook は受け付けられない）
        logger.warning("WORKER_HMAC_SECRET is not set, using a random per-process secret")
        secret = secrets.token_hex(32)

    return PayloadSigner(secret, tolerance_ms=settings.signature_tolerance_seconds * 1000)
