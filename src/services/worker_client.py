"""
学習ワーカー API クライアント

署名済みジョブペイロードを外部の学習ワーカーへ送信します。
"""

import json

import httpx

from src.config.logging import get_logger
from src.config.settings import get_settings
from src.services.error_handler import WorkerRejectedError, WorkerUnavailableError
from src.services.signing import SignedPayload

logger = get_logger(__name__)


class TrainingWorkerClient:
    """学習ワーカー API クライアント"""

    def __init__(self, worker_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.worker_url = settings.worker_url if worker_url is None else worker_url
        self.timeout = settings.worker_timeout if timeout is None else timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        """ワーカーが設定されているか（未設定ならモックモード）"""
        return bool(self.worker_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """HTTPクライアントを取得（遅延初期化）"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    async def close(self):
        """HTTPクライアントをクローズ"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def dispatch(self, signed: SignedPayload) -> str | None:
        """ジョブをワーカーへ送信

        Args:
            signed: 署名済みジョブペイロード

        Returns:
            ワーカーが返した外部ジョブ ID（無ければ None）

        Raises:
            WorkerRejectedError: ワーカーが 2xx 以外を返した場合
            WorkerUnavailableError: タイムアウトまたはネットワークエラー
        """
        job_id = signed.payload.get("jobId") if isinstance(signed.payload, dict) else None

        try:
            client = await self._get_client()
            logger.info(f"Dispatching job to worker: {self.worker_url}", extra={"job_id": job_id})

            response = await client.post(
                self.worker_url,
                content=json.dumps(signed.payload, ensure_ascii=False).encode("utf-8"),
                headers={"Content-Type": "application/json", **signed.headers()},
            )

        except httpx.TimeoutException as e:
            error_msg = f"Worker timeout after {self.timeout} seconds"
            logger.error(error_msg, extra={"job_id": job_id})
            raise WorkerUnavailableError(
                error_msg, details={"timeout": self.timeout}, original_error=e
            ) from e

        except httpx.RequestError as e:
            error_msg = f"Worker request error: {str(e)}"
            logger.error(error_msg, extra={"job_id": job_id})
            raise WorkerUnavailableError(error_msg, original_error=e) from e

        if not response.is_success:
            error_msg = f"Worker rejected job: {response.status_code} - {response.text[:500]}"
            logger.error(error_msg, extra={"job_id": job_id})
            raise WorkerRejectedError(
                error_msg, details={"status_code": response.status_code, "body": response.text}
            )

        try:
            result = response.json()
        except json.JSONDecodeError:
            logger.warning("Worker response is not JSON", extra={"job_id": job_id})
            return None

        external_job_id = result.get("externalJobId") if isinstance(result, dict) else None
        logger.info(
            f"Worker accepted job: external_job_id={external_job_id}", extra={"job_id": job_id}
        )
        return str(external_job_id) if external_job_id else None
