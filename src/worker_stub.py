"""
学習ワーカー スタブサーバー

GPU サーバーを起動せずに学習パイプライン全体の動作確認を可能にするためのスタブサーバー。
実際の学習は行わず、一定時間後に署名付きの completed Webhook を返します。
"""

import asyncio
import hashlib
import json
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request

from src.config.logging import get_logger, setup_logging
from src.config.settings import get_settings
from src.services.signing import PayloadSigner, get_signer

logger = get_logger(__name__)

# 実行中のコールバックタスク（GC で消えないよう保持）
_pending_tasks: set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションのライフサイクル管理"""
    logger.info("Starting training worker stub")
    yield
    logger.info("Shutting down training worker stub")
    for task in list(_pending_tasks):
        task.cancel()


app = FastAPI(title="Training Worker Stub", version="1.0.0", lifespan=lifespan)


def get_delay_seconds() -> float:
    """完了通知までの待ち時間（WORKER_STUB_DELAY、既定 5 秒）"""
    try:
        return float(os.getenv("WORKER_STUB_DELAY", "5"))
    except ValueError:
        logger.error(f"Invalid WORKER_STUB_DELAY: {os.getenv('WORKER_STUB_DELAY')}")
        return 5.0


def build_completion(job_id: str, external_job_id: str, storage_base_url: str) -> dict[str, Any]:
    """ダミーの学習成果物を含む completed ペイロードを作成"""
    artifact_url = f"{storage_base_url.rstrip('/')}/artifacts/{job_id}/lora.safetensors"
    return {
        "jobId": job_id,
        "status": "completed",
        "logsUrl": f"{storage_base_url.rstrip('/')}/logs/{external_job_id}.txt",
        "artifactUrl": artifact_url,
        "checksum": hashlib.sha256(artifact_url.encode("utf-8")).hexdigest(),
        "previewImages": [
            f"{storage_base_url.rstrip('/')}/artifacts/{job_id}/preview_{i}.png" for i in range(1, 4)
        ],
    }


async def send_webhook(callback_url: str, payload: dict[str, Any], signer: PayloadSigner) -> None:
    """署名付き Webhook を送信"""
    signed = signer.sign(payload)
    async with httpx.AsyncClient(timeout=httpx.Timeout(10.0)) as client:
        response = await client.post(
            callback_url,
            content=json.dumps(signed.payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json", **signed.headers()},
        )
    logger.info(
        f"Webhook delivered: status={payload['status']}, response={response.status_code}",
        extra={"job_id": payload["jobId"]},
    )


async def simulate_training(
    job_id: str, external_job_id: str, callback_url: str, signer: PayloadSigner, delay: float
) -> None:
    """processing → completed の順に Webhook を送信"""
    storage_base_url = get_settings().storage_base_url
    try:
        await send_webhook(
            callback_url, {"jobId": job_id, "status": "processing"}, signer
        )
        await asyncio.sleep(delay)
        await send_webhook(
            callback_url, build_completion(job_id, external_job_id, storage_base_url), signer
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to deliver webhook: {e}", extra={"job_id": job_id})


@app.get("/")
async def root():
    """ルートエンドポイント"""
    return {"message": "Training Worker Stub", "version": "1.0.0", "endpoints": ["/train"]}


@app.post("/train")
async def train(
    request: Request,
    x_signature: str | None = Header(default=None),
    x_timestamp: str | None = Header(default=None),
):
    """学習ジョブ受付 API スタブ

    ディスパッチの署名を検証し、外部ジョブ ID を返します。
    """
    if not x_signature or not x_timestamp:
        raise HTTPException(status_code=401, detail="Missing authentication headers")

    try:
        timestamp = int(x_timestamp)
        body = json.loads(await request.body())
    except (ValueError, json.JSONDecodeError) as e:
        raise HTTPException(status_code=400, detail="Malformed request") from e

    signer = get_signer()
    result = signer.verify(x_signature, timestamp, body)
    if not result.valid:
        logger.warning(f"Rejected dispatch signature: {result.error}")
        raise HTTPException(status_code=401, detail=result.error)

    job_id = body.get("jobId") if isinstance(body, dict) else None
    callback_url = body.get("callbackUrl") if isinstance(body, dict) else None
    if not job_id or not callback_url:
        raise HTTPException(status_code=400, detail="jobId and callbackUrl are required")

    external_job_id = f"stub-{uuid.uuid4().hex[:12]}"
    logger.info(
        f"Received training job: dataset={body.get('datasetUrl')}, external_job_id={external_job_id}",
        extra={"job_id": job_id},
    )

    task = asyncio.create_task(
        simulate_training(job_id, external_job_id, callback_url, signer, get_delay_seconds())
    )
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)

    return {"externalJobId": external_job_id}


def run_stub(host: str = "0.0.0.0", port: int = 7870):
    """スタブサーバーを起動

    Args:
        host: バインドするホスト
        port: バインドするポート
    """
    import uvicorn

    setup_logging()
    logger.info(f"Starting training worker stub on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_stub()
