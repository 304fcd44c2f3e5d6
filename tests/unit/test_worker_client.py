"""
学習ワーカークライアントのユニットテスト
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.services.error_handler import WorkerRejectedError, WorkerUnavailableError
from src.services.worker_client import TrainingWorkerClient


@pytest.fixture
def worker_client():
    """ワーカークライアントのフィクスチャ"""
    return TrainingWorkerClient(worker_url="http://worker.test/train", timeout=2.0)


@pytest.fixture
def signed(signer):
    return signer.create_job_payload("job-1", "http://storage/ds.zip", {}, "http://api/webhook")


def _mock_http(worker_client, response=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.is_closed = False
    worker_client._client = mock_client
    return mock_client


def test_is_configured():
    assert TrainingWorkerClient(worker_url="http://worker").is_configured is True
    assert TrainingWorkerClient(worker_url="").is_configured is False


@pytest.mark.asyncio
async def test_dispatch_success(worker_client, signed):
    """送信が成功するケース"""
    mock_response = MagicMock()
    mock_response.is_success = True
    mock_response.json.return_value = {"externalJobId": "ext-42"}
    mock_client = _mock_http(worker_client, response=mock_response)

    external_job_id = await worker_client.dispatch(signed)

    assert external_job_id == "ext-42"
    mock_client.post.assert_called_once()
    call_args = mock_client.post.call_args
    assert call_args[0][0] == "http://worker.test/train"
    assert json.loads(call_args[1]["content"]) == signed.payload
    assert call_args[1]["headers"]["X-Signature"] == signed.signature
    assert call_args[1]["headers"]["X-Timestamp"] == str(signed.timestamp)


@pytest.mark.asyncio
async def test_dispatch_without_external_id(worker_client, signed):
    """外部ジョブ ID を返さないワーカー"""
    mock_response = MagicMock()
    mock_response.is_success = True
    mock_response.json.side_effect = json.JSONDecodeError("bad", "", 0)
    _mock_http(worker_client, response=mock_response)

    assert await worker_client.dispatch(signed) is None


@pytest.mark.asyncio
async def test_dispatch_rejected(worker_client, signed):
    """2xx 以外は WorkerRejectedError"""
    mock_response = MagicMock()
    mock_response.is_success = False
    mock_response.status_code = 400
    mock_response.text = "bad params"
    _mock_http(worker_client, response=mock_response)

    with pytest.raises(WorkerRejectedError) as exc_info:
        await worker_client.dispatch(signed)

    assert "400" in exc_info.value.message
    assert exc_info.value.details["status_code"] == 400


@pytest.mark.asyncio
async def test_dispatch_timeout(worker_client, signed):
    """タイムアウトは WorkerUnavailableError"""
    _mock_http(worker_client, side_effect=httpx.TimeoutException("timed out"))

    with pytest.raises(WorkerUnavailableError) as exc_info:
        await worker_client.dispatch(signed)

    assert "timeout" in exc_info.value.message.lower()


@pytest.mark.asyncio
async def test_dispatch_connection_error(worker_client, signed):
    """接続エラーは WorkerUnavailableError"""
    _mock_http(worker_client, side_effect=httpx.ConnectError("refused"))

    with pytest.raises(WorkerUnavailableError):
        await worker_client.dispatch(signed)


@pytest.mark.asyncio
async def test_close(worker_client):
    mock_client = _mock_http(worker_client)

    await worker_client.close()

    mock_client.aclose.assert_awaited_once()
    assert worker_client._client is None
