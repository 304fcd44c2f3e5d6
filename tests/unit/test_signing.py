"""
ペイロード署名のユニットテスト
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from src.services.signing import PayloadSigner, canonical_json, get_signer


def test_sign_and_verify(signer):
    """署名したペイロードが検証を通るテスト"""
    payload = {"jobId": "job-1", "status": "completed"}
    signed = signer.sign(payload)

    result = signer.verify(signed.signature, signed.timestamp, payload)

    assert result.valid is True
    assert result.error is None
    assert len(signed.signature) == 64


def test_canonical_json_is_compact():
    """署名対象の JSON に空白が含まれないテスト"""
    data = canonical_json({"b": 1, "a": "日本語"}, 1700000000000)
    assert data == '{"payload":{"b":1,"a":"日本語"},"timestamp":1700000000000}'.encode("utf-8")


def test_verify_rejects_tampered_payload(signer):
    """ペイロード改ざんの検出テスト"""
    signed = signer.sign({"jobId": "job-1", "status": "failed"})

    result = signer.verify(signed.signature, signed.timestamp, {"jobId": "job-1", "status": "completed"})

    assert result.valid is False
    assert result.error == "Signature mismatch"


def test_verify_rejects_tampered_signature(signer):
    """署名改ざんの検出テスト"""
    payload = {"jobId": "job-1"}
    signed = signer.sign(payload)
    flipped = ("0" if signed.signature[0] != "0" else "1") + signed.signature[1:]

    result = signer.verify(flipped, signed.timestamp, payload)

    assert result.valid is False
    assert result.error == "Signature mismatch"


def test_verify_rejects_other_secret(signer):
    """異なるシークレットの署名を拒否するテスト"""
    payload = {"jobId": "job-1"}
    signed = PayloadSigner("other-secret").sign(payload)

    assert signer.verify(signed.signature, signed.timestamp, payload).valid is False


@pytest.mark.parametrize("offset_ms", [5 * 60 * 1000 + 1, -(5 * 60 * 1000 + 1)])
def test_verify_rejects_outside_window(signer, offset_ms):
    """許容誤差を超えたタイムスタンプの拒否テスト（過去・未来とも）"""
    payload = {"jobId": "job-1"}
    now = 1_700_000_000_000
    signed = signer.sign(payload, timestamp=now - offset_ms)

    result = signer.verify(signed.signature, signed.timestamp, payload, now_ms=now)

    assert result.valid is False
    assert result.error == "Timestamp expired or invalid"


def test_verify_accepts_within_window(signer):
    """許容誤差内のタイムスタンプを受け付けるテスト"""
    payload = {"jobId": "job-1"}
    now = 1_700_000_000_000
    signed = signer.sign(payload, timestamp=now - 4 * 60 * 1000)

    assert signer.verify(signed.signature, signed.timestamp, payload, now_ms=now).valid is True


def test_verify_rejects_non_hex_signature(signer):
    """16 進数でない署名の拒否テスト"""
    signed = signer.sign({"a": 1})

    result = signer.verify("not-a-hex-signature", signed.timestamp, {"a": 1})

    assert result.valid is False
    assert result.error == "Signature verification failed"


def test_verify_length_mismatch_skips_constant_time_compare(signer):
    """長さの異なる署名は定数時間比較を呼ばずに拒否するテスト"""
    signed = signer.sign({"a": 1})

    with patch("src.services.signing.hmac.compare_digest") as mock_compare:
        result = signer.verify(signed.signature[:32], signed.timestamp, {"a": 1})

    assert result.valid is False
    assert result.error == "Invalid signature length"
    mock_compare.assert_not_called()


def test_empty_secret_rejected():
    """空のシークレットはエラー"""
    with pytest.raises(ValueError):
        PayloadSigner("")


def test_create_job_payload(signer):
    """ジョブペイロードの作成テスト"""
    signed = signer.create_job_payload(
        "job-1", "http://storage/ds.zip", {"steps": 1000}, "http://api/webhook"
    )

    assert signed.payload == {
        "jobId": "job-1",
        "datasetUrl": "http://storage/ds.zip",
        "params": {"steps": 1000},
        "callbackUrl": "http://api/webhook",
    }
    assert signed.headers() == {
        "X-Signature": signed.signature,
        "X-Timestamp": str(signed.timestamp),
    }
    # 送信される JSON を再パースしても検証が通る
    assert signer.verify(signed.signature, signed.timestamp, json.loads(json.dumps(signed.payload))).valid


def test_get_signer_requires_secret_in_production():
    """本番環境でシークレット未設定なら起動エラー"""
    settings = MagicMock()
    settings.worker_hmac_secret = ""
    settings.environment = "production"

    get_signer.cache_clear()
    try:
        with patch("src.services.signing.get_settings", return_value=settings):
            with pytest.raises(RuntimeError):
                get_signer()
    finally:
        get_signer.cache_clear()


def test_get_signer_random_secret_in_development():
    """開発環境ではランダムなシークレットで動作"""
    settings = MagicMock()
    settings.worker_hmac_secret = ""
    settings.environment = "development"
    settings.signature_tolerance_seconds = 300

    get_signer.cache_clear()
    try:
        with patch("src.services.signing.get_settings", return_value=settings):
            signer = get_signer()
        signed = signer.sign({"a": 1})
        assert signer.verify(signed.signature, signed.timestamp, {"a": 1}).valid
        assert signer.tolerance_ms == 300_000
    finally:
        get_signer.cache_clear()
