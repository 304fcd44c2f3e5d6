"""Unit tests for error handler"""
import pytest

from src.services.error_handler import (
    ApplicationError,
    DatasetValidationError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    PreconditionFailedError,
    RecordNotFoundError,
    SignatureInvalidError,
    WorkerRejectedError,
    WorkerUnavailableError,
    handle_error,
)


def test_error_response_creation():
    """ErrorResponse の作成テスト"""
    error = ErrorResponse(
        code=ErrorCode.INTERNAL_ERROR,
        message="Test error",
        details={"key": "value"},
    )

    assert error.code == ErrorCode.INTERNAL_ERROR
    assert error.message == "Test error"
    assert error.details == {"key": "value"}


def test_application_error():
    """ApplicationError のテスト"""
    error = ApplicationError(
        code=ErrorCode.VALIDATION_ERROR,
        message="Validation failed",
        details={"field": "test"},
    )

    assert error.code == ErrorCode.VALIDATION_ERROR
    assert error.message == "Validation failed"
    assert error.status_code == 400

    response = error.to_response()
    assert isinstance(response, ErrorResponse)
    assert response.code == ErrorCode.VALIDATION_ERROR


@pytest.mark.parametrize(
    "error_class, code, status_code",
    [
        (RecordNotFoundError, ErrorCode.RECORD_NOT_FOUND, 404),
        (ForbiddenError, ErrorCode.FORBIDDEN, 403),
        (PreconditionFailedError, ErrorCode.PRECONDITION_FAILED, 409),
        (DatasetValidationError, ErrorCode.DATASET_VALIDATION_FAILED, 422),
        (SignatureInvalidError, ErrorCode.SIGNATURE_INVALID, 401),
        (WorkerUnavailableError, ErrorCode.WORKER_UNAVAILABLE, 503),
        (WorkerRejectedError, ErrorCode.WORKER_REJECTED, 502),
    ],
)
def test_error_status_codes(error_class, code, status_code):
    """エラー種別と HTTP ステータスの対応テスト"""
    error = error_class("failed", details={"id": "x"})

    assert error.code == code
    assert error.status_code == status_code
    assert error.details["id"] == "x"


def test_original_error_kept():
    original = TimeoutError("slow")
    error = WorkerUnavailableError("Worker timeout", original_error=original)

    assert error.original_error is original
    assert error.details == {}


def test_handle_error_with_application_error():
    """handle_error で ApplicationError を処理"""
    original_error = SignatureInvalidError("Signature mismatch")

    response = handle_error(original_error)

    assert isinstance(response, ErrorResponse)
    assert response.code == ErrorCode.SIGNATURE_INVALID


def test_handle_error_with_generic_exception():
    """handle_error で一般的な Exception を処理"""
    original_error = ValueError("Generic error")

    response = handle_error(original_error)

    assert isinstance(response, ErrorResponse)
    assert response.code == ErrorCode.INTERNAL_ERROR
    assert "予期しないエラー" in response.message
