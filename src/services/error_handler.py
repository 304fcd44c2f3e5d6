"""
エラーハンドリングユーティリティ

一貫したエラーレスポンスを提供します。
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from src.config.logging import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """エラーコード"""

    # 一般エラー
    INTERNAL_ERROR = "INTERNAL_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FORBIDDEN = "FORBIDDEN"
    PRECONDITION_FAILED = "PRECONDITION_FAILED"

    # カタログ関連
    CATALOG_INVALID = "CATALOG_INVALID"

    # データセット関連
    DATASET_VALIDATION_FAILED = "DATASET_VALIDATION_FAILED"

    # 学習ワーカー関連
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    WORKER_UNAVAILABLE = "WORKER_UNAVAILABLE"
    WORKER_REJECTED = "WORKER_REJECTED"

    # データベース関連
    DATABASE_ERROR = "DATABASE_ERROR"
    RECORD_NOT_FOUND = "RECORD_NOT_FOUND"


# エラーコードと HTTP ステータスの対応
ERROR_STATUS_CODES: dict[ErrorCode, int] = {
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.PRECONDITION_FAILED: 409,
    ErrorCode.CATALOG_INVALID: 500,
    ErrorCode.DATASET_VALIDATION_FAILED: 422,
    ErrorCode.SIGNATURE_INVALID: 401,
    ErrorCode.WORKER_UNAVAILABLE: 503,
    ErrorCode.WORKER_REJECTED: 502,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.RECORD_NOT_FOUND: 404,
}


class ErrorResponse(BaseModel):
    """エラーレスポンス"""

    code: ErrorCode
    message: str
    details: Optional[dict[str, Any]] = None


class ApplicationError(Exception):
    """アプリケーション基底例外"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(message)

    @property
    def status_code(self) -> int:
        """対応する HTTP ステータスコード"""
        return ERROR_STATUS_CODES.get(self.code, 400)

    def to_response(self) -> ErrorResponse:
        """ErrorResponse に変換"""
        return ErrorResponse(code=self.code, message=self.message, details=self.details)


class RecordNotFoundError(ApplicationError):
    """レコード未検出エラー"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(
            code=ErrorCode.RECORD_NOT_FOUND, message=message, details=details, **kwargs
        )


class ForbiddenError(ApplicationError):
    """所有者以外によるアクセス"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(code=ErrorCode.FORBIDDEN, message=message, details=details, **kwargs)


class PreconditionFailedError(ApplicationError):
    """状態遷移の前提条件違反"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(
            code=ErrorCode.PRECONDITION_FAILED, message=message, details=details, **kwargs
        )


class CatalogLoadError(ApplicationError):
    """カタログ読み込みエラー"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(code=ErrorCode.CATALOG_INVALID, message=message, details=details, **kwargs)


class DatasetValidationError(ApplicationError):
    """データセット品質不足エラー"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(
            code=ErrorCode.DATASET_VALIDATION_FAILED, message=message, details=details, **kwargs
        )


class SignatureInvalidError(ApplicationError):
    """署名検証エラー"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(
            code=ErrorCode.SIGNATURE_INVALID, message=message, details=details, **kwargs
        )


class WorkerUnavailableError(ApplicationError):
    """学習ワーカー到達不能エラー（再試行可能）"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(
            code=ErrorCode.WORKER_UNAVAILABLE, message=message, details=details, **kwargs
        )


class WorkerRejectedError(ApplicationError):
    """学習ワーカーがジョブを拒否"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(code=ErrorCode.WORKER_REJECTED, message=message, details=details, **kwargs)


class DatabaseError(ApplicationError):
    """データベースエラー"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None, **kwargs):
        super().__init__(code=ErrorCode.DATABASE_ERROR, message=message, details=details, **kwargs)


def handle_error(error: Exception, context: Optional[dict[str, Any]] = None) -> ErrorResponse:
    """エラーをハンドリングして ErrorResponse を返す

    Args:
        error: 例外
        context: コンテキスト情報

    Returns:
        ErrorResponse
    """
    context = context or {}

    if isinstance(error, ApplicationError):
        logger.error(
            f"Application error: {error.code} - {error.message}",
            extra={"error_details": error.details, **context},
        )
        return error.to_response()

    # 予期しないエラー
    logger.exception("Unexpected error", extra=context)
    return ErrorResponse(
        code=ErrorCode.INTERNAL_ERROR,
        message="予期しないエラーが発生しました",
        details={"original_error": str(error)},
    )
