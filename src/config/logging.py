"""
ログ設定モジュール

構造化ログを提供します。API とワーカースタブの両方から使用されます。
"""

import logging
import sys
from typing import Any

from src.config.settings import get_settings

# LogRecord から拾うコンテキスト項目（出力順）
_CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "job_id",
    "dataset_id",
    "prompt_id",
    "path",
    "method",
)

# setup_logging が追加したハンドラー（二重登録防止）
_handler: logging.Handler | None = None


class StructuredFormatter(logging.Formatter):
    """構造化ログフォーマッター

    key=value を " | " で連結した 1 行を出力する。
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in _CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_data[field] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return " | ".join(f"{k}={v}" for k, v in log_data.items())


def setup_logging(level: str | None = None) -> None:
    """ログ設定を初期化

    複数回呼ばれてもハンドラーは 1 つだけ登録する。

    Args:
        level: ログレベル（省略時は LOG_LEVEL）
    """
    global _handler

    log_level = getattr(logging, (level or get_settings().log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if _handler is None:
        _handler = logging.StreamHandler(sys.stdout)
        _handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(_handler)
    _handler.setLevel(log_level)

    # サードパーティライブラリのログレベル調整
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """ロガーを取得

    Args:
        name: ロガー名

    Returns:
        ロガーインスタンス
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """コンテキスト情報を追加するロガーアダプター"""

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        # 呼び出し側の extra を優先
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger_with_context(name: str, **context: Any) -> LoggerAdapter:
    """コンテキスト付きロガーを取得

    Args:
        name: ロガー名
        **context: コンテキスト情報（user_id, job_id など）

    Returns:
        ロガーアダプター
    """
    return LoggerAdapter(get_logger(name), context)
