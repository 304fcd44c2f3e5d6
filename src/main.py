"""
メインアプリケーション

FastAPI アプリケーションのエントリーポイント
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.blueprints import router as blueprints_router
from src.api.catalog import router as catalog_router
from src.api.deps import get_worker_client
from src.api.health import router as health_router
from src.api.lora import router as lora_router
from src.api.prompts import router as prompts_router
from src.config.logging import get_logger, setup_logging
from src.config.settings import get_settings
from src.database.connection import close_db, init_db
from src.services.catalog import get_catalog
from src.services.error_handler import ApplicationError, handle_error
from src.services.signing import get_signer

# ログ設定
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """アプリケーションライフサイクル管理

    起動時と終了時の処理を定義
    """
    # 起動時
    logger.info("Application starting...")
    settings = get_settings()
    logger.info(f"Environment: {settings.environment}")

    # 本番環境でシークレットが無ければここで起動失敗
    get_signer()

    # カタログ読み込み（不正なカタログでは起動しない）
    snapshot = get_catalog().snapshot
    logger.info(
        f"Catalog loaded: {len(snapshot.profiles)} profiles, "
        f"{len(snapshot.blueprints)} blueprints, {len(snapshot.blocks)} blocks"
    )

    # データベース初期化
    await init_db()
    logger.info("Database initialized")

    if not settings.worker_url:
        logger.warning("WORKER_URL is not set, training jobs run in mock mode")

    yield

    # 終了時
    logger.info("Application shutting down...")
    await get_worker_client().close()
    await close_db()
    logger.info("Application shutdown complete")


# FastAPI アプリケーション作成
def create_app() -> FastAPI:
    """FastAPI アプリケーションを作成

    Returns:
        FastAPI: アプリケーションインスタンス
    """
    app = FastAPI(
        title="Vectra Engine API",
        description="プロンプトコンパイルと LoRA 学習パイプライン API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS ミドルウェア設定
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # 本番環境では適切に制限する
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_logging(request: Request, call_next):
        """リクエスト ID を付与してアクセスログを出力"""
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex[:16]
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        logger.info(
            f"{response.status_code} in {(time.perf_counter() - started) * 1000:.1f}ms",
            extra={"request_id": request_id, "path": request.url.path, "method": request.method},
        )
        return response

    # エラーハンドラー登録
    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError):
        """ApplicationError ハンドラー"""
        error_response = exc.to_response()
        logger.error(
            f"Application error: {exc.code} - {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(status_code=exc.status_code, content=error_response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """一般的な例外ハンドラー"""
        context = {"path": request.url.path, "method": request.method}
        error_response = handle_error(exc, context)
        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    # ルーター登録
    app.include_router(health_router, tags=["health"])
    app.include_router(prompts_router)
    app.include_router(catalog_router)
    app.include_router(blueprints_router)
    app.include_router(lora_router)

    return app


# アプリケーションインスタンス
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
    )
