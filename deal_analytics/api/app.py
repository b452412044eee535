# deal_analytics/api/app.py
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uvicorn

from deal_analytics.api import dependencies
from deal_analytics.api.schemas import HealthResponse
from deal_analytics.engine.core import DealAnalyticsEngineCore
from deal_analytics.engine.scheduler import TaskScheduler
from deal_analytics.exceptions import (
    DealAnalyticsError, ValidationError, SchemaNotInitialized, NotFoundError
)

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    global scheduler

    logger.info("Starting Deal Analytics API")

    if dependencies._engine is None:
        from config.settings import get_settings
        settings = get_settings()

        engine = DealAnalyticsEngineCore(analytics_config=settings.analytics)
        dependencies.set_engine(engine)
        logger.info("Engine initialized successfully")

        # 初始化调度器（可选）
        try:
            scheduler = TaskScheduler(engine)
            scheduler.add_daily_refresh(settings.analytics.refresh_time)
            scheduler.add_nightly_backfill(settings.analytics.backfill_time, settings.analytics.backfill_lookback_days)
            scheduler.start()
            logger.info("Scheduler started successfully")
        except Exception as e:
            logger.warning(f"Scheduler initialization failed: {e}")
            scheduler = None

    yield

    # 清理资源
    logger.info("Shutting down Deal Analytics API")
    if scheduler:
        scheduler.stop()
        scheduler = None


# 创建FastAPI应用
app = FastAPI(
    title="Deal Analytics API",
    description="₹1 促销分析与优化建议API",
    version=VERSION,
    lifespan=lifespan
)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 导入路由
from deal_analytics.api.routes import router

app.include_router(router, prefix="/api/v1")


def _error_response(status_code: int, exc: DealAnalyticsError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": exc.message or str(exc)}
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation failed on {request.url.path}: {exc}")
    return _error_response(400, exc)


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return _error_response(404, exc)


@app.exception_handler(SchemaNotInitialized)
async def schema_exception_handler(request: Request, exc: SchemaNotInitialized):
    logger.warning(f"Analytics schema not initialized ({request.url.path})")
    return _error_response(409, exc)


# 全局异常处理
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"code": "internal_error", "detail": "Internal server error", "message": str(exc)}
    )


# 根路径
@app.get("/")
async def root():
    """根路径"""
    return {
        "name": "Deal Analytics API",
        "version": VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


# 健康检查 - 在根路径下
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """健康检查端点"""
    engine = dependencies._engine

    health_status = {
        "status": "healthy",
        "version": VERSION,
        "engine_status": "running" if engine else "not initialized",
        "scheduler_status": "running" if scheduler and scheduler.running else "stopped"
    }

    if engine:
        health_status["data_connection"] = "mock" if getattr(engine.repository, 'db', None) is None else "ok"
    else:
        health_status["data_connection"] = "not initialized"
        health_status["status"] = "degraded"
        health_status["message"] = "Engine not initialized"

    return health_status


# 开发模式下的自动重载
if __name__ == "__main__":
    import os

    port = int(os.getenv("API_PORT", 8000))

    uvicorn.run(
        "deal_analytics.api.app:app",
        host="0.0.0.0",
        port=port,
        reload=True,
        log_level="info"
    )
