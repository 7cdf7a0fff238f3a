import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.db import init_models
from app.tasks.scheduler import scheduler
from .routers import admin, health, history, transactions

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(start_scheduler: bool = True) -> FastAPI:
    app = FastAPI(title="Flux Revenue Dashboard API")

    # CORS 中间件必须在所有路由之前添加
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api")
    app.include_router(admin.router, prefix="/api")
    app.include_router(transactions.router, prefix="/api")
    app.include_router(history.router, prefix="/api")

    @app.get("/")
    async def read_root():
        return {"message": "Flux Revenue Dashboard API", "docs": "/docs"}

    @app.on_event("startup")
    async def startup_event() -> None:
        try:
            logger.info("正在初始化数据库...")
            await init_models()
            logger.info("数据库初始化完成")
        except Exception as e:
            logger.error(f"数据库初始化失败: {e}", exc_info=True)
            raise

        if start_scheduler:
            try:
                logger.info("正在启动定时任务（收入同步 / 每日快照 / 数据清理）...")
                await scheduler.start()
                logger.info("定时任务启动完成")
            except Exception as e:
                logger.error(f"定时任务启动失败: {e}", exc_info=True)
                # 不抛出异常，查询接口仍然可用
                logger.warning("应用将继续运行，但不会自动同步")

        logger.info("应用启动完成！")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        try:
            logger.info("正在停止定时任务...")
            await scheduler.stop()
            logger.info("定时任务已停止")
        except Exception as e:
            logger.error(f"停止定时任务时出错: {e}", exc_info=True)

    return app


app = create_app()
