"""
Provider Sync Server
FastAPI application exposing the provider sync triggers, with the interval scheduler
running inside the app's lifespan when enabled.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import Config
from routes.provider_sync_routes import router as provider_sync_router

logger = logging.getLogger(__name__)


def create_app(run_scheduler: bool = None) -> FastAPI:
    if run_scheduler is None:
        run_scheduler = os.getenv("RUN_SCHEDULER", "true").lower() == "true"

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if run_scheduler:
            from database import create_tables
            from jobs.scheduler import ProviderSyncScheduler

            Config.log_environment_config()
            await create_tables()
            scheduler = ProviderSyncScheduler()
            scheduler.start()
            logger.info("✅ Provider sync scheduler started with the web server")
        yield
        if scheduler is not None:
            scheduler.stop()
            from jobs.provider_order_sync import get_provider_order_sync_job
            await get_provider_order_sync_job().close()

    app = FastAPI(title="Provider Sync Server", lifespan=lifespan)
    app.include_router(provider_sync_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
