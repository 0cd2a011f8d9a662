from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tablesync.core.config import settings
from tablesync.api.routes import router as api_router
from tablesync.services.task_manager import TaskManager, create_task_manager


def create_app(manager_factory: Optional[Callable[[], TaskManager]] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Timers need the running loop, so the engine starts inside the lifespan
        manager = (manager_factory or create_task_manager)()
        manager.load_tasks()
        app.state.task_manager = manager
        try:
            yield
        finally:
            manager.destroy()

    app = FastAPI(
        title="Table Sync Scheduler API",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()
