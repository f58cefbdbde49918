from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tasksync.application import TaskRuntime, configure_runtime, get_runtime
from tasksync.core.config import Settings
from tasksync.infrastructure import (
    HttpRecordServiceClient,
    RecordServiceClient,
    configure_record_client,
    get_record_client,
)
from tasksync.routes import tasks

LOGGER = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    client: RecordServiceClient | None = None,
    runtime: TaskRuntime | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    if runtime is None:
        if client is None:
            client = HttpRecordServiceClient(settings.api_base, settings.api_token, timeout=settings.timeout)
        configure_record_client(client)
        runtime = TaskRuntime.build(get_record_client(), settings)
    configure_runtime(runtime)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        current = get_runtime()
        if settings.autostart:
            LOGGER.info("Starting task polls against %s", settings.api_base)
            current.poller.start()
        try:
            yield
        finally:
            await current.shutdown()

    app = FastAPI(title="Task Sync API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tasks.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Task Sync API",
                "docs": "/docs",
                "health": "/api/tasks/stats",
            }
        )

    return app


app = create_app()
