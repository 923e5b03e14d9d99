from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lecturechat.api.routes.processing import router as processing_router
from lecturechat.api.routes.query import router as query_router
from lecturechat.api.routes.recordings import router as recordings_router
from lecturechat.config import get_settings
from lecturechat.errors import LectureChatError
from lecturechat.logging_config import setup_logging
from lecturechat.services import Services, build_services

logger = logging.getLogger(__name__)


def _start_background_work(services: Services) -> None:
    try:
        services.index.ensure_index()
    except LectureChatError as exc:
        logger.warning("Vector index not ready at startup: %s", exc)
    if services.settings.resume_on_startup:
        services.jobs.resume_pending()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "services", None) is None:
        settings = get_settings()
        setup_logging(settings.log_level)
        app.state.services = build_services(settings)
    services: Services = app.state.services
    await asyncio.to_thread(_start_background_work, services)
    yield
    services.jobs.shutdown(wait=False)


def create_app(services: Services | None = None) -> FastAPI:
    """Build the API app; *services* is injected in tests, built at startup otherwise."""
    app = FastAPI(
        title="LectureChat API",
        description="Ask questions about recorded lectures, with time-stamped citations",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
        ],
        allow_origin_regex=r"http://localhost:\d+",
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LectureChatError)
    async def handle_lecturechat_error(request: Request, exc: LectureChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    app.include_router(recordings_router)
    app.include_router(query_router)
    app.include_router(processing_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_settings()
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
