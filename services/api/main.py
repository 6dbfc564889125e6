from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.concurrency import run_in_threadpool

from core.exceptions import PasteboxError
from core.logging_config import setup_logging_from_settings
from core.service import PasteService
from core.settings import Settings, get_settings
from services.api.exception_handlers import pastebox_exception_handler
from services.api.routes import router


def create_app(settings: Settings | None = None, service: PasteService | None = None) -> FastAPI:
    """Build the API.

    When ``service`` is given it is used as-is; otherwise it is opened from
    ``settings`` (or the cached configuration) on startup.
    """
    app = FastAPI(
        title="Pastebox API",
        version="0.1.0",
        description="Store, fetch, replace and delete byte pastes",
    )
    app.state.settings = settings
    app.state.service = service

    @app.on_event("startup")
    async def _open_service() -> None:
        if app.state.service is not None:
            return
        if app.state.settings is None:
            app.state.settings = get_settings()
        setup_logging_from_settings(app.state.settings.logging)
        app.state.service = await run_in_threadpool(PasteService.open, app.state.settings)
        logger.info(
            "API initialised with data_dir={data_dir} state={state}",
            data_dir=app.state.settings.storage.data_dir,
            state=app.state.settings.state.path,
        )

    @app.on_event("shutdown")
    async def _dump_state() -> None:
        service = app.state.service
        settings = app.state.settings
        if service is None or settings is None:
            return
        await run_in_threadpool(service.dump_state, settings.state.path)
        logger.info("Registry snapshot written to {path}", path=settings.state.path)

    @app.get("/healthz", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.add_exception_handler(PasteboxError, pastebox_exception_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error("Unhandled exception on {method} {path}", method=request.method, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": type(exc).__name__,
                "message": str(exc),
            },
        )

    app.include_router(router)

    return app


app = create_app()


__all__ = ["app", "create_app"]
