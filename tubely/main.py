from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from tubely.api.v1 import get_api_router
from tubely.core.config import get_settings
from tubely.core.db import create_engine, create_session_factory
from tubely.core.errors import TubelyError
from tubely.core.logging import configure_logging, get_logger
from tubely.core.storage import get_object_store
from tubely.media.runner import ToolRunner


def _http_logger():
    return get_logger(component="http")


async def _handle_tubely_error(request: Request, exc: TubelyError) -> JSONResponse:
    cause = exc.__cause__
    logger = _http_logger()
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        method=request.method,
        path=request.url.path,
        status=exc.status_code,
        error=exc.error,
        message=exc.message,
        cause=repr(cause) if cause is not None else None,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    _http_logger().info("request_invalid", method=request.method, path=request.url.path, errors=exc.errors())
    return JSONResponse(
        status_code=400,
        content={"error": "validation_error", "message": "; ".join(_describe(error) for error in exc.errors())},
    )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": detail, "message": detail},
        headers=getattr(exc, "headers", None),
    )


def _describe(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg', 'invalid')}"


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=settings.log_level)
    object_store = get_object_store(settings)
    tool_runner = ToolRunner(
        max_concurrency=settings.media_tool_concurrency,
        timeout_s=settings.media_tool_timeout_s,
    )
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings
        app.state.object_store = object_store
        app.state.tool_runner = tool_runner
        app.state.engine = engine
        app.state.session_factory = session_factory
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.add_exception_handler(TubelyError, _handle_tubely_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)

    app.include_router(get_api_router())

    assets_root = Path(settings.assets_root)
    assets_root.mkdir(parents=True, exist_ok=True)
    app.mount("/assets", StaticFiles(directory=assets_root), name="assets")
    if settings.storage_backend == "local":
        app.mount("/objects", StaticFiles(directory=Path(settings.local_storage_base_path)), name="objects")
    return app


__all__ = ["create_app"]
