from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from intel_export.api.routers.exports import router as exports_router
from intel_export.api.routers.system import router as system_router
from intel_export.config import settings
from intel_export.observability import bound_request_id, configure_logging, normalize_request_id, sanitize_for_logging
from intel_export.version import APP_VERSION

logger = logging.getLogger("intel_export.api")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", settings.request_id_header],
        expose_headers=[
            "Content-Disposition",
            "X-Intel-File-Count",
            "X-Intel-Article-Count",
            "X-Intel-Warning-Count",
            settings.request_id_header,
        ],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        route = {"method": request.method, "path": request.url.path}
        started = time.perf_counter()

        with bound_request_id(request_id):
            logger.info(
                "request_started",
                extra={
                    "event": "request_started",
                    **route,
                    "query": sanitize_for_logging(dict(request.query_params)),
                    "client_ip": request.client.host if request.client else None,
                },
            )
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_failed",
                    extra={"event": "request_failed", **route, "duration_ms": _elapsed_ms(started)},
                )
                raise

            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    **route,
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(started),
                },
            )
            return response

    app.include_router(system_router)
    app.include_router(exports_router)
    return app


app = create_app()
