"""FastAPI application entrypoint.

`create_app` wires one `Database` handle, the media host and its cleanup
queue into the entity services, registers the routers from
`lms.routes`, the request-context middleware and the error handlers
that render every failure in the `{success, message, ...}` envelope.

Run locally with `uvicorn lms.main:app --reload` from `backend/`.
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import BASE, Settings
from .database import Database
from .errors import AppError, BulkOperationError
from .media import LocalMediaHost, MediaCleanupQueue, MediaHost, S3MediaHost
from .responses import send_error
from .routes import categories_router, courses_router, users_router
from .services import CategoryService, CourseService, UserService

logger = logging.getLogger("lms.api")

LOCAL_MEDIA_ROOT = BASE / "data" / "media"


def _default_media_host(settings: Settings) -> MediaHost:
    if settings.MEDIA_BUCKET:
        return S3MediaHost(settings.MEDIA_BUCKET, region=settings.MEDIA_REGION, base_url=settings.MEDIA_BASE_URL)
    return LocalMediaHost(LOCAL_MEDIA_ROOT)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    media_host: Optional[MediaHost] = None,
    media_cleanup: Optional[MediaCleanupQueue] = None,
) -> FastAPI:
    settings = settings or Settings()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=settings.LOG_LEVEL)

    database = database or Database(settings.DATABASE_URL)
    database.create_all()
    media_host = media_host or _default_media_host(settings)
    media_cleanup = media_cleanup or MediaCleanupQueue(
        media_host,
        dead_letter_path=settings.MEDIA_DEAD_LETTER_PATH,
        max_attempts=settings.MEDIA_CLEANUP_MAX_ATTEMPTS,
        backoff_seconds=settings.MEDIA_CLEANUP_BACKOFF_SECONDS,
    )

    app = FastAPI(title="LMS Catalog API")
    app.state.settings = settings
    app.state.db = database
    app.state.media_host = media_host
    app.state.media_cleanup = media_cleanup
    app.state.user_service = UserService(database, cleanup=media_cleanup)
    app.state.category_service = CategoryService(database)
    app.state.course_service = CourseService(database, cleanup=media_cleanup)

    # Wide-open CORS keeps local frontends working without extra config in dev.
    if settings.ALLOW_DEV_CORS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if isinstance(media_host, LocalMediaHost):
        app.mount("/media", StaticFiles(directory=media_host.root, check_dir=False), name="media")

    app.middleware("http")(request_context_middleware)
    _register_error_handlers(app)
    app.include_router(users_router)
    app.include_router(categories_router)
    app.include_router(courses_router)

    @app.get("/health")
    def health():
        """Lightweight health check for uptime monitoring."""
        return {"success": True, "message": "LMS API is running", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BulkOperationError)
    async def bulk_error_handler(request: Request, exc: BulkOperationError):
        logger.warning("bulk_partial_failure %s", json.dumps({"path": request.url.path, "message": exc.message}))
        return send_error(exc.status_code, exc.message, results=exc.results)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.info(
            "request_rejected %s",
            json.dumps({"path": request.url.path, "kind": exc.kind.name, "message": exc.message}),
        )
        return send_error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"path": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
            for e in exc.errors()
        ]
        return send_error(400, "Validation failed", errors=errors)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("integrity_error %s", json.dumps({"path": request.url.path, "error": str(exc.orig)}))
        return send_error(400, "Database operation failed")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return send_error(404, "Route not found", path=request.url.path)
        return send_error(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("unhandled_error %s", json.dumps({"path": request.url.path}), exc_info=exc)
        return send_error(500, "Internal Server Error")


app = create_app()
