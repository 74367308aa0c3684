import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.types import ASGIApp

from intake.api.routes_health import router as health_router
from intake.api.routes_metrics import router as metrics_router
from intake.api.routes_posts import router as posts_router
from intake.api.routes_uploads import router as uploads_router
from intake.core.config import settings
from intake.core.errors import register_error_handlers
from intake.core.logger import init_logging
from intake.core.monitoring import init_monitoring
from intake.db.session import init_db
from intake.storage.local_storage import image_storage


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):  # type: ignore[override]
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security",
            f"max-age={settings.HSTS_SECONDS}; includeSubDomains; preload",
        )
        response.headers.setdefault("Referrer-Policy", "same-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
        # Served uploads must never be re-sniffed by the browser
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Content-Security-Policy", settings.CONTENT_SECURITY_POLICY)
        response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, max_body: int = 6 * 1024 * 1024) -> None:
        super().__init__(app)
        self.max_body = max_body
        self.logger = logging.getLogger("intake.request_size")

    async def dispatch(self, request, call_next):  # type: ignore[override]
        length_header = request.headers.get("content-length")
        if length_header:
            try:
                if int(length_header) > self.max_body:
                    self.logger.info("Rejected %s %s: body of %s bytes", request.method, request.url.path, length_header)
                    return JSONResponse(status_code=413, content={"detail": "Request body too large"})
            except ValueError:
                pass
        # Streamed bodies rely on the 5MB check in the upload validator
        return await call_next(request)


def create_app() -> FastAPI:
    init_logging()
    init_monitoring()

    is_production = settings.ENV.lower() == "prod"
    app = FastAPI(
        title=settings.APP_NAME,
        debug=False,
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    if is_production:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware, max_body=settings.MAX_REQUEST_BODY)
    register_error_handlers(app)

    app.include_router(uploads_router)
    app.include_router(posts_router)
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(health_router)
    app.mount(
        settings.UPLOAD_URL_PREFIX,
        StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
        name="uploads",
    )

    @app.on_event("startup")
    def prepare_storage():
        init_db()
        image_storage.ensure_layout()

    return app


app = create_app()
