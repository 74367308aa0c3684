import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from intake.core.exceptions import IntakeException, UploadStorageError
from intake.core.monitoring import tag_storage_failure

logger = logging.getLogger("intake.errors")


def register_error_handlers(app):
    @app.exception_handler(UploadStorageError)
    async def storage_failure(request: Request, exc: UploadStorageError):
        correlation_id = uuid.uuid4().hex
        logger.error(
            "Storage failure cid=%s kind=%s path=%s method=%s: %s details=%s",
            correlation_id,
            exc.kind.value,
            request.url.path,
            request.method,
            exc.message,
            exc.details,
            exc_info=exc,
        )
        tag_storage_failure(exc.kind.value, request.path_params.get("category"), correlation_id)
        return JSONResponse(status_code=500, content={"detail": "Internal server error", "cid": correlation_id})

    @app.exception_handler(IntakeException)
    async def intake_error(request: Request, exc: IntakeException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):  # noqa: BLE001
        correlation_id = uuid.uuid4().hex
        logger.exception("Unhandled error cid=%s path=%s method=%s", correlation_id, request.url.path, request.method)
        return JSONResponse(status_code=500, content={"detail": "Internal server error", "cid": correlation_id})

    return app
