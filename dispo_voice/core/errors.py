"""Exception handlers that turn call flow errors into JSON responses."""
import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dispo_voice.services.exceptions import CallFlowError, ConfigurationError, StorageError

logger = logging.getLogger(__name__)


def add_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(
            f"[ERROR] Storage failure on {request.url.path}: {exc.message}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": "Storage error"},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(f"[ERROR] Configuration problem on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message},
        )

    @app.exception_handler(CallFlowError)
    async def call_flow_error_handler(request: Request, exc: CallFlowError):
        logger.warning(
            f"[ERROR] {type(exc).__name__} on {request.url.path}: {exc.message}"
            + (f" - Details: {exc.details}" if exc.details else "")
        )
        content = {"success": False, "error": exc.message}
        if exc.details:
            content["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"[ERROR] Unhandled error on {request.url.path}: {type(exc).__name__}: {exc}",
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error"},
        )
