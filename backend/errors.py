import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


def _first_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    err = errors[0]
    where = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
    return f"{where}: {err.get('msg')}" if where else str(err.get("msg"))


def register_error_handlers(app: FastAPI):
    """Render every failure as ``{"error": message}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _first_error(exc)})

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_error(request: Request, exc: DuplicateKeyError):
        return JSONResponse(status_code=400, content={"error": "Duplicate entry"})

    @app.exception_handler(PyMongoError)
    async def storage_error(request: Request, exc: PyMongoError):
        logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})
