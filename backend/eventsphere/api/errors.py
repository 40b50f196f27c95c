"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from eventsphere.obs.logging import current_request_id
from eventsphere.uploads.exceptions import QuotaExceeded, UploadError


def get_request_id(request: Request, default: str = "unknown") -> str:
    rid = getattr(request.state, "request_id", None) or current_request_id()
    return rid or request.headers.get("X-Request-Id") or default


def quota_headers(limit: int, remaining: int, resets_in: int) -> dict[str, str]:
    return {
        "X-Upload-Limit": str(limit),
        "X-Upload-Remaining": str(remaining),
        "X-Upload-Reset": str(resets_in),
    }


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(UploadError)
    async def upload_exc_handler(request: Request, exc: UploadError):  # type: ignore[override]
        payload = {
            "detail": exc.detail,
            "message": exc.message,
            "stage": exc.stage,
            "request_id": get_request_id(request),
        }
        headers = None
        if isinstance(exc, QuotaExceeded):
            headers = quota_headers(exc.limit, exc.remaining, exc.resets_in)
        return JSONResponse(status_code=exc.status_code, content=payload, headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {"detail": exc.detail, "request_id": get_request_id(request)}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": get_request_id(request)}
        return JSONResponse(status_code=422, content=payload)
