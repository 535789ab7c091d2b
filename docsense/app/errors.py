from __future__ import annotations

"""Exception handlers that render every failure as an error envelope."""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docsense.app.settings import settings
from docsense.rag.embeddings import EmbeddingConfigError
from docsense.rag.errors import DocSenseError

logger = logging.getLogger(__name__)

_HTTP_KINDS = {401: "unauthorized", 403: "forbidden", 404: "not_found"}


def error_envelope(kind: str, message: str, detail: str | None = None) -> dict[str, object]:
    body: dict[str, object] = {"kind": kind, "message": message}
    if detail:
        body["detail"] = detail
    return {"error": body}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def handle_docsense_error(request: Request, exc: DocSenseError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "request_failed",
        extra={
            "request_id": _request_id(request),
            "kind": exc.kind,
            "detail": exc.message,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.kind, exc.message))


async def handle_embedding_config(request: Request, exc: EmbeddingConfigError) -> JSONResponse:
    logger.error("embedding_config_invalid", extra={"request_id": _request_id(request), "detail": str(exc)})
    return JSONResponse(status_code=400, content=error_envelope("validation_error", str(exc)))


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content=error_envelope("validation_error", message))


async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = _HTTP_KINDS.get(exc.status_code)
    if kind is None:
        kind = "validation_error" if exc.status_code == 400 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(kind, message),
        headers=getattr(exc, "headers", None),
    )


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", extra={"request_id": _request_id(request)})
    if settings.is_development:
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(
            status_code=500,
            content=error_envelope("internal_error", str(exc) or type(exc).__name__, detail),
        )
    return JSONResponse(status_code=500, content=error_envelope("internal_error", "Internal server error"))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DocSenseError, handle_docsense_error)
    app.add_exception_handler(EmbeddingConfigError, handle_embedding_config)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_unexpected)
