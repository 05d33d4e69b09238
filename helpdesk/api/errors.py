"""Uniform ``{"success": false, "error": {...}}`` envelopes for failed requests."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from helpdesk.tickets.errors import TicketServiceError

logger = logging.getLogger(__name__)

_HTTP_KINDS = {
    401: "unauthorized",
    403: "permission_denied",
    404: "not_found",
    503: "service_unavailable",
}


def error_response(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"kind": kind, "message": message}},
    )


async def handle_ticket_error(request: Request, exc: TicketServiceError) -> JSONResponse:
    logger.debug("%s %s failed with %s: %s", request.method, request.url.path, exc.kind, exc)
    return error_response(exc.status_code, exc.kind, str(exc))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    )
    return error_response(422, "validation_error", details or "Invalid request")


async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = _HTTP_KINDS.get(exc.status_code, "http_error")
    return error_response(exc.status_code, kind, str(exc.detail))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketServiceError, handle_ticket_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
