"""Role-based access control middleware for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from helpdesk.api.errors import error_response
from helpdesk.dependencies.auth import resolve_user_from_token


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate the request state with the authenticated user.

    Requests without an ``Authorization`` header pass through untouched;
    routes that need a user reject them through ``get_current_user``.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer":
                return error_response(401, "unauthorized", "Invalid authentication credentials")
            try:
                request.state.user = resolve_user_from_token(credentials or None)
            except HTTPException as exc:
                return error_response(exc.status_code, "unauthorized", str(exc.detail))

        return await call_next(request)
