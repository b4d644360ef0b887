"""Role-based access control middleware for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from repairshop.dependencies.auth import resolve_requester_from_token


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate the request state with the authenticated requester."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        accounts = getattr(request.app.state, "accounts", None)
        if not authorization or accounts is None:
            return await call_next(request)

        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() != "bearer":
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            requester = await resolve_requester_from_token(credentials or None, accounts)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.requester = requester
        return await call_next(request)
