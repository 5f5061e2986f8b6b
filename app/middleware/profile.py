"""Middleware resolving the acting user's profile for each request."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.dependencies.auth import resolve_actor_from_profile
from app.tickets.models import Actor

logger = logging.getLogger(__name__)


class ProfileMiddleware(BaseHTTPMiddleware):
    """Populate the request state with the user described by the profile headers.

    Requests without profile headers pass through untouched; endpoints that
    need an actor reject them through :func:`app.dependencies.auth.get_current_user`.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        role = request.headers.get("X-User-Role")
        email = request.headers.get("X-User-Email")

        if role or email:
            try:
                user: Actor = resolve_actor_from_profile(
                    role,
                    email,
                    request.headers.get("X-User-FirstName"),
                    request.headers.get("X-User-LastName"),
                    request.headers.get("X-User-SBU"),
                )
            except HTTPException as exc:
                logger.warning("Rejected request to %s: %s", request.url.path, exc.detail)
                return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
            request.state.user = user

        return await call_next(request)
