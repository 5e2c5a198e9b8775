"""Request-scoped middleware for API requests."""

import logging
from typing import Callable
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.models import ActorContext

logger = logging.getLogger(__name__)

ActorResolver = Callable[[Request], "ActorContext | None"]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ActorMiddleware(BaseHTTPMiddleware):
    """Resolves the acting user and stores it on request.state.actor.

    Authentication itself happens elsewhere; the resolver turns whatever
    the request carries (session cookie, bearer token, proxy header) into
    an ActorContext, or None when nobody is signed in.

    Public paths bypass resolution entirely.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, resolve_actor: ActorResolver):
        super().__init__(app)
        self._resolve_actor = resolve_actor

    def _is_public_path(self, path: str) -> bool:
        return any(path == p or path.startswith(p) for p in self.PUBLIC_PATHS)

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        actor = self._resolve_actor(request)
        if actor is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                    request_id=getattr(request.state, "request_id", None),
                ).model_dump(mode="json"),
            )

        request.state.actor = actor
        return await call_next(request)
