"""
Salesmap Attribution Hub — Bearer Token Middleware
====================================================
Requires an ``Authorization: Bearer <token>`` header on every /api/v2/ route
and passes the token on to the Salesmap API unchanged.

The check is a length gate only (>= 10 characters); Salesmap validates the
token itself. Public endpoints (health, docs, dashboard) bypass auth.
"""
from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse, Response

from scripts.lib.errors import APIAuthError
from scripts.lib.logger import setup_logger

logger = setup_logger("api_middleware")

MIN_TOKEN_LENGTH = 10

# Prefix paths that require a bearer token
PROTECTED_PREFIXES = ("/api/v2/",)

MISSING_TOKEN_MESSAGE = "Authentication required."
INVALID_TOKEN_MESSAGE = "Invalid token."


def extract_bearer_token(authorization: str | None) -> str:
    """
    Return the token from an Authorization header value.

    Raises:
        APIAuthError: header missing, not a Bearer header, or token too short.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise APIAuthError(MISSING_TOKEN_MESSAGE)

    token = authorization[len("Bearer "):].strip()
    if len(token) < MIN_TOKEN_LENGTH:
        raise APIAuthError(INVALID_TOKEN_MESSAGE)
    return token


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """Rejects protected requests without a usable bearer token with a 401."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path

        if not any(path.startswith(p) for p in PROTECTED_PREFIXES):
            return await call_next(request)

        try:
            request.state.token = extract_bearer_token(request.headers.get("Authorization"))
        except APIAuthError as e:
            logger.info("Rejected %s %s: %s", request.method, path, e.message)
            return JSONResponse(
                status_code=401,
                content={"success": False, "message": e.message},
            )

        return await call_next(request)


def get_token(request: Request) -> str:
    """Dependency returning the token validated by the middleware."""
    token = getattr(request.state, "token", None)
    if token is None:
        # route mounted outside the protected prefixes
        token = extract_bearer_token(request.headers.get("Authorization"))
    return token
