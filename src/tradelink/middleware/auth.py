"""JWT Authentication Middleware for FastAPI.

This module provides JWT-based authentication for the TradeLink marketplace API.
It validates Bearer tokens, extracts the user id (``sub``) and marketplace role
(``role``) from JWT claims, and stores them in request.state for downstream use.

Environment Variables:
    TRADELINK_JWT_SECRET: Secret key for HS256 signature validation (required when enabled)
    TRADELINK_JWT_ALGORITHM: JWT algorithm (default: HS256)
    TRADELINK_AUTH_ENABLED: Enable/disable authentication (default: false for dev)
    TRADELINK_AUTH_EXCLUDE_PATHS: Comma-separated paths to exclude from auth
        (default: /,/health,/live,/ready,/metrics,/docs,/redoc,/openapi.json)

Example:
    from fastapi import FastAPI
    from tradelink.middleware import JWTAuthMiddleware

    app = FastAPI()
    app.add_middleware(JWTAuthMiddleware)
"""

import os
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tradelink.infrastructure.logging_config import bind_actor

VALID_ROLES = ("buyer", "supplier", "admin")

# Identity used when authentication is disabled
DEMO_USER_ID = 1
DEMO_ROLE = "admin"

DEFAULT_EXCLUDE_PATHS = "/,/health,/live,/ready,/metrics,/docs,/redoc,/openapi.json"


@dataclass(frozen=True)
class AuthConfig:
    enabled: bool
    secret: str
    algorithm: str
    exclude_paths: frozenset[str]

    @classmethod
    def from_env(cls) -> "AuthConfig":
        exclude = os.getenv("TRADELINK_AUTH_EXCLUDE_PATHS", DEFAULT_EXCLUDE_PATHS)
        return cls(
            enabled=os.getenv("TRADELINK_AUTH_ENABLED", "false").lower() in ("true", "1", "yes"),
            secret=os.getenv("TRADELINK_JWT_SECRET", ""),
            algorithm=os.getenv("TRADELINK_JWT_ALGORITHM", "HS256"),
            exclude_paths=frozenset(path.strip() for path in exclude.split(",") if path.strip()),
        )


def decode_identity(token: str, config: AuthConfig) -> tuple[int, str]:
    """Validate a token and return ``(user_id, role)``.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or lacks the identity claims
    """
    claims = jwt.decode(token, config.secret, algorithms=[config.algorithm])
    return identity_from_claims(claims)


def identity_from_claims(claims: dict[str, Any]) -> tuple[int, str]:
    sub = claims.get("sub")
    role = claims.get("role")
    if sub is None or role is None:
        raise jwt.InvalidTokenError("JWT token missing required claims: sub, role")
    if role not in VALID_ROLES:
        raise jwt.InvalidTokenError(f"Unknown role: {role}")
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        raise jwt.InvalidTokenError("JWT sub claim must be a user id") from None
    return user_id, role


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """JWT Authentication Middleware for FastAPI.

    This middleware:
    1. Checks if the request path is excluded from authentication
    2. Validates JWT Bearer token if auth is enabled
    3. Extracts user_id and role from JWT claims
    4. Stores them in request.state for downstream handlers
    5. Returns 401 for missing, invalid or expired tokens
    """

    def __init__(self, app):
        super().__init__(app)

        self.config = AuthConfig.from_env()
        self.auth_enabled = self.config.enabled
        self.exclude_paths = set(self.config.exclude_paths)

        if self.auth_enabled and not self.config.secret:
            raise ValueError(
                "TRADELINK_JWT_SECRET is required when TRADELINK_AUTH_ENABLED=true. "
                "Set TRADELINK_JWT_SECRET environment variable."
            )

    async def dispatch(self, request: Request, call_next) -> Response:
        if self._is_excluded_path(request.url.path):
            return await call_next(request)

        # If auth is disabled, run in demo mode
        if not self.auth_enabled:
            self._set_demo_claims(request)
            return await call_next(request)

        token = self._extract_token(request)
        if not token:
            return self._unauthorized_response("Missing Authorization header")

        try:
            claims = self._validate_token(token)
            self._set_claims(request, claims)
        except jwt.ExpiredSignatureError:
            return self._unauthorized_response("Token has expired")
        except jwt.InvalidTokenError as e:
            return self._unauthorized_response(f"Invalid token: {str(e)}")

        return await call_next(request)

    def _is_excluded_path(self, path: str) -> bool:
        return path in self.exclude_paths

    def _extract_token(self, request: Request) -> str | None:
        """Extract Bearer token from Authorization header."""
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None

        # Parse "Bearer <token>"
        parts = auth_header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None

        return parts[1]

    def _validate_token(self, token: str) -> dict[str, Any]:
        return jwt.decode(
            token,
            self.config.secret,
            algorithms=[self.config.algorithm],
        )

    def _set_claims(self, request: Request, claims: dict[str, Any]) -> None:
        """Store the caller identity in request.state.

        Raises:
            jwt.InvalidTokenError: If ``sub`` or ``role`` is missing or malformed
        """
        user_id, role = identity_from_claims(claims)
        request.state.user_id = user_id
        request.state.role = role
        request.state.jwt_claims = claims
        request.state.auth_enabled = True
        bind_actor(user_id, role)

    def _set_demo_claims(self, request: Request) -> None:
        request.state.user_id = DEMO_USER_ID
        request.state.role = DEMO_ROLE
        request.state.jwt_claims = {"sub": str(DEMO_USER_ID), "role": DEMO_ROLE}
        request.state.auth_enabled = False
        bind_actor(DEMO_USER_ID, DEMO_ROLE)

    def _unauthorized_response(self, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={
                "error": "Unauthorized",
                "message": message,
            },
            headers={"WWW-Authenticate": "Bearer"},
        )
