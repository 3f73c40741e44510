"""Middleware for the TradeLink API."""

from .auth import AuthConfig, JWTAuthMiddleware, decode_identity
from .rate_limit import InMemoryStore, RateLimitMiddleware, RateLimitStore, RedisStore

__all__ = [
    "AuthConfig",
    "JWTAuthMiddleware",
    "decode_identity",
    "RateLimitMiddleware",
    "RateLimitStore",
    "InMemoryStore",
    "RedisStore",
]
