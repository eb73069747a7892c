"""Security, rate limiting and error handling middleware."""

from app.middleware.errors import ErrorHandlingMiddleware
from app.middleware.security import APIKeyMiddleware, RateLimitMiddleware

__all__ = ["APIKeyMiddleware", "ErrorHandlingMiddleware", "RateLimitMiddleware"]
