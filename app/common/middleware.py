"""
Middleware for handling multi-tenancy
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID, uuid4
import logging

from app.core.query_metrics import correlation_id_var

logger = logging.getLogger(__name__)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Extracts tenant_id from the X-Company-ID header and stores it on
    request.state together with a correlation id for log tracing. The
    correlation id is also published through correlation_id_var so query
    metrics recorded during the request are tagged with it.
    """

    # Paths that don't require tenant context
    EXEMPT_PREFIXES = (
        "/docs",
        "/redoc",
        "/openapi.json",
        "/health",
    )
    EXEMPT_EXACT = ("/",)

    def is_exempt(self, path: str) -> bool:
        return path in self.EXEMPT_EXACT or path.startswith(self.EXEMPT_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        request.state.correlation_id = request.headers.get("X-Request-ID") or str(uuid4())
        token = correlation_id_var.set(request.state.correlation_id)
        try:
            return await self._dispatch_with_tenant(request, call_next)
        finally:
            correlation_id_var.reset(token)

    async def _dispatch_with_tenant(self, request: Request, call_next):
        if self.is_exempt(request.url.path) or request.method == "OPTIONS":
            return await call_next(request)

        tenant_header = request.headers.get("X-Company-ID")
        if not tenant_header:
            return JSONResponse(
                {"detail": "Missing X-Company-ID header"},
                status_code=status.HTTP_400_BAD_REQUEST
            )

        try:
            tenant_id = UUID(tenant_header)
        except ValueError:
            return JSONResponse(
                {"detail": "Invalid X-Company-ID format. Must be a valid UUID"},
                status_code=status.HTTP_400_BAD_REQUEST
            )

        request.state.tenant_id = tenant_id
        logger.debug(
            f"Request to {request.url.path} with tenant_id: {tenant_id} "
            f"(correlation_id={request.state.correlation_id})"
        )

        response = await call_next(request)
        response.headers["X-Tenant-ID"] = str(tenant_id)
        response.headers["X-Request-ID"] = request.state.correlation_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers for production
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response
