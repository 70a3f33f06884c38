"""
Security headers middleware for the Artisan coordinator service.

Adds CSP, frame, MIME-sniffing, referrer and permissions headers to every
response, including rate-limit rejections. HSTS is only sent in production
over HTTPS (directly or behind a proxy setting X-Forwarded-Proto).
"""
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings

CSP_DIRECTIVES = [
    "default-src 'self'",
    # Swagger UI on /docs loads its bundle from jsDelivr and boots with an inline script
    "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
    "img-src 'self' data: https:",
    "font-src 'self' data:",
    "connect-src 'self'",
    "object-src 'none'",
    "frame-ancestors 'none'",
    "base-uri 'self'",
    "form-action 'self'",
]

PERMISSIONS_DIRECTIVES = [
    "camera=()",
    "microphone=()",
    "geolocation=()",
    "payment=(self)",
    "usb=()",
    "magnetometer=()",
    "gyroscope=()",
    "accelerometer=()",
]

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"


def content_security_policy(production: bool) -> str:
    directives = list(CSP_DIRECTIVES)
    if production:
        directives.append("upgrade-insecure-requests")
    return "; ".join(directives)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Headers added:
    - Content-Security-Policy
    - X-Content-Type-Options: nosniff
    - X-Frame-Options: DENY
    - X-XSS-Protection (legacy browsers)
    - Referrer-Policy: strict-origin-when-cross-origin
    - Permissions-Policy
    - Strict-Transport-Security (production over HTTPS only)
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        production = settings.is_production()

        response.headers["Content-Security-Policy"] = content_security_policy(production)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = ", ".join(PERMISSIONS_DIRECTIVES)

        forwarded_proto = request.headers.get("X-Forwarded-Proto", "")
        is_https = request.url.scheme == "https" or forwarded_proto.lower() == "https"
        if production and is_https:
            response.headers["Strict-Transport-Security"] = HSTS_VALUE

        return response


def add_security_headers(app: FastAPI) -> None:
    """Register SecurityHeadersMiddleware on the app."""
    app.add_middleware(SecurityHeadersMiddleware)
