"""
Request-time redirects in front of the pages.

Order of checks, per request, with nothing remembered between requests:

1. plain-HTTP request (as reported by the proxy) -> same URL over https
2. no valid session on a protected path -> public entry page
3. valid session on the public entry page -> protected area
"""

import logging
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

logger = logging.getLogger(__name__)

Authenticator = Callable[[Request], Awaitable[bool]]


def is_plain_transport(request: Request) -> bool:
    proto = request.headers.get("x-forwarded-proto", "")
    return proto.split(",")[0].strip().lower() == "http"


class SessionGate(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        authenticate: Authenticator,
        public_path: str = "/",
        protected_prefix: str = "/dashboard",
        force_https: bool = True,
    ):
        super().__init__(app)
        self.authenticate = authenticate
        self.public_path = public_path
        self.protected_prefix = protected_prefix.rstrip("/")
        self.force_https = force_https

    def is_protected(self, path: str) -> bool:
        return path == self.protected_prefix or path.startswith(self.protected_prefix + "/")

    async def check(self, request: Request) -> Optional[RedirectResponse]:
        if self.force_https and is_plain_transport(request):
            return RedirectResponse(str(request.url.replace(scheme="https")), status_code=301)

        path = request.url.path
        protected = self.is_protected(path)
        if not protected and path != self.public_path:
            return None

        authenticated = await self.authenticate(request)
        if protected and not authenticated:
            logger.info("[gate] unauthenticated request to %s", path)
            return RedirectResponse(self.public_path, status_code=307)
        if authenticated and path == self.public_path:
            return RedirectResponse(self.protected_prefix, status_code=307)
        return None

    async def dispatch(self, request: Request, call_next):
        redirect = await self.check(request)
        if redirect is not None:
            return redirect
        return await call_next(request)
