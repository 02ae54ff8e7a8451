"""Request ID middleware for request tracking.

This middleware adds a unique request ID to each incoming request,
so rate limiter log lines can be correlated with responses.
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add a request ID to all requests.

    The request ID is:
    1. Extracted from X-Request-ID header if present
    2. Generated as UUID if not present
    3. Added to request.state for access in endpoints and middleware
    4. Returned in X-Request-ID response header
    """

    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request and add request ID."""
        request_id = request.headers.get(self.header_name)
        if not request_id:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Get request ID from request state."""
    return getattr(request.state, "request_id", "unknown")
