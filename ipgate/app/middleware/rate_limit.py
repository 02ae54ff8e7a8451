"""Rate limiting middleware.

Gates every request through the RateLimiterEngine before it reaches the
application. Denied requests are answered with 429 by the DenialRenderer;
state store outages are answered according to the fail-closed policy.
"""

from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ipgate.app.core.config import LimiterConfig
from ipgate.app.core.logging import get_log_context, get_logger
from ipgate.app.exceptions import StoreUnavailableError
from ipgate.app.limiter import (
    Decision,
    DenialRenderer,
    MaintenanceScheduler,
    RateLimiterEngine,
    extract_identity,
)
from ipgate.app.middleware.request_id import get_request_id
from ipgate.app.store.base import StateStore

logger = get_logger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce per-IP rate limits on requests.

    Exception URLs pass untouched. Store failures produce 503 when
    fail_closed is set, otherwise the request is let through with a warning.
    """

    def __init__(
        self,
        app,
        store: StateStore,
        config: Optional[LimiterConfig] = None,
        scheduler: Optional[MaintenanceScheduler] = None,
    ):
        super().__init__(app)
        self.config = config or LimiterConfig()
        self.engine = RateLimiterEngine(store, self.config)
        self.renderer = DenialRenderer(self.config)
        self.scheduler = scheduler

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        identity = extract_identity(request, self.config.trust_forwarded_for)

        if self.scheduler is not None:
            self.scheduler.maybe_schedule()

        try:
            decision = await self.engine.consume(identity)
        except StoreUnavailableError as e:
            context = get_log_context(
                client_ip=identity.ip,
                path=request.url.path,
                request_id=get_request_id(request),
            )
            if self.config.fail_closed:
                logger.error(
                    f"Rate limiting fail-closed triggered: {e}. Request denied.",
                    extra=context,
                )
                return JSONResponse(
                    status_code=e.status_code,
                    content={
                        "error": "store_unavailable",
                        "message": "Service temporarily unavailable. Please try again later.",
                    },
                )
            logger.warning(
                f"Rate limiting fail-open triggered: {e}. "
                "Request allowed without rate limit check.",
                extra=context,
            )
            return await call_next(request)

        if decision is Decision.DENY:
            logger.info(
                "Request rejected by rate limiter",
                extra=get_log_context(
                    client_ip=identity.ip,
                    path=request.url.path,
                    decision=decision.value,
                    status_code=self.renderer.status_code,
                ),
            )
            return self.renderer.stop(identity.content_type)

        return await call_next(request)
