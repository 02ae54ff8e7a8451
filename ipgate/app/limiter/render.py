"""Rendering of rate limit denials.

A DENY decision ends the request with 429 Too Many Requests. Clients
that asked for JSON receive the configured payload, everyone else gets
the configured ban page or a short plain text message.
"""

from pathlib import Path

from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response

from ipgate.app.core.config import LimiterConfig
from ipgate.app.core.logging import get_logger
from ipgate.app.limiter.models import ContentType

logger = get_logger(__name__)

FALLBACK_MESSAGE = "Request blocked due to abuse."


class DenialRenderer:
    """Builds the 429 response for a denied request."""

    status_code = 429

    def __init__(self, config: LimiterConfig):
        self.config = config

    @property
    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.config.ban_time)}

    def stop(self, content_type: ContentType) -> Response:
        """Return the response that terminates a denied request."""
        if content_type is ContentType.JSON:
            return JSONResponse(
                status_code=self.status_code,
                content=self.config.ban_json_payload,
                headers=self.headers,
            )

        page = self._load_ban_page()
        if page is None:
            return PlainTextResponse(
                FALLBACK_MESSAGE,
                status_code=self.status_code,
                headers=self.headers,
            )
        return HTMLResponse(page, status_code=self.status_code, headers=self.headers)

    def _load_ban_page(self) -> str | None:
        if not self.config.ban_page:
            return None
        path = Path(self.config.ban_page)
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read ban page {path}: {e}")
            return None
