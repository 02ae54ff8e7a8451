"""Request identity extraction and URL exception matching."""

from typing import Iterable

from starlette.requests import Request

from ipgate.app.limiter.models import RequestIdentity, negotiate


class ExceptionList:
    """Ordered URL substring patterns that bypass rate limiting.

    Matching is a case-insensitive substring test. The list is immutable
    once built, so it is safe to share between concurrent requests.
    """

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns = tuple(patterns)
        self._folded = tuple(p.lower() for p in self._patterns)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def matches(self, url: str) -> bool:
        folded = url.lower()
        return any(pattern in folded for pattern in self._folded)

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"ExceptionList({list(self._patterns)!r})"


def get_client_ip(request: Request, trust_forwarded_for: bool = False) -> str:
    """Get the client IP used as rate limit key.

    X-Forwarded-For is only honoured when the service sits behind a
    trusted proxy, otherwise any client could pick its own identity.
    """
    if trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else "unknown"


def extract_identity(request: Request, trust_forwarded_for: bool = False) -> RequestIdentity:
    """Build the RequestIdentity for an incoming request.

    The URL keeps the query string so exception patterns see the full
    request target, like REQUEST_URI does.
    """
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return RequestIdentity(
        ip=get_client_ip(request, trust_forwarded_for),
        url=url,
        content_type=negotiate(request.headers.get("accept")),
    )
