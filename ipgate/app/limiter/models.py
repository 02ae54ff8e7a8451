"""Rate limiting data models.

This module contains the decision type, per-IP state records and the
negotiated content type used to render denials.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Decision(str, Enum):
    """Outcome of a consume() call."""
    ALLOW = "allow"
    DENY = "deny"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


class ContentType(str, Enum):
    """Representation a denied client asked for."""
    JSON = "json"
    HTML = "html"


def negotiate(accept: Optional[str]) -> ContentType:
    """Resolve the Accept header once per request.

    Any Accept value mentioning json (case-insensitive) gets JSON, the
    rest get HTML.
    """
    if accept and "json" in accept.lower():
        return ContentType.JSON
    return ContentType.HTML


@dataclass(frozen=True)
class RequestIdentity:
    """What the limiter needs to know about one request."""
    ip: str
    url: str
    content_type: ContentType = ContentType.HTML


@dataclass(frozen=True)
class WindowEntry:
    """Counting window of one IP."""
    expires_at: int
    count: int = 0

    def is_expired(self, now: int) -> bool:
        return self.expires_at < now


@dataclass(frozen=True)
class BlacklistEntry:
    """Active or stale ban of one IP."""
    ban_until: int

    def is_expired(self, now: int) -> bool:
        return self.ban_until < now


@dataclass(frozen=True)
class ClientState:
    """Snapshot of everything stored for one IP."""
    ip: str
    window: Optional[WindowEntry] = None
    ban: Optional[BlacklistEntry] = None
