"""Rate limiting core: identity, decision engine, maintenance and rendering."""

from ipgate.app.limiter.engine import RateLimiterEngine
from ipgate.app.limiter.gc import GarbageCollector, MaintenanceScheduler
from ipgate.app.limiter.identity import ExceptionList, extract_identity, get_client_ip
from ipgate.app.limiter.models import (
    BlacklistEntry,
    ClientState,
    ContentType,
    Decision,
    RequestIdentity,
    WindowEntry,
    negotiate,
)
from ipgate.app.limiter.render import DenialRenderer

__all__ = [
    # Models
    "Decision",
    "ContentType",
    "RequestIdentity",
    "WindowEntry",
    "BlacklistEntry",
    "ClientState",
    "negotiate",
    # Identity
    "ExceptionList",
    "extract_identity",
    "get_client_ip",
    # Engine and maintenance
    "RateLimiterEngine",
    "GarbageCollector",
    "MaintenanceScheduler",
    # Rendering
    "DenialRenderer",
]
