"""Custom exceptions for the rate limiter application."""


class LimiterException(Exception):
    """Base class for limiter exceptions with HTTP status code.
    
    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    
    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(LimiterException):
    """Raised when a required collaborator is missing or invalid.
    
    Construction of the engine fails immediately when the state store
    handle is unusable.
    """
    status_code = 500
    
    def __init__(self, detail: str = "Rate limiter is not configured"):
        self.detail = detail
        super().__init__(detail)


class StoreUnavailableError(LimiterException):
    """Raised when a state store operation fails at call time.
    
    Maps to HTTP 503 Service Unavailable. This is never a rate limit
    decision; callers choose whether to fail open or closed.
    """
    status_code = 503
    
    def __init__(self, operation: str = "unknown", detail: str | None = None):
        self.operation = operation
        message = detail or f"State store unavailable during '{operation}'"
        super().__init__(message)


class ConfigValueError(LimiterException, ValueError):
    """Raised when a tuning value is invalid.
    
    Rejected at configuration time, never at request time.
    """
    status_code = 500
    
    def __init__(self, field: str, detail: str):
        self.field = field
        super().__init__(f"Invalid value for '{field}': {detail}")
