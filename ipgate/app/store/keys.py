"""State store hash names.

Each hash uses the client IP as field name and an integer as value.
"""

BLACKLIST_KEY = "RATELIMITER-BLACKLIST"  # ip -> ban_until
EXPIRES_KEY = "RATELIMITER-EXPIRES"  # ip -> expires_at
CONTROL_KEY = "RATELIMITER-CONTROL"  # ip -> count
