"""Redis Lua scripts for the rate limiter state transitions.

These scripts provide atomic multi-field operations so concurrent
workers never observe a half-applied transition.
"""

# Lua script for per-request window accounting.
# Re-reads the ban, the window expiry and the counter inside the script, so a
# ban written by another worker is always seen and an IP is never banned and
# counted at the same time. An expired ban is removed here as well.
# Returns {status, count, ban_until}; status 0 = counted, 1 = breached, 2 = banned.
ADVANCE_WINDOW_SCRIPT = """
    local blacklist_key = KEYS[1]
    local expires_key = KEYS[2]
    local control_key = KEYS[3]
    local ip = ARGV[1]
    local now = tonumber(ARGV[2])
    local time_interval = tonumber(ARGV[3])
    local max_requests = tonumber(ARGV[4])
    local ban_time = tonumber(ARGV[5])

    local ban_until = tonumber(redis.call('HGET', blacklist_key, ip))
    if ban_until then
        if ban_until >= now then
            return {2, 0, ban_until}
        end
        redis.call('HDEL', blacklist_key, ip)
    end

    local expires_at = tonumber(redis.call('HGET', expires_key, ip))
    if expires_at and expires_at >= now then
        local count = tonumber(redis.call('HGET', control_key, ip)) or 0
        count = count + 1
        redis.call('HSET', control_key, ip, count)
        return {0, count, 0}
    end

    if expires_at then
        local count = tonumber(redis.call('HGET', control_key, ip)) or 0
        if count > max_requests then
            ban_until = now + ban_time
            redis.call('HSET', blacklist_key, ip, ban_until)
            redis.call('HDEL', expires_key, ip)
            redis.call('HDEL', control_key, ip)
            return {1, count, ban_until}
        end
    end

    redis.call('HSET', expires_key, ip, now + time_interval)
    redis.call('HSET', control_key, ip, 1)
    return {0, 1, 0}
"""
