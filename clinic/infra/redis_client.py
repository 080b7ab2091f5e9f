from __future__ import annotations

import redis

# Remote reads sit on the player's path; fail fast so the local fallback kicks in.
SOCKET_TIMEOUT_S = 2.0


def create_redis(url: str, *, timeout_s: float = SOCKET_TIMEOUT_S) -> redis.Redis:
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=timeout_s,
        socket_timeout=timeout_s,
        health_check_interval=30,
    )
