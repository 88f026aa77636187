from typing import Optional

import redis

from postguard.config import settings

CONNECT_TIMEOUT_SECONDS = 5

_clients: dict[str, redis.Redis] = {}


def get_redis(url: Optional[str] = None) -> redis.Redis:
    """Shared client per URL; record values are JSON text so responses are decoded."""
    url = url or settings.redis_url

    client = _clients.get(url)
    if client is None:
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
            socket_timeout=CONNECT_TIMEOUT_SECONDS,
            health_check_interval=30
        )
        _clients[url] = client
    return client


def close_redis() -> None:
    for client in _clients.values():
        client.close()
    _clients.clear()
