import logging
from threading import Lock

import redis

from consultation_scheduler.core import config

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None
_client_lock = Lock()


def _masked(url: str) -> str:
    if "@" not in url:
        return url
    scheme = url.split(":", 1)[0]
    return f"{scheme}://****@{url.rsplit('@', 1)[1]}"


def get_redis_client() -> redis.Redis | None:
    """Shared Redis connection, or None when REDIS_URL is not configured.

    Connection errors propagate so the caller can decide how to degrade.
    """
    global _client

    if not config.REDIS_URL:
        return None

    with _client_lock:
        if _client is None:
            client = redis.from_url(
                config.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            logger.info("Connected to Redis at %s", _masked(config.REDIS_URL))
            _client = client
    return _client
