"""Redis connection for the remote template store.

Template workbooks are stored as raw xlsx bytes, so responses are never
decoded to str. The client is created once in the app lifespan and shared.
"""

import logging
from typing import Optional

import redis as redis_lib

from backend.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis_lib.Redis] = None


def init_redis_client() -> redis_lib.Redis:
    """Connect to the template storage Redis."""
    global _client
    _client = redis_lib.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password or None,
        socket_timeout=settings.redis_socket_timeout,
        decode_responses=False,
    )
    logger.info(
        f"Redis template storage client initialized "
        f"({settings.redis_host}:{settings.redis_port}/{settings.redis_db})"
    )
    return _client


def get_redis_client() -> redis_lib.Redis:
    if _client is None:
        raise RuntimeError("Redis client not initialized. Is template_backend set to 'redis'?")
    return _client


def close_redis_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("Redis client closed")


def check_connection() -> bool:
    """True when the template storage Redis answers a ping."""
    if _client is None:
        return False
    try:
        return bool(_client.ping())
    except redis_lib.RedisError as e:
        logger.warning(f"Redis template storage unreachable: {e}")
        return False
