"""
Redis-backed key/value access for the settings store.

Settings and permission blobs are plain strings. Every call degrades to a
falsy result when Redis is down so the caller decides how loud to be about it.

Environment Variables:
    REDIS_HOST: Redis server host (default: localhost)
    REDIS_PORT: Redis server port (default: 6379)
    REDIS_PASSWORD: Redis password (optional, may be base64 encoded)
    REDIS_DB: Redis database number (default: 0)
"""

import base64
import binascii
import logging
import os
from typing import Optional

import redis
from redis.exceptions import RedisError

from common.constants import REDIS_DB, REDIS_HOST, REDIS_PORT

logger = logging.getLogger(__name__)


def _redis_password() -> Optional[str]:
    password = os.getenv("REDIS_PASSWORD", "")
    if not password:
        return None
    # K8s secrets are often handed over base64 encoded
    try:
        decoded = base64.b64decode(password, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return password
    return decoded or password


class RedisClient:
    """Thin string get/set/delete over a pooled redis.Redis connection."""

    def __init__(
        self,
        host: str = REDIS_HOST,
        port: int = REDIS_PORT,
        db: int = REDIS_DB,
        password: Optional[str] = None,
        connection: Optional[redis.Redis] = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.client = connection or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password or _redis_password(),
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            health_check_interval=30,
        )

    def is_connected(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.warning("Redis unavailable at %s:%s: %s", self.host, self.port, e)
            return False

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key) or None
        except RedisError as e:
            logger.error("Redis get error for %s: %s", key, e)
            return None

    def set(self, key: str, value: str) -> bool:
        try:
            return bool(self.client.set(key, value))
        except RedisError as e:
            logger.error("Redis set error for %s: %s", key, e)
            return False

    def delete(self, key: str) -> bool:
        try:
            return bool(self.client.delete(key))
        except RedisError as e:
            logger.error("Redis delete error for %s: %s", key, e)
            return False

    def close(self) -> None:
        self.client.close()


# Singleton instance
_redis_client: Optional[RedisClient] = None


def get_redis_client() -> RedisClient:
    """Get or create the process-wide Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
