# lfs_internals/cache.py
import json
import logging
from datetime import timedelta
from typing import Any, Optional, Union

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

TTL = Optional[Union[int, timedelta]]


class CacheMiss(Exception):
    """The key does not exist. Never a transport problem."""


class CacheError(Exception):
    """Redis could not be reached or rejected the command."""


def _seconds(ttl: TTL) -> Optional[int]:
    if not ttl:
        return None
    if isinstance(ttl, timedelta):
        return int(ttl.total_seconds())
    return int(ttl)


class RedisCache:
    """
    Thin string/JSON wrapper over the process-wide Redis client.

    A zero or missing TTL stores the key without expiry; callers pass their
    own default.
    """

    def __init__(self, client: Optional[redis.Redis] = None):
        self.client = client if client is not None else settings.REDIS_CLIENT

    def get(self, key: str) -> str:
        try:
            value = self.client.get(key)
        except redis.exceptions.RedisError as e:
            raise CacheError(f"failed to get cache key '{key}': {e}") from e
        if value is None:
            raise CacheMiss(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl: TTL = None) -> None:
        try:
            self.client.set(key, value, ex=_seconds(ttl))
        except redis.exceptions.RedisError as e:
            raise CacheError(f"failed to set cache key '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.exceptions.RedisError as e:
            raise CacheError(f"failed to delete cache key '{key}': {e}") from e

    def exists(self, key: str) -> bool:
        try:
            return self.client.exists(key) > 0
        except redis.exceptions.RedisError as e:
            raise CacheError(f"failed to check cache key '{key}': {e}") from e

    def set_json(self, key: str, value: Any, ttl: TTL = None) -> None:
        self.set(key, json.dumps(value, separators=(",", ":")), ttl)

    def get_json(self, key: str) -> Any:
        """Raises CacheMiss, CacheError, or ValueError for a value that is not JSON."""
        return json.loads(self.get(key))

    def getdel_json(self, key: str) -> Any:
        """Reads and deletes the key in one MULTI/EXEC round trip."""
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.get(key)
            pipe.delete(key)
            results = pipe.execute()
        except redis.exceptions.RedisError as e:
            raise CacheError(f"failed to get-and-delete cache key '{key}': {e}") from e

        value = results[0]
        if value is None:
            raise CacheMiss(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return json.loads(value)

    def ping(self) -> None:
        try:
            self.client.ping()
        except redis.exceptions.RedisError as e:
            raise CacheError(f"redis ping failed: {e}") from e
