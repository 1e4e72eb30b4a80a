"""Read-through cache for resolved availability.

Only the display path reads from here. Reservation and override writes
always go to the database and invalidate the affected date afterwards.

Snapshots live in Redis when REDIS_URL is set, so every worker sees the
same invalidations; otherwise they stay in this process. Each
(consultant, date) key carries a version that ``invalidate`` bumps. A
snapshot is stored with the version read before it was loaded and is only
served while that version is still current, so a load that overlaps a
committed write is never handed out after it.
"""

import json
import logging
import time
from datetime import date
from itertools import count
from threading import Lock
from typing import Any, Callable

import redis

from consultation_scheduler.core import config
from consultation_scheduler.redis_client import get_redis_client

logger = logging.getLogger(__name__)

# Outlives every snapshot TTL; an expired counter never meets a live snapshot.
VERSION_TTL_SECONDS = 24 * 60 * 60


class AvailabilityCache:

    def __init__(
        self,
        ttl_seconds: int,
        client_factory: Callable[[], Any] | None = get_redis_client,
        prefix: str = config.REDIS_KEY_PREFIX,
    ):
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._client_factory = client_factory
        self._client = None
        self._client_resolved = False
        self._lock = Lock()
        self._generation = count(1)
        self._base_version = 0
        self._versions: dict[tuple[int, date], int] = {}
        self._entries: dict[tuple[int, date], tuple[float, int, Any]] = {}

    def _get_client(self):
        """Lazy Redis client; None selects the in-process store."""
        with self._lock:
            if not self._client_resolved:
                self._client_resolved = True
                if self._client_factory is not None:
                    try:
                        self._client = self._client_factory()
                    except redis.RedisError as exc:
                        logger.warning('Redis unavailable, caching availability in-process: %s', exc)
            return self._client

    def _redis_keys(self, key: tuple[int, date]) -> tuple[str, str]:
        consultant_id, slot_date = key
        value_key = f'{self.prefix}:availability:{consultant_id}:{slot_date.isoformat()}'
        return value_key, f'{value_key}:version'

    def get_or_load(self, consultant_id: int, slot_date: date, loader: Callable[[], Any]) -> Any:
        if self.ttl_seconds <= 0:
            return loader()

        key = (consultant_id, slot_date)
        client = self._get_client()
        if client is None:
            return self._local_get_or_load(key, loader)
        return self._redis_get_or_load(client, key, loader)

    def _local_get_or_load(self, key: tuple[int, date], loader: Callable[[], Any]) -> Any:
        now = time.monotonic()
        with self._lock:
            version = self._versions.get(key, self._base_version)
            entry = self._entries.get(key)
            if entry is not None and entry[0] > now and entry[1] == version:
                logger.debug('Availability cache hit for %s', key)
                return entry[2]

        value = loader()
        with self._lock:
            if self._versions.get(key, self._base_version) == version:
                self._entries[key] = (now + self.ttl_seconds, version, value)
        return value

    def _redis_get_or_load(self, client, key: tuple[int, date], loader: Callable[[], Any]) -> Any:
        value_key, version_key = self._redis_keys(key)
        try:
            raw_version, raw_entry = client.mget(version_key, value_key)
        except redis.RedisError:
            logger.exception('Availability cache read failed for %s', key)
            return loader()

        version = int(raw_version or 0)
        if raw_entry:
            entry = json.loads(raw_entry)
            if entry['version'] == version:
                logger.debug('Availability cache hit for %s', key)
                return entry['value']

        value = loader()
        try:
            client.setex(value_key, self.ttl_seconds, json.dumps({'version': version, 'value': value}))
        except redis.RedisError:
            logger.exception('Availability cache write failed for %s', key)
        return value

    def invalidate(self, consultant_id: int, slot_date: date) -> None:
        key = (consultant_id, slot_date)
        client = self._get_client()
        if client is None:
            with self._lock:
                self._versions[key] = next(self._generation)
                self._entries.pop(key, None)
            return

        value_key, version_key = self._redis_keys(key)
        try:
            client.incr(version_key)
            client.expire(version_key, max(VERSION_TTL_SECONDS, self.ttl_seconds * 2))
            client.delete(value_key)
        except redis.RedisError:
            logger.exception('Availability cache invalidation failed for %s', key)

    def clear(self) -> None:
        client = self._get_client()
        if client is None:
            with self._lock:
                self._base_version = next(self._generation)
                self._versions.clear()
                self._entries.clear()
            return

        keys = list(client.scan_iter(match=f'{self.prefix}:availability:*'))
        if keys:
            client.delete(*keys)


availability_cache = AvailabilityCache(config.AVAILABILITY_CACHE_TTL_SECONDS)
