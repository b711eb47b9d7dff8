"""Locks serializing writers of the shared Authorization List."""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from redis import Redis
from redis.exceptions import LockError, RedisError

from ..config import RedisConfig
from ..errors import SubstrateError

LOGGER = logging.getLogger(__name__)


class LocalListLock:
    """Serialize writers inside one process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._lock:
            yield


class RedisListLock:
    """Serialize writers across every replica sharing one Redis instance."""

    def __init__(self, redis_client: Redis, config: RedisConfig) -> None:
        self._redis = redis_client
        self._config = config

    @contextmanager
    def hold(self) -> Iterator[None]:
        lock = self._redis.lock(
            self._config.lock_name,
            timeout=self._config.lock_timeout_seconds,
            blocking_timeout=self._config.blocking_timeout_seconds,
        )
        try:
            acquired = lock.acquire()
        except RedisError as exc:
            raise SubstrateError(f"could not reach lock service: {exc}") from exc
        if not acquired:
            raise SubstrateError("timed out waiting for the authorization list lock")
        LOGGER.debug("Acquired authorization list lock", extra={"lock": self._config.lock_name})
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                LOGGER.warning(
                    "Authorization list lock expired before release", extra={"lock": self._config.lock_name}
                )


def build_list_lock(config: RedisConfig):
    """Return a Redis lock when Redis is configured, otherwise an in-process lock."""

    if config.url:
        return RedisListLock(Redis.from_url(config.url), config)
    return LocalListLock()


__all__ = ["LocalListLock", "RedisListLock", "build_list_lock"]
