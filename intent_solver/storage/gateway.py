from __future__ import annotations

import logging

from redis import asyncio as redis
from redis.asyncio.client import Redis

from intent_solver.common import log_event

from .redis_ops import RedisStorageOps
from .settings import StorageSettings


class StorageGateway(RedisStorageOps):
    def __init__(self, settings: StorageSettings, logger: logging.Logger) -> None:
        self.settings = settings
        self._logger = logger
        self._redis: Redis | None = None

    @property
    def run_id(self) -> str:
        return self.settings.run_id

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(self.settings.redis_url, decode_responses=True)
        await self._redis.ping()
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis",
        )

    async def healthcheck(self) -> None:
        redis_client = self._require_redis()
        await redis_client.ping()

    async def close(self) -> None:
        if self._redis is not None:
            close = getattr(self._redis, "aclose", None)
            if close:
                await close()
            else:
                await self._redis.close()
            self._redis = None
