from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from redis.asyncio.client import Redis

from intent_solver.common import log_event
from intent_solver.intents.types import PendingTrade


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dumps_compact(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)


def _serialize_for_redis(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, str)):
        return str(value)
    return _dumps_compact(value)


class RedisStorageOps:
    @staticmethod
    def _settled_trade_key(prefix: str, trade_id: str) -> str:
        return f"{prefix}:{trade_id}"

    async def update_heartbeat(self) -> None:
        redis_client = self._require_redis()
        await redis_client.set(self.settings.heartbeat_key, _now_iso())

    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        if self._redis is None:
            log_event(
                self._logger,
                level="warning",
                event="publish_skipped",
                message="Skipping event because Redis is not ready",
                skipped_event=event,
            )
            return

        fields = {
            "timestamp": _now_iso(),
            "level": level,
            "event": event,
            "message": message,
            "solver_id": self.settings.namespace,
            "run_id": self.settings.run_id,
        }
        if details:
            fields["details"] = _dumps_compact(details)

        await self._redis.xadd(
            self.settings.event_stream_key,
            fields,
            maxlen=self.settings.event_stream_maxlen,
            approximate=True,
        )

    async def write_status(self, snapshot: dict[str, Any]) -> None:
        redis_client = self._require_redis()
        payload = dict(snapshot)
        payload["updated_at"] = _now_iso()
        payload["run_id"] = self.settings.run_id
        await redis_client.set(
            self.settings.status_key,
            _dumps_compact(payload),
            ex=self.settings.status_ttl_seconds,
        )

    async def read_status(self) -> dict[str, Any] | None:
        redis_client = self._require_redis()
        raw = await redis_client.get(self.settings.status_key)
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            log_event(
                self._logger,
                level="warning",
                event="status_snapshot_invalid",
                message="Stored status snapshot is not valid JSON",
            )
            return None
        return parsed if isinstance(parsed, dict) else None

    async def record_settled_trade(self, item: PendingTrade) -> None:
        redis_client = self._require_redis()
        record_key = self._settled_trade_key(self.settings.settled_trade_prefix, item.trade_id)
        mapping = {
            "trade_id": item.trade_id,
            "intent_id": item.intent_id,
            "amount": item.trade.amount,
            "price": _serialize_for_redis(item.trade.price),
            "market_id": item.trade.market_id,
            "outcome": _serialize_for_redis(item.trade.outcome),
            "retry_count": _serialize_for_redis(item.retry_count),
            "queued_at": _serialize_for_redis(item.queued_at),
            "settled_at": _now_iso(),
            "raw": _dumps_compact(item.trade.raw),
        }
        pipeline = redis_client.pipeline(transaction=True)
        pipeline.hset(record_key, mapping=mapping)
        pipeline.expire(record_key, self.settings.settled_trade_ttl_seconds)
        await pipeline.execute()

    async def get_settled_trade(self, trade_id: str) -> dict[str, str] | None:
        redis_client = self._require_redis()
        record_key = self._settled_trade_key(self.settings.settled_trade_prefix, trade_id)
        payload = await redis_client.hgetall(record_key)
        return payload or None

    async def request_clear(self, intent_ids: list[str]) -> int:
        redis_client = self._require_redis()
        if not intent_ids:
            return 0
        return int(await redis_client.sadd(self.settings.clear_request_key, *intent_ids))

    async def pop_clear_requests(self, limit: int = 100) -> list[str]:
        redis_client = self._require_redis()
        popped = await redis_client.spop(self.settings.clear_request_key, max(1, limit))
        if not popped:
            return []
        if isinstance(popped, str):
            return [popped]
        return [str(item) for item in popped]

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis
