from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _sanitize_namespace(value: str, default: str) -> str:
    normalized = (value.strip() or default).replace(" ", "-")
    return normalized or default


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    namespace: str
    run_id: str
    heartbeat_key: str
    event_stream_key: str
    event_stream_maxlen: int
    status_key: str
    status_ttl_seconds: int
    settled_trade_prefix: str
    settled_trade_ttl_seconds: int
    clear_request_key: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        namespace = _sanitize_namespace(os.getenv("SOLVER_ID", "intent-solver"), "intent-solver")
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            namespace=namespace,
            run_id=os.getenv("SOLVER_RUN_ID")
            or datetime.now(timezone.utc).strftime("run-%Y%m%dT%H%M%SZ"),
            heartbeat_key=os.getenv("REDIS_HEARTBEAT_KEY", f"{namespace}:heartbeat"),
            event_stream_key=os.getenv("REDIS_EVENT_STREAM_KEY", f"{namespace}:events"),
            event_stream_maxlen=max(100, to_int(os.getenv("REDIS_EVENT_STREAM_MAXLEN"), 10_000)),
            status_key=os.getenv("REDIS_STATUS_KEY", f"{namespace}:status"),
            status_ttl_seconds=max(10, to_int(os.getenv("REDIS_STATUS_TTL_SECONDS"), 120)),
            settled_trade_prefix=os.getenv("REDIS_SETTLED_TRADE_PREFIX", f"{namespace}:trades:settled"),
            settled_trade_ttl_seconds=max(
                60,
                to_int(os.getenv("REDIS_SETTLED_TRADE_TTL_SECONDS"), 172800),
            ),
            clear_request_key=os.getenv("REDIS_CLEAR_REQUEST_KEY", f"{namespace}:clear_requests"),
        )
