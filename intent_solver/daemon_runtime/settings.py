from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from intent_solver.gateways.matching import DEFAULT_ORDER_PATH
from intent_solver.gateways.near_tx import DEFAULT_FUNCTION_CALL_GAS
from intent_solver.intents.backoff import BackoffPolicy
from intent_solver.intents.engine import OrchestratorConfig

DEFAULT_RPC_URLS = {
    "mainnet": "https://rpc.mainnet.near.org",
    "testnet": "https://rpc.testnet.near.org",
}


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def normalize_network(value: str) -> str:
    network = (value or "").strip().lower()
    if network in DEFAULT_RPC_URLS:
        return network
    return "testnet"


@dataclass(slots=True)
class AppSettings:
    near_network: str
    near_rpc_url: str
    verifier_contract: str
    solver_contract: str
    near_account_id: str
    near_private_key: str
    matching_service_url: str
    matching_order_path: str
    poll_interval_seconds: float
    sweep_interval_seconds: float
    health_interval_seconds: float
    settlement_interval_seconds: float
    status_interval_seconds: float
    max_retry_attempts: int
    initial_retry_delay_seconds: float
    max_retry_delay_seconds: float
    retry_backoff_factor: float
    retry_jitter_seconds: float
    intent_expiry_seconds: float
    request_timeout_seconds: float
    max_in_flight: int
    default_order_ttl_seconds: float
    settlement_batch_size: int
    settlement_max_retries: int
    function_call_gas: int
    error_backoff_seconds: float
    shutdown_grace_seconds: float
    skip_registration_check: bool

    @classmethod
    def from_env(cls) -> "AppSettings":
        network = normalize_network(os.getenv("NEAR_NETWORK", "testnet"))
        return cls(
            near_network=network,
            near_rpc_url=os.getenv("NEAR_RPC_URL", "").strip() or DEFAULT_RPC_URLS[network],
            verifier_contract=os.getenv("VERIFIER_CONTRACT", "").strip(),
            solver_contract=os.getenv("SOLVER_CONTRACT", "").strip(),
            near_account_id=os.getenv("NEAR_ACCOUNT_ID", "").strip(),
            near_private_key=os.getenv("NEAR_PRIVATE_KEY", ""),
            matching_service_url=os.getenv("MATCHING_SERVICE_URL", "http://localhost:8080").strip(),
            matching_order_path=os.getenv("MATCHING_ORDER_PATH", DEFAULT_ORDER_PATH).strip() or DEFAULT_ORDER_PATH,
            poll_interval_seconds=max(0.5, to_float(os.getenv("POLL_INTERVAL_SECONDS"), 10.0)),
            sweep_interval_seconds=max(0.5, to_float(os.getenv("SWEEP_INTERVAL_SECONDS"), 5.0)),
            health_interval_seconds=max(0.5, to_float(os.getenv("HEALTH_INTERVAL_SECONDS"), 10.0)),
            settlement_interval_seconds=max(0.5, to_float(os.getenv("SETTLEMENT_INTERVAL_SECONDS"), 5.0)),
            status_interval_seconds=max(1.0, to_float(os.getenv("STATUS_INTERVAL_SECONDS"), 15.0)),
            max_retry_attempts=max(1, to_int(os.getenv("MAX_RETRY_ATTEMPTS"), 5)),
            initial_retry_delay_seconds=max(0.0, to_float(os.getenv("INITIAL_RETRY_DELAY_SECONDS"), 1.0)),
            max_retry_delay_seconds=max(0.0, to_float(os.getenv("MAX_RETRY_DELAY_SECONDS"), 60.0)),
            retry_backoff_factor=max(1.0, to_float(os.getenv("RETRY_BACKOFF_FACTOR"), 2.0)),
            retry_jitter_seconds=max(0.0, to_float(os.getenv("RETRY_JITTER_SECONDS"), 1.0)),
            intent_expiry_seconds=max(1.0, to_float(os.getenv("INTENT_EXPIRY_SECONDS"), 3600.0)),
            request_timeout_seconds=max(1.0, to_float(os.getenv("REQUEST_TIMEOUT_SECONDS"), 10.0)),
            max_in_flight=max(0, to_int(os.getenv("MAX_IN_FLIGHT"), 0)),
            default_order_ttl_seconds=max(1.0, to_float(os.getenv("DEFAULT_ORDER_TTL_SECONDS"), 3600.0)),
            settlement_batch_size=max(1, to_int(os.getenv("SETTLEMENT_BATCH_SIZE"), 5)),
            settlement_max_retries=max(0, to_int(os.getenv("SETTLEMENT_MAX_RETRIES"), 5)),
            function_call_gas=max(1, to_int(os.getenv("FUNCTION_CALL_GAS"), DEFAULT_FUNCTION_CALL_GAS)),
            error_backoff_seconds=max(0.2, to_float(os.getenv("ERROR_BACKOFF_SECONDS"), 2.0)),
            shutdown_grace_seconds=max(0.0, to_float(os.getenv("SHUTDOWN_GRACE_SECONDS"), 10.0)),
            skip_registration_check=to_bool(os.getenv("SKIP_REGISTRATION_CHECK"), False),
        )

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_delay=self.initial_retry_delay_seconds,
            max_delay=self.max_retry_delay_seconds,
            factor=self.retry_backoff_factor,
            max_attempts=self.max_retry_attempts,
            jitter=self.retry_jitter_seconds,
        )

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            intent_expiry_seconds=self.intent_expiry_seconds,
            default_order_ttl_seconds=self.default_order_ttl_seconds,
            max_in_flight=self.max_in_flight,
            settlement_batch_size=self.settlement_batch_size,
            settlement_max_retries=self.settlement_max_retries,
        )
