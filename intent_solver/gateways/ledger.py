from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import aiohttp
from solders.keypair import Keypair

from intent_solver.common import log_event
from intent_solver.intents.errors import (
    ErrorKind,
    LedgerRpcError,
    MalformedResponseError,
    RateLimitedError,
    TransientNetworkError,
    parse_retry_after_seconds,
)
from intent_solver.intents.types import CompletionResult, Intent

from .near_tx import (
    DEFAULT_FUNCTION_CALL_GAS,
    FunctionCall,
    build_signed_function_call,
    parse_private_key,
    public_key_string,
)

RATE_LIMITED_CAUSES = {"TOO_MANY_REQUESTS"}
TRANSIENT_CAUSES = {
    "TIMEOUT_ERROR",
    "UNKNOWN_BLOCK",
    "NO_SYNCED_BLOCKS",
    "NOT_SYNCED_YET",
    "UNAVAILABLE_SHARD",
    "INTERNAL_ERROR",
}
MALFORMED_CAUSES = {
    "PARSE_ERROR",
    "METHOD_NOT_FOUND",
    "UNKNOWN_ACCOUNT",
    "UNKNOWN_ACCESS_KEY",
    "INVALID_ACCOUNT",
    "NO_CONTRACT_CODE",
    "CONTRACT_EXECUTION_ERROR",
}
MALFORMED_VIEW_ERRORS = ("MethodNotFound", "CodeDoesNotExist", "MethodResolveError", "Deserialization")
BROADCAST_TIMEOUT_SECONDS = 60.0


def _preview(body: str, limit: int = 240) -> str:
    compact = " ".join(body.split())
    return compact if len(compact) <= limit else f"{compact[:limit]}..."


def _error_from_payload(method: str, error: Any) -> LedgerRpcError:
    if not isinstance(error, dict):
        return LedgerRpcError(f"RPC error for {method}: {error}", kind=ErrorKind.MALFORMED_RESPONSE)

    name = str(error.get("name") or "")
    cause = error.get("cause")
    cause_name = str(cause.get("name") or "") if isinstance(cause, dict) else ""
    detail = error.get("data") or error.get("message") or cause_name or name
    message = f"RPC error for {method}: {cause_name or name}: {detail}"

    if cause_name in RATE_LIMITED_CAUSES or name in RATE_LIMITED_CAUSES:
        return LedgerRpcError(message, name=cause_name or name, kind=ErrorKind.RATE_LIMITED)
    if cause_name in MALFORMED_CAUSES or name == "REQUEST_VALIDATION_ERROR":
        return LedgerRpcError(message, name=cause_name or name, kind=ErrorKind.MALFORMED_RESPONSE)
    if cause_name in TRANSIENT_CAUSES or name == "INTERNAL_ERROR":
        return LedgerRpcError(message, name=cause_name or name, kind=ErrorKind.TRANSIENT_NETWORK)
    return LedgerRpcError(message, name=cause_name or name)


def _u128_string(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized if normalized.isdigit() else None


class NearLedgerGateway:
    """Typed client for the solver and verifier contracts over NEAR JSON-RPC."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        rpc_url: str,
        solver_contract: str,
        verifier_contract: str,
        account_id: str,
        private_key: str,
        request_timeout_seconds: float = 10.0,
        function_call_gas: int = DEFAULT_FUNCTION_CALL_GAS,
    ) -> None:
        self._logger = logger
        self._rpc_url = rpc_url
        self._solver_contract = solver_contract
        self._verifier_contract = verifier_contract
        self._account_id = account_id
        self._private_key = private_key
        self._timeout_seconds = request_timeout_seconds
        self._function_call_gas = function_call_gas
        self._session: aiohttp.ClientSession | None = None
        self._signer: Keypair | None = None
        self._tx_lock = asyncio.Lock()
        self._nonce: int | None = None
        self._request_id = 0
        self._condition_ids: dict[str, str] = {}

    @property
    def solver_contract(self) -> str:
        return self._solver_contract

    async def connect(self) -> None:
        if not self._rpc_url:
            raise ValueError("NEAR_RPC_URL is required.")
        if not self._solver_contract or not self._verifier_contract:
            raise ValueError("SOLVER_CONTRACT and VERIFIER_CONTRACT are required.")
        if not self._account_id:
            raise ValueError("NEAR_ACCOUNT_ID is required.")
        if not self._private_key:
            raise ValueError("NEAR_PRIVATE_KEY is required.")

        self._signer = parse_private_key(self._private_key)
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

        await self.healthcheck()
        log_event(
            self._logger,
            level="info",
            event="ledger_connected",
            message="Connected to NEAR RPC",
            rpc_url=self._rpc_url,
            account_id=self._account_id,
            solver_contract=self._solver_contract,
            verifier_contract=self._verifier_contract,
        )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        self._nonce = None

    async def healthcheck(self) -> None:
        status = await self._rpc_call("status", [])
        if not isinstance(status, dict) or "sync_info" not in status:
            raise MalformedResponseError(f"Unexpected status response: {status}")

    async def _rpc_call(
        self,
        method: str,
        params: Any,
        *,
        timeout_seconds: float | None = None,
    ) -> Any:
        if self._session is None:
            raise RuntimeError("NEAR RPC session is not initialized.")

        self._request_id += 1
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        request_kwargs: dict[str, Any] = {}
        if timeout_seconds:
            request_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_seconds)

        try:
            async with self._session.post(self._rpc_url, json=payload, **request_kwargs) as response:
                status = response.status
                retry_after_seconds = parse_retry_after_seconds(response.headers.get("Retry-After"))
                body = await response.text()
        except asyncio.TimeoutError as error:
            raise TransientNetworkError(f"RPC call timed out: method={method}") from error
        except aiohttp.ClientError as error:
            raise TransientNetworkError(f"RPC call failed: method={method} error={error}") from error

        if status == 429:
            raise RateLimitedError(
                f"RPC rate limited: method={method}",
                retry_after_seconds=retry_after_seconds,
            )
        if status >= 500:
            raise TransientNetworkError(f"RPC call failed: method={method} status={status} body={_preview(body)!r}")

        try:
            data = json.loads(body)
        except json.JSONDecodeError as error:
            raise MalformedResponseError(
                f"RPC returned non-JSON body: method={method} status={status} body={_preview(body)!r}"
            ) from error

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Invalid RPC response for {method}: {_preview(body)!r}")
        if data.get("error"):
            raise _error_from_payload(method, data["error"])
        if status >= 400:
            raise MalformedResponseError(f"RPC call failed: method={method} status={status} body={_preview(body)!r}")
        if "result" not in data:
            raise MalformedResponseError(f"RPC response for {method} has no result")
        return data["result"]

    async def view(self, contract_id: str, method_name: str, args: dict[str, Any]) -> Any:
        encoded_args = base64.b64encode(
            json.dumps(args, separators=(",", ":")).encode("utf-8")
        ).decode("ascii")
        result = await self._rpc_call(
            "query",
            {
                "request_type": "call_function",
                "finality": "final",
                "account_id": contract_id,
                "method_name": method_name,
                "args_base64": encoded_args,
            },
        )
        if not isinstance(result, dict):
            raise MalformedResponseError(f"Unexpected view response for {method_name}: {result}")

        view_error = result.get("error")
        if view_error:
            text = str(view_error)
            if any(marker in text for marker in MALFORMED_VIEW_ERRORS):
                raise LedgerRpcError(
                    f"View {contract_id}.{method_name} failed: {text}",
                    name="VIEW_ERROR",
                    kind=ErrorKind.MALFORMED_RESPONSE,
                )
            raise LedgerRpcError(f"View {contract_id}.{method_name} failed: {text}", name="VIEW_ERROR")

        raw = result.get("result")
        if not isinstance(raw, list):
            raise MalformedResponseError(f"View {contract_id}.{method_name} returned no result bytes")
        if not raw:
            return None
        try:
            return json.loads(bytes(raw).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as error:
            raise MalformedResponseError(
                f"View {contract_id}.{method_name} returned undecodable payload"
            ) from error

    async def get_pending_ids(self) -> list[str]:
        result = await self.view(self._solver_contract, "get_pending_for_daemon", {})
        if result is None:
            return []
        if not isinstance(result, list):
            raise MalformedResponseError(f"get_pending_for_daemon returned {type(result).__name__}, expected list")
        return result

    async def get_intent(self, intent_id: str) -> Intent | None:
        payload = await self.view(self._verifier_contract, "get_verified_intent", {"intent_id": intent_id})
        if payload is None:
            return None
        return Intent.from_ledger(payload)

    async def get_condition_id(self, market_id: str) -> str:
        cached = self._condition_ids.get(market_id)
        if cached:
            return cached

        market = await self.view(self._verifier_contract, "get_market", {"market_id": market_id})
        condition_id = ""
        if isinstance(market, dict):
            condition_id = str(market.get("condition_id") or "").strip()

        if not condition_id:
            fallback = f"fallback_condition_{market_id}"
            log_event(
                self._logger,
                level="warning",
                event="market_condition_missing",
                message="No condition id found for market; using fallback",
                market_id=market_id,
                condition_id=fallback,
            )
            return fallback

        self._condition_ids[market_id] = condition_id
        return condition_id

    async def is_solver_registered(self) -> bool:
        result = await self.view(
            self._verifier_contract,
            "is_solver_registered",
            {"solver": self._solver_contract},
        )
        return result is True

    async def _next_nonce(self, public_key: str) -> tuple[int, str]:
        access_key = await self._rpc_call(
            "query",
            {
                "request_type": "view_access_key",
                "finality": "final",
                "account_id": self._account_id,
                "public_key": public_key,
            },
        )
        if not isinstance(access_key, dict):
            raise MalformedResponseError(f"Unexpected view_access_key response: {access_key}")
        if access_key.get("error"):
            raise LedgerRpcError(
                f"view_access_key failed: {access_key['error']}",
                name="UNKNOWN_ACCESS_KEY",
                kind=ErrorKind.MALFORMED_RESPONSE,
            )

        block_hash = access_key.get("block_hash")
        chain_nonce = access_key.get("nonce")
        if not isinstance(block_hash, str) or not isinstance(chain_nonce, int):
            raise MalformedResponseError(f"view_access_key response is missing nonce or block_hash: {access_key}")

        # The chain view can lag our own in-flight transactions.
        nonce = chain_nonce + 1
        if self._nonce is not None:
            nonce = max(nonce, self._nonce + 1)
        self._nonce = nonce
        return nonce, block_hash

    async def notify_completion(self, intent_id: str, result: CompletionResult) -> None:
        if self._signer is None:
            raise RuntimeError("NEAR signer is not initialized.")

        payload = result.to_dict()
        payload["output_amount"] = _u128_string(result.output_amount)
        call = FunctionCall(
            method_name="complete_intent",
            args={"intent_id": intent_id, "result": payload},
            gas=self._function_call_gas,
        )

        async with self._tx_lock:
            public_key = public_key_string(self._signer)
            nonce, block_hash = await self._next_nonce(public_key)
            signed = build_signed_function_call(
                keypair=self._signer,
                signer_id=self._account_id,
                receiver_id=self._solver_contract,
                nonce=nonce,
                block_hash=block_hash,
                call=call,
            )
            try:
                outcome = await self._rpc_call(
                    "broadcast_tx_commit",
                    [signed],
                    timeout_seconds=max(self._timeout_seconds, BROADCAST_TIMEOUT_SECONDS),
                )
            except LedgerRpcError as error:
                if "InvalidNonce" in str(error):
                    self._nonce = None
                raise

        status = outcome.get("status") if isinstance(outcome, dict) else None
        if not isinstance(status, dict):
            raise MalformedResponseError(f"broadcast_tx_commit returned no status for {intent_id}")
        if "Failure" in status:
            raise LedgerRpcError(
                f"complete_intent failed for {intent_id}: {status['Failure']}",
                name="TX_FAILURE",
            )

        transaction = outcome.get("transaction") if isinstance(outcome, dict) else None
        log_event(
            self._logger,
            level="info",
            event="completion_reported",
            message="Intent completion reported to the ledger",
            intent_id=intent_id,
            success=result.success,
            tx_hash=transaction.get("hash") if isinstance(transaction, dict) else None,
            nonce=nonce,
        )
