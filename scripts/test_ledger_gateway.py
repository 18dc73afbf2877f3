from __future__ import annotations

import base64
import hashlib
import json
import logging
import struct
import unittest
from typing import Any, Callable

from aioresponses import CallbackResult, aioresponses
from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature

from intent_solver.gateways.ledger import NearLedgerGateway
from intent_solver.intents.errors import (
    ErrorKind,
    LedgerRpcError,
    MalformedResponseError,
    RateLimitedError,
)
from intent_solver.intents.types import CompletionResult, IntentKind

RPC_URL = "https://rpc.testnet.near.org"
BLOCK_HASH = str(Hash(bytes(range(32))))
KEYPAIR = Keypair.from_seed(bytes(range(32)))


def _view_result(value: Any) -> dict[str, Any]:
    raw = json.dumps(value).encode("utf-8") if value is not None else b""
    return {"result": list(raw), "logs": [], "block_height": 1, "block_hash": BLOCK_HASH}


def _rpc(result: Any = None, *, error: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {"jsonrpc": "2.0", "id": 1}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return payload


def _decode_signed(encoded: str) -> dict[str, Any]:
    raw = base64.b64decode(encoded)
    offset = 0

    def take(size: int) -> bytes:
        nonlocal offset
        chunk = raw[offset:offset + size]
        offset += size
        return chunk

    def take_string() -> bytes:
        (length,) = struct.unpack("<I", take(4))
        return take(length)

    signer_id = take_string().decode()
    key_type = take(1)[0]
    public_key = take(32)
    (nonce,) = struct.unpack("<Q", take(8))
    receiver_id = take_string().decode()
    take(32)
    (action_count,) = struct.unpack("<I", take(4))
    action_tag = take(1)[0]
    method_name = take_string().decode()
    args = json.loads(take_string())
    (gas,) = struct.unpack("<Q", take(8))
    deposit = int.from_bytes(take(16), "little")
    unsigned = raw[:offset]
    signature_type = take(1)[0]
    signature = take(64)
    return {
        "signer_id": signer_id,
        "key_type": key_type,
        "public_key": public_key,
        "nonce": nonce,
        "receiver_id": receiver_id,
        "action_count": action_count,
        "action_tag": action_tag,
        "method_name": method_name,
        "args": args,
        "gas": gas,
        "deposit": deposit,
        "unsigned": unsigned,
        "signature_type": signature_type,
        "signature": signature,
        "trailing": raw[offset:],
    }


class FakeNearRpc:
    """Answers JSON-RPC calls by method; view calls by contract method name."""

    def __init__(self) -> None:
        self.views: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self.chain_nonce = 41
        self.broadcasts: list[str] = []
        self.broadcast_response: dict[str, Any] = _rpc(
            {"status": {"SuccessValue": ""}, "transaction": {"hash": "txhash"}}
        )
        self.calls: list[str] = []

    def __call__(self, url: str, **kwargs: Any) -> CallbackResult:
        body = kwargs["json"]
        method = body["method"]
        params = body["params"]
        self.calls.append(method)

        if method == "status":
            return CallbackResult(payload=_rpc({"sync_info": {"latest_block_height": 1}}))
        if method == "broadcast_tx_commit":
            self.broadcasts.append(params[0])
            return CallbackResult(payload=self.broadcast_response)
        if params.get("request_type") == "view_access_key":
            return CallbackResult(
                payload=_rpc({"nonce": self.chain_nonce, "block_hash": BLOCK_HASH, "permission": "FullAccess"})
            )

        args = json.loads(base64.b64decode(params["args_base64"]))
        handler = self.views[params["method_name"]]
        return CallbackResult(payload=_rpc(_view_result(handler(args))))


class NearLedgerGatewayTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.rpc = FakeNearRpc()
        self.mocked = aioresponses()
        self.mocked.start()
        self.mocked.post(RPC_URL, callback=self.rpc, repeat=True)
        self.gateway = NearLedgerGateway(
            logger=logging.getLogger("test.ledger"),
            rpc_url=RPC_URL,
            solver_contract="solver.testnet",
            verifier_contract="verifier.testnet",
            account_id="daemon.testnet",
            private_key=json.dumps(list(bytes(KEYPAIR))),
            request_timeout_seconds=2,
        )
        await self.gateway.connect()

    async def asyncTearDown(self) -> None:
        await self.gateway.close()
        self.mocked.stop()

    async def test_pending_ids_are_read_from_solver_contract(self) -> None:
        self.rpc.views["get_pending_for_daemon"] = lambda args: ["a", "b"]
        self.assertEqual(await self.gateway.get_pending_ids(), ["a", "b"])

    async def test_get_intent_parses_verified_intent(self) -> None:
        self.rpc.views["get_verified_intent"] = lambda args: {
            "intent_id": args["intent_id"],
            "user": "alice.testnet",
            "market_id": "market_1",
            "intent_type": "SellShares",
            "outcome": 0,
            "amount": "500",
            "max_price": None,
            "min_price": 40000,
            "deadline": 0,
            "order_type": "FOK",
        }

        intent = await self.gateway.get_intent("i9")

        assert intent is not None
        self.assertEqual(intent.id, "i9")
        self.assertIs(intent.kind, IntentKind.SELL_SHARES)
        self.assertEqual(intent.min_price, 40000)

    async def test_unknown_intent_is_none(self) -> None:
        self.rpc.views["get_verified_intent"] = lambda args: None
        self.assertIsNone(await self.gateway.get_intent("missing"))

    async def test_condition_id_is_cached_and_fallback_is_not(self) -> None:
        markets = {"m1": {"market_id": "m1", "condition_id": "0xabc"}}
        lookups: list[str] = []

        def _market(args: dict[str, Any]) -> Any:
            lookups.append(args["market_id"])
            return markets.get(args["market_id"])

        self.rpc.views["get_market"] = _market

        self.assertEqual(await self.gateway.get_condition_id("m1"), "0xabc")
        self.assertEqual(await self.gateway.get_condition_id("m1"), "0xabc")
        self.assertEqual(await self.gateway.get_condition_id("m2"), "fallback_condition_m2")
        self.assertEqual(await self.gateway.get_condition_id("m2"), "fallback_condition_m2")
        self.assertEqual(lookups, ["m1", "m2", "m2"])

    async def test_solver_registration_check(self) -> None:
        self.rpc.views["is_solver_registered"] = lambda args: args == {"solver": "solver.testnet"}
        self.assertTrue(await self.gateway.is_solver_registered())

    async def test_notify_completion_signs_complete_intent_call(self) -> None:
        result = CompletionResult(
            intent_id="i1",
            success=True,
            output_amount="1000",
            execution_details="Processed 1 trades",
        )

        await self.gateway.notify_completion("i1", result)

        decoded = _decode_signed(self.rpc.broadcasts[0])
        self.assertEqual(decoded["signer_id"], "daemon.testnet")
        self.assertEqual(decoded["receiver_id"], "solver.testnet")
        self.assertEqual(decoded["public_key"], bytes(KEYPAIR.pubkey()))
        self.assertEqual(decoded["nonce"], 42)
        self.assertEqual((decoded["action_count"], decoded["action_tag"]), (1, 2))
        self.assertEqual(decoded["method_name"], "complete_intent")
        self.assertEqual(decoded["gas"], 300_000_000_000_000)
        self.assertEqual(decoded["deposit"], 0)
        self.assertEqual(
            decoded["args"],
            {
                "intent_id": "i1",
                "result": {
                    "intent_id": "i1",
                    "success": True,
                    "output_amount": "1000",
                    "fee_amount": "0",
                    "execution_details": "Processed 1 trades",
                },
            },
        )
        self.assertEqual(decoded["trailing"], b"")
        signature = Signature.from_bytes(decoded["signature"])
        self.assertTrue(signature.verify(KEYPAIR.pubkey(), hashlib.sha256(decoded["unsigned"]).digest()))

    async def test_nonce_advances_past_lagging_chain_view(self) -> None:
        failure = CompletionResult(intent_id="i2", success=False, execution_details="Failed after 5 attempts: x")

        await self.gateway.notify_completion("i2", failure)
        await self.gateway.notify_completion("i2", failure)

        nonces = [_decode_signed(item)["nonce"] for item in self.rpc.broadcasts]
        self.assertEqual(nonces, [42, 43])
        self.assertIsNone(_decode_signed(self.rpc.broadcasts[0])["args"]["result"]["output_amount"])

    async def test_failed_transaction_raises(self) -> None:
        self.rpc.broadcast_response = _rpc(
            {"status": {"Failure": {"ActionError": {"kind": "FunctionCallError"}}}}
        )
        result = CompletionResult(intent_id="i3", success=True, execution_details="Processed 0 trades")

        with self.assertRaises(LedgerRpcError) as ctx:
            await self.gateway.notify_completion("i3", result)
        self.assertEqual(ctx.exception.name, "TX_FAILURE")

    async def test_invalid_nonce_resets_local_nonce(self) -> None:
        self.rpc.broadcast_response = _rpc(
            error={"name": "HANDLER_ERROR", "cause": {"name": "INVALID_TRANSACTION"}, "data": {"TxExecutionError": {"InvalidTxError": {"InvalidNonce": {}}}}}
        )
        result = CompletionResult(intent_id="i4", success=True, execution_details="Processed 0 trades")

        with self.assertRaises(LedgerRpcError):
            await self.gateway.notify_completion("i4", result)

        self.rpc.broadcast_response = _rpc({"status": {"SuccessValue": ""}})
        await self.gateway.notify_completion("i4", result)
        self.assertEqual(_decode_signed(self.rpc.broadcasts[-1])["nonce"], 42)

    async def test_view_method_not_found_is_malformed(self) -> None:
        self.mocked.clear()
        self.mocked.post(
            RPC_URL,
            payload=_rpc({"error": "wasm execution failed with error: MethodResolveError(MethodNotFound)", "logs": []}),
        )

        with self.assertRaises(LedgerRpcError) as ctx:
            await self.gateway.get_pending_ids()
        self.assertIs(ctx.exception.kind, ErrorKind.MALFORMED_RESPONSE)

    async def test_rpc_error_causes_are_classified(self) -> None:
        self.mocked.clear()
        self.mocked.post(RPC_URL, payload=_rpc(error={"name": "HANDLER_ERROR", "cause": {"name": "UNKNOWN_BLOCK"}}))
        self.mocked.post(RPC_URL, status=429, headers={"Retry-After": "2"})
        self.mocked.post(RPC_URL, status=200, body="not json")

        with self.assertRaises(LedgerRpcError) as ctx:
            await self.gateway.get_pending_ids()
        self.assertIs(ctx.exception.kind, ErrorKind.TRANSIENT_NETWORK)
        with self.assertRaises(RateLimitedError):
            await self.gateway.get_pending_ids()
        with self.assertRaises(MalformedResponseError):
            await self.gateway.get_pending_ids()


if __name__ == "__main__":
    unittest.main()
