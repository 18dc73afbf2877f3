from __future__ import annotations

import base64
import contextlib
import hashlib
import json
import struct
from dataclasses import dataclass
from typing import Any

from solders.hash import Hash
from solders.keypair import Keypair

ED25519_PREFIX = "ed25519:"
FUNCTION_CALL_ACTION = 2
ED25519_KEY_TYPE = 0
DEFAULT_FUNCTION_CALL_GAS = 300_000_000_000_000


def parse_private_key(raw: str) -> Keypair:
    value = raw.strip()
    if value.startswith(ED25519_PREFIX):
        value = value[len(ED25519_PREFIX):]

    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("NEAR_PRIVATE_KEY JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise ValueError("Unsupported NEAR_PRIVATE_KEY format.")


def public_key_string(keypair: Keypair) -> str:
    return f"{ED25519_PREFIX}{keypair.pubkey()}"


def _u8(value: int) -> bytes:
    return struct.pack("<B", value)


def _u32(value: int) -> bytes:
    return struct.pack("<I", value)


def _u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def _u128(value: int) -> bytes:
    if value < 0 or value >= 1 << 128:
        raise ValueError(f"u128 out of range: {value}")
    return value.to_bytes(16, "little")


def _string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return _u32(len(encoded)) + encoded


def _bytes(value: bytes) -> bytes:
    return _u32(len(value)) + value


@dataclass(slots=True, frozen=True)
class FunctionCall:
    method_name: str
    args: dict[str, Any]
    gas: int = DEFAULT_FUNCTION_CALL_GAS
    deposit: int = 0

    def serialize(self) -> bytes:
        args = json.dumps(self.args, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return (
            _u8(FUNCTION_CALL_ACTION)
            + _string(self.method_name)
            + _bytes(args)
            + _u64(self.gas)
            + _u128(self.deposit)
        )


@dataclass(slots=True, frozen=True)
class Transaction:
    signer_id: str
    public_key: bytes
    nonce: int
    receiver_id: str
    block_hash: bytes
    actions: tuple[FunctionCall, ...]

    def serialize(self) -> bytes:
        if len(self.public_key) != 32:
            raise ValueError("ed25519 public key must be 32 bytes")
        if len(self.block_hash) != 32:
            raise ValueError("block hash must be 32 bytes")

        body = (
            _string(self.signer_id)
            + _u8(ED25519_KEY_TYPE)
            + self.public_key
            + _u64(self.nonce)
            + _string(self.receiver_id)
            + self.block_hash
            + _u32(len(self.actions))
        )
        return body + b"".join(action.serialize() for action in self.actions)


def decode_block_hash(value: str) -> bytes:
    return bytes(Hash.from_string(value))


def sign_transaction(transaction: Transaction, keypair: Keypair) -> bytes:
    """Return the Borsh-encoded SignedTransaction."""
    encoded = transaction.serialize()
    digest = hashlib.sha256(encoded).digest()
    signature = bytes(keypair.sign_message(digest))
    return encoded + _u8(ED25519_KEY_TYPE) + signature


def build_signed_function_call(
    *,
    keypair: Keypair,
    signer_id: str,
    receiver_id: str,
    nonce: int,
    block_hash: str,
    call: FunctionCall,
) -> str:
    transaction = Transaction(
        signer_id=signer_id,
        public_key=bytes(keypair.pubkey()),
        nonce=nonce,
        receiver_id=receiver_id,
        block_hash=decode_block_hash(block_hash),
        actions=(call,),
    )
    return base64.b64encode(sign_transaction(transaction, keypair)).decode("ascii")
