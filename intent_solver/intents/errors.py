from __future__ import annotations

import asyncio
import json
from enum import Enum

import aiohttp


class ErrorKind(str, Enum):
    TRANSIENT_NETWORK = "TransientNetwork"
    GATEWAY_UNAVAILABLE = "GatewayUnavailable"
    MALFORMED_RESPONSE = "MalformedResponse"
    RATE_LIMITED = "RateLimited"
    NOT_FOUND = "NotFound"
    PERMANENT_EXPIRY = "PermanentExpiry"


class IntentSolverError(RuntimeError):
    kind = ErrorKind.TRANSIENT_NETWORK


class TransientNetworkError(IntentSolverError):
    kind = ErrorKind.TRANSIENT_NETWORK


class GatewayUnavailableError(IntentSolverError):
    kind = ErrorKind.GATEWAY_UNAVAILABLE


class MalformedResponseError(IntentSolverError):
    kind = ErrorKind.MALFORMED_RESPONSE


class RateLimitedError(IntentSolverError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class NotFoundError(IntentSolverError):
    """A read query answered 404. Callers treat this as an empty result."""

    kind = ErrorKind.NOT_FOUND


class PermanentExpiryError(IntentSolverError):
    kind = ErrorKind.PERMANENT_EXPIRY


class UnsupportedIntentError(PermanentExpiryError):
    """The intent kind has no order-book representation."""


class MatchingHttpError(IntentSolverError):
    """Non-2xx answer from the matching service. 4xx bodies point at a protocol mismatch."""

    def __init__(self, status: int, body_preview: str = "") -> None:
        super().__init__(f"HTTP {status}" + (f": {body_preview}" if body_preview else ""))
        self.status = status
        self.body_preview = body_preview
        if 400 <= status < 500:
            self.kind = ErrorKind.MALFORMED_RESPONSE


class LedgerRpcError(IntentSolverError):
    def __init__(self, message: str, *, name: str = "", kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.name = name
        if kind is not None:
            self.kind = kind


def classify_error(error: BaseException) -> ErrorKind:
    if isinstance(error, IntentSolverError):
        return error.kind
    if isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT_NETWORK
    if isinstance(error, (json.JSONDecodeError, ValueError, KeyError, TypeError)):
        return ErrorKind.MALFORMED_RESPONSE
    return ErrorKind.TRANSIENT_NETWORK


def is_expected_error(error: BaseException) -> bool:
    return isinstance(
        error,
        (IntentSolverError, aiohttp.ClientError, asyncio.TimeoutError, ConnectionError),
    )


def parse_retry_after_seconds(raw: str | None) -> float | None:
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
