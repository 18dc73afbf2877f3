from .backoff import CACHE_BACKOFF, DAEMON_BACKOFF, BackoffPolicy
from .engine import IntentOrchestrator, OrchestratorConfig
from .errors import (
    ErrorKind,
    GatewayUnavailableError,
    IntentSolverError,
    LedgerRpcError,
    MalformedResponseError,
    MatchingHttpError,
    NotFoundError,
    PermanentExpiryError,
    RateLimitedError,
    TransientNetworkError,
    UnsupportedIntentError,
    classify_error,
)
from .registry import IntentRegistry
from .types import (
    CompletionResult,
    Intent,
    IntentKind,
    Order,
    OrderSide,
    OrderStyle,
    PendingTrade,
    RetryRecord,
    SubmissionResult,
    Trade,
)

__all__ = [
    "BackoffPolicy",
    "CACHE_BACKOFF",
    "CompletionResult",
    "DAEMON_BACKOFF",
    "ErrorKind",
    "GatewayUnavailableError",
    "Intent",
    "IntentKind",
    "IntentOrchestrator",
    "IntentRegistry",
    "IntentSolverError",
    "LedgerRpcError",
    "MalformedResponseError",
    "MatchingHttpError",
    "NotFoundError",
    "Order",
    "OrderSide",
    "OrderStyle",
    "OrchestratorConfig",
    "PendingTrade",
    "PermanentExpiryError",
    "RateLimitedError",
    "RetryRecord",
    "SubmissionResult",
    "Trade",
    "TransientNetworkError",
    "UnsupportedIntentError",
    "classify_error",
]
