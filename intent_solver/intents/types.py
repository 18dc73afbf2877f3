from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from .errors import ErrorKind, MalformedResponseError

PRICE_SCALE = 100_000
MIN_PRICE = 0
MAX_PRICE = PRICE_SCALE

Clock = Callable[[], float]


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def timestamp_to_seconds(value: Any) -> float | None:
    """Normalize a ledger timestamp (ns, us, ms or s) to epoch seconds."""
    raw = to_int(value, 0)
    if raw <= 0:
        return None
    if raw > 10**17:
        return raw / 1_000_000_000
    if raw > 10**14:
        return raw / 1_000_000
    if raw > 10**11:
        return raw / 1_000
    return float(raw)


class IntentKind(str, Enum):
    BUY_SHARES = "BuyShares"
    SELL_SHARES = "SellShares"
    MINT_COMPLETE = "MintComplete"
    REDEEM_WINNING = "RedeemWinning"


class OrderStyle(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"
    GTC = "GTC"
    GTD = "GTD"
    FOK = "FOK"
    FAK = "FAK"


class OrderSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


DEFAULT_ORDER_STYLE = OrderStyle.GTC


@dataclass(slots=True, frozen=True)
class Intent:
    id: str
    user: str
    market_id: str
    kind: IntentKind
    outcome: int
    amount: str
    max_price: int | None = None
    min_price: int | None = None
    deadline: float | None = None
    order_style: OrderStyle = OrderStyle.MARKET
    order_style_defaulted: bool = False

    @classmethod
    def from_ledger(cls, payload: Any) -> "Intent":
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Intent payload must be an object, got {type(payload).__name__}")

        intent_id = str(payload.get("intent_id") or "").strip()
        if not intent_id:
            raise MalformedResponseError("Intent payload is missing intent_id")

        raw_kind = str(payload.get("intent_type") or "").strip()
        try:
            kind = IntentKind(raw_kind)
        except ValueError as error:
            raise MalformedResponseError(f"Intent {intent_id} has unknown intent_type {raw_kind!r}") from error

        outcome = to_int(payload.get("outcome"), -1)
        if outcome not in (0, 1):
            raise MalformedResponseError(f"Intent {intent_id} has invalid outcome {payload.get('outcome')!r}")

        amount = str(payload.get("amount") or "").strip()
        if not amount.isdigit():
            raise MalformedResponseError(f"Intent {intent_id} has invalid amount {payload.get('amount')!r}")

        raw_style = payload.get("order_type")
        style_defaulted = False
        if raw_style is None or raw_style == "":
            order_style = OrderStyle.MARKET
        else:
            try:
                order_style = OrderStyle(str(raw_style).strip())
            except ValueError:
                order_style = DEFAULT_ORDER_STYLE
                style_defaulted = True

        max_price = payload.get("max_price")
        min_price = payload.get("min_price")
        return cls(
            id=intent_id,
            user=str(payload.get("user") or ""),
            market_id=str(payload.get("market_id") or ""),
            kind=kind,
            outcome=outcome,
            amount=amount,
            max_price=None if max_price is None else to_int(max_price, 0),
            min_price=None if min_price is None else to_int(min_price, 0),
            deadline=timestamp_to_seconds(payload.get("deadline")),
            order_style=order_style,
            order_style_defaulted=style_defaulted,
        )


@dataclass(slots=True, frozen=True)
class Order:
    order_id: str
    intent_id: str
    user: str
    market_id: str
    condition_id: str
    outcome: int
    side: OrderSide
    order_type: OrderStyle
    price: int
    amount: str
    created_at: int
    expires_at: int
    filled_amount: str = "0"
    status: str = "Pending"

    def to_wire(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["side"] = self.side.value
        payload["order_type"] = self.order_type.value
        return payload


@dataclass(slots=True, frozen=True)
class Trade:
    trade_id: str
    amount: str
    price: int
    market_id: str
    outcome: int
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_wire(cls, payload: Any) -> "Trade":
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Trade payload must be an object, got {type(payload).__name__}")
        trade_id = str(payload.get("trade_id") or "").strip()
        if not trade_id:
            raise MalformedResponseError("Trade payload is missing trade_id")
        amount = payload.get("amount")
        if amount is None:
            amount = payload.get("size")
        return cls(
            trade_id=trade_id,
            amount=str(amount if amount is not None else "0"),
            price=to_int(payload.get("price"), 0),
            market_id=str(payload.get("market_id") or ""),
            outcome=to_int(payload.get("outcome"), 0),
            raw=dict(payload),
        )


@dataclass(slots=True, frozen=True)
class SubmissionResult:
    trades: tuple[Trade, ...]


@dataclass(slots=True, frozen=True)
class CompletionResult:
    intent_id: str
    success: bool
    execution_details: str
    output_amount: str | None = None
    fee_amount: str = "0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent_id": self.intent_id,
            "success": self.success,
            "output_amount": self.output_amount,
            "fee_amount": self.fee_amount,
            "execution_details": self.execution_details,
        }


@dataclass(slots=True)
class RetryRecord:
    first_seen_at: float
    next_retry_at: float
    attempts: int = 0
    last_error: str | None = None
    last_error_kind: ErrorKind | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "first_seen_at": self.first_seen_at,
            "next_retry_at": self.next_retry_at,
            "last_error": self.last_error,
            "last_error_kind": self.last_error_kind.value if self.last_error_kind else None,
        }


@dataclass(slots=True)
class PendingTrade:
    intent_id: str
    trade: Trade
    queued_at: float
    retry_count: int = 0

    @property
    def trade_id(self) -> str:
        return self.trade.trade_id


class LedgerGateway(Protocol):
    async def get_pending_ids(self) -> list[str]:
        ...

    async def get_intent(self, intent_id: str) -> Intent | None:
        ...

    async def get_condition_id(self, market_id: str) -> str:
        ...

    async def notify_completion(self, intent_id: str, result: CompletionResult) -> None:
        ...


class MatchingGateway(Protocol):
    async def healthcheck(self) -> bool:
        ...

    async def submit_order(self, order: Order) -> SubmissionResult:
        ...


class EventSink(Protocol):
    async def publish_event(
        self,
        *,
        level: str,
        event: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        ...
