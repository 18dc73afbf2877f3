from __future__ import annotations

import logging

from intent_solver.common import log_event

from .errors import UnsupportedIntentError
from .types import (
    DEFAULT_ORDER_STYLE,
    MAX_PRICE,
    MIN_PRICE,
    Intent,
    IntentKind,
    Order,
    OrderSide,
    OrderStyle,
)

_SIDES = {
    IntentKind.BUY_SHARES: OrderSide.BUY,
    IntentKind.SELL_SHARES: OrderSide.SELL,
}


def side_for(intent: Intent) -> OrderSide:
    side = _SIDES.get(intent.kind)
    if side is None:
        raise UnsupportedIntentError(
            f"Intent {intent.id} of kind {intent.kind.value} cannot be routed through the order book"
        )
    return side


def clamp_price(intent: Intent, *, logger: logging.Logger) -> int:
    if intent.max_price is not None:
        raw_price = intent.max_price
    elif intent.min_price is not None:
        raw_price = intent.min_price
    else:
        raw_price = 0

    price = min(MAX_PRICE, max(MIN_PRICE, raw_price))
    if price != raw_price:
        log_event(
            logger,
            level="warning",
            event="order_price_clamped",
            message="Intent price was outside the order book range and has been clamped",
            intent_id=intent.id,
            raw_price=raw_price,
            price=price,
        )
    return price


def resolve_order_style(intent: Intent, *, logger: logging.Logger) -> OrderStyle:
    if intent.order_style_defaulted:
        log_event(
            logger,
            level="warning",
            event="order_style_defaulted",
            message="Intent carried an unrecognized order style; using the default",
            intent_id=intent.id,
            order_type=DEFAULT_ORDER_STYLE.value,
        )
        return DEFAULT_ORDER_STYLE
    # Plain limit orders rest on the book until cancelled.
    if intent.order_style is OrderStyle.LIMIT:
        return OrderStyle.GTC
    return intent.order_style


def build_order(
    intent: Intent,
    *,
    condition_id: str,
    now: float,
    default_ttl_seconds: float,
    logger: logging.Logger,
) -> Order:
    side = side_for(intent)
    created_at = int(now)
    if intent.deadline is not None:
        expires_at = int(intent.deadline)
    else:
        expires_at = int(now + default_ttl_seconds)

    return Order(
        order_id=f"order_{intent.id}",
        intent_id=intent.id,
        user=intent.user,
        market_id=intent.market_id,
        condition_id=condition_id,
        outcome=intent.outcome,
        side=side,
        order_type=resolve_order_style(intent, logger=logger),
        price=clamp_price(intent, logger=logger),
        amount=intent.amount,
        created_at=created_at,
        expires_at=expires_at,
    )
