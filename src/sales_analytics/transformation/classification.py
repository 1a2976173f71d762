"""
Customer Classification

Labels every order under both attribution schemes side by side:

- Shopify mode: relative to an explicit reporting period. A customer whose
  account was created inside the period counts as first-time even when the
  platform's order count has already moved on.
- Legacy mode: the customer's lifetime order count alone.

Both are pure functions dispatched through ``CLASSIFIERS``. Classification
never raises; missing signals produce UNKNOWN.
"""

from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .models import (
    AttributionMode,
    CustomerClassification,
    HistoricalOrder,
    LegacyCustomerType,
    Order,
    ShopifyCustomerType,
)
from .timezones import DateConversionError, ReportingPeriod, TimezoneLike, to_local_date


def classify_shopify_mode(order: Order, period: ReportingPeriod,
                          timezone: TimezoneLike) -> ShopifyCustomerType:
    """
    Period-relative classification.

    Args:
        order: Order to classify
        period: Reporting period the label is relative to
        timezone: Store timezone used for every date comparison

    Returns:
        FIRST_TIME, RETURNING, GUEST or UNKNOWN
    """
    customer = order.customer
    if customer is None:
        return ShopifyCustomerType.GUEST

    try:
        order_day = to_local_date(order.created_at, timezone)
    except DateConversionError:
        return ShopifyCustomerType.UNKNOWN

    if not period.contains(order_day):
        return ShopifyCustomerType.RETURNING

    if customer.created_at is not None and period.contains_instant(customer.created_at, timezone):
        return ShopifyCustomerType.FIRST_TIME

    if customer.lifetime_order_count is None:
        return ShopifyCustomerType.UNKNOWN
    if customer.lifetime_order_count == 1:
        return ShopifyCustomerType.FIRST_TIME
    return ShopifyCustomerType.RETURNING


def classify_legacy_mode(order: Order) -> LegacyCustomerType:
    """Lifetime order count classification"""
    customer = order.customer
    if customer is None:
        return LegacyCustomerType.GUEST
    if customer.lifetime_order_count is None:
        return LegacyCustomerType.UNKNOWN
    if customer.lifetime_order_count == 1:
        return LegacyCustomerType.NEW
    return LegacyCustomerType.RETURNING


Classifier = Callable[[Order, ReportingPeriod, TimezoneLike], str]

CLASSIFIERS: Dict[AttributionMode, Classifier] = {
    AttributionMode.SHOPIFY: lambda order, period, tz: classify_shopify_mode(order, period, tz).value,
    AttributionMode.LEGACY: lambda order, period, tz: classify_legacy_mode(order).value,
}


def classify(order: Order, mode: AttributionMode, period: ReportingPeriod,
             timezone: TimezoneLike) -> str:
    """Label of one order under one mode"""
    return CLASSIFIERS[AttributionMode(mode)](order, period, timezone)


def first_order_ids(history: Mapping[str, Sequence[HistoricalOrder]]) -> Set[str]:
    """
    Lifetime first order of each customer.

    Args:
        history: Customer id -> every order the customer ever placed

    Returns:
        Order ids holding the earliest ``created_at`` per customer, ties
        broken by the smaller order id
    """
    firsts: Set[str] = set()
    for orders in history.values():
        if not orders:
            continue
        first = min(orders, key=lambda o: (o.created_at, o.order_id))
        firsts.add(first.order_id)
    return firsts


def classify_order(
    order: Order,
    period: ReportingPeriod,
    timezone: TimezoneLike,
    first_orders: Optional[Set[str]] = None,
) -> CustomerClassification:
    """Both labels and the lifetime first-order flag for one order"""
    is_first = bool(first_orders) and order.order_id in first_orders and not order.is_guest
    return CustomerClassification(
        order_id=order.order_id,
        shopify_mode_label=classify_shopify_mode(order, period, timezone),
        legacy_mode_label=classify_legacy_mode(order),
        is_first_order_for_customer_lifetime=is_first,
    )


def classify_orders(
    orders: Iterable[Order],
    period: ReportingPeriod,
    timezone: TimezoneLike,
    history: Optional[Mapping[str, Sequence[HistoricalOrder]]] = None,
) -> List[CustomerClassification]:
    """
    Classify a batch of orders.

    The first-order set is derived once for the batch; nothing is cached
    beyond this call.
    """
    first_orders = first_order_ids(history) if history else set()
    return [classify_order(order, period, timezone, first_orders) for order in orders]
