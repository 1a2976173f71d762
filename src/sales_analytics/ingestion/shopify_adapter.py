"""
Shopify Order Adapters

One canonical adapter per upstream payload shape (Admin REST and Admin
GraphQL). Both produce the single internal ``Order`` model so that nothing
downstream branches on field-name variants.

Money fields go through ``parse_amount``; timestamps that cannot be parsed
become None and surface later as date-conversion drops.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import TypeAdapter, ValidationError

from ..transformation.models import (
    AnomalyKind,
    AnomalySeverity,
    CustomerSummary,
    DiscountAllocation,
    EventDateBasis,
    LineItem,
    Order,
    OrderAnomaly,
    Refund,
    RefundLineItem,
    TaxLine,
    Transaction,
)
from ..transformation.money import ZERO, parse_amount

logger = structlog.get_logger(__name__)

_TIMESTAMP = TypeAdapter(datetime)

REPORTABLE_FINANCIAL_STATUSES = frozenset({
    "paid",
    "partially_paid",
    "partially_refunded",
    "refunded",
})


class PayloadShape(str, Enum):
    """Upstream order payload shapes"""
    REST = "rest"
    GRAPHQL = "graphql"


@dataclass
class AdaptResult:
    """Adapted orders plus the payloads that could not be read"""
    orders: List[Order] = field(default_factory=list)
    anomalies: List[OrderAnomaly] = field(default_factory=list)


# =============================================================================
# FIELD HELPERS
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 timestamp or None when missing or unparseable"""
    if value is None or value == "":
        return None
    try:
        return _TIMESTAMP.validate_python(value)
    except ValidationError:
        return None


def _shop_money(money_set: Optional[Dict[str, Any]]) -> Optional[Any]:
    """Amount of a GraphQL MoneyBag in shop currency"""
    if not money_set:
        return None
    return (money_set.get("shopMoney") or {}).get("amount")


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _edges(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Nodes of a GraphQL connection; plain lists pass through"""
    if not connection:
        return []
    if isinstance(connection, list):
        return connection
    return [edge["node"] for edge in connection.get("edges", [])]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# REST
# =============================================================================

def _rest_transaction(payload: Dict[str, Any]) -> Transaction:
    return Transaction(
        kind=str(payload.get("kind") or ""),
        status=str(payload.get("status") or ""),
        processed_at=parse_timestamp(payload.get("processed_at")),
        amount=parse_amount(payload.get("amount")),
    )


def _rest_line_item(payload: Dict[str, Any]) -> LineItem:
    return LineItem(
        line_item_id=str(payload["id"]),
        sku=payload.get("sku"),
        title=payload.get("title"),
        unit_price_incl_tax=parse_amount(payload.get("price")),
        quantity=int(payload.get("quantity") or 0),
        discount_allocations=tuple(
            DiscountAllocation(amount=parse_amount(d.get("amount")))
            for d in payload.get("discount_allocations") or []
        ),
        tax_lines=tuple(
            TaxLine(
                title=t.get("title"),
                rate=parse_amount(t.get("rate")) if t.get("rate") is not None else None,
                amount=parse_amount(t.get("price")),
            )
            for t in payload.get("tax_lines") or []
        ),
    )


def _rest_refund(payload: Dict[str, Any]) -> Refund:
    transactions = tuple(_rest_transaction(t) for t in payload.get("transactions") or [])
    total_refunded = payload.get("total_refunded")
    return Refund(
        refund_id=str(payload["id"]),
        created_at=parse_timestamp(payload.get("created_at")),
        refund_line_items=tuple(
            RefundLineItem(
                line_item_id=str(rl.get("line_item_id")),
                quantity=int(rl.get("quantity") or 0),
                subtotal_excl_tax=(
                    parse_amount(rl["subtotal"]) if rl.get("subtotal") is not None else None
                ),
                total_tax=(
                    parse_amount(rl["total_tax"]) if rl.get("total_tax") is not None else None
                ),
            )
            for rl in payload.get("refund_line_items") or []
        ),
        total_refunded=parse_amount(total_refunded) if total_refunded is not None else None,
        transactions=transactions,
    )


def _rest_customer(payload: Optional[Dict[str, Any]]) -> Optional[CustomerSummary]:
    if not payload or payload.get("id") is None:
        return None
    return CustomerSummary(
        customer_id=str(payload["id"]),
        created_at=parse_timestamp(payload.get("created_at")),
        lifetime_order_count=_optional_int(payload.get("orders_count")),
    )


def from_rest_order(payload: Dict[str, Any], tenant_id: str) -> Order:
    """
    Adapt an Admin REST order payload.

    Current (post-refund) subtotal and tax are preferred; the original values
    are used only when the current ones are absent.
    """
    return Order(
        order_id=str(payload["id"]),
        order_number=(
            str(payload["order_number"]) if payload.get("order_number") is not None
            else payload.get("name")
        ),
        tenant_id=tenant_id,
        created_at=parse_timestamp(payload.get("created_at")),
        processed_at=parse_timestamp(payload.get("processed_at")),
        currency=payload.get("currency"),
        subtotal_price=parse_amount(
            _first_present(payload.get("current_subtotal_price"), payload.get("subtotal_price"))
        ),
        total_tax=parse_amount(
            _first_present(payload.get("current_total_tax"), payload.get("total_tax"))
        ),
        total_discounts=parse_amount(payload.get("total_discounts")),
        line_items=tuple(_rest_line_item(li) for li in payload.get("line_items") or []),
        customer=_rest_customer(payload.get("customer")),
        refunds=tuple(_rest_refund(r) for r in payload.get("refunds") or []),
        transactions=tuple(_rest_transaction(t) for t in payload.get("transactions") or []),
        financial_status=payload.get("financial_status"),
        cancelled_at=parse_timestamp(payload.get("cancelled_at")),
        test=bool(payload.get("test", False)),
    )


# =============================================================================
# GRAPHQL
# =============================================================================

def _graphql_transaction(payload: Dict[str, Any]) -> Transaction:
    return Transaction(
        kind=str(payload.get("kind") or ""),
        status=str(payload.get("status") or ""),
        processed_at=parse_timestamp(payload.get("processedAt")),
        amount=parse_amount(_shop_money(payload.get("amountSet"))),
    )


def _graphql_line_item(payload: Dict[str, Any]) -> LineItem:
    return LineItem(
        line_item_id=str(payload["id"]),
        sku=payload.get("sku"),
        title=payload.get("title") or payload.get("name"),
        unit_price_incl_tax=parse_amount(_shop_money(payload.get("originalUnitPriceSet"))),
        quantity=int(payload.get("quantity") or 0),
        discount_allocations=tuple(
            DiscountAllocation(amount=parse_amount(_shop_money(d.get("allocatedAmountSet"))))
            for d in payload.get("discountAllocations") or []
        ),
        tax_lines=tuple(
            TaxLine(
                title=t.get("title"),
                rate=parse_amount(t.get("rate")) if t.get("rate") is not None else None,
                amount=parse_amount(_shop_money(t.get("priceSet"))),
            )
            for t in payload.get("taxLines") or []
        ),
    )


def _graphql_refund(payload: Dict[str, Any]) -> Refund:
    refund_lines = []
    for node in _edges(payload.get("refundLineItems")):
        subtotal = _shop_money(node.get("subtotalSet"))
        total_tax = _shop_money(node.get("totalTaxSet"))
        refund_lines.append(RefundLineItem(
            line_item_id=str((node.get("lineItem") or {}).get("id")),
            quantity=int(node.get("quantity") or 0),
            subtotal_excl_tax=parse_amount(subtotal) if subtotal is not None else None,
            total_tax=parse_amount(total_tax) if total_tax is not None else None,
        ))

    total_refunded = _shop_money(payload.get("totalRefundedSet"))
    return Refund(
        refund_id=str(payload["id"]),
        created_at=parse_timestamp(payload.get("createdAt")),
        refund_line_items=tuple(refund_lines),
        total_refunded=parse_amount(total_refunded) if total_refunded is not None else None,
        transactions=tuple(
            _graphql_transaction(t) for t in _edges(payload.get("transactions"))
        ),
    )


def _graphql_customer(payload: Optional[Dict[str, Any]]) -> Optional[CustomerSummary]:
    if not payload or payload.get("id") is None:
        return None
    return CustomerSummary(
        customer_id=str(payload["id"]),
        created_at=parse_timestamp(payload.get("createdAt")),
        lifetime_order_count=_optional_int(payload.get("numberOfOrders")),
    )


def infer_financial_status(cancelled_at: Optional[datetime],
                           transactions: Iterable[Transaction]) -> str:
    """
    Financial status from transactions, for payloads that omit it.

    Any successful refund next to a successful sale reads as partially
    refunded; full refunds cannot be told apart without comparing amounts.
    """
    if cancelled_at is not None:
        return "voided"
    transactions = list(transactions)
    if not transactions:
        return "pending"
    has_sale = any(t.is_successful_sale for t in transactions)
    has_refund = any(t.is_successful_refund for t in transactions)
    if has_sale and has_refund:
        return "partially_refunded"
    if has_sale:
        return "paid"
    return "pending"


def from_graphql_order(payload: Dict[str, Any], tenant_id: str) -> Order:
    """
    Adapt an Admin GraphQL order node.

    The REST-compatible ``legacyResourceId`` is used as the order id when
    present so that both shapes key the same order identically.
    """
    line_items = tuple(_graphql_line_item(li) for li in _edges(payload.get("lineItems")))
    transactions = tuple(_graphql_transaction(t) for t in _edges(payload.get("transactions")))
    cancelled_at = parse_timestamp(payload.get("cancelledAt"))

    total_discounts = _shop_money(payload.get("totalDiscountsSet"))
    if total_discounts is None:
        discounts = sum(
            (d.amount for li in line_items for d in li.discount_allocations),
            ZERO,
        )
    else:
        discounts = parse_amount(total_discounts)

    financial_status = payload.get("displayFinancialStatus")
    if financial_status:
        financial_status = str(financial_status).lower()
    else:
        financial_status = infer_financial_status(cancelled_at, transactions)

    return Order(
        order_id=str(payload.get("legacyResourceId") or payload["id"]),
        order_number=payload.get("name"),
        tenant_id=tenant_id,
        created_at=parse_timestamp(payload.get("createdAt")),
        processed_at=parse_timestamp(payload.get("processedAt")),
        currency=payload.get("currencyCode"),
        subtotal_price=parse_amount(_shop_money(
            payload.get("currentSubtotalPriceSet") or payload.get("subtotalPriceSet")
        )),
        total_tax=parse_amount(_shop_money(
            payload.get("currentTotalTaxSet") or payload.get("totalTaxSet")
        )),
        total_discounts=discounts,
        line_items=line_items,
        customer=_graphql_customer(payload.get("customer")),
        refunds=tuple(_graphql_refund(r) for r in payload.get("refunds") or []),
        transactions=transactions,
        financial_status=financial_status,
        cancelled_at=cancelled_at,
        test=bool(payload.get("test", False)),
    )


ADAPTERS = {
    PayloadShape.REST: from_rest_order,
    PayloadShape.GRAPHQL: from_graphql_order,
}


def adapt_orders(
    payloads: Iterable[Dict[str, Any]],
    shape: PayloadShape,
    tenant_id: str,
) -> AdaptResult:
    """
    Adapt a batch of raw payloads of one shape.

    Payloads that cannot be read become INVALID_PAYLOAD anomalies; the rest
    of the batch is unaffected.
    """
    adapter = ADAPTERS[PayloadShape(shape)]
    result = AdaptResult()

    for index, payload in enumerate(payloads):
        try:
            result.orders.append(adapter(payload, tenant_id))
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            order_id = str(payload.get("id", f"#{index}")) if isinstance(payload, dict) else f"#{index}"
            logger.warning(
                "Invalid order payload",
                order_id=order_id,
                shape=shape.value if isinstance(shape, PayloadShape) else shape,
                error=str(e),
            )
            result.anomalies.append(OrderAnomaly(
                order_id=order_id,
                kind=AnomalyKind.INVALID_PAYLOAD,
                severity=AnomalySeverity.WARNING,
                message=f"{type(e).__name__}: {e}",
            ))

    return result


def is_reportable(order: Order, date_basis: EventDateBasis = EventDateBasis.CREATED_AT) -> bool:
    """
    Whether an order counts toward sales.

    Test orders never count, and the financial status must be one of
    ``REPORTABLE_FINANCIAL_STATUSES``. Cash-flow dating additionally excludes
    cancelled orders and orders without a successful SALE/CAPTURE payment.
    """
    if order.test:
        return False
    status = (order.financial_status or "").lower()
    if status not in REPORTABLE_FINANCIAL_STATUSES:
        return False
    if EventDateBasis(date_basis) == EventDateBasis.PROCESSED_AT:
        if order.cancelled_at is not None:
            return False
        if not any(t.is_successful_sale for t in order.transactions):
            return False
    return True
