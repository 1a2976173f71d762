"""
Refund Attribution

Turns an order's refunds into dated, tax-exclusive return amounts and the
tax refunded with them. A refund is always dated by its own timestamp in
the store timezone, never by the order's date, so returns land on the day
they happened.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog

from .allocation import exclusive_tax_rate, implicit_tax_rate, remove_tax
from .models import EventDateBasis, LineItem, Order, Refund, RefundLineItem
from .money import ZERO, sum_amounts
from .timezones import DateConversionError, TimezoneLike, to_local_date

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RefundLine:
    """One refunded line, tax-exclusive, on its store-local refund date"""
    occurred_on: str
    refund_id: str
    line_item_id: str
    amount_excl_tax: Decimal
    quantity: int = 0
    tax: Decimal = ZERO


@dataclass(frozen=True)
class OrderLevelRefund:
    """Refunded amount not tied to any line item (e.g. shipping only)"""
    occurred_on: str
    refund_id: str
    amount: Decimal


@dataclass(frozen=True)
class RefundFailure:
    """Refund whose date could not be derived; contributes no RETURN event"""
    refund_id: str
    reason: str
    amount_excl_tax: Decimal = ZERO
    tax: Decimal = ZERO


@dataclass(frozen=True)
class RefundAttribution:
    """Everything the event mapper needs to emit RETURN events"""
    order_id: str
    lines: Tuple[RefundLine, ...] = ()
    order_level: Tuple[OrderLevelRefund, ...] = ()
    failures: Tuple[RefundFailure, ...] = ()

    @property
    def dated_excl_tax(self) -> Decimal:
        return sum_amounts(line.amount_excl_tax for line in self.lines)

    @property
    def total_excl_tax(self) -> Decimal:
        """
        All refunded line subtotals, dated or not.

        The order's current subtotal is net of every refund, so gross has to
        add all of them back even when one cannot be dated.
        """
        return self.dated_excl_tax + sum_amounts(f.amount_excl_tax for f in self.failures)

    @property
    def total_tax(self) -> Decimal:
        """Tax refunded with every line, dated or not"""
        return (
            sum_amounts(line.tax for line in self.lines)
            + sum_amounts(f.tax for f in self.failures)
        )

    def by_date(self) -> "OrderedDict[str, Tuple[List[RefundLine], List[OrderLevelRefund]]]":
        """Group lines and order-level refunds by date, ascending"""
        grouped: Dict[str, Tuple[List[RefundLine], List[OrderLevelRefund]]] = {}
        for line in self.lines:
            grouped.setdefault(line.occurred_on, ([], []))[0].append(line)
        for refund in self.order_level:
            grouped.setdefault(refund.occurred_on, ([], []))[1].append(refund)
        return OrderedDict(sorted(grouped.items()))


def refund_instant(refund: Refund, date_basis: EventDateBasis) -> Optional[datetime]:
    """
    Instant a refund is attributed to.

    With PROCESSED_AT dating this is the refund's first successful REFUND
    transaction, falling back to the refund's creation time.
    """
    if date_basis == EventDateBasis.PROCESSED_AT:
        processed = sorted(
            t.processed_at for t in refund.transactions if t.is_successful_refund
        )
        if processed:
            return processed[0]
    return refund.created_at


def _price_refund_line(
    refund_line: RefundLineItem,
    line_items: Dict[str, LineItem],
    rate: Optional[Decimal],
    exclusive_rate: Optional[Decimal],
) -> Tuple[Decimal, Decimal]:
    """Tax-exclusive amount and tax of one refunded line"""
    reported_tax = refund_line.total_tax

    if refund_line.subtotal_excl_tax is not None:
        amount = refund_line.subtotal_excl_tax
        if reported_tax is not None:
            return amount, reported_tax
        return amount, amount * exclusive_rate if exclusive_rate is not None else ZERO

    original = line_items.get(refund_line.line_item_id)
    if original is None:
        return ZERO, ZERO
    amount_incl = original.unit_price_incl_tax * refund_line.quantity
    amount = remove_tax(amount_incl, rate)
    return amount, reported_tax if reported_tax is not None else amount_incl - amount


def _order_level_amount(refund: Refund) -> Decimal:
    if refund.total_refunded is not None:
        return refund.total_refunded
    return sum_amounts(t.amount for t in refund.transactions if t.is_successful_refund)


def attribute_refunds(
    order: Order,
    timezone: TimezoneLike,
    date_basis: EventDateBasis = EventDateBasis.CREATED_AT,
) -> RefundAttribution:
    """
    Attribute every refund of an order to its store-local date.

    Args:
        order: Order whose refunds are attributed
        timezone: Store timezone (IANA name or ZoneInfo)
        date_basis: Which instant dates a refund

    Returns:
        RefundAttribution with line amounts and their tax, order-level
        (shipping-only) refunds and refunds that could not be dated.
    """
    rate = implicit_tax_rate(order.subtotal_price, order.total_tax)
    exclusive_rate = exclusive_tax_rate(order.subtotal_price, order.total_tax)
    line_items = {li.line_item_id: li for li in order.line_items}

    lines: List[RefundLine] = []
    order_level: List[OrderLevelRefund] = []
    failures: List[RefundFailure] = []

    for refund in order.refunds:
        priced = [
            (rl, *_price_refund_line(rl, line_items, rate, exclusive_rate))
            for rl in refund.refund_line_items
        ]

        try:
            occurred_on = to_local_date(refund_instant(refund, date_basis), timezone)
        except DateConversionError as e:
            failures.append(RefundFailure(
                refund_id=refund.refund_id,
                reason=str(e),
                amount_excl_tax=sum_amounts(amount for _, amount, _ in priced),
                tax=sum_amounts(tax for _, _, tax in priced),
            ))
            logger.warning(
                "Refund date conversion failed",
                order_id=order.order_id,
                refund_id=refund.refund_id,
                error=str(e),
            )
            continue

        for refund_line, amount, tax in priced:
            lines.append(RefundLine(
                occurred_on=occurred_on,
                refund_id=refund.refund_id,
                line_item_id=refund_line.line_item_id,
                amount_excl_tax=amount,
                quantity=refund_line.quantity,
                tax=tax,
            ))

        if not refund.refund_line_items:
            amount = _order_level_amount(refund)
            if amount != 0:
                order_level.append(OrderLevelRefund(
                    occurred_on=occurred_on,
                    refund_id=refund.refund_id,
                    amount=amount,
                ))

    return RefundAttribution(
        order_id=order.order_id,
        lines=tuple(lines),
        order_level=tuple(order_level),
        failures=tuple(failures),
    )
