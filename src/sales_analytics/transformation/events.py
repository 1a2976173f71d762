"""
Event Mapping

Maps one order plus its allocation and refund attribution to financial
events: exactly one SALE on the order's date and one RETURN per distinct
refund date. No money math happens here beyond summing figures that were
already allocated.
"""

from datetime import datetime
from typing import List, Optional

from .allocation import OrderAllocation
from .models import EventDateBasis, EventKind, FinancialEvent, Order
from .money import sum_amounts
from .refunds import RefundAttribution
from .timezones import TimezoneLike, to_local_date


def sale_instant(order: Order, date_basis: EventDateBasis) -> Optional[datetime]:
    """
    Instant the SALE of an order is attributed to.

    CREATED_AT uses the order's creation time. PROCESSED_AT uses the first
    successful SALE/CAPTURE transaction, then the order's own processed_at.
    """
    if date_basis == EventDateBasis.PROCESSED_AT:
        processed = sorted(
            t.processed_at for t in order.transactions if t.is_successful_sale
        )
        if processed:
            return processed[0]
        return order.processed_at
    return order.created_at


def sale_date(order: Order, timezone: TimezoneLike,
              date_basis: EventDateBasis = EventDateBasis.CREATED_AT) -> str:
    """Store-local SALE date; raises DateConversionError when unavailable"""
    return to_local_date(sale_instant(order, date_basis), timezone)


def map_order_to_events(
    order: Order,
    allocation: OrderAllocation,
    refunds: RefundAttribution,
    timezone: TimezoneLike,
    date_basis: EventDateBasis = EventDateBasis.CREATED_AT,
) -> List[FinancialEvent]:
    """
    Build the financial events of one order.

    Args:
        order: Source order
        allocation: Output of ``allocate_order`` for this order
        refunds: Output of ``attribute_refunds`` for this order
        timezone: Store timezone
        date_basis: Which instant dates the SALE

    Returns:
        SALE first, then RETURN events in ascending date order

    Raises:
        DateConversionError: if the SALE date cannot be derived
    """
    events = [
        FinancialEvent(
            order_id=order.order_id,
            occurred_on=sale_date(order, timezone, date_basis),
            kind=EventKind.SALE,
            gross_excl_tax=allocation.gross_excl_tax,
            discount_excl_tax=allocation.discount_excl_tax,
            tax=allocation.tax,
            currency=order.currency,
            line_item_ids=tuple(line.line_item_id for line in allocation.lines),
        )
    ]

    for occurred_on, (lines, order_level) in refunds.by_date().items():
        refund_ids = []
        for refund_id in [l.refund_id for l in lines] + [r.refund_id for r in order_level]:
            if refund_id not in refund_ids:
                refund_ids.append(refund_id)

        events.append(FinancialEvent(
            order_id=order.order_id,
            occurred_on=occurred_on,
            kind=EventKind.RETURN,
            return_excl_tax=sum_amounts(l.amount_excl_tax for l in lines),
            return_tax=sum_amounts(l.tax for l in lines),
            currency=order.currency,
            refund_ids=tuple(refund_ids),
            line_item_ids=tuple(l.line_item_id for l in lines),
            order_level_refund=sum_amounts(r.amount for r in order_level),
        ))

    return events
