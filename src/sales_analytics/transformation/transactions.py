"""
Line-Level Sales Transactions

Breaks the order-level SALE / RETURN events down per line item, for
product-level reporting: one SALE record per order line, carrying the line's
allocated share of the order totals, and one RETURN record per refunded
line on its refund date.

Records are rounded individually, so the rounded daily totals stay the
authoritative figures; line records can differ from them by a cent.
"""

from typing import Dict, List

from .allocation import OrderAllocation
from .models import EventKind, LineItem, Order, SalesTransaction
from .money import ZERO, quantize_money
from .refunds import RefundAttribution


def map_order_to_transactions(
    order: Order,
    allocation: OrderAllocation,
    refunds: RefundAttribution,
    sale_date: str,
) -> List[SalesTransaction]:
    """
    Build the line-level records of one order.

    Args:
        order: Source order
        allocation: Output of ``allocate_order`` for this order
        refunds: Output of ``attribute_refunds``; undatable refunds yield
            no records
        sale_date: Store-local date of the order's SALE event

    Returns:
        SALE records in line order, then RETURN records by refund date
    """
    line_items: Dict[str, LineItem] = {li.line_item_id: li for li in order.line_items}
    records: List[SalesTransaction] = []

    for line in allocation.lines:
        item = line_items.get(line.line_item_id)
        records.append(SalesTransaction(
            order_id=order.order_id,
            order_number=order.order_number,
            refund_id="",
            line_item_id=line.line_item_id,
            event_type=EventKind.SALE,
            event_date=sale_date,
            currency=order.currency,
            product_sku=item.sku if item else None,
            product_title=item.title if item else None,
            quantity=item.quantity if item else 0,
            gross_excl_tax=quantize_money(line.gross_excl_tax),
            discount_excl_tax=quantize_money(line.discount_excl_tax),
            tax=quantize_money(line.tax),
        ))

    for refund_line in sorted(refunds.lines, key=lambda l: (l.occurred_on, l.refund_id)):
        item = line_items.get(refund_line.line_item_id)
        records.append(SalesTransaction(
            order_id=order.order_id,
            order_number=order.order_number,
            refund_id=refund_line.refund_id,
            line_item_id=refund_line.line_item_id,
            event_type=EventKind.RETURN,
            event_date=refund_line.occurred_on,
            currency=order.currency,
            product_sku=item.sku if item else None,
            product_title=item.title if item else None,
            quantity=refund_line.quantity,
            gross_excl_tax=ZERO,
            return_excl_tax=quantize_money(refund_line.amount_excl_tax),
            tax=quantize_money(refund_line.tax),
        ))

    return records
