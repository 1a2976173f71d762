"""
Line-Item Allocation

Derives tax-exclusive gross / discount / tax figures for an order from its
tax-inclusive totals, and spreads them over the order's line items in
proportion to each line's share of the order.

The order-level figures are authoritative. Line shares are kept at full
Decimal precision so that summing them back reproduces the order totals;
rounding happens once, when a daily row is finally built.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .models import AllocationConfidence, LineItem, Order
from .money import ZERO, sum_amounts

ONE = Decimal("1")


@dataclass(frozen=True)
class LineAllocation:
    """Tax-exclusive share of the order totals carried by one line"""
    line_item_id: str
    gross_incl_tax: Decimal
    gross_excl_tax: Decimal
    discount_excl_tax: Decimal
    tax: Decimal
    gross_factor: Decimal
    discount_factor: Decimal


@dataclass(frozen=True)
class OrderAllocation:
    """Order-level figures and their per-line split"""
    order_id: str
    total_line_gross_incl_tax: Decimal
    total_line_discount_incl_tax: Decimal
    net_excl_tax_before_refunds: Decimal
    discount_excl_tax: Decimal
    total_refunds_excl_tax: Decimal
    gross_excl_tax: Decimal
    tax: Decimal
    implicit_tax_rate: Optional[Decimal]
    lines: Tuple[LineAllocation, ...]
    confidence: AllocationConfidence
    confidence_reasons: Tuple[str, ...] = ()

    @property
    def allocated_gross_excl_tax(self) -> Decimal:
        return sum_amounts(line.gross_excl_tax for line in self.lines)

    @property
    def allocated_discount_excl_tax(self) -> Decimal:
        return sum_amounts(line.discount_excl_tax for line in self.lines)


def implicit_tax_rate(subtotal_price: Decimal, total_tax: Decimal) -> Optional[Decimal]:
    """
    Tax rate implied by an order's tax-inclusive subtotal.

    Returns None for untaxed orders and orders with no subtotal, for which
    tax-inclusive and tax-exclusive figures coincide.
    """
    if subtotal_price > 0 and total_tax > 0:
        return total_tax / subtotal_price
    return None


def exclusive_tax_rate(subtotal_price: Decimal, total_tax: Decimal) -> Optional[Decimal]:
    """
    Tax as a share of the tax-exclusive subtotal, e.g. 0.25 for 25% VAT.

    Used to price the tax of a refunded line from its tax-exclusive subtotal.
    None when the order is untaxed or its subtotal is all tax.
    """
    if total_tax > 0 and subtotal_price > total_tax:
        return total_tax / (subtotal_price - total_tax)
    return None


def remove_tax(amount_incl_tax: Decimal, rate: Optional[Decimal]) -> Decimal:
    """Strip tax at the given rate from a tax-inclusive amount"""
    if rate is None:
        return amount_incl_tax
    return amount_incl_tax / (ONE + rate)


def _share(part: Decimal, whole: Decimal) -> Decimal:
    """Allocation factor; zero when the denominator is zero"""
    if whole == 0:
        return ZERO
    return part / whole


def allocate_order(
    order: Order,
    total_refunds_excl_tax: Decimal = ZERO,
    total_refunds_tax: Decimal = ZERO,
) -> OrderAllocation:
    """
    Compute tax-exclusive figures for an order and split them per line.

    Args:
        order: Order with tax-inclusive totals
        total_refunds_excl_tax: Sum of the order's refunded line subtotals,
            as produced by the refund attributor
        total_refunds_tax: Tax refunded with those lines; the order's current
            tax is net of it, so it is added back like the subtotals

    Returns:
        OrderAllocation. Never raises on zero or missing totals; an
        incomplete split is reported through ``confidence``.

    Example:
        subtotal 80, tax 16, discounts 20 (all incl. tax) gives an implicit
        rate of 0.2, discount excl. tax 16.67 and gross excl. tax 80.67.
    """
    line_items: Tuple[LineItem, ...] = order.line_items

    total_line_gross_incl = sum_amounts(li.gross_incl_tax for li in line_items)
    total_line_discount_incl = sum_amounts(li.discount_incl_tax for li in line_items)

    net_before_refunds = order.subtotal_price - order.total_tax

    rate = implicit_tax_rate(order.subtotal_price, order.total_tax)
    discount_excl = remove_tax(order.total_discounts, rate)

    gross_excl = net_before_refunds + discount_excl + total_refunds_excl_tax
    tax = order.total_tax + total_refunds_tax

    # Tax follows the lines' own tax lines only when every line has them
    use_line_tax = bool(line_items) and all(li.tax_lines for li in line_items)
    total_line_tax = sum_amounts(li.tax for li in line_items) if use_line_tax else ZERO

    reasons: List[str] = []
    lines: List[LineAllocation] = []

    for li in line_items:
        gross_factor = _share(li.gross_incl_tax, total_line_gross_incl)
        discount_factor = _share(li.discount_incl_tax, total_line_discount_incl)
        if use_line_tax:
            tax_share = tax * _share(li.tax, total_line_tax)
        else:
            tax_share = tax * gross_factor

        lines.append(LineAllocation(
            line_item_id=li.line_item_id,
            gross_incl_tax=li.gross_incl_tax,
            gross_excl_tax=gross_excl * gross_factor,
            discount_excl_tax=discount_excl * discount_factor,
            tax=tax_share,
            gross_factor=gross_factor,
            discount_factor=discount_factor,
        ))

    if not line_items:
        reasons.append("order has no line items")
    elif total_line_gross_incl == 0 and gross_excl != 0:
        reasons.append("line items carry no gross value to allocate by")
    if line_items and total_line_discount_incl == 0 and discount_excl != 0:
        reasons.append("order discount is not allocated to any line item")
    if use_line_tax and total_line_tax == 0 and tax != 0:
        reasons.append("line tax lines sum to zero")

    if not reasons:
        confidence = AllocationConfidence.FULL
    elif not line_items or total_line_gross_incl == 0:
        confidence = AllocationConfidence.NONE
    else:
        confidence = AllocationConfidence.PARTIAL

    return OrderAllocation(
        order_id=order.order_id,
        total_line_gross_incl_tax=total_line_gross_incl,
        total_line_discount_incl_tax=total_line_discount_incl,
        net_excl_tax_before_refunds=net_before_refunds,
        discount_excl_tax=discount_excl,
        total_refunds_excl_tax=total_refunds_excl_tax,
        gross_excl_tax=gross_excl,
        tax=tax,
        implicit_tax_rate=rate,
        lines=tuple(lines),
        confidence=confidence,
        confidence_reasons=tuple(reasons),
    )
