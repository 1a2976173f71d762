"""
Sales Domain Models

Input types (orders as delivered by the ingestion adapters) are frozen
Pydantic models; everything the engine produces (events, classifications,
daily rows, anomalies) is a frozen dataclass.

Money is always ``Decimal``. Sequences are tuples so that nothing handed to
the engine can be mutated behind its back.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .money import ZERO


# =============================================================================
# ENUMERATIONS
# =============================================================================

class AttributionMode(str, Enum):
    """Customer attribution mode a daily row is computed for"""
    SHOPIFY = "shopify"
    LEGACY = "legacy"


class EventKind(str, Enum):
    """Financial event kind"""
    SALE = "SALE"
    RETURN = "RETURN"


class EventDateBasis(str, Enum):
    """Which instant dates a financial event"""
    CREATED_AT = "created_at"
    PROCESSED_AT = "processed_at"


class ShopifyCustomerType(str, Enum):
    """Current (period-relative) customer classification"""
    FIRST_TIME = "FIRST_TIME"
    RETURNING = "RETURNING"
    GUEST = "GUEST"
    UNKNOWN = "UNKNOWN"


class LegacyCustomerType(str, Enum):
    """Deprecated classification kept for historical rows"""
    NEW = "NEW"
    RETURNING = "RETURNING"
    GUEST = "GUEST"
    UNKNOWN = "UNKNOWN"


class CustomerBucket(str, Enum):
    """Net sales split-out a classification label lands in"""
    NEW = "new"
    RETURNING = "returning"
    GUEST = "guest"


class AllocationConfidence(str, Enum):
    """How completely order totals could be spread over line items"""
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


class AnomalyKind(str, Enum):
    """Per-order data quality findings"""
    DATE_CONVERSION = "date_conversion"
    INCOMPLETE_ALLOCATION = "incomplete_allocation"
    UNKNOWN_CLASSIFICATION = "unknown_classification"
    SHIPPING_ONLY_REFUND = "shipping_only_refund"
    INVALID_PAYLOAD = "invalid_payload"
    PROCESSING_ERROR = "processing_error"


class AnomalySeverity(str, Enum):
    """Anomaly severity levels"""
    WARNING = "warning"  # Data was dropped from the aggregate
    INFO = "info"  # Aggregate is complete, finding is for audit tooling


# =============================================================================
# ORDER INPUT
# =============================================================================

class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DiscountAllocation(_Frozen):
    """Discount amount allocated to a line item, tax-inclusive"""
    amount: Decimal = ZERO


class TaxLine(_Frozen):
    """Tax charged on a line item"""
    title: Optional[str] = None
    rate: Optional[Decimal] = None
    amount: Decimal = ZERO


class LineItem(_Frozen):
    """A single order line"""
    line_item_id: str
    sku: Optional[str] = None
    title: Optional[str] = None
    unit_price_incl_tax: Decimal = ZERO
    quantity: int = 0
    discount_allocations: Tuple[DiscountAllocation, ...] = ()
    tax_lines: Tuple[TaxLine, ...] = ()

    @property
    def gross_incl_tax(self) -> Decimal:
        return self.unit_price_incl_tax * self.quantity

    @property
    def discount_incl_tax(self) -> Decimal:
        return sum((d.amount for d in self.discount_allocations), ZERO)

    @property
    def tax(self) -> Decimal:
        return sum((t.amount for t in self.tax_lines), ZERO)


class Transaction(_Frozen):
    """Payment transaction attached to an order or refund"""
    kind: str
    status: str
    processed_at: Optional[datetime] = None
    amount: Decimal = ZERO

    @property
    def is_successful_sale(self) -> bool:
        return (
            self.kind.upper() in ("SALE", "CAPTURE")
            and self.status.upper() == "SUCCESS"
            and self.processed_at is not None
        )

    @property
    def is_successful_refund(self) -> bool:
        return (
            self.kind.upper() == "REFUND"
            and self.status.upper() == "SUCCESS"
            and self.processed_at is not None
        )


class RefundLineItem(_Frozen):
    """Refunded quantity of one order line; subtotal is tax-exclusive"""
    line_item_id: str
    quantity: int = 0
    subtotal_excl_tax: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None  # tax refunded on this line, when reported


class Refund(_Frozen):
    """A refund event on an order"""
    refund_id: str
    created_at: Optional[datetime] = None
    refund_line_items: Tuple[RefundLineItem, ...] = ()
    total_refunded: Optional[Decimal] = None
    transactions: Tuple[Transaction, ...] = ()


class CustomerSummary(_Frozen):
    """Customer signals carried on the order payload"""
    customer_id: str
    created_at: Optional[datetime] = None
    lifetime_order_count: Optional[int] = None


class Order(_Frozen):
    """
    One purchase as seen by the engine.

    ``subtotal_price`` and ``total_tax`` are the order's current values
    (after refunds), tax-inclusive, in shop currency.
    """
    order_id: str
    order_number: Optional[str] = None
    tenant_id: str = ""
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    currency: Optional[str] = None
    subtotal_price: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_discounts: Decimal = ZERO
    line_items: Tuple[LineItem, ...] = ()
    customer: Optional[CustomerSummary] = None
    refunds: Tuple[Refund, ...] = ()
    transactions: Tuple[Transaction, ...] = ()
    financial_status: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    test: bool = False

    @property
    def is_guest(self) -> bool:
        return self.customer is None


class HistoricalOrder(_Frozen):
    """Minimal order record used for lifetime first-order detection"""
    order_id: str
    created_at: datetime


# =============================================================================
# ENGINE OUTPUT
# =============================================================================

@dataclass(frozen=True)
class FinancialEvent:
    """Dated money movement folded by the daily aggregator"""
    order_id: str
    occurred_on: Optional[str]  # YYYY-MM-DD, store-local
    kind: EventKind
    gross_excl_tax: Decimal = ZERO
    discount_excl_tax: Decimal = ZERO
    return_excl_tax: Decimal = ZERO
    tax: Decimal = ZERO
    return_tax: Decimal = ZERO
    currency: Optional[str] = None
    refund_ids: Tuple[str, ...] = ()
    line_item_ids: Tuple[str, ...] = ()
    order_level_refund: Decimal = ZERO  # refunded amount not tied to any line

    @property
    def net_excl_tax(self) -> Decimal:
        return self.gross_excl_tax - self.discount_excl_tax - self.return_excl_tax

    @property
    def net_tax(self) -> Decimal:
        return self.tax - self.return_tax


@dataclass(frozen=True)
class CustomerClassification:
    """Both customer labels for one order, computed side by side"""
    order_id: str
    shopify_mode_label: ShopifyCustomerType
    legacy_mode_label: LegacyCustomerType
    is_first_order_for_customer_lifetime: bool = False

    def label_for(self, mode: AttributionMode) -> str:
        if mode == AttributionMode.SHOPIFY:
            return self.shopify_mode_label.value
        return self.legacy_mode_label.value

    def bucket_for(self, mode: AttributionMode) -> CustomerBucket:
        return bucket_for_label(self.label_for(mode))

    @property
    def has_unknown_label(self) -> bool:
        return (
            self.shopify_mode_label == ShopifyCustomerType.UNKNOWN
            or self.legacy_mode_label == LegacyCustomerType.UNKNOWN
        )


def bucket_for_label(label: str) -> CustomerBucket:
    """Map a label of either scheme to its split-out; UNKNOWN counts as returning"""
    if label in (ShopifyCustomerType.FIRST_TIME.value, LegacyCustomerType.NEW.value):
        return CustomerBucket.NEW
    if label == ShopifyCustomerType.GUEST.value:
        return CustomerBucket.GUEST
    return CustomerBucket.RETURNING


@dataclass(frozen=True)
class DailySalesRow:
    """Persisted daily aggregate, unique on (tenant_id, date, mode)"""
    tenant_id: str
    date: str
    mode: AttributionMode
    gross_sales_excl_tax: Decimal
    discounts_excl_tax: Decimal
    refunds_excl_tax: Decimal
    net_sales_excl_tax: Decimal
    tax_total: Decimal
    orders_count: int
    currency: Optional[str]
    new_customer_net_sales: Decimal
    returning_customer_net_sales: Decimal
    guest_net_sales: Decimal
    unknown_customer_net_sales: Decimal = ZERO  # audit only, included in returning

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.tenant_id, self.date, self.mode.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "date": self.date,
            "mode": self.mode.value,
            "gross_sales_excl_tax": self.gross_sales_excl_tax,
            "discounts_excl_tax": self.discounts_excl_tax,
            "refunds_excl_tax": self.refunds_excl_tax,
            "net_sales_excl_tax": self.net_sales_excl_tax,
            "tax_total": self.tax_total,
            "orders_count": self.orders_count,
            "currency": self.currency,
            "new_customer_net_sales": self.new_customer_net_sales,
            "returning_customer_net_sales": self.returning_customer_net_sales,
            "guest_net_sales": self.guest_net_sales,
            "unknown_customer_net_sales": self.unknown_customer_net_sales,
        }


@dataclass(frozen=True)
class MonthlySalesRow:
    """Calendar-month rollup of daily rows for one tenant and mode"""
    tenant_id: str
    year: int
    month: int
    mode: AttributionMode
    gross_sales_excl_tax: Decimal
    discounts_excl_tax: Decimal
    refunds_excl_tax: Decimal
    net_sales_excl_tax: Decimal
    tax_total: Decimal
    orders_count: int
    days: int
    currency: Optional[str]
    new_customer_net_sales: Decimal
    returning_customer_net_sales: Decimal
    guest_net_sales: Decimal

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class SalesTransaction:
    """
    One line of a SALE or RETURN, tax-exclusive and rounded to cents.

    SALE records carry the line's share of the order totals; RETURN records
    carry one refunded line on its refund date. ``refund_id`` is empty for
    sales so that the natural key never holds a NULL.
    """
    order_id: str
    order_number: Optional[str]
    refund_id: str
    line_item_id: str
    event_type: EventKind
    event_date: str
    currency: Optional[str]
    product_sku: Optional[str]
    product_title: Optional[str]
    quantity: int
    gross_excl_tax: Decimal = ZERO
    discount_excl_tax: Decimal = ZERO
    return_excl_tax: Decimal = ZERO
    tax: Decimal = ZERO

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.order_id, self.event_type.value, self.refund_id, self.line_item_id)

    @property
    def net_excl_tax(self) -> Decimal:
        return self.gross_excl_tax - self.discount_excl_tax - self.return_excl_tax


@dataclass(frozen=True)
class OrderAnomaly:
    """Per-order finding returned alongside the aggregate rows"""
    order_id: str
    kind: AnomalyKind
    severity: AnomalySeverity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
