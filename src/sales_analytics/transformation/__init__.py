"""
Sales Transformation Module
"""
from .aggregation import DailyAggregation, aggregate, aggregate_events, rollup_monthly
from .allocation import OrderAllocation, allocate_order, implicit_tax_rate
from .classification import (
    CLASSIFIERS,
    classify_legacy_mode,
    classify_order,
    classify_orders,
    classify_shopify_mode,
    first_order_ids,
)
from .events import map_order_to_events
from .models import (
    AttributionMode,
    CustomerClassification,
    DailySalesRow,
    EventDateBasis,
    EventKind,
    FinancialEvent,
    LegacyCustomerType,
    MonthlySalesRow,
    Order,
    OrderAnomaly,
    SalesTransaction,
    ShopifyCustomerType,
)
from .money import parse_amount, quantize_money
from .refunds import RefundAttribution, attribute_refunds
from .timezones import DateConversionError, ReportingPeriod, to_local_date
from .transactions import map_order_to_transactions
from .transformers import SalesTransformer, TransformResult

__all__ = [
    "DailyAggregation",
    "aggregate",
    "aggregate_events",
    "rollup_monthly",
    "OrderAllocation",
    "allocate_order",
    "implicit_tax_rate",
    "CLASSIFIERS",
    "classify_legacy_mode",
    "classify_order",
    "classify_orders",
    "classify_shopify_mode",
    "first_order_ids",
    "map_order_to_events",
    "AttributionMode",
    "CustomerClassification",
    "DailySalesRow",
    "EventDateBasis",
    "EventKind",
    "FinancialEvent",
    "LegacyCustomerType",
    "MonthlySalesRow",
    "Order",
    "OrderAnomaly",
    "SalesTransaction",
    "ShopifyCustomerType",
    "parse_amount",
    "quantize_money",
    "RefundAttribution",
    "attribute_refunds",
    "DateConversionError",
    "ReportingPeriod",
    "to_local_date",
    "map_order_to_transactions",
    "SalesTransformer",
    "TransformResult",
]
