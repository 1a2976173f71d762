"""
Order Ingestion Module
"""
from .shopify_adapter import (
    AdaptResult,
    PayloadShape,
    adapt_orders,
    from_graphql_order,
    from_rest_order,
    is_reportable,
)
from .sources import (
    InMemoryHistoryProvider,
    JsonlOrderSource,
    LifetimeHistoryProvider,
    OrderFetcher,
)

__all__ = [
    "AdaptResult",
    "PayloadShape",
    "adapt_orders",
    "from_graphql_order",
    "from_rest_order",
    "is_reportable",
    "InMemoryHistoryProvider",
    "JsonlOrderSource",
    "LifetimeHistoryProvider",
    "OrderFetcher",
]
