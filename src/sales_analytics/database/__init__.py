"""
Database Module
"""
from .connection import close_database, create_session_factory, init_database
from .models import Base, ShopifyDailySales, ShopifyOrderClassification, ShopifySalesTransaction
from .store import AggregateStore, UpsertResult

__all__ = [
    "init_database",
    "close_database",
    "create_session_factory",
    "Base",
    "ShopifyDailySales",
    "ShopifyOrderClassification",
    "ShopifySalesTransaction",
    "AggregateStore",
    "UpsertResult",
]
