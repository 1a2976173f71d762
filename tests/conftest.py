"""
Test Suite Configuration
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from sales_analytics.config import Settings
from sales_analytics.database.models import Base
from sales_analytics.transformation.models import (
    CustomerSummary,
    DiscountAllocation,
    LineItem,
    Order,
    Refund,
    RefundLineItem,
    TaxLine,
    Transaction,
)
from sales_analytics.transformation.timezones import ReportingPeriod

STORE_TZ = "Europe/Stockholm"


def utc(year: int, month: int, day: int, hour: int = 12, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def build_line(
    line_item_id: str = "li-1",
    price: str = "120.00",
    quantity: int = 1,
    discount: Optional[str] = None,
    tax: Optional[str] = None,
) -> LineItem:
    return LineItem(
        line_item_id=line_item_id,
        sku=f"SKU-{line_item_id}",
        unit_price_incl_tax=Decimal(price),
        quantity=quantity,
        discount_allocations=(DiscountAllocation(amount=Decimal(discount)),) if discount else (),
        tax_lines=(TaxLine(title="VAT", rate=Decimal("0.25"), amount=Decimal(tax)),) if tax else (),
    )


def build_refund(
    refund_id: str = "r-1",
    created_at: Optional[datetime] = None,
    lines: Optional[List[Dict[str, Any]]] = None,
    total_refunded: Optional[str] = None,
    transactions: Optional[List[Transaction]] = None,
) -> Refund:
    return Refund(
        refund_id=refund_id,
        created_at=created_at,
        refund_line_items=tuple(
            RefundLineItem(
                line_item_id=line["line_item_id"],
                quantity=line.get("quantity", 1),
                subtotal_excl_tax=(
                    Decimal(line["subtotal"]) if line.get("subtotal") is not None else None
                ),
                total_tax=Decimal(line["tax"]) if line.get("tax") is not None else None,
            )
            for line in (lines or [])
        ),
        total_refunded=Decimal(total_refunded) if total_refunded is not None else None,
        transactions=tuple(transactions or ()),
    )


def build_order(
    order_id: str = "1001",
    created_at: Optional[datetime] = None,
    subtotal: str = "120.00",
    tax: str = "20.00",
    discounts: str = "0.00",
    lines: Optional[List[LineItem]] = None,
    customer_id: Optional[str] = "c-1",
    customer_created_at: Optional[datetime] = None,
    order_count: Optional[int] = 3,
    refunds: Optional[List[Refund]] = None,
    transactions: Optional[List[Transaction]] = None,
    currency: str = "SEK",
    **extra: Any,
) -> Order:
    customer = None
    if customer_id is not None:
        customer = CustomerSummary(
            customer_id=customer_id,
            created_at=customer_created_at or utc(2020, 1, 1),
            lifetime_order_count=order_count,
        )
    return Order(
        order_id=order_id,
        order_number=f"#{order_id}",
        tenant_id="tenant-1",
        created_at=created_at if created_at is not None else utc(2025, 1, 15, 10),
        currency=currency,
        subtotal_price=Decimal(subtotal),
        total_tax=Decimal(tax),
        total_discounts=Decimal(discounts),
        line_items=tuple(lines if lines is not None else [build_line(price=subtotal)]),
        customer=customer,
        refunds=tuple(refunds or ()),
        transactions=tuple(transactions or ()),
        financial_status=extra.pop("financial_status", "paid"),
        **extra,
    )


@pytest.fixture
def store_tz() -> str:
    return STORE_TZ


@pytest.fixture
def january() -> ReportingPeriod:
    """Reporting period covering January 2025"""
    return ReportingPeriod.from_strings("2025-01-01", "2025-01-31")


@pytest.fixture
def make_order():
    """Factory for canonical orders"""
    return build_order


@pytest.fixture
def make_line():
    """Factory for order lines"""
    return build_line


@pytest.fixture
def make_refund():
    """Factory for refunds"""
    return build_refund


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with working savepoints"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with the sqlite driver
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def rest_order_payload() -> Dict[str, Any]:
    """Admin REST order with a partial refund five days later"""
    return {
        "id": 5550001,
        "order_number": 1042,
        "name": "#1042",
        "created_at": "2025-01-15T10:00:00+01:00",
        "processed_at": "2025-01-15T10:00:05+01:00",
        "currency": "SEK",
        "financial_status": "partially_refunded",
        "test": False,
        "cancelled_at": None,
        "subtotal_price": "150.00",
        "total_tax": "25.00",
        "current_subtotal_price": "84.00",
        "current_total_tax": "14.00",
        "total_discounts": "0.00",
        "customer": {"id": 901, "created_at": "2023-06-01T08:00:00Z", "orders_count": 4},
        "line_items": [
            {
                "id": 11,
                "sku": "TEE-M",
                "title": "T-shirt",
                "price": "36.00",
                "quantity": 1,
                "discount_allocations": [],
                "tax_lines": [{"title": "Moms", "rate": 0.2, "price": "6.00"}],
            },
            {
                "id": 12,
                "sku": "CAP",
                "title": "Cap",
                "price": "57.00",
                "quantity": 2,
                "discount_allocations": [],
                "tax_lines": [{"title": "Moms", "rate": 0.2, "price": "19.00"}],
            },
        ],
        "refunds": [
            {
                "id": 777,
                "created_at": "2025-01-20T09:30:00+01:00",
                "refund_line_items": [
                    {"line_item_id": 12, "quantity": 1, "subtotal": "30.00", "total_tax": "6.00"},
                ],
                "transactions": [
                    {"kind": "refund", "status": "success",
                     "processed_at": "2025-01-20T09:31:00+01:00", "amount": "36.00"},
                ],
            }
        ],
        "transactions": [
            {"kind": "sale", "status": "success",
             "processed_at": "2025-01-15T10:00:05+01:00", "amount": "150.00"},
        ],
    }


@pytest.fixture
def graphql_order_payload() -> Dict[str, Any]:
    """Admin GraphQL order node with a discount and a shipping-only refund"""
    return {
        "id": "gid://shopify/Order/5550002",
        "legacyResourceId": "5550002",
        "name": "#1043",
        "createdAt": "2025-01-16T22:30:00Z",
        "processedAt": "2025-01-16T22:30:02Z",
        "cancelledAt": None,
        "test": False,
        "currencyCode": "SEK",
        "displayFinancialStatus": "PARTIALLY_REFUNDED",
        "customer": {
            "id": "gid://shopify/Customer/902",
            "numberOfOrders": "1",
            "createdAt": "2025-01-16T22:00:00Z",
        },
        "subtotalPriceSet": {"shopMoney": {"amount": "80.00", "currencyCode": "SEK"}},
        "totalTaxSet": {"shopMoney": {"amount": "16.00", "currencyCode": "SEK"}},
        "totalDiscountsSet": {"shopMoney": {"amount": "20.00", "currencyCode": "SEK"}},
        "lineItems": {
            "edges": [
                {
                    "node": {
                        "id": "gid://shopify/LineItem/21",
                        "sku": "MUG",
                        "name": "Mug",
                        "quantity": 1,
                        "originalUnitPriceSet": {"shopMoney": {"amount": "100.00"}},
                        "discountAllocations": [
                            {"allocatedAmountSet": {"shopMoney": {"amount": "20.00"}}}
                        ],
                        "taxLines": [{"title": "Moms", "priceSet": {"shopMoney": {"amount": "16.00"}}}],
                    }
                }
            ]
        },
        "refunds": [
            {
                "id": "gid://shopify/Refund/31",
                "createdAt": "2025-01-18T12:00:00Z",
                "totalRefundedSet": {"shopMoney": {"amount": "49.00"}},
                "refundLineItems": {"edges": []},
                "transactions": {"edges": []},
            }
        ],
        "transactions": [
            {"kind": "SALE", "status": "SUCCESS", "processedAt": "2025-01-16T22:30:02Z",
             "amountSet": {"shopMoney": {"amount": "129.00"}}},
        ],
    }
