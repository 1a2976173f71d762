"""
Database Models

Persistence for the sales aggregation engine:

- ShopifyDailySales: one row per (tenant, store-local date, attribution mode),
  recomputed wholesale for a date range and upserted
- ShopifyOrderClassification: both customer labels of every order, kept side
  by side so either mode can be re-aggregated without reclassifying
- ShopifySalesTransaction: line-level SALE and RETURN records for
  product-level reporting
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

MONEY = Numeric(14, 2)


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


class ShopifyDailySales(Base):
    """
    Daily Sales Aggregate

    Grain: One row per tenant, date and attribution mode.
    Every amount is tax-exclusive and rounded to cents; the three customer
    split-outs sum exactly to net sales.
    """
    __tablename__ = "shopify_daily_sales"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    date: Mapped[date] = mapped_column(Date, primary_key=True)
    mode: Mapped[str] = mapped_column(String(16), primary_key=True)  # shopify / legacy

    gross_sales_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    discounts_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    refunds_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    net_sales_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    tax_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    orders_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[Optional[str]] = mapped_column(String(3))

    # Customer split-outs
    new_customer_net_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    returning_customer_net_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    guest_net_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    unknown_customer_net_sales: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_shopify_daily_sales_tenant_date", "tenant_id", "date"),
    )


class ShopifyOrderClassification(Base):
    """
    Order Customer Classification

    Grain: One row per tenant and order.
    """
    __tablename__ = "shopify_order_classifications"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    shopify_mode_customer_type: Mapped[str] = mapped_column(String(16), nullable=False)
    legacy_mode_customer_type: Mapped[str] = mapped_column(String(16), nullable=False)
    is_first_order_for_customer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_shopify_order_classifications_shopify_type", "tenant_id", "shopify_mode_customer_type"),
    )


class ShopifySalesTransaction(Base):
    """
    Line-Level Sales Transaction

    Grain: One row per order line and event; RETURN rows are per refund.
    ``refund_id`` is an empty string on SALE rows so it can be part of the key.
    """
    __tablename__ = "shopify_sales_transactions"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(8), primary_key=True)  # SALE / RETURN
    refund_id: Mapped[str] = mapped_column(String(64), primary_key=True, default="")
    line_item_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    order_number: Mapped[Optional[str]] = mapped_column(String(32))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    product_sku: Mapped[Optional[str]] = mapped_column(String(128))
    product_title: Mapped[Optional[str]] = mapped_column(String(255))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    gross_sales_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    discounts_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    returns_excl_tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_shopify_sales_transactions_tenant_date", "tenant_id", "event_date"),
        Index("ix_shopify_sales_transactions_sku", "tenant_id", "product_sku"),
    )
