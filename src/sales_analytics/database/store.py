"""
Aggregate Store

Persists daily sales rows, order classifications and line-level sales
transactions with ``INSERT ... ON CONFLICT DO UPDATE``, keyed by
(tenant_id, date, mode), (tenant_id, order_id) and
(tenant_id, order_id, event_type, refund_id, line_item_id) respectively.

Rows are written in batches. When a batch fails it is retried row by row,
each inside its own savepoint, so the caller learns exactly which keys were
not written while the rest of the batch still lands.
"""

from dataclasses import dataclass, field
from datetime import date as date_type
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Type

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from ..transformation.aggregation import rollup_monthly
from ..transformation.models import (
    AttributionMode,
    CustomerClassification,
    DailySalesRow,
    EventKind,
    MonthlySalesRow,
    SalesTransaction,
)
from .connection import create_session_factory
from .models import Base, ShopifyDailySales, ShopifyOrderClassification, ShopifySalesTransaction

logger = structlog.get_logger(__name__)

_INSERTS: Dict[str, Callable] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

DAILY_SALES_KEY = ("tenant_id", "date", "mode")
CLASSIFICATION_KEY = ("tenant_id", "order_id")
TRANSACTION_KEY = ("tenant_id", "order_id", "event_type", "refund_id", "line_item_id")


@dataclass
class UpsertResult:
    """Outcome of an upsert; failed keys are reported per item"""
    table: str
    attempted: int = 0
    written: int = 0
    failed_keys: List[Tuple[Any, ...]] = field(default_factory=list)
    errors: Dict[Tuple[Any, ...], str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed_keys


def _daily_sales_record(row: DailySalesRow) -> Dict[str, Any]:
    record = row.to_dict()
    record["date"] = date_type.fromisoformat(row.date)
    return record


def _classification_record(tenant_id: str, c: CustomerClassification) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "order_id": c.order_id,
        "shopify_mode_customer_type": c.shopify_mode_label.value,
        "legacy_mode_customer_type": c.legacy_mode_label.value,
        "is_first_order_for_customer": c.is_first_order_for_customer_lifetime,
    }


def _transaction_record(tenant_id: str, t: SalesTransaction) -> Dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "order_id": t.order_id,
        "event_type": t.event_type.value,
        "refund_id": t.refund_id,
        "line_item_id": t.line_item_id,
        "event_date": date_type.fromisoformat(t.event_date),
        "order_number": t.order_number,
        "currency": t.currency,
        "product_sku": t.product_sku,
        "product_title": t.product_title,
        "quantity": t.quantity,
        "gross_sales_excl_tax": t.gross_excl_tax,
        "discounts_excl_tax": t.discount_excl_tax,
        "returns_excl_tax": t.return_excl_tax,
        "tax": t.tax,
    }


def _transaction_from_model(model: ShopifySalesTransaction) -> SalesTransaction:
    return SalesTransaction(
        order_id=model.order_id,
        order_number=model.order_number,
        refund_id=model.refund_id,
        line_item_id=model.line_item_id,
        event_type=EventKind(model.event_type),
        event_date=model.event_date.isoformat(),
        currency=model.currency,
        product_sku=model.product_sku,
        product_title=model.product_title,
        quantity=model.quantity,
        gross_excl_tax=model.gross_sales_excl_tax,
        discount_excl_tax=model.discounts_excl_tax,
        return_excl_tax=model.returns_excl_tax,
        tax=model.tax,
    )


def _row_from_model(model: ShopifyDailySales) -> DailySalesRow:
    return DailySalesRow(
        tenant_id=model.tenant_id,
        date=model.date.isoformat(),
        mode=AttributionMode(model.mode),
        gross_sales_excl_tax=model.gross_sales_excl_tax,
        discounts_excl_tax=model.discounts_excl_tax,
        refunds_excl_tax=model.refunds_excl_tax,
        net_sales_excl_tax=model.net_sales_excl_tax,
        tax_total=model.tax_total,
        orders_count=model.orders_count,
        currency=model.currency,
        new_customer_net_sales=model.new_customer_net_sales,
        returning_customer_net_sales=model.returning_customer_net_sales,
        guest_net_sales=model.guest_net_sales,
        unknown_customer_net_sales=model.unknown_customer_net_sales,
    )


class AggregateStore:
    """
    Upsert-based store for daily sales rows, classifications and line-level
    sales transactions.

    Example:
        store = AggregateStore(engine, batch_size=500)
        result = await store.upsert_daily_sales(rows)
        if not result.ok:
            ...  # result.failed_keys
    """

    def __init__(self, engine: AsyncEngine, batch_size: int = 500):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.engine = engine
        self.batch_size = batch_size
        self._session_factory = create_session_factory(engine)

        dialect = engine.dialect.name
        if dialect not in _INSERTS:
            raise ValueError(f"Unsupported database dialect for upserts: {dialect}")
        self._insert = _INSERTS[dialect]

    async def create_tables(self) -> None:
        """Create missing tables"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def _upsert_statement(self, model: Type[Base], records: List[Dict[str, Any]],
                          key: Sequence[str]):
        stmt = self._insert(model).values(records)
        update_columns = {
            name: stmt.excluded[name]
            for name in records[0]
            if name not in key
        }
        update_columns["updated_at"] = func.now()
        return stmt.on_conflict_do_update(index_elements=list(key), set_=update_columns)

    async def _upsert(
        self,
        model: Type[Base],
        records: Iterable[Dict[str, Any]],
        key: Sequence[str],
    ) -> UpsertResult:
        # Last record wins per key; one statement may not touch a row twice
        deduplicated: Dict[Tuple[Any, ...], Dict[str, Any]] = {}
        for record in records:
            deduplicated[tuple(record[k] for k in key)] = record
        items = list(deduplicated.items())

        result = UpsertResult(table=model.__tablename__, attempted=len(items))
        if not items:
            return result

        async with self._session_factory() as session:
            for start in range(0, len(items), self.batch_size):
                batch = items[start:start + self.batch_size]
                try:
                    async with session.begin_nested():
                        await session.execute(
                            self._upsert_statement(model, [r for _, r in batch], key)
                        )
                    result.written += len(batch)
                except SQLAlchemyError as e:
                    logger.warning(
                        "Batch upsert failed, retrying row by row",
                        table=result.table,
                        batch_size=len(batch),
                        error=str(e),
                    )
                    await self._upsert_rows(session, model, batch, key, result)
            await session.commit()

        log = logger.info if result.ok else logger.error
        log(
            "Upsert completed",
            table=result.table,
            attempted=result.attempted,
            written=result.written,
            failed=len(result.failed_keys),
        )
        return result

    async def _upsert_rows(
        self,
        session: AsyncSession,
        model: Type[Base],
        batch: List[Tuple[Tuple[Any, ...], Dict[str, Any]]],
        key: Sequence[str],
        result: UpsertResult,
    ) -> None:
        for item_key, record in batch:
            try:
                async with session.begin_nested():
                    await session.execute(self._upsert_statement(model, [record], key))
                result.written += 1
            except SQLAlchemyError as e:
                reported_key = tuple(str(part) for part in item_key)
                result.failed_keys.append(reported_key)
                result.errors[reported_key] = str(e)

    async def upsert_daily_sales(self, rows: Iterable[DailySalesRow]) -> UpsertResult:
        """
        Upsert daily rows by (tenant_id, date, mode).

        Returns:
            UpsertResult; failed keys are ``(tenant_id, date, mode)`` strings
        """
        return await self._upsert(
            ShopifyDailySales,
            (_daily_sales_record(row) for row in rows),
            DAILY_SALES_KEY,
        )

    async def upsert_classifications(
        self,
        tenant_id: str,
        classifications: Iterable[CustomerClassification],
    ) -> UpsertResult:
        """Upsert both labels of every order by (tenant_id, order_id)"""
        return await self._upsert(
            ShopifyOrderClassification,
            (_classification_record(tenant_id, c) for c in classifications),
            CLASSIFICATION_KEY,
        )

    async def upsert_transactions(
        self,
        tenant_id: str,
        transactions: Iterable[SalesTransaction],
    ) -> UpsertResult:
        """
        Upsert line-level records by (tenant_id, order_id, event_type, refund_id,
        line_item_id).
        """
        return await self._upsert(
            ShopifySalesTransaction,
            (_transaction_record(tenant_id, t) for t in transactions),
            TRANSACTION_KEY,
        )

    async def fetch_transactions(
        self,
        tenant_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> List[SalesTransaction]:
        """Stored line-level records of a tenant, ordered by date and order"""
        query = select(ShopifySalesTransaction).where(ShopifySalesTransaction.tenant_id == tenant_id)
        if start:
            query = query.where(ShopifySalesTransaction.event_date >= date_type.fromisoformat(start))
        if end:
            query = query.where(ShopifySalesTransaction.event_date <= date_type.fromisoformat(end))
        query = query.order_by(
            ShopifySalesTransaction.event_date,
            ShopifySalesTransaction.order_id,
            ShopifySalesTransaction.event_type.desc(),  # SALE before RETURN
            ShopifySalesTransaction.refund_id,
            ShopifySalesTransaction.line_item_id,
        )

        async with self._session_factory() as session:
            models = (await session.execute(query)).scalars().all()
        return [_transaction_from_model(m) for m in models]

    async def fetch_monthly_sales(
        self,
        tenant_id: str,
        mode: AttributionMode,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> List[MonthlySalesRow]:
        """Stored daily rows of a tenant and mode rolled up into calendar months"""
        return rollup_monthly(await self.fetch_daily_sales(tenant_id, mode, start, end))

    async def fetch_daily_sales(
        self,
        tenant_id: str,
        mode: AttributionMode,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> List[DailySalesRow]:
        """
        Read stored rows for one tenant and mode, ordered by date.

        Args:
            tenant_id: Tenant to read
            mode: Attribution mode
            start: First date (inclusive, YYYY-MM-DD)
            end: Last date (inclusive, YYYY-MM-DD)
        """
        query = select(ShopifyDailySales).where(
            ShopifyDailySales.tenant_id == tenant_id,
            ShopifyDailySales.mode == AttributionMode(mode).value,
        )
        if start:
            query = query.where(ShopifyDailySales.date >= date_type.fromisoformat(start))
        if end:
            query = query.where(ShopifyDailySales.date <= date_type.fromisoformat(end))
        query = query.order_by(ShopifyDailySales.date)

        async with self._session_factory() as session:
            models = (await session.execute(query)).scalars().all()
        return [_row_from_model(m) for m in models]

    async def fetch_classifications(self, tenant_id: str) -> Dict[str, Dict[str, Any]]:
        """Stored labels of every order of a tenant, keyed by order id"""
        query = select(ShopifyOrderClassification).where(
            ShopifyOrderClassification.tenant_id == tenant_id
        )
        async with self._session_factory() as session:
            models = (await session.execute(query)).scalars().all()
        return {
            m.order_id: {
                "shopify_mode_customer_type": m.shopify_mode_customer_type,
                "legacy_mode_customer_type": m.legacy_mode_customer_type,
                "is_first_order_for_customer": m.is_first_order_for_customer,
            }
            for m in models
        }
