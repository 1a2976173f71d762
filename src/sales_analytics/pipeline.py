"""
Sales Pipeline

End-to-end recompute of daily sales for one tenant and reporting period:

1. Fetch raw order payloads through an ``OrderFetcher``
2. Adapt them to canonical orders and keep the reportable ones
3. Gather lifetime order history for the customers involved
4. Transform into classifications, line-level records and daily rows per mode
5. Validate the rows
6. Upsert rows, classifications and line-level records
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog
from structlog.contextvars import bound_contextvars

from .config import get_settings
from .database.store import AggregateStore, UpsertResult
from .ingestion.shopify_adapter import PayloadShape, adapt_orders, is_reportable
from .ingestion.sources import InMemoryHistoryProvider, LifetimeHistoryProvider, OrderFetcher
from .quality.validators import ValidationResult, ValidationStatus, validate_daily_rows
from .transformation.models import AttributionMode, EventDateBasis, OrderAnomaly
from .transformation.timezones import ReportingPeriod, TimezoneLike
from .transformation.transformers import SalesTransformer, TransformResult

logger = structlog.get_logger(__name__)


@dataclass
class PipelineReport:
    """Outcome of one pipeline run"""
    tenant_id: str
    period: ReportingPeriod
    fetched_payloads: int = 0
    adapted_orders: int = 0
    reportable_orders: int = 0
    transform: Optional[TransformResult] = None
    validation: Optional[ValidationResult] = None
    daily_sales: Optional[UpsertResult] = None
    classifications: Optional[UpsertResult] = None
    transactions: Optional[UpsertResult] = None
    anomalies: List[OrderAnomaly] = field(default_factory=list)

    @property
    def persisted(self) -> bool:
        return self.daily_sales is not None

    @property
    def succeeded(self) -> bool:
        return (
            self.persisted
            and self.daily_sales.ok
            and (self.classifications is None or self.classifications.ok)
            and (self.transactions is None or self.transactions.ok)
        )


class SalesPipeline:
    """
    Fetch, transform and persist daily sales.

    Example:
        pipeline = SalesPipeline(
            fetcher=JsonlOrderSource("data/raw/orders.jsonl"),
            store=AggregateStore(engine),
            timezone="Europe/Stockholm",
        )
        report = await pipeline.run("tenant-1", ReportingPeriod.single_day("2025-01-15"))
    """

    def __init__(
        self,
        fetcher: OrderFetcher,
        store: AggregateStore,
        timezone: TimezoneLike,
        history_provider: Optional[LifetimeHistoryProvider] = None,
        date_basis: EventDateBasis = EventDateBasis.CREATED_AT,
        shape: PayloadShape = PayloadShape.REST,
    ):
        self.fetcher = fetcher
        self.store = store
        self.history_provider = history_provider
        self.date_basis = EventDateBasis(date_basis)
        self.shape = PayloadShape(shape)
        self.transformer = SalesTransformer(timezone, self.date_basis)

    @classmethod
    def from_settings(
        cls,
        fetcher: OrderFetcher,
        store: AggregateStore,
        history_provider: Optional[LifetimeHistoryProvider] = None,
        shape: PayloadShape = PayloadShape.REST,
    ) -> "SalesPipeline":
        """Pipeline using the configured timezone and date basis"""
        sales = get_settings().sales
        return cls(
            fetcher=fetcher,
            store=store,
            timezone=sales.timezone,
            history_provider=history_provider,
            date_basis=EventDateBasis(sales.date_basis),
            shape=shape,
        )

    async def run(
        self,
        tenant_id: str,
        period: ReportingPeriod,
        modes: Optional[Sequence[AttributionMode]] = None,
    ) -> PipelineReport:
        """
        Recompute and persist daily sales for a tenant and period.

        Rows are not persisted when validation fails with errors; the
        report then carries the validation result and no upsert results.
        Every event logged during the run carries the tenant and period.
        """
        with bound_contextvars(tenant_id=tenant_id, period=str(period)):
            return await self._run(tenant_id, period, modes)

    async def _run(
        self,
        tenant_id: str,
        period: ReportingPeriod,
        modes: Optional[Sequence[AttributionMode]],
    ) -> PipelineReport:
        report = PipelineReport(tenant_id=tenant_id, period=period)

        payloads = await self.fetcher.fetch_orders(tenant_id, period)
        report.fetched_payloads = len(payloads)

        adapted = adapt_orders(payloads, self.shape, tenant_id)
        report.adapted_orders = len(adapted.orders)
        report.anomalies.extend(adapted.anomalies)

        orders = [o for o in adapted.orders if is_reportable(o, self.date_basis)]
        report.reportable_orders = len(orders)
        logger.info(
            "Orders prepared",
            fetched=report.fetched_payloads,
            adapted=report.adapted_orders,
            reportable=report.reportable_orders,
        )

        history_provider = self.history_provider or InMemoryHistoryProvider.from_orders(orders)
        customer_ids = sorted({o.customer.customer_id for o in orders if o.customer is not None})
        history = await history_provider.history_for(tenant_id, customer_ids)

        result = self.transformer.transform(orders, tenant_id, period, history=history, modes=modes)
        report.transform = result
        report.anomalies.extend(result.anomalies)

        report.validation = validate_daily_rows(result.all_rows)
        if report.validation.status == ValidationStatus.FAILED:
            logger.error(
                "Daily rows failed validation, nothing persisted",
                failed_checks=[c.name for c in report.validation.failed()],
            )
            return report

        report.daily_sales = await self.store.upsert_daily_sales(result.all_rows)
        report.classifications = await self.store.upsert_classifications(
            tenant_id, result.classifications
        )
        report.transactions = await self.store.upsert_transactions(tenant_id, result.transactions)

        logger.info(
            "Pipeline run completed",
            rows_written=report.daily_sales.written,
            rows_failed=len(report.daily_sales.failed_keys),
            classifications_written=report.classifications.written,
            transactions_written=report.transactions.written,
            anomalies=len(report.anomalies),
        )
        return report
