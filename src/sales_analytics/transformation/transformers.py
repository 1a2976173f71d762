"""
Sales Transformer

Batch orchestrator that runs every order through refund attribution,
allocation, event mapping and classification, then aggregates the events
into daily rows for each requested attribution mode. Line-level SALE and
RETURN records are produced alongside the events.

Each order is processed in isolation: a malformed order becomes an anomaly
and never fails the batch.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import structlog

from .aggregation import aggregate_events
from .allocation import allocate_order
from .classification import classify_order, first_order_ids
from .events import map_order_to_events
from .models import (
    AllocationConfidence,
    AnomalyKind,
    AnomalySeverity,
    AttributionMode,
    CustomerClassification,
    DailySalesRow,
    EventDateBasis,
    FinancialEvent,
    HistoricalOrder,
    Order,
    OrderAnomaly,
    SalesTransaction,
)
from .refunds import attribute_refunds
from .timezones import DateConversionError, ReportingPeriod, TimezoneLike, resolve_timezone
from .transactions import map_order_to_transactions

logger = structlog.get_logger(__name__)


@dataclass
class TransformResult:
    """Result of transforming one batch of orders"""
    tenant_id: str
    period: ReportingPeriod
    rows: Dict[AttributionMode, List[DailySalesRow]]
    classifications: List[CustomerClassification]
    events: List[FinancialEvent]
    input_orders: int
    processed_orders: int
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    dropped_events: int = 0
    anomalies: List[OrderAnomaly] = field(default_factory=list)
    transactions: List[SalesTransaction] = field(default_factory=list)

    @property
    def failed_orders(self) -> int:
        return self.input_orders - self.processed_orders

    @property
    def all_rows(self) -> List[DailySalesRow]:
        return [row for mode_rows in self.rows.values() for row in mode_rows]

    def anomalies_of(self, kind: AnomalyKind) -> List[OrderAnomaly]:
        return [a for a in self.anomalies if a.kind == kind]


class SalesTransformer:
    """
    Turns canonical orders into daily sales rows.

    Example:
        transformer = SalesTransformer(timezone="Europe/Stockholm")
        result = transformer.transform(orders, "tenant-1", period)
        shopify_rows = result.rows[AttributionMode.SHOPIFY]
    """

    def __init__(
        self,
        timezone: TimezoneLike,
        date_basis: EventDateBasis = EventDateBasis.CREATED_AT,
    ):
        self.timezone = resolve_timezone(timezone)
        self.date_basis = EventDateBasis(date_basis)

    def _process_order(
        self,
        order: Order,
        period: ReportingPeriod,
        first_orders: set,
        anomalies: List[OrderAnomaly],
    ) -> tuple:
        """Events, line records and classification for one order; may raise"""
        refunds = attribute_refunds(order, self.timezone, self.date_basis)
        allocation = allocate_order(order, refunds.total_excl_tax, refunds.total_tax)
        classification = classify_order(order, period, self.timezone, first_orders)

        for failure in refunds.failures:
            anomalies.append(OrderAnomaly(
                order_id=order.order_id,
                kind=AnomalyKind.DATE_CONVERSION,
                severity=AnomalySeverity.WARNING,
                message=f"Refund {failure.refund_id} dropped: {failure.reason}",
                details={"refund_id": failure.refund_id},
            ))

        if allocation.confidence != AllocationConfidence.FULL:
            anomalies.append(OrderAnomaly(
                order_id=order.order_id,
                kind=AnomalyKind.INCOMPLETE_ALLOCATION,
                severity=AnomalySeverity.INFO,
                message="; ".join(allocation.confidence_reasons),
                details={"confidence": allocation.confidence.value},
            ))

        for refund in refunds.order_level:
            anomalies.append(OrderAnomaly(
                order_id=order.order_id,
                kind=AnomalyKind.SHIPPING_ONLY_REFUND,
                severity=AnomalySeverity.INFO,
                message=f"Refund {refund.refund_id} has no line items",
                details={"refund_id": refund.refund_id, "amount": str(refund.amount)},
            ))

        if classification.has_unknown_label:
            anomalies.append(OrderAnomaly(
                order_id=order.order_id,
                kind=AnomalyKind.UNKNOWN_CLASSIFICATION,
                severity=AnomalySeverity.INFO,
                message="Customer order count unavailable",
                details={
                    "shopify_mode_label": classification.shopify_mode_label.value,
                    "legacy_mode_label": classification.legacy_mode_label.value,
                },
            ))

        try:
            events = map_order_to_events(order, allocation, refunds, self.timezone, self.date_basis)
            transactions = map_order_to_transactions(
                order, allocation, refunds, sale_date=events[0].occurred_on
            )
        except DateConversionError as e:
            logger.warning(
                "Order dropped, sale date unavailable",
                order_id=order.order_id,
                error=str(e),
            )
            anomalies.append(OrderAnomaly(
                order_id=order.order_id,
                kind=AnomalyKind.DATE_CONVERSION,
                severity=AnomalySeverity.WARNING,
                message=f"Sale date unavailable: {e}",
            ))
            events, transactions = [], []

        return events, transactions, classification

    def transform(
        self,
        orders: Iterable[Order],
        tenant_id: str,
        period: ReportingPeriod,
        history: Optional[Mapping[str, Sequence[HistoricalOrder]]] = None,
        modes: Optional[Sequence[AttributionMode]] = None,
    ) -> TransformResult:
        """
        Transform a batch of orders into daily rows.

        Pipeline:
        1. Attribute refunds to their own dates
        2. Allocate order totals (tax-exclusive) over line items
        3. Classify the customer under both modes
        4. Map to SALE / RETURN events and line-level records
        5. Aggregate per date for each mode, restricted to the period; line
           records are restricted to the period the same way

        Args:
            orders: Canonical orders already filtered to reportable ones
            tenant_id: Tenant the rows belong to
            period: Reporting period; the aggregation window and the period
                Shopify-mode classification is relative to
            history: Customer id -> lifetime orders, for the first-order flag
            modes: Modes to aggregate, both by default

        Returns:
            TransformResult
        """
        started_at = datetime.now(dt_timezone.utc)
        modes = [AttributionMode(m) for m in (modes or list(AttributionMode))]
        first_orders = first_order_ids(history) if history else set()

        events: List[FinancialEvent] = []
        transactions: List[SalesTransaction] = []
        classifications: List[CustomerClassification] = []
        anomalies: List[OrderAnomaly] = []
        input_orders = 0
        processed = 0

        logger.info(
            "Starting sales transformation",
            tenant_id=tenant_id,
            period=str(period),
            modes=[m.value for m in modes],
        )

        for order in orders:
            input_orders += 1
            try:
                order_events, order_transactions, classification = self._process_order(
                    order, period, first_orders, anomalies
                )
            except Exception as e:
                logger.error(
                    "Order processing failed",
                    order_id=order.order_id,
                    error=str(e),
                )
                anomalies.append(OrderAnomaly(
                    order_id=order.order_id,
                    kind=AnomalyKind.PROCESSING_ERROR,
                    severity=AnomalySeverity.WARNING,
                    message=str(e),
                    details={"error_type": type(e).__name__},
                ))
                continue

            events.extend(order_events)
            transactions.extend(t for t in order_transactions if period.contains(t.event_date))
            classifications.append(classification)
            processed += 1

        by_order = {c.order_id: c for c in classifications}
        rows: Dict[AttributionMode, List[DailySalesRow]] = {}
        dropped_events = 0
        for mode in modes:
            aggregation = aggregate_events(events, by_order, mode, tenant_id, window=period)
            rows[mode] = aggregation.rows
            dropped_events = aggregation.dropped_events

        completed_at = datetime.now(dt_timezone.utc)

        logger.info(
            "Sales transformation completed",
            tenant_id=tenant_id,
            input_orders=input_orders,
            processed_orders=processed,
            events=len(events),
            transactions=len(transactions),
            rows={m.value: len(r) for m, r in rows.items()},
            anomalies=len(anomalies),
        )

        return TransformResult(
            tenant_id=tenant_id,
            period=period,
            rows=rows,
            classifications=classifications,
            events=events,
            input_orders=input_orders,
            processed_orders=processed,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            dropped_events=dropped_events,
            anomalies=anomalies,
            transactions=transactions,
        )
