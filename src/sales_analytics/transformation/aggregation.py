"""
Daily Aggregation

Folds financial events into one row per store-local date and attribution
mode. Sums are exact Decimals until the row is built; rounding happens once
there, and the largest split-out of the day absorbs the sub-cent remainder
so the three customer split-outs add up to net exactly.
"""

from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Set, Union

import structlog

from .models import (
    AttributionMode,
    CustomerBucket,
    CustomerClassification,
    DailySalesRow,
    EventKind,
    FinancialEvent,
    MonthlySalesRow,
)
from .money import ZERO, quantize_money
from .timezones import ReportingPeriod, parse_event_date

logger = structlog.get_logger(__name__)

Classifications = Union[Mapping[str, CustomerClassification], Iterable[CustomerClassification]]


def _most_common(counts: Counter) -> Optional[str]:
    if not counts:
        return None
    # Highest count first, then alphabetical
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]


@dataclass
class _DayBucket:
    """Exact running totals for one date"""
    gross: Decimal = ZERO
    discount: Decimal = ZERO
    returns: Decimal = ZERO
    tax: Decimal = ZERO
    new: Decimal = ZERO
    returning: Decimal = ZERO
    guest: Decimal = ZERO
    unknown: Decimal = ZERO
    sale_orders: Set[str] = field(default_factory=set)
    touched: Set[CustomerBucket] = field(default_factory=set)
    currencies: Counter = field(default_factory=Counter)

    def add(self, event: FinancialEvent, bucket: CustomerBucket, is_unknown: bool) -> None:
        if event.kind == EventKind.SALE:
            self.sale_orders.add(event.order_id)

        self.gross += event.gross_excl_tax
        self.discount += event.discount_excl_tax
        self.returns += event.return_excl_tax
        self.tax += event.net_tax
        if event.currency:
            self.currencies[event.currency] += 1

        net = event.net_excl_tax
        self.touched.add(bucket)
        if bucket == CustomerBucket.NEW:
            self.new += net
        elif bucket == CustomerBucket.GUEST:
            self.guest += net
        else:
            self.returning += net
            if is_unknown:
                self.unknown += net

    def split_outs(self, net: Decimal) -> Dict[CustomerBucket, Decimal]:
        """Rounded split-outs that add up to the rounded net exactly"""
        exact = {
            CustomerBucket.RETURNING: self.returning,
            CustomerBucket.NEW: self.new,
            CustomerBucket.GUEST: self.guest,
        }
        rounded = {b: quantize_money(v) for b, v in exact.items()}
        remainder = net - sum(rounded.values(), ZERO)
        if remainder:
            # Largest split-out that saw events that day; returning wins ties
            candidates = [b for b in exact if b in self.touched] or [CustomerBucket.RETURNING]
            target = max(candidates, key=lambda b: abs(exact[b]))
            rounded[target] += remainder
        return rounded

    def dominant_currency(self) -> Optional[str]:
        return _most_common(self.currencies)


@dataclass(frozen=True)
class DailyAggregation:
    """Rows plus the events that could not be placed on a date"""
    rows: List[DailySalesRow]
    dropped_events: int = 0
    outside_window: int = 0


def _index_classifications(classifications: Optional[Classifications]) -> Dict[str, CustomerClassification]:
    if classifications is None:
        return {}
    if isinstance(classifications, Mapping):
        return dict(classifications)
    return {c.order_id: c for c in classifications}


def aggregate_events(
    events: Iterable[FinancialEvent],
    classifications: Optional[Classifications],
    mode: AttributionMode,
    tenant_id: str,
    window: Optional[ReportingPeriod] = None,
) -> DailyAggregation:
    """
    Aggregate events into daily rows for one mode.

    Args:
        events: SALE and RETURN events of any number of orders
        classifications: Per-order classifications, keyed by order id or as
            a plain iterable; orders without one count as returning
        mode: Attribution mode whose labels drive the split-outs
        tenant_id: Tenant the rows belong to
        window: When given, events dated outside it are skipped so that
            partially covered days are never emitted

    Returns:
        DailyAggregation with rows sorted by date
    """
    mode = AttributionMode(mode)
    by_order = _index_classifications(classifications)

    days: Dict[str, _DayBucket] = {}
    dropped = 0
    outside = 0

    for event in events:
        day = parse_event_date(event.occurred_on)
        if day is None:
            dropped += 1
            continue
        if window is not None and not window.contains(day):
            outside += 1
            continue

        classification = by_order.get(event.order_id)
        if classification is None:
            bucket, is_unknown = CustomerBucket.RETURNING, True
        else:
            label = classification.label_for(mode)
            bucket, is_unknown = classification.bucket_for(mode), label == "UNKNOWN"

        days.setdefault(day.isoformat(), _DayBucket()).add(event, bucket, is_unknown)

    if dropped:
        logger.warning(
            "Dropped events without a valid date",
            tenant_id=tenant_id,
            mode=mode.value,
            dropped_events=dropped,
        )

    rows = [_build_row(tenant_id, day, mode, bucket) for day, bucket in sorted(days.items())]
    return DailyAggregation(rows=rows, dropped_events=dropped, outside_window=outside)


def aggregate(
    events: Iterable[FinancialEvent],
    classifications: Optional[Classifications],
    mode: AttributionMode,
    tenant_id: str,
    window: Optional[ReportingPeriod] = None,
) -> List[DailySalesRow]:
    """Daily rows for one mode; see ``aggregate_events``"""
    return aggregate_events(events, classifications, mode, tenant_id, window).rows


def _build_row(tenant_id: str, day: str, mode: AttributionMode, bucket: _DayBucket) -> DailySalesRow:
    gross = quantize_money(bucket.gross)
    discount = quantize_money(bucket.discount)
    returns = quantize_money(bucket.returns)
    net = gross - discount - returns
    splits = bucket.split_outs(net)

    return DailySalesRow(
        tenant_id=tenant_id,
        date=day,
        mode=mode,
        gross_sales_excl_tax=gross,
        discounts_excl_tax=discount,
        refunds_excl_tax=returns,
        net_sales_excl_tax=net,
        tax_total=quantize_money(bucket.tax),
        orders_count=len(bucket.sale_orders),
        currency=bucket.dominant_currency(),
        new_customer_net_sales=splits[CustomerBucket.NEW],
        returning_customer_net_sales=splits[CustomerBucket.RETURNING],
        guest_net_sales=splits[CustomerBucket.GUEST],
        unknown_customer_net_sales=quantize_money(bucket.unknown),
    )


def rollup_monthly(rows: Iterable[DailySalesRow]) -> List[MonthlySalesRow]:
    """
    Roll daily rows up into calendar months.

    Daily rows are already rounded, so the monthly sums are exact and keep
    every daily invariant (net and split-outs add up). Orders are summed per
    day; an order refunded in a later month is still counted once, in the
    month of its sale.

    Args:
        rows: Daily rows of any tenants and modes

    Returns:
        One row per (tenant, mode, year, month), sorted by those keys
    """
    months: Dict[tuple, List[DailySalesRow]] = {}
    for row in rows:
        day = parse_event_date(row.date)
        if day is None:
            logger.warning("Skipping daily row with invalid date", tenant_id=row.tenant_id, date=row.date)
            continue
        key = (row.tenant_id, AttributionMode(row.mode).value, day.year, day.month)
        months.setdefault(key, []).append(row)

    rollup = []
    for (tenant_id, mode, year, month), days in sorted(months.items()):
        rollup.append(MonthlySalesRow(
            tenant_id=tenant_id,
            year=year,
            month=month,
            mode=AttributionMode(mode),
            gross_sales_excl_tax=sum((r.gross_sales_excl_tax for r in days), ZERO),
            discounts_excl_tax=sum((r.discounts_excl_tax for r in days), ZERO),
            refunds_excl_tax=sum((r.refunds_excl_tax for r in days), ZERO),
            net_sales_excl_tax=sum((r.net_sales_excl_tax for r in days), ZERO),
            tax_total=sum((r.tax_total for r in days), ZERO),
            orders_count=sum(r.orders_count for r in days),
            days=len(days),
            currency=_most_common(Counter(r.currency for r in days if r.currency)),
            new_customer_net_sales=sum((r.new_customer_net_sales for r in days), ZERO),
            returning_customer_net_sales=sum((r.returning_customer_net_sales for r in days), ZERO),
            guest_net_sales=sum((r.guest_net_sales for r in days), ZERO),
        ))
    return rollup
