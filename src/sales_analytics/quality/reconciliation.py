"""
Reconciliation

Compares computed net sales against the platform's own analytics export.
The platform's figures are not reproduced byte for byte; a bounded
discrepancy (1% by default) is accepted.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import polars as pl
import structlog

from ..transformation.models import AttributionMode, DailySalesRow
from ..transformation.money import ZERO, parse_amount, quantize_money

logger = structlog.get_logger(__name__)

# Header variants seen in platform exports (English and Swedish locales)
DAY_COLUMNS = ("Day", "Dag", "date", "Date")
NET_SALES_COLUMNS = ("Net sales", "Nettoförsäljning", "net_sales", "net_sales_excl_tax")

PlatformReport = Dict[str, Decimal]


@dataclass(frozen=True)
class DayReconciliation:
    """Our net sales against the platform's for one date"""
    date: str
    ours: Decimal
    platform: Decimal
    discrepancy: Decimal
    discrepancy_pct: Optional[float]


@dataclass
class ReconciliationResult:
    """Total and per-day comparison"""
    ours: Decimal
    platform: Decimal
    discrepancy: Decimal
    discrepancy_pct: Optional[float]
    tolerance_pct: float
    days: List[DayReconciliation] = field(default_factory=list)

    @property
    def within_tolerance(self) -> bool:
        if self.discrepancy_pct is None:
            return False
        return self.discrepancy_pct <= self.tolerance_pct

    def to_frame(self) -> pl.DataFrame:
        """Per-day comparison as a frame, for reports"""
        return pl.DataFrame(
            {
                "date": [d.date for d in self.days],
                "ours": [float(d.ours) for d in self.days],
                "platform": [float(d.platform) for d in self.days],
                "discrepancy": [float(d.discrepancy) for d in self.days],
                "discrepancy_pct": [d.discrepancy_pct for d in self.days],
            },
            schema={
                "date": pl.Utf8,
                "ours": pl.Float64,
                "platform": pl.Float64,
                "discrepancy": pl.Float64,
                "discrepancy_pct": pl.Float64,
            },
        )


def _discrepancy_pct(ours: Decimal, platform: Decimal) -> Optional[float]:
    """Relative gap in percent of the platform figure; None when undefined"""
    if platform == 0:
        return 0.0 if ours == 0 else None
    return float(abs(ours - platform) / abs(platform) * 100)


def _pick_column(columns: List[str], candidates: Iterable[str]) -> str:
    for candidate in candidates:
        if candidate in columns:
            return candidate
    raise ValueError(f"Report has none of the columns {list(candidates)}; found {columns}")


def load_platform_report(path: Union[str, Path]) -> PlatformReport:
    """
    Load a platform analytics CSV export as date -> net sales.

    Every column is read as text and amounts go through ``parse_amount`` so
    locale formatting in the export is handled the same way as API payloads.
    Per-order exports are summed per day.

    Raises:
        FileNotFoundError: if the export does not exist
        ValueError: if the day or net sales column is missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Platform report not found: {path}")

    df = pl.read_csv(path, infer_schema_length=0, encoding="utf8-lossy")
    df = df.rename({c: c.lstrip("\ufeff").strip() for c in df.columns})

    day_column = _pick_column(df.columns, DAY_COLUMNS)
    net_column = _pick_column(df.columns, NET_SALES_COLUMNS)

    report: PlatformReport = {}
    for day, net in df.select([day_column, net_column]).iter_rows():
        if not day:
            continue
        day = day.strip()
        report[day] = report.get(day, ZERO) + parse_amount(net)

    logger.info("Loaded platform report", file=str(path), days=len(report))
    return report


def reconcile_net_sales(
    rows: Iterable[DailySalesRow],
    platform_report: PlatformReport,
    tolerance_pct: float = 1.0,
    mode: AttributionMode = AttributionMode.SHOPIFY,
) -> ReconciliationResult:
    """
    Compare net sales per day and in total.

    Args:
        rows: Daily rows; only those of ``mode`` are used
        platform_report: Date -> the platform's net sales
        tolerance_pct: Accepted total discrepancy in percent
        mode: Which mode's rows to compare (net sales do not depend on it)

    Returns:
        ReconciliationResult covering every date present on either side
    """
    mode = AttributionMode(mode)
    ours_by_day: Dict[str, Decimal] = {}
    for row in rows:
        if row.mode != mode:
            continue
        ours_by_day[row.date] = ours_by_day.get(row.date, ZERO) + row.net_sales_excl_tax

    days = []
    for day in sorted(set(ours_by_day) | set(platform_report)):
        ours = ours_by_day.get(day, ZERO)
        platform = quantize_money(platform_report.get(day, ZERO))
        days.append(DayReconciliation(
            date=day,
            ours=ours,
            platform=platform,
            discrepancy=ours - platform,
            discrepancy_pct=_discrepancy_pct(ours, platform),
        ))

    ours_total = sum((d.ours for d in days), ZERO)
    platform_total = sum((d.platform for d in days), ZERO)

    result = ReconciliationResult(
        ours=ours_total,
        platform=platform_total,
        discrepancy=ours_total - platform_total,
        discrepancy_pct=_discrepancy_pct(ours_total, platform_total),
        tolerance_pct=tolerance_pct,
        days=days,
    )

    log = logger.info if result.within_tolerance else logger.warning
    log(
        "Net sales reconciliation",
        ours=str(result.ours),
        platform=str(result.platform),
        discrepancy_pct=result.discrepancy_pct,
        tolerance_pct=tolerance_pct,
        within_tolerance=result.within_tolerance,
    )
    return result
