"""
Prefect Workflow Orchestration - Daily Sales

Recomputes daily sales for one tenant from a JSON Lines export of raw order
payloads, optionally reconciling the result against the platform's own
analytics export.
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo

from prefect import flow, task, get_run_logger

from sales_analytics.config import get_settings
from sales_analytics.config.logging import configure_logging
from sales_analytics.database.connection import close_database, init_database
from sales_analytics.database.store import AggregateStore
from sales_analytics.ingestion.shopify_adapter import PayloadShape
from sales_analytics.ingestion.sources import JsonlOrderSource
from sales_analytics.pipeline import SalesPipeline
from sales_analytics.quality.reconciliation import load_platform_report, reconcile_net_sales
from sales_analytics.transformation.models import AttributionMode, DailySalesRow
from sales_analytics.transformation.timezones import ReportingPeriod


# =============================================================================
# HELPERS
# =============================================================================

def _resolve(path: str, root: str) -> str:
    """Bare file names are looked up under the configured data directory"""
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return str(candidate)
    return str(Path(root) / candidate)


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="recompute_daily_sales",
    description="Transform an order export and upsert daily rows",
    retries=2,
    retry_delay_seconds=60,
)
async def recompute_daily_sales(
    tenant_id: str,
    export_path: str,
    start: str,
    end: str,
    shape: str = "rest",
    database_url: Optional[str] = None,
) -> dict:
    """Run the sales pipeline once"""
    logger = get_run_logger()
    settings = get_settings()

    engine = await init_database(database_url, create_tables=True)
    try:
        store = AggregateStore(engine, batch_size=settings.sales.upsert_batch_size)
        pipeline = SalesPipeline.from_settings(
            fetcher=JsonlOrderSource(export_path),
            store=store,
            shape=PayloadShape(shape),
        )
        report = await pipeline.run(
            tenant_id,
            ReportingPeriod.from_strings(start, end),
            modes=[AttributionMode(m) for m in settings.sales.modes],
        )
    finally:
        await close_database()

    logger.info(
        f"Recompute complete: {report.reportable_orders} orders, "
        f"{len(report.anomalies)} anomalies, persisted={report.persisted}"
    )

    return {
        "reportable_orders": report.reportable_orders,
        "persisted": report.persisted,
        "succeeded": report.succeeded,
        "failed_keys": list(report.daily_sales.failed_keys) if report.daily_sales else [],
        "anomalies": len(report.anomalies),
        "rows": [row.to_dict() for row in report.transform.all_rows] if report.transform else [],
    }


@task(
    name="reconcile_with_platform",
    description="Compare net sales with the platform's analytics export",
)
def reconcile_with_platform(rows: List[dict], report_path: str) -> dict:
    """Reconcile recomputed shopify-mode rows against the platform export"""
    logger = get_run_logger()
    settings = get_settings()

    daily_rows = [
        DailySalesRow(**{**row, "mode": AttributionMode(row["mode"])})
        for row in rows
    ]
    result = reconcile_net_sales(
        daily_rows,
        load_platform_report(report_path),
        tolerance_pct=settings.sales.reconciliation_tolerance_pct,
    )

    logger.info(
        f"Reconciliation: ours={result.ours} platform={result.platform} "
        f"gap={result.discrepancy_pct}% within_tolerance={result.within_tolerance}"
    )
    return {
        "ours": str(result.ours),
        "platform": str(result.platform),
        "discrepancy_pct": result.discrepancy_pct,
        "within_tolerance": result.within_tolerance,
    }


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_sales_recompute",
    description="Recompute daily sales for one tenant",
    retries=1,
    retry_delay_seconds=300,
)
async def daily_sales_recompute(
    tenant_id: str,
    export_path: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    shape: str = "rest",
    platform_report_path: Optional[str] = None,
    database_url: Optional[str] = None,
) -> dict:
    """
    Daily sales recompute.

    Steps:
    1. Transform the order export and upsert daily rows
    2. Reconcile with the platform's export when one is given

    Defaults to yesterday in the store timezone when no range is given.
    """
    logger = get_run_logger()
    configure_logging()
    settings = get_settings()
    export_path = _resolve(export_path, settings.data_lake.raw_path)

    yesterday = (datetime.now(ZoneInfo(settings.sales.timezone)) - timedelta(days=1)).date().isoformat()
    start = start or yesterday
    end = end or start

    logger.info(f"Starting daily sales recompute for {tenant_id}: {start}..{end}")

    results = {"tenant_id": tenant_id, "start": start, "end": end}
    results["recompute"] = await recompute_daily_sales(
        tenant_id, export_path, start, end, shape=shape, database_url=database_url
    )

    if platform_report_path:
        results["reconciliation"] = reconcile_with_platform(
            results["recompute"]["rows"],
            _resolve(platform_report_path, settings.data_lake.reports_path),
        )

    results["status"] = "success" if results["recompute"]["succeeded"] else "partial"
    return results


if __name__ == "__main__":
    import asyncio
    import sys

    asyncio.run(daily_sales_recompute(tenant_id=sys.argv[1], export_path=sys.argv[2]))
