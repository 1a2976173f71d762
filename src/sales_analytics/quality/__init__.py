"""
Data Quality Module
"""
from .reconciliation import ReconciliationResult, load_platform_report, reconcile_net_sales
from .validators import (
    DataValidator,
    ValidationResult,
    ValidationStatus,
    create_daily_sales_validator,
    rows_to_frame,
    validate_daily_rows,
)

__all__ = [
    "ReconciliationResult",
    "load_platform_report",
    "reconcile_net_sales",
    "DataValidator",
    "ValidationResult",
    "ValidationStatus",
    "create_daily_sales_validator",
    "rows_to_frame",
    "validate_daily_rows",
]
