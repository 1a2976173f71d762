"""
Data Validation Module

Rule-based quality checks over daily sales rows before they are persisted.

Features:
- Null and uniqueness checks (including composite keys)
- Range and allowed-value checks
- Business rules (customer split-outs sum to net sales)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import polars as pl
import structlog

from ..transformation.models import AttributionMode, DailySalesRow

logger = structlog.get_logger(__name__)

MONEY_COLUMNS = [
    "gross_sales_excl_tax",
    "discounts_excl_tax",
    "refunds_excl_tax",
    "net_sales_excl_tax",
    "tax_total",
    "new_customer_net_sales",
    "returning_customer_net_sales",
    "guest_net_sales",
    "unknown_customer_net_sales",
]

# Half a cent; money columns are floats in the check frame
SPLIT_TOLERANCE = 0.005


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ValidationSeverity(str, Enum):
    """Severity levels for validation failures"""
    ERROR = "error"  # Rows must not be persisted
    WARNING = "warning"  # Logged, rows are still persisted
    INFO = "info"


class ValidationStatus(str, Enum):
    """Overall validation status"""
    PASSED = "passed"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass
class ValidationCheck:
    """Single validation check result"""
    name: str
    passed: bool
    severity: ValidationSeverity
    message: str
    details: Optional[Dict[str, Any]] = None
    failed_rows: int = 0
    total_rows: int = 0


@dataclass
class ValidationResult:
    """Complete validation suite result"""
    status: ValidationStatus
    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_count: int
    checks: List[ValidationCheck] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        """Percentage of passed checks"""
        if self.total_checks == 0:
            return 100.0
        return (self.passed_checks / self.total_checks) * 100

    def failed(self) -> List[ValidationCheck]:
        return [c for c in self.checks if not c.passed]


def rows_to_frame(rows: Iterable[DailySalesRow]) -> pl.DataFrame:
    """
    Daily rows as a polars frame for checks and reports.

    Money becomes Float64 here. The frame is never used to compute stored
    figures.
    """
    records = []
    for row in rows:
        record = row.to_dict()
        for column in MONEY_COLUMNS:
            value = record[column]
            record[column] = float(value) if value is not None else None
        records.append(record)

    schema = {
        "tenant_id": pl.Utf8,
        "date": pl.Utf8,
        "mode": pl.Utf8,
        "orders_count": pl.Int64,
        "currency": pl.Utf8,
        **{column: pl.Float64 for column in MONEY_COLUMNS},
    }
    if not records:
        return pl.DataFrame(schema=schema)
    return pl.DataFrame(records, schema=schema)


class DataValidator:
    """
    Chainable validator over a polars frame.

    Example:
        validator = DataValidator()
        validator.add_not_null_check("date")
        validator.add_range_check("orders_count", min_value=0)
        result = validator.validate(df)
    """

    def __init__(self, strict_mode: bool = False):
        self.strict_mode = strict_mode  # Warnings fail the suite too
        self._checks: List[Callable[[pl.DataFrame], ValidationCheck]] = []

    def reset(self) -> None:
        """Drop all registered checks"""
        self._checks = []

    @staticmethod
    def _missing(name: str, columns: Sequence[str], df: pl.DataFrame,
                 severity: ValidationSeverity) -> Optional[ValidationCheck]:
        missing = [c for c in columns if c not in df.columns]
        if not missing:
            return None
        return ValidationCheck(
            name=name,
            passed=False,
            severity=severity,
            message=f"Columns not found: {missing}",
        )

    def add_not_null_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Fail when the column holds nulls"""
        name = f"not_null_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = self._missing(name, [column], df, severity)
            if missing:
                return missing

            null_count = df[column].null_count()
            return ValidationCheck(
                name=name,
                passed=null_count == 0,
                severity=severity,
                message=f"Column '{column}' has {null_count} null values",
                details={"null_count": null_count},
                failed_rows=null_count,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_unique_check(
        self,
        columns: Union[str, Sequence[str]],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Fail when the column, or combination of columns, repeats"""
        columns = [columns] if isinstance(columns, str) else list(columns)
        name = "unique_" + "_".join(columns)

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = self._missing(name, columns, df, severity)
            if missing:
                return missing

            duplicates = df.height - df.select(columns).unique().height
            return ValidationCheck(
                name=name,
                passed=duplicates == 0,
                severity=severity,
                message=f"{columns} has {duplicates} duplicate keys",
                details={"duplicate_count": duplicates},
                failed_rows=duplicates,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_range_check(
        self,
        column: str,
        min_value: Optional[float] = None,
        max_value: Optional[float] = None,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Fail when values fall outside [min_value, max_value]"""
        name = f"range_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = self._missing(name, [column], df, severity)
            if missing:
                return missing

            conditions = []
            if min_value is not None:
                conditions.append(pl.col(column) < min_value)
            if max_value is not None:
                conditions.append(pl.col(column) > max_value)
            if not conditions:
                return ValidationCheck(name=name, passed=True, severity=severity,
                                       message="No range specified")

            out_of_range = df.filter(pl.any_horizontal(conditions)).height
            return ValidationCheck(
                name=name,
                passed=out_of_range == 0,
                severity=severity,
                message=f"Column '{column}' has {out_of_range} values outside [{min_value}, {max_value}]",
                details={"min": min_value, "max": max_value, "out_of_range_count": out_of_range},
                failed_rows=out_of_range,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_non_negative_check(
        self,
        column: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        return self.add_range_check(column, min_value=0, severity=severity)

    def add_pattern_check(
        self,
        column: str,
        pattern: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Fail when non-null values do not match the regex"""
        name = f"pattern_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = self._missing(name, [column], df, severity)
            if missing:
                return missing

            non_matching = df.filter(
                pl.col(column).is_not_null() & ~pl.col(column).str.contains(pattern)
            ).height
            return ValidationCheck(
                name=name,
                passed=non_matching == 0,
                severity=severity,
                message=f"Column '{column}' has {non_matching} values not matching {pattern}",
                details={"pattern": pattern, "non_matching_count": non_matching},
                failed_rows=non_matching,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_enum_check(
        self,
        column: str,
        allowed_values: List[Any],
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """Fail when non-null values are outside the allowed set"""
        name = f"enum_{column}"

        def check(df: pl.DataFrame) -> ValidationCheck:
            missing = self._missing(name, [column], df, severity)
            if missing:
                return missing

            invalid = df.filter(
                pl.col(column).is_not_null() & ~pl.col(column).is_in(allowed_values)
            ).height
            return ValidationCheck(
                name=name,
                passed=invalid == 0,
                severity=severity,
                message=f"Column '{column}' has {invalid} values outside {allowed_values}",
                details={"allowed_values": allowed_values, "invalid_count": invalid},
                failed_rows=invalid,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def add_custom_check(
        self,
        name: str,
        check_func: Callable[[pl.DataFrame], int],
        message_on_fail: str,
        severity: ValidationSeverity = ValidationSeverity.ERROR,
    ) -> "DataValidator":
        """
        Register a business rule.

        ``check_func`` returns the number of offending rows; zero passes.
        """
        def check(df: pl.DataFrame) -> ValidationCheck:
            try:
                offending = int(check_func(df))
            except (pl.exceptions.PolarsError, KeyError, TypeError, ValueError) as e:
                return ValidationCheck(
                    name=name,
                    passed=False,
                    severity=severity,
                    message=f"Check failed with error: {e}",
                )
            return ValidationCheck(
                name=name,
                passed=offending == 0,
                severity=severity,
                message="Check passed" if offending == 0 else f"{message_on_fail} ({offending} rows)",
                failed_rows=offending,
                total_rows=df.height,
            )

        self._checks.append(check)
        return self

    def validate(self, df: pl.DataFrame) -> ValidationResult:
        """
        Run all registered checks.

        Args:
            df: Frame to validate

        Returns:
            ValidationResult with every check's outcome
        """
        started_at = _utcnow()
        results = []

        logger.info("Running validation checks", checks=len(self._checks), rows=df.height)

        for check_func in self._checks:
            result = check_func(df)
            results.append(result)
            if not result.passed:
                logger.warning(
                    "Validation check failed",
                    check=result.name,
                    message=result.message,
                    severity=result.severity.value,
                )

        passed_checks = sum(1 for r in results if r.passed)
        failed_checks = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.ERROR)
        warning_count = sum(1 for r in results if not r.passed and r.severity == ValidationSeverity.WARNING)

        if failed_checks > 0 or (warning_count > 0 and self.strict_mode):
            status = ValidationStatus.FAILED
        elif warning_count > 0:
            status = ValidationStatus.PARTIAL
        else:
            status = ValidationStatus.PASSED

        logger.info(
            "Validation complete",
            status=status.value,
            passed=passed_checks,
            failed=failed_checks,
            warnings=warning_count,
        )

        return ValidationResult(
            status=status,
            total_checks=len(results),
            passed_checks=passed_checks,
            failed_checks=failed_checks,
            warning_count=warning_count,
            checks=results,
            started_at=started_at,
            completed_at=_utcnow(),
        )


def _split_mismatches(df: pl.DataFrame) -> int:
    """Rows whose new + returning + guest differs from net"""
    split_sum = (
        pl.col("new_customer_net_sales")
        + pl.col("returning_customer_net_sales")
        + pl.col("guest_net_sales")
    )
    return df.filter((split_sum - pl.col("net_sales_excl_tax")).abs() > SPLIT_TOLERANCE).height


def _net_mismatches(df: pl.DataFrame) -> int:
    """Rows whose net differs from gross - discounts - refunds"""
    expected = (
        pl.col("gross_sales_excl_tax")
        - pl.col("discounts_excl_tax")
        - pl.col("refunds_excl_tax")
    )
    return df.filter((expected - pl.col("net_sales_excl_tax")).abs() > SPLIT_TOLERANCE).height


def create_daily_sales_validator(strict_mode: bool = False) -> DataValidator:
    """Pre-configured validator for daily sales rows"""
    return (
        DataValidator(strict_mode=strict_mode)
        .add_not_null_check("tenant_id")
        .add_not_null_check("date")
        .add_not_null_check("mode")
        .add_pattern_check("date", r"^\d{4}-\d{2}-\d{2}$")
        .add_unique_check(["tenant_id", "date", "mode"])
        .add_enum_check("mode", [m.value for m in AttributionMode])
        .add_non_negative_check("orders_count")
        .add_non_negative_check("gross_sales_excl_tax", severity=ValidationSeverity.WARNING)
        .add_non_negative_check("discounts_excl_tax", severity=ValidationSeverity.WARNING)
        .add_non_negative_check("refunds_excl_tax", severity=ValidationSeverity.WARNING)
        .add_pattern_check("currency", r"^[A-Z]{3}$", severity=ValidationSeverity.WARNING)
        .add_custom_check(
            "net_equals_gross_minus_deductions",
            _net_mismatches,
            "Net sales differ from gross - discounts - refunds",
        )
        .add_custom_check(
            "customer_splits_sum_to_net",
            _split_mismatches,
            "Customer split-outs do not sum to net sales",
        )
    )


def validate_daily_rows(rows: Iterable[DailySalesRow], strict_mode: bool = False) -> ValidationResult:
    """Validate daily rows with the standard suite"""
    return create_daily_sales_validator(strict_mode).validate(rows_to_frame(rows))
