"""
Unit Tests - Daily Aggregation
"""
from dataclasses import replace
from decimal import Decimal

import pytest

from sales_analytics.transformation.aggregation import aggregate, aggregate_events, rollup_monthly
from sales_analytics.transformation.models import (
    AttributionMode,
    CustomerClassification,
    EventKind,
    FinancialEvent,
    LegacyCustomerType,
    ShopifyCustomerType,
)

TENANT = "tenant-1"


def sale(order_id, day="2025-01-15", gross="100.00", discount="0", tax="0", currency="SEK"):
    return FinancialEvent(
        order_id=order_id,
        occurred_on=day,
        kind=EventKind.SALE,
        gross_excl_tax=Decimal(gross),
        discount_excl_tax=Decimal(discount),
        tax=Decimal(tax),
        currency=currency,
    )


def refund(order_id, day="2025-01-20", amount="30.00", tax="0", currency="SEK"):
    return FinancialEvent(
        order_id=order_id,
        occurred_on=day,
        kind=EventKind.RETURN,
        return_excl_tax=Decimal(amount),
        return_tax=Decimal(tax),
        currency=currency,
    )


def labels(order_id, shopify, legacy):
    return CustomerClassification(
        order_id=order_id,
        shopify_mode_label=ShopifyCustomerType(shopify),
        legacy_mode_label=LegacyCustomerType(legacy),
    )


class TestAggregate:
    """Tests for aggregate_events"""

    def test_single_sale(self):
        rows = aggregate([sale("1", gross="100.00", tax="20.00")], None, AttributionMode.SHOPIFY, TENANT)

        assert len(rows) == 1
        row = rows[0]
        assert row.key == (TENANT, "2025-01-15", "shopify")
        assert row.gross_sales_excl_tax == Decimal("100.00")
        assert row.net_sales_excl_tax == Decimal("100.00")
        assert row.tax_total == Decimal("20.00")
        assert row.orders_count == 1
        assert row.currency == "SEK"

    def test_sale_and_later_refund(self):
        """Test the refund day carries negative net and no orders"""
        classifications = [labels("1", "RETURNING", "RETURNING")]
        rows = aggregate([sale("1"), refund("1")], classifications, AttributionMode.SHOPIFY, TENANT)

        sale_day, refund_day = rows
        assert sale_day.net_sales_excl_tax == Decimal("100.00")
        assert refund_day.date == "2025-01-20"
        assert refund_day.refunds_excl_tax == Decimal("30.00")
        assert refund_day.net_sales_excl_tax == Decimal("-30.00")
        assert refund_day.returning_customer_net_sales == Decimal("-30.00")
        assert refund_day.orders_count == 0

    def test_refund_day_carries_negative_tax(self):
        """Test refunded tax is taken off the refund day, not the sale day"""
        rows = aggregate(
            [sale("1", gross="100.00", tax="20.00"), refund("1", amount="30.00", tax="6.00")],
            None, AttributionMode.SHOPIFY, TENANT,
        )

        sale_day, refund_day = rows
        assert sale_day.tax_total == Decimal("20.00")
        assert refund_day.tax_total == Decimal("-6.00")

    def test_orders_counted_once_per_day(self):
        events = [sale("1"), sale("1"), sale("2"), refund("3", day="2025-01-15")]
        row = aggregate(events, None, AttributionMode.SHOPIFY, TENANT)[0]
        assert row.orders_count == 2

    def test_splits_sum_to_net_exactly(self):
        """Test a sub-cent remainder on a tie lands in the returning split"""
        third = str(Decimal("100") / 3)
        events = [sale("n", gross=third), sale("g", gross=third), sale("r", gross=third)]
        classifications = {
            "n": labels("n", "FIRST_TIME", "NEW"),
            "g": labels("g", "GUEST", "GUEST"),
            "r": labels("r", "RETURNING", "RETURNING"),
        }

        row = aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT)[0]

        assert row.net_sales_excl_tax == Decimal("100.00")
        assert row.new_customer_net_sales == Decimal("33.33")
        assert row.guest_net_sales == Decimal("33.33")
        assert row.returning_customer_net_sales == Decimal("33.34")
        assert (
            row.new_customer_net_sales + row.returning_customer_net_sales + row.guest_net_sales
            == row.net_sales_excl_tax
        )

    def test_remainder_goes_to_largest_touched_split(self):
        """Test a day without returning customers keeps its returning split at zero"""
        events = [sale("n", gross="10.005"), sale("g", gross="10.005")]
        classifications = [labels("n", "FIRST_TIME", "NEW"), labels("g", "GUEST", "GUEST")]

        row = aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT)[0]

        assert row.net_sales_excl_tax == Decimal("20.01")
        assert row.returning_customer_net_sales == 0
        assert row.new_customer_net_sales == Decimal("10.00")
        assert row.guest_net_sales == Decimal("10.01")

    def test_remainder_follows_largest_split(self):
        events = [sale("n", gross="50.004"), sale("r", gross="0.003"), sale("g", gross="0.003")]
        classifications = [
            labels("n", "FIRST_TIME", "NEW"),
            labels("r", "RETURNING", "RETURNING"),
            labels("g", "GUEST", "GUEST"),
        ]

        row = aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT)[0]

        assert row.net_sales_excl_tax == Decimal("50.01")
        assert row.new_customer_net_sales == Decimal("50.01")
        assert row.returning_customer_net_sales == 0
        assert row.guest_net_sales == 0

    def test_modes_split_differently(self):
        events = [sale("1", gross="80.00")]
        classifications = [labels("1", "FIRST_TIME", "RETURNING")]

        shopify = aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT)[0]
        legacy = aggregate(events, classifications, AttributionMode.LEGACY, TENANT)[0]

        assert shopify.new_customer_net_sales == Decimal("80.00")
        assert shopify.returning_customer_net_sales == Decimal("0.00")
        assert legacy.new_customer_net_sales == Decimal("0.00")
        assert legacy.returning_customer_net_sales == Decimal("80.00")
        assert shopify.mode == AttributionMode.SHOPIFY
        assert legacy.mode == AttributionMode.LEGACY

    def test_unknown_counts_as_returning(self):
        events = [sale("u", gross="50.00"), sale("missing", gross="25.00")]
        classifications = [labels("u", "UNKNOWN", "UNKNOWN")]

        row = aggregate(events, classifications, AttributionMode.LEGACY, TENANT)[0]

        assert row.returning_customer_net_sales == Decimal("75.00")
        assert row.unknown_customer_net_sales == Decimal("75.00")

    def test_discounts_reduce_net(self):
        row = aggregate(
            [sale("1", gross="80.67", discount="16.67", tax="16.00")],
            None, AttributionMode.SHOPIFY, TENANT,
        )[0]

        assert row.discounts_excl_tax == Decimal("16.67")
        assert row.net_sales_excl_tax == Decimal("64.00")

    @pytest.mark.parametrize("currencies, expected", [
        (["SEK", "SEK", "EUR"], "SEK"),
        (["USD", "EUR"], "EUR"),
        ([None], None),
    ])
    def test_dominant_currency(self, currencies, expected):
        events = [sale(str(i), currency=c) for i, c in enumerate(currencies)]
        row = aggregate(events, None, AttributionMode.SHOPIFY, TENANT)[0]
        assert row.currency == expected

    def test_invalid_dates_are_dropped(self):
        events = [sale("1"), sale("2", day=None), sale("3", day="2025-02-30")]

        result = aggregate_events(events, None, AttributionMode.SHOPIFY, TENANT)

        assert result.dropped_events == 2
        assert len(result.rows) == 1
        assert result.rows[0].orders_count == 1

    def test_window_skips_outside_days(self, january):
        events = [sale("1", day="2024-12-31"), sale("2"), refund("2", day="2025-02-01")]

        result = aggregate_events(events, None, AttributionMode.SHOPIFY, TENANT, window=january)

        assert [r.date for r in result.rows] == ["2025-01-15"]
        assert result.outside_window == 2
        assert result.dropped_events == 0

    def test_rows_sorted_by_date(self):
        events = [sale("1", day="2025-01-20"), sale("2", day="2025-01-02"), sale("3", day="2025-01-11")]
        rows = aggregate(events, None, AttributionMode.SHOPIFY, TENANT)
        assert [r.date for r in rows] == ["2025-01-02", "2025-01-11", "2025-01-20"]

    def test_no_events_no_rows(self):
        assert aggregate([], None, AttributionMode.SHOPIFY, TENANT) == []

    def test_deterministic(self):
        events = [sale("1"), refund("1"), sale("2", gross="12.345", currency="EUR")]
        first = aggregate(events, None, AttributionMode.SHOPIFY, TENANT)
        second = aggregate(list(reversed(events)), None, AttributionMode.SHOPIFY, TENANT)
        assert first == second

    def test_row_serialises_mode(self):
        row = aggregate([sale("1")], None, "legacy", TENANT)[0]
        data = row.to_dict()
        assert data["mode"] == "legacy"
        assert data["net_sales_excl_tax"] == Decimal("100.00")


class TestRollupMonthly:
    """Tests for rollup_monthly"""

    def test_days_fold_into_calendar_months(self):
        events = [
            sale("1", gross="100.00", tax="20.00"),
            refund("1", amount="30.00", tax="6.00"),
            sale("2", day="2025-02-03", gross="50.00", tax="10.00"),
        ]
        classifications = [labels("1", "RETURNING", "RETURNING"), labels("2", "FIRST_TIME", "NEW")]
        daily = aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT)

        january, february = rollup_monthly(daily)

        assert january.period == "2025-01"
        assert january.days == 2
        assert january.orders_count == 1
        assert january.gross_sales_excl_tax == Decimal("100.00")
        assert january.refunds_excl_tax == Decimal("30.00")
        assert january.net_sales_excl_tax == Decimal("70.00")
        assert january.tax_total == Decimal("14.00")
        assert january.returning_customer_net_sales == Decimal("70.00")
        assert january.currency == "SEK"
        assert february.period == "2025-02"
        assert february.new_customer_net_sales == Decimal("50.00")

    def test_splits_still_add_up(self):
        third = str(Decimal("100") / 3)
        events = [sale("n", gross=third), sale("r", day="2025-01-16", gross=third)]
        classifications = [labels("n", "FIRST_TIME", "NEW"), labels("r", "RETURNING", "RETURNING")]

        month = rollup_monthly(aggregate(events, classifications, AttributionMode.SHOPIFY, TENANT))[0]

        assert (
            month.new_customer_net_sales + month.returning_customer_net_sales + month.guest_net_sales
            == month.net_sales_excl_tax
        )

    def test_modes_and_tenants_kept_apart(self):
        events = [sale("1")]
        rows = (
            aggregate(events, None, AttributionMode.SHOPIFY, "tenant-b")
            + aggregate(events, None, AttributionMode.LEGACY, TENANT)
            + aggregate(events, None, AttributionMode.SHOPIFY, TENANT)
        )

        rollup = rollup_monthly(rows)

        assert [(m.tenant_id, m.mode.value) for m in rollup] == [
            (TENANT, "legacy"),
            (TENANT, "shopify"),
            ("tenant-b", "shopify"),
        ]

    def test_invalid_date_skipped(self):
        good = aggregate([sale("1")], None, AttributionMode.SHOPIFY, TENANT)[0]
        bad = replace(good, date="2025-13-01")

        rollup = rollup_monthly([good, bad])

        assert len(rollup) == 1
        assert rollup[0].days == 1

    def test_no_rows_no_months(self):
        assert rollup_monthly([]) == []
