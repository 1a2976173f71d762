"""
Unit Tests - Refund Attribution
"""
from decimal import Decimal

from sales_analytics.transformation.models import EventDateBasis, Transaction
from sales_analytics.transformation.money import quantize_money
from sales_analytics.transformation.refunds import attribute_refunds, refund_instant

from tests.conftest import STORE_TZ, utc


class TestRefundInstant:
    """Tests for refund_instant"""

    def test_created_at_basis(self, make_refund):
        refund = make_refund(created_at=utc(2025, 1, 20))
        assert refund_instant(refund, EventDateBasis.CREATED_AT) == utc(2025, 1, 20)

    def test_processed_at_uses_first_successful_refund_transaction(self, make_refund):
        refund = make_refund(
            created_at=utc(2025, 1, 20),
            transactions=[
                Transaction(kind="refund", status="failure", processed_at=utc(2025, 1, 21)),
                Transaction(kind="refund", status="success", processed_at=utc(2025, 1, 23)),
                Transaction(kind="REFUND", status="SUCCESS", processed_at=utc(2025, 1, 22)),
            ],
        )
        assert refund_instant(refund, EventDateBasis.PROCESSED_AT) == utc(2025, 1, 22)

    def test_processed_at_falls_back_to_created_at(self, make_refund):
        refund = make_refund(created_at=utc(2025, 1, 20))
        assert refund_instant(refund, EventDateBasis.PROCESSED_AT) == utc(2025, 1, 20)


class TestAttributeRefunds:
    """Tests for attribute_refunds"""

    def test_refund_dated_independently_of_order(self, make_order, make_refund):
        """Test a refund lands on its own store-local day"""
        refund = make_refund(
            created_at=utc(2025, 1, 20, 23, 30),
            lines=[{"line_item_id": "li-1", "quantity": 1, "subtotal": "30.00"}],
        )
        order = make_order(subtotal="84.00", tax="14.00", refunds=[refund])

        attribution = attribute_refunds(order, STORE_TZ)

        assert len(attribution.lines) == 1
        line = attribution.lines[0]
        assert line.occurred_on == "2025-01-21"
        assert line.amount_excl_tax == Decimal("30.00")
        assert attribution.total_excl_tax == Decimal("30.00")
        assert attribution.failures == ()

    def test_line_tax_from_order_rate(self, make_order, make_refund):
        """Test an unreported line tax is priced at the order's tax-exclusive rate"""
        refund = make_refund(
            created_at=utc(2025, 1, 20),
            lines=[{"line_item_id": "li-1", "quantity": 1, "subtotal": "30.00"}],
        )
        order = make_order(subtotal="84.00", tax="14.00", refunds=[refund])

        attribution = attribute_refunds(order, STORE_TZ)

        assert attribution.lines[0].tax == Decimal("6.00")
        assert attribution.total_tax == Decimal("6.00")

    def test_reported_line_tax_wins(self, make_order, make_refund):
        refund = make_refund(
            created_at=utc(2025, 1, 20),
            lines=[{"line_item_id": "li-1", "quantity": 1, "subtotal": "30.00", "tax": "7.50"}],
        )
        order = make_order(subtotal="84.00", tax="14.00", refunds=[refund])

        assert attribute_refunds(order, STORE_TZ).lines[0].tax == Decimal("7.50")

    def test_untaxed_order_refunds_no_tax(self, make_order, make_refund):
        refund = make_refund(created_at=utc(2025, 1, 20), lines=[{"line_item_id": "li-1", "subtotal": "30.00"}])
        order = make_order(subtotal="70.00", tax="0.00", refunds=[refund])

        assert attribute_refunds(order, STORE_TZ).total_tax == 0

    def test_processed_at_basis(self, make_order, make_refund):
        refund = make_refund(
            created_at=utc(2025, 1, 20),
            lines=[{"line_item_id": "li-1", "subtotal": "10.00"}],
            transactions=[Transaction(kind="refund", status="success", processed_at=utc(2025, 1, 22))],
        )
        order = make_order(refunds=[refund])

        created = attribute_refunds(order, STORE_TZ, EventDateBasis.CREATED_AT)
        processed = attribute_refunds(order, STORE_TZ, EventDateBasis.PROCESSED_AT)

        assert created.lines[0].occurred_on == "2025-01-20"
        assert processed.lines[0].occurred_on == "2025-01-22"

    def test_missing_subtotal_uses_original_price(self, make_order, make_line, make_refund):
        """Test fallback to unit price times quantity, stripped of tax"""
        refund = make_refund(
            created_at=utc(2025, 1, 20),
            lines=[{"line_item_id": "a", "quantity": 2}],
        )
        order = make_order(
            subtotal="125.00", tax="25.00",
            lines=[make_line("a", price="30.00", quantity=3), make_line("b", price="35.00")],
            refunds=[refund],
        )

        attribution = attribute_refunds(order, STORE_TZ)

        assert attribution.lines[0].amount_excl_tax == Decimal("50.00")
        assert attribution.lines[0].tax == Decimal("10.00")
        assert attribution.lines[0].quantity == 2

    def test_missing_subtotal_untaxed_order(self, make_order, make_line, make_refund):
        refund = make_refund(created_at=utc(2025, 1, 20), lines=[{"line_item_id": "a", "quantity": 1}])
        order = make_order(subtotal="40.00", tax="0.00", lines=[make_line("a", price="40.00")], refunds=[refund])

        assert attribute_refunds(order, STORE_TZ).lines[0].amount_excl_tax == Decimal("40.00")

    def test_unknown_line_refunds_nothing(self, make_order, make_refund):
        """Test a refund line pointing at no order line"""
        refund = make_refund(created_at=utc(2025, 1, 20), lines=[{"line_item_id": "ghost", "quantity": 1}])
        order = make_order(refunds=[refund])

        attribution = attribute_refunds(order, STORE_TZ)

        assert attribution.lines[0].amount_excl_tax == Decimal("0")
        assert attribution.total_excl_tax == Decimal("0")

    def test_shipping_only_refund(self, make_order, make_refund):
        """Test a refund without lines becomes an order-level refund"""
        refund = make_refund("r-ship", created_at=utc(2025, 1, 18), total_refunded="49.00")
        order = make_order(refunds=[refund])

        attribution = attribute_refunds(order, STORE_TZ)

        assert attribution.lines == ()
        assert len(attribution.order_level) == 1
        assert attribution.order_level[0].amount == Decimal("49.00")
        assert attribution.order_level[0].occurred_on == "2025-01-18"
        assert attribution.total_excl_tax == Decimal("0")

    def test_order_level_amount_from_transactions(self, make_order, make_refund):
        refund = make_refund(
            created_at=utc(2025, 1, 18),
            transactions=[
                Transaction(kind="refund", status="success", processed_at=utc(2025, 1, 18), amount=Decimal("10.00")),
                Transaction(kind="refund", status="error", processed_at=utc(2025, 1, 18), amount=Decimal("99.00")),
            ],
        )
        order = make_order(refunds=[refund])

        assert attribute_refunds(order, STORE_TZ).order_level[0].amount == Decimal("10.00")

    def test_empty_refund_is_ignored(self, make_order, make_refund):
        order = make_order(refunds=[make_refund(created_at=utc(2025, 1, 18))])

        attribution = attribute_refunds(order, STORE_TZ)

        assert attribution.lines == ()
        assert attribution.order_level == ()

    def test_undatable_refund_is_reported(self, make_order, make_refund):
        """Test a refund without a timestamp is recorded as a failure"""
        undated = make_refund("r-bad", created_at=None, lines=[{"line_item_id": "li-1", "subtotal": "12.00"}])
        dated = make_refund("r-ok", created_at=utc(2025, 1, 20), lines=[{"line_item_id": "li-1", "subtotal": "5.00"}])
        order = make_order(refunds=[undated, dated])

        attribution = attribute_refunds(order, STORE_TZ)

        assert [f.refund_id for f in attribution.failures] == ["r-bad"]
        assert attribution.failures[0].amount_excl_tax == Decimal("12.00")
        assert attribution.dated_excl_tax == Decimal("5.00")
        assert attribution.total_tax == Decimal("3.40")
        # Undated refunds still count towards what gross adds back
        assert attribution.total_excl_tax == Decimal("17.00")

    def test_by_date_groups_ascending(self, make_order, make_refund):
        later = make_refund("r-2", created_at=utc(2025, 1, 25), lines=[{"line_item_id": "li-1", "subtotal": "1.00"}])
        earlier = make_refund("r-1", created_at=utc(2025, 1, 20), lines=[{"line_item_id": "li-1", "subtotal": "2.00"}])
        shipping = make_refund("r-3", created_at=utc(2025, 1, 20, 15), total_refunded="4.90")
        order = make_order(refunds=[later, earlier, shipping])

        grouped = attribute_refunds(order, STORE_TZ).by_date()

        assert list(grouped) == ["2025-01-20", "2025-01-25"]
        lines, order_level = grouped["2025-01-20"]
        assert quantize_money(sum(l.amount_excl_tax for l in lines)) == Decimal("2.00")
        assert [r.refund_id for r in order_level] == ["r-3"]
