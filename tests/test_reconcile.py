from dataclasses import replace
from decimal import Decimal

from grocer.cart import add_line, cart_totals, reconcile
from grocer.domain import Cart
from grocer.pricing import ProductDiscount, Percentage
from tests.conftest import NOW, make_catalog, ok


def catalog():
    return {p.id: p for p in make_catalog()}


def filled_cart():
    products = catalog()
    cart = Cart.empty("u1")
    cart = ok(add_line(cart, products["rice"], "rice", 2, NOW, "l1"))
    cart = ok(add_line(cart, products["milk"], "milk", 3, NOW, "l2"))
    return cart


def assert_aggregates(cart: Cart) -> None:
    subtotal = sum(ln.price_at_addition * ln.quantity for ln in cart.lines)
    total = sum(ln.current_price * ln.quantity for ln in cart.lines)
    assert abs(cart.subtotal - subtotal) < Decimal("0.01")
    assert abs(cart.total - total) < Decimal("0.01")
    assert cart.discounts == cart.subtotal - cart.total


class TestAddScenario:
    def test_discounted_product_added_at_live_price(self):
        products = catalog()
        cart = ok(add_line(Cart.empty("u1"), products["rice"], "rice", 2, NOW, "l1"))

        line = cart.lines[0]
        assert line.price_at_addition == Decimal("80.00")
        assert line.current_price == Decimal("80.00")
        assert line.discount_applied == ProductDiscount(Percentage(Decimal("20")))
        assert cart.subtotal == Decimal("160.00")
        assert cart.total == Decimal("160.00")
        assert cart.discounts == Decimal("0.00")


class TestReconcile:
    def test_clean_cart_unchanged(self):
        cart = filled_cart()
        view = reconcile(cart, catalog(), NOW)

        assert view.is_clean
        assert not view.changed
        assert view.cart.last_reconciled_at == NOW
        assert view.cart.total == Decimal("340.00")

    def test_price_increase_flags_drift_without_repricing(self):
        products = catalog()
        products["milk"] = replace(products["milk"], base_price=Decimal("65"))

        view = reconcile(filled_cart(), products, NOW)

        assert view.changed
        assert [r.line_id for r in view.price_drifts] == ["l2"]
        report = view.report("l2")
        assert report.stored_price == Decimal("60.00")
        assert report.live_price == Decimal("65.00")
        line = view.cart.line("l2")
        assert line.price_drift
        assert line.current_price == Decimal("60.00")
        assert view.cart.total == Decimal("340.00")

    def test_discount_expiry_is_drift(self):
        products = catalog()
        products["rice"] = replace(products["rice"], discount=None)

        view = reconcile(filled_cart(), products, NOW)

        assert view.report("l1").live_price == Decimal("100.00")
        assert view.cart.line("l1").price_drift

    def test_sub_cent_change_is_not_drift(self):
        products = catalog()
        products["milk"] = replace(products["milk"], base_price=Decimal("60.004"))

        view = reconcile(filled_cart(), products, NOW)

        assert not view.price_drifts
        assert not view.changed

    def test_drift_flag_clears_when_price_returns(self):
        products = catalog()
        products["milk"] = replace(products["milk"], base_price=Decimal("65"))
        drifted = reconcile(filled_cart(), products, NOW).cart

        view = reconcile(drifted, catalog(), NOW)

        assert view.changed
        assert not view.cart.line("l2").price_drift

    def test_is_idempotent(self):
        products = catalog()
        products["milk"] = replace(products["milk"], base_price=Decimal("65"), stock=1)

        first = reconcile(filled_cart(), products, NOW)
        second = reconcile(first.cart, products, NOW)

        assert not second.changed
        assert second.cart == first.cart

    def test_stock_drift_reported(self):
        products = catalog()
        products["milk"] = replace(products["milk"], stock=2)

        view = reconcile(filled_cart(), products, NOW)

        [report] = view.stock_drifts
        assert report.line_id == "l2"
        assert report.available == 2
        assert report.quantity == 3
        assert not view.changed

    def test_orphaned_line_excluded_from_totals(self):
        products = catalog()
        del products["rice"]

        view = reconcile(filled_cart(), products, NOW)

        [orphan] = view.orphaned
        assert orphan.line_id == "l1"
        assert orphan.live_price is None
        assert len(view.cart.lines) == 2
        assert view.cart.subtotal == Decimal("180.00")
        assert view.cart.total == Decimal("180.00")

    def test_empty_cart(self):
        view = reconcile(Cart.empty("u1"), {}, NOW)
        assert view.is_clean
        assert view.cart.total == Decimal("0.00")


class TestTotals:
    def test_rounded_after_summation(self):
        cart = filled_cart()
        lines = [
            replace(cart.lines[0], price_at_addition=Decimal("0.335"), quantity=3),
        ]
        totals = cart_totals(lines)
        # 1.005 rounds once, to 1.01
        assert totals.subtotal == Decimal("1.01")

    def test_aggregates_after_add(self):
        assert_aggregates(filled_cart())
