from datetime import timedelta
from decimal import Decimal

import pytest

from grocer.pricing import (
    ZERO,
    Fixed,
    Percentage,
    ProductDiscount,
    apply_rule,
    effective_price,
    price_drifted,
    round_money,
    rule_of,
    to_decimal,
    to_money,
)
from tests.conftest import NOW


class TestMoney:
    def test_rounds_half_up(self):
        assert round_money(Decimal("10.005")) == Decimal("10.01")
        assert round_money(Decimal("10.004")) == Decimal("10.00")
        assert to_money("2.675") == Decimal("2.68")

    def test_bad_input_becomes_zero(self):
        assert to_money(None) == ZERO
        assert to_money(float("nan")) == ZERO
        assert to_money("not a number") == ZERO
        assert to_money(float("inf")) == ZERO

    def test_bool_is_not_a_number(self):
        assert to_decimal(True) is None


class TestEffectivePrice:
    def test_percentage_discount(self):
        discount = ProductDiscount(Percentage(Decimal("20")))
        assert effective_price(Decimal("100"), discount, NOW) == Decimal("80.00")

    def test_fixed_discount(self):
        discount = ProductDiscount(Fixed(Decimal("30")))
        assert effective_price(Decimal("180"), discount, NOW) == Decimal("150.00")

    def test_no_discount_is_base_price(self):
        assert effective_price(Decimal("59.999"), None, NOW) == Decimal("60.00")

    def test_expired_discount_ignored(self):
        discount = ProductDiscount(Percentage(Decimal("20")), expires_at=NOW)
        assert effective_price(Decimal("100"), discount, NOW) == Decimal("100.00")

    def test_future_expiry_applies(self):
        discount = ProductDiscount(
            Percentage(Decimal("20")), expires_at=NOW + timedelta(seconds=1)
        )
        assert effective_price(Decimal("100"), discount, NOW) == Decimal("80.00")

    def test_fixed_larger_than_base_floors_at_zero(self):
        discount = ProductDiscount(Fixed(Decimal("500")))
        assert effective_price(Decimal("100"), discount, NOW) == ZERO

    def test_percentage_above_hundred_floors_at_zero(self):
        discount = ProductDiscount(Percentage(Decimal("150")))
        assert effective_price(Decimal("100"), discount, NOW) == ZERO

    def test_non_numeric_magnitude_means_no_discount(self):
        discount = ProductDiscount(rule_of("percentage", "lots"))
        assert effective_price(Decimal("100"), discount, NOW) == Decimal("100.00")

    def test_negative_magnitude_means_no_discount(self):
        discount = ProductDiscount(Fixed(Decimal("-10")))
        assert effective_price(Decimal("100"), discount, NOW) == Decimal("100.00")

    def test_rounding_happens_once(self):
        # 99.99 × 0.85 = 84.9915
        discount = ProductDiscount(Percentage(Decimal("15")))
        assert effective_price(Decimal("99.99"), discount, NOW) == Decimal("84.99")

    @pytest.mark.parametrize(
        "rule",
        [
            Percentage(Decimal("0")),
            Percentage(Decimal("33.3")),
            Percentage(Decimal("100")),
            Fixed(Decimal("0.01")),
            Fixed(Decimal("99.99")),
            Fixed(Decimal("1000")),
        ],
    )
    @pytest.mark.parametrize("base", ["0.01", "1", "49.95", "100", "12345.67"])
    def test_bounded_by_zero_and_base(self, rule, base):
        price = effective_price(Decimal(base), ProductDiscount(rule), NOW)
        assert ZERO <= price <= Decimal(base)


class TestApplyRule:
    def test_result_is_not_rounded(self):
        assert apply_rule(Decimal("10"), Percentage(Decimal("33"))) == Decimal("6.70")
        assert apply_rule(Decimal("1.005"), Fixed(Decimal("0"))) == Decimal("1.005")


class TestRuleOf:
    def test_wire_names(self):
        assert rule_of("percentage", "10") == Percentage(Decimal("10"))
        assert rule_of("fixed", 25) == Fixed(Decimal("25"))

    def test_unknown_kind_raises(self):
        with pytest.raises(ValueError):
            rule_of("bogo", 1)


class TestDrift:
    def test_one_cent_is_drift(self):
        assert price_drifted(Decimal("80.01"), Decimal("80.00"))

    def test_sub_cent_noise_is_not_drift(self):
        assert not price_drifted(Decimal("80.004"), Decimal("80.00"))

    def test_equal_prices(self):
        assert not price_drifted(Decimal("80"), Decimal("80.00"))

    def test_custom_epsilon(self):
        assert not price_drifted(Decimal("80.50"), Decimal("80.00"), Decimal("1"))
        assert price_drifted(Decimal("81.00"), Decimal("80.00"), Decimal("1"))
