"""
Discount rules — tagged union of percentage and fixed reductions.

    rule = Percentage(Decimal("10"))           # 10% off
    rule = Fixed(Decimal("25"))                # 25 off
    discount = ProductDiscount(rule, expires_at=tomorrow)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from grocer.pricing._money import to_decimal

# ═══════════════════════════════════════════════════════════════════════════════
# Rule Kind
# ═══════════════════════════════════════════════════════════════════════════════


class DiscountKind(StrEnum):
    """Wire names of the two rule shapes."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


# ═══════════════════════════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Percentage:
    """Reduce by magnitude percent. Magnitudes above 100 floor the price at 0."""

    magnitude: Decimal

    @property
    def kind(self) -> DiscountKind:
        return DiscountKind.PERCENTAGE


@dataclass(frozen=True, slots=True)
class Fixed:
    """Reduce by a flat amount."""

    magnitude: Decimal

    @property
    def kind(self) -> DiscountKind:
        return DiscountKind.FIXED


type DiscountRule = Percentage | Fixed


def rule_of(kind: str | DiscountKind, magnitude: object) -> DiscountRule:
    """
    Build a rule from its wire form.

    Non-numeric magnitudes are kept as NaN so that pricing treats
    the rule as "no discount" instead of failing.

        rule_of("percentage", "10")  # Percentage(Decimal("10"))
    """
    value = to_decimal(magnitude)  # type: ignore[arg-type]
    normalized = value if value is not None else Decimal("NaN")
    match DiscountKind(kind):
        case DiscountKind.PERCENTAGE:
            return Percentage(normalized)
        case DiscountKind.FIXED:
            return Fixed(normalized)


# ═══════════════════════════════════════════════════════════════════════════════
# Product Discount — rule + optional expiry
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ProductDiscount:
    """
    Discount attached to a product.

    Note: expires_at is exclusive. A rule with expires_at <= now is expired.
    """

    rule: DiscountRule
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    "DiscountKind",
    "Percentage",
    "Fixed",
    "DiscountRule",
    "rule_of",
    "ProductDiscount",
)
