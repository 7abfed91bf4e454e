"""
Promo code discounts  (Strategy Pattern)
========================================

* ``fixed_amount`` -- subtract the value, never below zero.
* ``percentage``   -- subtract ``value`` percent of the amount.
* ``set_price``    -- the ride costs ``value`` (never more than the amount).

A promo that cannot be resolved is a derived-data gap: the caller gets an
invalid ``PromoResult`` with a description and carries on at full price.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .entities import PromoCode
from .enums import DiscountType
from .errors import ValidationError
from .pricing import round_money


# ── Strategy hierarchy ────────────────────────────────────────────────


class DiscountStrategy(ABC):
    def __init__(self, value: float):
        self.value = value

    @abstractmethod
    def final_amount(self, amount: float) -> float: ...


class FixedAmountDiscount(DiscountStrategy):
    def final_amount(self, amount: float) -> float:
        return max(0.0, amount - min(self.value, amount))


class PercentageDiscount(DiscountStrategy):
    def final_amount(self, amount: float) -> float:
        return max(0.0, amount - amount * self.value / 100)


class SetPriceDiscount(DiscountStrategy):
    def final_amount(self, amount: float) -> float:
        return max(0.0, min(self.value, amount))


STRATEGIES: dict[DiscountType, type[DiscountStrategy]] = {
    DiscountType.FIXED_AMOUNT: FixedAmountDiscount,
    DiscountType.PERCENTAGE: PercentageDiscount,
    DiscountType.SET_PRICE: SetPriceDiscount,
}


def strategy_for(discount_type: DiscountType | str, value: float) -> DiscountStrategy:
    try:
        kind = DiscountType(discount_type)
    except ValueError:
        raise ValidationError(f"Unknown discount type {discount_type!r}") from None
    if value < 0:
        raise ValidationError("Discount value cannot be negative")
    if kind is DiscountType.PERCENTAGE and value > 100:
        raise ValidationError("Percentage discount cannot exceed 100")
    return STRATEGIES[kind](value)


# ── Evaluation ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PromoResult:
    valid: bool
    description: str
    original_amount: float
    final_amount: float
    discount_amount: float
    code: Optional[str] = None


def _rejected(amount: float, description: str, code: Optional[str]) -> PromoResult:
    return PromoResult(False, description, amount, amount, 0.0, code)


def evaluate_promo(
    promo: Optional[PromoCode],
    amount: float,
    role: str,
    now: datetime,
) -> PromoResult:
    """Check eligibility and compute the discounted amount."""
    code = promo.code if promo else None
    if promo is None:
        return _rejected(amount, "Invalid promo code", code)
    if not promo.is_active:
        return _rejected(amount, "This promo code is no longer active", code)
    if promo.expires_at is not None and now > promo.expires_at:
        return _rejected(amount, "This promo code has expired", code)
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        return _rejected(amount, "This promo code has reached its usage limit", code)
    if promo.minimum_amount and amount < promo.minimum_amount:
        return _rejected(
            amount,
            f"Minimum order amount of ${promo.minimum_amount:.2f} required",
            code,
        )
    if role not in promo.applicable_roles:
        return _rejected(
            amount, "This promo code is not applicable to your account type", code
        )

    final = round_money(
        strategy_for(promo.discount_type, promo.discount_value).final_amount(amount)
    )
    return PromoResult(
        valid=True,
        description="Promo code applied successfully",
        original_amount=amount,
        final_amount=final,
        discount_amount=round_money(amount - final),
        code=code,
    )
