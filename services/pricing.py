#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Cart pricing with stacked discount instruments.

All amounts are integer cents. The discount order is fixed: the coupon applies
to the cart total first, then the gift card covers what remains. Every amount
is clamped so the payable total can never go negative.
"""

import dataclasses
import decimal
from typing import Iterable, Optional, Tuple

from enums import DiscountType

_CENT = decimal.Decimal("1")


@dataclasses.dataclass(frozen=True)
class CouponTerms:
  discount_type: DiscountType
  discount_value: int


@dataclasses.dataclass(frozen=True)
class PriceBreakdown:
  """Result of pricing a cart."""

  cart_total: int
  coupon_discount: int
  after_coupon: int
  gift_card_applied: int
  final_total: int

  @property
  def total_discount(self) -> int:
    return self.coupon_discount + self.gift_card_applied


def round_half_up(value: decimal.Decimal) -> int:
  return int(value.quantize(_CENT, rounding=decimal.ROUND_HALF_UP))


def _clamp(value: int, low: int, high: int) -> int:
  return max(low, min(value, high))


def resolve_unit_price(product_price: int, price_adjustment: int = 0) -> int:
  """Unit price of a line: product price plus the variant adjustment."""
  return max(0, product_price + (price_adjustment or 0))


def cart_total(lines: Iterable[Tuple[int, int]]) -> int:
  """Sums `unit_price * quantity` over (unit_price, quantity) pairs."""
  return sum(unit_price * quantity for unit_price, quantity in lines)


def coupon_discount(
    discount_type: DiscountType, discount_value: int, total: int
) -> int:
  """Computes a coupon's discount on a cart total.

  Args:
    discount_type: Percentage or fixed amount.
    discount_value: Percent for percentage coupons, cents for fixed ones.
    total: The cart total in cents.

  Returns:
    The discount in cents, within [0, total].
  """
  if total <= 0:
    return 0
  if DiscountType(discount_type) == DiscountType.PERCENTAGE:
    raw = round_half_up(
        decimal.Decimal(total) * decimal.Decimal(discount_value) / 100
    )
  else:
    raw = discount_value
  return _clamp(raw, 0, total)


def gift_card_applied(balance: int, remaining: int) -> int:
  """Portion of a gift card balance that covers the remaining amount."""
  return _clamp(min(balance, remaining), 0, max(remaining, 0))


def price_cart(
    total: int,
    coupon: Optional[CouponTerms] = None,
    gift_card_balance: Optional[int] = None,
) -> PriceBreakdown:
  """Applies the coupon, then the gift card, to a cart total."""
  total = max(total, 0)
  discount = (
      coupon_discount(coupon.discount_type, coupon.discount_value, total)
      if coupon
      else 0
  )
  after_coupon = total - discount
  applied = (
      gift_card_applied(gift_card_balance, after_coupon)
      if gift_card_balance is not None
      else 0
  )
  return PriceBreakdown(
      cart_total=total,
      coupon_discount=discount,
      after_coupon=after_coupon,
      gift_card_applied=applied,
      final_total=after_coupon - applied,
  )


def format_cents(cents: int) -> str:
  """Formats cents for display, e.g. 2500 -> "$25.00"."""
  return f"${decimal.Decimal(cents) / 100:.2f}"


def to_cents(amount: float) -> int:
  """Converts a major-unit amount to cents, rounding half-up."""
  return round_half_up(decimal.Decimal(str(amount)) * 100)


def to_major_units(cents: int) -> float:
  return float(decimal.Decimal(cents) / 100)
