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

"""Validation of discount instruments (coupons and gift cards).

Validation never mutates the instrument. Coupon usage is counted separately
through `commit_coupon_usage`, and gift card balances are only redeemed when an
order is materialized.
"""

import dataclasses
import datetime
import logging
import re
from typing import Callable, Optional

import db
from enums import DiscountType
from enums import GiftCardStatus
from exceptions import CouponInvalidError
from exceptions import GiftCardInvalidError
from exceptions import InvalidRequestError
from models import CouponSummary
from models import CouponValidationRequest
from models import CouponValidationResponse
from services import pricing
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_GIFT_CARD_SHAPE = re.compile(r"^GC[A-Z0-9]{12}$")


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


@dataclasses.dataclass(frozen=True)
class ValidatedGiftCard:
  id: str
  code: str
  current_balance: int


def coupon_terms(coupon: db.Coupon) -> pricing.CouponTerms:
  return pricing.CouponTerms(
      discount_type=DiscountType(coupon.discount_type),
      discount_value=coupon.discount_value,
  )


def check_coupon_rules(
    coupon: db.Coupon, cart_total: int, now: datetime.datetime
) -> Optional[str]:
  """Applies the coupon eligibility rules in order.

  Args:
    coupon: The coupon found for the code.
    cart_total: The cart total in cents.
    now: The current time (timezone aware).

  Returns:
    The message of the first failing rule, or None if the coupon applies.
  """
  expires_at = db.parse_timestamp(coupon.expires_at)
  if expires_at and expires_at < now:
    return "This coupon has expired"

  starts_at = db.parse_timestamp(coupon.starts_at)
  if starts_at and starts_at > now:
    return "This coupon is not yet valid"

  if coupon.max_uses is not None and (coupon.current_uses or 0) >= (
      coupon.max_uses
  ):
    return "This coupon has reached its usage limit"

  minimum = coupon.minimum_order_amount or 0
  if cart_total < minimum:
    return f"Minimum order of {pricing.format_cents(minimum)} required"

  return None


def normalize_gift_card_code(code: str) -> str:
  """Normalizes user input to the stored GC-XXXX-XXXX-XXXX form."""
  compact = re.sub(r"[\s-]", "", code.upper())
  if _GIFT_CARD_SHAPE.match(compact):
    return f"GC-{compact[2:6]}-{compact[6:10]}-{compact[10:14]}"
  return compact


class DiscountService:
  """Looks up and validates coupons and gift cards for one store."""

  def __init__(
      self,
      session: AsyncSession,
      store_id: str,
      clock: Callable[[], datetime.datetime] = _utcnow,
  ):
    self.session = session
    self.store_id = store_id
    self.clock = clock

  async def validate_coupon(self, code: str, cart_total: int) -> db.Coupon:
    """Returns the coupon for `code` if it applies to a cart of `cart_total`.

    Raises:
      CouponInvalidError: With the message of the first failing rule.
    """
    coupon = await db.get_coupon_by_code(self.session, self.store_id, code)
    if not coupon:
      raise CouponInvalidError("Invalid coupon code")

    error = check_coupon_rules(coupon, cart_total, self.clock())
    if error:
      logger.info("Coupon %s rejected: %s", coupon.code, error)
      raise CouponInvalidError(error)
    return coupon

  async def validate_gift_card(self, code: str) -> ValidatedGiftCard:
    """Returns the gift card for `code` if it is active and has a balance.

    Raises:
      GiftCardInvalidError: If the card is unknown, disabled or empty.
    """
    gift_card = await db.get_gift_card_by_code(
        self.session, self.store_id, normalize_gift_card_code(code)
    )
    if not gift_card:
      raise GiftCardInvalidError("Invalid gift card code")

    if gift_card.status == GiftCardStatus.DISABLED.value:
      raise GiftCardInvalidError("This gift card has been disabled")

    if (
        gift_card.status == GiftCardStatus.EXHAUSTED.value
        or (gift_card.current_balance or 0) <= 0
    ):
      raise GiftCardInvalidError("This gift card has no remaining balance")

    return ValidatedGiftCard(
        id=gift_card.id,
        code=gift_card.code,
        current_balance=gift_card.current_balance,
    )

  async def commit_coupon_usage(self, coupon_id: str) -> bool:
    """Counts one use of a coupon and commits it.

    Returns:
      False if the coupon reached its cap in the meantime.
    """
    incremented = await db.increment_coupon_usage(self.session, coupon_id)
    await self.session.commit()
    if not incremented:
      logger.warning("Coupon %s hit its usage cap concurrently", coupon_id)
    return incremented

  async def validate_for_cart(
      self, request: CouponValidationRequest
  ) -> CouponValidationResponse:
    """Checks a coupon for the cart UI before checkout.

    The cart total and the returned discount are in major currency units.

    Raises:
      InvalidRequestError: If the code or cart total is missing or invalid.
    """
    if not request.code:
      raise InvalidRequestError("Coupon code is required")
    if request.cart_total is None or request.cart_total < 0:
      raise InvalidRequestError("Valid cart total is required")

    total = pricing.to_cents(request.cart_total)
    try:
      coupon = await self.validate_coupon(request.code, total)
    except CouponInvalidError as e:
      return CouponValidationResponse(valid=False, error=e.message)

    discount = pricing.coupon_discount(
        DiscountType(coupon.discount_type), coupon.discount_value, total
    )
    return CouponValidationResponse(
        valid=True,
        coupon=CouponSummary(
            code=coupon.code,
            description=coupon.description,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            discount_amount=pricing.to_major_units(discount),
        ),
    )
