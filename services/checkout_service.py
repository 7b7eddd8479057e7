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

"""Checkout service for opening hosted payment sessions.

This module provides the `CheckoutService` class, which turns a client cart
into a payment provider checkout session.

Key responsibilities include:
- Resolving cart lines against the catalog (prices always come from the
  database, never from the client).
- Validating stock for every line before anything else happens.
- Validating the coupon and gift card and pricing the cart with both.
- Encoding the cart as provider line items plus string metadata, so a paid
  session can be turned into an order without re-pricing.
- Counting coupon usage once the provider session exists.
"""

import datetime
import json
import logging
from typing import Dict, List, Optional, Tuple

import config
import db
from enums import CouponUsageCommit
from exceptions import ConfigurationError
from exceptions import InvalidRequestError
from models import CartLine
from models import CheckoutRequest
from services import pricing
from services import stock_service
from services.discount_service import coupon_terms
from services.discount_service import DiscountService
from services.discount_service import ValidatedGiftCard
from services.payment_provider import CheckoutSessionParams
from services.payment_provider import LineItemParams
from services.payment_provider import PaymentProvider
from services.stock_service import ResolvedLine
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.timezone.utc)


def _saved_address_json(address: db.CustomerAddress) -> str:
  return json.dumps({
      "first_name": address.first_name,
      "last_name": address.last_name,
      "line1": address.address_line1,
      "line2": address.address_line2,
      "city": address.city,
      "state": address.state,
      "postal_code": address.postal_code,
      "country": address.country,
  })


class CheckoutService:
  """Service for creating checkout sessions."""

  def __init__(
      self,
      session: AsyncSession,
      store_config: config.StoreConfig,
      payment_provider: PaymentProvider,
      clock=_utcnow,
  ):
    self.session = session
    self.store_config = store_config
    self.payment_provider = payment_provider
    self.discounts = DiscountService(session, store_config.store_id, clock)

  async def create_checkout_session(
      self,
      request: CheckoutRequest,
      bearer_token: Optional[str] = None,
      origin: Optional[str] = None,
  ) -> str:
    """Creates a hosted checkout session for a cart.

    Args:
      request: The cart plus optional coupon, gift card and saved address.
      bearer_token: Optional customer session token used for pre-fill.
      origin: Storefront origin for the redirect URLs.

    Returns:
      The URL of the hosted checkout page.

    Raises:
      ConfigurationError: If the payment provider is not configured.
      InvalidRequestError: If the cart is empty or references unknown items.
      InsufficientStockError: If any line exceeds tracked inventory.
      CouponInvalidError: If the coupon does not apply.
      GiftCardInvalidError: If the gift card cannot be used.
      PaymentProviderError: If the provider rejects the session.
    """
    if not self.store_config.stripe_secret_key:
      logger.error("Stripe secret key is not configured")
      raise ConfigurationError("Payment system not configured")

    if not request.items:
      raise InvalidRequestError("No items in cart")

    customer, saved_address = await self._resolve_customer(
        bearer_token, request.saved_address_id
    )
    logger.info(
        "Processing checkout: %d item(s), coupon=%s, gift card=%s,"
        " customer=%s, saved address=%s",
        len(request.items),
        bool(request.coupon_code),
        bool(request.gift_card_code),
        customer.id if customer else None,
        bool(saved_address),
    )

    lines = [await self._resolve_line(item) for item in request.items]
    stock_service.validate_stock(lines)

    total = pricing.cart_total((line.unit_price, line.quantity) for line in lines)

    coupon = None
    if request.coupon_code:
      coupon = await self.discounts.validate_coupon(request.coupon_code, total)

    gift_card: Optional[ValidatedGiftCard] = None
    if request.gift_card_code:
      gift_card = await self.discounts.validate_gift_card(
          request.gift_card_code
      )

    breakdown = pricing.price_cart(
        total,
        coupon_terms(coupon) if coupon else None,
        gift_card.current_balance if gift_card else None,
    )

    params = self._session_params(
        lines, breakdown, coupon, gift_card, customer, saved_address, origin
    )
    # Release the database before calling out to the provider.
    await self.session.commit()
    provider_session = await self.payment_provider.create_checkout_session(
        params
    )
    logger.info("Checkout session %s created", provider_session.id)

    if (
        coupon
        and self.store_config.coupon_usage_commit == CouponUsageCommit.SESSION
    ):
      await self.discounts.commit_coupon_usage(coupon.id)
      logger.info("Incremented usage for coupon %s", coupon.code)

    return provider_session.url

  async def _resolve_customer(
      self, token: Optional[str], address_id: Optional[str]
  ) -> Tuple[Optional[db.Customer], Optional[db.CustomerAddress]]:
    """Resolves the logged-in customer and their chosen saved address."""
    if not token:
      return None, None
    customer = await db.get_customer_by_token(
        self.session, token, self.store_config.store_id
    )
    if not customer:
      return None, None
    if not address_id:
      return customer, None
    address = await db.get_customer_address(
        self.session, customer.id, address_id
    )
    return customer, address

  async def _resolve_line(self, item: CartLine) -> ResolvedLine:
    product = await db.get_product(self.session, item.product_id)
    if not product or (
        self.store_config.store_id
        and product.store_id != self.store_config.store_id
    ):
      logger.warning("Product not found: %s", item.product_id)
      raise InvalidRequestError(f"Product not found: {item.product_id}")

    variant = None
    if item.variant_id:
      variant = await db.get_variant(self.session, item.variant_id)
      if not variant or variant.product_id != product.id:
        logger.warning("Variant not found: %s", item.variant_id)
        raise InvalidRequestError(f"Variant not found: {item.variant_id}")

    return ResolvedLine(product=product, quantity=item.quantity, variant=variant)

  def _session_params(
      self,
      lines: List[ResolvedLine],
      breakdown: pricing.PriceBreakdown,
      coupon: Optional[db.Coupon],
      gift_card: Optional[ValidatedGiftCard],
      customer: Optional[db.Customer],
      saved_address: Optional[db.CustomerAddress],
      origin: Optional[str],
  ) -> CheckoutSessionParams:
    """Builds the provider request for a validated, priced cart."""
    line_items = [
        LineItemParams(
            name=line.display_name,
            description=line.product.description or None,
            image=(line.product.images or [None])[0],
            unit_amount=line.unit_price,
            quantity=line.quantity,
            metadata={
                "product_id": line.product.id,
                "variant_id": line.variant.id if line.variant else "",
                "variant_name": line.variant.name if line.variant else "",
                "is_digital": "true" if line.is_digital else "false",
            },
        )
        for line in lines
    ]

    metadata: Dict[str, str] = {
        "store_id": self.store_config.store_id or "",
        "store_name": self.store_config.store_name,
    }
    if coupon:
      metadata["coupon_id"] = coupon.id
      metadata["coupon_code"] = coupon.code
      metadata["coupon_discount"] = str(breakdown.coupon_discount)
    if gift_card:
      metadata["gift_card_id"] = gift_card.id
      metadata["gift_card_code"] = gift_card.code
      metadata["gift_card_amount"] = str(breakdown.gift_card_applied)
    if customer:
      metadata["customer_id"] = customer.id
    if saved_address:
      metadata["saved_address_id"] = saved_address.id
      metadata["saved_address_json"] = _saved_address_json(saved_address)

    discount_names = []
    if coupon and breakdown.coupon_discount:
      discount_names.append(coupon.code)
    if gift_card and breakdown.gift_card_applied:
      discount_names.append(f"Gift card {gift_card.code}")

    has_physical = any(not line.is_digital for line in lines)
    shipping_countries = None
    if (
        has_physical
        and self.store_config.shipping_enabled
        and self.store_config.shipping_countries
        and not saved_address
    ):
      shipping_countries = list(self.store_config.shipping_countries)

    origin = (origin or self.store_config.app_url).rstrip("/")
    return CheckoutSessionParams(
        line_items=line_items,
        success_url=(
            f"{origin}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{origin}/cart",
        currency=self.store_config.currency,
        metadata=metadata,
        customer_email=customer.email if customer else None,
        discount_amount=breakdown.total_discount,
        discount_name=" + ".join(discount_names) or None,
        shipping_countries=shipping_countries,
        destination_account=self.store_config.stripe_account_id,
    )
