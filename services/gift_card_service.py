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

"""Gift card purchase and validation.

Gift cards are bought through their own hosted checkout session, tagged with
`type=gift_card` in the session metadata. When that session is paid the card
is created exactly once (keyed by the purchase session id) and the purchaser
and recipient are notified.
"""

import logging
import re
import secrets
from typing import Optional

import config
import db
from enums import GiftCardStatus
from exceptions import ConfigurationError
from exceptions import GiftCardInvalidError
from exceptions import InvalidRequestError
from models import GiftCardCheckoutRequest
from models import GiftCardSummary
from models import GiftCardValidationRequest
from models import GiftCardValidationResponse
from services import pricing
from services.discount_service import DiscountService
from services.notification_service import GiftCardPurchase
from services.notification_service import NotificationService
from services.payment_provider import CheckoutSessionParams
from services.payment_provider import GIFT_CARD_SESSION_TYPE
from services.payment_provider import LineItemParams
from services.payment_provider import PaymentProvider
from services.payment_provider import ProviderSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Fixed denominations, in cents.
GIFT_CARD_AMOUNTS = (2500, 5000, 10000, 20000)

# No 0/O or 1/I.
_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CREATE_ATTEMPTS = 3


def generate_gift_card_code() -> str:
  """Returns a random code formatted GC-XXXX-XXXX-XXXX."""
  segments = [
      "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
      for _ in range(3)
  ]
  return "GC-" + "-".join(segments)


def _is_email(value: Optional[str]) -> bool:
  return bool(value and _EMAIL_PATTERN.match(value))


class GiftCardService:
  """Sells gift cards and reports their usable balance."""

  def __init__(
      self,
      session: AsyncSession,
      store_config: config.StoreConfig,
      payment_provider: PaymentProvider,
      notification_service: NotificationService,
  ):
    self.session = session
    self.store_config = store_config
    self.payment_provider = payment_provider
    self.notification_service = notification_service

  async def create_purchase_checkout(
      self, request: GiftCardCheckoutRequest, origin: Optional[str] = None
  ) -> str:
    """Opens a hosted checkout session for a gift card.

    Args:
      request: Amount, recipient and sender details.
      origin: Storefront origin for the redirect URLs.

    Returns:
      The URL of the hosted checkout page.
    """
    if not self.store_config.stripe_secret_key:
      logger.error("Stripe secret key is not configured")
      raise ConfigurationError("Payment system not configured")

    if request.amount not in GIFT_CARD_AMOUNTS:
      raise InvalidRequestError("Invalid gift card amount")
    if not _is_email(request.recipient_email):
      raise InvalidRequestError("Valid recipient email is required")
    if not _is_email(request.sender_email):
      raise InvalidRequestError("Valid sender email is required")

    store_name = self.store_config.store_name
    origin = (origin or self.store_config.app_url).rstrip("/")
    params = CheckoutSessionParams(
        line_items=[
            LineItemParams(
                name=f"{store_name} Gift Card",
                description=(
                    f"{pricing.format_cents(request.amount)} digital gift card"
                ),
                unit_amount=request.amount,
                quantity=1,
            )
        ],
        success_url=(
            f"{origin}/gift-cards/success?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{origin}/gift-cards",
        currency=self.store_config.currency,
        customer_email=request.sender_email,
        metadata={
            "type": GIFT_CARD_SESSION_TYPE,
            "store_id": self.store_config.store_id or "",
            "store_name": store_name,
            "gift_card_amount": str(request.amount),
            "recipient_email": request.recipient_email,
            "recipient_name": request.recipient_name or "",
            "sender_email": request.sender_email,
            "sender_name": request.sender_name or "",
            "gift_message": request.gift_message or "",
        },
        destination_account=self.store_config.stripe_account_id,
    )
    provider_session = await self.payment_provider.create_checkout_session(
        params
    )
    logger.info(
        "Gift card checkout session %s created for %s",
        provider_session.id,
        pricing.format_cents(request.amount),
    )
    return provider_session.url

  async def validate_for_cart(
      self, request: GiftCardValidationRequest
  ) -> GiftCardValidationResponse:
    """Reports a gift card's balance and how much of a cart it covers."""
    if not request.code:
      return GiftCardValidationResponse(
          valid=False, error="Gift card code is required"
      )
    if request.cart_total is None or request.cart_total < 0:
      return GiftCardValidationResponse(
          valid=False, error="Valid cart total is required"
      )

    discounts = DiscountService(self.session, self.store_config.store_id)
    try:
      gift_card = await discounts.validate_gift_card(request.code)
    except GiftCardInvalidError as e:
      return GiftCardValidationResponse(valid=False, error=e.message)

    applicable = pricing.gift_card_applied(
        gift_card.current_balance, pricing.to_cents(request.cart_total)
    )
    return GiftCardValidationResponse(
        valid=True,
        gift_card=GiftCardSummary(
            code=gift_card.code,
            balance=pricing.to_major_units(gift_card.current_balance),
            balance_formatted=pricing.format_cents(gift_card.current_balance),
            applicable_amount=pricing.to_major_units(applicable),
            applicable_amount_formatted=pricing.format_cents(applicable),
        ),
    )

  async def fulfil_purchase(
      self, provider_session: ProviderSession
  ) -> Optional[str]:
    """Creates the purchased gift card once and delivers it.

    Args:
      provider_session: The paid gift card checkout session.

    Returns:
      The gift card id, or None if the session metadata is incomplete.
    """
    existing = await db.get_gift_card_by_purchase_session(
        self.session, provider_session.id
    )
    if existing:
      logger.info(
          "Gift card already issued for session %s", provider_session.id
      )
      return existing.id

    metadata = provider_session.metadata
    try:
      amount = int(metadata.get("gift_card_amount") or 0)
    except ValueError:
      amount = 0
    purchase = GiftCardPurchase(
        amount=amount,
        recipient_email=metadata.get("recipient_email") or "",
        sender_email=metadata.get("sender_email") or "",
        recipient_name=metadata.get("recipient_name") or None,
        sender_name=metadata.get("sender_name") or None,
        gift_message=metadata.get("gift_message") or None,
    )
    if not purchase.amount or not purchase.recipient_email or (
        not purchase.sender_email
    ):
      logger.error(
          "Gift card session %s is missing purchase metadata",
          provider_session.id,
      )
      return None

    gift_card = await self._create_gift_card(provider_session.id, purchase)
    if gift_card is None:
      existing = await db.get_gift_card_by_purchase_session(
          self.session, provider_session.id
      )
      return existing.id if existing else None

    logger.info(
        "Gift card %s issued for %s",
        gift_card.id,
        pricing.format_cents(purchase.amount),
    )
    await self._deliver(gift_card, purchase)
    return gift_card.id

  async def _create_gift_card(
      self, purchase_session_id: str, purchase: GiftCardPurchase
  ) -> Optional[db.GiftCard]:
    """Inserts the card, returning None if another request already did."""
    for _ in range(_CREATE_ATTEMPTS):
      gift_card = db.GiftCard(
          id=db.new_id(),
          store_id=self.store_config.store_id,
          code=generate_gift_card_code(),
          original_amount=purchase.amount,
          current_balance=purchase.amount,
          status=GiftCardStatus.ACTIVE.value,
          purchased_by_email=purchase.sender_email,
          purchased_by_name=purchase.sender_name,
          recipient_email=purchase.recipient_email,
          recipient_name=purchase.recipient_name,
          gift_message=purchase.gift_message,
          purchase_session_id=purchase_session_id,
          created_at=db.utcnow_iso(),
      )
      self.session.add(gift_card)
      try:
        await self.session.commit()
        return gift_card
      except IntegrityError:
        await self.session.rollback()
        if await db.get_gift_card_by_purchase_session(
            self.session, purchase_session_id
        ):
          return None
        logger.info("Gift card code collision, generating a new code")
    raise RuntimeError("Could not generate a unique gift card code")

  async def _deliver(
      self, gift_card: db.GiftCard, purchase: GiftCardPurchase
  ) -> None:
    try:
      await self.notification_service.send_gift_card_purchase_confirmation(
          purchase
      )
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to send gift card purchase confirmation: %s", e)

    try:
      delivered = await self.notification_service.send_gift_card_delivery(
          purchase, gift_card.code
      )
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to send gift card %s: %s", gift_card.id, e)
      return

    if delivered:
      gift_card.email_sent_at = db.utcnow_iso()
      await self.session.commit()
      logger.info("Gift card %s delivered", gift_card.id)
