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

"""Payment provider adapter.

The services talk to the payment provider only through `PaymentProvider` and
the plain dataclasses defined here. `StripePaymentProvider` is the production
implementation backed by the `stripe` library; tests substitute a fake.

Provider events are exposed as a closed union:

  PaymentEvent = CheckoutCompleted | OtherEvent
"""

import abc
import dataclasses
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from exceptions import MalformedPayloadError
from exceptions import PaymentProviderError
from exceptions import WebhookSignatureError
import stripe

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
GIFT_CARD_SESSION_TYPE = "gift_card"

# Seconds a signed webhook timestamp stays acceptable.
SIGNATURE_TOLERANCE = 300


@dataclasses.dataclass(frozen=True)
class ProviderLineItem:
  """A paid line item as reported by the provider."""

  description: str
  quantity: int
  unit_amount: int
  metadata: Dict[str, str] = dataclasses.field(default_factory=dict)

  @property
  def product_id(self) -> Optional[str]:
    return self.metadata.get("product_id") or None

  @property
  def variant_id(self) -> Optional[str]:
    return self.metadata.get("variant_id") or None

  @property
  def variant_name(self) -> Optional[str]:
    return self.metadata.get("variant_name") or None

  @property
  def is_digital(self) -> bool:
    return self.metadata.get("is_digital") == "true"


# Zero-total sessions complete without a charge.
SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")


@dataclasses.dataclass(frozen=True)
class ProviderSession:
  """The provider's view of a checkout session."""

  id: str
  payment_status: str
  url: Optional[str] = None
  payment_intent_id: Optional[str] = None
  customer_email: str = ""
  customer_name: str = ""
  shipping_address: Optional[Dict[str, Optional[str]]] = None
  amount_subtotal: int = 0
  amount_total: int = 0
  amount_tax: int = 0
  amount_shipping: int = 0
  amount_discount: int = 0
  currency: str = "usd"
  metadata: Dict[str, str] = dataclasses.field(default_factory=dict)

  @property
  def is_paid(self) -> bool:
    return self.payment_status in SETTLED_PAYMENT_STATUSES

  @property
  def is_gift_card_purchase(self) -> bool:
    return self.metadata.get("type") == GIFT_CARD_SESSION_TYPE


@dataclasses.dataclass(frozen=True)
class CheckoutCompleted:
  session: ProviderSession


@dataclasses.dataclass(frozen=True)
class OtherEvent:
  type: str


PaymentEvent = Union[CheckoutCompleted, OtherEvent]


@dataclasses.dataclass
class LineItemParams:
  name: str
  unit_amount: int
  quantity: int
  description: Optional[str] = None
  image: Optional[str] = None
  metadata: Dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class CheckoutSessionParams:
  """Everything needed to open a hosted checkout session."""

  line_items: List[LineItemParams]
  success_url: str
  cancel_url: str
  currency: str = "usd"
  metadata: Dict[str, str] = dataclasses.field(default_factory=dict)
  customer_email: Optional[str] = None
  # One fresh provider-side discount, in cents. Zero means no discount.
  discount_amount: int = 0
  discount_name: Optional[str] = None
  # Countries for shipping-address collection, None to skip the form.
  shipping_countries: Optional[Sequence[str]] = None
  destination_account: Optional[str] = None


class PaymentProvider(abc.ABC):
  """Interface to the hosted payment provider."""

  @abc.abstractmethod
  async def create_checkout_session(
      self, params: CheckoutSessionParams
  ) -> ProviderSession:
    """Creates a hosted checkout session and returns it (with its URL)."""

  @abc.abstractmethod
  async def retrieve_session(self, session_id: str) -> ProviderSession:
    """Fetches a checkout session by id."""

  @abc.abstractmethod
  async def list_line_items(self, session_id: str) -> List[ProviderLineItem]:
    """Fetches the authoritative line items of a checkout session."""

  @abc.abstractmethod
  def construct_event(self, payload: bytes, signature: str) -> PaymentEvent:
    """Verifies a webhook signature and decodes the event.

    Raises:
      WebhookSignatureError: If the signature is missing or invalid.
      MalformedPayloadError: If the verified body is not a valid event.
    """


def _address(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
  if not data:
    return None
  return {
      key: data.get(key) or None
      for key in ("line1", "line2", "city", "state", "postal_code", "country")
  }


def session_from_dict(data: Dict[str, Any]) -> ProviderSession:
  """Builds a ProviderSession from a decoded checkout session object."""
  customer = data.get("customer_details") or {}
  totals = data.get("total_details") or {}
  # Newer API versions nest shipping details under collected_information.
  shipping = data.get("shipping_details") or (
      (data.get("collected_information") or {}).get("shipping_details")
  )
  payment_intent = data.get("payment_intent")
  if isinstance(payment_intent, dict):
    payment_intent = payment_intent.get("id")

  return ProviderSession(
      id=data["id"],
      payment_status=data.get("payment_status") or "unpaid",
      url=data.get("url"),
      payment_intent_id=payment_intent,
      customer_email=customer.get("email") or "",
      customer_name=customer.get("name") or "",
      shipping_address=_address((shipping or {}).get("address")),
      amount_subtotal=data.get("amount_subtotal") or 0,
      amount_total=data.get("amount_total") or 0,
      amount_tax=totals.get("amount_tax") or 0,
      amount_shipping=totals.get("amount_shipping") or 0,
      amount_discount=totals.get("amount_discount") or 0,
      currency=data.get("currency") or "usd",
      metadata={k: str(v) for k, v in (data.get("metadata") or {}).items()},
  )


def line_item_from_dict(data: Dict[str, Any]) -> ProviderLineItem:
  """Builds a ProviderLineItem from a line item with an expanded product."""
  price = data.get("price") or {}
  product = price.get("product")
  if not isinstance(product, dict):
    product = {}
  return ProviderLineItem(
      description=data.get("description") or product.get("name")
      or "Unknown Product",
      quantity=data.get("quantity") or 1,
      unit_amount=price.get("unit_amount") or 0,
      metadata={k: str(v) for k, v in (product.get("metadata") or {}).items()},
  )


def event_from_dict(event: Dict[str, Any]) -> PaymentEvent:
  """Maps a decoded provider event onto the PaymentEvent union."""
  try:
    event_type = event["type"]
    if event_type == CHECKOUT_COMPLETED:
      return CheckoutCompleted(session=session_from_dict(event["data"]["object"]))
  except (KeyError, TypeError) as e:
    raise MalformedPayloadError() from e
  return OtherEvent(type=event_type)


def _to_plain(stripe_object: Any) -> Dict[str, Any]:
  return json.loads(str(stripe_object))


class StripePaymentProvider(PaymentProvider):
  """PaymentProvider backed by Stripe Checkout."""

  def __init__(self, api_key: str, webhook_secret: Optional[str] = None):
    self.api_key = api_key
    self.webhook_secret = webhook_secret

  def _session_params(
      self, params: CheckoutSessionParams, coupon_id: Optional[str]
  ) -> Dict[str, Any]:
    line_items = []
    for item in params.line_items:
      product_data: Dict[str, Any] = {
          "name": item.name,
          "metadata": item.metadata,
      }
      if item.description:
        product_data["description"] = item.description
      if item.image:
        product_data["images"] = [item.image]
      line_items.append({
          "price_data": {
              "currency": params.currency,
              "product_data": product_data,
              "unit_amount": item.unit_amount,
          },
          "quantity": item.quantity,
      })

    session_params: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": line_items,
        "success_url": params.success_url,
        "cancel_url": params.cancel_url,
        "metadata": params.metadata,
    }
    if params.customer_email:
      session_params["customer_email"] = params.customer_email
    if coupon_id:
      session_params["discounts"] = [{"coupon": coupon_id}]
    if params.shipping_countries:
      session_params["shipping_address_collection"] = {
          "allowed_countries": list(params.shipping_countries)
      }
    if params.destination_account:
      session_params["payment_intent_data"] = {
          "transfer_data": {"destination": params.destination_account}
      }
    return session_params

  async def create_checkout_session(
      self, params: CheckoutSessionParams
  ) -> ProviderSession:
    try:
      coupon_id = None
      if params.discount_amount > 0:
        coupon = await stripe.Coupon.create_async(
            api_key=self.api_key,
            amount_off=params.discount_amount,
            currency=params.currency,
            duration="once",
            name=params.discount_name or "Discount",
        )
        coupon_id = coupon.id
        logger.info("Created provider discount %s", coupon_id)

      session = await stripe.checkout.Session.create_async(
          api_key=self.api_key, **self._session_params(params, coupon_id)
      )
    except stripe.StripeError as e:
      logger.error("Stripe session creation failed: %s", e)
      raise PaymentProviderError("Failed to create checkout session") from e
    return session_from_dict(_to_plain(session))

  async def retrieve_session(self, session_id: str) -> ProviderSession:
    try:
      session = await stripe.checkout.Session.retrieve_async(
          session_id, api_key=self.api_key
      )
    except stripe.StripeError as e:
      logger.error("Failed to retrieve session %s: %s", session_id, e)
      raise PaymentProviderError("Failed to retrieve checkout session") from e
    return session_from_dict(_to_plain(session))

  async def list_line_items(self, session_id: str) -> List[ProviderLineItem]:
    try:
      items = await stripe.checkout.Session.list_line_items_async(
          session_id,
          api_key=self.api_key,
          limit=100,
          expand=["data.price.product"],
      )
    except stripe.StripeError as e:
      logger.error("Failed to list line items of %s: %s", session_id, e)
      raise PaymentProviderError("Failed to list line items") from e
    return [line_item_from_dict(item) for item in _to_plain(items)["data"]]

  def construct_event(self, payload: bytes, signature: str) -> PaymentEvent:
    if not signature or not self.webhook_secret:
      raise WebhookSignatureError("Missing signature")

    try:
      body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
      raise MalformedPayloadError() from e

    try:
      stripe.WebhookSignature.verify_header(
          body, signature, self.webhook_secret, SIGNATURE_TOLERANCE
      )
    except stripe.SignatureVerificationError as e:
      logger.warning("Webhook signature verification failed: %s", e)
      raise WebhookSignatureError("Invalid signature") from e

    try:
      event = json.loads(body)
    except ValueError as e:
      raise MalformedPayloadError() from e
    if not isinstance(event, dict):
      raise MalformedPayloadError()
    return event_from_dict(event)
