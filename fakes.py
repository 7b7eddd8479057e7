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

"""Test doubles and seed data shared by the test suites."""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import config
import db
from exceptions import PaymentProviderError
from services.notification_service import GiftCardPurchase
from services.notification_service import LowStockAlert
from services.notification_service import NotificationService
from services.notification_service import OrderDetails
from services.payment_provider import CheckoutSessionParams
from services.payment_provider import PaymentEvent
from services.payment_provider import PaymentProvider
from services.payment_provider import ProviderLineItem
from services.payment_provider import ProviderSession
from services.payment_provider import StripePaymentProvider
from sqlalchemy.pool import NullPool

STORE_ID = "store-1"
OTHER_STORE_ID = "store-2"
WEBHOOK_SECRET = "whsec_test_secret"
GIFT_CARD_CODE = "GC-AAAA-BBBB-CCCC"
CUSTOMER_TOKEN = "tok-valid"
FAR_FUTURE = "2999-01-01T00:00:00+00:00"
LONG_AGO = "2000-01-01T00:00:00+00:00"


def store_config(**overrides: Any) -> config.StoreConfig:
  """A StoreConfig for tests with the provider and e-mail configured."""
  values = {
      "store_id": STORE_ID,
      "store_name": "Test Store",
      "stripe_secret_key": "sk_test_123",
      "stripe_webhook_secret": WEBHOOK_SECRET,
      "resend_api_key": "re_test_123",
      "store_owner_email": "owner@example.com",
  }
  values.update(overrides)
  return config.StoreConfig(**values)


async def create_test_database(database_path: str) -> db.DatabaseManager:
  """Creates a fresh database without connection pooling.

  Tests run coroutines on several event loops, so connections are never
  shared between them.
  """
  manager = db.DatabaseManager()
  await manager.init_db(database_path, poolclass=NullPool)
  return manager


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET) -> str:
  """Builds a Stripe-Signature header for a payload."""
  timestamp = int(time.time())
  signature = hmac.new(
      secret.encode("utf-8"),
      f"{timestamp}.{payload}".encode("utf-8"),
      hashlib.sha256,
  ).hexdigest()
  return f"t={timestamp},v1={signature}"


def session_payload(session: ProviderSession) -> Dict[str, Any]:
  """Renders a ProviderSession in the provider's wire format."""
  shipping = None
  if session.shipping_address:
    shipping = {"address": dict(session.shipping_address)}
  return {
      "id": session.id,
      "object": "checkout.session",
      "payment_status": session.payment_status,
      "url": session.url,
      "payment_intent": session.payment_intent_id,
      "customer_details": {
          "email": session.customer_email,
          "name": session.customer_name,
      },
      "shipping_details": shipping,
      "amount_subtotal": session.amount_subtotal,
      "amount_total": session.amount_total,
      "total_details": {
          "amount_tax": session.amount_tax,
          "amount_shipping": session.amount_shipping,
          "amount_discount": session.amount_discount,
      },
      "currency": session.currency,
      "metadata": dict(session.metadata),
  }


def event_payload(
    session: Optional[ProviderSession] = None,
    event_type: str = "checkout.session.completed",
) -> str:
  """Serializes a provider event wrapping a session."""
  data = {"object": session_payload(session)} if session else {"object": {}}
  return json.dumps(
      {"id": "evt_test", "object": "event", "type": event_type, "data": data}
  )


def line_item(
    product_id: str,
    name: str,
    unit_amount: int,
    quantity: int = 1,
    variant_id: str = "",
    variant_name: str = "",
    is_digital: bool = False,
) -> ProviderLineItem:
  return ProviderLineItem(
      description=name,
      quantity=quantity,
      unit_amount=unit_amount,
      metadata={
          "product_id": product_id,
          "variant_id": variant_id,
          "variant_name": variant_name,
          "is_digital": "true" if is_digital else "false",
      },
  )


class FakePaymentProvider(PaymentProvider):
  """In-memory payment provider.

  Webhook verification is delegated to the Stripe implementation, so tests
  exercise real signatures built with `sign_payload`.
  """

  def __init__(self, webhook_secret: Optional[str] = WEBHOOK_SECRET):
    self.created: List[CheckoutSessionParams] = []
    self.sessions: Dict[str, ProviderSession] = {}
    self.line_items: Dict[str, List[ProviderLineItem]] = {}
    self.line_item_calls = 0
    self.fail_create = False
    self._verifier = StripePaymentProvider(
        api_key="sk_test_123", webhook_secret=webhook_secret
    )

  def add_session(
      self,
      session_id: str,
      items: List[ProviderLineItem],
      metadata: Optional[Dict[str, str]] = None,
      payment_status: str = "paid",
      **fields: Any,
  ) -> ProviderSession:
    subtotal = sum(item.unit_amount * item.quantity for item in items)
    values = {
        "id": session_id,
        "payment_status": payment_status,
        "payment_intent_id": f"pi_{session_id}",
        "customer_email": "buyer@example.com",
        "customer_name": "Jane Buyer",
        "shipping_address": {
            "line1": "1 Main St",
            "line2": None,
            "city": "Springfield",
            "state": "IL",
            "postal_code": "62701",
            "country": "US",
        },
        "amount_subtotal": subtotal,
        "amount_total": subtotal,
        "metadata": {"store_id": STORE_ID, **(metadata or {})},
    }
    values.update(fields)
    session = ProviderSession(**values)
    self.sessions[session_id] = session
    self.line_items[session_id] = list(items)
    return session

  async def create_checkout_session(
      self, params: CheckoutSessionParams
  ) -> ProviderSession:
    if self.fail_create:
      raise PaymentProviderError("Failed to create checkout session")
    self.created.append(params)
    session_id = f"cs_test_{len(self.created)}"
    session = ProviderSession(
        id=session_id,
        payment_status="unpaid",
        url=f"https://checkout.test/{session_id}",
        metadata=dict(params.metadata),
    )
    self.sessions[session_id] = session
    return session

  async def retrieve_session(self, session_id: str) -> ProviderSession:
    if session_id not in self.sessions:
      raise PaymentProviderError("Failed to retrieve checkout session")
    return self.sessions[session_id]

  async def list_line_items(self, session_id: str) -> List[ProviderLineItem]:
    self.line_item_calls += 1
    return list(self.line_items.get(session_id, []))

  def construct_event(self, payload: bytes, signature: str) -> PaymentEvent:
    return self._verifier.construct_event(payload, signature)


class RecordingNotificationService(NotificationService):
  """Notification service that records messages instead of sending them."""

  def __init__(self, fail: bool = False):
    super().__init__(
        api_key=None, email_from="store@example.com", store_name="Test Store"
    )
    self.fail = fail
    self.sent: List[tuple[str, Any]] = []

  def _record(self, kind: str, payload: Any) -> bool:
    if self.fail:
      raise RuntimeError(f"{kind} delivery failed")
    self.sent.append((kind, payload))
    return True

  def kinds(self) -> List[str]:
    return [kind for kind, _ in self.sent]

  async def send_order_confirmation(self, details: OrderDetails) -> bool:
    return self._record("order_confirmation", details)

  async def send_new_order_alert(self, details: OrderDetails) -> bool:
    return self._record("new_order_alert", details)

  async def send_low_stock_alert(self, alert: LowStockAlert) -> bool:
    return self._record("low_stock_alert", alert)

  async def send_gift_card_purchase_confirmation(
      self, purchase: GiftCardPurchase
  ) -> bool:
    return self._record("gift_card_purchase_confirmation", purchase)

  async def send_gift_card_delivery(
      self, purchase: GiftCardPurchase, code: str
  ) -> bool:
    return self._record("gift_card_delivery", code)


async def seed_store(manager: db.DatabaseManager) -> None:
  """Seeds a small catalog, discount instruments and a customer."""
  async with manager.session_factory() as session:
    session.add_all([
        db.Store(id=STORE_ID, name="Test Store", config={"lowStockThreshold": 5}),
        db.Product(
            id="mug",
            store_id=STORE_ID,
            name="Mug",
            description="A sturdy mug",
            price=2500,
            track_inventory=True,
            inventory_count=10,
            images=["https://img.test/mug.png"],
        ),
        db.Product(
            id="poster",
            store_id=STORE_ID,
            name="Poster",
            price=1000,
            track_inventory=False,
            inventory_count=None,
            images=[],
        ),
        db.Product(
            id="ebook",
            store_id=STORE_ID,
            name="E-book",
            price=999,
            is_digital=True,
            images=[],
        ),
        db.Product(
            id="tshirt",
            store_id=STORE_ID,
            name="T-Shirt",
            price=2000,
            images=[],
        ),
        db.Product(
            id="foreign",
            store_id=OTHER_STORE_ID,
            name="Foreign Item",
            price=100,
            images=[],
        ),
        db.ProductVariant(
            id="tshirt-l",
            product_id="tshirt",
            name="Large",
            price_adjustment=500,
            track_inventory=True,
            inventory_count=3,
            options={"size": "L"},
        ),
        db.ProductVariant(
            id="tshirt-s",
            product_id="tshirt",
            name="Small",
            price_adjustment=0,
            track_inventory=True,
            inventory_count=0,
            options={"size": "S"},
        ),
    ])
    session.add_all([
        _coupon("c-save10", "SAVE10", "percentage", 10),
        _coupon("c-save20", "SAVE20", "percentage", 20),
        _coupon("c-fiveoff", "FIVEOFF", "fixed", 500),
        _coupon("c-big", "BIG", "fixed", 15000),
        _coupon("c-min50", "MIN50", "fixed", 1000, minimum_order_amount=5000),
        _coupon("c-expired", "EXPIRED", "fixed", 500, expires_at=LONG_AGO),
        _coupon("c-future", "FUTURE", "fixed", 500, starts_at=FAR_FUTURE),
        _coupon("c-maxed", "MAXED", "fixed", 500, max_uses=1, current_uses=1),
        _coupon("c-inactive", "INACTIVE", "fixed", 500, is_active=False),
        _coupon("c-once", "ONCE", "fixed", 500, max_uses=1),
    ])
    session.add_all([
        _gift_card("gc-1", GIFT_CARD_CODE, 50000),
        _gift_card("gc-small", "GC-SMAL-LLLL-2222", 1500),
        _gift_card("gc-disabled", "GC-DDDD-EEEE-FFFF", 5000, status="disabled"),
        _gift_card("gc-empty", "GC-ZZZZ-YYYY-XXXX", 0, status="exhausted"),
    ])
    session.add_all([
        db.Customer(
            id="cust-1", store_id=STORE_ID, name="Jane", email="jane@example.com"
        ),
        db.CustomerSession(
            token=CUSTOMER_TOKEN, customer_id="cust-1", expires_at=FAR_FUTURE
        ),
        db.CustomerSession(
            token="tok-expired", customer_id="cust-1", expires_at=LONG_AGO
        ),
        db.CustomerAddress(
            id="addr-1",
            customer_id="cust-1",
            first_name="Jane",
            last_name="Doe",
            address_line1="5 Elm St",
            city="Portland",
            state="OR",
            postal_code="97201",
            country="US",
        ),
    ])
    await session.commit()


def _coupon(
    coupon_id: str,
    code: str,
    discount_type: str,
    discount_value: int,
    **fields: Any,
) -> db.Coupon:
  values = {
      "minimum_order_amount": 0,
      "max_uses": None,
      "current_uses": 0,
      "is_active": True,
  }
  values.update(fields)
  return db.Coupon(
      id=coupon_id,
      store_id=STORE_ID,
      code=code,
      discount_type=discount_type,
      discount_value=discount_value,
      **values,
  )


def _gift_card(
    gift_card_id: str, code: str, balance: int, status: str = "active"
) -> db.GiftCard:
  return db.GiftCard(
      id=gift_card_id,
      store_id=STORE_ID,
      code=code,
      original_amount=max(balance, 5000),
      current_balance=balance,
      status=status,
      created_at=LONG_AGO,
  )
