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

"""Tests for the e-mail notification service."""

import asyncio
import json

from absl.testing import absltest
import httpx
from services import notification_service
from services.notification_service import GiftCardPurchase
from services.notification_service import LowStockAlert
from services.notification_service import NotificationService
from services.notification_service import OrderDetails
from services.notification_service import OrderLine


def _details(**overrides):
  values = {
      "order_id": "order-1",
      "customer_name": "Jane <b>Buyer</b>",
      "customer_email": "jane@example.com",
      "items": [
          OrderLine("Mug", 2, 2500),
          OrderLine("E-book", 1, 999, is_digital=True, download_token="dl-1"),
      ],
      "subtotal": 5999,
      "tax": 0,
      "shipping_cost": 0,
      "discount_amount": 600,
      "total": 5399,
      "coupon_code": "SAVE10",
  }
  values.update(overrides)
  return OrderDetails(**values)


class NotificationServiceTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.requests = []
    self.status_code = 200

    def handler(request):
      self.requests.append(request)
      return httpx.Response(self.status_code, json={"id": "email-1"})

    self.service = NotificationService(
        api_key="re_test_123",
        email_from="store@example.com",
        store_name="Test Store",
        store_owner_email="owner@example.com",
        app_url="https://shop.test/",
        transport=httpx.MockTransport(handler),
    )

  def _sent(self, index=0):
    return json.loads(self.requests[index].content)

  def test_order_confirmation(self):
    self.assertTrue(
        asyncio.run(self.service.send_order_confirmation(_details()))
    )

    request = self.requests[0]
    self.assertEqual(str(request.url), notification_service.RESEND_API_URL)
    self.assertEqual(request.headers["Authorization"], "Bearer re_test_123")
    message = self._sent()
    self.assertEqual(message["to"], ["jane@example.com"])
    self.assertEqual(message["from"], "Test Store <store@example.com>")
    self.assertIn("Jane &lt;b&gt;Buyer&lt;/b&gt;", message["html"])
    self.assertIn("Discount (SAVE10): -$6.00", message["html"])
    self.assertIn("https://shop.test/api/download/dl-1", message["html"])

  def test_no_download_section_for_physical_orders(self):
    details = _details(items=[OrderLine("Mug", 1, 2500)])
    asyncio.run(self.service.send_order_confirmation(details))
    self.assertNotIn("downloads", self._sent()["html"])

  def test_owner_alerts(self):
    asyncio.run(self.service.send_new_order_alert(_details()))
    asyncio.run(
        self.service.send_low_stock_alert(
            LowStockAlert(id="mug", name="Mug", current_stock=2, threshold=5)
        )
    )
    self.assertEqual(self._sent(0)["to"], ["owner@example.com"])
    self.assertEqual(self._sent(0)["subject"], "New order: $53.99")
    self.assertEqual(self._sent(1)["subject"], "Low stock alert: Mug")

  def test_gift_card_messages(self):
    purchase = GiftCardPurchase(
        amount=5000,
        recipient_email="friend@example.com",
        sender_email="jane@example.com",
        sender_name="Jane",
        gift_message="Enjoy!",
    )
    asyncio.run(self.service.send_gift_card_purchase_confirmation(purchase))
    asyncio.run(
        self.service.send_gift_card_delivery(purchase, "GC-AAAA-BBBB-CCCC")
    )
    self.assertEqual(self._sent(0)["to"], ["jane@example.com"])
    delivery = self._sent(1)
    self.assertEqual(delivery["to"], ["friend@example.com"])
    self.assertIn("GC-AAAA-BBBB-CCCC", delivery["html"])
    self.assertIn("from Jane", delivery["html"])
    self.assertIn("Enjoy!", delivery["html"])

  def test_provider_error_returns_false(self):
    self.status_code = 500
    self.assertFalse(
        asyncio.run(self.service.send_order_confirmation(_details()))
    )

  def test_no_owner_email_skips_alert(self):
    service = NotificationService(
        api_key="re_test_123",
        email_from="store@example.com",
        store_name="Test Store",
        transport=self.service.transport,
    )
    self.assertFalse(asyncio.run(service.send_new_order_alert(_details())))
    self.assertEmpty(self.requests)

  def test_unconfigured_service_sends_nothing(self):
    service = NotificationService(
        api_key=None,
        email_from="store@example.com",
        store_name="Test Store",
        transport=self.service.transport,
    )
    self.assertFalse(asyncio.run(service.send_order_confirmation(_details())))
    self.assertEmpty(self.requests)


if __name__ == "__main__":
  absltest.main()
