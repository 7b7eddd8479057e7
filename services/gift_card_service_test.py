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

"""Tests for gift card purchase checkout and balance checks."""

import asyncio
import os
import shutil
import tempfile

from absl.testing import absltest
from absl.testing import parameterized
from exceptions import ConfigurationError
from exceptions import InvalidRequestError
import fakes
from models import GiftCardCheckoutRequest
from models import GiftCardValidationRequest
from services import gift_card_service
from services.gift_card_service import GiftCardService


def _purchase(**overrides):
  values = {
      "amount": 5000,
      "recipientEmail": "friend@example.com",
      "recipientName": "Friend",
      "senderEmail": "jane@example.com",
      "senderName": "Jane",
      "giftMessage": "Happy birthday",
  }
  values.update(overrides)
  return GiftCardCheckoutRequest.model_validate(values)


class GiftCardServiceTest(parameterized.TestCase):

  def setUp(self):
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.manager = asyncio.run(
        fakes.create_test_database(os.path.join(self.test_dir, "test.db"))
    )
    asyncio.run(fakes.seed_store(self.manager))
    self.provider = fakes.FakePaymentProvider()

  def tearDown(self):
    asyncio.run(self.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _run(self, method, *args, store_config=None):
    async def call():
      async with self.manager.session_factory() as session:
        service = GiftCardService(
            session,
            store_config or fakes.store_config(),
            self.provider,
            fakes.RecordingNotificationService(),
        )
        return await getattr(service, method)(*args)

    return asyncio.run(call())

  def test_generated_codes(self):
    codes = {gift_card_service.generate_gift_card_code() for _ in range(50)}
    self.assertLen(codes, 50)
    segment = "[A-HJ-NP-Z2-9]{4}"
    for code in codes:
      self.assertRegex(code, f"^GC-{segment}-{segment}-{segment}$")

  def test_purchase_checkout(self):
    url = self._run(
        "create_purchase_checkout", _purchase(), "https://shop.test"
    )

    self.assertEqual(url, "https://checkout.test/cs_test_1")
    (params,) = self.provider.created
    (item,) = params.line_items
    self.assertEqual(item.name, "Test Store Gift Card")
    self.assertEqual(item.unit_amount, 5000)
    self.assertEqual(item.description, "$50.00 digital gift card")
    self.assertEqual(params.customer_email, "jane@example.com")
    self.assertEqual(params.metadata["type"], "gift_card")
    self.assertEqual(params.metadata["gift_card_amount"], "5000")
    self.assertEqual(params.metadata["recipient_email"], "friend@example.com")
    self.assertEqual(params.metadata["gift_message"], "Happy birthday")
    self.assertIsNone(params.shipping_countries)
    self.assertEqual(params.discount_amount, 0)
    self.assertEqual(
        params.success_url,
        "https://shop.test/gift-cards/success?session_id={CHECKOUT_SESSION_ID}",
    )

  @parameterized.named_parameters(
      ("amount", {"amount": 1234}, "Invalid gift card amount"),
      (
          "recipient",
          {"recipientEmail": "not-an-email"},
          "Valid recipient email is required",
      ),
      ("sender", {"senderEmail": None}, "Valid sender email is required"),
  )
  def test_purchase_validation(self, overrides, message):
    with self.assertRaisesWithLiteralMatch(InvalidRequestError, message):
      self._run("create_purchase_checkout", _purchase(**overrides))
    self.assertEmpty(self.provider.created)

  def test_purchase_requires_configuration(self):
    with self.assertRaises(ConfigurationError):
      self._run(
          "create_purchase_checkout",
          _purchase(),
          store_config=fakes.store_config(stripe_secret_key=None),
      )

  def test_balance_covers_part_of_cart(self):
    response = self._run(
        "validate_for_cart",
        GiftCardValidationRequest(code="gc-smal-llll-2222", cart_total=40.0),
    )
    self.assertTrue(response.valid)
    self.assertEqual(response.gift_card.code, "GC-SMAL-LLLL-2222")
    self.assertEqual(response.gift_card.balance, 15.0)
    self.assertEqual(response.gift_card.applicable_amount, 15.0)
    self.assertEqual(response.gift_card.applicable_amount_formatted, "$15.00")

  def test_balance_larger_than_cart(self):
    response = self._run(
        "validate_for_cart",
        GiftCardValidationRequest(code=fakes.GIFT_CARD_CODE, cart_total=12.5),
    )
    self.assertEqual(response.gift_card.balance_formatted, "$500.00")
    self.assertEqual(response.gift_card.applicable_amount, 12.5)

  @parameterized.named_parameters(
      ("no_code", {"cart_total": 10.0}, "Gift card code is required"),
      (
          "no_total",
          {"code": fakes.GIFT_CARD_CODE},
          "Valid cart total is required",
      ),
      (
          "negative_total",
          {"code": fakes.GIFT_CARD_CODE, "cart_total": -1.0},
          "Valid cart total is required",
      ),
      (
          "exhausted",
          {"code": "GC-ZZZZ-YYYY-XXXX", "cart_total": 10.0},
          "This gift card has no remaining balance",
      ),
  )
  def test_invalid_balance_checks(self, fields, message):
    response = self._run(
        "validate_for_cart", GiftCardValidationRequest(**fields)
    )
    self.assertFalse(response.valid)
    self.assertEqual(response.error, message)
    self.assertIsNone(response.gift_card)


if __name__ == "__main__":
  absltest.main()
