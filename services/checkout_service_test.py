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

"""Tests for checkout session creation."""

import asyncio
import json
import os
import shutil
import tempfile

from absl.testing import absltest
import db
from enums import CouponUsageCommit
from exceptions import ConfigurationError
from exceptions import CouponInvalidError
from exceptions import GiftCardInvalidError
from exceptions import InsufficientStockError
from exceptions import InvalidRequestError
from exceptions import PaymentProviderError
import fakes
from models import CheckoutRequest
from services.checkout_service import CheckoutService


class CheckoutServiceTest(absltest.TestCase):

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

  def _checkout(self, payload, store_config=None, token=None, origin=None):
    async def call():
      async with self.manager.session_factory() as session:
        service = CheckoutService(
            session, store_config or fakes.store_config(), self.provider
        )
        return await service.create_checkout_session(
            CheckoutRequest.model_validate(payload), token, origin
        )

    return asyncio.run(call())

  def _coupon_uses(self, coupon_id):
    async def load():
      async with self.manager.session_factory() as session:
        return (await session.get(db.Coupon, coupon_id)).current_uses

    return asyncio.run(load())

  def test_creates_session_with_database_prices(self):
    url = self._checkout(
        {"items": [{"productId": "mug", "quantity": 2}]},
        origin="https://shop.test/",
    )

    self.assertEqual(url, "https://checkout.test/cs_test_1")
    (params,) = self.provider.created
    (item,) = params.line_items
    self.assertEqual(item.name, "Mug")
    self.assertEqual(item.unit_amount, 2500)
    self.assertEqual(item.quantity, 2)
    self.assertEqual(item.image, "https://img.test/mug.png")
    self.assertEqual(item.metadata["product_id"], "mug")
    self.assertEqual(item.metadata["is_digital"], "false")
    self.assertEqual(params.discount_amount, 0)
    self.assertIsNone(params.discount_name)
    self.assertEqual(params.metadata["store_id"], fakes.STORE_ID)
    self.assertEqual(
        params.success_url,
        "https://shop.test/checkout/success?session_id={CHECKOUT_SESSION_ID}",
    )
    self.assertEqual(params.cancel_url, "https://shop.test/cart")

  def test_variant_price_ignores_client_adjustment(self):
    self._checkout({
        "items": [{
            "productId": "tshirt",
            "variantId": "tshirt-l",
            "quantity": 1,
            "variantInfo": {"id": "tshirt-l", "priceAdjustment": -1900},
        }]
    })
    (item,) = self.provider.created[0].line_items
    self.assertEqual(item.unit_amount, 2500)
    self.assertEqual(item.name, "T-Shirt - Large")
    self.assertEqual(item.metadata["variant_id"], "tshirt-l")
    self.assertEqual(item.metadata["variant_name"], "Large")

  def test_missing_configuration_fails_before_any_io(self):
    with self.assertRaisesRegex(
        ConfigurationError, "Payment system not configured"
    ):
      self._checkout(
          {"items": [{"productId": "mug", "quantity": 1}]},
          store_config=fakes.store_config(stripe_secret_key=None),
      )
    self.assertEmpty(self.provider.created)

  def test_empty_cart(self):
    with self.assertRaisesRegex(InvalidRequestError, "No items in cart"):
      self._checkout({"items": []})

  def test_unknown_product(self):
    with self.assertRaisesRegex(InvalidRequestError, "Product not found: nope"):
      self._checkout({"items": [{"productId": "nope", "quantity": 1}]})

  def test_product_of_other_store_is_not_found(self):
    with self.assertRaisesRegex(
        InvalidRequestError, "Product not found: foreign"
    ):
      self._checkout({"items": [{"productId": "foreign", "quantity": 1}]})

  def test_variant_of_other_product_is_not_found(self):
    with self.assertRaisesRegex(
        InvalidRequestError, "Variant not found: tshirt-l"
    ):
      self._checkout({
          "items": [{"productId": "mug", "variantId": "tshirt-l", "quantity": 1}]
      })

  def test_stock_failure_reports_every_line_and_skips_provider(self):
    with self.assertRaises(InsufficientStockError) as ctx:
      self._checkout({
          "items": [
              {"productId": "mug", "quantity": 11},
              {"productId": "tshirt", "variantId": "tshirt-s", "quantity": 1},
              {"productId": "poster", "quantity": 500},
          ],
          "couponCode": "SAVE10",
      })
    issues = ctx.exception.stock_issues
    self.assertCountEqual(
        [(i["productId"], i.get("variantId")) for i in issues],
        [("mug", None), ("tshirt", "tshirt-s")],
    )
    self.assertEmpty(self.provider.created)
    self.assertEqual(self._coupon_uses("c-save10"), 0)

  def test_coupon_is_encoded_and_counted(self):
    self._checkout({
        "items": [{"productId": "mug", "quantity": 2}],
        "couponCode": "save10",
    })
    params = self.provider.created[0]
    self.assertEqual(params.metadata["coupon_id"], "c-save10")
    self.assertEqual(params.metadata["coupon_code"], "SAVE10")
    self.assertEqual(params.metadata["coupon_discount"], "500")
    self.assertEqual(params.discount_amount, 500)
    self.assertEqual(params.discount_name, "SAVE10")
    self.assertEqual(self._coupon_uses("c-save10"), 1)

  def test_coupon_and_gift_card_become_one_discount(self):
    self._checkout({
        "items": [{"productId": "mug", "quantity": 2}],
        "couponCode": "SAVE10",
        "giftCardCode": "gc-smal-llll-2222",
    })
    params = self.provider.created[0]
    self.assertEqual(params.metadata["gift_card_id"], "gc-small")
    self.assertEqual(params.metadata["gift_card_code"], "GC-SMAL-LLLL-2222")
    self.assertEqual(params.metadata["gift_card_amount"], "1500")
    self.assertEqual(params.discount_amount, 2000)
    self.assertEqual(params.discount_name, "SAVE10 + Gift card GC-SMAL-LLLL-2222")

  def test_oversized_fixed_coupon_covers_the_cart(self):
    self._checkout({
        "items": [{"productId": "mug", "quantity": 2}],
        "couponCode": "BIG",
        "giftCardCode": fakes.GIFT_CARD_CODE,
    })
    params = self.provider.created[0]
    self.assertEqual(params.metadata["coupon_discount"], "5000")
    self.assertEqual(params.metadata["gift_card_amount"], "0")
    self.assertEqual(params.discount_amount, 5000)
    self.assertEqual(params.discount_name, "BIG")

  def test_invalid_coupon_blocks_checkout(self):
    with self.assertRaisesRegex(
        CouponInvalidError, "Minimum order of \\$50.00 required"
    ):
      self._checkout({
          "items": [{"productId": "mug", "quantity": 1}],
          "couponCode": "MIN50",
      })
    self.assertEmpty(self.provider.created)

  def test_invalid_gift_card_blocks_checkout(self):
    with self.assertRaisesRegex(
        GiftCardInvalidError, "This gift card has been disabled"
    ):
      self._checkout({
          "items": [{"productId": "mug", "quantity": 1}],
          "giftCardCode": "GC-DDDD-EEEE-FFFF",
      })

  def test_provider_failure_does_not_count_coupon(self):
    self.provider.fail_create = True
    with self.assertRaises(PaymentProviderError):
      self._checkout({
          "items": [{"productId": "mug", "quantity": 1}],
          "couponCode": "SAVE10",
      })
    self.assertEqual(self._coupon_uses("c-save10"), 0)

  def test_order_mode_defers_coupon_usage(self):
    self._checkout(
        {
            "items": [{"productId": "mug", "quantity": 1}],
            "couponCode": "SAVE10",
        },
        store_config=fakes.store_config(
            coupon_usage_commit=CouponUsageCommit.ORDER
        ),
    )
    self.assertLen(self.provider.created, 1)
    self.assertEqual(self._coupon_uses("c-save10"), 0)

  def test_shipping_collected_for_physical_goods(self):
    self._checkout({"items": [{"productId": "mug", "quantity": 1}]})
    self.assertEqual(self.provider.created[0].shipping_countries, ["US"])

  def test_no_shipping_for_digital_only_cart(self):
    self._checkout({"items": [{"productId": "ebook", "quantity": 1}]})
    params = self.provider.created[0]
    self.assertIsNone(params.shipping_countries)
    self.assertEqual(params.line_items[0].metadata["is_digital"], "true")

  def test_no_shipping_when_disabled(self):
    self._checkout(
        {"items": [{"productId": "mug", "quantity": 1}]},
        store_config=fakes.store_config(shipping_enabled=False),
    )
    self.assertIsNone(self.provider.created[0].shipping_countries)

  def test_customer_prefill_and_saved_address(self):
    self._checkout(
        {
            "items": [{"productId": "mug", "quantity": 1}],
            "savedAddressId": "addr-1",
        },
        token=fakes.CUSTOMER_TOKEN,
    )
    params = self.provider.created[0]
    self.assertEqual(params.customer_email, "jane@example.com")
    self.assertEqual(params.metadata["customer_id"], "cust-1")
    self.assertEqual(params.metadata["saved_address_id"], "addr-1")
    address = json.loads(params.metadata["saved_address_json"])
    self.assertEqual(address["line1"], "5 Elm St")
    self.assertEqual(address["city"], "Portland")
    self.assertIsNone(params.shipping_countries)

  def test_expired_customer_session_is_anonymous(self):
    self._checkout(
        {"items": [{"productId": "mug", "quantity": 1}]}, token="tok-expired"
    )
    params = self.provider.created[0]
    self.assertIsNone(params.customer_email)
    self.assertNotIn("customer_id", params.metadata)
    self.assertEqual(params.shipping_countries, ["US"])

  def test_destination_account_is_forwarded(self):
    self._checkout(
        {"items": [{"productId": "mug", "quantity": 1}]},
        store_config=fakes.store_config(stripe_account_id="acct_42"),
    )
    self.assertEqual(self.provider.created[0].destination_account, "acct_42")


if __name__ == "__main__":
  absltest.main()
