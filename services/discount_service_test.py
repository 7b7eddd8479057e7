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

"""Tests for coupon and gift card validation."""

import asyncio
import datetime
import os
import shutil
import tempfile

from absl.testing import absltest
from absl.testing import parameterized
import db
from exceptions import CouponInvalidError
from exceptions import GiftCardInvalidError
from exceptions import InvalidRequestError
import fakes
from models import CouponValidationRequest
from services import discount_service
from services.discount_service import DiscountService


class DiscountServiceTest(parameterized.TestCase):

  def setUp(self):
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.manager = asyncio.run(
        fakes.create_test_database(os.path.join(self.test_dir, "test.db"))
    )
    asyncio.run(fakes.seed_store(self.manager))

  def tearDown(self):
    asyncio.run(self.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _run(self, method, *args, store_id=fakes.STORE_ID):
    async def call():
      async with self.manager.session_factory() as session:
        service = DiscountService(session, store_id)
        return await getattr(service, method)(*args)

    return asyncio.run(call())

  def _coupon_row(self, coupon_id):
    async def load():
      async with self.manager.session_factory() as session:
        return await session.get(db.Coupon, coupon_id)

    return asyncio.run(load())

  @parameterized.parameters("save10", "SAVE10", "  Save10 ")
  def test_coupon_lookup_is_case_insensitive(self, code):
    coupon = self._run("validate_coupon", code, 1000)
    self.assertEqual(coupon.id, "c-save10")

  @parameterized.named_parameters(
      ("unknown", "NOPE", "Invalid coupon code"),
      ("inactive", "INACTIVE", "Invalid coupon code"),
      ("expired", "EXPIRED", "This coupon has expired"),
      ("not_started", "FUTURE", "This coupon is not yet valid"),
      ("usage_cap", "MAXED", "This coupon has reached its usage limit"),
      ("minimum", "MIN50", "Minimum order of $50.00 required"),
  )
  def test_coupon_failures(self, code, message):
    with self.assertRaises(CouponInvalidError) as ctx:
      self._run("validate_coupon", code, 4999)
    self.assertEqual(ctx.exception.message, message)
    self.assertEqual(ctx.exception.status_code, 400)

  def test_minimum_order_gate(self):
    with self.assertRaises(CouponInvalidError):
      self._run("validate_coupon", "MIN50", 4999)
    self.assertEqual(self._run("validate_coupon", "MIN50", 5000).id, "c-min50")

  def test_coupon_of_other_store_is_unknown(self):
    with self.assertRaises(CouponInvalidError) as ctx:
      self._run("validate_coupon", "SAVE10", 1000, store_id="elsewhere")
    self.assertEqual(ctx.exception.message, "Invalid coupon code")

  def test_rules_apply_in_order(self):
    coupon = db.Coupon(
        code="X",
        is_active=True,
        expires_at=fakes.LONG_AGO,
        starts_at=fakes.FAR_FUTURE,
        max_uses=1,
        current_uses=1,
        minimum_order_amount=99999,
    )
    now = datetime.datetime.now(datetime.timezone.utc)
    self.assertEqual(
        discount_service.check_coupon_rules(coupon, 0, now),
        "This coupon has expired",
    )
    coupon.expires_at = None
    self.assertEqual(
        discount_service.check_coupon_rules(coupon, 0, now),
        "This coupon is not yet valid",
    )
    coupon.starts_at = None
    self.assertEqual(
        discount_service.check_coupon_rules(coupon, 0, now),
        "This coupon has reached its usage limit",
    )
    coupon.max_uses = None
    self.assertEqual(
        discount_service.check_coupon_rules(coupon, 0, now),
        "Minimum order of $999.99 required",
    )

  def test_naive_timestamps_are_utc(self):
    coupon = db.Coupon(
        code="X", is_active=True, expires_at="2020-06-01T12:00:00"
    )
    before = datetime.datetime(2020, 6, 1, 11, tzinfo=datetime.timezone.utc)
    after = datetime.datetime(2020, 6, 1, 13, tzinfo=datetime.timezone.utc)
    self.assertIsNone(discount_service.check_coupon_rules(coupon, 0, before))
    self.assertEqual(
        discount_service.check_coupon_rules(coupon, 0, after),
        "This coupon has expired",
    )

  def test_validation_does_not_count_usage(self):
    self._run("validate_coupon", "SAVE10", 1000)
    self.assertEqual(self._coupon_row("c-save10").current_uses, 0)

  def test_commit_coupon_usage_respects_cap(self):
    self.assertTrue(self._run("commit_coupon_usage", "c-once"))
    self.assertFalse(self._run("commit_coupon_usage", "c-once"))
    self.assertEqual(self._coupon_row("c-once").current_uses, 1)

  def test_concurrent_usage_commits_never_exceed_cap(self):
    async def commit_once():
      async with self.manager.session_factory() as session:
        return await DiscountService(session, fakes.STORE_ID).commit_coupon_usage(
            "c-once"
        )

    async def race():
      return await asyncio.gather(*(commit_once() for _ in range(5)))

    results = asyncio.run(race())
    self.assertEqual(results.count(True), 1)
    self.assertEqual(self._coupon_row("c-once").current_uses, 1)

  @parameterized.parameters(
      fakes.GIFT_CARD_CODE, "gc-aaaa-bbbb-cccc", "GC AAAA BBBB CCCC", "gcaaaabbbbcccc"
  )
  def test_gift_card_code_normalization(self, code):
    gift_card = self._run("validate_gift_card", code)
    self.assertEqual(gift_card.id, "gc-1")
    self.assertEqual(gift_card.current_balance, 50000)

  @parameterized.named_parameters(
      ("unknown", "GC-0000-0000-0000", "Invalid gift card code"),
      ("disabled", "GC-DDDD-EEEE-FFFF", "This gift card has been disabled"),
      ("empty", "GC-ZZZZ-YYYY-XXXX", "This gift card has no remaining balance"),
  )
  def test_gift_card_failures(self, code, message):
    with self.assertRaises(GiftCardInvalidError) as ctx:
      self._run("validate_gift_card", code)
    self.assertEqual(ctx.exception.message, message)

  def test_validate_for_cart_reports_dollars(self):
    response = self._run(
        "validate_for_cart",
        CouponValidationRequest(code="save20", cart_total=9.99),
    )
    self.assertTrue(response.valid)
    self.assertEqual(response.coupon.code, "SAVE20")
    self.assertEqual(response.coupon.discount_amount, 2.0)

  def test_validate_for_cart_invalid_coupon(self):
    response = self._run(
        "validate_for_cart",
        CouponValidationRequest(code="MIN50", cart_total=49.99),
    )
    self.assertFalse(response.valid)
    self.assertEqual(response.error, "Minimum order of $50.00 required")

  def test_validate_for_cart_requires_code(self):
    with self.assertRaises(InvalidRequestError):
      self._run("validate_for_cart", CouponValidationRequest(cart_total=10))


if __name__ == "__main__":
  absltest.main()
