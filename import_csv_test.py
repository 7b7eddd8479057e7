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

"""Tests for the CSV catalog import."""

import asyncio
import os
import shutil
import tempfile

from absl.testing import absltest
import db
import fakes
import import_csv
from services.discount_service import DiscountService
from sqlalchemy import select

_DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


class ImportCsvTest(absltest.TestCase):

  def setUp(self):
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.manager = asyncio.run(
        fakes.create_test_database(os.path.join(self.test_dir, "test.db"))
    )

  def tearDown(self):
    asyncio.run(self.manager.close())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  def _import(self, data_dir):
    async def run():
      async with self.manager.session_factory() as session:
        return await import_csv.import_catalog(
            session, data_dir, fakes.STORE_ID, "Test Store", 3
        )

    return asyncio.run(run())

  def _all(self, model):
    async def load():
      async with self.manager.session_factory() as session:
        return list((await session.execute(select(model))).scalars().all())

    return asyncio.run(load())

  def test_imports_sample_catalog(self):
    counts = self._import(_DATA_DIR)

    self.assertEqual(
        counts,
        {
            "products": 4,
            "variants": 3,
            "coupons": 3,
            "gift_cards": 1,
            "customers": 2,
            "addresses": 2,
        },
    )
    products = {p.id: p for p in self._all(db.Product)}
    self.assertTrue(products["mug"].track_inventory)
    self.assertEqual(products["mug"].inventory_count, 24)
    self.assertEqual(products["mug"].images, ["https://images.example.com/mug.png"])
    self.assertIsNone(products["poster"].inventory_count)
    self.assertTrue(products["field-guide"].is_digital)
    self.assertEqual(
        {p.store_id for p in products.values()}, {fakes.STORE_ID}
    )

    variants = {v.id: v for v in self._all(db.ProductVariant)}
    self.assertEqual(variants["tshirt-xl"].price_adjustment, 300)
    self.assertEqual(variants["tshirt-xl"].options, {"size": "XL"})

    (store,) = self._all(db.Store)
    self.assertEqual(store.config, {"lowStockThreshold": 3})

  def test_imported_coupons_validate(self):
    self._import(_DATA_DIR)

    async def validate():
      async with self.manager.session_factory() as session:
        return await DiscountService(session, fakes.STORE_ID).validate_coupon(
            "welcome10", 2000
        )

    coupon = asyncio.run(validate())
    self.assertEqual(coupon.id, "welcome10")
    self.assertIsNone(coupon.max_uses)

  def test_reimport_replaces_products(self):
    self._import(_DATA_DIR)
    smaller = os.path.join(self.test_dir, "smaller")
    os.makedirs(smaller)
    with open(os.path.join(smaller, "products.csv"), "w") as f:
      f.write("id,name,price\nsticker,Sticker,300\n")

    counts = self._import(smaller)

    self.assertEqual(counts["products"], 1)
    self.assertEqual([p.id for p in self._all(db.Product)], ["sticker"])
    self.assertEmpty(self._all(db.ProductVariant))
    self.assertEmpty(self._all(db.Coupon))
    # Gift cards and customers are kept.
    self.assertLen(self._all(db.GiftCard), 1)
    self.assertLen(self._all(db.Customer), 2)


if __name__ == "__main__":
  absltest.main()
