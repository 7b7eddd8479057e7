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

"""Database initialization script for the storefront server.

This script imports a store's catalog, discount instruments and customers
from CSV files into the SQLite database. Products, variants and coupons of
the store are cleared before the import; gift cards, customers and addresses
are upserted so existing redemptions and sessions stay valid.

Usage:
  uv run import_csv.py --database_path=... --store_id=... --data_dir=...
"""

import asyncio
import csv
import json
import logging
import os
from typing import Any, Dict, List, Optional

from absl import app as absl_app
from absl import flags
import config
import db
from db import Coupon
from db import Customer
from db import CustomerAddress
from db import GiftCard
from db import Product
from db import ProductVariant
from db import Store
from sqlalchemy import delete
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

FLAGS = config.FLAGS
flags.DEFINE_string(
    "data_dir",
    os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"),
    "Directory containing products.csv and the optional catalog files",
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _read_rows(data_dir: str, name: str) -> List[Dict[str, str]]:
  path = os.path.join(data_dir, name)
  if not os.path.exists(path):
    logger.info("No %s found, skipping", name)
    return []
  with open(path, "r", newline="") as f:
    return list(csv.DictReader(f))


def _bool(value: Optional[str]) -> bool:
  return (value or "").strip().lower() in ("1", "true", "yes")


def _int_or_none(value: Optional[str]) -> Optional[int]:
  return int(value) if value else None


def _str_or_none(value: Optional[str]) -> Optional[str]:
  return value or None


def _json(value: Optional[str], default: Any) -> Any:
  return json.loads(value) if value else default


async def import_catalog(
    session: AsyncSession,
    data_dir: str,
    store_id: str,
    store_name: str,
    low_stock_threshold: int,
) -> Dict[str, int]:
  """Replaces the store's catalog with the rows of the CSV files.

  Args:
    session: The database session to use.
    data_dir: Directory holding the CSV files.
    store_id: Store the imported rows belong to.
    store_name: Display name stored on the store row.
    low_stock_threshold: Inventory level for low-stock alerts.

  Returns:
    The number of imported rows per file.
  """
  counts = {}
  await session.merge(
      Store(
          id=store_id,
          name=store_name,
          config={"lowStockThreshold": low_stock_threshold},
      )
  )

  logger.info("Clearing existing products and variants...")
  product_ids = select(Product.id).where(Product.store_id == store_id)
  await session.execute(
      delete(ProductVariant).where(ProductVariant.product_id.in_(product_ids))
  )
  await session.execute(delete(Product).where(Product.store_id == store_id))

  logger.info("Importing Products from CSV...")
  products = [
      Product(
          id=row["id"],
          store_id=store_id,
          name=row["name"],
          description=_str_or_none(row.get("description")),
          price=int(row["price"]),
          track_inventory=_bool(row.get("track_inventory")),
          inventory_count=_int_or_none(row.get("inventory_count")),
          is_digital=_bool(row.get("is_digital")),
          images=_json(row.get("images"), []),
      )
      for row in _read_rows(data_dir, "products.csv")
  ]
  session.add_all(products)
  counts["products"] = len(products)

  logger.info("Importing Variants from CSV...")
  variants = [
      ProductVariant(
          id=row["id"],
          product_id=row["product_id"],
          name=row["name"],
          sku=_str_or_none(row.get("sku")),
          price_adjustment=int(row.get("price_adjustment") or 0),
          track_inventory=_bool(row.get("track_inventory")),
          inventory_count=_int_or_none(row.get("inventory_count")),
          options=_json(row.get("options"), {}),
      )
      for row in _read_rows(data_dir, "variants.csv")
  ]
  await session.flush()
  session.add_all(variants)
  counts["variants"] = len(variants)

  logger.info("Clearing existing coupons...")
  await session.execute(delete(Coupon).where(Coupon.store_id == store_id))

  logger.info("Importing Coupons from CSV...")
  coupons = [
      Coupon(
          id=row["id"],
          store_id=store_id,
          code=row["code"].strip().upper(),
          description=_str_or_none(row.get("description")),
          discount_type=row["discount_type"],
          discount_value=int(row["discount_value"]),
          minimum_order_amount=int(row.get("minimum_order_amount") or 0),
          max_uses=_int_or_none(row.get("max_uses")),
          current_uses=int(row.get("current_uses") or 0),
          starts_at=_str_or_none(row.get("starts_at")),
          expires_at=_str_or_none(row.get("expires_at")),
          is_active=_bool(row.get("is_active") or "true"),
      )
      for row in _read_rows(data_dir, "coupons.csv")
  ]
  session.add_all(coupons)
  counts["coupons"] = len(coupons)

  logger.info("Importing Gift Cards from CSV...")
  gift_cards = _read_rows(data_dir, "gift_cards.csv")
  for row in gift_cards:
    original = int(row["original_amount"])
    await session.merge(
        GiftCard(
            id=row["id"],
            store_id=store_id,
            code=row["code"].strip().upper(),
            original_amount=original,
            current_balance=int(row.get("current_balance") or original),
            status=row.get("status") or "active",
            recipient_email=_str_or_none(row.get("recipient_email")),
            created_at=db.utcnow_iso(),
        )
    )
  counts["gift_cards"] = len(gift_cards)

  logger.info("Importing Customers from CSV...")
  customers = _read_rows(data_dir, "customers.csv")
  for row in customers:
    await session.merge(
        Customer(
            id=row["id"], store_id=store_id, name=row["name"], email=row["email"]
        )
    )
  counts["customers"] = len(customers)

  logger.info("Importing Customer Addresses from CSV...")
  addresses = _read_rows(data_dir, "addresses.csv")
  for row in addresses:
    await session.merge(
        CustomerAddress(
            id=row["id"],
            customer_id=row["customer_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            address_line1=row["address_line1"],
            address_line2=_str_or_none(row.get("address_line2")),
            city=row["city"],
            state=_str_or_none(row.get("state")),
            postal_code=row["postal_code"],
            country=row["country"],
        )
    )
  counts["addresses"] = len(addresses)

  await session.commit()
  return counts


async def import_csv_data() -> None:
  """Reads CSV files and populates the database."""
  await db.manager.init_db(FLAGS.database_path)
  try:
    async with db.manager.session_factory() as session:
      counts = await import_catalog(
          session,
          FLAGS.data_dir,
          FLAGS.store_id,
          FLAGS.store_name,
          FLAGS.low_stock_threshold,
      )
    logger.info("Import complete: %s", counts)
  finally:
    await db.manager.close()


def main(argv):
  """Main entry point for the catalog import script."""
  del argv  # Unused.
  if not FLAGS.database_path or not FLAGS.store_id:
    logger.error("--database_path and --store_id must be provided.")
    print(FLAGS.main_module_help())
    raise SystemExit(1)
  asyncio.run(import_csv_data())


if __name__ == "__main__":
  absl_app.run(main)
