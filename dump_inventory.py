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

"""Utility script to dump inventory data.

This script reads the tracked inventory of products and variants from the
SQLite database and writes it to standard output in CSV format, flagging
items at or below the store's low-stock threshold.

Usage:
  uv run dump_inventory.py --database_path=... [--store_id=...]
"""

import asyncio
import csv
import sys
from typing import Optional, TextIO

from absl import app as absl_app
import config
import db
from sqlalchemy.ext.asyncio import AsyncSession

FLAGS = config.FLAGS


async def write_inventory_report(
    session: AsyncSession,
    out: TextIO,
    store_id: Optional[str],
    default_threshold: int,
) -> int:
  """Writes the inventory CSV and returns the number of low-stock rows."""
  threshold = default_threshold
  store = await db.get_store(session, store_id) if store_id else None
  if store and store.config:
    threshold = store.config.get("lowStockThreshold", threshold)

  writer = csv.writer(out)
  writer.writerow(["kind", "id", "name", "inventory_count", "low_stock"])
  low = 0
  for row in await db.list_inventory(session, store_id):
    count = row["inventory_count"]
    is_low = count is not None and count <= threshold
    low += is_low
    writer.writerow([
        row["kind"],
        row["id"],
        row["name"],
        "" if count is None else count,
        "yes" if is_low else "no",
    ])
  return low


async def dump_inventory():
  """Queries the database and prints current inventory levels."""
  if not FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)

  await db.manager.init_db(FLAGS.database_path)
  try:
    async with db.manager.session_factory() as session:
      await write_inventory_report(
          session, sys.stdout, FLAGS.store_id, FLAGS.low_stock_threshold
      )
  finally:
    await db.manager.close()


def main(argv):
  """Main entry point for the inventory dump script."""
  del argv
  asyncio.run(dump_inventory())


if __name__ == "__main__":
  absl_app.run(main)
