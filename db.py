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

"""Database management and persistence layer for the storefront server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode and immediate transactions: concurrent writers (the webhook and the
  fallback reconciliation call) queue on the database write lock instead of
  failing on a stale snapshot.
- Declarative Models: Defines tables for the catalog, discount instruments,
  customers and orders.
- Data Access Helpers: A suite of asynchronous functions, including the
  conditional updates used for inventory, coupon usage and gift card balances.
"""

import dataclasses
import datetime
import logging
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import Boolean
from sqlalchemy import case
from sqlalchemy import Column
from sqlalchemy import event
from sqlalchemy import ForeignKey
from sqlalchemy import func
from sqlalchemy import Integer
from sqlalchemy import JSON
from sqlalchemy import or_
from sqlalchemy import select
from sqlalchemy import String
from sqlalchemy import UniqueConstraint
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

def utcnow_iso() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
  """Parses a stored ISO-8601 timestamp, assuming UTC when naive."""
  if not value:
    return None
  parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.timezone.utc)
  return parsed


def _enable_sqlite_immediate_transactions(engine: AsyncEngine) -> None:
  """Switches SQLite connections to WAL and BEGIN IMMEDIATE transactions."""

  @event.listens_for(engine.sync_engine, "connect")
  def _on_connect(dbapi_connection, connection_record):
    del connection_record  # Unused.
    # Take over transaction control from the driver.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

  @event.listens_for(engine.sync_engine, "begin")
  def _on_begin(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, database_path: str, poolclass=None) -> None:
    """Initializes the database engine and creates tables.

    Args:
      database_path: Path to the SQLite database file.
      poolclass: Optional SQLAlchemy pool class (tests pass NullPool).
    """
    url = f"sqlite+aiosqlite:///{database_path}"
    kwargs = {"poolclass": poolclass} if poolclass else {}
    self.engine = create_async_engine(
        url, echo=False, connect_args={"timeout": 30}, **kwargs
    )
    _enable_sqlite_immediate_transactions(self.engine)

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()
      self.engine = None
      self.session_factory = None


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Store(Base):
  __tablename__ = "stores"

  id = Column(String, primary_key=True)
  name = Column(String)
  config = Column(JSON, nullable=True)  # lowStockThreshold, ...


class Product(Base):
  __tablename__ = "products"

  id = Column(String, primary_key=True)
  store_id = Column(String, index=True)
  name = Column(String)
  description = Column(String, nullable=True)
  price = Column(Integer)  # Price in cents
  track_inventory = Column(Boolean, default=False)
  inventory_count = Column(Integer, nullable=True)
  is_digital = Column(Boolean, default=False)
  images = Column(JSON, default=list)

  variants = relationship("ProductVariant", back_populates="product")


class ProductVariant(Base):
  __tablename__ = "product_variants"

  id = Column(String, primary_key=True)
  product_id = Column(String, ForeignKey("products.id"), index=True)
  name = Column(String)
  sku = Column(String, nullable=True)
  price_adjustment = Column(Integer, default=0)  # In cents, may be negative
  track_inventory = Column(Boolean, default=False)
  inventory_count = Column(Integer, nullable=True)
  options = Column(JSON, default=dict)

  product = relationship("Product", back_populates="variants")


class Coupon(Base):
  __tablename__ = "coupons"
  __table_args__ = (UniqueConstraint("store_id", "code"),)

  id = Column(String, primary_key=True)
  store_id = Column(String, index=True)
  code = Column(String)
  description = Column(String, nullable=True)
  discount_type = Column(String)  # 'percentage' or 'fixed'
  discount_value = Column(Integer)  # Percentage (e.g., 10) or cents
  minimum_order_amount = Column(Integer, default=0)  # In cents
  max_uses = Column(Integer, nullable=True)
  current_uses = Column(Integer, default=0)
  starts_at = Column(String, nullable=True)
  expires_at = Column(String, nullable=True)
  is_active = Column(Boolean, default=True)


class GiftCard(Base):
  __tablename__ = "gift_cards"

  id = Column(String, primary_key=True)
  store_id = Column(String, index=True)
  code = Column(String, unique=True)
  original_amount = Column(Integer)
  current_balance = Column(Integer)
  status = Column(String, default="active")
  purchased_by_email = Column(String, nullable=True)
  purchased_by_name = Column(String, nullable=True)
  recipient_email = Column(String, nullable=True)
  recipient_name = Column(String, nullable=True)
  gift_message = Column(String, nullable=True)
  purchase_session_id = Column(String, unique=True, nullable=True)
  last_used_at = Column(String, nullable=True)
  email_sent_at = Column(String, nullable=True)
  created_at = Column(String)


class GiftCardTransaction(Base):
  __tablename__ = "gift_card_transactions"
  __table_args__ = (UniqueConstraint("gift_card_id", "order_id"),)

  id = Column(Integer, primary_key=True, autoincrement=True)
  gift_card_id = Column(String, ForeignKey("gift_cards.id"))
  order_id = Column(String, ForeignKey("orders.id"))
  amount = Column(Integer)
  balance_before = Column(Integer)
  balance_after = Column(Integer)
  created_at = Column(String)


class Customer(Base):
  __tablename__ = "customers"

  id = Column(String, primary_key=True)
  store_id = Column(String, index=True)
  name = Column(String)
  email = Column(String, index=True)

  addresses = relationship("CustomerAddress", back_populates="customer")


class CustomerSession(Base):
  __tablename__ = "customer_sessions"

  token = Column(String, primary_key=True)
  customer_id = Column(String, ForeignKey("customers.id"))
  expires_at = Column(String)


class CustomerAddress(Base):
  __tablename__ = "customer_addresses"

  id = Column(String, primary_key=True)
  customer_id = Column(String, ForeignKey("customers.id"))
  first_name = Column(String)
  last_name = Column(String)
  address_line1 = Column(String)
  address_line2 = Column(String, nullable=True)
  city = Column(String)
  state = Column(String, nullable=True)
  postal_code = Column(String)
  country = Column(String)

  customer = relationship("Customer", back_populates="addresses")


class Order(Base):
  __tablename__ = "orders"

  id = Column(String, primary_key=True)
  store_id = Column(String, index=True)
  # Sole idempotency guard against duplicate materialization.
  provider_session_id = Column(String, unique=True, nullable=False)
  provider_payment_intent_id = Column(String, nullable=True)
  customer_id = Column(String, nullable=True)
  customer_email = Column(String)
  customer_name = Column(String)
  shipping_address = Column(JSON, nullable=True)
  subtotal = Column(Integer)
  tax = Column(Integer, default=0)
  shipping_cost = Column(Integer, default=0)
  discount_amount = Column(Integer, default=0)
  coupon_code = Column(String, nullable=True)
  gift_card_code = Column(String, nullable=True)
  gift_card_amount = Column(Integer, default=0)
  currency = Column(String)
  total = Column(Integer)
  status = Column(String)
  created_at = Column(String)

  items = relationship("OrderItem", back_populates="order")


class OrderItem(Base):
  __tablename__ = "order_items"

  id = Column(String, primary_key=True)
  order_id = Column(String, ForeignKey("orders.id"), index=True)
  product_id = Column(String, nullable=True)
  product_name = Column(String)
  variant_info = Column(JSON, nullable=True)
  quantity = Column(Integer)
  unit_price = Column(Integer)  # In cents
  is_digital = Column(Boolean, default=False)
  download_token = Column(String, unique=True, nullable=True)
  download_count = Column(Integer, default=0)

  order = relationship("Order", back_populates="items")


@dataclasses.dataclass(frozen=True)
class InventoryChange:
  """Inventory level before and after a decrement."""

  name: str
  old_count: int
  new_count: int


# --- Data Access Helpers ---


async def get_store(session: AsyncSession, store_id: str) -> Optional[Store]:
  """Retrieves the store row, if the store has one."""
  return await session.get(Store, store_id)


async def get_product(
    session: AsyncSession, product_id: str
) -> Optional[Product]:
  """Retrieves a product by ID."""
  return await session.get(Product, product_id)


async def get_variant(
    session: AsyncSession, variant_id: str
) -> Optional[ProductVariant]:
  """Retrieves a product variant by ID."""
  return await session.get(ProductVariant, variant_id)


async def get_coupon_by_code(
    session: AsyncSession, store_id: str, code: str
) -> Optional[Coupon]:
  """Retrieves a store's active coupon by code, ignoring case.

  Args:
    session: The database session to use.
    store_id: The store the coupon must belong to.
    code: The code as typed by the customer.

  Returns:
    The Coupon object if found, otherwise None.
  """
  result = await session.execute(
      select(Coupon).where(
          Coupon.store_id == store_id,
          func.lower(Coupon.code) == code.strip().lower(),
          Coupon.is_active.is_(True),
      )
  )
  return result.scalars().first()


async def increment_coupon_usage(session: AsyncSession, coupon_id: str) -> bool:
  """Atomically counts one use of a coupon without exceeding its cap.

  Args:
    session: The database session to use.
    coupon_id: The coupon to update.

  Returns:
    True if the counter was incremented, False if the cap had been reached.
  """
  stmt = (
      update(Coupon)
      .where(Coupon.id == coupon_id)
      .where(
          or_(
              Coupon.max_uses.is_(None),
              Coupon.current_uses < Coupon.max_uses,
          )
      )
      .values(current_uses=Coupon.current_uses + 1)
  )
  result = await session.execute(stmt)
  return result.rowcount > 0


async def get_gift_card_by_code(
    session: AsyncSession, store_id: str, code: str
) -> Optional[GiftCard]:
  """Retrieves a store's gift card by its formatted code."""
  result = await session.execute(
      select(GiftCard).where(
          GiftCard.store_id == store_id, GiftCard.code == code
      )
  )
  return result.scalar_one_or_none()


async def get_gift_card_by_purchase_session(
    session: AsyncSession, purchase_session_id: str
) -> Optional[GiftCard]:
  """Retrieves the gift card bought in a given checkout session."""
  result = await session.execute(
      select(GiftCard).where(
          GiftCard.purchase_session_id == purchase_session_id
      )
  )
  return result.scalar_one_or_none()


async def redeem_gift_card(
    session: AsyncSession, gift_card_id: str, amount: int, order_id: str
) -> Optional[int]:
  """Deducts an amount from an active gift card and records the transaction.

  The balance check and the deduction happen in one conditional UPDATE, so two
  redemptions can never take the balance below zero.

  Args:
    session: The database session to use.
    gift_card_id: The gift card to charge.
    amount: Amount to deduct, in cents.
    order_id: The order the redemption pays for.

  Returns:
    The new balance, or None if the card is missing, inactive or short.
  """
  gift_card = await session.get(
      GiftCard, gift_card_id, populate_existing=True
  )
  if not gift_card:
    return None
  balance_before = gift_card.current_balance

  new_balance = GiftCard.current_balance - amount
  stmt = (
      update(GiftCard)
      .where(GiftCard.id == gift_card_id)
      .where(GiftCard.status == "active")
      .where(GiftCard.current_balance == balance_before)
      .where(GiftCard.current_balance >= amount)
      .values(
          current_balance=new_balance,
          status=case((new_balance == 0, "exhausted"), else_="active"),
          last_used_at=utcnow_iso(),
      )
      .execution_options(synchronize_session=False)
  )
  result = await session.execute(stmt)
  if result.rowcount == 0:
    return None

  balance_after = balance_before - amount
  session.add(
      GiftCardTransaction(
          gift_card_id=gift_card_id,
          order_id=order_id,
          amount=amount,
          balance_before=balance_before,
          balance_after=balance_after,
          created_at=utcnow_iso(),
      )
  )
  return balance_after


async def _decrement_clamped(
    session: AsyncSession, model: Any, row_id: str, quantity: int
) -> Optional[tuple[int, int]]:
  """Decrements `inventory_count` in one UPDATE, floored at zero.

  The caller's transaction already holds the write lock (BEGIN IMMEDIATE),
  so the count read here is the one the UPDATE applies to.
  """
  result = await session.execute(
      select(model.track_inventory, model.inventory_count).where(
          model.id == row_id
      )
  )
  row = result.one_or_none()
  if row is None or not row.track_inventory or row.inventory_count is None:
    return None

  stmt = (
      update(model)
      .where(model.id == row_id)
      .values(
          inventory_count=func.max(model.inventory_count - quantity, 0)
      )
      .returning(model.inventory_count)
      .execution_options(synchronize_session=False)
  )
  new_count = (await session.execute(stmt)).scalar_one()
  return row.inventory_count, new_count


async def decrement_product_inventory(
    session: AsyncSession, product_id: str, quantity: int
) -> Optional[InventoryChange]:
  """Decrements a tracked product's inventory, never below zero.

  Returns:
    The old and new counts, or None when the product is missing or untracked.
  """
  counts = await _decrement_clamped(session, Product, product_id, quantity)
  if counts is None:
    return None
  product = await session.get(Product, product_id)
  return InventoryChange(
      name=product.name if product else product_id,
      old_count=counts[0],
      new_count=counts[1],
  )


async def decrement_variant_inventory(
    session: AsyncSession, variant_id: str, quantity: int
) -> Optional[InventoryChange]:
  """Decrements a tracked variant's inventory, never below zero."""
  counts = await _decrement_clamped(
      session, ProductVariant, variant_id, quantity
  )
  if counts is None:
    return None
  variant = await session.get(ProductVariant, variant_id)
  name = variant_id
  if variant:
    product = await session.get(Product, variant.product_id)
    name = f"{product.name} - {variant.name}" if product else variant.name
  return InventoryChange(name=name, old_count=counts[0], new_count=counts[1])


async def get_customer_by_token(
    session: AsyncSession, token: str, store_id: str
) -> Optional[Customer]:
  """Resolves a customer session token to a customer of the given store."""
  customer_session = await session.get(CustomerSession, token)
  if not customer_session:
    return None
  expires_at = parse_timestamp(customer_session.expires_at)
  now = datetime.datetime.now(datetime.timezone.utc)
  if expires_at is None or expires_at < now:
    return None

  customer = await session.get(Customer, customer_session.customer_id)
  if not customer or customer.store_id != store_id:
    return None
  return customer


async def get_customer_address(
    session: AsyncSession, customer_id: str, address_id: str
) -> Optional[CustomerAddress]:
  """Retrieves a saved address, only if it belongs to the customer."""
  result = await session.execute(
      select(CustomerAddress).where(
          CustomerAddress.id == address_id,
          CustomerAddress.customer_id == customer_id,
      )
  )
  return result.scalar_one_or_none()


async def get_order_by_session_id(
    session: AsyncSession, provider_session_id: str
) -> Optional[Order]:
  """Retrieves the order materialized from a provider checkout session."""
  result = await session.execute(
      select(Order).where(Order.provider_session_id == provider_session_id)
  )
  return result.scalar_one_or_none()


async def list_inventory(
    session: AsyncSession, store_id: Optional[str] = None
) -> List[Dict[str, Any]]:
  """Lists tracked inventory for products and variants.

  Args:
    session: The database session to use.
    store_id: Optional store filter.

  Returns:
    One dict per tracked product or variant with `id`, `kind`, `name` and
    `inventory_count`.
  """
  product_stmt = select(Product).where(Product.track_inventory.is_(True))
  if store_id:
    product_stmt = product_stmt.where(Product.store_id == store_id)
  products = (await session.execute(product_stmt)).scalars().all()

  variant_stmt = (
      select(ProductVariant, Product.name)
      .join(Product, Product.id == ProductVariant.product_id)
      .where(ProductVariant.track_inventory.is_(True))
  )
  if store_id:
    variant_stmt = variant_stmt.where(Product.store_id == store_id)
  variants = (await session.execute(variant_stmt)).all()

  rows = [
      {
          "id": p.id,
          "kind": "product",
          "name": p.name,
          "inventory_count": p.inventory_count,
      }
      for p in products
  ]
  for variant, product_name in variants:
    rows.append({
        "id": variant.id,
        "kind": "variant",
        "name": f"{product_name} - {variant.name}",
        "inventory_count": variant.inventory_count,
    })
  return rows


def new_id() -> str:
  return str(uuid.uuid4())
