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

"""FastAPI dependencies for the storefront server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- The store configuration snapshot.
- Database session management.
- Payment provider and notification service construction.
- Service instantiation (CheckoutService, OrderService, GiftCardService).
- Customer bearer token extraction.
"""

from typing import AsyncGenerator, Optional

import config
import db
from fastapi import Depends
from fastapi import Header
from services.checkout_service import CheckoutService
from services.discount_service import DiscountService
from services.gift_card_service import GiftCardService
from services.notification_service import NotificationService
from services.order_service import OrderService
from services.payment_provider import PaymentProvider
from services.payment_provider import StripePaymentProvider
from sqlalchemy.ext.asyncio import AsyncSession


def get_store_config() -> config.StoreConfig:
  """Dependency provider for the store configuration."""
  return config.load_store_config()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a database session."""
  async with db.manager.session_factory() as session:
    yield session


def get_payment_provider(
    store_config: config.StoreConfig = Depends(get_store_config),
) -> PaymentProvider:
  """Dependency provider for the payment provider."""
  return StripePaymentProvider(
      api_key=store_config.stripe_secret_key or "",
      webhook_secret=store_config.stripe_webhook_secret,
  )


def get_notification_service(
    store_config: config.StoreConfig = Depends(get_store_config),
) -> NotificationService:
  """Dependency provider for NotificationService."""
  return NotificationService(
      api_key=store_config.resend_api_key,
      email_from=store_config.email_from,
      store_name=store_config.store_name,
      store_owner_email=store_config.store_owner_email,
      app_url=store_config.app_url,
  )


async def bearer_token(
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
  """Extracts the customer session token from the Authorization header."""
  if not authorization or not authorization.startswith("Bearer "):
    return None
  return authorization[len("Bearer ") :].strip() or None


async def request_origin(origin: Optional[str] = Header(None)) -> Optional[str]:
  """Extracts the storefront origin used for redirect URLs."""
  return origin


def get_checkout_service(
    session: AsyncSession = Depends(get_db),
    store_config: config.StoreConfig = Depends(get_store_config),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutService:
  """Dependency provider for CheckoutService."""
  return CheckoutService(session, store_config, payment_provider)


def get_discount_service(
    session: AsyncSession = Depends(get_db),
    store_config: config.StoreConfig = Depends(get_store_config),
) -> DiscountService:
  """Dependency provider for DiscountService."""
  return DiscountService(session, store_config.store_id)


def get_gift_card_service(
    session: AsyncSession = Depends(get_db),
    store_config: config.StoreConfig = Depends(get_store_config),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
    notification_service: NotificationService = Depends(
        get_notification_service
    ),
) -> GiftCardService:
  """Dependency provider for GiftCardService."""
  return GiftCardService(
      session, store_config, payment_provider, notification_service
  )


def get_order_service(
    session: AsyncSession = Depends(get_db),
    store_config: config.StoreConfig = Depends(get_store_config),
    payment_provider: PaymentProvider = Depends(get_payment_provider),
    notification_service: NotificationService = Depends(
        get_notification_service
    ),
) -> OrderService:
  """Dependency provider for OrderService."""
  return OrderService(
      session, store_config, payment_provider, notification_service
  )
