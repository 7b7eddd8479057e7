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

"""Shared configuration and startup logic for the storefront server.

Every setting is an absl flag. Secrets default to the matching environment
variable so they do not have to appear on the command line.
"""

import contextlib
import os
from typing import Optional

from absl import flags
import db
from enums import CouponUsageCommit
from fastapi import FastAPI
from pydantic import BaseModel
from pydantic import ConfigDict

FLAGS = flags.FLAGS

SERVER_VERSION = "1.0.0"

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("database_path", None, "Path to the SQLite database")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "store_id", os.environ.get("STORE_ID"), "Identifier of the served store"
  )
  flags.DEFINE_string(
      "store_name", os.environ.get("STORE_NAME", "My Store"), "Store name"
  )
  flags.DEFINE_string("currency", "usd", "ISO currency code for charges")
  flags.DEFINE_string(
      "app_url",
      os.environ.get("APP_URL", "http://localhost:3000"),
      "Storefront origin used when the request has no Origin header",
  )
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY"),
      "Stripe secret API key",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET"),
      "Secret used to verify Stripe webhook signatures",
  )
  flags.DEFINE_string(
      "stripe_account_id",
      os.environ.get("STRIPE_ACCOUNT_ID"),
      "Connected account receiving destination charges",
  )
  flags.DEFINE_boolean(
      "shipping_enabled", True, "Collect shipping addresses for physical goods"
  )
  flags.DEFINE_list(
      "shipping_countries", ["US"], "Countries allowed for shipping"
  )
  flags.DEFINE_string(
      "resend_api_key",
      os.environ.get("RESEND_API_KEY"),
      "API key for transactional e-mail",
  )
  flags.DEFINE_string(
      "email_from",
      os.environ.get("EMAIL_FROM", "onboarding@resend.dev"),
      "Sender address for transactional e-mail",
  )
  flags.DEFINE_string(
      "store_owner_email",
      os.environ.get("STORE_OWNER_EMAIL"),
      "Recipient of new-order and low-stock alerts",
  )
  flags.DEFINE_integer(
      "low_stock_threshold", 5, "Default inventory level for low-stock alerts"
  )
  flags.DEFINE_boolean(
      "low_stock_emails_enabled", True, "Send low-stock alert e-mails"
  )
  flags.DEFINE_enum_class(
      "coupon_usage_commit",
      CouponUsageCommit.SESSION,
      CouponUsageCommit,
      "Whether coupon usage is counted at session creation or at order time",
  )
except flags.DuplicateFlagError:
  pass


class StoreConfig(BaseModel):
  """Immutable snapshot of the settings a request handler needs."""

  model_config = ConfigDict(frozen=True)

  store_id: Optional[str] = None
  store_name: str = "My Store"
  currency: str = "usd"
  app_url: str = "http://localhost:3000"
  stripe_secret_key: Optional[str] = None
  stripe_webhook_secret: Optional[str] = None
  stripe_account_id: Optional[str] = None
  shipping_enabled: bool = True
  shipping_countries: tuple[str, ...] = ("US",)
  resend_api_key: Optional[str] = None
  email_from: str = "onboarding@resend.dev"
  store_owner_email: Optional[str] = None
  low_stock_threshold: int = 5
  low_stock_emails_enabled: bool = True
  coupon_usage_commit: CouponUsageCommit = CouponUsageCommit.SESSION


def load_store_config() -> StoreConfig:
  """Builds a StoreConfig from the current flag values."""
  if not FLAGS.is_parsed():
    # Imported by an ASGI runner or a test runner: use the defaults.
    FLAGS.mark_as_parsed()
  return StoreConfig(
      store_id=FLAGS.store_id,
      store_name=FLAGS.store_name,
      currency=FLAGS.currency,
      app_url=FLAGS.app_url,
      stripe_secret_key=FLAGS.stripe_secret_key,
      stripe_webhook_secret=FLAGS.stripe_webhook_secret,
      stripe_account_id=FLAGS.stripe_account_id,
      shipping_enabled=FLAGS.shipping_enabled,
      shipping_countries=tuple(FLAGS.shipping_countries or ()),
      resend_api_key=FLAGS.resend_api_key,
      email_from=FLAGS.email_from,
      store_owner_email=FLAGS.store_owner_email,
      low_stock_threshold=FLAGS.low_stock_threshold,
      low_stock_emails_enabled=FLAGS.low_stock_emails_enabled,
      coupon_usage_commit=FLAGS.coupon_usage_commit,
  )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing the database."""
  del app  # Unused.
  # In tests the database is injected through dependency overrides.
  if FLAGS.is_parsed() and FLAGS.database_path:
    await db.manager.init_db(FLAGS.database_path)
  yield
  await db.manager.close()
