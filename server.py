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

"""Storefront Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Sequence
from absl import app as absl_app
import config
from exceptions import StorefrontError
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from routes.checkout import router as checkout_router
from routes.gift_cards import router as gift_cards_router
from routes.orders import router as orders_router
from routes.webhooks import router as webhooks_router
import uvicorn

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront Checkout Service",
    version=config.SERVER_VERSION,
    description="Checkout pricing and order reconciliation for one store",
    lifespan=config.lifespan,
)


@app.exception_handler(StorefrontError)
async def storefront_exception_handler(request: Request, exc: StorefrontError):
  """Converts storefront exceptions to JSON error responses."""
  del request  # Unused.
  if exc.status_code >= 500:
    logger.error("%s: %s", exc.code, exc.message)
  return JSONResponse(
      status_code=exc.status_code,
      content={"error": exc.message, "code": exc.code, **exc.extra},
  )


app.include_router(checkout_router)
app.include_router(gift_cards_router)
app.include_router(orders_router)
app.include_router(webhooks_router)


def main(argv: Sequence[str]) -> None:
  """Main entry point for the Storefront Checkout Server."""
  del argv  # Unused.

  if (
      config.FLAGS.database_path is None
      or config.FLAGS.port is None
      or not config.FLAGS.store_id
  ):
    logger.error("--database_path, --port and --store_id must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  uvicorn.run(app, host="0.0.0.0", port=config.FLAGS.port)


if __name__ == "__main__":
  absl_app.run(main)
