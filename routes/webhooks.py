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

"""Payment provider webhook route."""

import logging
from typing import Optional

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import WebhookAck
from services.order_service import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks")


@router.post(
    "/stripe",
    response_model=WebhookAck,
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> WebhookAck:
  """Receives signed checkout events from Stripe.

  Signature and payload errors are rejected with 400. Once the event is
  verified the response is always 200 so the provider does not retry
  application-level failures.
  """
  payload = await request.body()
  result = await order_service.handle_webhook(payload, stripe_signature)
  logger.info(
      "Webhook processed: state=%s order=%s",
      result.state.value if result.state else None,
      result.order_id,
  )
  return WebhookAck()
