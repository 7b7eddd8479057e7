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

"""Gift card routes for the storefront server."""

from typing import Optional

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import CheckoutResponse
from models import GiftCardCheckoutRequest
from models import GiftCardValidationRequest
from models import GiftCardValidationResponse
from services.gift_card_service import GiftCardService

router = APIRouter(prefix="/api/gift-cards")


@router.post(
    "/validate",
    response_model=GiftCardValidationResponse,
    response_model_exclude_none=True,
    operation_id="validate_gift_card",
)
async def validate_gift_card(
    validation_req: GiftCardValidationRequest = Body(...),
    gift_card_service: GiftCardService = Depends(
        dependencies.get_gift_card_service
    ),
) -> GiftCardValidationResponse:
  """Reports a gift card's balance and how much of the cart it covers."""
  return await gift_card_service.validate_for_cart(validation_req)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    operation_id="create_gift_card_checkout",
)
async def create_gift_card_checkout(
    purchase_req: GiftCardCheckoutRequest = Body(...),
    origin: Optional[str] = Depends(dependencies.request_origin),
    gift_card_service: GiftCardService = Depends(
        dependencies.get_gift_card_service
    ),
) -> CheckoutResponse:
  """Creates a hosted checkout session for buying a gift card."""
  url = await gift_card_service.create_purchase_checkout(purchase_req, origin)
  return CheckoutResponse(url=url)
