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

"""Checkout and coupon routes for the storefront server."""

import logging
from typing import Optional

import dependencies
from exceptions import StorefrontError
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import CheckoutRequest
from models import CheckoutResponse
from models import CouponValidationRequest
from models import CouponValidationResponse
from services.checkout_service import CheckoutService
from services.discount_service import DiscountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    operation_id="create_checkout_session",
)
async def create_checkout_session(
    checkout_req: CheckoutRequest = Body(...),
    token: Optional[str] = Depends(dependencies.bearer_token),
    origin: Optional[str] = Depends(dependencies.request_origin),
    checkout_service: CheckoutService = Depends(
        dependencies.get_checkout_service
    ),
) -> CheckoutResponse:
  """Creates a hosted checkout session for the cart."""
  try:
    url = await checkout_service.create_checkout_session(
        checkout_req, bearer_token=token, origin=origin
    )
  except StorefrontError:
    raise
  except Exception as e:  # pylint: disable=broad-exception-caught
    logger.exception("Unexpected checkout failure")
    raise StorefrontError("Failed to create checkout session") from e
  return CheckoutResponse(url=url)


@router.post(
    "/coupons/validate",
    response_model=CouponValidationResponse,
    response_model_exclude_none=True,
    operation_id="validate_coupon",
)
async def validate_coupon(
    validation_req: CouponValidationRequest = Body(...),
    discount_service: DiscountService = Depends(
        dependencies.get_discount_service
    ),
) -> CouponValidationResponse:
  """Checks a coupon code against a cart total given in dollars."""
  return await discount_service.validate_for_cart(validation_req)
