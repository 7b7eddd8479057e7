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

"""Order routes for the storefront server."""

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from models import OrderFromSessionRequest
from models import OrderFromSessionResponse
from services.order_service import OrderService

router = APIRouter(prefix="/api/orders")


@router.post(
    "/from-session",
    response_model=OrderFromSessionResponse,
    response_model_exclude_none=True,
    operation_id="create_order_from_session",
)
async def create_order_from_session(
    order_req: OrderFromSessionRequest = Body(...),
    order_service: OrderService = Depends(dependencies.get_order_service),
) -> OrderFromSessionResponse:
  """Creates the order for a paid session if the webhook has not yet."""
  return await order_service.create_order_from_session(order_req.session_id)
