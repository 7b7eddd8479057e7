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

"""Request and response models for the storefront API.

Fields are snake_case in Python and camelCase on the wire, matching what the
cart UI sends.
"""

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
  """Base model accepting both camelCase and snake_case field names."""

  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

  def to_wire(self) -> Dict[str, Any]:
    return self.model_dump(by_alias=True, exclude_none=True)


class VariantInfo(ApiModel):
  """Display data the cart keeps for a selected variant.

  The price adjustment is accepted for compatibility only; the server prices
  variants from the database.
  """

  id: Optional[str] = None
  name: Optional[str] = None
  sku: Optional[str] = None
  price_adjustment: int = Field(
      default=0,
      validation_alias=AliasChoices(
          "priceAdjustment", "price_adjustment", "priceAdjustmentCents"
      ),
  )
  options: Dict[str, str] = Field(default_factory=dict)


class CartLine(ApiModel):
  product_id: str
  quantity: int = Field(ge=1)
  variant_id: Optional[str] = None
  variant_info: Optional[VariantInfo] = None


class CheckoutRequest(ApiModel):
  items: List[CartLine] = Field(default_factory=list)
  coupon_code: Optional[str] = None
  gift_card_code: Optional[str] = None
  saved_address_id: Optional[str] = None


class CheckoutResponse(ApiModel):
  url: str


class StockIssue(ApiModel):
  """One cart line whose quantity exceeds the tracked inventory."""

  product_id: str
  variant_id: Optional[str] = None
  product_name: str
  variant_name: Optional[str] = None
  requested: int
  available: int


class CouponValidationRequest(ApiModel):
  code: Optional[str] = None
  cart_total: Optional[float] = None  # In dollars


class CouponSummary(ApiModel):
  code: str
  description: Optional[str] = None
  discount_type: str
  discount_value: int
  discount_amount: float  # In dollars


class CouponValidationResponse(ApiModel):
  valid: bool
  error: Optional[str] = None
  coupon: Optional[CouponSummary] = None


class GiftCardValidationRequest(ApiModel):
  code: Optional[str] = None
  cart_total: Optional[float] = None  # In dollars


class GiftCardSummary(ApiModel):
  code: str
  balance: float
  balance_formatted: str
  applicable_amount: float
  applicable_amount_formatted: str


class GiftCardValidationResponse(ApiModel):
  valid: bool
  error: Optional[str] = None
  gift_card: Optional[GiftCardSummary] = None


class GiftCardCheckoutRequest(ApiModel):
  amount: int  # In cents
  recipient_email: Optional[str] = None
  recipient_name: Optional[str] = None
  sender_email: Optional[str] = None
  sender_name: Optional[str] = None
  gift_message: Optional[str] = None


class OrderFromSessionRequest(ApiModel):
  session_id: Optional[str] = None


class OrderFromSessionResponse(ApiModel):
  success: bool = True
  order_id: Optional[str] = None
  already_exists: Optional[bool] = None
  is_gift_card: Optional[bool] = None


class WebhookAck(ApiModel):
  received: bool = True
