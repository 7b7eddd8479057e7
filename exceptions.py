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

"""Custom exceptions for the storefront checkout server."""

from typing import Any, Dict, Optional


class StorefrontError(Exception):
  """Base class for all storefront exceptions."""

  def __init__(
      self,
      message: str,
      code: str = "INTERNAL_ERROR",
      status_code: int = 500,
      extra: Optional[Dict[str, Any]] = None,
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    self.extra = extra or {}
    super().__init__(self.message)


class InvalidRequestError(StorefrontError):
  """Raised when the request is invalid (e.g. missing fields)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class ConfigurationError(StorefrontError):
  """Raised when the store or payment provider is not configured."""

  def __init__(self, message: str):
    super().__init__(message, code="CONFIGURATION_ERROR", status_code=500)


class InsufficientStockError(StorefrontError):
  """Raised when one or more cart lines exceed the available inventory."""

  def __init__(self, stock_issues: list[Dict[str, Any]]):
    super().__init__(
        "Some items have insufficient stock",
        code="OUT_OF_STOCK",
        status_code=409,
        extra={"stockIssues": stock_issues},
    )
    self.stock_issues = stock_issues


class CouponInvalidError(StorefrontError):
  """Raised when a coupon fails one of its eligibility rules."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_COUPON", status_code=400)


class GiftCardInvalidError(StorefrontError):
  """Raised when a gift card cannot be applied."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_GIFT_CARD", status_code=400)


class PaymentProviderError(StorefrontError):
  """Raised when a call to the payment provider fails."""

  def __init__(self, message: str):
    super().__init__(message, code="PAYMENT_PROVIDER_ERROR", status_code=500)


class PaymentNotCompletedError(StorefrontError):
  """Raised when an order is requested for an unpaid checkout session."""

  def __init__(self, message: str = "Payment not completed"):
    super().__init__(message, code="PAYMENT_NOT_COMPLETED", status_code=400)


class WebhookSignatureError(StorefrontError):
  """Raised when a webhook signature is missing or does not verify."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_SIGNATURE", status_code=400)


class MalformedPayloadError(StorefrontError):
  """Raised when a verified webhook body cannot be decoded."""

  def __init__(self, message: str = "Malformed webhook payload"):
    super().__init__(message, code="MALFORMED_PAYLOAD", status_code=400)
