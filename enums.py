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

"""Enumerations for the storefront checkout server.

This module defines the enums used to represent orders, discount instruments
and the order materialization state machine.
"""

import enum


class OrderStatus(str, enum.Enum):
  PENDING = "pending"
  PROCESSING = "processing"
  SHIPPED = "shipped"
  DELIVERED = "delivered"
  CANCELLED = "cancelled"


class DiscountType(str, enum.Enum):
  PERCENTAGE = "percentage"
  FIXED = "fixed"


class GiftCardStatus(str, enum.Enum):
  ACTIVE = "active"
  DISABLED = "disabled"
  EXHAUSTED = "exhausted"


class CouponUsageCommit(str, enum.Enum):
  """When a coupon's usage counter is incremented."""

  SESSION = "session"
  ORDER = "order"


class MaterializationState(str, enum.Enum):
  """States visited while turning a paid checkout session into an order."""

  EVENT_RECEIVED = "event_received"
  SIGNATURE_VERIFIED = "signature_verified"
  IGNORED = "ignored"
  ALREADY_PROCESSED = "already_processed"
  ORDER_CREATING = "order_creating"
  ITEMS_CREATING = "items_creating"
  INVENTORY_DECREMENTING = "inventory_decrementing"
  NOTIFICATIONS_DISPATCHED = "notifications_dispatched"
