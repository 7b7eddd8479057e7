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

"""Transactional e-mail notifications.

Messages are sent through the Resend HTTP API. Delivery is best effort: every
`send_*` method returns False instead of raising when the message could not be
sent, and callers only log the outcome.
"""

import dataclasses
import html
import logging
from typing import Dict, List, Optional

import httpx
from services import pricing

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclasses.dataclass(frozen=True)
class OrderLine:
  product_name: str
  quantity: int
  unit_price: int
  is_digital: bool = False
  download_token: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class OrderDetails:
  """Order summary rendered into confirmation and alert e-mails."""

  order_id: str
  customer_name: str
  customer_email: str
  items: List[OrderLine]
  subtotal: int
  tax: int
  shipping_cost: int
  discount_amount: int
  total: int
  coupon_code: Optional[str] = None
  gift_card_amount: int = 0
  shipping_address: Optional[Dict[str, Optional[str]]] = None

  @property
  def has_digital_items(self) -> bool:
    return any(item.is_digital for item in self.items)


@dataclasses.dataclass(frozen=True)
class LowStockAlert:
  id: str
  name: str
  current_stock: int
  threshold: int


@dataclasses.dataclass(frozen=True)
class GiftCardPurchase:
  amount: int
  recipient_email: str
  sender_email: str
  recipient_name: Optional[str] = None
  sender_name: Optional[str] = None
  gift_message: Optional[str] = None


def _items_table(items: List[OrderLine]) -> str:
  rows = "".join(
      f"<tr><td>{html.escape(item.product_name)}</td>"
      f"<td>{item.quantity}</td>"
      f"<td>{pricing.format_cents(item.unit_price * item.quantity)}</td></tr>"
      for item in items
  )
  return f"<table>{rows}</table>"


def _totals(details: OrderDetails) -> str:
  lines = [f"<p>Subtotal: {pricing.format_cents(details.subtotal)}</p>"]
  if details.discount_amount:
    label = "Discount"
    if details.coupon_code:
      label = f"Discount ({html.escape(details.coupon_code)})"
    lines.append(
        f"<p>{label}: -{pricing.format_cents(details.discount_amount)}</p>"
    )
  if details.shipping_cost:
    lines.append(f"<p>Shipping: {pricing.format_cents(details.shipping_cost)}</p>")
  if details.tax:
    lines.append(f"<p>Tax: {pricing.format_cents(details.tax)}</p>")
  lines.append(f"<p><strong>Total: {pricing.format_cents(details.total)}</strong></p>")
  return "".join(lines)


class NotificationService:
  """Sends the store's transactional e-mails."""

  def __init__(
      self,
      api_key: Optional[str],
      email_from: str,
      store_name: str,
      store_owner_email: Optional[str] = None,
      app_url: str = "http://localhost:3000",
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.api_key = api_key
    self.email_from = email_from
    self.store_name = store_name
    self.store_owner_email = store_owner_email
    self.app_url = app_url.rstrip("/")
    self.transport = transport

  async def _send(self, to: Optional[str], subject: str, body: str) -> bool:
    if not self.api_key:
      logger.info("E-mail not configured, skipping '%s'", subject)
      return False
    if not to:
      logger.info("No recipient for '%s', skipping", subject)
      return False

    payload = {
        "from": f"{self.store_name} <{self.email_from}>",
        "to": [to],
        "subject": subject,
        "html": body,
    }
    try:
      async with httpx.AsyncClient(transport=self.transport) as client:
        response = await client.post(
            RESEND_API_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=5.0,
        )
        response.raise_for_status()
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to send '%s' to %s: %s", subject, to, e)
      return False
    return True

  async def send_order_confirmation(self, details: OrderDetails) -> bool:
    body = (
        f"<h1>Thanks for your order, {html.escape(details.customer_name)}!</h1>"
        f"<p>Order {html.escape(details.order_id)}</p>"
        f"{_items_table(details.items)}{_totals(details)}"
    )
    if details.has_digital_items:
      links = "".join(
          f'<p><a href="{self.app_url}/api/download/{item.download_token}">'
          f"Download {html.escape(item.product_name)}</a></p>"
          for item in details.items
          if item.is_digital and item.download_token
      )
      body += f"<h2>Your downloads</h2>{links}"
    return await self._send(
        details.customer_email,
        f"Order confirmed - {self.store_name}",
        body,
    )

  async def send_new_order_alert(self, details: OrderDetails) -> bool:
    body = (
        f"<h1>New order {html.escape(details.order_id)}</h1>"
        f"<p>{html.escape(details.customer_name)} "
        f"({html.escape(details.customer_email)})</p>"
        f"{_items_table(details.items)}{_totals(details)}"
    )
    return await self._send(
        self.store_owner_email,
        f"New order: {pricing.format_cents(details.total)}",
        body,
    )

  async def send_low_stock_alert(self, alert: LowStockAlert) -> bool:
    body = (
        f"<h1>Low stock: {html.escape(alert.name)}</h1>"
        f"<p>Only {alert.current_stock} left (alert level {alert.threshold}).</p>"
    )
    return await self._send(
        self.store_owner_email, f"Low stock alert: {alert.name}", body
    )

  async def send_gift_card_purchase_confirmation(
      self, purchase: GiftCardPurchase
  ) -> bool:
    recipient = purchase.recipient_name or purchase.recipient_email
    body = (
        f"<h1>Your {pricing.format_cents(purchase.amount)} gift card is on"
        " its way</h1>"
        f"<p>We sent it to {html.escape(recipient)}.</p>"
    )
    return await self._send(
        purchase.sender_email,
        f"Gift card purchase confirmed - {self.store_name}",
        body,
    )

  async def send_gift_card_delivery(
      self, purchase: GiftCardPurchase, code: str
  ) -> bool:
    sender = purchase.sender_name or purchase.sender_email
    body = (
        f"<h1>You received a {pricing.format_cents(purchase.amount)} gift"
        f" card from {html.escape(sender)}</h1>"
        f"<p>Your code: <strong>{html.escape(code)}</strong></p>"
    )
    if purchase.gift_message:
      body += f"<blockquote>{html.escape(purchase.gift_message)}</blockquote>"
    return await self._send(
        purchase.recipient_email,
        f"You've received a gift card from {self.store_name}",
        body,
    )
