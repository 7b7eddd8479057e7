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

"""Order materialization from paid checkout sessions.

A paid session reaches this module through two independent entry points: the
signed payment provider webhook (`handle_webhook`) and the client's fallback
call after the payment redirect (`create_order_from_session`). Both converge
on `materialize_order`, which walks the states of `MaterializationState`:

  EVENT_RECEIVED -> SIGNATURE_VERIFIED -> ALREADY_PROCESSED
                                       -> ORDER_CREATING -> ITEMS_CREATING
                                          -> INVENTORY_DECREMENTING
                                          -> NOTIFICATIONS_DISPATCHED

The order row, its items, the inventory decrements and the discount
instrument usage commit in a single transaction. The unique
`provider_session_id` column makes the whole materialization idempotent, so
any number of concurrent or repeated runs for a session create one order.
Notifications are sent after the commit and never affect the outcome.
"""

import dataclasses
import json
import logging
from typing import Any, Dict, List, Optional, Tuple
import uuid

import config
import db
from enums import CouponUsageCommit
from enums import MaterializationState
from enums import OrderStatus
from exceptions import InvalidRequestError
from exceptions import MalformedPayloadError
from exceptions import PaymentNotCompletedError
from models import OrderFromSessionResponse
from services.gift_card_service import GiftCardService
from services.notification_service import LowStockAlert
from services.notification_service import NotificationService
from services.notification_service import OrderDetails
from services.notification_service import OrderLine
from services.payment_provider import CheckoutCompleted
from services.payment_provider import OtherEvent
from services.payment_provider import PaymentProvider
from services.payment_provider import ProviderLineItem
from services.payment_provider import ProviderSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class MaterializationResult:
  """Outcome of one run of the materialization state machine."""

  state: Optional[MaterializationState] = None
  order_id: Optional[str] = None
  gift_card_id: Optional[str] = None
  visited: List[MaterializationState] = dataclasses.field(default_factory=list)

  def advance(self, state: MaterializationState) -> None:
    self.state = state
    self.visited.append(state)

  @property
  def already_processed(self) -> bool:
    return self.state == MaterializationState.ALREADY_PROCESSED


@dataclasses.dataclass(frozen=True)
class LowStockPolicy:
  threshold: int
  enabled: bool

  def crossed(self, old_count: int, new_count: int) -> bool:
    """True when a decrement moved the count to or below the threshold."""
    return self.enabled and old_count > self.threshold >= new_count


def _shipping_from_metadata(
    metadata: Dict[str, str],
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
  """Returns the saved address and recipient name carried in metadata."""
  raw = metadata.get("saved_address_json")
  if not raw:
    return None, None
  try:
    saved = json.loads(raw)
    address = {
        "line1": saved.get("line1"),
        "line2": saved.get("line2") or None,
        "city": saved.get("city"),
        "state": saved.get("state") or None,
        "postal_code": saved.get("postal_code"),
        "country": saved.get("country"),
    }
    names = (saved.get("first_name"), saved.get("last_name"))
    name = " ".join(part for part in names if part)
  except (ValueError, AttributeError) as e:
    logger.error("Failed to parse saved address: %s", e)
    return None, None
  if not address["line1"]:
    return None, None
  return address, name or None


def _metadata_int(metadata: Dict[str, str], key: str) -> int:
  try:
    return int(metadata.get(key) or 0)
  except ValueError:
    logger.warning("Ignoring non-numeric metadata %s=%r", key, metadata[key])
    return 0


class OrderService:
  """Turns paid checkout sessions into orders, exactly once per session."""

  def __init__(
      self,
      session: AsyncSession,
      store_config: config.StoreConfig,
      payment_provider: PaymentProvider,
      notification_service: NotificationService,
  ):
    self.session = session
    self.store_config = store_config
    self.payment_provider = payment_provider
    self.notification_service = notification_service
    self.gift_cards = GiftCardService(
        session, store_config, payment_provider, notification_service
    )

  async def handle_webhook(
      self, payload: bytes, signature: Optional[str]
  ) -> MaterializationResult:
    """Processes one signed payment provider event.

    Args:
      payload: The raw request body.
      signature: The provider's signature header.

    Returns:
      The materialization result. Processing errors after signature
      verification are logged and leave the result in its last state.

    Raises:
      WebhookSignatureError: If the signature is missing or invalid.
      MalformedPayloadError: If the body is not a valid event.
    """
    result = MaterializationResult()
    result.advance(MaterializationState.EVENT_RECEIVED)

    event = self.payment_provider.construct_event(payload, signature or "")
    result.advance(MaterializationState.SIGNATURE_VERIFIED)

    if isinstance(event, OtherEvent):
      logger.info("Ignoring %s event", event.type)
      result.advance(MaterializationState.IGNORED)
      return result

    if isinstance(event, CheckoutCompleted):
      provider_session = event.session
    else:
      raise MalformedPayloadError()
    if not provider_session.is_paid:
      logger.info(
          "Session %s completed with payment status %s, ignoring",
          provider_session.id,
          provider_session.payment_status,
      )
      result.advance(MaterializationState.IGNORED)
      return result

    try:
      if provider_session.is_gift_card_purchase:
        result.gift_card_id = await self.gift_cards.fulfil_purchase(
            provider_session
        )
        result.advance(MaterializationState.NOTIFICATIONS_DISPATCHED)
      else:
        await self.materialize_order(provider_session, result)
    except Exception:  # pylint: disable=broad-exception-caught
      # Acknowledge anyway; the client fallback path can still reconcile.
      logger.exception(
          "Failed to process completed session %s", provider_session.id
      )
      await self.session.rollback()
    return result

  async def create_order_from_session(
      self, session_id: Optional[str]
  ) -> OrderFromSessionResponse:
    """Fallback reconciliation called after the payment redirect.

    Args:
      session_id: The provider checkout session id.

    Returns:
      The order id and whether it already existed.

    Raises:
      InvalidRequestError: If no session id was given.
      PaymentNotCompletedError: If the session is not paid.
      PaymentProviderError: If the session cannot be retrieved.
    """
    if not session_id:
      raise InvalidRequestError("Missing session_id")

    existing = await db.get_order_by_session_id(self.session, session_id)
    await self.session.commit()
    if existing:
      return OrderFromSessionResponse(order_id=existing.id, already_exists=True)

    provider_session = await self.payment_provider.retrieve_session(session_id)
    if not provider_session.is_paid:
      raise PaymentNotCompletedError()

    if provider_session.is_gift_card_purchase:
      await self.gift_cards.fulfil_purchase(provider_session)
      return OrderFromSessionResponse(is_gift_card=True)

    result = await self.materialize_order(provider_session)
    return OrderFromSessionResponse(
        order_id=result.order_id, already_exists=result.already_processed
    )

  async def materialize_order(
      self,
      provider_session: ProviderSession,
      result: Optional[MaterializationResult] = None,
  ) -> MaterializationResult:
    """Creates the order for a paid session unless it already exists.

    Args:
      provider_session: The paid checkout session.
      result: Result to continue from, when called by the webhook handler.

    Returns:
      The result, in ALREADY_PROCESSED or NOTIFICATIONS_DISPATCHED state.
    """
    result = result or MaterializationResult()
    session_id = provider_session.id

    existing = await db.get_order_by_session_id(self.session, session_id)
    await self.session.commit()
    if existing:
      logger.info("Order already exists for session %s", session_id)
      result.order_id = existing.id
      result.advance(MaterializationState.ALREADY_PROCESSED)
      return result

    # Prices come from the provider, not from anything the client sent.
    line_items = await self.payment_provider.list_line_items(session_id)

    try:
      order, order_lines, alerts = await self._write_order(
          provider_session, line_items, result
      )
      await self.session.commit()
    except IntegrityError:
      await self.session.rollback()
      existing = await db.get_order_by_session_id(self.session, session_id)
      await self.session.commit()
      if not existing:
        raise
      logger.info("Lost the race to create the order for %s", session_id)
      result.order_id = existing.id
      result.advance(MaterializationState.ALREADY_PROCESSED)
      return result

    if order is None:
      return result

    logger.info("Order %s created for session %s", order.id, session_id)
    result.order_id = order.id
    await self._dispatch_notifications(order, order_lines, alerts)
    result.advance(MaterializationState.NOTIFICATIONS_DISPATCHED)
    return result

  async def _write_order(
      self,
      provider_session: ProviderSession,
      line_items: List[ProviderLineItem],
      result: MaterializationResult,
  ) -> Tuple[Optional[db.Order], List[OrderLine], List[LowStockAlert]]:
    """Writes the order and its side effects in the current transaction."""
    # The write lock is held from here on; concurrent runs queue behind it.
    existing = await db.get_order_by_session_id(
        self.session, provider_session.id
    )
    if existing:
      result.order_id = existing.id
      result.advance(MaterializationState.ALREADY_PROCESSED)
      return None, [], []

    metadata = provider_session.metadata
    result.advance(MaterializationState.ORDER_CREATING)
    order = self._build_order(provider_session)
    self.session.add(order)
    await self.session.flush()

    result.advance(MaterializationState.ITEMS_CREATING)
    order_lines = []
    for item in line_items:
      order_item = self._build_order_item(order.id, item)
      self.session.add(order_item)
      order_lines.append(
          OrderLine(
              product_name=order_item.product_name,
              quantity=order_item.quantity,
              unit_price=order_item.unit_price,
              is_digital=order_item.is_digital,
              download_token=order_item.download_token,
          )
      )
    await self.session.flush()

    result.advance(MaterializationState.INVENTORY_DECREMENTING)
    alerts = await self._decrement_inventory(line_items, order.store_id)

    await self._redeem_gift_card(metadata, order)
    if (
        metadata.get("coupon_id")
        and self.store_config.coupon_usage_commit == CouponUsageCommit.ORDER
    ):
      if not await db.increment_coupon_usage(
          self.session, metadata["coupon_id"]
      ):
        logger.warning(
            "Coupon %s was over its usage cap at order time",
            metadata.get("coupon_code"),
        )
    return order, order_lines, alerts

  def _build_order(self, provider_session: ProviderSession) -> db.Order:
    metadata = provider_session.metadata
    address, recipient_name = _shipping_from_metadata(metadata)
    if address is None:
      address = provider_session.shipping_address

    return db.Order(
        id=db.new_id(),
        store_id=metadata.get("store_id") or self.store_config.store_id,
        provider_session_id=provider_session.id,
        provider_payment_intent_id=provider_session.payment_intent_id,
        customer_id=metadata.get("customer_id") or None,
        customer_email=provider_session.customer_email,
        customer_name=recipient_name or provider_session.customer_name,
        shipping_address=address,
        subtotal=provider_session.amount_subtotal,
        tax=provider_session.amount_tax,
        shipping_cost=provider_session.amount_shipping,
        discount_amount=provider_session.amount_discount,
        coupon_code=metadata.get("coupon_code") or None,
        gift_card_code=metadata.get("gift_card_code") or None,
        gift_card_amount=_metadata_int(metadata, "gift_card_amount"),
        currency=provider_session.currency.upper(),
        total=provider_session.amount_total,
        status=OrderStatus.PENDING.value,
        created_at=db.utcnow_iso(),
    )

  def _build_order_item(
      self, order_id: str, item: ProviderLineItem
  ) -> db.OrderItem:
    variant_info = None
    if item.variant_id and item.variant_name:
      variant_info = {"id": item.variant_id, "name": item.variant_name}
    download_token = None
    if item.is_digital and item.product_id:
      download_token = str(uuid.uuid4())
    return db.OrderItem(
        id=db.new_id(),
        order_id=order_id,
        product_id=item.product_id,
        product_name=item.description,
        variant_info=variant_info,
        quantity=item.quantity,
        unit_price=item.unit_amount,
        is_digital=item.is_digital,
        download_token=download_token,
        download_count=0,
    )

  async def _low_stock_policy(self, store_id: Optional[str]) -> LowStockPolicy:
    threshold = self.store_config.low_stock_threshold
    enabled = self.store_config.low_stock_emails_enabled
    store = await db.get_store(self.session, store_id) if store_id else None
    if store and store.config:
      threshold = store.config.get("lowStockThreshold", threshold)
      enabled = store.config.get("lowStockEmailsEnabled", enabled)
    return LowStockPolicy(threshold=threshold, enabled=enabled)

  async def _decrement_inventory(
      self, line_items: List[ProviderLineItem], store_id: Optional[str]
  ) -> List[LowStockAlert]:
    """Decrements physical items' inventory, returning low-stock alerts."""
    policy = await self._low_stock_policy(store_id)
    alerts = []
    for item in line_items:
      if item.is_digital or not item.product_id:
        continue
      if item.variant_id:
        change = await db.decrement_variant_inventory(
            self.session, item.variant_id, item.quantity
        )
        entity_id = item.variant_id
      else:
        change = await db.decrement_product_inventory(
            self.session, item.product_id, item.quantity
        )
        entity_id = item.product_id
      if change is None:
        continue

      logger.info(
          "Inventory for %s: %d -> %d",
          entity_id,
          change.old_count,
          change.new_count,
      )
      if policy.crossed(change.old_count, change.new_count):
        alerts.append(
            LowStockAlert(
                id=entity_id,
                name=change.name,
                current_stock=change.new_count,
                threshold=policy.threshold,
            )
        )
    return alerts

  async def _redeem_gift_card(
      self, metadata: Dict[str, str], order: db.Order
  ) -> None:
    gift_card_id = metadata.get("gift_card_id")
    amount = _metadata_int(metadata, "gift_card_amount")
    if not gift_card_id or amount <= 0:
      return
    try:
      async with self.session.begin_nested():
        new_balance = await db.redeem_gift_card(
            self.session, gift_card_id, amount, order.id
        )
    except SQLAlchemyError as e:
      logger.error("Failed to redeem gift card %s: %s", gift_card_id, e)
      return
    if new_balance is None:
      logger.error(
          "Gift card %s could not cover %d for order %s",
          gift_card_id,
          amount,
          order.id,
      )
    else:
      logger.info(
          "Gift card %s redeemed %d, new balance %d",
          gift_card_id,
          amount,
          new_balance,
      )

  async def _dispatch_notifications(
      self,
      order: db.Order,
      order_lines: List[OrderLine],
      alerts: List[LowStockAlert],
  ) -> None:
    details = OrderDetails(
        order_id=order.id,
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        items=order_lines,
        subtotal=order.subtotal,
        tax=order.tax,
        shipping_cost=order.shipping_cost,
        discount_amount=order.discount_amount,
        total=order.total,
        coupon_code=order.coupon_code,
        gift_card_amount=order.gift_card_amount,
        shipping_address=order.shipping_address,
    )
    await self._notify(
        "order confirmation",
        order.id,
        self.notification_service.send_order_confirmation(details),
    )
    await self._notify(
        "new order alert",
        order.id,
        self.notification_service.send_new_order_alert(details),
    )
    for alert in alerts:
      await self._notify(
          f"low stock alert for {alert.id}",
          order.id,
          self.notification_service.send_low_stock_alert(alert),
      )

  async def _notify(self, label: str, order_id: str, send) -> None:
    try:
      if not await send:
        logger.warning("Did not send %s for order %s", label, order_id)
    except Exception as e:  # pylint: disable=broad-exception-caught
      logger.error("Failed to send %s for order %s: %s", label, order_id, e)
