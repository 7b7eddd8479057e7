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

"""Stock validation for resolved cart lines."""

import dataclasses
import logging
from typing import List, Optional, Sequence

import db
from exceptions import InsufficientStockError
from models import StockIssue
from services import pricing

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ResolvedLine:
  """A cart line joined with its product and optional variant rows."""

  product: db.Product
  quantity: int
  variant: Optional[db.ProductVariant] = None

  @property
  def unit_price(self) -> int:
    adjustment = self.variant.price_adjustment if self.variant else 0
    return pricing.resolve_unit_price(self.product.price, adjustment)

  @property
  def display_name(self) -> str:
    if self.variant:
      return f"{self.product.name} - {self.variant.name}"
    return self.product.name

  @property
  def is_digital(self) -> bool:
    return bool(self.product.is_digital)


def _available(entity) -> Optional[int]:
  """Tracked inventory of a product or variant, None when unlimited."""
  if not entity.track_inventory or entity.inventory_count is None:
    return None
  return entity.inventory_count


def find_stock_issues(lines: Sequence[ResolvedLine]) -> List[StockIssue]:
  """Checks every line against tracked inventory.

  Variant lines are checked against the variant's own count and product lines
  against the product's count. All lines are checked so the caller can report
  every shortfall at once.

  Args:
    lines: The resolved cart lines.

  Returns:
    One StockIssue per line whose requested quantity exceeds availability.
  """
  issues = []
  for line in lines:
    entity = line.variant if line.variant else line.product
    available = _available(entity)
    if available is None or line.quantity <= available:
      continue
    issues.append(
        StockIssue(
            product_id=line.product.id,
            variant_id=line.variant.id if line.variant else None,
            product_name=line.product.name,
            variant_name=line.variant.name if line.variant else None,
            requested=line.quantity,
            available=available,
        )
    )
  return issues


def validate_stock(lines: Sequence[ResolvedLine]) -> None:
  """Raises InsufficientStockError listing every short line."""
  issues = find_stock_issues(lines)
  if issues:
    logger.info("Checkout rejected with %d stock issue(s)", len(issues))
    raise InsufficientStockError([issue.to_wire() for issue in issues])
