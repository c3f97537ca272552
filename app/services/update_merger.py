"""
update_merger.py — Monotonic merge of supplier-reported order updates

Applies the parsing service's candidate order / item updates to the
stored Order and OrderItems without ever regressing progress.

Business Rules:
- tracking_number, shipping_carrier: taken whenever present
- expected_delivery: taken only when present and different
- status: taken only when its rank is strictly higher than the current
  one, or when it is CANCELLED (absorbing; nothing outranks it)
- item availability / tracking / expected / actual delivery: taken
  whenever present
- Only fields whose stored value actually changes are counted, so
  re-applying the same response counts zero
- Count zero → no commit, no ActivityLog entry
- Item updates are independent: an unknown item id is logged and skipped,
  the rest still apply; the aggregate audit entry is written after all

Called by: services/order_tracker.py
Depends on: models, schemas/webhooks, activity_service
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy.orm import Session

from ..models import Order, OrderItem
from ..models.enums import OrderStatus
from ..schemas.webhooks import ItemUpdate, OrderUpdates, ParseServiceResponse
from . import activity_service as activity


@dataclass
class MergeResult:
    order_fields: list[str] = field(default_factory=list)
    item_fields: dict[int, list[str]] = field(default_factory=dict)
    skipped_items: list[int] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.order_fields) + sum(len(f) for f in self.item_fields.values())


def merge_order_status(current: OrderStatus, candidate: OrderStatus | None) -> OrderStatus:
    """Resulting status after offering ``candidate`` to an order at ``current``."""
    current = OrderStatus(current)
    if candidate is None:
        return current
    candidate = OrderStatus(candidate)
    if candidate == OrderStatus.CANCELLED or candidate.rank > current.rank:
        return candidate
    return current


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _set(obj, attr: str, value, changed: list[str]) -> None:
    if getattr(obj, attr) != value:
        setattr(obj, attr, value)
        changed.append(attr)


def merge_order_updates(order: Order, updates: OrderUpdates | None) -> list[str]:
    """Apply order-level updates in place. Returns the changed field names."""
    changed: list[str] = []
    if updates is None:
        return changed
    if updates.tracking_number:
        _set(order, "tracking_number", updates.tracking_number, changed)
    if updates.shipping_carrier:
        _set(order, "shipping_carrier", updates.shipping_carrier, changed)
    if updates.expected_delivery:
        _set(order, "expected_delivery", _as_utc(updates.expected_delivery), changed)
    if updates.status:
        new_status = merge_order_status(order.status, updates.status)
        if new_status != order.status:
            order.status = new_status
            changed.append("status")
        elif updates.status != order.status:
            logger.info(
                "Order {} ignoring status {} (current {})",
                order.order_number, updates.status.value, OrderStatus(order.status).value,
            )
    return changed


def merge_item_update(item: OrderItem, update: ItemUpdate) -> list[str]:
    changed: list[str] = []
    if update.availability:
        _set(item, "availability", update.availability, changed)
    if update.tracking_number:
        _set(item, "tracking_number", update.tracking_number, changed)
    if update.expected_delivery:
        _set(item, "expected_delivery", _as_utc(update.expected_delivery), changed)
    if update.actual_delivery:
        _set(item, "actual_delivery", _as_utc(update.actual_delivery), changed)
    return changed


def merge_response(order: Order, response: ParseServiceResponse) -> MergeResult:
    """Apply a whole parsing response to an order and its items in memory."""
    result = MergeResult(order_fields=merge_order_updates(order, response.order_updates))
    items = {item.id: item for item in order.items}
    for update in response.item_updates:
        item = items.get(update.id)
        if item is None:
            logger.warning("Order {} has no item {}; skipping its update", order.order_number, update.id)
            result.skipped_items.append(update.id)
            continue
        changed = merge_item_update(item, update)
        if changed:
            result.item_fields[item.id] = changed
    return result


def apply_parse_response(
    db: Session,
    order: Order,
    response: ParseServiceResponse,
    *,
    user_id: int | None = None,
    source: str = "manual_sync",
    **details,
) -> MergeResult:
    """Merge, then persist and audit only when something changed."""
    result = merge_response(order, response)
    if result.count == 0:
        logger.info("Order {} sync ({}) applied no updates", order.order_number, source)
        return result

    activity.log_order_activity(
        db, user_id, order, activity.ORDER_TRACKING_UPDATED, "Order Tracking Updated",
        f"Order {order.order_number} tracking information synced from supplier emails "
        f"({result.count} update(s))",
        source=source,
        update_count=result.count,
        order_fields=result.order_fields,
        item_updates={str(k): v for k, v in result.item_fields.items()},
        skipped_items=result.skipped_items,
        **details,
    )
    db.commit()
    logger.info("Order {} sync ({}) applied {} update(s)", order.order_number, source, result.count)
    return result
