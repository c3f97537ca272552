"""
orders.py — Orders Router

Order detail and the manual "sync updates" action that reconciles an
order from the supplier mail received after it was placed.

Business Rules:
- sync-updates returns the number of fields actually changed; zero means
  nothing was written and no activity entry was logged
- Orders of another organization are never visible

Called by: main.py (router mount)
Depends on: services/order_tracker
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_same_org, require_user
from ..errors import NotFound
from ..models import ActivityLog, Order, User
from ..services.order_tracker import sync_order_updates

router = APIRouter(tags=["orders"])


def _get_order(db: Session, order_id: int, user: User) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound(f"order {order_id} not found", public_message="Order not found")
    require_same_org(user, order, "order")
    return order


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


@router.get("/api/orders/{order_id}")
async def get_order(order_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    order = _get_order(db, order_id, user)
    activity = (
        db.query(ActivityLog)
        .filter_by(entity_type="order", entity_id=order.id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(20)
        .all()
    )
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "supplier": {"id": order.supplier.id, "name": order.supplier.name} if order.supplier else None,
        "quote_request_id": order.quote_request_id,
        "email_thread_id": order.email_thread_id,
        "fulfillment_method": order.fulfillment_method.value,
        "subtotal": _money(order.subtotal),
        "tax": _money(order.tax),
        "shipping": _money(order.shipping),
        "total": _money(order.total),
        "tracking_number": order.tracking_number,
        "shipping_carrier": order.shipping_carrier,
        "expected_delivery": _iso(order.expected_delivery),
        "actual_delivery": _iso(order.actual_delivery),
        "notes": order.notes,
        "created_at": _iso(order.created_at),
        "items": [
            {
                "id": i.id,
                "part_number": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "unit_price": _money(i.unit_price),
                "total_price": _money(i.total_price),
                "availability": i.availability.value if i.availability else None,
                "tracking_number": i.tracking_number,
                "expected_delivery": _iso(i.expected_delivery),
                "actual_delivery": _iso(i.actual_delivery),
            }
            for i in order.items
        ],
        "activity": [
            {
                "type": a.activity_type,
                "title": a.title,
                "description": a.description,
                "created_at": _iso(a.created_at),
            }
            for a in activity
        ],
    }


@router.post("/api/orders/{order_id}/sync-updates")
async def sync_updates(order_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)):
    order = _get_order(db, order_id, user)
    result = await sync_order_updates(db, order, user=user)
    return {
        "success": True,
        "update_count": result.count,
        "order_fields": result.order_fields,
        "item_fields": result.item_fields,
        "skipped_items": result.skipped_items,
        "status": order.status.value,
    }
