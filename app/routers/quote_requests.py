"""
quote_requests.py — Quote Request Lifecycle Router

Reading a quote request with its derived status and overdue follow-ups,
sending it to suppliers, linking supplier threads, and the
accept / reject / reopen decisions.

Business Rules:
- Status shown is always re-derived from a fresh read of the threads
- Accept returns the created order; a failed accept leaves the quote and
  its threads as they were before the attempt
- The overdue list is sorted most overdue first; the page shows the head
- DELETE auto-sync cancels the pending thread-link retries (navigation away)

Called by: main.py (router mount)
Depends on: services/conversion, services/status_deriver,
            services/follow_up, services/thread_linker
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_same_org, require_user
from ..errors import NotFound, ValidationFailed
from ..models import EmailMessage, QuoteRequest, SupplierThread, User
from ..schemas.quotes import AcceptQuote, AddSupplier, FollowUpRequest, RejectQuote, SyncThreads
from ..services import conversion, thread_linker
from ..services.follow_up import overdue_for_quote, send_follow_up
from ..services.status_deriver import recompute_quote_status, refresh_thread_statuses

router = APIRouter(tags=["quote-requests"])


def _get_quote(db: Session, quote_id: int, user: User) -> QuoteRequest:
    quote = db.get(QuoteRequest, quote_id)
    if not quote:
        raise NotFound(f"quote request {quote_id} not found", public_message="Quote request not found")
    require_same_org(user, quote, "quote request")
    return quote


def _iso(value):
    return value.isoformat() if value else None


def _overdue_dict(o) -> dict:
    return {
        "message_id": o.message_id,
        "thread_id": o.thread_id,
        "supplier_id": o.supplier_id,
        "expected_response_by": _iso(o.expected_response_by),
        "days_overdue": o.days_overdue,
    }


def _thread_dict(st: SupplierThread) -> dict:
    return {
        "id": st.id,
        "supplier_id": st.supplier_id,
        "supplier_name": st.supplier.name if st.supplier else None,
        "email_thread_id": st.email_thread_id,
        "is_primary": bool(st.is_primary),
        "negotiation_round": st.negotiation_round,
        "status": st.status.value,
        "response_date": _iso(st.response_date),
        "quoted_amount": float(st.quoted_amount) if st.quoted_amount is not None else None,
    }


# ── Read ──────────────────────────────────────────────────────────────


@router.get("/api/quote-requests/{quote_id}")
async def get_quote_request(
    quote_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    quote = _get_quote(db, quote_id, user)
    refresh_thread_statuses(db, quote)
    recompute_quote_status(db, quote, commit=False)
    db.commit()
    overdue = overdue_for_quote(db, quote)
    return {
        "id": quote.id,
        "quote_number": quote.quote_number,
        "title": quote.title,
        "status": quote.status.value,
        "negotiation_round": quote.negotiation_round,
        "supplier_ids": quote.supplier_ids,
        "selected_supplier_id": quote.selected_supplier_id,
        "notes": quote.notes,
        "response_date": _iso(quote.response_date),
        "items": [
            {
                "id": i.id,
                "supplier_id": i.supplier_id,
                "part_number": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "unit_price": float(i.unit_price) if i.unit_price is not None else None,
                "total_price": float(i.total_price) if i.total_price is not None else None,
                "availability": i.availability.value if i.availability else None,
            }
            for i in quote.items
        ],
        "threads": [_thread_dict(st) for st in quote.supplier_threads],
        "overdue_follow_up": _overdue_dict(overdue[0]) if overdue else None,
        "overdue_count": len(overdue),
    }


@router.get("/api/quote-requests/{quote_id}/follow-ups")
async def list_follow_ups(
    quote_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    quote = _get_quote(db, quote_id, user)
    return {"overdue": [_overdue_dict(o) for o in overdue_for_quote(db, quote)]}


# ── Sending / thread linking ──────────────────────────────────────────


@router.post("/api/quote-requests/{quote_id}/send")
async def send_quote_request(
    quote_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    return await conversion.send_quote_request(db, quote_id, user)


@router.post("/api/quote-requests/{quote_id}/sync-threads")
async def sync_threads(
    quote_id: int,
    payload: SyncThreads | None = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    quote = _get_quote(db, quote_id, user)
    force = payload.force_resync if payload else False
    result = thread_linker.sync_threads(db, quote, force_resync=force)
    if not result["errors"]:
        thread_linker.cancel_thread_link_retries(quote.id)
    return {"success": not result["errors"], **result}


@router.delete("/api/quote-requests/{quote_id}/auto-sync")
async def cancel_auto_sync(
    quote_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    _get_quote(db, quote_id, user)
    return {"cancelled": thread_linker.cancel_thread_link_retries(quote_id)}


# ── Decisions ─────────────────────────────────────────────────────────


@router.get("/api/quote-requests/{quote_id}/accept-summary")
async def accept_summary(
    quote_id: int,
    thread_id: int = Query(..., gt=0),
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    quote = _get_quote(db, quote_id, user)
    st = db.query(SupplierThread).filter_by(quote_request_id=quote.id, email_thread_id=thread_id).first()
    if not st:
        raise ValidationFailed(
            f"thread {thread_id} not on quote {quote.id}",
            public_message="Thread does not belong to this quote request",
        )
    return conversion.summarize_acceptance(db, quote, st.supplier_id, thread_id).to_dict()


@router.post("/api/quote-requests/{quote_id}/accept")
async def accept_quote(
    quote_id: int,
    payload: AcceptQuote,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    order = await conversion.accept_quote(
        db,
        quote_id,
        supplier_id=payload.supplier_id,
        thread_id=payload.thread_id,
        user=user,
        fulfillment_method=payload.fulfillment_method,
    )
    return {"order_id": order.id, "order_number": order.order_number}


@router.post("/api/quote-requests/{quote_id}/reject")
async def reject_quote(
    quote_id: int,
    payload: RejectQuote,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    status = conversion.reject_quote(
        db,
        quote_id,
        supplier_id=payload.supplier_id,
        thread_id=payload.thread_id,
        user=user,
        reason=payload.reason,
    )
    return {"ok": True, "status": status.value}


@router.post("/api/quote-requests/{quote_id}/reopen")
async def reopen_quote(
    quote_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    quote = conversion.reopen_quote(db, quote_id, user)
    return {"ok": True, "status": quote.status.value, "negotiation_round": quote.negotiation_round}


@router.post("/api/quote-requests/{quote_id}/suppliers")
async def add_supplier(
    quote_id: int,
    payload: AddSupplier,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    sent = await conversion.add_supplier(db, quote_id, payload.supplier_id, user)
    return {"ok": True, "sent": sent}


# ── Follow-ups ────────────────────────────────────────────────────────


@router.post("/api/messages/{message_id}/follow-up")
async def follow_up(
    message_id: int,
    payload: FollowUpRequest | None = None,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    payload = payload or FollowUpRequest()
    msg: EmailMessage = await send_follow_up(
        db,
        message_id,
        user,
        reason=payload.reason,
        additional_message=payload.additional_message,
    )
    return {
        "ok": True,
        "message_id": msg.id,
        "in_reply_to": msg.in_reply_to,
        "expected_response_by": _iso(msg.expected_response_by),
    }
